"""pyblockfem.utils.env
Environment switches shared by the block algebra.
"""
import os

_TRUTHY = {"1", "true", "yes"}


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean switch such as ``PYBLOCKFEM_CHECK_BLOCKS=1``."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def check_blocks() -> bool:
    """Validate block-array invariants on construction (on unless disabled)."""
    return env_flag("PYBLOCKFEM_CHECK_BLOCKS", default=True)


def debug_dispatch() -> bool:
    """Log every block-rule decision of the dispatch engine."""
    return env_flag("PYBLOCKFEM_DEBUG_DISPATCH", default=False)
