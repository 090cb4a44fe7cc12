# conftest.py
import numpy as np
import pytest


@pytest.fixture(autouse=True)
def block_env(monkeypatch):
    """Run every test with invariant checks on and dispatch tracing off."""
    monkeypatch.delenv("PYBLOCKFEM_CHECK_BLOCKS", raising=False)
    monkeypatch.delenv("PYBLOCKFEM_DEBUG_DISPATCH", raising=False)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
