"""pyblockfem.core.blockarray
Block-sparse per-cell arrays in coordinate (COO) form.

A :class:`BlockCellArray` holds the local array of ONE cell, split along each
axis by a :class:`~pyblockfem.core.blockedrange.BlockedRange`.  Only some block
coordinates are stored; every coordinate missing from ``blockids`` is exactly
zero.  Instances are never mutated after construction: the dispatch engine
collects results in a :class:`BlockBuilder` and freezes them into a new array.

Block coordinates are 0-based.  The leading (quadrature point) axis of an
integrand carries a single block, so test-role arrays are keyed ``(0, f)``,
trial-role arrays ``(0, 0, f)`` and bilinear integrands ``(0, f1, f2)``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import product
from typing import Dict, Iterator, Sequence, Tuple

import numpy as np

from pyblockfem.core.blockedrange import (
    BlockedRange, as_axes, block_shape, blocks_per_axis,
)
from pyblockfem.utils.env import check_blocks

logger = logging.getLogger(__name__)

BlockId = Tuple[int, ...]


@dataclass(frozen=True, slots=True, eq=False)
class BlockCellArray:
    """Per-cell block-sparse array.

    Attributes
    ----------
    blocks
        Stored block arrays, one per entry of ``blockids``.
    blockids
        Block coordinates of the stored blocks (unique, one coordinate per axis).
    axes
        One :class:`BlockedRange` per array axis.
    """
    blocks: Tuple[np.ndarray, ...]
    blockids: Tuple[BlockId, ...]
    axes: Tuple[BlockedRange, ...]
    _lookup: Dict[BlockId, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        blocks = tuple(self.blocks)
        blockids = tuple(tuple(int(i) for i in I) for I in self.blockids)
        axes = as_axes(self.axes)
        object.__setattr__(self, "blocks", blocks)
        object.__setattr__(self, "blockids", blockids)
        object.__setattr__(self, "axes", axes)
        object.__setattr__(self, "_lookup", {I: n for n, I in enumerate(blockids)})
        if check_blocks():
            self._validate()

    def _validate(self):
        if len(self.blocks) != len(self.blockids):
            raise ValueError(f"BlockCellArray got {len(self.blocks)} blocks but "
                             f"{len(self.blockids)} block ids.")
        if len(self._lookup) != len(self.blockids):
            raise ValueError(f"Duplicate block ids in {self.blockids}.")
        lattice = blocks_per_axis(self.axes)
        for I, blk in zip(self.blockids, self.blocks):
            if len(I) != len(lattice) or any(not 0 <= i < n for i, n in zip(I, lattice)):
                raise ValueError(f"Block id {I} is outside the block lattice {lattice}.")
            expected = block_shape(self.axes, I)
            if tuple(np.shape(blk)) != expected:
                raise ValueError(f"Block {I} has shape {tuple(np.shape(blk))}, "
                                 f"axes require {expected}.")

    # ------------------------------------------------------------------
    # constructors
    # ------------------------------------------------------------------
    @classmethod
    def zeros(cls, axes: Sequence) -> "BlockCellArray":
        """Array with no stored block (the additive identity)."""
        return cls((), (), as_axes(axes))

    @classmethod
    def from_dense(cls, array, axes: Sequence, blockids: Sequence[BlockId] | None = None) -> "BlockCellArray":
        """Split a dense array along ``axes``.

        Without ``blockids`` every structurally nonzero block is stored, even if
        its values are all zero.  Blocks are copied out of ``array``.
        """
        array = np.asarray(array)
        axes = as_axes(axes)
        shape = tuple(len(ax) for ax in axes)
        if array.shape != shape:
            raise ValueError(f"Dense array of shape {array.shape} does not match axes {shape}.")
        if blockids is None:
            blockids = [I for I in product(*(range(ax.nblocks) for ax in axes))
                        if all(ax.is_nonzero(i) for ax, i in zip(axes, I))]
        builder = BlockBuilder(axes)
        for I in blockids:
            idx = tuple(ax.block_slice(i) for ax, i in zip(axes, I))
            builder.add(I, array[idx].copy())
        return builder.freeze()

    # ------------------------------------------------------------------
    # shape information
    # ------------------------------------------------------------------
    @property
    def ndim(self) -> int:
        return len(self.axes)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(len(ax) for ax in self.axes)

    @property
    def blocks_per_axis(self) -> Tuple[int, ...]:
        return blocks_per_axis(self.axes)

    @property
    def dtype(self):
        if not self.blocks:
            return np.dtype(float)
        return np.result_type(*(np.asarray(b).dtype for b in self.blocks))

    def __len__(self) -> int:
        """Number of stored blocks."""
        return len(self.blocks)

    # ------------------------------------------------------------------
    # block access
    # ------------------------------------------------------------------
    def is_nonzero_block(self, I: Sequence[int]) -> bool:
        """True if the block at ``I`` is stored."""
        return tuple(I) in self._lookup

    def is_structural_block(self, I: Sequence[int]) -> bool:
        """True if every sub-range referenced by ``I`` has positive length."""
        return all(ax.is_nonzero(i) for ax, i in zip(self.axes, I))

    def block(self, I: Sequence[int]):
        """Stored block at ``I``, or a fresh zero block of the right shape."""
        I = tuple(I)
        n = self._lookup.get(I)
        if n is not None:
            return self.blocks[n]
        return np.zeros(block_shape(self.axes, I), dtype=self.dtype)

    def __getitem__(self, I):
        return self.block(I)

    def stored(self) -> Iterator[Tuple[BlockId, np.ndarray]]:
        return zip(self.blockids, self.blocks)

    def lattice(self) -> Iterator[BlockId]:
        """All block coordinates in row-major order."""
        return product(*(range(n) for n in self.blocks_per_axis))

    def enumerate_blocks(self) -> Iterator[Tuple[BlockId, np.ndarray]]:
        """Every coordinate of the lattice with its (possibly zero) block."""
        for I in self.lattice():
            yield I, self.block(I)

    def to_dense(self) -> np.ndarray:
        out = np.zeros(self.shape, dtype=self.dtype)
        for I, blk in self.stored():
            idx = tuple(ax.block_slice(i) for ax, i in zip(self.axes, I))
            out[idx] = np.asarray(blk)
        return out

    def __repr__(self) -> str:
        return (f"BlockCellArray(shape={self.shape}, lattice={self.blocks_per_axis}, "
                f"blockids={list(self.blockids)})")


class BlockBuilder:
    """Collects (block id, block) pairs during a scan, then freezes them.

    The builder refuses further additions once :meth:`freeze` has run, so the
    lists it owns never leak into a published array.
    """

    def __init__(self, axes: Sequence):
        self.axes = as_axes(axes)
        self._blocks: list = []
        self._blockids: list = []
        self._frozen = False

    def add(self, blockid: Sequence[int], block) -> None:
        if self._frozen:
            raise RuntimeError("BlockBuilder is already frozen.")
        self._blockids.append(tuple(blockid))
        self._blocks.append(block)

    def __len__(self) -> int:
        return len(self._blocks)

    def freeze(self) -> BlockCellArray:
        self._frozen = True
        out = BlockCellArray(tuple(self._blocks), tuple(self._blockids), self.axes)
        logger.debug(f"BlockBuilder.freeze: {len(out)} stored blocks on lattice {out.blocks_per_axis}")
        return out
