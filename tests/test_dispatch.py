import operator

import numpy as np
import pytest

from pyblockfem.core.blockarray import BlockCellArray
from pyblockfem.core.blockedrange import BlockedRange
from pyblockfem.core.trial import as_trial
from pyblockfem.fem.dispatch import evaluate
from pyblockfem.fem.kernels import CellKernel, KernelKind, kernel_cache

AX_Q = BlockedRange((4,))
AX_F = BlockedRange((3, 2, 2))   # three fields on the cell


def _test_array(fields, rng):
    """Test-role array (4 points) with the given fields stored."""
    ids = tuple((0, f) for f in fields)
    blocks = tuple(rng.standard_normal((4, AX_F.lengths[f])) for f in fields)
    return BlockCellArray(blocks, ids, (AX_Q, AX_F))


class _Counting:
    """Wrap an operator and count calls."""

    def __init__(self, op):
        self.op = op
        self.calls = 0

    def __call__(self, *args):
        self.calls += 1
        return self.op(*args)


def test_dense_operands_use_broadcast_default():
    out = evaluate(CellKernel(np.add), np.ones((2, 3)), np.arange(2.0))
    np.testing.assert_array_equal(out[:, 0], [1.0, 2.0])


def test_unary_identity_keeps_blocks(rng):
    a = _test_array([0, 2], rng)
    out = evaluate(CellKernel(lambda x: x), a)
    assert out.blockids == a.blockids
    assert out.axes == a.axes
    for x, y in zip(out.blocks, a.blocks):
        np.testing.assert_array_equal(x, y)


def test_unary_applies_per_block(rng):
    a = _test_array([1], rng)
    out = evaluate(CellKernel(np.negative), a)
    np.testing.assert_array_equal(out[(0, 1)], -a[(0, 1)])


def test_additive_disjoint_union_without_kernel_calls(rng):
    a = _test_array([0], rng)
    b = _test_array([2], rng)
    counter = _Counting(np.add)
    out = evaluate(CellKernel(counter, kind=KernelKind.ADDITIVE), a, b)
    assert counter.calls == 0
    assert set(out.blockids) == {(0, 0), (0, 2)}
    assert out[(0, 0)] is a[(0, 0)]
    assert out[(0, 2)] is b[(0, 2)]


def test_additive_overlap_calls_kernel_once(rng):
    a = _test_array([0, 1], rng)
    b = _test_array([1], rng)
    counter = _Counting(np.add)
    out = evaluate(CellKernel(counter, kind=KernelKind.ADDITIVE), a, b)
    assert counter.calls == 1
    assert out.blockids == ((0, 0), (0, 1))
    np.testing.assert_allclose(out.to_dense(), a.to_dense() + b.to_dense())


def test_subtraction_negates_one_sided_b(rng):
    zero = BlockCellArray.zeros((AX_Q, AX_F))
    b = _test_array([1], rng)
    out = evaluate(CellKernel(np.subtract), zero, b)
    assert out.blockids == ((0, 1),)
    np.testing.assert_array_equal(out[(0, 1)], -b[(0, 1)])


def test_subtraction_matches_dense(rng):
    a = _test_array([0, 1], rng)
    b = _test_array([1, 2], rng)
    out = evaluate(CellKernel(np.subtract), a, b)
    assert out.blockids == ((0, 0), (0, 1), (0, 2))
    np.testing.assert_allclose(out.to_dense(), a.to_dense() - b.to_dense())


def test_general_rule_zero_fills_missing_side(rng):
    a = _test_array([0], rng)
    b = _test_array([2], rng)
    counter = _Counting(lambda x, y: 2.0 * x + y)
    out = evaluate(CellKernel(counter), a, b)
    assert out.blockids == ((0, 0), (0, 2))
    assert counter.calls == 2
    np.testing.assert_allclose(out.to_dense(), 2.0 * a.to_dense() + b.to_dense())


def test_all_zero_operands_give_empty_result():
    zero = BlockCellArray.zeros((AX_Q, AX_F))
    for op in (np.add, np.subtract, np.maximum):
        out = evaluate(CellKernel(op), zero, zero)
        assert len(out) == 0
        assert out.axes == zero.axes


def test_plain_operand_either_side(rng):
    a = _test_array([0, 2], rng)
    w = np.arange(4.0)
    right = evaluate(CellKernel(np.multiply), a, w)
    left = evaluate(CellKernel(np.multiply), w, a)
    assert right.blockids == left.blockids == a.blockids
    np.testing.assert_allclose(right[(0, 2)], a[(0, 2)] * w[:, None])
    np.testing.assert_allclose(left.to_dense(), right.to_dense())
    scaled = evaluate(CellKernel(np.multiply), a, 3.0)
    np.testing.assert_allclose(scaled.to_dense(), 3.0 * a.to_dense())


def test_outer_coordinate_rule(rng):
    test = _test_array([0, 2], rng)
    trial = as_trial(_test_array([1, 2], rng))
    out = evaluate(CellKernel(np.multiply), test, trial)
    # every stored test field pairs with every stored trial field
    assert out.blockids == ((0, 0, 1), (0, 0, 2), (0, 2, 1), (0, 2, 2))
    for missing in [(0, 0, 0), (0, 1, 1), (0, 1, 2), (0, 2, 0)]:
        assert not out.is_nonzero_block(missing)
    assert out.axes == (AX_Q, AX_F, AX_F)
    for f1, f2 in [(0, 1), (2, 2)]:
        expected = test[(0, f1)][:, :, None] * trial[(0, 0, f2)].matrix[:, None, :]
        np.testing.assert_allclose(out[(0, f1, f2)], expected)


def test_outer_rule_without_stored_trial_fields_is_empty(rng):
    test = _test_array([0, 2], rng)
    trial = as_trial(BlockCellArray.zeros((AX_Q, AX_F)))
    out = evaluate(CellKernel(np.multiply), test, trial)
    assert len(out) == 0
    assert out.axes == (AX_Q, AX_F, AX_F)


def test_outer_rule_trial_first_passes_test_first(rng):
    test = _test_array([0], rng)
    trial = as_trial(_test_array([1], rng))
    seen = []

    def op(x, y):
        seen.append((np.shape(x), np.shape(y)))
        return x * y

    out = evaluate(CellKernel(op, kind=KernelKind.OUTER), trial, test)
    assert out.blockids == ((0, 0, 1),)
    assert seen == [((4, 3, 1), (4, 1, 2))]
    assert out[(0, 0, 1)].shape == (4, 3, 2)


def test_outer_matches_dense_product(rng):
    test = _test_array([0, 1, 2], rng)
    trial = as_trial(_test_array([0, 2], rng))
    out = evaluate(CellKernel(np.multiply), test, trial)
    dense = test.to_dense()[:, :, None] * trial.to_dense()
    np.testing.assert_allclose(out.to_dense(), dense)


def test_lattice_mismatch_fails_fast(rng):
    a = _test_array([0], rng)
    b = BlockCellArray.zeros((AX_Q, BlockedRange((3, 2))))
    with pytest.raises(ValueError):
        evaluate(CellKernel(np.add), a, b)


def test_nonlinear_kernel_on_two_blocks_is_unsupported(rng):
    a = _test_array([0], rng)
    k = CellKernel(lambda x, y: np.exp(x) + y, kind=KernelKind.NONLINEAR)
    with pytest.raises(NotImplementedError):
        evaluate(k, a, a)
    with pytest.raises(NotImplementedError):
        evaluate(k, a)
    # densified operands are fine
    out = evaluate(k, a.to_dense(), a.to_dense())
    assert out.shape == a.shape


def test_additive_kernel_on_test_trial_pair_is_unsupported(rng):
    test = _test_array([0], rng)
    trial = as_trial(_test_array([0], rng))
    with pytest.raises(NotImplementedError):
        evaluate(CellKernel(np.add), test, trial)


@pytest.mark.parametrize("ranks", [(1, 3), (2, 4)])
def test_bad_rank_combination(ranks):
    def zeros(rank):
        return BlockCellArray.zeros([4] + [(1, 1)] * (rank - 1))
    with pytest.raises(ValueError):
        evaluate(CellKernel(np.multiply), zeros(ranks[0]), zeros(ranks[1]))


def test_trial_without_singleton_axis_is_rejected(rng):
    test = _test_array([0], rng)
    bad_trial = BlockCellArray.zeros((AX_Q, BlockedRange((2,)), AX_F))
    with pytest.raises(ValueError):
        evaluate(CellKernel(np.multiply), test, bad_trial)


def test_cached_evaluation_matches_uncached(rng):
    k = CellKernel(np.subtract)
    cache = kernel_cache(k)
    for _ in range(3):
        a = _test_array([0, 1], rng)
        b = _test_array([1, 2], rng)
        cached = evaluate(k, a, b, cache=cache)
        plain = evaluate(k, a, b)
        np.testing.assert_allclose(cached.to_dense(), plain.to_dense())
    assert set(cache.children) == {(0, 1), ("neg", (0, 2))}
    assert cache.child((0, 1)).hits == 2


def test_three_operands_with_one_block(rng):
    a = _test_array([1], rng)
    k = CellKernel(lambda x, s, t: s * x + t)
    out = evaluate(k, a, 2.0, 0.0)
    np.testing.assert_allclose(out[(0, 1)], 2.0 * a[(0, 1)])
    with pytest.raises(NotImplementedError):
        evaluate(k, a, a, a)


def test_evaluate_requires_kernel():
    with pytest.raises(TypeError):
        evaluate(np.add, np.ones(2), np.ones(2))


def _trial_array(fields, rng):
    return as_trial(_test_array(fields, rng))


@pytest.mark.parametrize("op", [np.add, operator.add])
def test_additive_kernels_on_trial_arrays(op, rng):
    a = _trial_array([0, 1], rng)
    b = _trial_array([1, 2], rng)
    out = evaluate(CellKernel(op), a, b)
    assert out.blockids == ((0, 0, 0), (0, 0, 1), (0, 0, 2))
    assert out[(0, 0, 0)] is a[(0, 0, 0)]
    np.testing.assert_allclose(out.to_dense(), a.to_dense() + b.to_dense())


@pytest.mark.parametrize("op", [np.subtract, operator.sub])
def test_subtractive_kernels_negate_one_sided_trial_block(op, rng):
    a = _trial_array([0], rng)
    b = _trial_array([1], rng)
    out = evaluate(CellKernel(op), a, b)
    assert out.blockids == ((0, 0, 0), (0, 0, 1))
    np.testing.assert_array_equal(out[(0, 0, 1)], -b[(0, 0, 1)].view())
    np.testing.assert_allclose(out.to_dense(), a.to_dense() - b.to_dense())


@pytest.mark.parametrize("op", [np.multiply, operator.mul])
def test_product_kernels_scale_trial_blocks(op, rng):
    a = _trial_array([0, 2], rng)
    w = np.arange(4.0)
    scaled = evaluate(CellKernel(op), a, 2.0)
    np.testing.assert_allclose(scaled.to_dense(), 2.0 * a.to_dense())
    left = evaluate(CellKernel(op), 2.0, a)
    np.testing.assert_allclose(left.to_dense(), scaled.to_dense())
    weighted = evaluate(CellKernel(op), w, a)
    assert weighted.blockids == a.blockids
    np.testing.assert_allclose(weighted[(0, 0, 2)], w[:, None, None] * a[(0, 0, 2)].view())


@pytest.mark.parametrize("op", [np.multiply, operator.mul])
def test_outer_rule_with_product_kernels(op, rng):
    test = _test_array([1], rng)
    trial = _trial_array([0], rng)
    out = evaluate(CellKernel(op), test, trial)
    assert out.blockids == ((0, 1, 0),)
    np.testing.assert_allclose(out[(0, 1, 0)],
                               test[(0, 1)][:, :, None] * trial[(0, 0, 0)].matrix[:, None, :])
