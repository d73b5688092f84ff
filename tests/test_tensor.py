import pytest
import sympy

from peach import ShapeError, Tensor

x, y = sympy.symbols("x y")
half = sympy.Rational(1, 2)


def _matrix():
    return Tensor(("a", "b"), [[1, 2], [3, 4]])


def test_general_tensor_has_one_symbol_per_component():
    tensor = Tensor.general(("a",), 2, "v")
    assert tensor.components_list() == [sympy.Symbol("v_0"), sympy.Symbol("v_1")]
    assert Tensor.general((), 3, "s").value() == sympy.Symbol("s")
    assert tensor.dimension == 2
    assert Tensor.scalar(1).dimension is None


def test_addition_aligns_by_label():
    tensor = _matrix()
    swapped = tensor.rename(("a", "b"), ("b", "a"))
    assert swapped.indices == ("b", "a")
    total = tensor + swapped
    assert total.indices == ("a", "b")
    assert total.components_list() == [2, 5, 5, 8]


def test_addition_requires_matching_labels():
    with pytest.raises(ShapeError):
        _matrix() + Tensor(("a", "c"), [[1, 2], [3, 4]])
    with pytest.raises(ShapeError):
        _matrix() + 1


def test_scalar_arithmetic():
    tensor = Tensor.scalar(x) * 2 - 1
    assert tensor.value() == 2 * x - 1
    assert (3 * _matrix()).components_list() == [3, 6, 9, 12]
    assert (-_matrix()).components_list() == [-1, -2, -3, -4]


def test_symmetrize_and_antisymmetrize():
    symmetric = _matrix().symmetrize(("a", "b"))
    assert symmetric.components_list() == [1, sympy.Rational(5, 2), sympy.Rational(5, 2), 4]
    antisymmetric = _matrix().antisymmetrize(("a", "b"))
    assert antisymmetric.components_list() == [0, -half, half, 0]
    assert (symmetric + antisymmetric).equals(_matrix())


def test_unscaled_symmetrization():
    assert _matrix().symmetrize(("a", "b"), scaled=False).components_list() == [2, 5, 5, 8]


def test_block_symmetrize_swaps_whole_blocks():
    tensor = Tensor.general(("a", "b", "c", "d"), 2, "T")
    result = tensor.block_symmetrize([("a", "b"), ("c", "d")])
    expected = tensor + tensor.rename(("a", "b", "c", "d"), ("c", "d", "a", "b"))
    assert result.equals(expected)


def test_block_symmetrize_needs_equal_block_sizes():
    tensor = Tensor.general(("a", "b", "c"), 2, "T")
    with pytest.raises(ShapeError, match="same length"):
        tensor.block_symmetrize([("a", "b"), ("c",)])


def test_exchange_symmetrize():
    result = _matrix().exchange_symmetrize(("b", "a"))
    assert result.components_list() == [2, 5, 5, 8]
    assert _matrix().exchange_symmetrize(("b", "a"), scaled=True).equals(
        _matrix().symmetrize(("a", "b"))
    )


def test_product_contracts_repeated_labels():
    v = Tensor(("a",), [1, 2])
    w = Tensor(("a",), [3, 4])
    assert v.product(w).value() == 11
    outer = v * w.rename(("a",), ("b",))
    assert outer.indices == ("a", "b")
    assert outer.components_list() == [3, 4, 6, 8]
    trace = _matrix().product(Tensor(("a", "b"), [[1, 0], [0, 1]]))
    assert trace.value() == 5


def test_product_needs_matching_dimensions():
    with pytest.raises(ShapeError, match="Dimension mismatch"):
        Tensor(("a",), [1, 2]).product(Tensor(("a",), [1, 2, 3]))


def test_invalid_construction():
    with pytest.raises(ShapeError):
        Tensor(("a", "a"), [[1, 2], [3, 4]])
    with pytest.raises(ShapeError):
        Tensor(("a",), [[1, 2], [3, 4]])
    with pytest.raises(ShapeError):
        _matrix().rename(("a",), ("b", "c"))
    with pytest.raises(ShapeError):
        _matrix().rename(("z",), ("c",))
    with pytest.raises(ShapeError):
        _matrix().with_indices(("a",))


def test_equality_and_zero():
    tensor = Tensor(("a",), [x + y, x])
    assert tensor == Tensor(("a",), [y + x, x])
    assert tensor != Tensor(("a",), [x, x])
    assert (tensor - tensor).is_zero()
    assert not tensor.is_zero()
    assert tensor.free_symbols() == {x, y}
