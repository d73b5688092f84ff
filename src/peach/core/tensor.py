from __future__ import annotations

import itertools
import math
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np
import sympy

from .exceptions import ShapeError

IndexLabels = Tuple[str, ...]


def _object_array(shape: Tuple[int, ...]) -> np.ndarray:
    return np.empty(shape, dtype=object)


def _wrap(value: Any) -> np.ndarray:
    if isinstance(value, np.ndarray):
        return value
    arr = _object_array(())
    arr[()] = value
    return arr


def _map(arr: np.ndarray, fn: Callable[[Any], Any]) -> np.ndarray:
    out = _object_array(arr.shape)
    for idx in np.ndindex(arr.shape):
        out[idx] = fn(arr[idx])
    return out


def _zip_map(lhs: np.ndarray, rhs: np.ndarray, fn: Callable[[Any, Any], Any]) -> np.ndarray:
    out = _object_array(lhs.shape)
    for idx in np.ndindex(lhs.shape):
        out[idx] = fn(lhs[idx], rhs[idx])
    return out


def _parity(perm: Sequence[int]) -> int:
    inversions = 0
    for i in range(len(perm)):
        for j in range(i + 1, len(perm)):
            if perm[i] > perm[j]:
                inversions += 1
    return -1 if inversions % 2 else 1


def _is_scalar_value(value: Any) -> bool:
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, sympy.Basic) and not isinstance(value, sympy.MatrixBase)


class Tensor:
    """Dense tensor of sympy scalars with named indices.

    ``components`` has shape ``(dimension,) * rank`` and object dtype; axis
    ``k`` carries the label ``indices[k]``. Binary operations match operands
    by label, not by position.
    """

    __slots__ = ("indices", "components")

    def __init__(self, indices: Iterable[str], components: Any):
        labels = tuple(str(label) for label in indices)
        if len(set(labels)) != len(labels):
            raise ShapeError(f"Duplicate index labels in {{{' '.join(labels)}}}")
        if isinstance(components, np.ndarray):
            arr = components
        elif isinstance(components, (list, tuple)):
            arr = np.array(components, dtype=object)
        else:
            arr = _wrap(components)
        if arr.dtype != object:
            arr = arr.astype(object)
        if arr.ndim != len(labels):
            raise ShapeError(
                f"Tensor with indices {{{' '.join(labels)}}} needs rank {len(labels)}, "
                f"got components of rank {arr.ndim}"
            )
        if arr.ndim and len(set(arr.shape)) != 1:
            raise ShapeError(f"All tensor axes must share one dimension, got shape {arr.shape}")
        self.indices: IndexLabels = labels
        self.components: np.ndarray = _map(arr, sympy.sympify)

    # ------------------------------------------------------------------ builders
    @classmethod
    def scalar(cls, value: Any) -> "Tensor":
        return cls((), _wrap(sympy.sympify(value)))

    @classmethod
    def zeros(cls, indices: Sequence[str], dimension: int) -> "Tensor":
        arr = _object_array((dimension,) * len(indices))
        arr.fill(sympy.Integer(0))
        return cls(indices, arr)

    @classmethod
    def general(cls, indices: Sequence[str], dimension: int, prefix: str) -> "Tensor":
        """Most general tensor: one independent symbol per component."""
        arr = _object_array((dimension,) * len(indices))
        for idx in np.ndindex(arr.shape):
            if idx:
                arr[idx] = sympy.Symbol(f"{prefix}_{'_'.join(str(i) for i in idx)}")
            else:
                arr[idx] = sympy.Symbol(prefix)
        return cls(indices, arr)

    # ---------------------------------------------------------------- properties
    @property
    def rank(self) -> int:
        return len(self.indices)

    @property
    def dimension(self) -> Optional[int]:
        if not self.rank:
            return None
        return int(self.components.shape[0])

    def value(self) -> sympy.Expr:
        if self.rank:
            raise ShapeError(f"Tensor of rank {self.rank} is not a scalar")
        return self.components[()]

    def components_list(self) -> List[sympy.Expr]:
        return [self.components[idx] for idx in np.ndindex(self.components.shape)]

    def items(self) -> Iterator[Tuple[Tuple[int, ...], sympy.Expr]]:
        for idx in np.ndindex(self.components.shape):
            yield idx, self.components[idx]

    def free_symbols(self) -> Set[sympy.Symbol]:
        symbols: Set[sympy.Symbol] = set()
        for component in self.components_list():
            symbols |= component.free_symbols
        return symbols

    # -------------------------------------------------------------- relabelling
    def with_indices(self, indices: Sequence[str]) -> "Tensor":
        labels = tuple(indices)
        if len(labels) != self.rank:
            raise ShapeError(
                f"Cannot label a rank {self.rank} tensor with {{{' '.join(labels)}}}"
            )
        return Tensor(labels, self.components)

    def rename(self, old: Sequence[str], new: Sequence[str]) -> "Tensor":
        """Rename ``old[k]`` to ``new[k]`` for every k, simultaneously."""
        old = tuple(old)
        new = tuple(new)
        if len(old) != len(new):
            raise ShapeError(
                f"Cannot rename {{{' '.join(old)}}} to {{{' '.join(new)}}}: lengths differ"
            )
        missing = [label for label in old if label not in self.indices]
        if missing:
            raise ShapeError(
                f"Indices {{{' '.join(missing)}}} not found in {{{' '.join(self.indices)}}}"
            )
        mapping = dict(zip(old, new))
        return Tensor((mapping.get(label, label) for label in self.indices), self.components)

    def aligned_components(self, indices: Sequence[str]) -> np.ndarray:
        """Components transposed so that axis k carries ``indices[k]``."""
        indices = tuple(indices)
        if sorted(indices) != sorted(self.indices):
            raise ShapeError(
                f"Index mismatch: {{{' '.join(self.indices)}}} vs {{{' '.join(indices)}}}"
            )
        if indices == self.indices:
            return self.components
        return self.components.transpose([self.indices.index(label) for label in indices])

    def _check_dimension(self, other: "Tensor") -> None:
        if self.rank and other.rank and self.dimension != other.dimension:
            raise ShapeError(f"Dimension mismatch: {self.dimension} vs {other.dimension}")

    # --------------------------------------------------------------- arithmetic
    def map(self, fn: Callable[[sympy.Expr], Any]) -> "Tensor":
        return Tensor(self.indices, _map(self.components, fn))

    def expand(self) -> "Tensor":
        return self.map(sympy.expand)

    def __add__(self, other: Any) -> "Tensor":
        if _is_scalar_value(other):
            other = Tensor.scalar(other)
        if not isinstance(other, Tensor):
            return NotImplemented
        self._check_dimension(other)
        rhs = other.aligned_components(self.indices)
        return Tensor(self.indices, _zip_map(self.components, rhs, lambda a, b: a + b))

    __radd__ = __add__

    def __neg__(self) -> "Tensor":
        return self.map(lambda value: -value)

    def __sub__(self, other: Any) -> "Tensor":
        if _is_scalar_value(other):
            other = Tensor.scalar(other)
        if not isinstance(other, Tensor):
            return NotImplemented
        return self + (-other)

    def __rsub__(self, other: Any) -> "Tensor":
        return (-self) + other

    def scale(self, factor: Any) -> "Tensor":
        factor = sympy.sympify(factor)
        return self.map(lambda value: value * factor)

    def __mul__(self, other: Any) -> "Tensor":
        if _is_scalar_value(other):
            return self.scale(other)
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.product(other)

    def __rmul__(self, other: Any) -> "Tensor":
        if _is_scalar_value(other):
            return self.scale(other)
        return NotImplemented

    def product(self, other: "Tensor") -> "Tensor":
        """Outer product; a label shared by both factors is summed over."""
        self._check_dimension(other)
        shape = self.components.shape + other.components.shape
        out = _object_array(shape)
        for left in np.ndindex(self.components.shape):
            for right in np.ndindex(other.components.shape):
                out[left + right] = self.components[left] * other.components[right]
        labels = list(self.indices + other.indices)
        for label in set(labels):
            if labels.count(label) > 2:
                raise ShapeError(f"Index '{label}' appears more than twice in a product")
        while True:
            repeated = [label for label in labels if labels.count(label) == 2]
            if not repeated:
                break
            first = labels.index(repeated[0])
            second = labels.index(repeated[0], first + 1)
            out = _contract(out, first, second)
            del labels[second]
            del labels[first]
        return Tensor(labels, out)

    # ---------------------------------------------------------- symmetrization
    def _positions(self, labels: Sequence[str]) -> List[int]:
        positions = []
        for label in labels:
            if label not in self.indices:
                raise ShapeError(
                    f"Index '{label}' not found in {{{' '.join(self.indices)}}}"
                )
            positions.append(self.indices.index(label))
        if len(set(positions)) != len(positions):
            raise ShapeError(f"Repeated index in {{{' '.join(labels)}}}")
        return positions

    def _permuted_sum(self, blocks: Sequence[Sequence[int]], signed: bool) -> np.ndarray:
        total: Optional[np.ndarray] = None
        for perm in itertools.permutations(range(len(blocks))):
            axes = list(range(self.rank))
            for k, source in enumerate(perm):
                for target_axis, source_axis in zip(blocks[k], blocks[source]):
                    axes[target_axis] = source_axis
            term = self.components.transpose(axes)
            if signed and _parity(perm) < 0:
                term = _map(term, lambda value: -value)
            total = term.copy() if total is None else _zip_map(total, term, lambda a, b: a + b)
        assert total is not None
        return total

    def symmetrize(self, labels: Sequence[str], scaled: bool = True) -> "Tensor":
        positions = self._positions(labels)
        total = self._permuted_sum([[p] for p in positions], signed=False)
        result = Tensor(self.indices, total)
        if scaled:
            result = result.scale(sympy.Rational(1, math.factorial(len(positions))))
        return result

    def antisymmetrize(self, labels: Sequence[str], scaled: bool = True) -> "Tensor":
        positions = self._positions(labels)
        total = self._permuted_sum([[p] for p in positions], signed=True)
        result = Tensor(self.indices, total)
        if scaled:
            result = result.scale(sympy.Rational(1, math.factorial(len(positions))))
        return result

    def block_symmetrize(self, blocks: Sequence[Sequence[str]], scaled: bool = False) -> "Tensor":
        if not blocks:
            return self
        size = len(blocks[0])
        for block in blocks:
            if len(block) != size:
                raise ShapeError("Block symmetrization can only go over indices of same length")
        self._positions([label for block in blocks for label in block])
        positions = [self._positions(block) for block in blocks]
        result = Tensor(self.indices, self._permuted_sum(positions, signed=False))
        if scaled:
            result = result.scale(sympy.Rational(1, math.factorial(len(blocks))))
        return result

    def exchange_symmetrize(self, labels: Sequence[str], scaled: bool = False) -> "Tensor":
        """``T + T'`` where ``T'`` carries ``labels`` positionally."""
        exchanged = self.with_indices(labels)
        result = self + exchanged
        if scaled:
            result = result.scale(sympy.Rational(1, 2))
        return result

    # ---------------------------------------------------------------- comparison
    def is_zero(self) -> bool:
        return all(sympy.expand(value) == 0 for value in self.components_list())

    def equals(self, other: "Tensor") -> bool:
        if not isinstance(other, Tensor) or sorted(self.indices) != sorted(other.indices):
            return False
        if self.rank and self.dimension != other.dimension:
            return False
        return (self - other).is_zero()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.equals(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Tensor({{{' '.join(self.indices)}}}, {self.components.tolist()!r})"

    def __str__(self) -> str:
        if not self.rank:
            return str(self.value())
        lines = []
        for idx, value in self.items():
            label = ",".join(f"{name}={i}" for name, i in zip(self.indices, idx))
            lines.append(f"[{label}] {value}")
        return "\n".join(lines)


def _contract(arr: np.ndarray, first: int, second: int) -> np.ndarray:
    moved = np.moveaxis(arr, (first, second), (0, 1))
    dimension = arr.shape[first]
    total = moved[0, 0]
    for k in range(1, dimension):
        total = total + moved[k, k]
    if isinstance(total, np.ndarray):
        return total.copy()
    return _wrap(total)
