from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import sympy

from .exceptions import InvalidSubstitutionError
from .tensor import Tensor

Pair = Tuple[sympy.Expr, sympy.Expr]

_SIZE = struct.Struct("<Q")


class Substitution:
    """Ordered ``variable = expression`` replacements.

    Pairs are applied one after the other, each on the output of the
    previous one, so a later pair may rewrite variables introduced by an
    earlier replacement.
    """

    def __init__(self, pairs: Iterable[Tuple[Any, Any]] = ()):
        self._pairs: List[Pair] = []
        for variable, expression in pairs:
            self.insert(variable, expression)

    def insert(self, variable: Any, expression: Any) -> None:
        self._pairs.append((sympy.sympify(variable), sympy.sympify(expression)))

    @property
    def pairs(self) -> List[Pair]:
        return list(self._pairs)

    def __iter__(self) -> Iterator[Pair]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Substitution):
            return NotImplemented
        return self._pairs == other._pairs

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{lhs} = {rhs}" for lhs, rhs in self._pairs)
        return f"Substitution({body})"

    def __str__(self) -> str:
        return "".join(f"{lhs} = {rhs}\n" for lhs, rhs in self._pairs)

    # -------------------------------------------------------------- application
    def apply_scalar(self, scalar: Any) -> sympy.Expr:
        result = sympy.sympify(scalar)
        for variable, expression in self._pairs:
            result = result.subs(variable, expression)
        return result

    def apply(self, value: Any) -> Any:
        if isinstance(value, Tensor):
            return value.map(self.apply_scalar)
        return self.apply_scalar(value)

    __call__ = apply

    # ------------------------------------------------------------ linear systems
    @classmethod
    def merge(cls, substitutions: Sequence["Substitution"]) -> "Substitution":
        """Merge substitutions from independent equations into one.

        Every pair is read as the linear equation ``lhs - rhs = 0``; the
        combined system is row reduced and each pivot row yields one
        ``pivot = rest`` pair.
        """
        substitutions = list(substitutions)
        if len(substitutions) == 1:
            return substitutions[0]

        rows: List[_Row] = []
        for substitution in substitutions:
            for lhs, rhs in substitution:
                equation = lhs
                for term in sympy.Add.make_args(rhs):
                    equation -= term
                preferred = lhs if isinstance(lhs, sympy.Symbol) else None
                rows.append(_linear_row(equation, preferred=preferred))
        return _solve_rows(rows)

    @classmethod
    def homogeneous(cls, expressions: Iterable[Any]) -> "Substitution":
        """Solve ``expression = 0`` for every expression at once."""
        rows: List[_Row] = []
        for expression in expressions:
            row = _linear_row(expression)
            if row.variables or row.constant != 0:
                rows.append(row)
        return _solve_rows(rows)

    # ------------------------------------------------------------ serialization
    def serialize(self, stream: BinaryIO) -> None:
        stream.write(_SIZE.pack(len(self._pairs)))
        for lhs, rhs in self._pairs:
            _write_scalar(stream, lhs)
            _write_scalar(stream, rhs)

    @classmethod
    def deserialize(cls, stream: BinaryIO) -> Optional["Substitution"]:
        """Read a substitution written by :meth:`serialize`.

        Returns ``None`` when the stream is truncated or a scalar cannot be
        read back. Scalars are evaluated with sympy, so only trusted streams
        should be deserialized.
        """
        size = _read_size(stream)
        if size is None:
            return None
        result = cls()
        for _ in range(size):
            lhs = _read_scalar(stream)
            if lhs is None:
                return None
            rhs = _read_scalar(stream)
            if rhs is None:
                return None
            result.insert(lhs, rhs)
        return result

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.serialize(buffer)
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional["Substitution"]:
        return cls.deserialize(io.BytesIO(data))


@dataclass
class _Row:
    variables: List[sympy.Symbol]  # first entry is the pivot candidate
    coefficients: Dict[sympy.Symbol, sympy.Expr]
    constant: sympy.Expr


def _linear_row(expression: Any, preferred: Optional[sympy.Symbol] = None) -> _Row:
    expanded = sympy.expand(sympy.sympify(expression))
    coefficients: Dict[sympy.Symbol, sympy.Expr] = {}
    constant: sympy.Expr = sympy.Integer(0)
    for term in sympy.Add.make_args(expanded):
        if term.is_number:
            constant += term
            continue
        symbols = term.free_symbols
        if len(symbols) != 1:
            raise InvalidSubstitutionError(f"Term '{term}' is not linear in a single variable")
        (variable,) = symbols
        coefficient, rest = term.as_independent(variable, as_Add=False)
        if rest != variable or not coefficient.is_number:
            raise InvalidSubstitutionError(f"Term '{term}' is not linear in '{variable}'")
        coefficients[variable] = coefficients.get(variable, sympy.Integer(0)) + coefficient

    coefficients = {var: coeff for var, coeff in coefficients.items() if coeff != 0}
    ordered = sorted(coefficients, key=sympy.default_sort_key)
    if preferred is not None and preferred in coefficients:
        ordered.remove(preferred)
        ordered.insert(0, preferred)
    return _Row(variables=ordered, coefficients=coefficients, constant=constant)


def _solve_rows(rows: Sequence[_Row]) -> Substitution:
    if not rows:
        return Substitution()

    # Each row's first variable moves up to just after the previous pivot
    # candidate; all other variables are appended in first-seen order.
    variables: List[sympy.Symbol] = []
    pos = 0
    for row in rows:
        for k, variable in enumerate(row.variables):
            if k == 0:
                if variable in variables:
                    variables.remove(variable)
                variables.insert(pos, variable)
                pos += 1
            elif variable not in variables:
                variables.append(variable)

    matrix = sympy.Matrix(
        [[row.coefficients.get(var, 0) for var in variables] + [row.constant] for row in rows]
    )
    reduced, _ = matrix.rref()

    width = len(variables)
    result = Substitution()
    for i in range(reduced.rows):
        entries = list(reduced.row(i))
        if all(entry == 0 for entry in entries):
            break

        lhs: Optional[sympy.Symbol] = None
        rhs: sympy.Expr = -entries[width]
        for j in range(width):
            entry = entries[j]
            if entry == 0:
                continue
            if lhs is None:
                if entry != 1:
                    raise InvalidSubstitutionError(
                        f"Reduced row {i} starts with {entry} instead of 1"
                    )
                lhs = variables[j]
            else:
                rhs += -entry * variables[j]

        if lhs is None:
            raise InvalidSubstitutionError(
                f"Inconsistent system: reduced row {i} reads 0 = {-entries[width]}"
            )
        result.insert(lhs, rhs)
    return result


def _write_scalar(stream: BinaryIO, scalar: sympy.Expr) -> None:
    payload = sympy.srepr(scalar).encode("utf-8")
    stream.write(_SIZE.pack(len(payload)))
    stream.write(payload)


def _read_size(stream: BinaryIO) -> Optional[int]:
    raw = stream.read(_SIZE.size)
    if len(raw) != _SIZE.size:
        return None
    return _SIZE.unpack(raw)[0]


def _read_scalar(stream: BinaryIO) -> Optional[sympy.Expr]:
    length = _read_size(stream)
    if length is None:
        return None
    payload = stream.read(length)
    if len(payload) != length:
        return None
    try:
        return sympy.sympify(payload.decode("utf-8"))
    except (UnicodeDecodeError, sympy.SympifyError, SyntaxError, TypeError, ValueError):
        return None
