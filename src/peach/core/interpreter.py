from __future__ import annotations

from fractions import Fraction
from functools import lru_cache, reduce
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import sympy
from lark import Lark, Token, Transformer, v_args
from lark.exceptions import LarkError, UnexpectedInput, VisitError

from ..log import get_logger
from .exceptions import EvaluationError, ParseError, PeachError
from .substitution import Substitution
from .tensor import Tensor

GRAMMAR_FILE = Path(__file__).with_name("expr_grammar.lark")

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def _build_parser() -> Lark:
    return Lark(
        GRAMMAR_FILE.read_text(encoding="utf-8"),
        parser="lalr",
        start="program",
        propagate_positions=True,
        maybe_placeholders=False,
    )


class IndexList(tuple):
    """Literal ``{a b c}`` list of index labels."""

    def __repr__(self) -> str:
        return "{" + " ".join(self) + "}"


def strip_comments(text: str) -> str:
    lines = []
    for line in text.splitlines():
        cut = line.find("//")
        lines.append(line if cut == -1 else line[:cut])
    return "\n".join(lines)


def _describe(value: Any) -> str:
    if isinstance(value, Tensor):
        return f"tensor {{{' '.join(value.indices)}}}"
    if isinstance(value, Substitution):
        return "substitution"
    if isinstance(value, IndexList):
        return f"index list {value!r}"
    return f"scalar '{value}'"


def _is_scalar(value: Any) -> bool:
    return isinstance(value, sympy.Basic)


def _as_tensor(value: Any, context: str) -> Tensor:
    if isinstance(value, Tensor):
        return value
    if _is_scalar(value):
        return Tensor.scalar(value)
    raise EvaluationError(f"{context} expects a tensor, got {_describe(value)}")


def _as_indices(value: Any, context: str) -> IndexList:
    if isinstance(value, IndexList):
        return value
    raise EvaluationError(f"{context} expects an index list, got {_describe(value)}")


def _as_substitution(value: Any, context: str) -> Substitution:
    if isinstance(value, Substitution):
        return value
    raise EvaluationError(f"{context} expects a substitution, got {_describe(value)}")


def _add(lhs: Any, rhs: Any) -> Any:
    if _is_scalar(lhs) and _is_scalar(rhs):
        return lhs + rhs
    if isinstance(lhs, (Tensor, sympy.Basic)) and isinstance(rhs, (Tensor, sympy.Basic)):
        return _as_tensor(lhs, "Add") + _as_tensor(rhs, "Add")
    raise EvaluationError(f"Cannot add {_describe(lhs)} and {_describe(rhs)}")


def _neg(value: Any) -> Any:
    if isinstance(value, (Tensor, sympy.Basic)):
        return -value
    raise EvaluationError(f"Cannot negate {_describe(value)}")


def _mul(lhs: Any, rhs: Any) -> Any:
    if _is_scalar(lhs) and _is_scalar(rhs):
        return lhs * rhs
    if isinstance(lhs, Tensor) and _is_scalar(rhs):
        return lhs.scale(rhs)
    if _is_scalar(lhs) and isinstance(rhs, Tensor):
        return rhs.scale(lhs)
    if isinstance(lhs, Tensor) and isinstance(rhs, Tensor):
        return lhs.product(rhs)
    raise EvaluationError(f"Cannot multiply {_describe(lhs)} and {_describe(rhs)}")


def _div(lhs: Any, rhs: Any) -> Any:
    if not _is_scalar(rhs):
        raise EvaluationError(f"Cannot divide by {_describe(rhs)}")
    if rhs == 0:
        raise EvaluationError("Division by zero")
    return _mul(lhs, sympy.Integer(1) / rhs)


# Builtins --------------------------------------------------------------------


def _homogeneous_system(value: Any) -> Substitution:
    if isinstance(value, Tensor):
        return Substitution.homogeneous(value.components_list())
    if _is_scalar(value):
        return Substitution.homogeneous([value])
    raise EvaluationError(f"HomogeneousSystem expects a tensor, got {_describe(value)}")


def _rename_indices(tensor: Any, old: Any, new: Any) -> Tensor:
    return _as_tensor(tensor, "RenameIndices").rename(
        _as_indices(old, "RenameIndices"), _as_indices(new, "RenameIndices")
    )


def _add_all(*values: Any) -> Any:
    if not values:
        raise EvaluationError("Add expects at least one argument")
    return reduce(_add, values)


def _subtract(lhs: Any, rhs: Any) -> Any:
    return _add(lhs, _neg(rhs))


def _multiply_all(*values: Any) -> Any:
    if not values:
        raise EvaluationError("Multiply expects at least one argument")
    return reduce(_mul, values)


def _scale(tensor: Any, factor: Any) -> Any:
    if not _is_scalar(factor):
        raise EvaluationError(f"Scale expects a scalar factor, got {_describe(factor)}")
    return _as_tensor(tensor, "Scale").scale(factor)


def _symmetrize(tensor: Any, indices: Any) -> Tensor:
    return _as_tensor(tensor, "Symmetrize").symmetrize(_as_indices(indices, "Symmetrize"))


def _antisymmetrize(tensor: Any, indices: Any) -> Tensor:
    return _as_tensor(tensor, "AntiSymmetrize").antisymmetrize(
        _as_indices(indices, "AntiSymmetrize")
    )


def _block_symmetrize(tensor: Any, *blocks: Any) -> Tensor:
    return _as_tensor(tensor, "BlockSymmetrize").block_symmetrize(
        [_as_indices(block, "BlockSymmetrize") for block in blocks]
    )


def _exchange_symmetrize(tensor: Any, indices: Any) -> Tensor:
    return _as_tensor(tensor, "ExchangeSymmetrize").exchange_symmetrize(
        _as_indices(indices, "ExchangeSymmetrize")
    )


def _substitute(value: Any, substitution: Any) -> Any:
    substitution = _as_substitution(substitution, "Substitute")
    if isinstance(value, (Tensor, sympy.Basic)):
        return substitution.apply(value)
    raise EvaluationError(f"Substitute expects a tensor or scalar, got {_describe(value)}")


def _merge(*substitutions: Any) -> Substitution:
    return Substitution.merge(
        [_as_substitution(value, "MergeSubstitutions") for value in substitutions]
    )


def _expand(value: Any) -> Any:
    if isinstance(value, Tensor):
        return value.expand()
    if _is_scalar(value):
        return sympy.expand(value)
    raise EvaluationError(f"Expand expects a tensor or scalar, got {_describe(value)}")


BUILTINS: Dict[str, Callable[..., Any]] = {
    "HomogeneousSystem": _homogeneous_system,
    "RenameIndices": _rename_indices,
    "Add": _add_all,
    "Subtract": _subtract,
    "Multiply": _multiply_all,
    "Scale": _scale,
    "Symmetrize": _symmetrize,
    "AntiSymmetrize": _antisymmetrize,
    "BlockSymmetrize": _block_symmetrize,
    "ExchangeSymmetrize": _exchange_symmetrize,
    "Substitute": _substitute,
    "MergeSubstitutions": _merge,
    "Expand": _expand,
}


class _Evaluator(Transformer):
    def __init__(self, variables: Dict[str, Any]):
        super().__init__()
        self.variables = variables

    def program(self, items: List[Any]) -> Any:
        current = None
        for item in items:
            if isinstance(item, Token) and item.type == "SEP":
                continue
            current = item
        return current

    def assignment(self, items: List[Any]) -> Any:
        name_token, value = items
        self.variables[name_token.value] = value
        return value

    @v_args(inline=True)
    def add(self, lhs, rhs):
        return _add(lhs, rhs)

    @v_args(inline=True)
    def sub(self, lhs, rhs):
        return _add(lhs, _neg(rhs))

    @v_args(inline=True)
    def mul(self, lhs, rhs):
        return _mul(lhs, rhs)

    @v_args(inline=True)
    def div(self, lhs, rhs):
        return _div(lhs, rhs)

    @v_args(inline=True)
    def neg(self, value):
        return _neg(value)

    @v_args(inline=True)
    def number(self, token: Token):
        value = Fraction(token.value)
        return sympy.Rational(value.numerator, value.denominator)

    @v_args(inline=True)
    def name(self, token: Token):
        if token.value not in self.variables:
            raise EvaluationError(
                f"Unknown name '{token.value}' (line {token.line}, col {token.column})"
            )
        return self.variables[token.value]

    def call(self, items: List[Any]) -> Any:
        name_token: Token = items[0]
        args = items[1] if len(items) > 1 else []
        func = BUILTINS.get(name_token.value)
        if func is None:
            raise EvaluationError(
                f"Unknown function '{name_token.value}' "
                f"(line {name_token.line}, col {name_token.column})"
            )
        try:
            return func(*args)
        except TypeError as exc:
            raise EvaluationError(f"{name_token.value}: {exc}") from exc

    def args(self, items: List[Any]) -> List[Any]:
        return list(items)

    def index_list(self, items: List[Token]) -> IndexList:
        return IndexList(token.value for token in items)


class Interpreter:
    """Evaluates the mixed tensor/scalar expression language.

    ``namespace`` seeds the variables visible to the program; assignments
    add to a private copy, so the caller's mapping is never modified.
    """

    def __init__(self, namespace: Optional[Mapping[str, Any]] = None):
        self.variables: Dict[str, Any] = dict(namespace or {})
        self.current: Any = None

    def evaluate(self, source: str) -> Any:
        text = strip_comments(source)
        try:
            tree = _build_parser().parse(text)
        except UnexpectedInput as exc:
            lines = text.splitlines()
            line_text = lines[exc.line - 1] if 1 <= exc.line <= len(lines) else None
            raise ParseError(
                "Unexpected input", line=exc.line, column=exc.column, line_text=line_text
            ) from exc
        except LarkError as exc:  # pragma: no cover - grammar level failure
            raise ParseError(str(exc)) from exc

        try:
            self.current = _Evaluator(self.variables).transform(tree)
        except VisitError as exc:
            original = exc.orig_exc
            if isinstance(original, PeachError):
                raise original from None
            raise EvaluationError(f"Evaluation failed: {original}") from original
        logger.debug("evaluated %r -> %s", source, _describe(self.current))
        return self.current
