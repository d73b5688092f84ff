from __future__ import annotations

import enum
import threading
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from ..log import get_logger
from .coefficient import Coefficient, CoefficientKey, index_series
from .exceptions import CoefficientError, ParseError, SolveError
from .substitution import Substitution

if TYPE_CHECKING:
    from .session import Session

logger = get_logger(__name__)

EquationObserver = Callable[["Equation"], None]

TAG_OPEN = "#<"
TAG_CLOSE = ">"
COMMENT = "//"
_SHAPE_FIELDS = ("l", "ld", "r", "rd")


class EquationState(enum.Enum):
    WAITING = "waiting"
    SOLVING = "solving"
    SOLVED = "solved"
    FAILED = "failed"


_TERMINAL = (EquationState.SOLVED, EquationState.FAILED)


@dataclass
class CoefficientTag:
    """One ``#<id:l:ld:r:rd:indices>`` occurrence, shape already canonical."""

    key: CoefficientKey
    indices: str
    offset: int


@dataclass
class ParsedEquation:
    body: str
    tags: List[CoefficientTag] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.tags or not self.body.strip()

    @property
    def expression(self) -> str:
        return f"subst = HomogeneousSystem({self.body}):"


def rename_call(key: CoefficientKey, indices: str) -> str:
    series = " ".join(index_series(key.rank))
    return f"RenameIndices({key.name}, {{{series}}}, {indices})"


def _shape_field(text: str, source: str, offset: int, label: str) -> int:
    value = text.strip()
    if not (value.isascii() and value.isdigit()):
        raise ParseError.at_offset(
            f"Coefficient field '{label}' must be a non-negative integer, got '{text}'",
            source,
            offset,
        )
    return int(value)


def parse_equation(code: str) -> ParsedEquation:
    """Extract coefficient tags and rewrite them into ``RenameIndices`` calls.

    A tag reads ``#<id:l:ld:r:rd:indices>``. The first five ``:`` separate
    the fields; the trailing index list is forwarded untouched. ``//``
    discards the rest of the input. Everything outside tags is copied as is.
    """
    body: List[str] = []
    tags: List[CoefficientTag] = []
    i = 0
    size = len(code)
    while i < size:
        if code.startswith(COMMENT, i):
            break
        if not code.startswith(TAG_OPEN, i):
            body.append(code[i])
            i += 1
            continue

        start = i
        i += len(TAG_OPEN)
        fields: List[Tuple[str, int]] = []
        field_start = i
        while i < size and code[i] != TAG_CLOSE and not code.startswith(COMMENT, i):
            if code[i] == ":" and len(fields) < 5:
                fields.append((code[field_start:i], field_start))
                field_start = i + 1
            i += 1
        if i >= size or code[i] != TAG_CLOSE:
            raise ParseError.at_offset("Unterminated coefficient tag", code, start)
        if len(fields) < 5:
            raise ParseError.at_offset(
                "Coefficient tag must read #<id:l:ld:r:rd:indices>", code, start
            )

        ident = fields[0][0].strip()
        left, left_deriv, right, right_deriv = (
            _shape_field(text, code, offset, label)
            for (text, offset), label in zip(fields[1:], _SHAPE_FIELDS)
        )
        key = CoefficientKey.canonical(left, left_deriv, right, right_deriv, ident)
        indices = code[field_start:i]
        tags.append(CoefficientTag(key=key, indices=indices, offset=start))
        body.append(rename_call(key, indices))
        i += len(TAG_CLOSE)

    return ParsedEquation(body="".join(body), tags=tags)


class Equation:
    """One equation of the system.

    The source is the expression language extended by coefficient tags
    ``#<id:l:ld:r:rd:{indices}>``, where ``l``/``r`` count the indices in the
    left/right block and ``ld``/``rd`` the derivative indices of each block.
    For example::

        Add(Symmetrize(#<lambda:2:0:2:0:{a b c d}>, {b d}), #<mu:4:0:0:0:{a b c d}>)

    The equation subscribes to every coefficient it mentions. Once all of
    them are finished it is solved on the session's worker pool: the body is
    set to zero, solved for its variables and the resulting substitution is
    written back into every finished coefficient of the registry.
    """

    def __init__(self, code: str, session: "Session"):
        self.session = session
        self.source = code
        self.coefficients: List[Coefficient] = []
        self.substitution: Optional[Substitution] = None
        self._observers: List[EquationObserver] = []
        self._condition = threading.Condition()
        self._state = EquationState.WAITING
        self._error: Optional[SolveError] = None
        self._ready = False
        self._scheduled = False
        self._future: Optional[Future] = None

        self.parse(code)
        with self._condition:
            self._ready = True
        # Coefficients may have finished before this equation subscribed.
        if self.coefficients:
            self.on_coefficient_calculated(None)

    def __repr__(self) -> str:
        return f"Equation({self.source.strip()!r}, {self.state.value})"

    def __enter__(self) -> "Equation":
        return self

    def __exit__(self, *exc_info) -> None:
        self.join()

    # ------------------------------------------------------------------ parsing
    def parse(self, code: str) -> None:
        parsed = parse_equation(code)
        self.body = parsed.body
        self.expression = parsed.expression
        self._empty = parsed.is_empty
        for tag in parsed.tags:
            coefficient = self.session.registry.get(*tag.key.shape, tag.key.id)
            if any(existing is coefficient for existing in self.coefficients):
                continue
            self.coefficients.append(coefficient)
            coefficient.register_observer(self.on_coefficient_calculated)

    # ------------------------------------------------------------------- state
    @property
    def state(self) -> EquationState:
        with self._condition:
            return self._state

    @property
    def is_waiting(self) -> bool:
        return self.state is EquationState.WAITING

    @property
    def is_solving(self) -> bool:
        return self.state is EquationState.SOLVING

    @property
    def is_solved(self) -> bool:
        return self.state is EquationState.SOLVED

    @property
    def is_failed(self) -> bool:
        return self.state is EquationState.FAILED

    @property
    def is_empty(self) -> bool:
        return self._empty

    @property
    def error(self) -> Optional[SolveError]:
        with self._condition:
            return self._error

    # ---------------------------------------------------------------- observers
    def register_observer(self, observer: EquationObserver) -> None:
        with self._condition:
            self._observers.append(observer)

    def on_coefficient_calculated(self, coefficient: Optional[Coefficient]) -> None:
        """Schedule the solve once every dependency is finished."""
        if self._empty:
            return
        with self._condition:
            if not self._ready or self._scheduled:
                return
            if not all(dependency.is_finished for dependency in self.coefficients):
                return
            self._scheduled = True
            logger.debug("scheduling %r", self)
            self._future = self.session.submit(self.solve)

    # ------------------------------------------------------------------- solving
    def solve(self) -> None:
        with self._condition:
            if self._state is not EquationState.WAITING:
                raise SolveError(f"{self!r} was already solved", equation=self)
            self._state = EquationState.SOLVING
        logger.info("solving %r", self)

        # A single global lock order across all equations.
        ordered = sorted(self.coefficients, key=lambda c: c.key.sort_key())
        acquired: List[Coefficient] = []
        substitution: Optional[Substitution] = None
        error: Optional[SolveError] = None
        try:
            for coefficient in ordered:
                coefficient.lock()
                acquired.append(coefficient)

            substitution = self._evaluate()

            # Every new tensor is computed before anything is committed.
            own = set(ordered)
            others = [c for c in self.session.registry if c not in own and c.is_finished]
            updates = [(c, substitution.apply(c.tensor).expand()) for c in ordered]
            for other in others:
                substitution.apply(other.tensor)

            for coefficient, tensor in updates:
                coefficient.set_tensor(tensor)
            for other in others:
                other.apply_or_defer(substitution)
        except Exception as exc:
            error = SolveError(f"Failed to solve {self!r}: {exc}", equation=self)
            error.__cause__ = exc
        finally:
            for coefficient in reversed(acquired):
                try:
                    coefficient.unlock()
                except CoefficientError as exc:
                    if error is None:
                        error = SolveError(f"Failed to solve {self!r}: {exc}", equation=self)
                        error.__cause__ = exc

        if error is not None:
            logger.error("%s", error, exc_info=error.__cause__)
            self._finish(EquationState.FAILED, error)
            return
        self.substitution = substitution
        logger.info("solved %r with %d relation(s)", self, len(substitution or ()))
        self._finish(EquationState.SOLVED)

    def _evaluate(self) -> Substitution:
        namespace = {c.name: c.tensor for c in self.coefficients}
        result = self.session.interpreter(namespace).evaluate(self.expression)
        if not isinstance(result, Substitution):
            raise SolveError(
                f"Expression evaluated to {type(result).__name__}, expected a substitution",
                equation=self,
            )
        return result

    def _finish(self, state: EquationState, error: Optional[SolveError] = None) -> None:
        with self._condition:
            self._state = state
            self._error = error
            self._condition.notify_all()
            observers = list(self._observers)
        for observer in observers:
            observer(self)

    # ------------------------------------------------------------------ waiting
    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the equation is solved.

        Returns False if ``timeout`` expires first. Raises the
        :class:`SolveError` of a failed solve. Empty equations return at once.
        """
        if self._empty:
            return True
        with self._condition:
            done = self._condition.wait_for(lambda: self._state in _TERMINAL, timeout)
            error = self._error
        if error is not None:
            raise error
        return done

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker, if one was launched."""
        with self._condition:
            future = self._future
        if future is None:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        return bool(done)
