from __future__ import annotations

import re
import string
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..log import get_logger
from .exceptions import CoefficientError, ShapeError
from .substitution import Substitution
from .tensor import Tensor

logger = get_logger(__name__)

Shape = Tuple[int, int, int, int]
CoefficientObserver = Callable[["Coefficient"], None]

_NAME_SANITIZE_RE = re.compile(r"[^A-Za-z0-9_]")


def canonical_shape(left: int, left_derivatives: int, right: int, right_derivatives: int) -> Shape:
    """Order the two index blocks so that the larger one comes first.

    The blocks (each with its derivative indices) are swapped when the left
    block has fewer indices, or as many indices but fewer derivative
    indices. Exchange symmetry makes both orders equivalent.
    """
    if left < right or (left == right and left_derivatives < right_derivatives):
        return right, right_derivatives, left, left_derivatives
    return left, left_derivatives, right, right_derivatives


def index_series(count: int) -> Tuple[str, ...]:
    """``a b ... z a1 b1 ... z1 a2 ...``, ``count`` labels long."""
    letters = string.ascii_lowercase
    labels = []
    for k in range(count):
        cycle, pos = divmod(k, len(letters))
        labels.append(letters[pos] + (str(cycle) if cycle else ""))
    return tuple(labels)


@dataclass(frozen=True)
class CoefficientKey:
    left: int
    left_derivatives: int
    right: int
    right_derivatives: int
    id: str

    @classmethod
    def canonical(
        cls, left: int, left_derivatives: int, right: int, right_derivatives: int, id: str
    ) -> "CoefficientKey":
        shape = canonical_shape(left, left_derivatives, right, right_derivatives)
        return cls(*shape, id=str(id))

    @property
    def shape(self) -> Shape:
        return self.left, self.left_derivatives, self.right, self.right_derivatives

    @property
    def rank(self) -> int:
        return sum(self.shape)

    @property
    def name(self) -> str:
        safe_id = _NAME_SANITIZE_RE.sub("_", self.id)
        return "Coefficient_{}_{}_{}_{}_{}".format(safe_id, *self.shape)

    def sort_key(self) -> Tuple[int, int, int, int, str]:
        return (*self.shape, self.id)


class Coefficient:
    """A shared unknown tensor.

    The owner lock grants exclusive right to mutate :attr:`tensor`. A
    separate internal lock guards the completion flag, the observer list and
    substitutions queued for the current lock holder.
    """

    def __init__(self, key: CoefficientKey):
        self.key = key
        self.name = key.name
        self.indices = index_series(key.rank)
        self._tensor: Optional[Tensor] = None
        self._finished = False
        self._lock = threading.Lock()
        self._state = threading.Lock()
        self._observers: List[CoefficientObserver] = []
        self._pending: List[Substitution] = []

    def __repr__(self) -> str:
        status = "finished" if self.is_finished else "open"
        return f"Coefficient({self.name}, {status})"

    @property
    def is_finished(self) -> bool:
        with self._state:
            return self._finished

    @property
    def tensor(self) -> Optional[Tensor]:
        return self._tensor

    def set_tensor(self, tensor: Tensor) -> None:
        """Replace the tensor; the caller must hold the owner lock."""
        if not self._lock.locked():
            raise CoefficientError(f"{self.name} must be locked before its tensor is replaced")
        self._tensor = tensor

    # ------------------------------------------------------------------ locking
    def lock(self) -> None:
        self._lock.acquire()

    def locked(self) -> bool:
        return self._lock.locked()

    def unlock(self) -> None:
        """Release the owner lock after applying any queued substitutions.

        The lock is released even when a queued substitution fails; the
        first failure is then raised as :class:`CoefficientError`.
        """
        failure: Optional[Exception] = None
        while True:
            with self._state:
                if not self._pending:
                    self._lock.release()
                    break
                pending, self._pending = self._pending, []
            for substitution in pending:
                logger.debug("applying deferred substitution to %s", self.name)
                try:
                    self._tensor = substitution.apply(self._tensor).expand()
                except Exception as exc:
                    logger.error("deferred substitution failed on %s: %s", self.name, exc)
                    if failure is None:
                        failure = exc
        if failure is not None:
            raise CoefficientError(
                f"Deferred substitution failed on {self.name}: {failure}"
            ) from failure

    def apply_or_defer(self, substitution: Substitution) -> bool:
        """Apply ``substitution`` now, or hand it to the current lock holder.

        Never blocks on the owner lock. Returns False when the coefficient
        is not finished yet and nothing was done.
        """
        with self._state:
            if not self._finished:
                return False
            if not self._lock.acquire(blocking=False):
                self._pending.append(substitution)
                logger.debug("%s is busy, substitution deferred", self.name)
                return True
        try:
            self._tensor = substitution.apply(self._tensor).expand()
        finally:
            self.unlock()
        return True

    # ---------------------------------------------------------------- observers
    def register_observer(self, observer: CoefficientObserver) -> None:
        with self._state:
            self._observers.append(observer)

    def complete(self, tensor: Tensor) -> None:
        """Store the final tensor, mark finished and notify observers once."""
        if tensor.rank != self.key.rank:
            raise ShapeError(
                f"{self.name} expects a rank {self.key.rank} tensor, got rank {tensor.rank}"
            )
        self.lock()
        try:
            with self._state:
                if self._finished:
                    raise CoefficientError(f"{self.name} is already finished")
                self._tensor = tensor.with_indices(self.indices)
                self._finished = True
                observers = list(self._observers)
        finally:
            self.unlock()
        logger.debug("%s finished, notifying %d observer(s)", self.name, len(observers))
        for observer in observers:
            observer(self)


class CoefficientRegistry:
    """Table of shared coefficients, keyed by canonical shape and id."""

    def __init__(self) -> None:
        self._coefficients: Dict[CoefficientKey, Coefficient] = {}
        self._lock = threading.Lock()

    def get(
        self,
        left: int,
        left_derivatives: int,
        right: int,
        right_derivatives: int,
        id: str,
    ) -> Coefficient:
        key = CoefficientKey.canonical(left, left_derivatives, right, right_derivatives, id)
        with self._lock:
            coefficient = self._coefficients.get(key)
            if coefficient is None:
                coefficient = Coefficient(key)
                self._coefficients[key] = coefficient
                logger.debug("registered %s", coefficient.name)
            return coefficient

    def items(self) -> List[Tuple[CoefficientKey, Coefficient]]:
        with self._lock:
            return list(self._coefficients.items())

    def by_name(self, name: str) -> Optional[Coefficient]:
        for _, coefficient in self.items():
            if coefficient.name == name:
                return coefficient
        return None

    def __iter__(self) -> Iterator[Coefficient]:
        return iter([coefficient for _, coefficient in self.items()])

    def __len__(self) -> int:
        with self._lock:
            return len(self._coefficients)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._coefficients
