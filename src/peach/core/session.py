from __future__ import annotations

import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Mapping, Optional

from ..log import get_logger
from .coefficient import Coefficient, CoefficientRegistry
from .equation import Equation
from .interpreter import Interpreter
from .tensor import Tensor

logger = get_logger(__name__)


@dataclass
class SolverConfig:
    """
    Settings of a solving session.

    * ``dimension`` is the range of every index (spatial indices run over
      1..3, hence the default of 3).
    * ``max_workers`` bounds the worker pool that runs equation solves;
      ``None`` keeps the :class:`ThreadPoolExecutor` default.
    * ``solve_timeout`` limits :meth:`Session.wait_all` (seconds).
    """

    dimension: int = 3
    max_workers: Optional[int] = None
    thread_name_prefix: str = "peach-equation"
    solve_timeout: Optional[float] = None

    def normalized(self) -> "SolverConfig":
        dimension = int(self.dimension)
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {self.dimension}")
        workers = self.max_workers
        if workers is not None:
            workers = int(workers)
            if workers <= 0:
                raise ValueError("max_workers must be positive when provided")
        timeout = self.solve_timeout
        if timeout is not None:
            timeout = float(timeout)
            if timeout < 0:
                raise ValueError("solve_timeout must be non-negative when provided")
        prefix = self.thread_name_prefix or "peach-equation"
        return replace(
            self,
            dimension=dimension,
            max_workers=workers,
            thread_name_prefix=prefix,
            solve_timeout=timeout,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SolverConfig":
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("PEACH_DIMENSION"):
            config = replace(config, dimension=int(env["PEACH_DIMENSION"]))
        if env.get("PEACH_MAX_WORKERS"):
            config = replace(config, max_workers=int(env["PEACH_MAX_WORKERS"]))
        return config.normalized()


class Session:
    """A solving session: one coefficient registry and one worker pool.

    Sessions are independent of each other; equations only see the
    coefficients of the session they were created in.
    """

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        registry: Optional[CoefficientRegistry] = None,
    ):
        self.config = (config or SolverConfig()).normalized()
        self.registry = registry if registry is not None else CoefficientRegistry()
        self.equations: List[Equation] = []
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix=self.config.thread_name_prefix,
        )
        self._closed = False

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------ construction
    def coefficient(
        self,
        left: int,
        left_derivatives: int,
        right: int,
        right_derivatives: int,
        id: str,
    ) -> Coefficient:
        return self.registry.get(left, left_derivatives, right, right_derivatives, id)

    def equation(self, code: str) -> Equation:
        equation = Equation(code, self)
        self.equations.append(equation)
        return equation

    def interpreter(self, namespace: Optional[Mapping[str, Any]] = None) -> Interpreter:
        return Interpreter(namespace)

    def general_tensor(self, coefficient: Coefficient, prefix: Optional[str] = None) -> Tensor:
        """The most general tensor for ``coefficient``: one symbol per component."""
        return Tensor.general(
            coefficient.indices, self.config.dimension, prefix or coefficient.name
        )

    def complete_general(self, coefficient: Coefficient, prefix: Optional[str] = None) -> None:
        coefficient.complete(self.general_tensor(coefficient, prefix))

    # ---------------------------------------------------------------- execution
    def submit(self, fn: Callable[[], Any]) -> Future:
        return self._executor.submit(fn)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """Wait for every non-empty equation; False if the timeout expires.

        Raises the error of the first failed equation.
        """
        if timeout is None:
            timeout = self.config.solve_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        for equation in list(self.equations):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not equation.wait(remaining):
                return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for equation in list(self.equations):
            equation.join()
        self._executor.shutdown(wait=True)
        logger.debug("session closed with %d coefficient(s)", len(self.registry))
