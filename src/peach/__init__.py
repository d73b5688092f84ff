from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from .core.coefficient import (
    Coefficient,
    CoefficientKey,
    CoefficientRegistry,
    canonical_shape,
    index_series,
)
from .core.equation import Equation, EquationState, ParsedEquation, parse_equation
from .core.exceptions import (
    CoefficientError,
    EvaluationError,
    InvalidSubstitutionError,
    ParseError,
    PeachError,
    ShapeError,
    SolveError,
)
from .core.interpreter import Interpreter
from .core.session import Session, SolverConfig
from .core.substitution import Substitution
from .core.tensor import Tensor

try:
    __version__ = _load_version("peach-solver")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "Session",
    "SolverConfig",
    "Equation",
    "EquationState",
    "ParsedEquation",
    "parse_equation",
    "Coefficient",
    "CoefficientKey",
    "CoefficientRegistry",
    "canonical_shape",
    "index_series",
    "Substitution",
    "Tensor",
    "Interpreter",
    "PeachError",
    "ParseError",
    "ShapeError",
    "EvaluationError",
    "InvalidSubstitutionError",
    "CoefficientError",
    "SolveError",
    "__version__",
]
