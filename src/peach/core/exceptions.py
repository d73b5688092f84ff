from __future__ import annotations

from typing import Any, Optional


class PeachError(Exception):
    """Base class for peach-specific exceptions."""


class ParseError(PeachError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        line_text: Optional[str] = None,
    ):
        detail = _format_location(line, column, line_text)
        super().__init__(f"{message}{detail}")
        self.line = line
        self.column = column
        self.line_text = line_text

    @classmethod
    def at_offset(cls, message: str, text: str, offset: int) -> "ParseError":
        """Build an error pointing at ``offset`` (0-based) inside ``text``."""
        offset = max(0, min(offset, len(text)))
        line = text.count("\n", 0, offset) + 1
        line_start = text.rfind("\n", 0, offset) + 1
        line_end = text.find("\n", offset)
        if line_end == -1:
            line_end = len(text)
        return cls(
            message,
            line=line,
            column=offset - line_start + 1,
            line_text=text[line_start:line_end],
        )


class ShapeError(PeachError, ValueError):
    pass


class EvaluationError(PeachError, RuntimeError):
    pass


class InvalidSubstitutionError(PeachError, ValueError):
    def __init__(self, message: str = "The substitution is invalid"):
        super().__init__(message)


class CoefficientError(PeachError, RuntimeError):
    pass


class SolveError(PeachError, RuntimeError):
    def __init__(self, message: str, *, equation: Any = None):
        super().__init__(message)
        self.equation = equation


def _format_location(
    line: Optional[int],
    column: Optional[int],
    line_text: Optional[str],
) -> str:
    if line is None and column is None:
        return ""
    location = []
    if line is not None:
        location.append(f"line {line}")
    if column is not None:
        location.append(f"col {column}")
    location_str = f" ({', '.join(location)})"
    if line_text is None or column is None or column < 1:
        return location_str
    caret = " " * (column - 1) + "^"
    return f"{location_str}\n  {line_text}\n  {caret}"
