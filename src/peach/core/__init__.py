"""Core modules for peach."""

__all__ = [
    "coefficient",
    "equation",
    "exceptions",
    "interpreter",
    "session",
    "substitution",
    "tensor",
]
