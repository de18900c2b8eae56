"""
Exceptions raised by differentiable functions.

All of them derive from :class:`GradFnError`, and each one also derives from the builtin
exception a caller would naturally catch (``ValueError`` for bad inputs, ``RuntimeError`` for
misuse of the forward/backward protocol).
"""

from typing import Optional, Sequence


class GradFnError(Exception):
    """Base class for every error raised by the operator library."""


class ShapeMismatchError(GradFnError, ValueError):
    """
    Operand or gradient dimensions are incompatible.

    Examples:
        >>> raise ShapeMismatchError("Add", expected=(2, 3), actual=(3, 2))
        Traceback (most recent call last):
        ...
        gradfn.errors.ShapeMismatchError: Add: expected shape (2, 3), got (3, 2)
    """

    def __init__(
        self,
        op_name: str,
        message: Optional[str] = None,
        expected: Optional[Sequence[int]] = None,
        actual: Optional[Sequence[int]] = None,
    ):
        self.op_name = op_name
        self.expected = tuple(expected) if expected is not None else None
        self.actual = tuple(actual) if actual is not None else None
        if message is None:
            message = f"expected shape {self.expected}, got {self.actual}"
        super().__init__(f"{op_name}: {message}")


class DomainError(GradFnError, ValueError):
    """Invalid mathematical input, e.g. the logarithm of a negative number."""


class MissingCachedStateError(GradFnError, RuntimeError):
    """
    ``backward`` was invoked without a matching ``forward``, or the cached state
    of the function was already consumed.
    """


class ConfigurationError(GradFnError, ValueError):
    """Invalid operator parameters, e.g. a negative row index."""
