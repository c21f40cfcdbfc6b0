"""Structured field errors used by admission validation.

Errors are addressed with a `FieldPath` such as `spec.subscriptions[0].git.repoURL`
so that rejections point at the offending part of the submitted document.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

__all__ = [
    "ErrorType",
    "FieldPath",
    "FieldError",
]


class ErrorType(StrEnum):
    """Category of a field error."""

    INVALID = "Invalid value"
    REQUIRED = "Required value"
    FORBIDDEN = "Forbidden"


@dataclass(frozen=True)
class FieldPath:
    """Path to a field within a resource document."""

    name: str
    parent: "FieldPath | None" = None
    index: int | None = None

    def child(self, name: str) -> "FieldPath":
        """Return the path of a named child field."""
        return FieldPath(name, parent=self)

    def at(self, index: int) -> "FieldPath":
        """Return the path of an element of this list field."""
        return FieldPath(self.name, parent=self.parent, index=index)

    def __str__(self) -> str:
        prefix = f"{self.parent}." if self.parent else ""
        suffix = f"[{self.index}]" if self.index is not None else ""
        return f"{prefix}{self.name}{suffix}"


@dataclass(frozen=True)
class FieldError:
    """A single validation failure for one field."""

    type: ErrorType
    field: FieldPath
    value: Any = None
    detail: str = ""

    def __str__(self) -> str:
        message = f"{self.field}: {self.type}"
        if self.type == ErrorType.INVALID:
            message += f": {self.value!r}"
        if self.detail:
            message += f": {self.detail}"
        return message


def invalid(field: FieldPath, value: Any, detail: str) -> FieldError:
    return FieldError(ErrorType.INVALID, field, value, detail)


def required(field: FieldPath, detail: str = "") -> FieldError:
    return FieldError(ErrorType.REQUIRED, field, None, detail)


def forbidden(field: FieldPath, detail: str) -> FieldError:
    return FieldError(ErrorType.FORBIDDEN, field, None, detail)
