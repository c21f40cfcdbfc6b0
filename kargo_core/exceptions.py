"""Exceptions related to kargo-core."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import FieldError

__all__ = [
    "KargoException",
    "InputException",
    "ValidationError",
    "ConflictError",
    "AlreadyExistsError",
    "ObjectNotFoundError",
    "InternalError",
    "TransientSourceError",
    "PlatformUnavailableError",
    "CommandException",
]


class KargoException(Exception):
    """Generic base exception used for this library."""


class InputException(KargoException):
    """Raised when the input documents are not formatted as expected."""


class ValidationError(InputException):
    """Raised when admission rejects a resource with one or more field errors."""

    def __init__(self, kind: str, name: str, errors: list["FieldError"]) -> None:
        self.kind = kind
        self.name = name
        self.errors = errors
        details = ", ".join(str(err) for err in errors)
        super().__init__(f'{kind} "{name}" is invalid: {details}')


class ConflictError(KargoException):
    """Raised when a resource conflicts with an existing object it does not own."""

    def __init__(self, resource: str, name: str, message: str) -> None:
        self.resource = resource
        self.name = name
        super().__init__(
            f'Operation cannot be fulfilled on {resource} "{name}": {message}'
        )


class AlreadyExistsError(KargoException):
    """Raised when creating an object that is already present in the store."""


class ObjectNotFoundError(KargoException):
    """Raised when an object is not found in the store."""


class InternalError(KargoException):
    """Raised for unexpected failures talking to the object store."""


class TransientSourceError(KargoException):
    """Raised when candidates could not be fetched from an artifact source.

    The failure is recorded on the owning resource and retried on the next pass.
    """


class PlatformUnavailableError(TransientSourceError):
    """Raised when an image tag has no variant for the subscribed platform."""


class CommandException(KargoException):
    """Raised when there is a failure running a subcommand."""
