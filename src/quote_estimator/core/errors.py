"""Typed pipeline errors carried inside ``Err`` results."""

from enum import Enum
from typing import Any

from attrs import field, frozen
from beartype import beartype


class ErrorKind(str, Enum):
    """Failure categories a caller can render a message for."""

    CONFIG_UNAVAILABLE = "config_unavailable"
    MISSING_CREDENTIAL = "missing_credential"
    INFERENCE_ERROR = "inference_error"
    VERSION_CONFLICT = "version_conflict"
    QUOTE_NOT_FOUND = "quote_not_found"
    INVALID_REQUEST = "invalid_request"


@frozen
class PipelineError:
    """A structured, terminal failure of one pipeline stage."""

    kind: ErrorKind = field()
    message: str = field()
    details: dict[str, Any] = field(factory=dict)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@beartype
def config_unavailable(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.CONFIG_UNAVAILABLE, message, details)


@beartype
def missing_credential(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.MISSING_CREDENTIAL, message, details)


@beartype
def inference_error(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.INFERENCE_ERROR, message, details)


@beartype
def version_conflict(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.VERSION_CONFLICT, message, details)


@beartype
def quote_not_found(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.QUOTE_NOT_FOUND, message, details)


@beartype
def invalid_request(message: str, **details: Any) -> PipelineError:
    return PipelineError(ErrorKind.INVALID_REQUEST, message, details)
