"""
Request-level failures of the generate/edit flows. Each carries the API error code
and HTTP status; task-level failures never surface here except through
GenerationFailedError.
"""
from dataclasses import asdict, dataclass
from typing import Any

from thumbgen.services.generation.outcomes import FailureReason


@dataclass(frozen=True)
class RefundFailureWarning:
    """A refund owed to the caller that did not apply; pending manual reconciliation."""
    amount: int
    reason: str
    request_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class GenerationError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, refund_failure_warning: RefundFailureWarning | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.refund_failure_warning = refund_failure_warning
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update({k: v for k, v in self.context.items() if v is not None})
        if self.refund_failure_warning is not None:
            body["refund_failure_warning"] = self.refund_failure_warning.to_dict()
        return body


class InsufficientCreditsError(GenerationError):
    code = FailureReason.INSUFFICIENT.value
    status_code = 403

    def __init__(self, required: int, available: int | None):
        shortfall = required - available if available is not None else None
        super().__init__(
            "Insufficient credits",
            required=required,
            available=available,
            shortfall=shortfall,
        )
        self.required = required
        self.available = available
        self.shortfall = shortfall


class InvalidRequestError(GenerationError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ArtifactNotFoundError(GenerationError):
    code = "NOT_FOUND"
    status_code = 404


class RequestInProgressError(GenerationError):
    code = "REQUEST_IN_PROGRESS"
    status_code = 409


class DatabaseFaultError(GenerationError):
    code = FailureReason.DATABASE_ERROR.value


class GenerationFailedError(GenerationError):
    """The only requested output failed; `code` is the task failure reason."""

    def __init__(self, reason: FailureReason, message: str = "Failed to generate thumbnail", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.code = reason.value
