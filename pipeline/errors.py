"""Error taxonomy and the tagged result every pipeline stage returns.

Stages never raise across their boundary. Internally adapters raise one of the
PipelineError subclasses; the stage entry point catches it and converts it
into a StageResult with an ErrorKind, the stage name and the provider's
message, so a caller can retry a single stage.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    CAPABILITY = "capability_error"
    QUALITY = "quality_failure"
    PARSE = "parse_failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class PipelineError(Exception):
    """Base error with the stage and provider that produced it."""

    kind = ErrorKind.CAPABILITY

    def __init__(
        self,
        message: str,
        stage: str = "",
        provider: str = "",
        cause: Exception | None = None,
    ):
        self.stage = stage
        self.provider = provider
        self.cause = cause
        super().__init__(message)


class CapabilityError(PipelineError):
    """The provider call itself failed (network, auth, rate limit, bad request)."""

    kind = ErrorKind.CAPABILITY


class QualityFailure(PipelineError):
    """A generated artifact scored below its acceptance threshold."""

    kind = ErrorKind.QUALITY


class ParseFailure(PipelineError):
    """Model output could not be interpreted as the expected shape."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, raw: str = "", **kwargs):
        self.raw = raw
        super().__init__(message, **kwargs)


class TaskTimeoutError(PipelineError, TimeoutError):
    """An async task did not reach a terminal state within its budget."""

    kind = ErrorKind.TIMEOUT


class OperationCancelled(PipelineError):
    kind = ErrorKind.CANCELLED


class StageResult(BaseModel):
    """Tagged success/failure value returned by every stage entry point.

    `value` may be populated on failure too (e.g. a partial research brief).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    stage: str = ""
    value: Any = None
    error_kind: ErrorKind | None = None
    error_message: str = ""
    provider: str = ""
    diagnostics: list[str] = Field(default_factory=list)

    @classmethod
    def ok(
        cls,
        stage: str,
        value: Any = None,
        *,
        provider: str = "",
        diagnostics: list[str] | None = None,
    ) -> "StageResult":
        return cls(
            success=True,
            stage=stage,
            value=value,
            provider=provider,
            diagnostics=list(diagnostics or []),
        )

    @classmethod
    def fail(
        cls,
        stage: str,
        kind: ErrorKind,
        message: str,
        *,
        provider: str = "",
        value: Any = None,
        diagnostics: list[str] | None = None,
    ) -> "StageResult":
        return cls(
            success=False,
            stage=stage,
            value=value,
            error_kind=kind,
            error_message=message,
            provider=provider,
            diagnostics=list(diagnostics or []),
        )

    @classmethod
    def from_error(cls, stage: str, exc: Exception, *, value: Any = None) -> "StageResult":
        """Convert any exception into a failure; unknown types count as capability errors."""
        if isinstance(exc, PipelineError):
            return cls.fail(
                exc.stage or stage,
                exc.kind,
                str(exc),
                provider=exc.provider,
                value=value,
            )
        return cls.fail(stage, ErrorKind.CAPABILITY, f"{type(exc).__name__}: {exc}", value=value)

    def unwrap(self) -> Any:
        """Return the value or raise the matching PipelineError."""
        if self.success:
            return self.value
        raise _ERROR_TYPES.get(self.error_kind, PipelineError)(
            self.error_message or "stage failed",
            stage=self.stage,
            provider=self.provider,
        )


_ERROR_TYPES: dict[ErrorKind | None, type[PipelineError]] = {
    ErrorKind.CAPABILITY: CapabilityError,
    ErrorKind.QUALITY: QualityFailure,
    ErrorKind.PARSE: ParseFailure,
    ErrorKind.TIMEOUT: TaskTimeoutError,
    ErrorKind.CANCELLED: OperationCancelled,
}


def error_kind_of(result: Any, default: ErrorKind = ErrorKind.CAPABILITY) -> ErrorKind:
    """ErrorKind of a failed GenerationResult (its `error_kind` is a plain string)."""
    raw = str(getattr(result, "error_kind", "") or "")
    try:
        return ErrorKind(raw)
    except ValueError:
        return default
