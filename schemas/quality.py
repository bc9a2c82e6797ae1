"""Quality-control schemas: assessments, loop options, attempt history."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from schemas.generation import GenerationResult

Severity = Literal["high", "medium", "low"]

AcceptReason = Literal[
    "passed",
    "qc_disabled",
    "no_payload",
    "budget_exhausted",
    "no_guidance",
]


class QualityIssue(BaseModel):
    description: str
    severity: Severity = "medium"
    location: str = ""


class QualityAssessment(BaseModel):
    score: int = Field(default=0, ge=0, le=100)
    passed: bool = False
    issues: list[QualityIssue] = Field(default_factory=list)
    adjusted_prompt: str | None = None
    # Out-of-band note (e.g. why the scorer fell back); never shown to the model.
    diagnostic: str = ""

    @classmethod
    def synthetic_pass(cls, diagnostic: str = "") -> "QualityAssessment":
        return cls(score=100, passed=True, diagnostic=diagnostic)

    @classmethod
    def could_not_analyze(cls, diagnostic: str = "") -> "QualityAssessment":
        return cls(
            score=0,
            passed=False,
            issues=[QualityIssue(description="could not analyze", severity="high")],
            diagnostic=diagnostic,
        )


class PurposeContext(BaseModel):
    """What the scored image is for; selects the rubric."""

    purpose: str = "general"
    segment_type: str = ""
    camera_view: str = ""
    product_name: str = ""


class LoopOptions(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    qc_enabled: bool = True
    score_threshold: int = Field(default=80, ge=0, le=100)
    # passed=false with neither issues nor an adjusted prompt: stop instead of
    # regenerating with the identical prompt.
    force_accept_without_guidance: bool = True


class RetryState(BaseModel):
    """Transient state of one loop invocation."""

    current_prompt: str
    attempt_count: int = 0
    last_result: GenerationResult | None = None
    last_assessment: QualityAssessment | None = None


class AttemptRecord(BaseModel):
    attempt: int
    prompt: str
    success: bool
    score: int | None = None
    passed: bool | None = None
    issue_count: int = 0
    correction: Literal["", "adjusted_prompt", "corrector", "unchanged"] = ""


class LoopOutcome(BaseModel):
    result: GenerationResult
    prompt: str
    attempts: int
    assessment: QualityAssessment
    accepted_reason: AcceptReason
    history: list[AttemptRecord] = Field(default_factory=list)
