"""Vision-based QC scoring for generated images + prompt correction.

QualityScorer never raises for a bad model answer: anything it cannot read
becomes a score-0 "could not analyze" assessment with the reason kept in
`diagnostic`, which the QC loop treats as a normal failed attempt.
"""

from __future__ import annotations

import logging
from typing import Any

from pipeline.cancellation import CancelToken
from pipeline.errors import ParseFailure, PipelineError
from pipeline.llm import extract_json_object
from pipeline.providers import TextProvider, VisionProvider
from prompts.production_system import PROMPT_REPAIR_SYSTEM
from prompts.quality_control import QC_RESPONSE_SHAPE, QC_RUBRICS, QC_SYSTEM_PROMPT
from schemas.quality import PurposeContext, QualityAssessment, QualityIssue

logger = logging.getLogger(__name__)

_SEVERITIES = {"high", "medium", "low"}
_SEVERITY_ALIASES = {
    "critical": "high",
    "major": "high",
    "severe": "high",
    "moderate": "medium",
    "med": "medium",
    "minor": "low",
    "trivial": "low",
}


def _normalise_severity(raw: Any) -> str:
    value = str(raw or "").strip().lower()
    if value in _SEVERITIES:
        return value
    return _SEVERITY_ALIASES.get(value, "medium")


def _clamp_score(raw: Any) -> int:
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, int(round(score))))


def _normalise_issues(raw: Any) -> list[QualityIssue]:
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    issues: list[QualityIssue] = []
    for item in raw:
        if isinstance(item, str):
            if item.strip():
                issues.append(QualityIssue(description=item.strip()))
        elif isinstance(item, dict):
            description = str(item.get("issue") or item.get("description") or item.get("problem") or "").strip()
            if not description:
                continue
            issues.append(
                QualityIssue(
                    description=description,
                    severity=_normalise_severity(item.get("severity")),
                    location=str(item.get("location") or "").strip(),
                )
            )
    return issues


def assessment_from_payload(data: dict[str, Any], threshold: int) -> QualityAssessment:
    """Normalise a parsed QC answer; `passed` is explicit true or score >= threshold."""
    score = _clamp_score(data.get("score"))
    adjusted = data.get("adjustedPrompt", data.get("adjusted_prompt"))
    adjusted = str(adjusted).strip() if isinstance(adjusted, str) else ""
    passed = data.get("passed") is True or score >= threshold
    return QualityAssessment(
        score=score,
        passed=passed,
        issues=_normalise_issues(data.get("issues")),
        adjusted_prompt=adjusted or None,
    )


def build_qc_prompt(
    originating_prompt: str,
    purpose: PurposeContext,
    checklist: list[str],
    threshold: int,
) -> str:
    context = purpose.purpose
    if purpose.segment_type:
        context += f" ({purpose.segment_type})"
    lines = [
        QC_SYSTEM_PROMPT,
        "",
        "Analyze this AI-generated image for authenticity issues.",
        "",
        f"ORIGINAL PROMPT: {originating_prompt}",
        "",
        f"CONTEXT: {context}",
    ]
    if purpose.camera_view:
        lines.append(f"CAMERA VIEW: {purpose.camera_view}")
    if purpose.product_name:
        lines.append(f"PRODUCT: {purpose.product_name}")
    lines += ["", "CHECK FOR:"]
    lines += [f"{i}. {item}" for i, item in enumerate(checklist, start=1)]
    lines += [
        "",
        f"Pass threshold: {threshold}. If it fails, include a full corrected prompt.",
        "Return ONLY JSON in this shape:",
        QC_RESPONSE_SHAPE,
    ]
    return "\n".join(lines)


class QualityScorer:
    """Scores an image against the rubric for its purpose."""

    def __init__(
        self,
        vision: VisionProvider,
        threshold: int = 80,
        rubrics: dict[str, list[str]] | None = None,
    ):
        self.vision = vision
        self.threshold = threshold
        self.rubrics = dict(QC_RUBRICS if rubrics is None else rubrics)

    def checklist_for(self, purpose: PurposeContext) -> list[str]:
        for key in (purpose.purpose, purpose.segment_type, "general"):
            if key and key in self.rubrics:
                return self.rubrics[key]
        return []

    def assess(
        self,
        image_bytes: bytes,
        originating_prompt: str,
        purpose_context: PurposeContext | None = None,
        cancel: CancelToken | None = None,
        *,
        mime_type: str = "",
        threshold: int | None = None,
    ) -> QualityAssessment:
        purpose = purpose_context or PurposeContext()
        pass_mark = self.threshold if threshold is None else threshold
        prompt = build_qc_prompt(originating_prompt, purpose, self.checklist_for(purpose), pass_mark)

        try:
            result = self.vision.analyze_image(
                image_bytes=image_bytes,
                prompt=prompt,
                mime_type=mime_type,
                cancel=cancel,
            )
        except PipelineError as exc:
            logger.warning("QC vision call raised: %s", exc)
            return QualityAssessment.could_not_analyze(f"{exc.kind.value}: {exc}")

        if not result.success:
            logger.warning("QC vision call failed: %s", result.error_message)
            return QualityAssessment.could_not_analyze(f"{result.error_kind or 'capability_error'}: {result.error_message}")

        try:
            data = extract_json_object(result.text)
        except ParseFailure as exc:
            logger.warning("QC answer was not JSON: %s", exc)
            return QualityAssessment.could_not_analyze(f"parse_failure: {exc}")

        assessment = assessment_from_payload(data, pass_mark)
        logger.info(
            "QC score=%d passed=%s issues=%d (%s)",
            assessment.score, assessment.passed, len(assessment.issues), purpose.purpose,
        )
        return assessment


class PromptCorrector:
    """Rewrites a failed prompt from the assessment's issue list (cheap model).

    Returns None when the rewrite fails so the caller keeps its prompt.
    """

    def __init__(self, text_provider: TextProvider):
        self.text_provider = text_provider

    def __call__(
        self,
        prompt: str,
        assessment: QualityAssessment,
        cancel: CancelToken | None = None,
    ) -> str | None:
        issues = "\n".join(f"- {issue.description} ({issue.severity})" for issue in assessment.issues)
        user_prompt = (
            "Fix this image generation prompt based on quality issues found:\n\n"
            f"ORIGINAL PROMPT:\n{prompt}\n\n"
            f"ISSUES FOUND:\n{issues}\n\n"
            "Generate a corrected prompt that addresses ALL issues while maintaining the original intent.\n"
            "Focus on adding anti-AI-gloss modifiers and natural imperfections."
        )
        try:
            result = self.text_provider.generate_text(
                system_prompt=PROMPT_REPAIR_SYSTEM,
                user_prompt=user_prompt,
                cancel=cancel,
            )
        except PipelineError as exc:
            logger.warning("Prompt correction raised: %s", exc)
            return None
        corrected = result.text.strip() if result.success else ""
        if not corrected:
            logger.warning("Prompt correction failed: %s", result.error_message or "empty output")
            return None
        return corrected
