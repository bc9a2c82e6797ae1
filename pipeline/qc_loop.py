"""Generate -> score -> correct -> regenerate, with a bounded retry budget.

Acceptance rules, in order, per attempt:
  1. generation failed (or raised): stop with that error, no scoring
  2. QC disabled or nothing to score: accept with a synthetic pass
  3. score >= threshold or assessment.passed: accept
  4. budget spent (max_retries + 1 attempts): accept the last result
  5. choose the next prompt: the scorer's adjusted prompt, else a corrector
     rewrite from the issue list, else (no guidance at all) force-accept
     when `force_accept_without_guidance` is set, or retry unchanged
"""

from __future__ import annotations

import logging
from typing import Callable

from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, OperationCancelled, PipelineError, StageResult, error_kind_of
from schemas.generation import GenerationResult
from schemas.quality import (
    AcceptReason,
    AttemptRecord,
    LoopOptions,
    LoopOutcome,
    QualityAssessment,
    RetryState,
)

logger = logging.getLogger(__name__)

STAGE = "qc_loop"

GenerateFn = Callable[[str], GenerationResult]
ScoreFn = Callable[[GenerationResult, str], QualityAssessment]
CorrectFn = Callable[[str, QualityAssessment], "str | None"]


class RetryableGenerationLoop:
    def __init__(self, correct_fn: CorrectFn | None = None):
        self.correct_fn = correct_fn

    def run(
        self,
        initial_prompt: str,
        generate_fn: GenerateFn,
        score_fn: ScoreFn,
        options: LoopOptions | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> StageResult:
        opts = options or LoopOptions()
        state = RetryState(current_prompt=initial_prompt)
        history: list[AttemptRecord] = []
        max_attempts = opts.max_retries + 1

        def _accept(reason: AcceptReason, assessment: QualityAssessment) -> StageResult:
            logger.info(
                "QC loop accepted after %d attempt(s): %s (score=%d)",
                state.attempt_count, reason, assessment.score,
            )
            outcome = LoopOutcome(
                result=state.last_result,
                prompt=state.current_prompt,
                attempts=state.attempt_count,
                assessment=assessment,
                accepted_reason=reason,
                history=history,
            )
            return StageResult.ok(STAGE, outcome, provider=state.last_result.provider)

        for attempt in range(1, max_attempts + 1):
            if cancel is not None:
                if cancel.cancelled:
                    return StageResult.fail(STAGE, ErrorKind.CANCELLED, cancel.reason or "cancelled")
                if cancel.expired:
                    return StageResult.fail(STAGE, ErrorKind.TIMEOUT, "deadline exceeded before next attempt")

            state.attempt_count = attempt
            prompt = state.current_prompt
            logger.info("QC loop attempt %d/%d", attempt, max_attempts)

            try:
                result = generate_fn(prompt)
            except Exception as exc:
                logger.error("QC loop attempt %d: generation raised %s", attempt, exc)
                history.append(AttemptRecord(attempt=attempt, prompt=prompt, success=False))
                return StageResult.from_error(STAGE, exc)

            if not result.success:
                logger.error("QC loop attempt %d: generation failed: %s", attempt, result.error_message)
                history.append(AttemptRecord(attempt=attempt, prompt=prompt, success=False))
                return StageResult.fail(
                    STAGE,
                    error_kind_of(result),
                    result.error_message or "generation failed",
                    provider=result.provider,
                    diagnostics=[f"attempt {attempt}"],
                )
            state.last_result = result

            if not opts.qc_enabled or not result.has_payload:
                reason: AcceptReason = "qc_disabled" if not opts.qc_enabled else "no_payload"
                assessment = QualityAssessment.synthetic_pass(reason)
                state.last_assessment = assessment
                history.append(AttemptRecord(attempt=attempt, prompt=prompt, success=True, score=100, passed=True))
                return _accept(reason, assessment)

            try:
                assessment = score_fn(result, prompt)
            except OperationCancelled as exc:
                return StageResult.from_error(STAGE, exc)
            except PipelineError as exc:
                logger.warning("QC loop attempt %d: scoring raised %s", attempt, exc)
                assessment = QualityAssessment.could_not_analyze(f"{exc.kind.value}: {exc}")
            except Exception as exc:
                logger.warning("QC loop attempt %d: scoring raised %s", attempt, exc)
                assessment = QualityAssessment.could_not_analyze(f"{type(exc).__name__}: {exc}")
            state.last_assessment = assessment

            record = AttemptRecord(
                attempt=attempt,
                prompt=prompt,
                success=True,
                score=assessment.score,
                passed=assessment.passed,
                issue_count=len(assessment.issues),
            )
            history.append(record)

            if assessment.score >= opts.score_threshold or assessment.passed:
                return _accept("passed", assessment)

            if attempt >= max_attempts:
                logger.warning(
                    "QC loop budget exhausted after %d attempts; accepting score %d",
                    attempt, assessment.score,
                )
                return _accept("budget_exhausted", assessment)

            if assessment.adjusted_prompt:
                record.correction = "adjusted_prompt"
                state.current_prompt = assessment.adjusted_prompt
            elif assessment.issues:
                corrected = None
                if self.correct_fn is not None:
                    try:
                        corrected = self.correct_fn(prompt, assessment)
                    except Exception as exc:
                        logger.warning("QC loop attempt %d: corrector raised %s", attempt, exc)
                        corrected = None
                if corrected and corrected.strip():
                    record.correction = "corrector"
                    state.current_prompt = corrected.strip()
                else:
                    record.correction = "unchanged"
            elif opts.force_accept_without_guidance:
                return _accept("no_guidance", assessment)
            else:
                record.correction = "unchanged"

            logger.info(
                "QC loop attempt %d scored %d (< %d); next prompt: %s",
                attempt, assessment.score, opts.score_threshold, record.correction,
            )

        # range() always ends in one of the returns above
        raise AssertionError("unreachable")
