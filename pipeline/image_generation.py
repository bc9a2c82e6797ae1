"""Image generation wrapped in the QC loop + per-segment visual fan-out."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import config
from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, StageResult
from pipeline.providers import ImageProvider
from pipeline.qc_loop import RetryableGenerationLoop
from pipeline.quality_scorer import QualityScorer
from schemas.generation import GenerationResult
from schemas.quality import LoopOptions, PurposeContext, QualityAssessment
from schemas.script import ScriptSegment

logger = logging.getLogger(__name__)


def threshold_for(purpose: str) -> int:
    if purpose == "character":
        return config.QC_THRESHOLD_CHARACTER
    if purpose == "broll":
        return config.QC_THRESHOLD_BROLL
    return config.QC_THRESHOLD_DEFAULT


def default_loop_options(purpose: str = "general", **overrides) -> LoopOptions:
    values = {
        "max_retries": config.QC_MAX_RETRIES,
        "qc_enabled": True,
        "score_threshold": threshold_for(purpose),
        "force_accept_without_guidance": config.QC_FORCE_ACCEPT_WITHOUT_GUIDANCE,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return LoopOptions(**values)


def generate_image_with_qc(
    prompt: str,
    *,
    image_provider: ImageProvider,
    scorer: QualityScorer,
    corrector: Callable[[str, QualityAssessment], str | None] | None = None,
    reference_images: list[bytes] | None = None,
    aspect_ratio: str = "9:16",
    purpose: PurposeContext | None = None,
    threshold: int | None = None,
    max_retries: int | None = None,
    qc_enabled: bool = True,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Generate an image and re-generate until it passes QC or the budget runs out.

    Returns the QC loop's StageResult (value: LoopOutcome).
    """
    purpose_ctx = purpose or PurposeContext()
    options = default_loop_options(
        purpose_ctx.purpose,
        score_threshold=threshold,
        max_retries=max_retries,
        qc_enabled=qc_enabled,
    )
    refs = list(reference_images or [])

    def _generate(current_prompt: str) -> GenerationResult:
        return image_provider.generate_image(
            prompt=current_prompt,
            reference_images=refs,
            aspect_ratio=aspect_ratio,
            cancel=cancel,
        )

    def _score(result: GenerationResult, current_prompt: str) -> QualityAssessment:
        return scorer.assess(
            result.payload,
            current_prompt,
            purpose_ctx,
            cancel,
            mime_type=result.mime_type,
            threshold=options.score_threshold,
        )

    def _correct(current_prompt: str, assessment: QualityAssessment) -> str | None:
        if corrector is None:
            return None
        return corrector(current_prompt, assessment, cancel)

    logger.info(
        "=== Image generation (%s) starting: threshold=%d retries=%d refs=%d ===",
        purpose_ctx.purpose, options.score_threshold, options.max_retries, len(refs),
    )
    loop = RetryableGenerationLoop(correct_fn=_correct if corrector is not None else None)
    return loop.run(prompt, _generate, _score, options, cancel=cancel)


def generate_segment_visuals(
    segments: list[ScriptSegment],
    prompts: dict[int, str],
    *,
    image_provider: ImageProvider,
    scorer: QualityScorer,
    corrector: Callable[..., str | None] | None = None,
    reference_images: list[bytes] | None = None,
    product_name: str = "",
    max_parallel: int | None = None,
    cancel: CancelToken | None = None,
) -> list[tuple[ScriptSegment, StageResult]]:
    """Render one QC'd frame per segment that has a prompt, in segment order.

    Segments are independent, so they fan out on a thread pool; each loop run
    stays sequential inside its worker.
    """
    todo = [seg for seg in segments if (prompts.get(seg.index) or "").strip()]
    if not todo:
        return []
    workers = max(1, min(max_parallel or config.SEGMENT_MAX_PARALLEL, len(todo)))

    def _render(segment: ScriptSegment) -> StageResult:
        if cancel is not None and cancel.cancelled:
            return StageResult.fail("qc_loop", ErrorKind.CANCELLED, cancel.reason or "cancelled")
        purpose = "broll" if segment.type == "broll" else "character"
        return generate_image_with_qc(
            prompts[segment.index],
            image_provider=image_provider,
            scorer=scorer,
            corrector=corrector,
            reference_images=reference_images,
            purpose=PurposeContext(purpose=purpose, segment_type=segment.type, product_name=product_name),
            cancel=cancel,
        )

    logger.info("Rendering %d segment frames with %d workers", len(todo), workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(_render, todo))
    return list(zip(todo, results))
