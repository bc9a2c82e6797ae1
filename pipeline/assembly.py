"""Edit assembly: turn finished A-roll / B-roll clips into an editing guide.

Three entry points, all returning StageResult:

- `analyze_for_assembly` sends the script, product and clip inventory, plus
  one frame per clip that has one, to the vision model in a single request
  and returns a step-by-step editing guide. With no frames at all the same
  brief goes to the text model instead.
- `generate_timeline` condenses a guide into a one-line clip-order timeline.
- `analyze_clip` rates one clip frame against the script line it supports.

`assemble_edit` runs the first two back to back. A failed timeline does not
sink the guide: the plan comes back with `timeline=None` and a diagnostic.
"""

from __future__ import annotations

import logging
import re

from pydantic import ValidationError

from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, ParseFailure, PipelineError, StageResult, error_kind_of
from pipeline.llm import coerce_llm_output, extract_json_object
from pipeline.providers import TextProvider, VisionProvider
from prompts.production_system import (
    ASSEMBLY_EDITOR_SYSTEM,
    ASSEMBLY_EDITOR_TASK,
    CLIP_REVIEW_PROMPT,
    TIMELINE_SYSTEM,
)
from schemas.assembly import AssemblyPlan, ClipAsset, ClipReview
from schemas.research import ProductAnalysis
from schemas.script import ScriptSegment

logger = logging.getLogger(__name__)

STAGE = "assembly"
TIMELINE_STAGE = "assembly_timeline"
CLIP_STAGE = "clip_review"

_TIMELINE_EXCERPT_CHARS = 50
_RATING_RE = re.compile(r"\b(10|[1-9])\s*(?:/|out of)\s*10\b", re.IGNORECASE)
_CLIP_LABELS = {"aroll": "A-ROLL", "broll": "B-ROLL"}


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------

def _script_block(segments: list[ScriptSegment]) -> str:
    lines = []
    for position, segment in enumerate(segments, start=1):
        tag = " - HOOK" if segment.type == "hook" else ""
        lines.append(f'[Segment {position}{tag}]: "{segment.text}"')
    return "\n".join(lines)


def frame_labels(clips: list[ClipAsset]) -> list[str]:
    """Labels for attached frames, in attachment order: A-roll first, then B-roll."""
    labels = []
    for kind in ("aroll", "broll"):
        numbered = [clip for clip in clips if clip.kind == kind]
        for number, clip in enumerate(numbered, start=1):
            if clip.frame:
                labels.append(f"[{_CLIP_LABELS[kind]} CLIP {number} - Segment {clip.segment}]")
    return labels


def _frames_in_order(clips: list[ClipAsset]) -> list[bytes]:
    return [
        clip.frame
        for kind in ("aroll", "broll")
        for clip in clips
        if clip.kind == kind and clip.frame
    ]


def build_assembly_prompt(
    segments: list[ScriptSegment],
    clips: list[ClipAsset],
    product: ProductAnalysis | None = None,
    has_voiceover: bool = False,
) -> str:
    aroll = sum(1 for clip in clips if clip.kind == "aroll")
    broll = sum(1 for clip in clips if clip.kind == "broll")
    product_lines = [product.name if product and product.name else "Unknown product"]
    if product and product.description:
        product_lines.append(product.description)

    labels = frame_labels(clips)
    if labels:
        frames = "Frames are attached in this order:\n" + "\n".join(
            f"Image {n}: {label}" for n, label in enumerate(labels, start=1)
        )
    else:
        frames = "No frames are attached; plan from the script and inventory alone."

    return "\n\n".join(
        [
            f"## SCRIPT\n{_script_block(segments)}",
            "## PRODUCT\n" + "\n".join(product_lines),
            (
                "## AVAILABLE ASSETS\n"
                f"- A-Roll clips: {aroll} talking head videos\n"
                f"- B-Roll clips: {broll} supporting scene videos\n"
                f"- Voiceover: {'Yes' if has_voiceover else 'No'}"
            ),
            frames,
            ASSEMBLY_EDITOR_TASK,
        ]
    )


def build_timeline_prompt(guide: str, segments: list[ScriptSegment]) -> str:
    excerpts = []
    for position, segment in enumerate(segments, start=1):
        text = segment.text
        if len(text) > _TIMELINE_EXCERPT_CHARS:
            text = text[:_TIMELINE_EXCERPT_CHARS] + "..."
        excerpts.append(f'{position}. "{text}"')
    return f"EDITING GUIDE:\n{guide}\n\nSEGMENTS:\n" + "\n".join(excerpts)


# ---------------------------------------------------------------------------
# Stage entry points
# ---------------------------------------------------------------------------

def analyze_for_assembly(
    segments: list[ScriptSegment],
    clips: list[ClipAsset],
    *,
    vision: VisionProvider,
    text_provider: TextProvider,
    product: ProductAnalysis | None = None,
    has_voiceover: bool = False,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Editing guide for the finished clips; value is an AssemblyPlan without a timeline."""
    if not segments:
        return StageResult.fail(STAGE, ErrorKind.CAPABILITY, "script segments are required")

    user_prompt = build_assembly_prompt(segments, clips, product, has_voiceover)
    frames = _frames_in_order(clips)
    logger.info(
        "=== Assembly analysis: %d segments, %d clips, %d frames ===",
        len(segments), len(clips), len(frames),
    )

    try:
        if frames:
            kwargs = {"extra_images": frames[1:]} if len(frames) > 1 else {}
            result = vision.analyze_image(
                image_bytes=frames[0],
                prompt=f"{ASSEMBLY_EDITOR_SYSTEM}\n\n{user_prompt}",
                cancel=cancel,
                **kwargs,
            )
        else:
            result = text_provider.generate_text(
                system_prompt=ASSEMBLY_EDITOR_SYSTEM,
                user_prompt=user_prompt,
                cancel=cancel,
            )
    except PipelineError as exc:
        return StageResult.from_error(STAGE, exc)

    if not result.success:
        return StageResult.fail(STAGE, error_kind_of(result), result.error_message, provider=result.provider)
    guide = result.text.strip()
    if not guide:
        return StageResult.fail(STAGE, ErrorKind.CAPABILITY, "model returned an empty editing guide", provider=result.provider)

    plan = AssemblyPlan(
        editing_guide=guide,
        aroll_count=sum(1 for clip in clips if clip.kind == "aroll"),
        broll_count=sum(1 for clip in clips if clip.kind == "broll"),
        frames_attached=len(frames),
    )
    return StageResult.ok(STAGE, plan, provider=result.provider)


def generate_timeline(
    guide: str,
    segments: list[ScriptSegment],
    text_provider: TextProvider,
    cancel: CancelToken | None = None,
) -> StageResult:
    if not guide.strip():
        return StageResult.fail(TIMELINE_STAGE, ErrorKind.CAPABILITY, "no editing guide to condense")
    try:
        result = text_provider.generate_text(
            system_prompt=TIMELINE_SYSTEM,
            user_prompt=build_timeline_prompt(guide, segments),
            cancel=cancel,
        )
    except PipelineError as exc:
        return StageResult.from_error(TIMELINE_STAGE, exc)
    if not result.success:
        return StageResult.fail(TIMELINE_STAGE, error_kind_of(result), result.error_message, provider=result.provider)
    timeline = result.text.strip()
    if not timeline:
        return StageResult.fail(TIMELINE_STAGE, ErrorKind.CAPABILITY, "model returned an empty timeline", provider=result.provider)
    return StageResult.ok(TIMELINE_STAGE, timeline, provider=result.provider)


def assemble_edit(
    segments: list[ScriptSegment],
    clips: list[ClipAsset],
    *,
    vision: VisionProvider,
    text_provider: TextProvider,
    product: ProductAnalysis | None = None,
    has_voiceover: bool = False,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Editing guide plus timeline.

    Cancellation or timeout during the timeline call still fails the stage,
    with the guide attached as the value.
    """
    analysis = analyze_for_assembly(
        segments,
        clips,
        vision=vision,
        text_provider=text_provider,
        product=product,
        has_voiceover=has_voiceover,
        cancel=cancel,
    )
    if not analysis.success:
        return analysis

    plan: AssemblyPlan = analysis.value
    timeline = generate_timeline(plan.editing_guide, segments, text_provider, cancel=cancel)
    if timeline.success:
        plan.timeline = timeline.value
        return StageResult.ok(STAGE, plan, provider=analysis.provider)

    if timeline.error_kind in (ErrorKind.CANCELLED, ErrorKind.TIMEOUT):
        return StageResult.fail(
            STAGE, timeline.error_kind, timeline.error_message, provider=analysis.provider, value=plan
        )
    logger.warning("Timeline generation failed; returning guide without it: %s", timeline.error_message)
    return StageResult.ok(
        STAGE,
        plan,
        provider=analysis.provider,
        diagnostics=[f"timeline: {timeline.error_kind.value}: {timeline.error_message}"],
    )


def parse_clip_review(text: str) -> ClipReview:
    """JSON review when the model gave one, else the first "N/10" in prose."""
    try:
        data = coerce_llm_output(extract_json_object(text))
    except ParseFailure:
        match = _RATING_RE.search(text or "")
        if not match:
            raise ParseFailure("clip review has no JSON and no N/10 rating", raw=text or "")
        return ClipReview(rating=int(match.group(1)), notes=text.strip())

    if isinstance(data, dict) and isinstance(data.get("rating"), (int, float)):
        data["rating"] = min(10, max(1, round(data["rating"])))
    try:
        return ClipReview.model_validate(data)
    except ValidationError as exc:
        raise ParseFailure(f"clip review did not match the expected shape ({exc.error_count()} errors)", raw=text) from exc


def analyze_clip(
    frame: bytes,
    clip_kind: str,
    segment_text: str,
    vision: VisionProvider,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Rate one clip frame (1-10) against the script line it should support."""
    if not frame:
        return StageResult.fail(CLIP_STAGE, ErrorKind.CAPABILITY, "no clip frame supplied")

    label = _CLIP_LABELS.get(clip_kind, clip_kind or "video")
    prompt = CLIP_REVIEW_PROMPT.format(clip_type=label, segment_text=segment_text)
    try:
        result = vision.analyze_image(image_bytes=frame, prompt=prompt, cancel=cancel)
    except PipelineError as exc:
        return StageResult.from_error(CLIP_STAGE, exc)
    if not result.success:
        return StageResult.fail(CLIP_STAGE, error_kind_of(result), result.error_message, provider=result.provider)

    try:
        review = parse_clip_review(result.text)
    except ParseFailure as exc:
        logger.warning("Clip review unreadable: %s", exc)
        return StageResult.fail(CLIP_STAGE, ErrorKind.PARSE, str(exc), provider=result.provider)

    logger.info("Clip review (%s): %d/10%s", label, review.rating, ", regenerate" if review.needs_regeneration else "")
    return StageResult.ok(CLIP_STAGE, review, provider=result.provider)
