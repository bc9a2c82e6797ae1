"""Product image analysis (vision pass) + product context rendering for prompts."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, ParseFailure, PipelineError, StageResult, error_kind_of
from pipeline.llm import coerce_llm_output, extract_json_object
from pipeline.providers import VisionProvider
from prompts.research_system import PRODUCT_ANALYSIS_PROMPT
from schemas.research import ProductAnalysis

logger = logging.getLogger(__name__)

STAGE = "product_analysis"

MULTI_IMAGE_NOTE = (
    "NOTE: Multiple images of the same product are provided. "
    "Analyze all angles to build a complete picture."
)

# (context key, prompt label, sent with multiple images)
_CONTEXT_FIELDS = (
    ("brand_name", "BRAND", True),
    ("price", "PRICE", True),
    ("product_url", "PRODUCT URL", False),
    ("additional_info", "ADDITIONAL INFO", False),
)


def build_analysis_prompt(image_count: int = 1, context: dict | None = None) -> str:
    """Product-analysis prompt with optional seller context.

    A single photo gets every context field under a CONTEXT PROVIDED block.
    Several photos of the same product get the multi-angle note plus brand
    and price only.
    """
    context = context or {}
    multi = image_count > 1
    lines = []
    for key, label, with_multi in _CONTEXT_FIELDS:
        value = str(context.get(key) or "").strip()
        if value and (with_multi or not multi):
            lines.append(f"{label}: {value}")

    if multi:
        return "\n".join([f"{PRODUCT_ANALYSIS_PROMPT}\n\n{MULTI_IMAGE_NOTE}", *lines])
    if lines:
        return "\n".join([f"{PRODUCT_ANALYSIS_PROMPT}\n\nCONTEXT PROVIDED:", *lines])
    return PRODUCT_ANALYSIS_PROMPT


def analyze_product(
    images: bytes | list[bytes],
    vision: VisionProvider,
    mime_type: str = "",
    cancel: CancelToken | None = None,
    context: dict | None = None,
) -> StageResult:
    """Run the vision model over one or more product photos and parse a ProductAnalysis.

    Several photos go out in a single vision request so the model sees every
    angle at once. `mime_type` applies to the first photo; the rest are sniffed.
    """
    photos = [images] if isinstance(images, (bytes, bytearray)) else [img for img in images if img]
    if not photos or not photos[0]:
        return StageResult.fail(STAGE, ErrorKind.CAPABILITY, "no product image supplied")

    prompt = build_analysis_prompt(len(photos), context)
    logger.info(
        "=== Product analysis starting (%d image(s), %d bytes) ===",
        len(photos),
        sum(len(p) for p in photos),
    )
    kwargs = {"extra_images": list(photos[1:])} if len(photos) > 1 else {}
    try:
        result = vision.analyze_image(
            image_bytes=photos[0],
            prompt=prompt,
            mime_type=mime_type,
            cancel=cancel,
            **kwargs,
        )
    except PipelineError as exc:
        return StageResult.from_error(STAGE, exc)

    if not result.success:
        return StageResult.fail(STAGE, error_kind_of(result), result.error_message, provider=result.provider)

    try:
        data = coerce_llm_output(extract_json_object(result.text))
        analysis = ProductAnalysis.model_validate(data)
    except ParseFailure as exc:
        logger.warning("Product analysis returned no JSON: %s", exc)
        return StageResult.fail(STAGE, ErrorKind.PARSE, str(exc), provider=result.provider)
    except ValidationError as exc:
        logger.warning("Product analysis JSON did not match schema: %s", exc)
        return StageResult.fail(
            STAGE,
            ErrorKind.PARSE,
            f"product analysis did not match the expected shape ({exc.error_count()} errors)",
            provider=result.provider,
        )

    logger.info("Product analysis complete: %s (%s)", analysis.name or "unnamed", analysis.category or "uncategorised")
    return StageResult.ok(STAGE, analysis, provider=result.provider)


def build_product_context(analysis: ProductAnalysis) -> str:
    """Render the analysis as a prompt block; empty fields are left out."""
    lines = [f"PRODUCT: {analysis.name or 'the product'}"]
    if analysis.category:
        category = analysis.category
        if analysis.subcategory:
            category += f" > {analysis.subcategory}"
        lines.append(f"Category: {category}")
    if analysis.description:
        lines.append(f"Description: {analysis.description}")

    vf = analysis.visual_features
    if vf.colors:
        lines.append(f"Colors: {', '.join(vf.colors)}")
    if vf.materials:
        lines.append(f"Materials: {', '.join(vf.materials)}")
    if vf.design_style:
        lines.append(f"Design: {vf.design_style}")

    if analysis.functional_features:
        lines.append(f"Key Features: {'; '.join(analysis.functional_features)}")
    if analysis.usage:
        lines.append(f"Usage: {analysis.usage}")

    benefits = analysis.benefits
    if benefits.primary:
        lines.append(f"Primary Benefit: {benefits.primary}")
    if benefits.secondary:
        lines.append(f"Secondary Benefits: {'; '.join(benefits.secondary)}")
    if benefits.emotional:
        lines.append(f"Emotional Benefits: {'; '.join(benefits.emotional)}")

    if analysis.problem_solved:
        lines.append(f"Problem Solved: {analysis.problem_solved}")
    if analysis.positioning.usp:
        lines.append(f"USP: {analysis.positioning.usp}")
    return "\n".join(lines)
