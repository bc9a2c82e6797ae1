"""Per-field content generation + production prompt writers.

`generate_content` is the generic per-field entry point (descriptions,
audiences, scripts, hooks, ...). The remaining functions write the prompts
that feed image / video generation: character frames, B-roll frames, B-roll
motion and talking-head animation.
"""

from __future__ import annotations

import logging

from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, PipelineError, StageResult, error_kind_of
from pipeline.product_analysis import build_product_context
from pipeline.prompt_templates import DEFAULT_REGISTRY, PromptTemplateRegistry
from pipeline.providers import TextProvider
from prompts.production_system import (
    BROLL_FRAME_SYSTEM,
    CHARACTER_FRAME_SYSTEM,
    MOTION_SYSTEM,
    TALKING_HEAD_SYSTEM,
)
from schemas.generation import GenerationMode, GenerationRequest
from schemas.research import ProductAnalysis
from schemas.script import ScriptSegment

logger = logging.getLogger(__name__)


def strip_wrapping_quotes(text: str) -> str:
    cleaned = (text or "").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _run_text(
    stage: str,
    provider: TextProvider,
    system_prompt: str,
    user_prompt: str,
    cancel: CancelToken | None,
) -> StageResult:
    try:
        result = provider.generate_text(system_prompt=system_prompt, user_prompt=user_prompt, cancel=cancel)
    except PipelineError as exc:
        return StageResult.from_error(stage, exc)
    if not result.success:
        return StageResult.fail(stage, error_kind_of(result), result.error_message, provider=result.provider)
    text = strip_wrapping_quotes(result.text)
    if not text:
        return StageResult.fail(stage, ErrorKind.CAPABILITY, "model returned empty text", provider=result.provider)
    return StageResult.ok(stage, text, provider=result.provider)


# ---------------------------------------------------------------------------
# Generic per-field generation
# ---------------------------------------------------------------------------

def generate_content(
    request: GenerationRequest,
    text_provider: TextProvider,
    iterate_provider: TextProvider | None = None,
    *,
    registry: PromptTemplateRegistry | None = None,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Generate one field's content.

    ITERATE requests (which always carry a current value, see
    GenerationRequest) go to the cheaper iterate provider when one is given.
    """
    context = dict(request.context)
    if request.current_value:
        context["current_value"] = request.current_value
    prompts = (registry or DEFAULT_REGISTRY).build(request.content_type, context, request.guidance)

    iterating = request.mode == GenerationMode.ITERATE
    provider = iterate_provider if iterating and iterate_provider is not None else text_provider
    stage = f"{request.mode.value}-{request.content_type.value}"
    logger.info("Content generation: %s via %s", stage, type(provider).__name__)
    return _run_text(stage, provider, prompts.system_prompt, prompts.user_prompt, cancel)


# ---------------------------------------------------------------------------
# Production prompt writers
# ---------------------------------------------------------------------------

def ensure_realism_cues(prompt: str) -> str:
    """Append the iPhone and skin-texture cues when the model left them out."""
    out = prompt.rstrip()
    lowered = out.lower()
    if "iphone" not in lowered:
        out += " Shot on iPhone 15 Pro, unedited."
    if "pore" not in lowered and "skin texture" not in lowered:
        out += " Natural skin texture with visible pores."
    return out


def generate_character_prompt(
    product: ProductAnalysis,
    text_provider: TextProvider,
    *,
    target_audience: str = "",
    product_position: str = "holding",
    camera_view: str = "selfie",
    setting: str = "home",
    cancel: CancelToken | None = None,
) -> StageResult:
    camera = (
        "Front-facing iPhone selfie (subject holding phone)"
        if camera_view == "selfie"
        else "Third-person shot (filmed by someone else with a phone)"
    )
    audience_line = f"TARGET AUDIENCE: {target_audience}\n\n" if target_audience.strip() else ""
    user_prompt = (
        "Create a hyper-realistic UGC character prompt for:\n\n"
        f"{build_product_context(product)}\n\n"
        f"{audience_line}"
        "FRAMING:\n"
        f"- Camera: {camera}\n"
        f"- Product: Subject is {product_position} the product\n"
        f"- Setting: {setting}\n\n"
        "The attached product image must be referenced exactly in the prompt. "
        "It should look like something you'd see scrolling TikTok, not a professional ad."
    )
    outcome = _run_text("character_prompt", text_provider, CHARACTER_FRAME_SYSTEM, user_prompt, cancel)
    if outcome.success:
        outcome.value = ensure_realism_cues(outcome.value)
    return outcome


def generate_broll_prompt(
    segment: ScriptSegment,
    product: ProductAnalysis,
    text_provider: TextProvider,
    *,
    cancel: CancelToken | None = None,
) -> StageResult:
    description = product.description or product.problem_solved
    user_prompt = (
        "Create a B-roll image prompt for this script segment:\n\n"
        f'SCRIPT LINE: "{segment.text}"\n'
        f"SEGMENT TYPE: {segment.type}\n\n"
        f"PRODUCT: {product.name or 'the product'}\n"
        + (f"{description}\n" if description else "")
        + (f"PRODUCT TYPE: {product.category}\n" if product.category else "")
        + "\nThe image should VISUALLY PROVE the claim in the script line.\n"
        "Use the iPhone UGC look. Real textures. Natural lighting.\n"
        "The subject or hands should match the A-roll character reference."
    )
    return _run_text("broll_prompt", text_provider, BROLL_FRAME_SYSTEM, user_prompt, cancel)


def generate_motion_prompt(
    image_prompt: str,
    script_line: str,
    text_provider: TextProvider,
    *,
    cancel: CancelToken | None = None,
) -> StageResult:
    user_prompt = (
        "Create an animation prompt for this B-roll image.\n\n"
        f"B-ROLL IMAGE CONTEXT (do not redescribe this): {image_prompt}\n\n"
        f'CORRESPONDING SCRIPT LINE: "{script_line}"\n\n'
        "Only describe MOTION: what moves and how fast, the camera movement with its position, "
        "and where the motion settles at the end. The motion should prove the script claim."
    )
    return _run_text("motion_prompt", text_provider, MOTION_SYSTEM, user_prompt, cancel)


def generate_talking_head_prompt(
    segment: ScriptSegment,
    text_provider: TextProvider,
    *,
    camera_view: str = "selfie",
    product_position: str = "holding",
    accent: str = "neutral American",
    cancel: CancelToken | None = None,
) -> StageResult:
    position = (
        "Subject is holding the product" if product_position == "holding" else "Subject is wearing the product"
    )
    user_prompt = (
        "Generate a talking-head animation prompt for this dialogue segment:\n\n"
        f'DIALOGUE: "{segment.text}"\n'
        f"CAMERA VIEW: {camera_view}\n"
        f"PRODUCT POSITION: {position}\n"
        f"ACCENT: {accent}\n"
        f"SEGMENT TYPE: {segment.type}\n\n"
        "Create a single-paragraph prompt starting with the subject speaking."
    )
    return _run_text("talking_head_prompt", text_provider, TALKING_HEAD_SYSTEM, user_prompt, cancel)
