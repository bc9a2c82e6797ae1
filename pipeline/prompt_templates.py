"""Per-field prompt templates.

`PromptTemplateRegistry.build(content_type, context, guidance)` is pure: no
I/O, same input -> same PromptPair. Context keys may be camelCase or
snake_case. Empty values (None, "", [], {}, and literal "null" / "None" /
"undefined" strings) are dropped before rendering, so a missing field
removes its line instead of leaking a placeholder into the prompt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from prompts import content_system
from schemas.generation import ContentType, PromptPair

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_PLACEHOLDER_STRINGS = {"none", "null", "undefined", "nan"}


# ---------------------------------------------------------------------------
# Context normalisation + rendering
# ---------------------------------------------------------------------------

def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key.strip()).lower().replace(" ", "_").replace("-", "_")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or stripped.lower() in _PLACEHOLDER_STRINGS
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def normalise_context(value: Any) -> Any:
    """Snake-case keys recursively and drop empty values."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            item = normalise_context(item)
            if _is_empty(item):
                continue
            cleaned[_snake(str(key))] = item
        return cleaned
    if isinstance(value, (list, tuple)):
        return [item for item in (normalise_context(v) for v in value) if not _is_empty(item)]
    if isinstance(value, str):
        return value.strip()
    return value


def _label(key: str) -> str:
    text = key.replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def _inline(value: Any) -> str:
    if isinstance(value, dict):
        return "; ".join(f"{_label(k)}: {_inline(v)}" for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return ", ".join(_inline(v) for v in value)
    return str(value)


def render_value(value: Any, indent: int = 0) -> str:
    """Render a normalised value as labelled lines / bullets."""
    pad = "  " * indent
    if isinstance(value, dict):
        lines: list[str] = []
        for key, item in value.items():
            if isinstance(item, (dict, list)):
                lines.append(f"{pad}{_label(key)}:")
                lines.append(render_value(item, indent + 1))
            else:
                lines.append(f"{pad}{_label(key)}: {item}")
        return "\n".join(lines)
    if isinstance(value, (list, tuple)):
        return "\n".join(f"{pad}- {_inline(item)}" for item in value)
    return f"{pad}{value}"


def _line(label: str, value: Any) -> str:
    if _is_empty(value):
        return ""
    if isinstance(value, (dict, list)):
        return _section(label, value)
    return f"{label}: {value}"


def _section(label: str, value: Any) -> str:
    if _is_empty(value):
        return ""
    return f"{label}:\n{render_value(value)}"


def _quoted(label: str, value: Any) -> str:
    if _is_empty(value):
        return ""
    return f'{label}: "{value}"'


def _guidance(guidance: str | None, label: str = "Guidance") -> str:
    return _line(label, (guidance or "").strip())


def _join(*blocks: str) -> str:
    return "\n\n".join(block for block in blocks if block and block.strip())


# ---------------------------------------------------------------------------
# User-prompt builders (one per content type)
# ---------------------------------------------------------------------------

def _product(ctx: dict[str, Any], fallback: str = "this product") -> str:
    return str(ctx.get("product_name") or fallback)


def _build_description(ctx: dict[str, Any], guidance: str | None) -> str:
    return _join(
        f"Write a product description for: {_product(ctx)}",
        _line("Product info", ctx.get("product_info")),
        _section("Product analysis", ctx.get("product_analysis")),
        _guidance(guidance),
        "Write 2-3 sentences. Focus on benefits, not features.",
    )


def _build_audience(ctx: dict[str, Any], guidance: str | None) -> str:
    return _join(
        f"Define the target audience for: {_product(ctx)}",
        "\n".join(
            line
            for line in (
                _line("Product", ctx.get("product_info")),
                _line("Description", ctx.get("product_description")),
            )
            if line
        ),
        _section("Product analysis", ctx.get("product_analysis")),
        _guidance(guidance),
        "Format: Age range - Gender (if relevant) - Key characteristics - Pain points they have.\n"
        "Keep it under 50 words but be specific.",
    )


def _build_script(ctx: dict[str, Any], guidance: str | None) -> str:
    return _join(
        f"Write a UGC ad script for: {_product(ctx)}",
        "\n".join(
            line
            for line in (
                _line("Product", ctx.get("product_description")),
                _line("Target audience", ctx.get("target_audience")),
            )
            if line
        ),
        _section("Research insights", ctx.get("research")),
        _section("Product analysis", ctx.get("product_analysis")),
        _guidance(guidance, "Additional guidance"),
        "Write a natural, conversational script that sounds like a real person discovered this product "
        "and wants to share it. Start with a hook that connects to a real pain point.",
    )


def _build_hook(ctx: dict[str, Any], guidance: str | None) -> str:
    research = ctx.get("research") if isinstance(ctx.get("research"), dict) else {}
    return _join(
        f"Write 5 hook options for a UGC ad about: {_product(ctx)}",
        _line("Audience", ctx.get("target_audience")),
        _section("Pain points from research", research.get("pain_points")),
        _section("Language patterns", research.get("language_patterns")),
        _guidance(guidance),
        "Give me 5 different hook angles. Each should feel like something a real person "
        "would say to their phone camera.",
    )


def _build_character(ctx: dict[str, Any], guidance: str | None) -> str:
    details = "\n".join(
        line
        for line in (
            f"Product: {_product(ctx, 'the product')}",
            _line("Description", ctx.get("product_description")),
            f"Target audience: {ctx.get('target_audience') or 'general consumer'}",
            f"Camera view: {ctx.get('camera_view') or 'selfie'}",
            f"Product position: {ctx.get('product_position') or 'holding'}",
            f"Setting: {ctx.get('setting') or 'bedroom'}",
        )
        if line
    )
    return _join(
        "Create an image generation prompt for a UGC character.",
        details,
        _guidance(guidance),
        "Write a detailed prompt that would generate a realistic, authentic-looking UGC creator photo. "
        "Make them look like a real customer, not a model.",
    )


def _build_broll(ctx: dict[str, Any], guidance: str | None) -> str:
    script_line = ctx.get("script_line") or ctx.get("current_value")
    return _join(
        "Describe a B-roll image for this script line:",
        f'"{script_line}"' if script_line else "",
        _line("Product", ctx.get("product_info") or ctx.get("product_name")),
        _guidance(guidance),
        "Describe a single image that visually proves this claim. One paragraph.",
    )


def _build_segment(ctx: dict[str, Any], guidance: str | None) -> str:
    improving = str(ctx.get("action") or "").lower() == "improve"
    return _join(
        f"{'Improve this segment' if improving else 'Write a segment'} for a UGC ad.",
        "\n".join(
            line
            for line in (
                _quoted("Current", ctx.get("current_value")),
                _quoted("Previous segment", ctx.get("previous_segment")),
                _line("Purpose", ctx.get("segment_purpose")),
            )
            if line
        ),
        _guidance(guidance),
        "Rewrite to be more engaging and natural." if improving else "Write a 5-8 second segment.",
    )


def _build_refine(ctx: dict[str, Any], guidance: str | None) -> str:
    current = ctx.get("current_value")
    return _join(
        "Refine this content:",
        f'"{current}"' if current else "",
        _guidance(guidance, "Changes requested") or "Make it better: more natural, more engaging.",
        "Provide the improved version only.",
    )


def _build_general(ctx: dict[str, Any], guidance: str | None) -> str:
    return _join(
        str(ctx.get("task") or "Help me with this"),
        _line("Current content", ctx.get("current_value")),
        _guidance(guidance),
        "Be concise.",
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PromptTemplate:
    system_prompt: str
    build_user: Callable[[dict[str, Any], str | None], str]


DEFAULT_TEMPLATES: dict[ContentType, PromptTemplate] = {
    ContentType.DESCRIPTION: PromptTemplate(content_system.DESCRIPTION_SYSTEM, _build_description),
    ContentType.AUDIENCE: PromptTemplate(content_system.AUDIENCE_SYSTEM, _build_audience),
    ContentType.SCRIPT: PromptTemplate(content_system.SCRIPT_SYSTEM, _build_script),
    ContentType.HOOK: PromptTemplate(content_system.HOOK_SYSTEM, _build_hook),
    ContentType.CHARACTER: PromptTemplate(content_system.CHARACTER_SYSTEM, _build_character),
    ContentType.BROLL: PromptTemplate(content_system.BROLL_SYSTEM, _build_broll),
    ContentType.SEGMENT: PromptTemplate(content_system.SEGMENT_SYSTEM, _build_segment),
    ContentType.REFINE: PromptTemplate(content_system.REFINE_SYSTEM, _build_refine),
    ContentType.GENERAL: PromptTemplate(content_system.GENERAL_SYSTEM, _build_general),
}


class PromptTemplateRegistry:
    """Maps a content type to its (system prompt, user-prompt builder) pair."""

    def __init__(self, templates: dict[ContentType, PromptTemplate] | None = None):
        self._templates = dict(DEFAULT_TEMPLATES if templates is None else templates)

    def register(self, content_type: ContentType | str, template: PromptTemplate) -> None:
        self._templates[ContentType(content_type)] = template

    def get(self, content_type: ContentType | str) -> PromptTemplate:
        key = ContentType(content_type)
        return self._templates.get(key) or self._templates[ContentType.GENERAL]

    def build(
        self,
        content_type: ContentType | str,
        context: dict[str, Any] | None = None,
        guidance: str | None = None,
    ) -> PromptPair:
        template = self.get(content_type)
        ctx = normalise_context(dict(context or {}))
        user_prompt = template.build_user(ctx, (guidance or "").strip() or None)
        return PromptPair(system_prompt=template.system_prompt, user_prompt=user_prompt)


DEFAULT_REGISTRY = PromptTemplateRegistry()


def build_prompt(
    content_type: ContentType | str,
    context: dict[str, Any] | None = None,
    guidance: str | None = None,
) -> PromptPair:
    return DEFAULT_REGISTRY.build(content_type, context, guidance)
