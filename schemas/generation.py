"""Generation request / result schemas shared by every capability."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _LenientStrEnum(str, Enum):
    """Base for string enums that tolerate loose caller / LLM input.

    Handles: wrong case, spaces instead of underscores, hyphens, etc.
    If no match, falls back to the first member instead of crashing.
    """

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalised = value.strip().lower().replace(" ", "_").replace("-", "_")
            for member in cls:
                if member.value == normalised or member.name.lower() == normalised:
                    return member
        return list(cls)[0]


class ContentType(_LenientStrEnum):
    # GENERAL is first so unknown content types land on the generic template.
    GENERAL = "general"
    DESCRIPTION = "description"
    AUDIENCE = "audience"
    SCRIPT = "script"
    HOOK = "hook"
    CHARACTER = "character"
    BROLL = "broll"
    SEGMENT = "segment"
    REFINE = "refine"


class GenerationMode(_LenientStrEnum):
    FRESH = "fresh"
    ITERATE = "iterate"


class GenerationRequest(BaseModel):
    """One per-field generation ask.

    `iterate` only makes sense with something to iterate on: an empty
    `current_value` silently downgrades the request to `fresh`.
    """

    content_type: ContentType = ContentType.GENERAL
    mode: GenerationMode = GenerationMode.FRESH
    context: dict[str, Any] = Field(default_factory=dict)
    guidance: str | None = None
    current_value: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_mode(cls, data: Any) -> Any:
        if isinstance(data, dict) and str(data.get("mode", "")).strip().lower() == "generate":
            data = {**data, "mode": "fresh"}
        return data

    @model_validator(mode="after")
    def _iterate_requires_current_value(self) -> "GenerationRequest":
        if self.mode == GenerationMode.ITERATE and not (self.current_value or "").strip():
            self.mode = GenerationMode.FRESH
        return self


class PromptPair(BaseModel):
    system_prompt: str
    user_prompt: str


PayloadKind = Literal["text", "image", "video_task", "audio", "none"]


class VideoTask(BaseModel):
    task_id: str
    status: Literal["queued", "running", "succeeded", "failed"] = "queued"
    result_url: str = ""
    error: str = ""


class GenerationResult(BaseModel):
    """Output of one capability call. Owned by the caller; never cached."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    payload: Any = None
    payload_kind: PayloadKind = "none"
    provider: str = ""
    model: str = ""
    mime_type: str = ""
    error_kind: str = ""
    error_message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_payload(self) -> bool:
        if self.payload is None:
            return False
        if isinstance(self.payload, (bytes, bytearray, str, list, dict)):
            return len(self.payload) > 0
        return True

    @property
    def text(self) -> str:
        return self.payload if isinstance(self.payload, str) else ""

    @classmethod
    def failure(cls, provider: str, message: str, *, error_kind: str = "capability_error", model: str = "") -> "GenerationResult":
        return cls(
            success=False,
            provider=provider,
            model=model,
            error_kind=error_kind,
            error_message=message,
        )
