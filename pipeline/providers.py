"""Capability adapters: text, structured, vision, image, video, speech and search.

Every stage receives its capabilities by injection. Each capability is a
Protocol with one real adapter per vendor and a deterministic mock; the
`build_*` factories pick real adapters when credentials are present and fall
back to mocks otherwise (or always, with FORCE_MOCK_PROVIDERS=1).
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import config
from pipeline import llm
from pipeline.cancellation import CancelToken, check_cancelled, request_timeout
from pipeline.errors import CapabilityError, ErrorKind, PipelineError, StageResult
from schemas.generation import GenerationResult, VideoTask

logger = logging.getLogger(__name__)

_ANTHROPIC_IMAGE_MAX_BYTES = 5 * 1024 * 1024

_DEFAULT_MODELS = {
    "openai": config.OPENAI_FRONTIER,
    "anthropic": config.ANTHROPIC_FRONTIER,
    "google": config.GOOGLE_FRONTIER,
}


# ---------------------------------------------------------------------------
# Capability interfaces
# ---------------------------------------------------------------------------

class TextProvider(Protocol):
    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Return a text GenerationResult."""


class StructuredProvider(Protocol):
    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> StageResult:
        """Return StageResult whose value is a `response_model` instance."""


class VisionProvider(Protocol):
    def analyze_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = "",
        cancel: CancelToken | None = None,
        extra_images: list[bytes] | None = None,
    ) -> GenerationResult:
        """Return the model's text answer about the image.

        `extra_images` are further shots of the same subject sent in the same
        request, after `image_bytes`.
        """


class ImageProvider(Protocol):
    def generate_image(
        self,
        *,
        prompt: str,
        reference_images: list[bytes] | None = None,
        aspect_ratio: str = "9:16",
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Return image bytes in `payload`."""


class VideoProvider(Protocol):
    def submit(
        self,
        *,
        prompt: str,
        source_image: bytes | str,
        duration_seconds: int = 5,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Start an image-to-video task; `payload` is a VideoTask."""

    def poll(self, task_id: str, cancel: CancelToken | None = None) -> GenerationResult:
        """Read the task back; `payload` is a VideoTask."""


class SpeechProvider(Protocol):
    def synthesize(
        self,
        *,
        text: str,
        voice_id: str = "",
        stability: float = 0.5,
        style: float = 0.0,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Return audio bytes in `payload`."""


class SearchProvider(Protocol):
    def search(
        self,
        *,
        query: str,
        system_prompt: str = "",
        max_tokens: int = 4_000,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Return research prose; `metadata` carries citations and cost."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_truthy(value: str, *, default: bool = False) -> bool:
    raw = str(value or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def sniff_image_mime(data: bytes, default: str = "image/png") -> str:
    head = bytes(data[:12])
    if head.startswith(b"\x89PNG"):
        return "image/png"
    if head.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    return default


def _image_data_url(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _failure_from(provider: str, model: str, exc: Exception) -> GenerationResult:
    if isinstance(exc, PipelineError):
        return GenerationResult.failure(provider, str(exc), error_kind=exc.kind.value, model=model)
    return GenerationResult.failure(provider, f"[{provider}/{model}] {type(exc).__name__}: {exc}", model=model)


def _provider_has_key(provider: str) -> bool:
    key = {
        "openai": config.OPENAI_API_KEY,
        "anthropic": config.ANTHROPIC_API_KEY,
        "google": config.GOOGLE_API_KEY,
    }.get(provider, "")
    return bool(str(key or "").strip())


# ---------------------------------------------------------------------------
# LLM-backed text + structured adapters
# ---------------------------------------------------------------------------

class LLMTextProvider:
    """TextProvider over `llm.call_llm` with one stage's model assignment."""

    def __init__(self, stage: str = "generate", *, provider: str | None = None, model: str | None = None):
        stage_conf = config.get_stage_llm_config(stage)
        self.stage = stage
        self.provider = provider or stage_conf["provider"]
        self.model = model or stage_conf["model"]
        self.temperature = stage_conf["temperature"]
        self.max_tokens = stage_conf["max_tokens"]

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        try:
            text = llm.call_llm(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                provider=self.provider,
                model=self.model,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                cancel=cancel,
            )
        except Exception as exc:
            return _failure_from(self.provider, self.model, exc)
        return GenerationResult(
            success=True,
            payload=text.strip(),
            payload_kind="text",
            provider=self.provider,
            model=self.model,
        )


class LLMStructuredProvider:
    """StructuredProvider over `llm.call_llm_structured`."""

    def __init__(self, stage: str = "research", *, provider: str | None = None, model: str | None = None):
        stage_conf = config.get_stage_llm_config(stage)
        self.stage = stage
        self.provider = provider or stage_conf["provider"]
        self.model = model or stage_conf["model"]
        self.temperature = stage_conf["temperature"]
        self.max_tokens = stage_conf["max_tokens"]

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> StageResult:
        try:
            parsed = llm.call_llm_structured(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=response_model,
                provider=self.provider,
                model=self.model,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                cancel=cancel,
            )
        except Exception as exc:
            logger.error("Structured call (%s) failed: %s", response_model.__name__, exc)
            return StageResult.from_error(self.stage, exc)
        return StageResult.ok(self.stage, parsed, provider=self.provider)


# ---------------------------------------------------------------------------
# Vision adapters
# ---------------------------------------------------------------------------

class OpenAIVisionProvider:
    """OpenAI multimodal adapter (image as data URL)."""

    name = "openai_vision"

    def __init__(self, model: str | None = None):
        if not str(config.OPENAI_API_KEY or "").strip():
            raise CapabilityError("OPENAI_API_KEY is required for OpenAI vision.", provider=self.name)
        from openai import OpenAI

        self._client = OpenAI(api_key=config.OPENAI_API_KEY)
        self.model = model or config.VISION_MODEL

    def analyze_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = "",
        cancel: CancelToken | None = None,
        extra_images: list[bytes] | None = None,
    ) -> GenerationResult:
        mime = mime_type or sniff_image_mime(image_bytes)
        content: list[dict] = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": _image_data_url(image_bytes, mime)}},
        ]
        for extra in extra_images or []:
            content.append({"type": "image_url", "image_url": {"url": _image_data_url(extra, sniff_image_mime(extra))}})
        model_candidates: list[str] = []
        for candidate in (self.model, config.OPENAI_FRONTIER):
            if candidate and candidate not in model_candidates:
                model_candidates.append(candidate)
        last_error: Exception | None = None
        for candidate in model_candidates:
            try:
                check_cancelled(cancel, "vision")
                response = self._client.chat.completions.create(
                    model=candidate,
                    messages=[{"role": "user", "content": content}],
                    max_completion_tokens=2_000,
                    timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS),
                )
            except PipelineError as exc:
                return _failure_from(self.name, candidate, exc)
            except Exception as exc:
                logger.warning("OpenAI vision call failed (model=%s): %s", candidate, exc)
                last_error = exc
                continue
            usage = getattr(response, "usage", None)
            if usage:
                llm.record_external_usage(
                    "openai",
                    candidate,
                    input_tokens=usage.prompt_tokens or 0,
                    output_tokens=usage.completion_tokens or 0,
                    task="vision",
                )
            text = str(response.choices[0].message.content or "").strip()
            if text:
                return GenerationResult(success=True, payload=text, payload_kind="text", provider=self.name, model=candidate)
        return _failure_from(self.name, self.model, last_error or CapabilityError("empty vision response"))


class AnthropicVisionProvider:
    """Anthropic multimodal adapter (base64 image block)."""

    name = "anthropic_vision"

    def __init__(self, model: str | None = None):
        if not str(config.ANTHROPIC_API_KEY or "").strip():
            raise CapabilityError("ANTHROPIC_API_KEY is required for Anthropic vision.", provider=self.name)
        from anthropic import Anthropic

        self._client = Anthropic(api_key=config.ANTHROPIC_API_KEY)
        self.model = model or config.ANTHROPIC_FRONTIER

    def analyze_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = "",
        cancel: CancelToken | None = None,
        extra_images: list[bytes] | None = None,
    ) -> GenerationResult:
        images = [image_bytes, *(extra_images or [])]
        content: list[dict] = []
        for position, data in enumerate(images):
            if len(data) > _ANTHROPIC_IMAGE_MAX_BYTES:
                return GenerationResult.failure(
                    self.name,
                    f"image {position + 1} is {len(data)} bytes; Anthropic accepts at most {_ANTHROPIC_IMAGE_MAX_BYTES}",
                    model=self.model,
                )
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": (mime_type if position == 0 else "") or sniff_image_mime(data),
                        "data": base64.b64encode(data).decode("ascii"),
                    },
                }
            )
        content.append({"type": "text", "text": prompt})
        try:
            check_cancelled(cancel, "vision")
            response = self._client.messages.create(
                model=self.model,
                max_tokens=2_000,
                temperature=0.2,
                messages=[{"role": "user", "content": content}],
                timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS),
            )
        except Exception as exc:
            logger.warning("Anthropic vision call failed (model=%s): %s", self.model, exc)
            return _failure_from(self.name, self.model, exc)

        llm.record_external_usage(
            "anthropic",
            self.model,
            input_tokens=response.usage.input_tokens or 0,
            output_tokens=response.usage.output_tokens or 0,
            task="vision",
        )
        text = "\n".join(
            str(getattr(block, "text", "") or "")
            for block in response.content
            if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            return GenerationResult.failure(self.name, "empty vision response", model=self.model)
        return GenerationResult(success=True, payload=text, payload_kind="text", provider=self.name, model=self.model)


class GoogleVisionProvider:
    """Gemini multimodal adapter."""

    name = "google_vision"

    def __init__(self, model: str | None = None):
        if not str(config.GOOGLE_API_KEY or "").strip():
            raise CapabilityError("GOOGLE_API_KEY is required for Gemini vision.", provider=self.name)
        from google import genai

        self._client = genai.Client(api_key=config.GOOGLE_API_KEY)
        self.model = model or config.GOOGLE_FRONTIER

    def analyze_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = "",
        cancel: CancelToken | None = None,
        extra_images: list[bytes] | None = None,
    ) -> GenerationResult:
        from google.genai import types

        mime = mime_type or sniff_image_mime(image_bytes)
        try:
            check_cancelled(cancel, "vision")
            response = self._client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_text(text=prompt),
                    types.Part.from_bytes(data=image_bytes, mime_type=mime),
                    *(types.Part.from_bytes(data=extra, mime_type=sniff_image_mime(extra)) for extra in extra_images or []),
                ],
                config=types.GenerateContentConfig(
                    temperature=0.2,
                    http_options=types.HttpOptions(
                        timeout=int(request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS) * 1000)
                    ),
                ),
            )
        except Exception as exc:
            logger.warning("Gemini vision call failed (model=%s): %s", self.model, exc)
            return _failure_from(self.name, self.model, exc)

        meta = getattr(response, "usage_metadata", None)
        if meta:
            llm.record_external_usage(
                "google",
                self.model,
                input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
                output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
                task="vision",
            )
        text = str(getattr(response, "text", "") or "").strip()
        if not text:
            return GenerationResult.failure(self.name, "empty vision response", model=self.model)
        return GenerationResult(success=True, payload=text, payload_kind="text", provider=self.name, model=self.model)


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------

class GoogleGeminiImageProvider:
    """Gemini native image generation with optional product reference images."""

    name = "google_gemini"

    def __init__(self, model: str | None = None):
        if not str(config.GOOGLE_API_KEY or "").strip():
            raise CapabilityError("GOOGLE_API_KEY is required for Gemini image generation.", provider=self.name)
        from google import genai

        self._client = genai.Client(api_key=config.GOOGLE_API_KEY)
        self.model = model or config.GEMINI_IMAGE_MODEL

    def generate_image(
        self,
        *,
        prompt: str,
        reference_images: list[bytes] | None = None,
        aspect_ratio: str = "9:16",
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        from google.genai import types

        parts = [types.Part.from_text(text=str(prompt or "").strip())]
        for ref in reference_images or []:
            if ref:
                parts.append(types.Part.from_bytes(data=ref, mime_type=sniff_image_mime(ref)))

        try:
            check_cancelled(cancel, "image")
            response = self._client.models.generate_content(
                model=self.model,
                contents=parts,
                config=types.GenerateContentConfig(
                    response_modalities=["TEXT", "IMAGE"],
                    image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
                    http_options=types.HttpOptions(
                        timeout=int(request_timeout(cancel, config.LLM_TIMEOUT_SECONDS) * 1000)
                    ),
                ),
            )
        except Exception as exc:
            logger.error("Gemini image generation failed: %s", exc)
            return _failure_from(self.name, self.model, exc)

        out_bytes = b""
        out_mime = ""
        note = ""
        candidates = response.candidates if response and isinstance(response.candidates, list) else []
        for candidate in candidates:
            content = candidate.content if candidate is not None else None
            parts_out = content.parts if content is not None and isinstance(content.parts, list) else []
            for part in parts_out:
                inline_data = getattr(part, "inline_data", None)
                data = getattr(inline_data, "data", None) if inline_data is not None else None
                if data and not out_bytes:
                    out_bytes = bytes(data)
                    out_mime = str(getattr(inline_data, "mime_type", "") or "")
                elif getattr(part, "text", None):
                    note = str(part.text)
            if out_bytes:
                break

        if not out_bytes:
            return GenerationResult.failure(
                self.name,
                f"Gemini response contained no image{': ' + note[:200] if note else ''}",
                model=self.model,
            )
        return GenerationResult(
            success=True,
            payload=out_bytes,
            payload_kind="image",
            provider=self.name,
            model=self.model,
            mime_type=out_mime or sniff_image_mime(out_bytes),
            metadata={"aspect_ratio": aspect_ratio, "reference_count": len(parts) - 1, "model_note": note},
        )


# ---------------------------------------------------------------------------
# Mocks (deterministic; local dev + tests)
# ---------------------------------------------------------------------------

# 1x1 transparent PNG
_MOCK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def _digest(*values: Any) -> str:
    return hashlib.sha256("|".join(str(v) for v in values).encode("utf-8")).hexdigest()[:12]


class MockTextProvider:
    name = "mock_text"

    def __init__(self, response: str | Callable[[str, str], str] | None = None):
        self._response = response

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "text")
        if callable(self._response):
            text = self._response(system_prompt, user_prompt)
        elif self._response is not None:
            text = self._response
        else:
            first_line = next((ln.strip() for ln in user_prompt.splitlines() if ln.strip()), "")
            text = f"Mock output ({_digest(system_prompt, user_prompt)}): {first_line[:120]}"
        return GenerationResult(success=True, payload=text, payload_kind="text", provider=self.name, model="mock")


class MockStructuredProvider:
    """Returns canned values per response model, or the model's defaults."""

    name = "mock_structured"

    def __init__(self, responses: dict[type, Any] | None = None):
        self._responses = dict(responses or {})

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type,
        max_tokens: int | None = None,
        temperature: float | None = None,
        cancel: CancelToken | None = None,
    ) -> StageResult:
        check_cancelled(cancel, "structured")
        canned = self._responses.get(response_model, {})
        try:
            value = canned if isinstance(canned, response_model) else response_model.model_validate(canned)
        except Exception as exc:
            return StageResult.fail("structured", ErrorKind.PARSE, str(exc), provider=self.name)
        return StageResult.ok("structured", value, provider=self.name)


class MockVisionProvider:
    name = "mock_vision"

    def __init__(self, response: str | None = None):
        self._response = response if response is not None else json.dumps(
            {"score": 90, "passed": True, "issues": [], "adjustedPrompt": None}
        )

    def analyze_image(
        self,
        *,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = "",
        cancel: CancelToken | None = None,
        extra_images: list[bytes] | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "vision")
        return GenerationResult(success=True, payload=self._response, payload_kind="text", provider=self.name, model="mock")


class MockImageProvider:
    name = "mock_image"

    def generate_image(
        self,
        *,
        prompt: str,
        reference_images: list[bytes] | None = None,
        aspect_ratio: str = "9:16",
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "image")
        return GenerationResult(
            success=True,
            payload=_MOCK_PNG,
            payload_kind="image",
            provider=self.name,
            model="mock",
            mime_type="image/png",
            metadata={"prompt_digest": _digest(prompt, aspect_ratio), "aspect_ratio": aspect_ratio},
        )


class MockVideoProvider:
    """Task completes after `polls_until_done` polls."""

    name = "mock_video"

    def __init__(self, polls_until_done: int = 1):
        self.polls_until_done = max(1, int(polls_until_done))
        self._polls: dict[str, int] = {}

    def submit(
        self,
        *,
        prompt: str,
        source_image: bytes | str,
        duration_seconds: int = 5,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "video_submit")
        task_id = f"mock_{_digest(prompt, duration_seconds)}"
        self._polls[task_id] = 0
        return GenerationResult(
            success=True,
            payload=VideoTask(task_id=task_id, status="queued"),
            payload_kind="video_task",
            provider=self.name,
            model="mock",
        )

    def poll(self, task_id: str, cancel: CancelToken | None = None) -> GenerationResult:
        check_cancelled(cancel, "video_poll")
        count = self._polls.get(task_id, 0) + 1
        self._polls[task_id] = count
        if count >= self.polls_until_done:
            task = VideoTask(task_id=task_id, status="succeeded", result_url=f"mock://video/{task_id}.mp4")
        else:
            task = VideoTask(task_id=task_id, status="running")
        return GenerationResult(success=True, payload=task, payload_kind="video_task", provider=self.name, model="mock")


class MockSpeechProvider:
    name = "mock_speech"

    def synthesize(
        self,
        *,
        text: str,
        voice_id: str = "",
        stability: float = 0.5,
        style: float = 0.0,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "speech")
        from pipeline.elevenlabs import estimate_speech_duration

        audio = b"ID3" + _digest(text, voice_id).encode("ascii")
        return GenerationResult(
            success=True,
            payload=audio,
            payload_kind="audio",
            provider=self.name,
            model="mock",
            mime_type="audio/mpeg",
            metadata={"voice_id": voice_id, "estimated_duration_seconds": estimate_speech_duration(text)},
        )


_MOCK_SEARCH_ANSWER = """## PAIN POINTS
- "I wasted money on three of these before finding one that works"
- Cheap versions break within a few weeks of normal use
- Nothing on the market fits into a busy morning routine

## WHAT PEOPLE LOVE
- "Honestly a game changer for my daily routine"
- Works right out of the box with no setup

## PURCHASE TRIGGERS
- A friend recommended it after seeing real results
- Saw a before and after video that looked believable

## OBJECTIONS & HESITATIONS
- Worried it is just another overhyped gadget
- Price feels high compared to drugstore options

## LANGUAGE PATTERNS
- "finally something that actually works"
- "I was skeptical at first"
"""


class MockSearchProvider:
    name = "mock_search"

    def __init__(self, answer: str | None = None):
        self._answer = _MOCK_SEARCH_ANSWER if answer is None else answer

    def search(
        self,
        *,
        query: str,
        system_prompt: str = "",
        max_tokens: int = 4_000,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        check_cancelled(cancel, "search")
        return GenerationResult(
            success=bool(self._answer),
            payload=self._answer,
            payload_kind="text",
            provider=self.name,
            model="mock",
            error_message="" if self._answer else "empty answer",
            error_kind="" if self._answer else "capability_error",
            metadata={"citations": [], "cost": 0.0},
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@dataclass
class ProviderSet:
    """Everything a pipeline run needs, resolved once and passed down."""

    text: TextProvider
    iterate_text: TextProvider
    structured: StructuredProvider
    script_structured: StructuredProvider
    vision: VisionProvider
    image: ImageProvider
    video: VideoProvider
    speech: SpeechProvider
    search: SearchProvider | None = None


def _force_mock() -> bool:
    return _is_truthy(config.FORCE_MOCK_PROVIDERS, default=False)


def _resolve_llm_provider(stage: str) -> tuple[str, str] | None:
    """Stage's configured provider when its key is set, else the first provider with a key."""
    stage_conf = config.get_stage_llm_config(stage)
    if _provider_has_key(stage_conf["provider"]):
        return stage_conf["provider"], stage_conf["model"]
    for provider in ("anthropic", "openai", "google"):
        if _provider_has_key(provider):
            logger.warning(
                "Stage '%s' is configured for %s but no key is set; using %s",
                stage, stage_conf["provider"], provider,
            )
            return provider, _DEFAULT_MODELS[provider]
    return None


def build_text_provider(stage: str = "generate") -> TextProvider:
    if _force_mock():
        return MockTextProvider()
    resolved = _resolve_llm_provider(stage)
    if resolved is None:
        return MockTextProvider()
    provider, model = resolved
    return LLMTextProvider(stage, provider=provider, model=model)


def build_structured_provider(stage: str = "research") -> StructuredProvider:
    if _force_mock():
        return MockStructuredProvider()
    resolved = _resolve_llm_provider(stage)
    if resolved is None:
        return MockStructuredProvider()
    provider, model = resolved
    return LLMStructuredProvider(stage, provider=provider, model=model)


def build_vision_provider(preferred_provider: str = "") -> VisionProvider:
    if _force_mock():
        return MockVisionProvider()
    provider_key = str(preferred_provider or config.VISION_PROVIDER or "").strip().lower()

    def _try_openai() -> VisionProvider | None:
        if not str(config.OPENAI_API_KEY or "").strip():
            return None
        try:
            return OpenAIVisionProvider()
        except Exception as exc:
            logger.warning("OpenAI vision unavailable: %s", exc)
            return None

    def _try_anthropic() -> VisionProvider | None:
        if not str(config.ANTHROPIC_API_KEY or "").strip():
            return None
        try:
            return AnthropicVisionProvider()
        except Exception as exc:
            logger.warning("Anthropic vision unavailable: %s", exc)
            return None

    def _try_google() -> VisionProvider | None:
        if not str(config.GOOGLE_API_KEY or "").strip():
            return None
        try:
            return GoogleVisionProvider()
        except Exception as exc:
            logger.warning("Google vision unavailable: %s", exc)
            return None

    preferred_chain: list[Callable[[], VisionProvider | None]]
    if provider_key == "anthropic":
        preferred_chain = [_try_anthropic, _try_openai, _try_google]
    elif provider_key == "google":
        preferred_chain = [_try_google, _try_openai, _try_anthropic]
    else:
        preferred_chain = [_try_openai, _try_anthropic, _try_google]

    for builder in preferred_chain:
        provider = builder()
        if provider is not None:
            return provider
    return MockVisionProvider()


def build_image_provider() -> ImageProvider:
    if _force_mock() or not str(config.GOOGLE_API_KEY or "").strip():
        return MockImageProvider()
    try:
        return GoogleGeminiImageProvider()
    except Exception as exc:
        logger.warning("Gemini image generation unavailable; using mock: %s", exc)
        return MockImageProvider()


def build_video_provider() -> VideoProvider:
    if _force_mock() or not (config.KLING_ACCESS_KEY and config.KLING_SECRET_KEY):
        return MockVideoProvider()
    from pipeline.kling import KlingVideoProvider

    try:
        return KlingVideoProvider()
    except Exception as exc:
        logger.warning("Kling unavailable; using mock video provider: %s", exc)
        return MockVideoProvider()


def build_speech_provider() -> SpeechProvider:
    if _force_mock() or not str(config.ELEVENLABS_API_KEY or "").strip():
        return MockSpeechProvider()
    from pipeline.elevenlabs import ElevenLabsSpeechProvider

    try:
        return ElevenLabsSpeechProvider()
    except Exception as exc:
        logger.warning("ElevenLabs unavailable; using mock speech provider: %s", exc)
        return MockSpeechProvider()


def build_search_provider() -> SearchProvider | None:
    """Real search only; None means research runs on synthesis fallbacks."""
    if _force_mock():
        return MockSearchProvider()
    if not str(config.PERPLEXITY_API_KEY or "").strip():
        return None
    from pipeline.perplexity import PerplexitySearchProvider

    try:
        return PerplexitySearchProvider()
    except Exception as exc:
        logger.warning("Perplexity unavailable; research will use synthesis fallbacks: %s", exc)
        return None


def build_providers(preferred_vision: str = "") -> ProviderSet:
    providers = ProviderSet(
        text=build_text_provider("generate"),
        iterate_text=build_text_provider("iterate"),
        structured=build_structured_provider("research"),
        script_structured=build_structured_provider("script"),
        vision=build_vision_provider(preferred_vision),
        image=build_image_provider(),
        video=build_video_provider(),
        speech=build_speech_provider(),
        search=build_search_provider(),
    )
    logger.info(
        "Providers: text=%s vision=%s image=%s video=%s speech=%s search=%s",
        type(providers.text).__name__,
        type(providers.vision).__name__,
        type(providers.image).__name__,
        type(providers.video).__name__,
        type(providers.speech).__name__,
        type(providers.search).__name__ if providers.search else "none",
    )
    return providers
