"""ElevenLabs text-to-speech adapter + speech timing helpers."""

from __future__ import annotations

import logging
import math
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

import config
from pipeline import llm
from pipeline.cancellation import CancelToken, check_cancelled, request_timeout
from pipeline.errors import CapabilityError, PipelineError
from schemas.generation import GenerationResult

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 150


def estimate_speech_duration(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Rough spoken length in whole seconds (rounded up)."""
    words = len(str(text or "").split())
    if not words:
        return 0
    return math.ceil(words / words_per_minute * 60)


def fits_in_duration(text: str, max_seconds: float) -> bool:
    return estimate_speech_duration(text) <= max_seconds


def _is_retryable_http(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return str(detail.get("message") or detail)
    return str(detail or body)[:300]


class ElevenLabsSpeechProvider:
    """Real TTS provider using the ElevenLabs REST API."""

    name = "elevenlabs"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        model_id: str | None = None,
        session: requests.Session | None = None,
    ):
        self._api_key = str(api_key or config.ELEVENLABS_API_KEY or "").strip()
        if not self._api_key:
            raise CapabilityError("ELEVENLABS_API_KEY is required for voiceover generation.", provider=self.name)
        self._base_url = (base_url or config.ELEVENLABS_BASE_URL).rstrip("/")
        self.model_id = model_id or config.ELEVENLABS_MODEL_ID
        self._session = session or requests.Session()

    @retry(
        retry=retry_if_exception(_is_retryable_http),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _send(self, method: str, path: str, *, timeout: float, **kwargs) -> requests.Response:
        headers = {"xi-api-key": self._api_key, **kwargs.pop("headers", {})}
        response = self._session.request(method, f"{self._base_url}{path}", headers=headers, timeout=timeout, **kwargs)
        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            raise CapabilityError(
                f"[elevenlabs] HTTP {response.status_code}: {_error_detail(response)}",
                provider=self.name,
            )
        return response

    def synthesize(
        self,
        *,
        text: str,
        voice_id: str = "",
        stability: float = 0.5,
        style: float = 0.0,
        cancel: CancelToken | None = None,
        similarity_boost: float = 0.75,
        speaker_boost: bool = True,
    ) -> GenerationResult:
        voice = str(voice_id or config.ELEVENLABS_DEFAULT_VOICE_ID).strip()
        clean_text = str(text or "").strip()
        if not clean_text:
            return GenerationResult.failure(self.name, "text is required", model=self.model_id)

        body = {
            "text": clean_text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": float(stability),
                "similarity_boost": float(similarity_boost),
                "style": float(style),
                "use_speaker_boost": bool(speaker_boost),
            },
        }
        try:
            check_cancelled(cancel, "speech")
            response = self._send(
                "POST",
                f"/text-to-speech/{voice}",
                json=body,
                headers={"Content-Type": "application/json", "Accept": "audio/mpeg"},
                timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS),
            )
        except PipelineError as exc:
            logger.error("ElevenLabs synthesis failed: %s", exc)
            return GenerationResult.failure(self.name, str(exc), error_kind=exc.kind.value, model=self.model_id)
        except requests.RequestException as exc:
            logger.error("ElevenLabs synthesis failed: %s", exc)
            return GenerationResult.failure(self.name, f"[elevenlabs] {exc}", model=self.model_id)

        audio = response.content or b""
        llm.record_external_usage(
            self.name,
            self.model_id,
            cost=len(clean_text) / 1000 * config.ELEVENLABS_COST_PER_1K_CHARS,
            task="tts",
            metadata={"characters": len(clean_text), "voice_id": voice},
        )
        logger.info("ElevenLabs [%s]: %d chars -> %d bytes", voice, len(clean_text), len(audio))
        return GenerationResult(
            success=bool(audio),
            payload=audio,
            payload_kind="audio",
            provider=self.name,
            model=self.model_id,
            mime_type=response.headers.get("Content-Type", "audio/mpeg"),
            error_message="" if audio else "[elevenlabs] empty audio response",
            error_kind="" if audio else "capability_error",
            metadata={
                "voice_id": voice,
                "estimated_duration_seconds": estimate_speech_duration(clean_text),
            },
        )

    def list_voices(self, cancel: CancelToken | None = None) -> list[dict[str, Any]]:
        """Available voices as plain dicts. Raises CapabilityError on failure."""
        check_cancelled(cancel, "voices")
        try:
            response = self._send("GET", "/voices", timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS))
        except requests.RequestException as exc:
            raise CapabilityError(f"[elevenlabs] {exc}", provider=self.name, cause=exc) from exc
        voices = response.json().get("voices") or []
        return [
            {
                "voice_id": v.get("voice_id", ""),
                "name": v.get("name", ""),
                "category": v.get("category", ""),
                "labels": v.get("labels") or {},
                "preview_url": v.get("preview_url", ""),
            }
            for v in voices
            if isinstance(v, dict)
        ]
