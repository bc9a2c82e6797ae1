"""Kling image-to-video adapter (JWT-authenticated REST, async task polling)."""

from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Any

import httpx
import jwt
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

import config
from pipeline.cancellation import CancelToken, check_cancelled, request_timeout
from pipeline.errors import CapabilityError, PipelineError
from schemas.generation import GenerationResult, VideoTask

logger = logging.getLogger(__name__)

_TOKEN_TTL_SECONDS = 1800
_TOKEN_REFRESH_MARGIN_SECONDS = 60

_STATUS_MAP = {
    "submitted": "queued",
    "processing": "running",
    "succeed": "succeeded",
    "failed": "failed",
}

DEFAULT_NEGATIVE_PROMPT = "blurry, distorted hands, warped product, morphing logo, text artifacts, watermark"


def map_task_status(raw_status: Any) -> str:
    """Map a Kling task_status onto the VideoTask vocabulary (unknown -> running)."""
    return _STATUS_MAP.get(str(raw_status or "").strip().lower(), "running")


def _is_retryable_http(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict):
        return str(body.get("message") or body)[:300]
    return str(body)[:300]


class KlingVideoProvider:
    """Real Kling adapter: `submit` creates an image2video task, `poll` reads it back."""

    name = "kling"

    def __init__(
        self,
        access_key: str | None = None,
        secret_key: str | None = None,
        *,
        base_url: str | None = None,
        model_name: str | None = None,
        client: httpx.Client | None = None,
    ):
        self._access_key = str(access_key or config.KLING_ACCESS_KEY or "").strip()
        self._secret_key = str(secret_key or config.KLING_SECRET_KEY or "").strip()
        if not self._access_key or not self._secret_key:
            raise CapabilityError(
                "KLING_ACCESS_KEY and KLING_SECRET_KEY are required for Kling video generation.",
                provider=self.name,
            )
        self.model_name = model_name or config.KLING_MODEL_NAME
        self._client = client or httpx.Client(
            base_url=base_url or config.KLING_BASE_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
        self._token = ""
        self._token_expires_at = 0
        self._token_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def _auth_token(self) -> str:
        now = int(time.time())
        with self._token_lock:
            if self._token and self._token_expires_at > now + _TOKEN_REFRESH_MARGIN_SECONDS:
                return self._token
            payload = {
                "iss": self._access_key,
                "exp": now + _TOKEN_TTL_SECONDS,
                "nbf": now - 5,
            }
            self._token = jwt.encode(
                payload,
                self._secret_key,
                algorithm="HS256",
                headers={"alg": "HS256", "typ": "JWT"},
            )
            self._token_expires_at = now + _TOKEN_TTL_SECONDS
            return self._token

    @retry(
        retry=retry_if_exception(_is_retryable_http),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        response = self._client.request(
            method,
            path,
            json=body,
            headers={
                "Authorization": f"Bearer {self._auth_token()}",
                "Content-Type": "application/json",
            },
            timeout=timeout or config.HTTP_TIMEOUT_SECONDS,
        )
        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            raise CapabilityError(
                f"[kling] HTTP {response.status_code}: {_error_text(response)}",
                provider=self.name,
            )
        data = response.json()
        code = data.get("code", 0) if isinstance(data, dict) else 0
        if code not in (0, None):
            raise CapabilityError(f"[kling] API error {code}: {data.get('message', '')}", provider=self.name)
        inner = data.get("data") if isinstance(data, dict) else None
        return inner if isinstance(inner, dict) else {}

    def _failure(self, exc: Exception) -> GenerationResult:
        if isinstance(exc, PipelineError):
            return GenerationResult.failure(self.name, str(exc), error_kind=exc.kind.value, model=self.model_name)
        return GenerationResult.failure(self.name, f"[kling] {type(exc).__name__}: {exc}", model=self.model_name)

    # ------------------------------------------------------------------
    # VideoProvider
    # ------------------------------------------------------------------

    def submit(
        self,
        *,
        prompt: str,
        source_image: bytes | str,
        duration_seconds: int = 5,
        cancel: CancelToken | None = None,
        negative_prompt: str = DEFAULT_NEGATIVE_PROMPT,
    ) -> GenerationResult:
        if isinstance(source_image, (bytes, bytearray)):
            image_field = base64.b64encode(bytes(source_image)).decode("ascii")
        else:
            image_field = str(source_image or "").strip()
        if not image_field:
            return GenerationResult.failure(self.name, "source image is required", model=self.model_name)

        body = {
            "model_name": self.model_name,
            "mode": "std",
            "duration": "10" if int(duration_seconds or 5) >= 10 else "5",
            "aspect_ratio": "9:16",
            "prompt": prompt,
            "negative_prompt": negative_prompt,
            "cfg_scale": 0.5,
            "image": image_field,
        }
        try:
            check_cancelled(cancel, "video_submit")
            data = self._request(
                "POST",
                "/v1/videos/image2video",
                body=body,
                timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS),
            )
        except (PipelineError, httpx.HTTPError) as exc:
            logger.error("Kling submit failed: %s", exc)
            return self._failure(exc)

        task_id = str(data.get("task_id") or "").strip()
        if not task_id:
            return GenerationResult.failure(self.name, "[kling] response missing task_id", model=self.model_name)
        task = VideoTask(task_id=task_id, status=map_task_status(data.get("task_status") or "submitted"))
        logger.info("Kling task submitted: %s (%s)", task.task_id, task.status)
        return GenerationResult(
            success=True,
            payload=task,
            payload_kind="video_task",
            provider=self.name,
            model=self.model_name,
        )

    def poll(self, task_id: str, cancel: CancelToken | None = None) -> GenerationResult:
        try:
            check_cancelled(cancel, "video_poll")
            data = self._request(
                "GET",
                f"/v1/videos/image2video/{task_id}",
                timeout=request_timeout(cancel, config.HTTP_TIMEOUT_SECONDS),
            )
        except (PipelineError, httpx.HTTPError) as exc:
            logger.warning("Kling poll failed for %s: %s", task_id, exc)
            return self._failure(exc)

        status = map_task_status(data.get("task_status"))
        videos = (data.get("task_result") or {}).get("videos") or []
        result_url = ""
        if videos and isinstance(videos[0], dict):
            result_url = str(videos[0].get("url") or "")
        task = VideoTask(
            task_id=str(data.get("task_id") or task_id),
            status=status,
            result_url=result_url,
            error=str(data.get("task_status_msg") or "") if status == "failed" else "",
        )
        return GenerationResult(
            success=True,
            payload=task,
            payload_kind="video_task",
            provider=self.name,
            model=self.model_name,
            metadata={"duration": str(videos[0].get("duration", "")) if result_url else ""},
        )
