"""Async video tasks: submit an image-to-video job and poll it to a terminal state."""

from __future__ import annotations

import logging
import time

import config
from pipeline.cancellation import CancelToken
from pipeline.errors import ErrorKind, PipelineError, StageResult, error_kind_of
from pipeline.providers import VideoProvider
from schemas.generation import VideoTask

logger = logging.getLogger(__name__)

STAGE = "video"


def wait_for_video(
    provider: VideoProvider,
    task_id: str,
    *,
    poll_interval: float | None = None,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Poll until the task succeeds or fails.

    Success carries the final VideoTask (with `result_url`). Running out of
    time yields a `timeout` failure, never an empty asset. A poll that errors
    is logged and retried on the next tick; only the deadline ends the wait.
    """
    interval = config.VIDEO_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
    budget = config.VIDEO_MAX_WAIT_SECONDS if timeout is None else timeout
    token = cancel.child(budget) if cancel is not None else CancelToken(budget)
    provider_name = str(getattr(provider, "name", type(provider).__name__))
    last_status = "queued"
    polls = 0

    while True:
        if token.cancelled:
            return StageResult.fail(STAGE, ErrorKind.CANCELLED, token.reason or "cancelled", provider=provider_name)
        if token.expired:
            break

        polls += 1
        try:
            result = provider.poll(task_id, cancel=token)
        except PipelineError as exc:
            if exc.kind == ErrorKind.CANCELLED:
                return StageResult.fail(STAGE, ErrorKind.CANCELLED, str(exc), provider=provider_name)
            if exc.kind == ErrorKind.TIMEOUT:
                break
            logger.warning("Video poll %d for %s raised: %s", polls, task_id, exc)
            result = None

        if result is not None and result.success and isinstance(result.payload, VideoTask):
            task = result.payload
            last_status = task.status
            if task.status == "succeeded":
                if not task.result_url:
                    return StageResult.fail(
                        STAGE, ErrorKind.CAPABILITY, "task succeeded without a video URL", provider=provider_name
                    )
                logger.info("Video task %s succeeded after %d polls", task_id, polls)
                return StageResult.ok(STAGE, task, provider=provider_name)
            if task.status == "failed":
                return StageResult.fail(
                    STAGE,
                    ErrorKind.CAPABILITY,
                    task.error or "video generation failed",
                    provider=provider_name,
                    value=task,
                )
        elif result is not None and not result.success:
            logger.warning("Video poll %d for %s failed: %s", polls, task_id, result.error_message)

        if token.wait(interval):
            return StageResult.fail(STAGE, ErrorKind.CANCELLED, token.reason or "cancelled", provider=provider_name)

    logger.warning("Video task %s timed out after %.0fs (last status=%s)", task_id, budget, last_status)
    return StageResult.fail(
        STAGE,
        ErrorKind.TIMEOUT,
        f"video task {task_id} not finished after {budget:.0f}s (last status: {last_status})",
        provider=provider_name,
        value=VideoTask(task_id=task_id, status=last_status),
    )


def animate_image(
    provider: VideoProvider,
    *,
    image: bytes | str,
    motion_prompt: str,
    duration_seconds: int = 5,
    poll_interval: float | None = None,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Submit an image-to-video task and wait for it."""
    started = time.monotonic()
    try:
        submitted = provider.submit(
            prompt=motion_prompt,
            source_image=image,
            duration_seconds=duration_seconds,
            cancel=cancel,
        )
    except PipelineError as exc:
        return StageResult.from_error(STAGE, exc)

    provider_name = submitted.provider or str(getattr(provider, "name", ""))
    if not submitted.success or not isinstance(submitted.payload, VideoTask):
        return StageResult.fail(
            STAGE,
            error_kind_of(submitted),
            submitted.error_message or "video submit failed",
            provider=provider_name,
        )

    outcome = wait_for_video(
        provider,
        submitted.payload.task_id,
        poll_interval=poll_interval,
        timeout=timeout,
        cancel=cancel,
    )
    logger.info(
        "Animate image: task=%s success=%s in %.1fs",
        submitted.payload.task_id, outcome.success, time.monotonic() - started,
    )
    return outcome
