"""Split a UGC script into 5-8 second segments.

The structured model does the split when one is provided; otherwise (or when
that call fails) a deterministic sentence packer takes over. Either way the
first segment is the hook, segments never break mid-sentence and indices run
from 1 in script order.
"""

from __future__ import annotations

import logging
import re

from pipeline.cancellation import CancelToken
from pipeline.elevenlabs import estimate_speech_duration
from pipeline.errors import ErrorKind, OperationCancelled, PipelineError, StageResult
from pipeline.providers import StructuredProvider
from prompts.production_system import SCRIPT_CHUNK_SYSTEM
from schemas.script import ChunkedScript, ScriptSegment

logger = logging.getLogger(__name__)

STAGE = "script_chunk"

MIN_WORDS = 12
MAX_WORDS = 18

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])[\"')\]]*\s+")
_BODY_TYPES = {"aroll": "aroll", "a-roll": "aroll", "body": "aroll", "broll": "broll", "b-roll": "broll"}


def split_sentences(script: str) -> list[str]:
    text = " ".join((script or "").split())
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def pack_sentences(sentences: list[str], min_words: int = MIN_WORDS, max_words: int = MAX_WORDS) -> list[str]:
    """Greedy packer: whole sentences only, aiming for min..max words per chunk."""
    chunks: list[str] = []
    current: list[str] = []
    count = 0
    for sentence in sentences:
        words = len(sentence.split())
        if current and (count + words > max_words or count >= min_words):
            chunks.append(" ".join(current))
            current, count = [], 0
        current.append(sentence)
        count += words
    if current:
        # fold a short tail into the previous chunk rather than leave a stub
        if chunks and count < min_words // 2 and len(chunks[-1].split()) + count <= max_words:
            chunks[-1] = f"{chunks[-1]} {' '.join(current)}"
        else:
            chunks.append(" ".join(current))
    return chunks


def _normalise_type(raw: str, position: int) -> str:
    if position == 0:
        return "hook"
    return _BODY_TYPES.get((raw or "").strip().lower(), "aroll")


def build_segments(chunks: list[tuple[str, str]]) -> list[ScriptSegment]:
    segments: list[ScriptSegment] = []
    for text, raw_type in chunks:
        text = " ".join((text or "").split())
        if not text:
            continue
        segments.append(
            ScriptSegment(
                index=len(segments) + 1,
                text=text,
                type=_normalise_type(raw_type, len(segments)),
                duration_estimate_seconds=estimate_speech_duration(text),
            )
        )
    return segments


def _chunk_with_model(
    script: str, structured: StructuredProvider, cancel: CancelToken | None
) -> list[ScriptSegment]:
    result = structured.generate_structured(
        system_prompt=SCRIPT_CHUNK_SYSTEM,
        user_prompt=(
            "Split this UGC ad script into 5-8 second segments:\n\n"
            f'"{script}"\n\n'
            "Remember: NEVER break mid-sentence. Natural pauses only."
        ),
        response_model=ChunkedScript,
        cancel=cancel,
    )
    chunked: ChunkedScript = result.unwrap()
    return build_segments([(seg.text, seg.type) for seg in chunked.segments])


def chunk_script(
    script: str,
    structured_provider: StructuredProvider | None = None,
    cancel: CancelToken | None = None,
) -> StageResult:
    """Return StageResult[list[ScriptSegment]]."""
    if not (script or "").strip():
        return StageResult.fail(STAGE, ErrorKind.PARSE, "script is empty")

    diagnostics: list[str] = []
    if structured_provider is not None:
        try:
            segments = _chunk_with_model(script, structured_provider, cancel)
        except OperationCancelled as exc:
            return StageResult.from_error(STAGE, exc)
        except PipelineError as exc:
            logger.warning("Model chunking failed; using sentence packer: %s", exc)
            diagnostics.append(f"model chunking failed: {exc}")
        else:
            if segments:
                logger.info("Script chunked by model into %d segments", len(segments))
                return StageResult.ok(STAGE, segments, provider=getattr(structured_provider, "name", ""))
            diagnostics.append("model returned no segments")

    chunks = pack_sentences(split_sentences(script))
    segments = build_segments([(chunk, "aroll") for chunk in chunks])
    logger.info("Script packed into %d segments", len(segments))
    return StageResult.ok(STAGE, segments, provider="sentence-packer", diagnostics=diagnostics)
