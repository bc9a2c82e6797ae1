"""LLM client — multi-provider support (OpenAI, Anthropic, Google).

Each stage can use a different provider + model; `config.STAGE_LLM_CONFIG`
determines which pair a stage gets.

Every call, LLM or not, lands in one thread-safe usage log: LLM calls are
priced from MODEL_PRICING, adapters report their own cost through
record_external_usage(). reset_usage() and get_usage_summary() read it back.

Error handling:
  - 400-level errors (bad request, auth) are NOT retried — they won't fix themselves.
  - 429 (rate limit) and 5xx (server errors) ARE retried with exponential backoff.
  - All errors are extracted into clean, readable messages.
  - Output that can't be parsed into the requested model raises ParseFailure,
    never LLMError, so callers can tell a bad answer from a failed call.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time as _time
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

import config
from pipeline.cancellation import CancelToken, check_cancelled, request_timeout
from pipeline.errors import CapabilityError, ParseFailure

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cost tracking
# ---------------------------------------------------------------------------

# Pricing per 1M tokens: { model_prefix: (input_$/1M, output_$/1M) }
# Models are matched longest-prefix-first, so "gpt-5.2-mini" matches before "gpt-5.2".
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # OpenAI
    "gpt-5.2-mini":     (0.30,   1.25),
    "gpt-5.2":          (2.50,  10.00),
    "gpt-4o-mini":      (0.15,   0.60),
    "gpt-4o":           (2.50,  10.00),
    "gpt-4.1-mini":     (0.40,   1.60),
    "gpt-4.1":          (2.00,   8.00),
    # Anthropic
    "claude-opus-4":    (15.00,  75.00),
    "claude-sonnet-4":  (3.00,   15.00),
    "claude-haiku-4":   (1.00,    5.00),
    # Google
    "gemini-3-pro":     (2.00,  12.00),
    "gemini-2.5-pro":   (1.25,  10.00),
    "gemini-2.5-flash": (0.15,   0.60),
    # Perplexity (token part only; request fees go through record_external_usage)
    "sonar-deep-research": (2.00, 8.00),
    "sonar-reasoning-pro": (2.00, 8.00),
    "sonar-pro":        (3.00,  15.00),
    "sonar":            (1.00,   1.00),
}

# Fallback pricing if a model isn't in the table (conservative estimate)
_FALLBACK_PRICING = (2.50, 10.00)

_usage_lock = threading.Lock()
_usage_log: list[dict[str, Any]] = []


def _get_pricing(model: str) -> tuple[float, float]:
    """Longest-prefix match against MODEL_PRICING, else the fallback rate."""
    matches = [prefix for prefix in MODEL_PRICING if model.startswith(prefix)]
    if matches:
        return MODEL_PRICING[max(matches, key=len)]
    logger.warning("No pricing for model '%s'; using fallback $%.2f/$%.2f per 1M", model, *_FALLBACK_PRICING)
    return _FALLBACK_PRICING


def _token_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    in_price, out_price = _get_pricing(model)
    return (input_tokens * in_price + output_tokens * out_price) / 1_000_000


def record_external_usage(
    provider: str,
    model: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cost: float | None = None,
    task: str = "",
    metadata: dict[str, Any] | None = None,
) -> float:
    """Add one call to the usage log and return its cost.

    Adapters that bill per request, per character or per image pass `cost`
    directly; otherwise it is priced from the token counts.
    """
    input_tokens = int(input_tokens or 0)
    output_tokens = int(output_tokens or 0)
    if cost is None:
        cost = _token_cost(model, input_tokens, output_tokens)
    entry: dict[str, Any] = {
        "provider": provider,
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cost": float(cost),
        "task": task,
        "timestamp": _time.time(),
    }
    if metadata:
        entry["metadata"] = metadata
    with _usage_lock:
        _usage_log.append(entry)
    logger.info(
        "Usage %s/%s [%s]: in=%d out=%d cost=$%.4f",
        provider, model, task or "llm", input_tokens, output_tokens, entry["cost"],
    )
    return entry["cost"]


def reset_usage():
    """Clear the usage log (the CLI calls this before each command)."""
    with _usage_lock:
        _usage_log.clear()


def get_usage_summary() -> dict[str, Any]:
    """Return aggregated cost and token totals, plus a per-provider breakdown."""
    with _usage_lock:
        entries = list(_usage_log)
    total_input = sum(e["input_tokens"] for e in entries)
    total_output = sum(e["output_tokens"] for e in entries)
    total_cost = sum(e["cost"] for e in entries)
    by_provider: dict[str, float] = {}
    for e in entries:
        by_provider[e["provider"]] = round(by_provider.get(e["provider"], 0.0) + e["cost"], 4)
    return {
        "total_input_tokens": total_input,
        "total_output_tokens": total_output,
        "total_tokens": total_input + total_output,
        "total_cost": round(total_cost, 4),
        "calls": len(entries),
        "by_provider": by_provider,
    }


T = TypeVar("T", bound=BaseModel)


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------

class LLMError(CapabilityError):
    """Clean error from an LLM call with a human-readable message."""

    def __init__(self, message: str, provider: str = "", model: str = "", cause: Exception | None = None):
        self.model = model
        super().__init__(message, provider=provider, cause=cause)


def _is_retryable(exc: BaseException) -> bool:
    """Return True if the error is transient and worth retrying.

    We retry on:
      - Rate limits (429)
      - Server errors (500, 502, 503, 529)
      - Connection / timeout errors
    We do NOT retry on:
      - 400 Bad Request, 401/403 auth, 404 unknown model
      - our own LLMError / ParseFailure (already classified)
    """
    from anthropic import (
        APIConnectionError as AnthropicConnError,
        APITimeoutError as AnthropicTimeout,
        InternalServerError as AnthropicInternal,
        RateLimitError as AnthropicRateLimit,
    )
    from openai import (
        APIConnectionError,
        APITimeoutError,
        InternalServerError,
        RateLimitError,
    )

    if isinstance(exc, (LLMError, ParseFailure)):
        return False
    if isinstance(exc, (RateLimitError, InternalServerError, APIConnectionError, APITimeoutError)):
        return True
    if isinstance(exc, (AnthropicRateLimit, AnthropicInternal, AnthropicConnError, AnthropicTimeout)):
        return True

    # google-genai surfaces HTTP status on its APIError
    code = getattr(exc, "code", None)
    if isinstance(code, int) and (code == 429 or code >= 500):
        return True

    import socket
    if isinstance(exc, (ConnectionError, TimeoutError, socket.timeout)):
        return True

    return False


def _extract_error_message(exc: Exception, provider: str, model: str) -> str:
    """Pull out a clean, human-readable error message from an API exception."""
    from anthropic import (
        AuthenticationError as AnthropicAuth,
        BadRequestError as AnthropicBadReq,
        NotFoundError as AnthropicNotFound,
    )
    from openai import AuthenticationError, BadRequestError, NotFoundError, PermissionDeniedError

    msg = str(exc)

    if isinstance(exc, BadRequestError):
        body = getattr(exc, "body", None)
        if isinstance(body, dict):
            inner = body.get("error", {})
            if isinstance(inner, dict):
                msg = inner.get("message", msg)
        return f"[{provider}/{model}] Bad request: {msg}"
    if isinstance(exc, AuthenticationError):
        return f"[{provider}] Authentication failed — check your OPENAI_API_KEY."
    if isinstance(exc, NotFoundError):
        return f"[{provider}] Model '{model}' not found. Check the model name in config.py or .env."
    if isinstance(exc, PermissionDeniedError):
        return f"[{provider}] Permission denied — your API key may not have access to '{model}'."

    if isinstance(exc, AnthropicBadReq):
        return f"[{provider}/{model}] Bad request: {msg}"
    if isinstance(exc, AnthropicAuth):
        return f"[{provider}] Authentication failed — check your ANTHROPIC_API_KEY."
    if isinstance(exc, AnthropicNotFound):
        return f"[{provider}] Model '{model}' not found."

    if isinstance(exc, ValidationError):
        n_errors = exc.error_count()
        return (
            f"[{provider}/{model}] Response JSON didn't match the expected schema "
            f"({n_errors} validation error{'s' if n_errors != 1 else ''})."
        )

    # Generic fallback — truncate very long messages
    if len(msg) > 300:
        msg = msg[:300] + "..."
    return f"[{provider}/{model}] {msg}"


# ---------------------------------------------------------------------------
# Provider clients (built on first use, one per provider)
# ---------------------------------------------------------------------------

_clients: dict[str, Any] = {}
_clients_lock = threading.Lock()

_API_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


def _build_client(provider: str, api_key: str) -> Any:
    if provider == "openai":
        from openai import OpenAI

        return OpenAI(api_key=api_key)
    if provider == "anthropic":
        import anthropic

        return anthropic.Anthropic(api_key=api_key)
    from google import genai

    return genai.Client(api_key=api_key)


def _client(provider: str) -> Any:
    with _clients_lock:
        if provider not in _clients:
            key_name = _API_KEYS[provider]
            api_key = getattr(config, key_name, "")
            if not api_key:
                raise LLMError(f"{key_name} is not set. Add it to your .env file.", provider=provider)
            _clients[provider] = _build_client(provider, api_key)
        return _clients[provider]


# ---------------------------------------------------------------------------
# Provider-specific call implementations
# ---------------------------------------------------------------------------

# Models that require max_completion_tokens instead of the legacy max_tokens.
_OPENAI_NEW_TOKEN_PARAM_PREFIXES = (
    "gpt-4o", "gpt-4.1", "gpt-4.5", "gpt-5", "o1", "o3", "o4",
)


def _call_openai(
    system_prompt: str,
    user_prompt: str,
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool = False,
    timeout: float | None = None,
) -> str:
    client = _client("openai")
    use_new_param = any(model.startswith(p) for p in _OPENAI_NEW_TOKEN_PARAM_PREFIXES)

    kwargs: dict = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
        "timeout": timeout or config.LLM_TIMEOUT_SECONDS,
    }
    if use_new_param:
        kwargs["max_completion_tokens"] = max_tokens
    else:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = client.chat.completions.create(**kwargs)
    content = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    if usage:
        record_external_usage("openai", model, usage.prompt_tokens or 0, usage.completion_tokens or 0)
    logger.info("OpenAI [%s]: %d chars", model, len(content))
    return content


def _call_anthropic(
    system_prompt: str,
    user_prompt: str,
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool = False,
    timeout: float | None = None,
) -> str:
    client = _client("anthropic")

    effective_system = system_prompt
    if json_mode:
        effective_system += (
            "\n\nIMPORTANT: Respond ONLY with a valid JSON object. No markdown fences, no explanation, no preamble."
            " Start your response with the opening brace '{' of the JSON object immediately."
        )

    response = client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=effective_system,
        messages=[{"role": "user", "content": user_prompt}],
        timeout=timeout or config.LLM_TIMEOUT_SECONDS,
    )
    content = "".join(
        str(getattr(block, "text", "") or "")
        for block in response.content
        if getattr(block, "type", "") == "text"
    )

    in_tok = response.usage.input_tokens or 0
    out_tok = response.usage.output_tokens or 0
    record_external_usage("anthropic", model, in_tok, out_tok)
    logger.info("Anthropic [%s]: %d chars, in=%d out=%d", model, len(content), in_tok, out_tok)
    return content


def _call_google(
    system_prompt: str,
    user_prompt: str,
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool = False,
    timeout: float | None = None,
) -> str:
    from google.genai import types

    client = _client("google")
    cfg = types.GenerateContentConfig(
        system_instruction=system_prompt,
        temperature=temperature,
        max_output_tokens=max_tokens,
        http_options=types.HttpOptions(timeout=int((timeout or config.LLM_TIMEOUT_SECONDS) * 1000)),
    )
    if json_mode:
        cfg.response_mime_type = "application/json"

    response = client.models.generate_content(model=model, contents=user_prompt, config=cfg)
    content = str(getattr(response, "text", "") or "")

    meta = getattr(response, "usage_metadata", None)
    if meta:
        in_tok = getattr(meta, "prompt_token_count", 0) or 0
        out_tok = getattr(meta, "candidates_token_count", 0) or 0
        record_external_usage("google", model, in_tok, out_tok)
    logger.info("Google [%s]: %d chars", model, len(content))
    return content


# Provider dispatch
_PROVIDERS = {
    "openai": _call_openai,
    "anthropic": _call_anthropic,
    "google": _call_google,
}


def _resolve_call_fn(provider: str, model: str):
    call_fn = _PROVIDERS.get(provider)
    if not call_fn:
        raise LLMError(
            f"Unknown provider: '{provider}'. Available: {list(_PROVIDERS.keys())}",
            provider=provider,
            model=model,
        )
    return call_fn


def _invoke(
    provider: str,
    model: str,
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
    cancel: CancelToken | None,
) -> str:
    """One provider call; SDK errors become LLMError unless tenacity should retry them."""
    call_fn = _resolve_call_fn(provider, model)
    check_cancelled(cancel, "llm")
    try:
        return call_fn(
            system_prompt,
            user_prompt,
            model,
            temperature,
            max_tokens,
            json_mode=json_mode,
            timeout=request_timeout(cancel, config.LLM_TIMEOUT_SECONDS),
        )
    except LLMError:
        raise
    except Exception as exc:
        clean_msg = _extract_error_message(exc, provider, model)
        logger.error("LLM %s call failed: %s", "structured" if json_mode else "text", clean_msg)
        if _is_retryable(exc):
            raise
        raise LLMError(clean_msg, provider=provider, model=model, cause=exc) from exc


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)
def call_llm(
    system_prompt: str,
    user_prompt: str,
    provider: str = "anthropic",
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4_000,
    cancel: CancelToken | None = None,
) -> str:
    """Call an LLM and return raw text. Provider-agnostic.

    Retries on transient errors (rate limits, server errors).
    Raises LLMError immediately for bad requests or auth errors.
    """
    model = model or config.DEFAULT_MODEL
    logger.info("LLM call: provider=%s, model=%s, temp=%.1f", provider, model, temperature)
    return _invoke(
        provider,
        model,
        system_prompt,
        user_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=False,
        cancel=cancel,
    )


@retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)
def call_llm_structured(
    system_prompt: str,
    user_prompt: str,
    response_model: type[T],
    provider: str = "anthropic",
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 16_000,
    cancel: CancelToken | None = None,
) -> T:
    """Call an LLM and parse into a Pydantic model. Provider-agnostic.

    Injects the JSON schema into the system prompt so every provider
    knows the exact structure required. Falls back to a lenient re-parse
    and then a repair pass before raising ParseFailure.
    """
    model = model or config.DEFAULT_MODEL
    schema = response_model.model_json_schema()
    schema_instruction = (
        "\n\nYou MUST respond with valid JSON that conforms to this schema:\n"
        f"```json\n{json.dumps(schema, indent=2)}\n```\n"
        "Respond ONLY with the JSON object. No markdown fences, no explanation."
    )

    logger.info(
        "LLM structured call: provider=%s, model=%s, schema=%s",
        provider, model, response_model.__name__,
    )

    raw = _invoke(
        provider,
        model,
        system_prompt + schema_instruction,
        user_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
        cancel=cancel,
    )
    raw = _strip_fences(raw)

    try:
        return response_model.model_validate_json(raw)
    except ValidationError as exc:
        for err in exc.errors():
            logger.error(
                "Schema validation error: field=%s type=%s msg=%s",
                " → ".join(str(loc) for loc in err["loc"]),
                err["type"],
                err["msg"],
            )
        first_error: Exception = exc

    # Lenient re-parse: load as dict first, coerce known issues
    logger.info("Attempting lenient re-parse with coercion...")
    try:
        data = _safe_json_loads(raw)
        data = coerce_llm_output(data)
        parsed = response_model.model_validate(data)
        logger.info("Lenient re-parse succeeded!")
        return parsed
    except (ValueError, ValidationError) as exc2:
        logger.warning("Lenient re-parse failed: %s", exc2)

    # Final salvage attempt: ask the model to repair malformed JSON.
    try:
        logger.info("Attempting LLM JSON repair pass...")
        parsed = _attempt_llm_json_repair(
            call_fn=call_fn,
            model=model,
            response_model=response_model,
            raw=raw,
            max_tokens=max_tokens,
        )
        logger.info("LLM JSON repair pass succeeded!")
        return parsed
    except Exception as exc3:
        logger.warning("LLM JSON repair pass failed: %s", exc3)

    clean_msg = _extract_error_message(first_error, provider, model)
    logger.debug("Raw response snippet: %s", raw[:500] if raw else "(empty response)")
    raise ParseFailure(clean_msg, raw=raw, provider=provider, cause=first_error)


def _attempt_llm_json_repair(
    *,
    call_fn,
    model: str,
    response_model: type[T],
    raw: str,
    max_tokens: int,
) -> T:
    """Ask the model to repair malformed JSON into valid schema-conforming JSON."""
    if not raw or len(raw) < 20:
        raise ValueError("No JSON payload available for repair")

    # Keep repair requests bounded so huge malformed payloads do not blow context.
    max_chars = 160_000
    if len(raw) > max_chars:
        raise ValueError(f"Repair payload too large ({len(raw)} chars) — skipping repair pass")

    schema_json = json.dumps(response_model.model_json_schema(), indent=2)
    repair_system = (
        "You are a strict JSON repair engine.\n"
        "Fix malformed JSON so it is valid and conforms to the provided schema.\n"
        "Return ONLY a single JSON object and preserve original meaning.\n"
    )
    repair_user = (
        "Schema:\n"
        f"```json\n{schema_json}\n```\n\n"
        "Malformed JSON to repair:\n"
        f"```json\n{raw}\n```\n"
    )

    repaired_raw = call_fn(
        repair_system,
        repair_user,
        model,
        0.0,
        min(max(4_000, max_tokens), 32_000),
        json_mode=True,
    )
    repaired_data = coerce_llm_output(_safe_json_loads(_strip_fences(repaired_raw)))
    return response_model.model_validate(repaired_data)


# ---------------------------------------------------------------------------
# JSON extraction helpers
# ---------------------------------------------------------------------------

def _strip_fences(raw: str) -> str:
    cleaned = (raw or "").strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```\w*\n?", "", cleaned)
        cleaned = re.sub(r"\n?```\s*$", "", cleaned)
    return cleaned.strip()


def _safe_json_loads(raw: str) -> Any:
    """Parse JSON with fallback repair for common LLM quirks.

    Handles: trailing commas, markdown fences, prose around the object.
    Raises ValueError (json.JSONDecodeError) when nothing parses.
    """
    cleaned = _strip_fences(raw)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Remove trailing commas before } or ]
    fixed = re.sub(r",\s*([}\]])", r"\1", cleaned)
    try:
        return json.loads(fixed)
    except json.JSONDecodeError:
        pass

    # Find the JSON object in the string (strip preamble/postamble)
    match = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if match:
        candidate = re.sub(r",\s*([}\]])", r"\1", match.group(0))
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    return json.loads(cleaned)


def extract_json_object(raw: Any) -> dict[str, Any]:
    """Return the first JSON object embedded in free-form model output.

    Tolerates code fences and prose before/after the object. Raises
    ParseFailure when no object can be located.
    """
    text = str(raw or "").strip()
    if not text:
        raise ParseFailure("empty model output", raw="")
    try:
        parsed = _safe_json_loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            parsed = json.loads(re.sub(r",\s*([}\]])", r"\1", text[start : end + 1]))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
    raise ParseFailure("no JSON object found in model output", raw=text[:500])


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def coerce_llm_output(obj: Any) -> Any:
    """Recursively fix common LLM output quirks.

    - camelCase / spaced / hyphenated keys become snake_case ("hookLine" -> "hook_line")
    - a bare list where an object with one list field was expected is left for
      the caller; only key shapes are normalised here
    """
    if isinstance(obj, dict):
        fixed: dict[str, Any] = {}
        for key, value in obj.items():
            new_key = key
            if isinstance(key, str):
                new_key = _CAMEL_BOUNDARY.sub(r"_\1", key.strip())
                new_key = new_key.lower().replace(" ", "_").replace("-", "_")
            # Keep an existing snake_case key when both spellings are present
            if new_key in fixed and new_key != key:
                continue
            fixed[new_key] = coerce_llm_output(value)
        return fixed
    if isinstance(obj, list):
        return [coerce_llm_output(item) for item in obj]
    return obj
