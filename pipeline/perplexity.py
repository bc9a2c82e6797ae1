"""Perplexity search adapter (web-grounded research answers with citations).

Cost is computed per call from SEARCH_PRICING and recorded through
`llm.record_external_usage` so it lands in the same usage summary as the
LLM calls.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

import config
from pipeline import llm
from pipeline.cancellation import CancelToken, check_cancelled, request_timeout
from pipeline.errors import CapabilityError, PipelineError
from schemas.generation import GenerationResult

logger = logging.getLogger(__name__)

# $ per 1M tokens, plus per-request / per-query fees
SEARCH_PRICING: dict[str, dict[str, float]] = {
    "sonar-deep-research": {
        "input": 2.0,
        "output": 8.0,
        "citation": 2.0,
        "reasoning": 3.0,
        "search_query": 0.005,
    },
    "sonar-reasoning-pro": {"input": 2.0, "output": 8.0, "request_fee": 0.006},
    "sonar-pro": {"input": 3.0, "output": 15.0, "request_fee": 0.006},
    "sonar": {"input": 1.0, "output": 1.0, "request_fee": 0.005},
}

DEFAULT_SYSTEM_PROMPT = "You are a thorough research assistant."


def _usage_int(usage: dict[str, Any], *keys: str) -> int:
    for key in keys:
        value = usage.get(key)
        if value:
            return int(value)
    return 0


def estimate_search_cost(model: str, usage: dict[str, Any]) -> float:
    """Dollar cost of one search call; unknown models are priced as sonar-pro."""
    prices = SEARCH_PRICING.get(model, SEARCH_PRICING["sonar-pro"])
    input_tokens = _usage_int(usage, "input_tokens", "prompt_tokens")
    output_tokens = _usage_int(usage, "output_tokens", "completion_tokens")
    cost = (input_tokens * prices["input"] + output_tokens * prices["output"]) / 1_000_000
    if "search_query" in prices:
        cost += _usage_int(usage, "citation_tokens") * prices["citation"] / 1_000_000
        cost += _usage_int(usage, "reasoning_tokens") * prices["reasoning"] / 1_000_000
        cost += _usage_int(usage, "search_queries", "num_search_queries") * prices["search_query"]
    else:
        cost += prices.get("request_fee", 0.0)
    return cost


def _is_retryable_http(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class PerplexitySearchProvider:
    """Real SearchProvider backed by the Perplexity chat completions API."""

    name = "perplexity"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ):
        self._api_key = str(api_key or config.PERPLEXITY_API_KEY or "").strip()
        if not self._api_key:
            raise CapabilityError("PERPLEXITY_API_KEY is required for search-backed research.", provider=self.name)
        self.model = model or config.PERPLEXITY_SEARCH_MODEL
        self._base_url = (base_url or config.PERPLEXITY_BASE_URL).rstrip("/")
        self._session = session or requests.Session()

    @retry(
        retry=retry_if_exception(_is_retryable_http),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _post(self, body: dict[str, Any], timeout: float) -> dict[str, Any]:
        response = self._session.post(
            f"{self._base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json=body,
            timeout=timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            raise CapabilityError(
                f"[perplexity] HTTP {response.status_code}: {response.text[:300]}",
                provider=self.name,
            )
        return response.json()

    def search(
        self,
        *,
        query: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 4_000,
        cancel: CancelToken | None = None,
        model: str | None = None,
        task: str = "search",
    ) -> GenerationResult:
        model_name = model or self.model
        body = {
            "model": model_name,
            "messages": [
                {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "max_tokens": max_tokens,
            "return_citations": True,
        }
        started = time.monotonic()
        try:
            check_cancelled(cancel, "search")
            data = self._post(body, request_timeout(cancel, config.SEARCH_TIMEOUT_SECONDS))
        except PipelineError as exc:
            logger.error("Perplexity search failed: %s", exc)
            return GenerationResult.failure(self.name, str(exc), error_kind=exc.kind.value, model=model_name)
        except requests.RequestException as exc:
            logger.error("Perplexity search failed: %s", exc)
            return GenerationResult.failure(self.name, f"[perplexity] {exc}", model=model_name)

        choices = data.get("choices") or [{}]
        content = str(((choices[0] or {}).get("message") or {}).get("content") or "")
        citations = [str(c) for c in (data.get("citations") or [])]
        usage = data.get("usage") or {
            # no usage block: rough estimate from the citation count
            "citation_tokens": len(citations) * 100,
            "search_queries": len(citations) or 1,
        }
        cost = estimate_search_cost(model_name, usage)
        duration = round(time.monotonic() - started, 2)
        llm.record_external_usage(
            self.name,
            model_name,
            input_tokens=_usage_int(usage, "input_tokens", "prompt_tokens"),
            output_tokens=_usage_int(usage, "output_tokens", "completion_tokens"),
            cost=cost,
            task=task,
            metadata={"duration": duration, "citations": len(citations)},
        )
        return GenerationResult(
            success=bool(content.strip()),
            payload=content,
            payload_kind="text",
            provider=self.name,
            model=str(data.get("model") or model_name),
            error_kind="" if content.strip() else "capability_error",
            error_message="" if content.strip() else "[perplexity] empty answer",
            metadata={"citations": citations, "cost": cost, "duration_seconds": duration, "usage": usage},
        )
