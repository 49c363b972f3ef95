from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore
from typing import Any

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import get_settings

logger = logging.getLogger(__name__)

_llm_semaphore: BoundedSemaphore | None = None

# Transient provider errors worth retrying; 4xx validation errors are not.
_RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_FENCE_START_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END_RE = re.compile(r"\s*```$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class LLMResponseError(ValueError):
    """The model returned something we cannot use (empty or invalid JSON)."""


@dataclass
class LLMResult:
    text: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    reasoning_output_tokens: int = 0
    web_search_calls: int = 0


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Simple context manager to bound concurrent calls to the LLM provider.

    Usage:

        with limit_llm_concurrency():
            client.chat.completions.create(...)

    Use it inside the thread that actually performs the HTTP request; stage
    execution runs each call in a worker thread via ``asyncio.to_thread``.
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Centralised factory for the OpenAI-compatible client used across the app.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.

    This is cached so all callers in a process share a single client instance.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Company Intelligence",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip())

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


@lru_cache(maxsize=1)
def get_web_search_client() -> OpenAI:
    """
    Web search goes straight to OpenAI (Responses API + ``web_search`` tool),
    independent of whether section drafting is routed via OpenRouter.
    """
    settings = get_settings()
    if not settings.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is required for web search.")
    return OpenAI(api_key=settings.OPENAI_API_KEY.strip())


def current_provider() -> str:
    return "openrouter" if get_settings().OPENROUTER_API_KEY else "openai"


def _attr(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(_RETRYABLE_ERRORS),
    reraise=True,
)
def complete(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float = 0.2,
) -> LLMResult:
    """
    Single chat completion, bounded by the process-wide LLM semaphore.

    Transient provider errors are retried by tenacity; anything else
    propagates to the caller (the orchestrator counts it as a stage attempt).
    """
    settings = get_settings()
    client = get_llm_client()
    model_name = model or settings.LLM_MODEL

    with limit_llm_concurrency():
        raw_response = client.chat.completions.with_raw_response.create(
            model=model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
        )
        try:
            resp = raw_response.parse()
        except Exception:
            logger.error(
                "Failed to parse LLM response. Status: %s, Body preview: %s",
                raw_response.status_code,
                raw_response.text[:2000],
            )
            raise

    usage = getattr(resp, "usage", None)
    text = ""
    if resp.choices:
        text = resp.choices[0].message.content or ""

    return LLMResult(
        text=text,
        model=getattr(resp, "model", None) or model_name,
        provider=current_provider(),
        input_tokens=_as_int(_attr(usage, "prompt_tokens")),
        output_tokens=_as_int(_attr(usage, "completion_tokens")),
        cached_input_tokens=_as_int(
            _attr(_attr(usage, "prompt_tokens_details"), "cached_tokens")
        ),
        reasoning_output_tokens=_as_int(
            _attr(_attr(usage, "completion_tokens_details"), "reasoning_tokens")
        ),
    )


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(_RETRYABLE_ERRORS),
    reraise=True,
)
def web_search(prompt: str, *, model: str | None = None) -> LLMResult:
    """Run ``prompt`` through the Responses API with the ``web_search`` tool enabled."""
    settings = get_settings()
    client = get_web_search_client()
    model_name = model or settings.OPENAI_WEB_MODEL or "gpt-5"

    with limit_llm_concurrency():
        response = client.responses.create(
            model=model_name,
            reasoning={"effort": "low"},
            tools=[{"type": "web_search"}],
            tool_choice="auto",
            input=prompt,
        )

    usage_obj = getattr(response, "usage", None)

    web_search_calls = 0
    for item in getattr(response, "output", None) or []:
        item_type = _attr(item, "type")
        if item_type == "web_search_call":
            web_search_calls += 1

    return LLMResult(
        text=getattr(response, "output_text", None) or "",
        model=getattr(response, "model", None) or model_name,
        provider="openai",
        input_tokens=_as_int(_attr(usage_obj, "input_tokens")),
        output_tokens=_as_int(_attr(usage_obj, "output_tokens")),
        cached_input_tokens=_as_int(
            _attr(_attr(usage_obj, "input_tokens_details"), "cached_tokens")
        ),
        reasoning_output_tokens=_as_int(
            _attr(_attr(usage_obj, "output_tokens_details"), "reasoning_tokens")
        ),
        web_search_calls=web_search_calls,
    )


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    cleaned = _FENCE_START_RE.sub("", cleaned)
    cleaned = _FENCE_END_RE.sub("", cleaned)
    return cleaned.strip()


def parse_json_response(text: str, *, allow_repair: bool = False) -> Any:
    """
    Parse a model response as JSON.

    - Strips leading/trailing ```json fences.
    - With ``allow_repair``, retries after removing trailing commas and
      narrowing to the outermost ``{...}`` block.
    - Raises ``LLMResponseError`` ("Invalid JSON response: ...") otherwise.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise LLMResponseError("Invalid JSON response: empty content")

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        if not allow_repair:
            raise LLMResponseError(f"Invalid JSON response: {exc}") from exc
        first_error = exc

    candidate = cleaned
    start, end = candidate.find("{"), candidate.rfind("}")
    if start != -1 and end > start:
        candidate = candidate[start : end + 1]
    candidate = _TRAILING_COMMA_RE.sub(r"\1", candidate)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        raise LLMResponseError(f"Invalid JSON response: {first_error}") from first_error


def repair_truncated_array(text: str, array_key: str, closing: str = "]}") -> Any:
    """
    Recover a JSON object whose ``array_key`` array was cut off mid-element
    (typically by ``max_tokens``). Keeps every complete element and closes the
    structure with ``closing``.
    """
    cleaned = strip_code_fences(text)
    marker = re.search(r'"%s"\s*:\s*\[' % re.escape(array_key), cleaned)
    if not marker:
        raise LLMResponseError(f"Invalid JSON response: no '{array_key}' array")

    bracket_depth = 0
    brace_depth = 0
    last_complete = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(cleaned):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            bracket_depth += 1
        elif ch == "]":
            bracket_depth -= 1
        elif ch == "{":
            brace_depth += 1
        elif ch == "}":
            brace_depth -= 1
            # a complete element of the top-level array
            if bracket_depth == 1 and brace_depth == 1 and i > marker.end():
                last_complete = i + 1

    if not last_complete:
        raise LLMResponseError("Invalid JSON response: no complete elements to recover")

    try:
        return json.loads(cleaned[:last_complete] + closing)
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"Invalid JSON response: {exc}") from exc
