"""Gemini client with a process-wide rate limit, retries and JSON extraction.

Every ``GeminiClient`` in a process shares one ``RateLimiter`` by default, so
concurrent scans draw on the same request budget (10 requests/minute with the
default 6 s interval).

Retry policy per call:
    rate-limit errors (429 / RESOURCE_EXHAUSTED) wait 2**attempt * base (10s, 20s, 40s)
    anything else (blocked, empty, transport) waits a fixed delay (2s)
"""

import json
import logging
import re
import threading
import time
from typing import Any, Callable, Optional, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from scanner.config import DEFAULT_GEMINI_MODEL
from scanner.errors import InferenceError, InferenceRetryError, JsonExtractionError

logger = logging.getLogger(__name__)

DEFAULT_MIN_REQUEST_INTERVAL = 6.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RATE_LIMIT_BASE_WAIT = 10.0
DEFAULT_RETRY_WAIT = 2.0
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_OUTPUT_TOKENS = 65536

STRATEGY_STRUCTURED = "structured"
STRATEGY_CODE_BLOCK = "code_block"
STRATEGY_RAW = "raw"
STRATEGY_NON_GREEDY = "non_greedy"
STRATEGY_GREEDY = "greedy"

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_NON_GREEDY_OBJECT = re.compile(r"\{[\s\S]*?\}(?=\s*\Z|\s*```|\s*\n\n)")
_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")


class RateLimiter:
    """Minimum spacing between dispatches, shared by every caller."""

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_REQUEST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None

    def wait(self) -> float:
        """Block until the next request may go out; return the time waited."""
        with self._lock:
            waited = 0.0
            if self._last_request is not None:
                remaining = self.min_interval - (self._clock() - self._last_request)
                if remaining > 0:
                    logger.info("⏸️ Rate limit: waiting %.1fs before next request", remaining)
                    self._sleep(remaining)
                    waited = remaining
            self._last_request = self._clock()
            return waited

    def rate_limit_info(self) -> dict:
        rpm = int(60 / self.min_interval) if self.min_interval else 0
        return {"rpm": rpm, "min_interval_seconds": self.min_interval}


_shared_limiter: Optional[RateLimiter] = None
_shared_limiter_lock = threading.Lock()


def shared_rate_limiter(min_interval: Optional[float] = None) -> RateLimiter:
    """Return the process-wide limiter, creating it on first use."""
    global _shared_limiter
    with _shared_limiter_lock:
        if _shared_limiter is None:
            _shared_limiter = RateLimiter(
                DEFAULT_MIN_REQUEST_INTERVAL if min_interval is None else min_interval
            )
        elif min_interval is not None:
            _shared_limiter.min_interval = min_interval
        return _shared_limiter


def is_rate_limit_error(error: Exception) -> bool:
    if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return True
    message = str(error)
    return "429" in message or "RESOURCE_EXHAUSTED" in message


def _loads(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False, None


def extract_json(text: str, structured: bool = False) -> Tuple[str, Any]:
    """Recover JSON from a model response.

    Returns ``(strategy, value)`` for the first strategy that parses:
    structured (only when a response schema was requested), fenced code block,
    whole response, first object followed by end/fence/blank line, and finally
    the outermost ``{...}`` span.
    """
    if structured:
        ok, value = _loads(text)
        if ok:
            return STRATEGY_STRUCTURED, value
        logger.debug("⚠️ Structured response was not pure JSON, trying fallbacks")

    match = _CODE_BLOCK.search(text)
    if match:
        extracted = match.group(1).strip()
        if extracted.startswith(("{", "[")):
            ok, value = _loads(extracted)
            if ok:
                return STRATEGY_CODE_BLOCK, value
            logger.debug("⚠️ Failed to parse JSON from code block")

    ok, value = _loads(text)
    if ok:
        return STRATEGY_RAW, value

    match = _NON_GREEDY_OBJECT.search(text)
    if match:
        ok, value = _loads(match.group(0))
        if ok:
            return STRATEGY_NON_GREEDY, value

    match = _GREEDY_OBJECT.search(text)
    if match:
        ok, value = _loads(match.group(0))
        if ok:
            return STRATEGY_GREEDY, value

    head = text[:500]
    tail = text[-200:] if len(text) > 500 else ""
    logger.error("❌ Could not parse JSON from response (%d chars). First 500: %r Last 200: %r",
                 len(text), head, tail)
    raise JsonExtractionError(
        "Failed to parse JSON from Gemini response after all extraction strategies. "
        f"Response length: {len(text)} chars",
        length=len(text), head=head, tail=tail,
    )


class GeminiClient:
    """Rate-limited, retrying access to one Gemini model."""

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_GEMINI_MODEL,
        limiter: Optional[RateLimiter] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        rate_limit_base_wait: float = DEFAULT_RATE_LIMIT_BASE_WAIT,
        retry_wait: float = DEFAULT_RETRY_WAIT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self._model = genai.GenerativeModel(model_name)
        self.limiter = limiter or shared_rate_limiter()
        self.max_retries = max_retries
        self.rate_limit_base_wait = rate_limit_base_wait
        self.retry_wait = retry_wait
        self._sleep = sleep

    def generate(
        self,
        prompt: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        response_schema: Optional[dict] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        attempts = max_retries or self.max_retries
        config_kwargs = {"temperature": temperature, "max_output_tokens": max_output_tokens}
        if response_schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_schema"] = response_schema
        generation_config = genai.types.GenerationConfig(**config_kwargs)

        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                self.limiter.wait()
                logger.info("📤 Calling Gemini %s (attempt %d/%d)", self.model_name, attempt + 1, attempts)
                started = time.monotonic()
                response = self._model.generate_content(prompt, generation_config=generation_config)
                logger.info("⏱️ Request completed in %.2fs", time.monotonic() - started)
                return self._response_text(response)
            except Exception as e:
                last_error = e
                if is_rate_limit_error(e):
                    wait = (2 ** attempt) * self.rate_limit_base_wait
                    logger.warning("🚫 Rate limited. Waiting %.0fs before retry %d/%d", wait, attempt + 1, attempts)
                else:
                    wait = self.retry_wait
                    logger.warning("❌ Request failed: %s. Retrying (%d/%d)", e, attempt + 1, attempts)
                if attempt < attempts - 1:
                    self._sleep(wait)

        raise InferenceRetryError(
            f"Gemini call failed after {attempts} attempts: {last_error}", attempts=attempts,
        ) from last_error

    def _response_text(self, response) -> str:
        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            logger.info("📊 Token usage: %s prompt + %s completion = %s total",
                        getattr(usage, "prompt_token_count", "?"),
                        getattr(usage, "candidates_token_count", "?"),
                        getattr(usage, "total_token_count", "?"))

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
        if block_reason:
            raise InferenceError(f"Gemini blocked the response due to: {block_reason}")

        try:
            text = response.text
        except (ValueError, AttributeError) as e:
            raise InferenceError(f"Failed to extract text from Gemini response: {e}") from e

        if not text or not text.strip():
            raise InferenceError("Gemini returned an empty response")

        logger.info("✅ Received response (%d chars)", len(text))
        return text

    def generate_json(
        self,
        prompt: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        response_schema: Optional[dict] = None,
    ) -> Any:
        text = self.generate(
            prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_schema=response_schema,
        )
        strategy, value = extract_json(text, structured=response_schema is not None)
        logger.debug("JSON extracted with strategy %s", strategy)
        return value
