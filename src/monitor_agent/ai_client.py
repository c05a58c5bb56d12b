"""AI service connector used by the planner, code generator and reviewer.

Supports Anthropic (Claude) and OpenAI (GPT / o-series) models.  Requests
are retried with exponential backoff on transient failures; structured
responses are parsed into pydantic models and a response that does not
parse is a hard :class:`AIResponseError`.
"""

from __future__ import annotations

import json
import logging
import re
import socket
import time
import urllib.error
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from monitor_agent.errors import AIResponseError, AIServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_BACKOFF_BASE = 2.0
RETRY_BACKOFF_MAX_S = 60.0

NON_RETRYABLE_ERROR_PATTERNS = [
    "quota exceeded", "insufficient_quota", "model not found", "invalid x-api-key",
    "authentication", "permission",
]
RETRYABLE_ERROR_PATTERNS = [
    "rate limit", "429", "timeout", "timed out", "temporarily unavailable", "overloaded",
    "server error", "500", "502", "503", "529", "connection", "reset by peer",
    "service unavailable",
]


_FENCED = re.compile(r"^\s*(```|~~~)(?:json)?[ \t]*\n(.*)\n\s*\1\s*$", re.DOTALL | re.IGNORECASE)


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def strip_json_wrappers(text: str) -> str:
    """Remove a ```json ... ``` or ~~~json ... ~~~ wrapper around the whole answer.

    Fences inside the payload (a README in a file's content, say) are left alone.
    """
    match = _FENCED.match(text)
    if match:
        return match.group(2).strip()
    return text.strip()


def extract_json_text(text: str) -> str:
    """Return the JSON document inside *text*, tolerating prose around it."""
    body = text.strip()
    if _is_json(body):
        return body
    body = strip_json_wrappers(body)
    if body[:1] in "{[":
        return body
    starts = [i for i in (body.find("{"), body.find("[")) if i >= 0]
    if not starts:
        return body
    start = min(starts)
    closer = "}" if body[start] == "{" else "]"
    end = body.rfind(closer)
    return body[start : end + 1] if end > start else body[start:]


def parse_json_response(text: str, target: Any) -> Any:
    """Parse *text* into *target* (a pydantic model class or type expression)."""
    raw = extract_json_text(text)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"AI response is not valid JSON: {exc}; got {raw[:200]!r}") from exc
    try:
        return TypeAdapter(target).validate_python(payload)
    except ValidationError as exc:
        raise AIResponseError(f"AI response does not match the expected shape: {exc}") from exc


def provider_from_model(model: str) -> str:
    """Determine the provider from a model name string."""
    m = (model or "").lower().strip()
    if "gpt" in m or m.startswith(("o1", "o3", "o4")):
        return "openai"
    if any(k in m for k in ("claude", "opus", "sonnet", "haiku")):
        return "anthropic"
    return "unknown"


def _is_retryable_error(e: Exception) -> bool:
    """Heuristically classify whether a provider error is retryable."""
    if isinstance(e, (socket.timeout, ConnectionError, urllib.error.URLError, TimeoutError)):
        return True
    msg = str(e).lower()
    for p in NON_RETRYABLE_ERROR_PATTERNS:
        if p in msg:
            return False
    status = getattr(e, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    return any(p in msg for p in RETRYABLE_ERROR_PATTERNS)


class AIClient:
    """Thin, retrying wrapper over the Anthropic and OpenAI SDKs."""

    def __init__(
        self,
        model: str,
        *,
        anthropic_api_key: str = "",
        openai_api_key: str = "",
        max_tokens: int = 4096,
        max_attempts: int = 3,
        timeout_s: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.model = model
        self.provider = provider_from_model(model)
        if self.provider == "unknown":
            raise ValueError(f"Unsupported model '{model}'. Supported: Claude, GPT, o-series")
        self.anthropic_api_key = anthropic_api_key
        self.openai_api_key = openai_api_key
        self.max_tokens = max_tokens
        self.max_attempts = max(1, int(max_attempts))
        self.timeout_s = timeout_s
        self._sleep = sleep
        self._client: Any = None

    # -- provider plumbing -------------------------------------------------

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if self.provider == "anthropic":
            if not self.anthropic_api_key:
                raise AIServiceError("ANTHROPIC_API_KEY not set")
            from anthropic import Anthropic

            self._client = Anthropic(
                api_key=self.anthropic_api_key, timeout=self.timeout_s, max_retries=0
            )
        else:
            if not self.openai_api_key:
                raise AIServiceError("OPENAI_API_KEY not set")
            from openai import OpenAI

            self._client = OpenAI(
                api_key=self.openai_api_key, timeout=self.timeout_s, max_retries=0
            )
        return self._client

    def _call_anthropic(self, system: str, prompt: str) -> str:
        msg = self._get_client().messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        parts = [getattr(p, "text", "") for p in (getattr(msg, "content", []) or [])]
        return "".join(parts).strip()

    def _call_openai(self, system: str, prompt: str) -> str:
        resp = self._get_client().chat.completions.create(
            model=self.model,
            max_completion_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        text = resp.choices[0].message.content if resp.choices else ""
        return (text or "").strip()

    def _sleep_with_backoff(self, attempt: int) -> None:
        delay = min(RETRY_BACKOFF_BASE ** (attempt - 1), RETRY_BACKOFF_MAX_S)
        self._sleep(delay)

    # -- public API --------------------------------------------------------

    def complete(self, system: str, prompt: str, *, operation: str = "") -> str:
        """Return the model's text answer, retrying transient failures."""
        call = self._call_anthropic if self.provider == "anthropic" else self._call_openai
        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            try:
                text = call(system, prompt)
            except AIServiceError:
                raise
            except Exception as exc:
                if attempt >= self.max_attempts or not _is_retryable_error(exc):
                    raise AIServiceError(
                        f"{self.provider} request failed ({operation or 'completion'}): {exc}"
                    ) from exc
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying",
                    operation or "AI request", attempt, self.max_attempts, exc,
                )
                self._sleep_with_backoff(attempt)
                continue
            logger.debug(
                "%s answered %s in %.1fs (%d chars)",
                self.model, operation or "request", time.monotonic() - started, len(text),
            )
            if not text:
                raise AIResponseError(f"Empty response from {self.model} ({operation})")
            return text
        raise AIServiceError(f"{self.provider} request failed ({operation})")

    def complete_json(self, system: str, prompt: str, target: Any, *, operation: str = "") -> Any:
        """Ask for JSON and parse it into *target*; parse failures are not retried."""
        return parse_json_response(self.complete(system, prompt, operation=operation), target)
