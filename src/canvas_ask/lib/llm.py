"""Chat completions client with timeout, cancellation and retry/backoff.

One call sends a system + user message pair to `<base>/v1/chat/completions`
and returns the answer text. Failure handling:

- 408, 429, 5xx, network errors and per-attempt timeouts are retried, up to
  `max_attempts` in total. The delay honors a `Retry-After` header (seconds
  or HTTP date) and otherwise backs off exponentially, with +/-20% jitter and
  a small floor.
- Any other non-2xx status, or a 2xx body without answer text, fails at once.
- Cancellation through the token aborts the in-flight attempt or the pending
  backoff sleep and is never retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from canvas_ask.core.requests import CancellationToken

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"
RETRYABLE_STATUSES = frozenset({408, 429})
LOG_SAFE_MAX_CHARS = 300

_WHITESPACE = re.compile(r"\s+")


class CompletionError(Exception):
    """Raised when a completion cannot be obtained.

    Attributes:
        status: HTTP status, if a response was received
        code: Upstream error code or type, if the body carried one
        message: Log-safe description
    """

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class CompletionAborted(CompletionError):
    """The request was aborted, by the caller's token or by the attempt timer."""

    def __init__(self, message: str, reason: str = "cancelled"):
        super().__init__(message)
        self.reason = reason


class CompletionDisabled(CompletionError):
    """Remote completions are turned off or not configured; nothing was sent."""


class RetryPolicy(BaseModel):
    """Retry, backoff and timeout knobs (seconds)."""
    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(0.8, ge=0)
    max_delay: float = Field(6.0, ge=0)
    min_delay: float = Field(0.2, ge=0)
    jitter: float = Field(0.2, ge=0, le=1)
    timeout: float = Field(30.0, gt=0)


class CompletionRequest(BaseModel):
    """One question for the model."""
    model: str
    temperature: float = 0.2
    max_tokens: int = 1200
    system: str
    user: str

    def payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": self.system},
                {"role": "user", "content": self.user},
            ],
        }


def sanitize_for_log(value: Any, max_len: int = LOG_SAFE_MAX_CHARS) -> str:
    """Collapse whitespace and cap length so upstream text is safe to log."""
    text = _WHITESPACE.sub(" ", str(value if value is not None else "")).strip()
    return text[:max_len] + "…" if len(text) > max_len else text


def is_retryable_status(status: Optional[int]) -> bool:
    """408, 429, any 5xx, or no status at all (network failure)."""
    if status is None:
        return True
    return status in RETRYABLE_STATUSES or 500 <= status <= 599


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP date. Dates in the past and anything
    unparsable yield None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return float(int(text))

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return seconds if seconds > 0 else None


def compute_retry_delay(
    attempt: int,
    retry_after: Optional[float],
    policy: RetryPolicy,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay in seconds before the attempt following `attempt` (1-based).

    A server hint wins over exponential backoff. Jitter is applied to either;
    backoff without a hint stays within `max_delay`, and every delay is
    floored at `min_delay`.
    """
    uniform = (rng or random).uniform
    if retry_after is not None:
        delay = retry_after
    else:
        delay = min(policy.max_delay, policy.base_delay * (2 ** (attempt - 1)))

    delay += delay * uniform(-policy.jitter, policy.jitter)
    if retry_after is None:
        delay = min(policy.max_delay, delay)
    return max(policy.min_delay, delay)


class CompletionClient:
    """Resilient client for an OpenAI-compatible chat completions endpoint.

    Example usage:
        client = CompletionClient(base_url="https://api.openai.com", api_key=key)
        answer = await client.complete(request, token)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Endpoint origin, e.g. https://api.openai.com
            api_key: Bearer token
            policy: Retry/timeout policy (defaults to RetryPolicy())
            transport: Optional httpx transport (tests inject a MockTransport)
            rng: Random source for jitter
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.policy = policy or RetryPolicy()
        self._transport = transport
        self._rng = rng or random.Random()

    @property
    def url(self) -> str:
        return f"{self.base_url}{COMPLETIONS_PATH}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def complete(self, request: CompletionRequest, token: Optional[CancellationToken] = None) -> str:
        """Send `request` and return the answer text.

        Raises:
            CompletionAborted: The token fired, or the last attempt timed out
            CompletionError: Fatal status, empty answer, or retries exhausted
        """
        token = token or CancellationToken()
        payload = request.payload()
        policy = self.policy
        last_error: Optional[CompletionError] = None

        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            for attempt in range(1, policy.max_attempts + 1):
                if token.cancelled:
                    raise CompletionAborted("Request cancelled", reason="cancelled")

                retry_after: Optional[float] = None
                try:
                    response = await self._send(client, payload, token)
                except CompletionAborted as e:
                    if e.reason == "cancelled":
                        raise
                    last_error = e
                except httpx.RequestError as e:
                    last_error = CompletionError(
                        f"Network error calling completion API: {sanitize_for_log(e)}"
                    )
                else:
                    status = response.status_code
                    if 200 <= status < 300:
                        return self._parse_answer(response)

                    error = self._http_error(response)
                    if not is_retryable_status(status):
                        logger.error(error.message)
                        raise error
                    last_error = error
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))

                if attempt >= policy.max_attempts:
                    break

                delay = compute_retry_delay(attempt, retry_after, policy, self._rng)
                logger.warning(
                    f"Completion attempt {attempt}/{policy.max_attempts} failed "
                    f"({last_error.message}); retrying in {delay:.2f}s"
                )
                if await token.sleep(delay):
                    raise CompletionAborted("Request cancelled during backoff", reason="cancelled")

        if last_error is None:
            raise CompletionError("No completion attempt was made.")
        logger.error(f"Completion failed after {policy.max_attempts} attempts: {last_error.message}")
        raise last_error

    async def _send(
        self,
        client: httpx.AsyncClient,
        payload: Dict[str, Any],
        token: CancellationToken,
    ) -> httpx.Response:
        """One attempt, raced against the attempt timer and the token."""
        request_task = asyncio.ensure_future(client.post(self.url, headers=self._headers(), json=payload))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _pending = await asyncio.wait(
                {request_task, cancel_task},
                timeout=self.policy.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (request_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(request_task, cancel_task, return_exceptions=True)

        if token.cancelled:
            raise CompletionAborted("Request cancelled", reason="cancelled")
        if request_task in done:
            return request_task.result()
        raise CompletionAborted(f"Request timed out after {self.policy.timeout:g}s", reason="timeout")

    @staticmethod
    def _http_error(response: httpx.Response) -> CompletionError:
        """Build a log-safe error from a non-2xx response."""
        body = response.text or ""
        code: Optional[str] = None
        message: Optional[str] = None
        try:
            parsed = response.json() if body else None
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            err = parsed.get("error")
            if isinstance(err, dict):
                code = err.get("code") or err.get("type")
                message = err.get("message")
            code = code or parsed.get("code")
            message = message or parsed.get("message")

        detail = sanitize_for_log(message) if message else f"(response length {len(body)})"
        code_part = f" {code}" if code else ""
        return CompletionError(
            f"Completion API error {response.status_code}{code_part}: {detail}",
            status=response.status_code,
            code=str(code) if code else None,
        )

    @staticmethod
    def _parse_answer(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        content = None
        if isinstance(data, dict):
            choices = data.get("choices") or []
            if choices and isinstance(choices[0], dict):
                message = choices[0].get("message") or {}
                if isinstance(message, dict):
                    content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise CompletionError("No content returned from model.", status=response.status_code)
        return content.strip()


__all__ = [
    "CompletionClient",
    "CompletionRequest",
    "CompletionError",
    "CompletionAborted",
    "CompletionDisabled",
    "RetryPolicy",
    "sanitize_for_log",
    "is_retryable_status",
    "parse_retry_after",
    "compute_retry_delay",
]
