"""Per-operation request context.

Each remote request gets its own cancellation token. At most one request of a
given kind is in flight: acquiring a new token for a kind cancels and
discards the previous one.
"""

import asyncio
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation signal threaded through network attempts and sleeps."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"Request cancelled: {reason}")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep for `delay` seconds unless cancelled first.

        Returns:
            True if the token fired before the delay elapsed
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            return False
        return True


class RequestRegistry:
    """Tracks the current token per operation kind."""

    def __init__(self) -> None:
        self._active: Dict[str, CancellationToken] = {}

    def acquire(self, kind: str) -> CancellationToken:
        """Return a fresh token for `kind`, cancelling any outstanding one."""
        previous = self._active.pop(kind, None)
        if previous is not None and not previous.cancelled:
            previous.cancel(f"superseded by a new {kind} request")
        token = CancellationToken()
        self._active[kind] = token
        return token

    def release(self, kind: str, token: CancellationToken) -> None:
        """Forget `token` if it is still the current one for `kind`."""
        if self._active.get(kind) is token:
            del self._active[kind]

    def active(self, kind: str) -> Optional[CancellationToken]:
        return self._active.get(kind)

    def cancel(self, kind: str, reason: str = "cancelled by user") -> bool:
        """Cancel the outstanding request of `kind`, if any."""
        token = self._active.pop(kind, None)
        if token is None:
            return False
        token.cancel(reason)
        return True


__all__ = ["CancellationToken", "RequestRegistry"]
