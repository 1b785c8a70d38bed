"""
Bookkeeping for in-flight requests.

Each outstanding send owns one PendingRequest keyed by correlation id. A
single reaper task sweeps expired entries; resolution, rejection and expiry
all remove the entry, so whichever happens first wins and later attempts
are no-ops.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from .errors import TimedOut

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """One outstanding request waiting for its response."""
    id: str
    recipient: str
    created_at: float   # event loop time
    deadline: float     # event loop time
    timeout: float
    future: asyncio.Future

    @property
    def done(self) -> bool:
        return self.future.done()


class PendingRequestTable:
    """Correlation id -> PendingRequest, with a deadline reaper."""

    def __init__(self):
        self._entries: Dict[str, PendingRequest] = {}
        self._wakeup = asyncio.Event()
        self._reaper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._entries

    def get(self, request_id: str) -> Optional[PendingRequest]:
        return self._entries.get(request_id)

    def register(self, request_id: str, recipient: str, timeout: float) -> PendingRequest:
        """Add a request; raises ValueError if the id is already pending."""
        if request_id in self._entries:
            raise ValueError(f"Request {request_id} is already pending")

        loop = asyncio.get_running_loop()
        now = loop.time()
        entry = PendingRequest(
            id=request_id,
            recipient=recipient,
            created_at=now,
            deadline=now + timeout,
            timeout=timeout,
            future=loop.create_future(),
        )
        self._entries[request_id] = entry
        self._wakeup.set()
        return entry

    def resolve(self, request_id: str, result: Any) -> bool:
        """Complete a request with a result. Returns False if nothing was pending."""
        entry = self._entries.pop(request_id, None)
        if entry is None or entry.done:
            return False
        entry.future.set_result(result)
        return True

    def reject(self, request_id: str, error: Exception) -> bool:
        """Fail a request. Returns False if nothing was pending."""
        entry = self._entries.pop(request_id, None)
        if entry is None or entry.done:
            return False
        entry.future.set_exception(error)
        return True

    def reject_all(self, error_factory) -> int:
        """Fail every pending request with a fresh error from `error_factory()`."""
        count = 0
        for request_id in list(self._entries):
            if self.reject(request_id, error_factory()):
                count += 1
        return count

    def discard(self, request_id: str) -> None:
        """Forget a request without completing it."""
        self._entries.pop(request_id, None)

    def expire(self, now: Optional[float] = None) -> int:
        """Reject every entry whose deadline is at or before `now`."""
        if now is None:
            now = asyncio.get_running_loop().time()

        expired = [e for e in self._entries.values() if e.deadline <= now]
        for entry in expired:
            if self.reject(entry.id, TimedOut(entry.timeout)):
                logger.debug(f"Request {entry.id} to {entry.recipient[:16]}... timed out")
        return len(expired)

    def next_deadline(self) -> Optional[float]:
        if not self._entries:
            return None
        return min(e.deadline for e in self._entries.values())

    def start(self) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap())

    async def stop(self) -> None:
        if self._reaper is None:
            return
        self._reaper.cancel()
        try:
            await self._reaper
        except asyncio.CancelledError:
            pass
        self._reaper = None

    async def _reap(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._wakeup.clear()
            self.expire(loop.time())

            deadline = self.next_deadline()
            if deadline is None:
                await self._wakeup.wait()
                continue

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                pass
