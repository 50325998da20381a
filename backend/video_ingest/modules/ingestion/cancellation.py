"""Cooperative cancellation for ingestion jobs."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from video_ingest.modules.ingestion.exceptions import IngestionCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signals that a job should stop at the next checkpoint.

    Stages call ``raise_if_cancelled`` between steps; engine calls race the
    subprocess against ``wait`` and kill the process when the token fires.
    """

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

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise IngestionCancelledError(
                f"Ingestion cancelled: {self.reason}", stage=stage
            )


async def watch_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    token: CancellationToken,
    poll_interval: float = 0.5,
) -> None:
    """Cancel ``token`` once the client has disconnected.

    Runs until the token fires or the task is cancelled by the caller.
    """
    while not token.cancelled:
        if await is_disconnected():
            logger.warning("Client disconnected, cancelling ingestion")
            token.cancel("client disconnected")
            return
        await asyncio.sleep(poll_interval)
