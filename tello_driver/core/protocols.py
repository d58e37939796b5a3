"""Protocol definitions for the pieces the dispatcher talks to."""

from __future__ import annotations

from typing import Optional, Protocol


class ResponseSource(Protocol):
    """Anything that hands out trimmed response lines in arrival order."""

    def get_nowait(self) -> Optional[str]:
        """Return the oldest queued response, or None when the queue is empty."""
        ...

    async def get(self, timeout: float) -> Optional[str]:
        """Wait up to ``timeout`` seconds for a response."""
        ...

    def drain(self) -> list[str]:
        """Drop and return every queued response."""
        ...


class DatagramSender(Protocol):
    """Minimal contract for the command channel."""

    async def send(self, payload: bytes) -> None:
        """Send one datagram to the remote endpoint."""
        ...
