"""Command dispatch and response correlation.

The wire protocol carries no request id, so a response is matched to
whichever awaited command is outstanding when it is dequeued. Awaited
commands are serialized by a lock so there is never more than one of them in
flight; fire-and-forget commands sent in between may still have their replies
picked up by the next awaited command unless stale responses are discarded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .core.models import CommandResponse, RetryPolicy
from .core.protocols import DatagramSender, ResponseSource
from .errors import CommandTimeoutError

LOGGER = logging.getLogger(__name__)


def encode_command(text: str) -> bytes:
    """Encode a command line as sent on the wire (no trailing newline)."""

    return text.rstrip("\r\n").encode("utf-8")


class CommandDispatcher:
    """Send text commands and wait for their replies."""

    def __init__(
        self,
        sender: DatagramSender,
        responses: ResponseSource,
        *,
        default_policy: Optional[RetryPolicy] = None,
        discard_stale: bool = True,
    ) -> None:
        self._sender = sender
        self._responses = responses
        self._default_policy = default_policy or RetryPolicy(max_attempts=20, delay=0.5)
        self._discard_stale = discard_stale
        self._await_lock = asyncio.Lock()
        self._sent = 0
        self._timeouts = 0

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def timeout_count(self) -> int:
        return self._timeouts

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    async def send_command(self, text: str) -> None:
        """Send ``text`` once without waiting for a reply.

        Raises:
            SendError: If the datagram cannot be written.
        """

        payload = encode_command(text)
        await self._sender.send(payload)
        self._sent += 1
        LOGGER.debug("Sent command: %s", text)

    async def send_command_await_response(
        self, text: str, policy: Optional[RetryPolicy] = None
    ) -> CommandResponse:
        """Send ``text`` and return the first response that arrives.

        The reply is awaited in ``policy.max_attempts`` windows of
        ``policy.delay`` seconds. A non-``ok`` reply is still returned; check
        :attr:`CommandResponse.ok`.

        Raises:
            SendError: If the datagram cannot be written.
            CommandTimeoutError: If nothing arrives within the retry budget.
        """

        retry = policy or self._default_policy
        async with self._await_lock:
            if self._discard_stale:
                stale = self._responses.drain()
                if stale:
                    LOGGER.debug("Discarded %d stale response(s): %s", len(stale), stale)

            await self.send_command(text)

            for attempt in range(1, retry.max_attempts + 1):
                text_response = await self._responses.get(retry.delay)
                if text_response is None:
                    LOGGER.debug(
                        "No response to %r yet (attempt %d/%d)",
                        text,
                        attempt,
                        retry.max_attempts,
                    )
                    continue

                response = CommandResponse(text=text_response)
                LOGGER.debug(
                    "Command %r answered after %d attempt(s): %s",
                    text,
                    attempt,
                    response.text,
                )
                return response

        self._timeouts += 1
        LOGGER.warning(
            "Command %r timed out after %d attempt(s)", text, retry.max_attempts
        )
        raise CommandTimeoutError(text, retry.max_attempts)

    def get_response_nowait(self) -> Optional[CommandResponse]:
        """Return the next queued response without waiting, if any."""

        text = self._responses.get_nowait()
        if text is None:
            return None
        return CommandResponse(text=text)
