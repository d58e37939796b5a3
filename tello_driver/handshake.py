"""SDK mode handshake with the drone."""

from __future__ import annotations

import logging
from typing import Optional

from . import constants
from .commands import CommandDispatcher
from .core.models import CommandResponse, RetryPolicy
from .core.protocols import ResponseSource
from .errors import HandshakeError, SendError

LOGGER = logging.getLogger(__name__)


async def perform_handshake(
    dispatcher: CommandDispatcher,
    responses: ResponseSource,
    policy: RetryPolicy,
) -> CommandResponse:
    """Send ``command`` until the drone answers or the attempts run out.

    Each attempt sends the command again and waits up to ``policy.delay``
    seconds for any reply, which tolerates the drone booting mid-loop and
    lost round-trips.

    Raises:
        HandshakeError: If no reply arrives after ``policy.max_attempts`` sends.
    """

    LOGGER.info("Finding Tello ...")
    for attempt in range(1, policy.max_attempts + 1):
        try:
            await dispatcher.send_command(constants.HANDSHAKE_COMMAND)
        except SendError as exc:
            LOGGER.warning(
                "Handshake attempt %d/%d could not be sent: %s",
                attempt,
                policy.max_attempts,
                exc,
            )

        # The wait also spaces out the attempts when the send failed.
        reply: Optional[str] = await responses.get(policy.delay)
        if reply is None:
            LOGGER.debug(
                "No handshake reply (attempt %d/%d)", attempt, policy.max_attempts
            )
            continue

        response = CommandResponse(text=reply)
        if not response.ok:
            LOGGER.warning("Drone answered the handshake with %r", response.text)
        LOGGER.info("Entered SDK mode after %d attempt(s)", attempt)
        return response

    raise HandshakeError(policy.max_attempts)
