"""Dispatch invoker.

Wraps a ``DeliveryTransport`` so the scheduler only ever sees a boolean
outcome. Every attempt leaves an activity entry tagged with the message
and recipient it was made for.
"""

import logging
from typing import Optional

from cadence_cli.activity import ActivityLog
from cadence_cli.transport.base import DeliveryTransport
from cadence_cli.transport.exceptions import TransportError

logger = logging.getLogger(__name__)


class DispatchInvoker:
    """Never-raising front for a delivery transport.

    Example:
        invoker = DispatchInvoker(TelegramTransport(token_provider), activity)
        ok = await invoker.send("-1001234567890", "<b>Hi</b>", message_id=1, recipient_id=2)
    """

    def __init__(self, transport: DeliveryTransport, activity: ActivityLog) -> None:
        self._transport = transport
        self._activity = activity

    @property
    def transport(self) -> DeliveryTransport:
        return self._transport

    def is_ready(self) -> bool:
        try:
            return self._transport.is_ready()
        except Exception as e:
            logger.debug(f"Transport readiness check failed: {e}")
            return False

    async def _initialize(self) -> Optional[str]:
        """Initialize the transport if needed; return an error text on failure."""
        if self.is_ready():
            return None

        try:
            await self._transport.initialize()
        except TransportError as e:
            return e.message
        except Exception as e:
            return str(e) or type(e).__name__

        if not self.is_ready():
            return "transport not ready after initialization"
        return None

    async def ensure_ready(self) -> bool:
        """Initialize on demand, recording an error entry if that fails."""
        error = await self._initialize()
        if error is not None:
            self._activity.error(f"Failed to initialize delivery transport: {error}")
            return False
        return True

    async def send(
        self,
        destination: str,
        payload: str,
        message_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> bool:
        """Deliver ``payload`` to ``destination``.

        Returns:
            True if the transport accepted the message, False otherwise
        """
        error = await self._initialize()
        if error is not None:
            self._activity.error(
                f"Failed to send message to chat {destination}: {error}",
                message_id,
                recipient_id,
            )
            return False

        try:
            delivered = await self._transport.send(destination, payload)
        except TransportError as e:
            error = e.message
            delivered = False
        except Exception as e:
            error = str(e) or type(e).__name__
            delivered = False
        else:
            if not delivered:
                error = "transport reported failure"

        if delivered:
            self._activity.success(
                f"Message sent successfully to chat {destination}",
                message_id,
                recipient_id,
            )
            return True

        self._activity.error(
            f"Failed to send message to chat {destination}: {error}",
            message_id,
            recipient_id,
        )
        return False

    async def validate_destination(self, destination: str) -> bool:
        """Check the destination is a chat the transport can deliver to."""
        if await self._initialize() is not None:
            return False

        try:
            return bool(await self._transport.validate_destination(destination))
        except Exception as e:
            logger.warning(f"Destination {destination} failed validation: {e}")
            return False
