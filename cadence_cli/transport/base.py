"""Delivery transport interface."""

from abc import ABC, abstractmethod


class DeliveryTransport(ABC):
    """Sends message payloads to destinations.

    Implementations raise ``TransportError`` subclasses on failure;
    ``DispatchInvoker`` is the layer that turns those into boolean
    outcomes and activity entries.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the session (resolve credentials, open clients).

        Raises:
            TransportNotConfiguredError: If credentials are missing or invalid
        """

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    async def send(self, destination: str, payload: str) -> bool:
        """Deliver ``payload`` to ``destination``; True on success."""

    @abstractmethod
    async def validate_destination(self, destination: str) -> bool:
        """Check that the destination exists and accepts deliveries."""

    async def close(self) -> None:
        """Release network resources."""
