"""Delivery transports for Cadence."""

from cadence_cli.transport.base import DeliveryTransport
from cadence_cli.transport.exceptions import (
    DeliveryRejectedError,
    TransportError,
    TransportNotConfiguredError,
)
from cadence_cli.transport.telegram import ChatInfo, TelegramTransport

__all__ = [
    "ChatInfo",
    "DeliveryRejectedError",
    "DeliveryTransport",
    "TelegramTransport",
    "TransportError",
    "TransportNotConfiguredError",
]
