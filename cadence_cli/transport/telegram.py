"""Telegram Bot API delivery transport.

Talks to the Bot API over HTTPS with ``httpx``. Destinations are chat
ids (``-100...`` for supergroups) or public ``@channel`` usernames.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from cadence_cli.transport.base import DeliveryTransport
from cadence_cli.transport.exceptions import (
    DeliveryRejectedError,
    TransportError,
    TransportNotConfiguredError,
)

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = ("group", "supergroup")


@dataclass
class ChatInfo:
    """Summary of a chat the bot can see."""

    id: int
    title: str
    type: str
    member_count: Optional[int] = None
    description: Optional[str] = None
    can_send_messages: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "member_count": self.member_count,
            "description": self.description,
            "can_send_messages": self.can_send_messages,
        }


class TelegramTransport(DeliveryTransport):
    """Bot API client used as the delivery transport.

    The token is looked up through ``token_provider`` on every
    ``initialize()`` so a token changed in the settings table takes
    effect on the next re-initialization without a restart.

    Example:
        transport = TelegramTransport(lambda: os.environ["CADENCE_BOT_TOKEN"])
        await transport.initialize()
        await transport.send("-1001234567890", "<b>Hello</b>")
    """

    def __init__(
        self,
        token_provider: Callable[[], Optional[str]],
        api_base: str = "https://api.telegram.org",
        timeout: float = 30.0,
        parse_mode: Optional[str] = "HTML",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the transport.

        Args:
            token_provider: Returns the bot token, or None/"" if unset
            api_base: Bot API base URL
            timeout: Per-request timeout in seconds
            parse_mode: Telegram parse mode for message bodies
            http_transport: Optional httpx transport (tests use MockTransport)
        """
        self._token_provider = token_provider
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.parse_mode = parse_mode
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[str] = None
        self._initialized = False
        self.bot_username: Optional[str] = None
        self.bot_id: Optional[int] = None

    def is_ready(self) -> bool:
        return self._initialized and self._client is not None

    async def initialize(self) -> None:
        """Resolve the token and verify it with ``getMe``.

        Raises:
            TransportNotConfiguredError: If the token is missing or rejected
        """
        token = self._token_provider()
        if not token:
            self._initialized = False
            raise TransportNotConfiguredError(
                "Bot token not found. Set CADENCE_BOT_TOKEN or the bot_token setting."
            )

        await self.close()
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=f"{self.api_base}/bot{token}",
            timeout=self.timeout,
            transport=self._http_transport,
        )

        try:
            me = await self._call("getMe")
        except TransportError as e:
            await self.close()
            raise TransportNotConfiguredError(f"Failed to initialize bot: {e.message}") from e

        self.bot_id = me.get("id")
        self.bot_username = me.get("username")
        self._initialized = True
        logger.info(f"Telegram bot initialized: @{self.bot_username}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._initialized = False

    def _redact(self, text: str) -> str:
        if self._token:
            return text.replace(self._token, "<token>")
        return text

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a Bot API method and return its ``result`` payload.

        Raises:
            TransportError: On network failure or malformed response
            DeliveryRejectedError: When the API answers ``ok: false``
        """
        if self._client is None:
            raise TransportNotConfiguredError("Bot not initialized")

        chat_id = str(params.get("chat_id")) if params and "chat_id" in params else None

        try:
            response = await self._client.post(f"/{method}", json=params or {})
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method} request failed: {self._redact(str(e)) or type(e).__name__}",
                chat_id,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} returned non-JSON response (HTTP {response.status_code})",
                chat_id,
            ) from e

        if not data.get("ok"):
            raise DeliveryRejectedError(
                data.get("description") or f"{method} failed",
                chat_id,
                status_code=data.get("error_code", response.status_code),
            )

        return data.get("result")

    async def send(self, destination: str, payload: str) -> bool:
        params: Dict[str, Any] = {"chat_id": destination, "text": payload}
        if self.parse_mode:
            params["parse_mode"] = self.parse_mode
        await self._call("sendMessage", params)
        return True

    async def validate_destination(self, destination: str) -> bool:
        chat = await self._call("getChat", {"chat_id": destination})
        return chat.get("type") in GROUP_CHAT_TYPES

    async def get_chat_info(self, destination: str) -> ChatInfo:
        """Fetch title, member count and whether the bot may post."""
        chat = await self._call("getChat", {"chat_id": destination})
        member_count = await self._call("getChatMemberCount", {"chat_id": destination})

        can_send = True
        if chat.get("type") in GROUP_CHAT_TYPES:
            admins: List[Dict[str, Any]] = await self._call(
                "getChatAdministrators", {"chat_id": destination}
            )
            for admin in admins:
                if admin.get("user", {}).get("id") == self.bot_id:
                    can_send = admin.get("can_post_messages", True) is not False
                    break

        return ChatInfo(
            id=chat["id"],
            title=chat.get("title") or "Untitled",
            type=chat.get("type", "unknown"),
            member_count=member_count,
            description=chat.get("description"),
            can_send_messages=can_send,
        )
