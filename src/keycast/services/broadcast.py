"""Telegram Bot API broadcast client.

Delivers one formatted message to a chat or channel via sendMessage.
The bot token is part of every request URL, so neither URLs nor raw
transport errors are put into log records or exception messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from keycast.core.config import TelegramSettings

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT = 15.0


@dataclass(frozen=True)
class BroadcastConfig:
    """Configuration for the Telegram client.

    Attributes:
        bot_token: Bot token issued by @BotFather.
        api_base_url: Bot API base URL without trailing slash.
        timeout: Request timeout in seconds.
        parse_mode: Markup dialect for message text.
        disable_web_page_preview: Suppress link previews in the channel.
    """

    bot_token: str = field(repr=False)
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = True

    @classmethod
    def from_settings(cls, settings: TelegramSettings) -> BroadcastConfig:
        """Create config from application settings."""
        return cls(
            bot_token=settings.bot_token.get_secret_value(),
            api_base_url=settings.api_base_url,
            timeout=settings.timeout,
        )


class ResponseParameters(BaseModel):
    """Extra hints Telegram attaches to some errors."""

    retry_after: int | None = None
    migrate_to_chat_id: int | None = None


class BotApiResponse(BaseModel):
    """Envelope returned by every Bot API method."""

    ok: bool
    result: dict[str, Any] | None = None
    description: str | None = None
    error_code: int | None = None
    parameters: ResponseParameters | None = None


class BroadcastError(Exception):
    """Base exception for broadcast client errors."""

    pass


class BroadcastConnectionError(BroadcastError):
    """Failed to reach the Bot API (network error or timeout)."""

    pass


class BroadcastRejectedError(BroadcastError):
    """The Bot API refused the message.

    Attributes:
        error_code: Telegram error code (mirrors the HTTP status).
        description: Telegram's explanation.
        retry_after: Seconds to wait when rate limited.
    """

    def __init__(
        self,
        description: str,
        error_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.description = description
        self.error_code = error_code
        self.retry_after = retry_after
        super().__init__(f"Telegram rejected message ({error_code}): {description}")


class TelegramBroadcastClient:
    """Client for posting announcements to a Telegram chat.

    Example usage:
        async with TelegramBroadcastClient(BroadcastConfig(bot_token=token)) as client:
            message_id = await client.send(-1001234567890, "<b>hello</b>")
    """

    def __init__(self, config: BroadcastConfig) -> None:
        """Initialize broadcast client with configuration."""
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TelegramBroadcastClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(timeout=self._config.timeout)
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context."""
        if self._client is None:
            msg = "TelegramBroadcastClient must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    def _method_url(self, method: str) -> str:
        return f"{self._config.api_base_url}/bot{self._config.bot_token}/{method}"

    async def send(self, destination: int | str, text: str) -> int:
        """Send a message.

        Args:
            destination: Chat id or @channel username.
            text: Message text in the configured parse mode.

        Returns:
            Telegram message id of the posted message.

        Raises:
            BroadcastConnectionError: Bot API unreachable or timed out.
            BroadcastRejectedError: Telegram answered ok=false.
            BroadcastError: Response could not be understood.
        """
        client = self._get_client()
        payload = {
            "chat_id": destination,
            "text": text,
            "parse_mode": self._config.parse_mode,
            "disable_web_page_preview": self._config.disable_web_page_preview,
        }

        try:
            response = await client.post(self._method_url("sendMessage"), json=payload)
        except httpx.RequestError as e:
            # str(e) may embed the request URL and with it the token
            raise BroadcastConnectionError(
                f"Cannot reach Telegram Bot API: {type(e).__name__}"
            ) from e

        try:
            body = BotApiResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise BroadcastError(
                f"Unexpected Bot API response (HTTP {response.status_code})"
            ) from e

        if not body.ok:
            retry_after = body.parameters.retry_after if body.parameters else None
            if retry_after is not None:
                logger.warning(
                    "Telegram rate limit hit: chat_id=%s, retry_after=%ss",
                    destination,
                    retry_after,
                )
            raise BroadcastRejectedError(
                body.description or "no description",
                error_code=body.error_code or response.status_code,
                retry_after=retry_after,
            )

        message_id = (body.result or {}).get("message_id")
        if not isinstance(message_id, int):
            msg = "Bot API response carries no message_id"
            raise BroadcastError(msg)

        logger.info("Message posted: chat_id=%s, message_id=%d", destination, message_id)
        return message_id
