"""Channel announcement rendering.

The announcement is a constant Jinja2 template (Telegram HTML parse mode)
filled with the access URL, its validity window and a few fixed fragments
from MessageSettings. Rendering either produces a complete message or
raises; a partial credential message is never returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    select_autoescape,
)

if TYPE_CHECKING:
    from keycast.core.config import MessageSettings

logger = logging.getLogger(__name__)

ACCESS_KEY_TEMPLATE = "access_key.html"

# Telegram rejects longer sendMessage texts
MAX_MESSAGE_LENGTH = 4096


class MessageRenderError(Exception):
    """Raised when an announcement cannot be rendered completely."""

    pass


@dataclass(frozen=True)
class MessageConfig:
    """Fixed fragments of the announcement."""

    location: str = "Европа"
    instructions_url: str = "start.okbots.ru"
    promo_contact: str = "@okvpn_xbot"

    @classmethod
    def from_settings(cls, settings: MessageSettings) -> MessageConfig:
        """Create config from application settings."""
        return cls(
            location=settings.location,
            instructions_url=settings.instructions_url,
            promo_contact=settings.promo_contact,
        )


def hours_unit(count: int) -> str:
    """Russian plural form of "hour" agreeing with count."""
    if count % 10 == 1 and count % 100 != 11:
        return "час"
    if 2 <= count % 10 <= 4 and not 12 <= count % 100 <= 14:
        return "часа"
    return "часов"


class MessageRenderer:
    """Renders the access-key announcement.

    Example:
        renderer = MessageRenderer(MessageConfig())
        text = renderer.render_access_key(
            access_url="ss://...",
            created_at=record.created_at,
            expired_at=record.expired_at,
        )
    """

    def __init__(self, config: MessageConfig) -> None:
        """Initialize the renderer and its template environment."""
        self._config = config
        self._env = Environment(
            loader=PackageLoader("keycast", "templates/broadcast"),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            trim_blocks=True,
        )

    def render_access_key(
        self,
        access_url: str,
        created_at: datetime,
        expired_at: datetime,
    ) -> str:
        """Render the announcement for a freshly issued key.

        Args:
            access_url: Credential handed to subscribers.
            created_at: Issuance timestamp.
            expired_at: Expiry timestamp.

        Returns:
            Message text in Telegram HTML markup.

        Raises:
            MessageRenderError: Empty credential, template failure, or the
                result exceeds Telegram's message length limit.
        """
        if not access_url:
            msg = "Refusing to render an announcement without an access URL"
            raise MessageRenderError(msg)

        validity_hours = round((expired_at - created_at).total_seconds() / 3600)

        try:
            template = self._env.get_template(ACCESS_KEY_TEMPLATE)
            text = template.render(
                access_url=access_url,
                validity_hours=validity_hours,
                validity_unit=hours_unit(validity_hours),
                expires_at=expired_at.astimezone(UTC),
                location=self._config.location,
                instructions_url=self._config.instructions_url,
                promo_contact=self._config.promo_contact,
            ).strip()
        except TemplateError as e:
            msg = f"Announcement template failed to render: {e}"
            raise MessageRenderError(msg) from e

        if len(text) > MAX_MESSAGE_LENGTH:
            msg = f"Announcement is {len(text)} characters, limit is {MAX_MESSAGE_LENGTH}"
            raise MessageRenderError(msg)

        logger.debug("Rendered announcement: length=%d", len(text))
        return text
