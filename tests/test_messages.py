"""Tests for the channel announcement renderer."""

from __future__ import annotations

from datetime import timedelta

import pytest

from keycast.core.config import MessageSettings
from keycast.services.messages import (
    MAX_MESSAGE_LENGTH,
    MessageConfig,
    MessageRenderer,
    MessageRenderError,
    hours_unit,
)
from tests.factories import FIXED_NOW

ACCESS_URL = "ss://Y2hhY2hhMjA6cGFzcw@203.0.113.10:41234/?outline=1"


class TestHoursUnit:
    """Tests for Russian plural agreement."""

    @pytest.mark.parametrize(
        ("count", "expected"),
        [
            (1, "час"),
            (21, "час"),
            (2, "часа"),
            (4, "часа"),
            (24, "часа"),
            (5, "часов"),
            (11, "часов"),
            (12, "часов"),
            (14, "часов"),
            (48, "часов"),
            (111, "часов"),
        ],
    )
    def test_plural_forms(self, count: int, expected: str):
        assert hours_unit(count) == expected


class TestMessageConfig:
    def test_from_settings(self):
        """Config copies the fixed fragments."""
        settings = MessageSettings(
            location="Нидерланды",
            instructions_url="x.example",
            promo_contact="",
        )

        config = MessageConfig.from_settings(settings)

        assert config.location == "Нидерланды"
        assert config.instructions_url == "x.example"
        assert config.promo_contact == ""


class TestRenderAccessKey:
    """Tests for MessageRenderer.render_access_key."""

    @pytest.fixture
    def renderer(self) -> MessageRenderer:
        return MessageRenderer(MessageConfig())

    def test_contains_credential_and_validity(self, renderer: MessageRenderer):
        """The message embeds the URL, validity window, expiry and fixed fragments."""
        text = renderer.render_access_key(
            access_url=ACCESS_URL,
            created_at=FIXED_NOW,
            expired_at=FIXED_NOW + timedelta(hours=48),
        )

        assert f"<code>{ACCESS_URL}</code>" in text
        assert "<b>48 часов</b>" in text
        assert "21.10.2026 12:00 UTC" in text
        assert "Европа" in text
        assert "start.okbots.ru" in text
        assert "@okvpn_xbot" in text
        assert text == text.strip()

    def test_validity_unit_agrees(self, renderer: MessageRenderer):
        """A 24-hour key is announced with the matching plural form."""
        text = renderer.render_access_key(
            access_url=ACCESS_URL,
            created_at=FIXED_NOW,
            expired_at=FIXED_NOW + timedelta(hours=24),
        )

        assert "<b>24 часа</b>" in text

    def test_promo_omitted_when_empty(self):
        """An empty promo contact drops the whole promo block."""
        renderer = MessageRenderer(MessageConfig(promo_contact=""))

        text = renderer.render_access_key(
            access_url=ACCESS_URL,
            created_at=FIXED_NOW,
            expired_at=FIXED_NOW + timedelta(hours=48),
        )

        assert "премиум" not in text
        assert text.endswith("</code>")

    def test_values_are_html_escaped(self):
        """Configured fragments cannot inject markup."""
        renderer = MessageRenderer(MessageConfig(location="<i>EU</i> & co"))

        text = renderer.render_access_key(
            access_url=ACCESS_URL,
            created_at=FIXED_NOW,
            expired_at=FIXED_NOW + timedelta(hours=48),
        )

        assert "&lt;i&gt;EU&lt;/i&gt; &amp; co" in text
        assert "<i>" not in text

    def test_empty_access_url_rejected(self, renderer: MessageRenderer):
        """A message is never rendered without a credential."""
        with pytest.raises(MessageRenderError, match="without an access URL"):
            renderer.render_access_key(
                access_url="",
                created_at=FIXED_NOW,
                expired_at=FIXED_NOW + timedelta(hours=48),
            )

    def test_oversized_message_rejected(self, renderer: MessageRenderer):
        """Messages beyond Telegram's limit fail instead of being truncated."""
        with pytest.raises(MessageRenderError, match="limit is"):
            renderer.render_access_key(
                access_url="ss://" + "A" * MAX_MESSAGE_LENGTH,
                created_at=FIXED_NOW,
                expired_at=FIXED_NOW + timedelta(hours=48),
            )
