"""Pytest configuration and shared fixtures.

Collaborators of the lifecycle service (record store, provisioning client,
broadcast client) are replaced with spec'd AsyncMocks; no test needs a
running PostgreSQL, management API or Telegram.
"""

from __future__ import annotations

import random
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from keycast.core.settings import clear_settings_cache
from keycast.db.models.servers import Server
from keycast.services.broadcast import TelegramBroadcastClient
from keycast.services.key_store import AccessKeyStore
from keycast.services.lifecycle import AccessKeyLifecycleService
from keycast.services.messages import MessageConfig, MessageRenderer
from keycast.services.provisioning import ProvisioningClient
from tests.factories import CHANNEL_ID, FIXED_NOW, create_issued_credential, create_server


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def servers() -> list[Server]:
    """Two eligible servers."""
    return [
        create_server(ip_address="203.0.113.10"),
        create_server(ip_address="203.0.113.20", management_key="other-secret"),
    ]


@pytest.fixture
def store() -> AsyncMock:
    """Record store double with empty defaults."""
    store = AsyncMock(spec=AccessKeyStore)
    store.save.side_effect = lambda record: record
    store.list_expired.return_value = []
    store.delete.return_value = True
    store.last_issued_at.return_value = None
    return store


@pytest.fixture
def provisioning() -> AsyncMock:
    """Provisioning client double issuing a credential for whichever server it gets."""
    provisioning = AsyncMock(spec=ProvisioningClient)
    provisioning.issue.side_effect = lambda server: create_issued_credential(server)
    provisioning.revoke.return_value = None
    return provisioning


@pytest.fixture
def broadcast() -> AsyncMock:
    """Broadcast client double returning a message id."""
    broadcast = AsyncMock(spec=TelegramBroadcastClient)
    broadcast.send.return_value = 101
    return broadcast


@pytest.fixture
def renderer() -> MessageRenderer:
    """Renderer with the default announcement fragments."""
    return MessageRenderer(MessageConfig())


@pytest.fixture
def lifecycle(
    store: AsyncMock,
    provisioning: AsyncMock,
    broadcast: AsyncMock,
    renderer: MessageRenderer,
) -> AccessKeyLifecycleService:
    """Lifecycle service wired to the doubles, with a frozen clock."""
    return AccessKeyLifecycleService(
        store=store,
        provisioning=provisioning,
        broadcast=broadcast,
        renderer=renderer,
        channel_id=CHANNEL_ID,
        key_validity=timedelta(hours=48),
        call_timeout=1.0,
        rng=random.Random(7),
        clock=lambda: FIXED_NOW,
    )
