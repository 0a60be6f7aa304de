"""Access-key lifecycle service.

This module implements one issuance cycle and one reclamation cycle:
- Issuance: Idle -> Selecting -> Provisioning -> Persisting -> Notifying -> Idle
- Reclamation: list expired records, revoke each remotely, then delete locally
- Startup catch-up decision from the time of the last issuance

Every call to a collaborator is bounded by a per-call timeout. Collaborator
failures end the current cycle (issuance) or the current record
(reclamation) and are reported in the returned result; nothing here is
retried within a cycle.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, TypeVar

from keycast.db.models.access_keys import AccessKey
from keycast.services.broadcast import BroadcastError
from keycast.services.key_store import RecordStoreError
from keycast.services.messages import MessageRenderError
from keycast.services.provisioning import (
    ProvisioningError,
    ProvisioningNotFoundError,
    describe_server,
    redact_management_url,
)

if TYPE_CHECKING:
    from keycast.db.models.servers import Server
    from keycast.services.broadcast import TelegramBroadcastClient
    from keycast.services.key_store import AccessKeyStore
    from keycast.services.messages import MessageRenderer
    from keycast.services.provisioning import ProvisioningClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_KEY_VALIDITY = timedelta(hours=48)
DEFAULT_CALL_TIMEOUT = 60.0


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def fingerprint(access_url: str) -> str:
    """Short stable identifier of an access URL for log lines."""
    return hashlib.sha256(access_url.encode()).hexdigest()[:12]


def issuance_due(last_issued_at: datetime | None, now: datetime, interval: timedelta) -> bool:
    """Whether a catch-up issuance is owed.

    Args:
        last_issued_at: Creation time of the newest record, None if there is none.
        now: Reference time.
        interval: Issuance interval.

    Returns:
        True if nothing was ever issued or the last issuance is older than interval.
    """
    if last_issued_at is None:
        return True
    return now - last_issued_at > interval


class IssuanceStage(str, Enum):
    """Stages of one issuance cycle."""

    IDLE = "idle"
    SELECTING = "selecting"
    PROVISIONING = "provisioning"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


class InvalidStageTransitionError(Exception):
    """Raised when an issuance cycle attempts an out-of-order step."""

    def __init__(self, from_stage: IssuanceStage, to_stage: IssuanceStage) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Cannot move from {from_stage.value} to {to_stage.value}")


@dataclass(frozen=True, slots=True)
class IssuanceResult:
    """Outcome of one issuance cycle.

    Attributes:
        stage: Furthest stage the cycle reached.
        server_id: Server the credential was requested from, if one was selected.
        record: The access key record, if a credential was provisioned.
        persisted: Whether the record was written to the store.
        notified: Whether the announcement was delivered.
        message_id: Telegram message id of the announcement.
        error: Description of the failure that ended or degraded the cycle.
    """

    stage: IssuanceStage
    server_id: uuid.UUID | None = None
    record: AccessKey | None = None
    persisted: bool = False
    notified: bool = False
    message_id: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        """Every step of the cycle completed."""
        return self.persisted and self.notified


@dataclass(frozen=True, slots=True)
class ReclamationResult:
    """Outcome of one reclamation cycle.

    Attributes:
        expired: Number of expired records found.
        revoked: Credentials deleted on their server.
        already_revoked: Credentials the server no longer knew about.
        deleted: Local records removed.
        failed_ids: Records kept for the next cycle.
        error: Set when the expired records could not be listed.
    """

    expired: int = 0
    revoked: int = 0
    already_revoked: int = 0
    deleted: int = 0
    failed_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)
    error: str | None = None


class AccessKeyLifecycleService:
    """Sequences the provisioning client, record store and broadcast client.

    Example:
        service = AccessKeyLifecycleService(
            store=store,
            provisioning=provisioning_client,
            broadcast=telegram_client,
            renderer=MessageRenderer(MessageConfig()),
            channel_id=-1001234567890,
        )
        result = await service.issue(servers)
        if not result.success:
            logger.warning("Issuance degraded at %s", result.stage.value)
    """

    VALID_TRANSITIONS: ClassVar[dict[IssuanceStage, set[IssuanceStage]]] = {
        IssuanceStage.IDLE: {IssuanceStage.SELECTING},
        IssuanceStage.SELECTING: {IssuanceStage.PROVISIONING, IssuanceStage.IDLE},
        IssuanceStage.PROVISIONING: {IssuanceStage.PERSISTING, IssuanceStage.IDLE},
        # Persistence failures still move on to notification
        IssuanceStage.PERSISTING: {IssuanceStage.NOTIFYING},
        IssuanceStage.NOTIFYING: {IssuanceStage.IDLE},
    }

    def __init__(
        self,
        *,
        store: AccessKeyStore,
        provisioning: ProvisioningClient,
        broadcast: TelegramBroadcastClient,
        renderer: MessageRenderer,
        channel_id: int | str,
        key_validity: timedelta = DEFAULT_KEY_VALIDITY,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the service.

        Args:
            store: Record store for access keys.
            provisioning: Client for the servers' management APIs.
            broadcast: Client for the announcement channel.
            renderer: Announcement renderer.
            channel_id: Destination chat of announcements.
            key_validity: Lifetime of an issued key.
            call_timeout: Upper bound in seconds for any single collaborator call.
            rng: Source of randomness for server selection.
            clock: Returns the current aware datetime.
        """
        self._store = store
        self._provisioning = provisioning
        self._broadcast = broadcast
        self._renderer = renderer
        self._channel_id = channel_id
        self._key_validity = key_validity
        self._call_timeout = call_timeout
        self._rng = rng or random.SystemRandom()
        self._clock = clock

    @classmethod
    def can_transition(cls, from_stage: IssuanceStage, to_stage: IssuanceStage) -> bool:
        """Check whether an issuance cycle may move between two stages."""
        return to_stage in cls.VALID_TRANSITIONS.get(from_stage, set())

    def _advance(self, current: IssuanceStage, target: IssuanceStage) -> IssuanceStage:
        if not self.can_transition(current, target):
            raise InvalidStageTransitionError(current, target)
        logger.debug("Issuance stage: %s -> %s", current.value, target.value)
        return target

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a collaborator call under the per-call timeout."""
        async with asyncio.timeout(self._call_timeout):
            return await awaitable

    async def is_catch_up_due(self, interval: timedelta) -> bool:
        """Decide whether startup owes one immediate issuance.

        A store failure is logged and treated as "not due" so the periodic
        loops can still start.

        Args:
            interval: Issuance interval.
        """
        try:
            last_issued_at = await self._call(self._store.last_issued_at())
        except (RecordStoreError, TimeoutError) as e:
            logger.error(
                "Cannot read last issuance time, skipping catch-up: %s",
                str(e) or "timed out",
            )
            return False

        due = issuance_due(last_issued_at, self._clock(), interval)
        logger.info(
            "Last issuance: %s, catch-up due: %s",
            last_issued_at.isoformat() if last_issued_at else "never",
            due,
        )
        return due

    async def issue(self, servers: Sequence[Server]) -> IssuanceResult:
        """Run one issuance cycle.

        Args:
            servers: Eligible servers to choose from.

        Returns:
            IssuanceResult describing how far the cycle got.
        """
        stage = self._advance(IssuanceStage.IDLE, IssuanceStage.SELECTING)
        if not servers:
            logger.warning("No eligible servers, skipping issuance")
            self._advance(stage, IssuanceStage.IDLE)
            return IssuanceResult(stage=stage, error="no eligible servers")

        server = self._rng.choice(list(servers))

        stage = self._advance(stage, IssuanceStage.PROVISIONING)
        try:
            credential = await self._call(self._provisioning.issue(server))
        except (ProvisioningError, TimeoutError) as e:
            error = str(e) or "timed out"
            logger.warning(
                "Issuance abandoned, provisioning failed: server=%s, error=%s",
                describe_server(server),
                error,
            )
            self._advance(stage, IssuanceStage.IDLE)
            return IssuanceResult(stage=stage, server_id=server.server_id, error=error)

        created_at = self._clock()
        record = AccessKey(
            access_key_id=uuid.uuid4(),
            credential_id=credential.credential_id,
            access_url=credential.access_url,
            management_url=credential.management_url,
            server_id=server.server_id,
            created_at=created_at,
            expired_at=created_at + self._key_validity,
        )

        stage = self._advance(stage, IssuanceStage.PERSISTING)
        persisted = False
        error: str | None = None
        try:
            await self._call(self._store.save(record))
            persisted = True
        except (RecordStoreError, TimeoutError) as e:
            error = str(e) or "timed out"
            # The credential is live on the server but nothing will reclaim it
            logger.error(
                "Access key record not persisted, credential left untracked: "
                "credential_id=%s, server_id=%s, management_url=%s, error=%s",
                credential.credential_id,
                server.server_id,
                redact_management_url(credential.management_url),
                error,
            )
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception(
                "Unexpected persistence error, credential left untracked: "
                "credential_id=%s, server_id=%s, management_url=%s",
                credential.credential_id,
                server.server_id,
                redact_management_url(credential.management_url),
            )

        stage = self._advance(stage, IssuanceStage.NOTIFYING)
        notified = False
        message_id: int | None = None
        try:
            text = self._renderer.render_access_key(
                access_url=record.access_url,
                created_at=record.created_at,
                expired_at=record.expired_at,
            )
            message_id = await self._call(self._broadcast.send(self._channel_id, text))
            notified = True
        except (MessageRenderError, BroadcastError, TimeoutError) as e:
            error = str(e) or "timed out"
            logger.error(
                "Announcement not delivered: credential_id=%s, fingerprint=%s, error=%s",
                credential.credential_id,
                fingerprint(record.access_url),
                error,
            )

        self._advance(stage, IssuanceStage.IDLE)
        logger.info(
            "Issuance finished: credential_id=%s, fingerprint=%s, expires=%s, "
            "persisted=%s, notified=%s",
            record.credential_id,
            fingerprint(record.access_url),
            record.expired_at.isoformat(),
            persisted,
            notified,
        )
        return IssuanceResult(
            stage=stage,
            server_id=server.server_id,
            record=record,
            persisted=persisted,
            notified=notified,
            message_id=message_id,
            error=error,
        )

    async def reclaim_expired(self) -> ReclamationResult:
        """Run one reclamation cycle.

        A record is deleted only after its revocation was attempted and the
        credential is known to be gone (revoked, or unknown to the server).
        Records whose revocation or deletion fails are kept for the next
        cycle; they never stop the rest of the batch.

        Returns:
            ReclamationResult with per-outcome counts.
        """
        try:
            expired = await self._call(self._store.list_expired(self._clock()))
        except (RecordStoreError, TimeoutError) as e:
            error = str(e) or "timed out"
            logger.warning("Reclamation abandoned, cannot list expired keys: %s", error)
            return ReclamationResult(error=error)

        if not expired:
            logger.debug("No expired access keys")
            return ReclamationResult()

        revoked = 0
        already_revoked = 0
        deleted = 0
        failed: list[uuid.UUID] = []

        for record in expired:
            try:
                await self._call(
                    self._provisioning.revoke(record.management_url, record.credential_id)
                )
                revoked += 1
            except ProvisioningNotFoundError:
                logger.info(
                    "Credential already gone from server: credential_id=%s",
                    record.credential_id,
                )
                already_revoked += 1
            except (ProvisioningError, TimeoutError) as e:
                logger.warning(
                    "Revocation failed, keeping record: access_key_id=%s, credential_id=%s, "
                    "error=%s",
                    record.access_key_id,
                    record.credential_id,
                    str(e) or "timed out",
                )
                failed.append(record.access_key_id)
                continue
            except Exception as e:
                logger.exception(
                    "Unexpected revocation error, keeping record: access_key_id=%s, error=%s",
                    record.access_key_id,
                    e,
                )
                failed.append(record.access_key_id)
                continue

            try:
                if await self._call(self._store.delete(record.access_key_id)):
                    deleted += 1
            except (RecordStoreError, TimeoutError) as e:
                logger.warning(
                    "Record deletion failed after revocation: access_key_id=%s, error=%s",
                    record.access_key_id,
                    str(e) or "timed out",
                )
                failed.append(record.access_key_id)
            except Exception as e:
                logger.exception(
                    "Unexpected deletion error, keeping record: access_key_id=%s, error=%s",
                    record.access_key_id,
                    e,
                )
                failed.append(record.access_key_id)

        result = ReclamationResult(
            expired=len(expired),
            revoked=revoked,
            already_revoked=already_revoked,
            deleted=deleted,
            failed_ids=tuple(failed),
        )
        log = logger.warning if failed else logger.info
        log(
            "Reclamation finished: expired=%d, revoked=%d, already_revoked=%d, "
            "deleted=%d, failed=%d",
            result.expired,
            result.revoked,
            result.already_revoked,
            result.deleted,
            len(result.failed_ids),
        )
        return result
