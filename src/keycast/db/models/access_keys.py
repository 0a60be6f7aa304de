"""Issued access key model.

A row exists for every access key that was issued and not yet reclaimed.
Rows are created right after a successful provisioning call and deleted
only after the key has been revoked on its server.
"""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from keycast.db.models.base import Base, RequiredTimestampTZ, UUIDPrimaryKey


class AccessKey(Base):
    """One outstanding credential.

    expired_at is always created_at plus the validity window in force when
    the key was issued; it is never recomputed.
    """

    __tablename__ = "access_keys"

    access_key_id: Mapped[UUIDPrimaryKey]

    # Identifier assigned by the server's management API
    credential_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # The secret handed to subscribers (ss:// access URL)
    access_url: Mapped[str] = mapped_column(Text, nullable=False)

    # Server-scoped management URL needed to revoke the key
    management_url: Mapped[str] = mapped_column(Text, nullable=False)

    server_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("servers.server_id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[RequiredTimestampTZ]
    expired_at: Mapped[RequiredTimestampTZ]

    __table_args__ = (
        Index("ix_access_keys_expired_at", "expired_at"),
        Index("ix_access_keys_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AccessKey {self.access_key_id} credential={self.credential_id} "
            f"expires={self.expired_at.isoformat() if self.expired_at else None}>"
        )
