"""Server inventory model.

Each row is a proxy server whose management API can issue and revoke
access keys. Only active Shadowsocks servers are eligible for new keys.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from keycast.db.models.base import Base, TimestampTZ, UUIDPrimaryKey

# The only protocol the management API client can issue keys for
SHADOWSOCKS = "shadowsocks"


class Server(Base):
    """A provisioning target.

    The management API lives at https://{ip_address}:{port}/{management_key};
    the key is a shared secret and must never be logged.
    """

    __tablename__ = "servers"

    server_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    ip_address: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False)
    management_key: Mapped[str] = mapped_column(String(255), nullable=False)

    protocol: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SHADOWSOCKS,
        server_default=text(f"'{SHADOWSOCKS}'"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    __table_args__ = (Index("ix_servers_is_active", "is_active"),)

    @property
    def management_url(self) -> str:
        """Base URL of this server's access-key management API."""
        return f"https://{self.ip_address}:{self.port}/{self.management_key}"

    def __repr__(self) -> str:
        return f"<Server {self.server_id} {self.ip_address}:{self.port} active={self.is_active}>"
