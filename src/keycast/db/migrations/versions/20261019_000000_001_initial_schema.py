"""Initial schema: server inventory and issued access keys.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- servers (provisioning targets)
- access_keys (issued keys awaiting reclamation)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: create servers and access_keys."""
    op.create_table(
        "servers",
        sa.Column(
            "server_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("ip_address", sa.String(255), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("management_key", sa.String(255), nullable=False),
        sa.Column(
            "protocol",
            sa.String(50),
            server_default=sa.text("'shadowsocks'"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.PrimaryKeyConstraint("server_id", name=op.f("pk_servers")),
    )
    op.create_index("ix_servers_is_active", "servers", ["is_active"], unique=False)

    op.create_table(
        "access_keys",
        sa.Column(
            "access_key_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("credential_id", sa.String(255), nullable=False),
        sa.Column("access_url", sa.Text(), nullable=False),
        sa.Column("management_url", sa.Text(), nullable=False),
        sa.Column("server_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["server_id"],
            ["servers.server_id"],
            name=op.f("fk_access_keys_server_id_servers"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("access_key_id", name=op.f("pk_access_keys")),
    )
    op.create_index("ix_access_keys_expired_at", "access_keys", ["expired_at"], unique=False)
    op.create_index("ix_access_keys_created_at", "access_keys", ["created_at"], unique=False)


def downgrade() -> None:
    """Revert migration: drop access_keys and servers."""
    op.drop_index("ix_access_keys_created_at", table_name="access_keys")
    op.drop_index("ix_access_keys_expired_at", table_name="access_keys")
    op.drop_table("access_keys")
    op.drop_index("ix_servers_is_active", table_name="servers")
    op.drop_table("servers")
