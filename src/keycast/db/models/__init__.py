"""SQLAlchemy ORM models for keycast.

- base: Common metadata, naming conventions, and column types
- servers: Server inventory (provisioning targets)
- access_keys: Issued access keys awaiting reclamation
"""

from keycast.db.models.access_keys import AccessKey
from keycast.db.models.base import Base, metadata
from keycast.db.models.servers import Server

__all__ = [
    "AccessKey",
    "Base",
    "Server",
    "metadata",
]
