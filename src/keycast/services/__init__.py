"""keycast service layer.

This package contains the external integrations and the lifecycle logic
that sequences them:
- ProvisioningClient: Outline-style access-key management API
- AccessKeyStore: PostgreSQL record store for servers and access keys
- TelegramBroadcastClient: Bot API sendMessage to the announcement channel
- MessageRenderer: Channel announcement template
- AccessKeyLifecycleService: Issuance and reclamation cycles
"""

from keycast.services.broadcast import (
    BroadcastConfig,
    BroadcastConnectionError,
    BroadcastError,
    BroadcastRejectedError,
    TelegramBroadcastClient,
)
from keycast.services.key_store import AccessKeyStore, RecordStoreError
from keycast.services.lifecycle import (
    AccessKeyLifecycleService,
    IssuanceResult,
    IssuanceStage,
    ReclamationResult,
)
from keycast.services.messages import MessageConfig, MessageRenderer, MessageRenderError
from keycast.services.provisioning import (
    IssuedCredential,
    ProvisioningClient,
    ProvisioningConfig,
    ProvisioningConnectionError,
    ProvisioningError,
    ProvisioningNotFoundError,
    ProvisioningResponseError,
)

__all__ = [
    "AccessKeyLifecycleService",
    "AccessKeyStore",
    "BroadcastConfig",
    "BroadcastConnectionError",
    "BroadcastError",
    "BroadcastRejectedError",
    "IssuanceResult",
    "IssuanceStage",
    "IssuedCredential",
    "MessageConfig",
    "MessageRenderError",
    "MessageRenderer",
    "ProvisioningClient",
    "ProvisioningConfig",
    "ProvisioningConnectionError",
    "ProvisioningError",
    "ProvisioningNotFoundError",
    "ProvisioningResponseError",
    "ReclamationResult",
    "RecordStoreError",
    "TelegramBroadcastClient",
]
