"""Alert reconciliation and notification dispatch.

Components:
- AlertRecord / ThresholdAlert / QueryMatchAlert: Decoded store documents
- reconcile / ReconciliationResult: Duplicate collapsing into notify and purge sets
- NotificationChannel / WebhookChannel: Delivery channels
- NotificationDispatcher: Per-channel fire-and-forget fan-out
- AlertStore: Search and delete collaborators for the alerts index
"""

from src.alerts.channels import (
    NotificationChannel,
    WebhookChannel,
    build_channel,
    build_channels,
)
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.errors import (
    AlertDecodeError,
    DeliveryError,
    MiserError,
    StoreError,
    UnknownRuleKindError,
    UnsupportedChannelError,
)
from src.alerts.reconciler import reconcile
from src.alerts.schemas import (
    RULE_KINDS,
    VALID_STATUSES,
    AlertRecord,
    AlertStatus,
    QueryMatchAlert,
    ReconciliationResult,
    ThresholdAlert,
    parse_hit,
    parse_hits,
)
from src.alerts.store import AlertStore

__all__ = [
    "AlertDecodeError",
    "AlertRecord",
    "AlertStatus",
    "AlertStore",
    "DeliveryError",
    "MiserError",
    "NotificationChannel",
    "NotificationDispatcher",
    "QueryMatchAlert",
    "RULE_KINDS",
    "ReconciliationResult",
    "StoreError",
    "ThresholdAlert",
    "UnknownRuleKindError",
    "UnsupportedChannelError",
    "VALID_STATUSES",
    "WebhookChannel",
    "build_channel",
    "build_channels",
    "parse_hit",
    "parse_hits",
    "reconcile",
]
