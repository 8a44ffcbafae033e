"""Schema definitions for alert records read from the alert store.

Each hit returned by the store search is decoded into one immutable
AlertRecord variant, selected once at decode time by the ``rule_type``
discriminator in the document source:

- ``threshold``: threshold-count rules, grouped by ``grouping_key`` and
  carrying a ``matching_docs`` summary.
- ``query``: query-match rules, carrying a scalar ``value``.

Records live for a single reconciliation pass and are never mutated.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Iterable, Literal

from src.alerts.errors import AlertDecodeError, UnknownRuleKindError

AlertStatus = Literal["active", "resolved"]

VALID_STATUSES: frozenset[str] = frozenset({"active", "resolved"})

# Rule engines that predate the rule_type field only emit threshold alerts
DEFAULT_RULE_KIND = "threshold"

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime.

    Nanosecond precision is truncated to microseconds. Naive values are
    taken to be UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r".\1", text)
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as e:
            raise AlertDecodeError(f"invalid timestamp {value!r}") from e
    else:
        raise AlertDecodeError(f"invalid timestamp {value!r}")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class AlertRecord(ABC):
    """One alert document as stored, shared by every rule kind.

    Attributes:
        record_id: Store-assigned document id.
        rule_id: Rule that produced the alert.
        alert_id: Alert id assigned by the rule engine.
        status: Lifecycle status, ``active`` or ``resolved``.
        triggered_at: When the rule engine recorded this transition.
        context_message: Human-readable message rendered by the rule.
        rule_name: Display name of the rule.
        custom_data: Free-form data attached by the rule.
    """

    RULE_KIND: ClassVar[str]

    record_id: str
    rule_id: str
    alert_id: str
    status: str
    triggered_at: datetime
    context_message: str = ""
    rule_name: str = ""
    custom_data: dict[str, Any] = field(default_factory=dict)

    @property
    def rule_kind(self) -> str:
        return self.RULE_KIND

    @property
    @abstractmethod
    def unique_key(self) -> tuple[str, str, str]:
        """Identity shared by every sighting of the same real-world alert.

        Kept as a (rule kind, rule id, discriminator) tuple so that ids which
        concatenate to the same text still name different alerts.
        """

    @property
    def is_resolved(self) -> bool:
        return self.status == "resolved"

    def is_newer_than(self, other: "AlertRecord") -> bool:
        """True if this record was triggered strictly after ``other``."""
        return self.triggered_at > other.triggered_at

    @classmethod
    @abstractmethod
    def from_source(
        cls, common: dict[str, Any], source: dict[str, Any]
    ) -> "AlertRecord":
        """Build the variant from shared fields plus its kind-specific source."""

    def _source_fields(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the store's document shape for notification bodies."""
        source = {
            "rule_id": self.rule_id,
            "rule_type": self.rule_kind,
            "alert_id": self.alert_id,
            "status": self.status,
            "context_message": self.context_message,
            "triggered": self.triggered_at.isoformat(),
            "rule_name": self.rule_name,
        }
        source.update(self._source_fields())
        if self.custom_data:
            source["custom_data"] = self.custom_data
        return {"_id": self.record_id, "_source": source}


@dataclass(frozen=True)
class ThresholdAlert(AlertRecord):
    """Alert from a threshold-count rule, one per grouping key."""

    RULE_KIND: ClassVar[str] = "threshold"

    grouping_key: str = ""
    matching_docs: str = ""

    @property
    def unique_key(self) -> tuple[str, str, str]:
        return (self.RULE_KIND, self.rule_id, self.grouping_key)

    def _source_fields(self) -> dict[str, Any]:
        return {
            "grouping_key": self.grouping_key,
            "matching_docs": self.matching_docs,
        }

    @classmethod
    def from_source(
        cls, common: dict[str, Any], source: dict[str, Any]
    ) -> "ThresholdAlert":
        return cls(
            **common,
            grouping_key=str(source.get("grouping_key") or ""),
            matching_docs=str(source.get("matching_docs") or ""),
        )


@dataclass(frozen=True)
class QueryMatchAlert(AlertRecord):
    """Alert from a query-match rule carrying the matched scalar value."""

    RULE_KIND: ClassVar[str] = "query"

    value: Any = None

    @property
    def unique_key(self) -> tuple[str, str, str]:
        return (self.RULE_KIND, self.rule_id, self.alert_id)

    def _source_fields(self) -> dict[str, Any]:
        return {"value": self.value}

    @classmethod
    def from_source(
        cls, common: dict[str, Any], source: dict[str, Any]
    ) -> "QueryMatchAlert":
        value = source.get("value")
        if isinstance(value, (dict, list)):
            raise AlertDecodeError(
                f"query alert {common['record_id']!r} value must be a scalar"
            )
        return cls(**common, value=value)


RULE_KINDS: dict[str, type[AlertRecord]] = {
    ThresholdAlert.RULE_KIND: ThresholdAlert,
    QueryMatchAlert.RULE_KIND: QueryMatchAlert,
}


def parse_hit(hit: dict[str, Any]) -> AlertRecord:
    """Decode one raw search hit into its AlertRecord variant.

    Args:
        hit: Search hit with ``_id`` and ``_source`` keys.

    Returns:
        The variant selected by ``_source.rule_type``.

    Raises:
        UnknownRuleKindError: If the rule kind has no registered variant.
        AlertDecodeError: If required fields are missing or malformed.
    """
    if not isinstance(hit, dict):
        raise AlertDecodeError(f"search hit must be an object, got {type(hit).__name__}")

    record_id = hit.get("_id")
    source = hit.get("_source")
    if not record_id or not isinstance(source, dict):
        raise AlertDecodeError(f"search hit {record_id!r} has no _id or _source")

    rule_kind = source.get("rule_type") or DEFAULT_RULE_KIND
    variant = RULE_KINDS.get(rule_kind)
    if variant is None:
        raise UnknownRuleKindError(rule_kind, record_id)

    status = source.get("status")
    if status not in VALID_STATUSES:
        raise AlertDecodeError(
            f"record {record_id!r} has invalid status {status!r}. "
            f"Must be one of: {sorted(VALID_STATUSES)}"
        )

    rule_id = source.get("rule_id")
    if not rule_id:
        raise AlertDecodeError(f"record {record_id!r} has no rule_id")

    custom_data = source.get("custom_data") or {}
    if not isinstance(custom_data, dict):
        raise AlertDecodeError(f"record {record_id!r} custom_data must be an object")

    common = {
        "record_id": str(record_id),
        "rule_id": str(rule_id),
        "alert_id": str(source.get("alert_id") or ""),
        "status": status,
        "triggered_at": parse_timestamp(source.get("triggered")),
        "context_message": str(source.get("context_message") or ""),
        "rule_name": str(source.get("rule_name") or ""),
        "custom_data": dict(custom_data),
    }
    return variant.from_source(common, source)


def parse_hits(hits: Iterable[dict[str, Any]]) -> list[AlertRecord]:
    """Decode a whole batch. Any bad hit fails the batch."""
    return [parse_hit(hit) for hit in hits]


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation pass.

    Attributes:
        to_notify: Alerts to hand to every configured channel.
        to_delete: Record ids that are absorbed or superseded.
        pending: Active alerts left in the store awaiting a resolution.
    """

    to_notify: list[AlertRecord] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    pending: list[AlertRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_notify and not self.to_delete
