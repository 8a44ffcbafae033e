"""Reconciliation of duplicate alert sightings into delivery and purge sets.

The store keeps every sighting of an alert until it is deleted, so a single
batch can hold the same logical alert many times, in either status, with
different trigger times. ``reconcile`` collapses those sightings:

1. Records are grouped by ``unique_key``. Each group keeps at most one record
   per status. A strictly newer sighting displaces the kept one, which is
   marked for deletion; an equal-or-older sighting is itself marked for
   deletion, so the first-seen record wins ties.
2. Per group, a kept resolution is always notified and deleted. A kept
   active sighting triggered strictly after that resolution is a re-trigger:
   it is notified too but stays in the store until its own resolution
   arrives. An active sighting at or before the resolution is deleted
   without notification.
3. An active sighting with no resolution in the batch is left alone: it is
   neither notified nor deleted and is re-evaluated next pass.

The function is pure: no I/O, no hidden state, same input gives the same
result.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from src.alerts.schemas import AlertRecord, ReconciliationResult


@dataclass
class _Slots:
    """Latest kept sighting per status for one unique key."""

    active: AlertRecord | None = None
    resolved: AlertRecord | None = None

    def get(self, status: str) -> AlertRecord | None:
        return self.resolved if status == "resolved" else self.active

    def put(self, record: AlertRecord) -> None:
        if record.is_resolved:
            self.resolved = record
        else:
            self.active = record


def reconcile(records: Iterable[AlertRecord]) -> ReconciliationResult:
    """Decide which alerts to deliver and which store records to purge.

    Args:
        records: One fetched batch, in store order.

    Returns:
        ReconciliationResult with alerts to notify, record ids to delete,
        and active alerts left pending.
    """
    groups: dict[tuple[str, str, str], _Slots] = {}
    to_delete: list[str] = []
    seen_ids: set[str] = set()

    for record in records:
        # The same physical document can come back twice in one page
        if record.record_id in seen_ids:
            continue
        seen_ids.add(record.record_id)

        slots = groups.setdefault(record.unique_key, _Slots())
        kept = slots.get(record.status)
        if kept is None:
            slots.put(record)
        elif record.is_newer_than(kept):
            to_delete.append(kept.record_id)
            slots.put(record)
        else:
            to_delete.append(record.record_id)

    result = ReconciliationResult(to_delete=to_delete)

    for slots in groups.values():
        active, resolved = slots.active, slots.resolved

        if resolved is None:
            if active is not None:
                result.pending.append(active)
            continue

        result.to_notify.append(resolved)
        result.to_delete.append(resolved.record_id)

        if active is None:
            continue
        if active.is_newer_than(resolved):
            result.to_notify.append(active)
        else:
            result.to_delete.append(active.record_id)

    return result
