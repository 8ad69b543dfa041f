"""Apply caller-submitted attendance / supervision updates to a meeting.

Items address their target either by record id or by student id. By-id
items go out in composite batches; by-student items are looked up one at a
time against the meeting. Every item ends up in the ledger as updated or
failed; no failure stops the remaining items.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from relay.core.crm import COMPOSITE_BATCH_LIMIT, CrmError, format_record_errors
from relay.core.identity import truncate_to_core15
from relay.core.resolver import chunked
from relay.core.schema_discovery import (
    MEETING_LOOKUP,
    NOTES,
    RATING,
    STATUS,
    STUDENT_LOOKUP,
    FieldRoleBinding,
)
from relay.core.validators import soql_like_prefix, soql_quote

logger = logging.getLogger(__name__)


@dataclass
class LedgerError:
    message: str
    id: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.id is not None:
            body["id"] = self.id
        return body


@dataclass
class ReconciliationLedger:
    """Per-request outcome counts; only ever grows."""
    updated: int = 0
    failed: int = 0
    errors: List[LedgerError] = field(default_factory=list)

    def record_success(self) -> None:
        self.updated += 1

    def record_failure(self, record_id: Optional[str], message: str) -> None:
        self.failed += 1
        self.errors.append(LedgerError(message=message, id=record_id))

    def to_dict(self) -> dict:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass(frozen=True)
class UpdateFieldMap:
    """Where an item category lives and which item keys map to which fields.

    ``fields`` maps item keys (e.g. "status") to CRM field names; a key mapped
    to None is recognized but unavailable in this org.
    """
    label: str
    object_name: str
    meeting_field: str
    student_field: Optional[str]
    fields: Mapping[str, Optional[str]]

    @classmethod
    def from_binding(cls, label: str, binding: FieldRoleBinding, item_roles: Mapping[str, str]) -> "UpdateFieldMap":
        """Build from a discovered binding; ``item_roles`` maps item keys to roles."""
        return cls(
            label=label,
            object_name=binding.object_name,
            meeting_field=binding.field(MEETING_LOOKUP),
            student_field=binding.field(STUDENT_LOOKUP),
            fields={key: binding.field(role) for key, role in item_roles.items()},
        )

    def changes_for(self, item: Mapping[str, Any]) -> Dict[str, Any]:
        """Field values the item supplies; absent keys are left untouched."""
        changes = {}
        for key, field_name in self.fields.items():
            if key not in item:
                continue
            if not field_name:
                logger.debug("Ignoring %s.%s: field not available", self.label, key)
                continue
            changes[field_name] = item[key]
        return changes


ATTENDANCE_ITEM_ROLES = {"status": STATUS, "comments": NOTES}
SUPERVISION_ITEM_ROLES = {"rating": RATING, "notes": NOTES}


def _item_id(item: Mapping[str, Any], key: str) -> Optional[str]:
    value = item.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class Reconciler:
    """Executes one category of updates against one meeting."""

    def __init__(self, client, batch_size: int = COMPOSITE_BATCH_LIMIT):
        self.client = client
        self.batch_size = min(batch_size, COMPOSITE_BATCH_LIMIT)

    def reconcile(self, meeting_id: str, items: Sequence[Any], field_map: UpdateFieldMap) -> ReconciliationLedger:
        """Apply ``items`` and return the ledger.

        The caller has already verified that ``meeting_id`` exists.
        """
        ledger = ReconciliationLedger()
        by_id: List[Tuple[str, Dict[str, Any]]] = []
        by_student: List[Tuple[str, Dict[str, Any]]] = []

        for item in items or []:
            if not isinstance(item, Mapping):
                ledger.record_failure(None, f"Invalid {field_map.label} item")
                continue
            record_id = _item_id(item, "id")
            student_id = _item_id(item, "studentId")
            reference = record_id or student_id
            if reference is None:
                ledger.record_failure(None, f"{field_map.label} item requires id or studentId")
                continue
            changes = field_map.changes_for(item)
            if not changes:
                ledger.record_failure(reference, f"No updatable {field_map.label} fields supplied")
                continue
            if record_id:
                by_id.append((record_id, changes))
            else:
                by_student.append((student_id, changes))

        self._update_by_id(by_id, field_map, ledger)
        for student_id, changes in by_student:
            self._update_by_student(meeting_id, student_id, changes, field_map, ledger)

        logger.info(
            "%s updates for meeting %s: %d updated, %d failed",
            field_map.label, meeting_id, ledger.updated, ledger.failed,
        )
        return ledger

    def _update_by_id(
        self,
        items: List[Tuple[str, Dict[str, Any]]],
        field_map: UpdateFieldMap,
        ledger: ReconciliationLedger,
    ) -> None:
        for batch in chunked(items, self.batch_size):
            records = [{"Id": record_id, **changes} for record_id, changes in batch]
            try:
                outcomes = self.client.update(field_map.object_name, records, all_or_none=False)
            except CrmError as e:
                logger.warning("Batch %s update failed: %s", field_map.label, e)
                for record_id, _ in batch:
                    ledger.record_failure(record_id, str(e))
                continue

            for position, (record_id, _) in enumerate(batch):
                outcome = outcomes[position] if position < len(outcomes) else None
                if outcome is None:
                    ledger.record_failure(record_id, "No result returned for record")
                elif outcome.get("success"):
                    ledger.record_success()
                else:
                    ledger.record_failure(record_id, format_record_errors(outcome.get("errors")))

    def _update_by_student(
        self,
        meeting_id: str,
        student_id: str,
        changes: Dict[str, Any],
        field_map: UpdateFieldMap,
        ledger: ReconciliationLedger,
    ) -> None:
        if not field_map.student_field:
            ledger.record_failure(student_id, f"Student lookup is not available on {field_map.object_name}")
            return

        # Prefix match on the core id covers 15- and 18-character stored values.
        # It assumes the student field is filterable with LIKE (text-typed).
        soql = (
            f"SELECT Id FROM {field_map.object_name} "
            f"WHERE {field_map.meeting_field} = {soql_quote(meeting_id)} "
            f"AND {field_map.student_field} LIKE {soql_like_prefix(truncate_to_core15(student_id))} LIMIT 1"
        )
        try:
            records = self.client.query(soql).get("records") or []
            if not records:
                ledger.record_failure(
                    student_id,
                    f"No {field_map.label} record found for student {student_id}",
                )
                return
            outcome = self.client.update_one(field_map.object_name, {"Id": records[0]["Id"], **changes})
        except CrmError as e:
            logger.warning("%s update for student %s failed: %s", field_map.label, student_id, e)
            ledger.record_failure(student_id, str(e))
            return

        if outcome.get("success"):
            ledger.record_success()
        else:
            ledger.record_failure(student_id, format_record_errors(outcome.get("errors")))
