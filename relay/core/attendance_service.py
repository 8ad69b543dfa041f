"""
Attendance Service Layer

Request-facing operations shared by the HTTP routes:

    resolve_meeting_attendance()  meeting lookup + attendance and supervision
                                  records decorated with student names
    apply_meeting_updates()       attendance and supervision ledgers
    teachers_by_period()          classes in a date range grouped by teacher

Architecture:
    /api/sfdc/* routes ──> attendance_service.py ──> meetings / resolver /
                                                     reconciler / schema_discovery
                                                     ──> relay.core.crm ──> Salesforce

Every function takes the request's CrmClient explicitly. Input validation
happens before the first CRM call.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Sequence

from relay.core.crm import CrmError
from relay.core.errors import NotFoundError, ValidationError
from relay.core.identity import NormalizedIdentity
from relay.core.meetings import MeetingLocator
from relay.core.reconciler import (
    ATTENDANCE_ITEM_ROLES,
    SUPERVISION_ITEM_ROLES,
    Reconciler,
    ReconciliationLedger,
    UpdateFieldMap,
)
from relay.core.resolver import DEFAULT_CHUNK_SIZE, ReferenceResolver
from relay.core.schema_discovery import (
    ATTENDANCE_PURPOSE,
    CLASS_OBJECT,
    MEETING_LOOKUP,
    STUDENT_LOOKUP,
    SUPERVISION_PURPOSE,
    FieldRoleBinding,
    SchemaCache,
    SchemaDiscoverer,
)
from relay.core.validators import (
    clean_text,
    normalize_date,
    require_date,
    soql_quote,
    validate_field_name,
    validate_record_id,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_START = "2025-09-01"
DEFAULT_PERIOD_END = "2025-12-31"

# Attendance rows are read with this student field when discovery finds none.
DEFAULT_STUDENT_FIELD = "Student__c"


# ─────────────────────────────────────────────────────────────────────────────
# Roster by period
# ─────────────────────────────────────────────────────────────────────────────
def teachers_by_period(client, start: Any = None, end: Any = None) -> dict:
    """Classes whose dates fall within [start, end], grouped by teacher.

    Groups are sorted by teacher name; classes keep query order. Classes
    without a teacher id or name are skipped.

    Raises:
        ValidationError: If either date cannot be parsed
    """
    start_day = require_date(start, "start", DEFAULT_PERIOD_START)
    end_day = require_date(end, "end", DEFAULT_PERIOD_END)

    soql = (
        "SELECT Id, Name, Teacher__c, Teacher__r.Name, Start_Date__c, End_Date__c "
        f"FROM {CLASS_OBJECT} WHERE Start_Date__c >= {start_day} AND End_Date__c <= {end_day}"
    )
    result = client.query_all(soql)
    return {"start": start_day, "end": end_day, "teacherGroups": group_classes_by_teacher(result.get("records") or [])}


def group_classes_by_teacher(records: Sequence[dict]) -> List[dict]:
    groups: Dict[str, dict] = {}
    for record in records:
        teacher_id = record.get("Teacher__c")
        teacher_name = (record.get("Teacher__r") or {}).get("Name")
        if not teacher_id or not teacher_name:
            continue
        group = groups.setdefault(teacher_id, {"id": teacher_id, "name": teacher_name, "classes": []})
        group["classes"].append({
            "id": record.get("Id"),
            "name": record.get("Name"),
            "startDate": record.get("Start_Date__c"),
            "endDate": record.get("End_Date__c"),
        })
    return sorted(groups.values(), key=lambda group: group["name"].casefold())


# ─────────────────────────────────────────────────────────────────────────────
# Resolve meeting + records
# ─────────────────────────────────────────────────────────────────────────────
def resolve_meeting_attendance(
    client,
    meeting_id: Any = None,
    class_id: Any = None,
    start: Any = None,
    class_field: Any = None,
    date_field: Any = None,
    cache: Optional[SchemaCache] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> dict:
    """Locate a meeting and return its attendance and supervision records.

    Raises:
        ValidationError: Neither meetingId nor (classId, start) usable
        NotFoundError: Meeting or attendance object not found
        ConfigurationError: Meeting fields could not be discovered
    """
    meeting_id = clean_text(meeting_id)
    class_id = clean_text(class_id)
    day = normalize_date(start)

    if not meeting_id and (not class_id or not day):
        raise ValidationError("Provide meetingId OR (classId and start in YYYY-MM-DD or MM/DD/YYYY)")
    if meeting_id:
        meeting_id = validate_record_id(meeting_id, "meetingId")
    else:
        class_id = validate_record_id(class_id, "classId")
    class_field = validate_field_name(class_field, "classField")
    date_field = validate_field_name(date_field, "dateField")

    discoverer = SchemaDiscoverer(client, cache)
    lookup = MeetingLocator(client, discoverer).locate(
        meeting_id=meeting_id or None,
        class_id=class_id or None,
        day=day,
        class_field=class_field,
        date_field=date_field,
    )
    if not lookup.found:
        raise NotFoundError("Class meeting not found", {
            "classId": class_id,
            "start": day,
            "meetingInfo": lookup.discovered.to_dict() if lookup.discovered else None,
            "usedMeetingFields": lookup.used_meeting_fields,
        })

    meeting = lookup.meeting
    resolver = ReferenceResolver(client, chunk_size=chunk_size)

    attendance_binding = discoverer.discover_object(ATTENDANCE_PURPOSE)
    if attendance_binding is None:
        raise NotFoundError("Attendance object not found via common candidates", {
            "meeting": meeting.to_dict(),
            "usedMeetingFields": lookup.used_meeting_fields,
        })
    attendance = list_meeting_records(
        client, resolver, attendance_binding, meeting.id,
        value_roles=ATTENDANCE_ITEM_ROLES,
    )

    supervision_binding = _discover_optional(discoverer, SUPERVISION_PURPOSE)
    supervision = []
    if supervision_binding is not None:
        try:
            supervision = list_meeting_records(
                client, resolver, supervision_binding, meeting.id,
                value_roles=SUPERVISION_ITEM_ROLES,
            )
        except CrmError as e:
            logger.warning("Reading %s failed, reporting no supervision: %s", supervision_binding.object_name, e)
            supervision_binding = None

    return {
        "classId": class_id,
        "start": day,
        "meeting": meeting.to_dict(),
        "usedMeetingFields": lookup.used_meeting_fields,
        "attendance": attendance,
        "supervisionAvailable": supervision_binding is not None,
        "supervisionRatings": supervision,
    }


def _discover_optional(discoverer: SchemaDiscoverer, purpose) -> Optional[FieldRoleBinding]:
    """Discover an object that backs an optional feature; errors mean unavailable."""
    try:
        return discoverer.discover_object(purpose)
    except CrmError as e:
        logger.warning("Discovery for %s failed: %s", purpose.keywords, e)
        return None


def list_meeting_records(
    client,
    resolver: ReferenceResolver,
    binding: FieldRoleBinding,
    meeting_id: str,
    value_roles: Dict[str, str],
) -> List[dict]:
    """Read the records of ``binding.object_name`` that belong to a meeting.

    When the full select fails (e.g. a guessed field is not readable), the
    records are read again with Id only.
    """
    student_field = binding.field(STUDENT_LOOKUP) or DEFAULT_STUDENT_FIELD
    value_fields = {key: binding.field(role) for key, role in value_roles.items()}

    select = ["Id", "Name", student_field]
    select.extend(name for name in value_fields.values() if name and name not in select)
    where = f"{binding.field(MEETING_LOOKUP)} = {soql_quote(meeting_id)}"

    try:
        result = client.query_all(f"SELECT {', '.join(select)} FROM {binding.object_name} WHERE {where}")
    except CrmError as e:
        logger.warning("Reading %s failed, retrying with Id only: %s", binding.object_name, e)
        result = client.query_all(f"SELECT Id FROM {binding.object_name} WHERE {where}")
        return [{"id": record.get("Id")} for record in result.get("records") or []]

    records = result.get("records") or []
    students = resolver.resolve_names(records, lambda record: record.get(student_field))
    return [
        _record_view(record, student, value_fields)
        for record, student in zip(records, students)
    ]


def _record_view(record: dict, student: NormalizedIdentity, value_fields: Dict[str, Optional[str]]) -> dict:
    view = {
        "id": record.get("Id"),
        "name": record.get("Name"),
        "studentId": student.id,
        "studentName": student.display_name,
    }
    for key, field_name in value_fields.items():
        view[key] = record.get(field_name) if field_name else None
    return view


# ─────────────────────────────────────────────────────────────────────────────
# Apply updates
# ─────────────────────────────────────────────────────────────────────────────
def apply_meeting_updates(
    client,
    meeting_id: Any,
    attendance_items: Any = None,
    supervision_items: Any = None,
    cache: Optional[SchemaCache] = None,
) -> dict:
    """Apply attendance and supervision updates for one meeting.

    The meeting must exist before anything is written. Each category gets
    its own ledger; a failure confined to one category never stops the other.

    Raises:
        ValidationError: Malformed meetingId or item lists
        NotFoundError: Meeting does not exist
    """
    meeting_id = validate_record_id(meeting_id, "meetingId")
    attendance_items = _require_list(attendance_items, "attendance")
    supervision_items = _require_list(supervision_items, "supervision")

    discoverer = SchemaDiscoverer(client, cache)
    meeting = MeetingLocator(client, discoverer).verify_meeting(meeting_id)

    reconciler = Reconciler(client)
    attendance = _reconcile_category(
        reconciler, discoverer, meeting.id, attendance_items,
        "attendance", ATTENDANCE_PURPOSE, ATTENDANCE_ITEM_ROLES,
    )
    supervision = _reconcile_category(
        reconciler, discoverer, meeting.id, supervision_items,
        "supervision rating", SUPERVISION_PURPOSE, SUPERVISION_ITEM_ROLES,
    )
    return {
        "meetingId": meeting.id,
        "attendance": attendance.to_dict(),
        "supervision": supervision.to_dict(),
    }


def _require_list(value: Any, field: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", {"field": field})
    return value


def _reconcile_category(
    reconciler: Reconciler,
    discoverer: SchemaDiscoverer,
    meeting_id: str,
    items: list,
    label: str,
    purpose,
    item_roles: Dict[str, str],
) -> ReconciliationLedger:
    if not items:
        return ReconciliationLedger()

    try:
        binding = discoverer.discover_object(purpose)
    except CrmError as e:
        logger.warning("Discovery for %s failed: %s", label, e)
        return _fail_all(items, f"Unable to discover {label} object: {e}")
    if binding is None:
        return _fail_all(items, f"{label.capitalize()} object not available")

    field_map = UpdateFieldMap.from_binding(label, binding, item_roles)
    return reconciler.reconcile(meeting_id, items, field_map)


def _fail_all(items: list, message: str) -> ReconciliationLedger:
    ledger = ReconciliationLedger()
    for item in items:
        reference = None
        if isinstance(item, dict):
            reference = clean_text(item.get("id")) or clean_text(item.get("studentId")) or None
        ledger.record_failure(reference, message)
    return ledger

