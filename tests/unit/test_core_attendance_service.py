"""Tests for the request-facing attendance operations."""
import pytest

from relay.core import attendance_service
from relay.core.crm import CrmAPIError
from relay.core.errors import NotFoundError, ValidationError
from tests.conftest import FakeCrm, catalog, ref_field, typed_field

MEETING_ID = "a01000000000001AAA"
CLASS_ID = "a00000000000001AAA"


def org_with_attendance(supervision: bool = True) -> FakeCrm:
    crm = FakeCrm()
    names = ["Contact", "Class_Attendance__c"]
    crm.add_schema(
        "Class_Attendance__c",
        typed_field("Name"),
        ref_field("Class_Meeting__c", "Yeshiva_Class_Meeting__c"),
        ref_field("Student__c", "Contact"),
        typed_field("Status__c", "picklist"),
        typed_field("Comments__c", "textarea"),
    )
    if supervision:
        names.append("Supervision_Rating__c")
        crm.add_schema(
            "Supervision_Rating__c",
            ref_field("Class_Meeting__c", "Yeshiva_Class_Meeting__c"),
            ref_field("Student__c", "Contact"),
            typed_field("Rating__c", "double"),
        )
    crm.catalog = catalog(*names)
    crm.on_query("FROM Yeshiva_Class_Meeting__c WHERE Id =", [{"Id": MEETING_ID, "Name": "Gemara Oct 5"}])
    return crm


# ─────────────────────────────────────────────────────────────────────────────
# Roster by period
# ─────────────────────────────────────────────────────────────────────────────
def test_teachers_by_period_groups_and_sorts():
    crm = FakeCrm().on_query("FROM Yeshiva_Classes__c", [
        {"Id": "c1", "Name": "Gemara", "Teacher__c": "t2", "Teacher__r": {"Name": "zev"},
         "Start_Date__c": "2025-09-02", "End_Date__c": "2025-12-01"},
        {"Id": "c2", "Name": "Chumash", "Teacher__c": "t1", "Teacher__r": {"Name": "Avi"},
         "Start_Date__c": "2025-09-03", "End_Date__c": "2025-12-02"},
        {"Id": "c3", "Name": "Halacha", "Teacher__c": "t2", "Teacher__r": {"Name": "zev"},
         "Start_Date__c": "2025-09-04", "End_Date__c": "2025-12-03"},
        {"Id": "c4", "Name": "Orphan", "Teacher__c": None, "Teacher__r": None},
    ])

    result = attendance_service.teachers_by_period(crm, start="9/1/2025", end=None)

    assert result["start"] == "2025-09-01"
    assert result["end"] == "2025-12-31"
    assert [g["name"] for g in result["teacherGroups"]] == ["Avi", "zev"]
    assert [c["id"] for c in result["teacherGroups"][1]["classes"]] == ["c1", "c3"]
    assert "Start_Date__c >= 2025-09-01 AND End_Date__c <= 2025-12-31" in crm.queries[0]


def test_teachers_by_period_rejects_bad_date_before_querying():
    crm = FakeCrm()
    with pytest.raises(ValidationError):
        attendance_service.teachers_by_period(crm, start="2025-02-30")
    assert crm.queries == []


# ─────────────────────────────────────────────────────────────────────────────
# Resolve meeting + records
# ─────────────────────────────────────────────────────────────────────────────
def test_resolve_requires_meeting_or_class_and_date():
    crm = FakeCrm()
    with pytest.raises(ValidationError):
        attendance_service.resolve_meeting_attendance(crm, class_id=CLASS_ID, start="not a date")
    with pytest.raises(ValidationError):
        attendance_service.resolve_meeting_attendance(crm, meeting_id="bad id!")
    assert crm.queries == []


def test_resolve_returns_named_attendance_and_supervision():
    crm = org_with_attendance()
    crm.on_query("FROM Class_Attendance__c", [
        {"Id": "a02000000000001AAA", "Name": "ATT-1", "Student__c": "003000000000001AAA",
         "Status__c": "Present", "Comments__c": None},
    ])
    crm.on_query("FROM Supervision_Rating__c", [
        {"Id": "a03000000000001AAA", "Name": "SR-1", "Student__c": "003000000000001", "Rating__c": 4},
    ])
    crm.on_query("FROM Contact", [{"Id": "003000000000001AAA", "Name": "Jane Doe"}])

    result = attendance_service.resolve_meeting_attendance(crm, meeting_id=MEETING_ID)

    assert result["meeting"] == {"id": MEETING_ID, "name": "Gemara Oct 5"}
    assert result["usedMeetingFields"] == {"via": "meetingId"}
    assert result["attendance"] == [{
        "id": "a02000000000001AAA",
        "name": "ATT-1",
        "studentId": "003000000000001AAA",
        "studentName": "Jane Doe",
        "status": "Present",
        "comments": None,
    }]
    assert result["supervisionAvailable"] is True
    assert result["supervisionRatings"][0]["rating"] == 4
    assert result["supervisionRatings"][0]["studentName"] == "Jane Doe"
    assert result["supervisionRatings"][0]["notes"] is None


def test_resolve_without_supervision_object():
    crm = org_with_attendance(supervision=False)
    result = attendance_service.resolve_meeting_attendance(crm, meeting_id=MEETING_ID)
    assert result["supervisionAvailable"] is False
    assert result["supervisionRatings"] == []


def test_resolve_meeting_not_found_carries_diagnostics():
    crm = FakeCrm().add_schema(
        "Yeshiva_Class_Meeting__c",
        ref_field("Class__c", "Yeshiva_Classes__c"),
        typed_field("Meeting_Date__c", "date"),
    )
    with pytest.raises(NotFoundError) as exc:
        attendance_service.resolve_meeting_attendance(crm, class_id=CLASS_ID, start="10/5/2025")

    body = exc.value.to_dict()
    assert body["error"] == "Class meeting not found"
    assert body["start"] == "2025-10-05"
    assert body["usedMeetingFields"]["via"] == "discovered"
    assert body["meetingInfo"]["fields"]["date"] == "Meeting_Date__c"


def test_resolve_attendance_object_missing():
    crm = FakeCrm().on_query("WHERE Id =", [{"Id": MEETING_ID, "Name": "M"}])
    crm.catalog = catalog("Contact")
    with pytest.raises(NotFoundError) as exc:
        attendance_service.resolve_meeting_attendance(crm, meeting_id=MEETING_ID)
    assert exc.value.detail == "Attendance object not found via common candidates"


def test_attendance_select_falls_back_to_id_only():
    crm = org_with_attendance(supervision=False)
    crm.on_query("SELECT Id, Name, Student__c", error=CrmAPIError(400, "No such column", "/query"))
    crm.on_query("SELECT Id FROM Class_Attendance__c", [{"Id": "a02000000000001AAA"}])

    result = attendance_service.resolve_meeting_attendance(crm, meeting_id=MEETING_ID)
    assert result["attendance"] == [{"id": "a02000000000001AAA"}]


def test_failed_supervision_read_keeps_attendance():
    crm = org_with_attendance()
    crm.on_query("FROM Class_Attendance__c", [
        {"Id": "a02000000000001AAA", "Name": "ATT-1", "Student__c": "Jane Doe",
         "Status__c": "Present", "Comments__c": None},
    ])
    crm.on_query("FROM Supervision_Rating__c", error=CrmAPIError(403, "insufficient access", "/query"))

    result = attendance_service.resolve_meeting_attendance(crm, meeting_id=MEETING_ID)

    assert result["attendance"][0]["studentName"] == "Jane Doe"
    assert result["supervisionAvailable"] is False
    assert result["supervisionRatings"] == []
    assert sum("FROM Supervision_Rating__c" in q for q in crm.queries) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Apply updates
# ─────────────────────────────────────────────────────────────────────────────
def test_apply_updates_produces_two_ledgers():
    crm = org_with_attendance()
    crm.on_query("FROM Supervision_Rating__c", [{"Id": "a03000000000001AAA"}])

    result = attendance_service.apply_meeting_updates(
        crm,
        MEETING_ID,
        attendance_items=[{"id": "a02000000000001AAA", "status": "Present"}],
        supervision_items=[{"studentId": "003000000000001AAA", "rating": 5, "notes": "great"}],
    )

    assert result["meetingId"] == MEETING_ID
    assert result["attendance"] == {"updated": 1, "failed": 0, "errors": []}
    assert result["supervision"]["updated"] == 1
    # notes has no field on the supervision object and is skipped
    assert crm.single_updates == [("Supervision_Rating__c", {"Id": "a03000000000001AAA", "Rating__c": 5})]


def test_apply_updates_unknown_meeting_writes_nothing():
    crm = FakeCrm()
    with pytest.raises(NotFoundError):
        attendance_service.apply_meeting_updates(
            crm, MEETING_ID, attendance_items=[{"id": "a02000000000001AAA", "status": "Present"}],
        )
    assert crm.updates == []
    assert crm.single_updates == []


def test_apply_updates_rejects_non_list_items():
    with pytest.raises(ValidationError):
        attendance_service.apply_meeting_updates(FakeCrm(), MEETING_ID, attendance_items={"id": "x"})


def test_missing_supervision_object_fails_only_that_category():
    crm = org_with_attendance(supervision=False)
    result = attendance_service.apply_meeting_updates(
        crm,
        MEETING_ID,
        attendance_items=[{"id": "a02000000000001AAA", "status": "Present"}],
        supervision_items=[{"id": "a03000000000001AAA", "rating": 3}],
    )
    assert result["attendance"]["updated"] == 1
    assert result["supervision"]["failed"] == 1
    assert result["supervision"]["errors"][0]["id"] == "a03000000000001AAA"
