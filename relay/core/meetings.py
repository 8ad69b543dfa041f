"""Class-meeting lookup.

A meeting is located either directly by id, or by (class id, date). The
(class, date) path first tries the field names this org is expected to use
and falls back to schema discovery when that query errors or finds nothing:

    DIRECT     meeting id supplied          -> DONE
    EXACT      known field names            -> DONE | DISCOVERY
    DISCOVERY  describe + role binding      -> DONE (or ConfigurationError)
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from relay.core.crm import CrmError
from relay.core.errors import ConfigurationError, NotFoundError
from relay.core.schema_discovery import (
    CLASS_LOOKUP,
    DATE,
    DATETIME_TYPE,
    MEETING_OBJECT,
    MEETING_ROLES,
    FieldRoleBinding,
    SchemaDiscoverer,
    bind_roles,
)
from relay.core.validators import soql_quote

logger = logging.getLogger(__name__)

EXACT_CLASS_FIELD = "Yeshiva_Classes__c"
EXACT_DATE_FIELD = "Class_Start_Date__c"


class LocatorState(enum.Enum):
    DIRECT = "direct"
    EXACT = "exact"
    DISCOVERY = "discovery"
    DONE = "done"


@dataclass(frozen=True)
class MeetingRef:
    id: str
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass
class MeetingLookup:
    """Outcome of a lookup; ``used_meeting_fields`` explains how it was made."""
    meeting: Optional[MeetingRef] = None
    used_meeting_fields: Dict[str, Any] = field(default_factory=dict)
    discovered: Optional[FieldRoleBinding] = None

    @property
    def found(self) -> bool:
        return self.meeting is not None


def date_predicate(field_name: str, field_type: Optional[str], day: str) -> str:
    """Equality on a date field; day truncation on a datetime field."""
    if field_type == DATETIME_TYPE:
        return f"DAY_ONLY({field_name}) = {day}"
    return f"{field_name} = {day}"


def _first_meeting(result: dict) -> Optional[MeetingRef]:
    records = result.get("records") or []
    if not result.get("totalSize") or not records:
        return None
    record = records[0]
    return MeetingRef(id=record.get("Id"), name=record.get("Name"))


class MeetingLocator:
    """Locate the canonical meeting record for one request."""

    def __init__(self, client, discoverer: Optional[SchemaDiscoverer] = None):
        self.client = client
        self.discoverer = discoverer or SchemaDiscoverer(client)

    def find_by_id(self, meeting_id: str) -> Optional[MeetingRef]:
        """Primary-key lookup; query errors propagate."""
        soql = f"SELECT Id, Name FROM {MEETING_OBJECT} WHERE Id = {soql_quote(meeting_id)} LIMIT 1"
        return _first_meeting(self.client.query(soql))

    def verify_meeting(self, meeting_id: str) -> MeetingRef:
        """Require the meeting to exist.

        Raises:
            NotFoundError: If no meeting has this id
        """
        meeting = self.find_by_id(meeting_id)
        if meeting is None:
            raise NotFoundError("Class meeting not found", {"meetingId": meeting_id})
        return meeting

    def locate(
        self,
        meeting_id: Optional[str] = None,
        class_id: Optional[str] = None,
        day: Optional[str] = None,
        class_field: Optional[str] = None,
        date_field: Optional[str] = None,
    ) -> MeetingLookup:
        """Run the lookup state machine.

        Args:
            meeting_id: Direct meeting id (wins over class/date)
            class_id: Class record id
            day: Normalized YYYY-MM-DD date
            class_field: Caller override for the class lookup field
            date_field: Caller override for the date field

        Raises:
            ConfigurationError: If discovery cannot bind class or date roles
        """
        lookup = MeetingLookup()
        if meeting_id:
            state = LocatorState.DIRECT
        elif class_id and day:
            state = LocatorState.EXACT
        else:
            return lookup

        while state is not LocatorState.DONE:
            if state is LocatorState.DIRECT:
                lookup.meeting = self.find_by_id(meeting_id)
                lookup.used_meeting_fields = {"via": "meetingId"}
                state = LocatorState.DONE

            elif state is LocatorState.EXACT:
                meeting = self._try_exact(class_id, day)
                if meeting is not None:
                    lookup.meeting = meeting
                    lookup.used_meeting_fields = {
                        "classField": EXACT_CLASS_FIELD,
                        "dateField": EXACT_DATE_FIELD,
                        "dateType": "date",
                        "via": "exact",
                    }
                    state = LocatorState.DONE
                else:
                    state = LocatorState.DISCOVERY

            elif state is LocatorState.DISCOVERY:
                self._discover(lookup, class_id, day, class_field, date_field)
                state = LocatorState.DONE

        return lookup

    def _try_exact(self, class_id: str, day: str) -> Optional[MeetingRef]:
        soql = (
            f"SELECT Id, Name FROM {MEETING_OBJECT} "
            f"WHERE {EXACT_CLASS_FIELD} = {soql_quote(class_id)} AND {EXACT_DATE_FIELD} = {day} LIMIT 1"
        )
        try:
            return _first_meeting(self.client.query(soql))
        except CrmError as e:
            logger.info("Exact meeting query failed, falling back to discovery: %s", e)
            return None

    def _discover(
        self,
        lookup: MeetingLookup,
        class_id: str,
        day: str,
        class_field: Optional[str],
        date_field: Optional[str],
    ) -> None:
        schema = self.discoverer.describe(MEETING_OBJECT)
        binding = bind_roles(MEETING_OBJECT, schema, MEETING_ROLES)
        lookup.discovered = binding

        class_field_name = class_field or binding.field(CLASS_LOOKUP)
        date_field_name = date_field or binding.field(DATE)
        if not class_field_name or not date_field_name:
            raise ConfigurationError(
                "Unable to discover class meeting fields",
                {"discovered": binding.to_dict()},
            )

        date_type = binding.field_type(DATE)
        if date_field:
            override = next((f for f in schema.get("fields") or [] if f.get("name") == date_field), None)
            if override is not None:
                date_type = override.get("type")

        soql = (
            f"SELECT Id, Name FROM {binding.object_name} "
            f"WHERE {class_field_name} = {soql_quote(class_id)} "
            f"AND {date_predicate(date_field_name, date_type, day)} LIMIT 1"
        )
        lookup.meeting = _first_meeting(self.client.query(soql))
        lookup.used_meeting_fields = {
            "classField": class_field_name,
            "dateField": date_field_name,
            "dateType": date_type,
            "via": "discovered",
        }
