"""Schema discovery for CRM objects whose field names vary between orgs.

Field names on the class, meeting and attendance objects are not guaranteed
to match the names this service was written against. Discovery maps
abstract roles ("the lookup from meeting to class", "the meeting date") onto
concrete fields using the describe metadata:

    Lookup roles:  reference field targeting the object  ->  reference field
                   whose name contains a keyword
    Date roles:    date field with keyword  ->  first date field  ->
                   datetime field with keyword  ->  first datetime field
    Named roles:   any field whose name contains a keyword

Object discovery scans the global catalog for queryable objects whose name
contains a keyword and returns the first one carrying the required lookup.
"""
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from relay.core.crm import CrmError

logger = logging.getLogger(__name__)

REFERENCE_TYPE = "reference"
DATE_TYPE = "date"
DATETIME_TYPE = "datetime"

# Name suffixes of catalog entries that shadow a primary object.
EXCLUDED_OBJECT_SUFFIXES = ("ChangeEvent", "History", "Feed", "Share")


# ─────────────────────────────────────────────────────────────────────────────
# Roles
# ─────────────────────────────────────────────────────────────────────────────
def _name_matches(field_def: Mapping, keywords: Iterable[str]) -> bool:
    name = str(field_def.get("name", "")).lower()
    return any(keyword.lower() in name for keyword in keywords)


@dataclass(frozen=True)
class LookupRole:
    """Reference field pointing at ``target``.

    With ``keyword_first`` the keyword match is tried before the target
    match, for objects holding several lookups to the same target.
    """
    target: Optional[str]
    keywords: Tuple[str, ...] = ()
    keyword_first: bool = False

    def find(self, fields: List[Mapping]) -> Optional[Mapping]:
        references = [f for f in fields if f.get("type") == REFERENCE_TYPE]
        by_target = next(
            (f for f in references if self.target and self.target in (f.get("referenceTo") or [])),
            None,
        )
        by_keyword = next((f for f in references if _name_matches(f, self.keywords)), None)
        if self.keyword_first:
            return by_keyword or by_target
        return by_target or by_keyword


@dataclass(frozen=True)
class DateRole:
    """Date field, preferring exact date over datetime."""
    keywords: Tuple[str, ...] = ("date", "start")

    def find(self, fields: List[Mapping]) -> Optional[Mapping]:
        for field_type in (DATE_TYPE, DATETIME_TYPE):
            typed = [f for f in fields if f.get("type") == field_type]
            match = next((f for f in typed if _name_matches(f, self.keywords)), None)
            if match is None and typed:
                match = typed[0]
            if match is not None:
                return match
        return None


@dataclass(frozen=True)
class NamedRole:
    """Any field whose name contains one of the keywords."""
    keywords: Tuple[str, ...]

    def find(self, fields: List[Mapping]) -> Optional[Mapping]:
        return next((f for f in fields if _name_matches(f, self.keywords)), None)


@dataclass(frozen=True)
class ObjectPurpose:
    """What an object must look like to serve a structural purpose."""
    keywords: Tuple[str, ...]
    required_role: str
    required: LookupRole
    optional: Mapping[str, Any] = field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Field Role Binding
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class FieldRoleBinding:
    """Concrete field names (and types) bound to abstract roles on one object.

    A role mapped to None is unbound: the feature it backs is unavailable.
    """
    object_name: str
    fields: Dict[str, Optional[str]] = field(default_factory=dict)
    types: Dict[str, Optional[str]] = field(default_factory=dict)

    def bind(self, role: str, field_def: Optional[Mapping]) -> None:
        self.fields[role] = field_def.get("name") if field_def else None
        self.types[role] = field_def.get("type") if field_def else None

    def field(self, role: str) -> Optional[str]:
        return self.fields.get(role)

    def field_type(self, role: str) -> Optional[str]:
        return self.types.get(role)

    def is_bound(self, role: str) -> bool:
        return bool(self.fields.get(role))

    def unbound_roles(self) -> List[str]:
        return [role for role, name in self.fields.items() if not name]

    def to_dict(self) -> dict:
        return {"objectName": self.object_name, "fields": dict(self.fields), "types": dict(self.types)}


def discover_field(object_schema: Mapping, role) -> Optional[Mapping]:
    """Return the field definition playing ``role`` on a described object."""
    fields = list(object_schema.get("fields") or [])
    return role.find(fields)


def discover_field_role(object_schema: Mapping, role) -> Optional[str]:
    """Return the name of the field playing ``role``, or None."""
    found = discover_field(object_schema, role)
    return found.get("name") if found else None


def bind_roles(object_name: str, object_schema: Mapping, roles: Mapping[str, Any]) -> FieldRoleBinding:
    binding = FieldRoleBinding(object_name=object_name)
    for role_name, role in roles.items():
        binding.bind(role_name, discover_field(object_schema, role))
    return binding


def candidate_objects(catalog: Mapping, keywords: Iterable[str]) -> List[str]:
    """Queryable primary objects whose name contains a keyword, in catalog order."""
    keywords = [k.lower() for k in keywords]
    names = []
    for sobject in catalog.get("sobjects") or []:
        name = sobject.get("name") or ""
        if not sobject.get("queryable"):
            continue
        if not any(k in name.lower() for k in keywords):
            continue
        if any(name.lower().endswith(suffix.lower()) for suffix in EXCLUDED_OBJECT_SUFFIXES):
            continue
        names.append(name)
    return names


def discover_object_for_role(
    catalog: Mapping,
    purpose: ObjectPurpose,
    describe: Callable[[str], Mapping],
) -> Optional[FieldRoleBinding]:
    """Find the first catalog object that carries the purpose's required lookup.

    A describe failure on one candidate is logged and the next candidate is
    evaluated.
    """
    for object_name in candidate_objects(catalog, purpose.keywords):
        try:
            schema = describe(object_name)
        except CrmError as e:
            logger.warning("Describe failed for candidate %s: %s", object_name, e)
            continue
        required = discover_field(schema, purpose.required)
        if required is None:
            continue
        binding = FieldRoleBinding(object_name=object_name)
        binding.bind(purpose.required_role, required)
        for role_name, role in purpose.optional.items():
            binding.bind(role_name, discover_field(schema, role))
        logger.info("Discovered %s for %s: %s", object_name, purpose.keywords, binding.fields)
        return binding
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Schema cache
# ─────────────────────────────────────────────────────────────────────────────
class SchemaCache:
    """Describe results keyed by (org, object), expiring after ``ttl_seconds``.

    A TTL of 0 disables caching: every request describes the schema again.
    An entry is never served once older than the TTL.
    """

    def __init__(self, ttl_seconds: int = 0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, org_key: str, name: str) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get((org_key, name))
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[(org_key, name)]
                return None
            return value

    def put(self, org_key: str, name: str, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[(org_key, name)] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


GLOBAL_CATALOG_KEY = "__describe_global__"


class SchemaDiscoverer:
    """Describe-backed discovery for one request's CRM client."""

    def __init__(self, client, cache: Optional[SchemaCache] = None):
        self.client = client
        self.cache = cache

    def _cached(self, name: str, loader: Callable[[], Any]) -> Any:
        org_key = getattr(self.client, "cache_key", "")
        if self.cache is not None:
            hit = self.cache.get(org_key, name)
            if hit is not None:
                return hit
        value = loader()
        if self.cache is not None:
            self.cache.put(org_key, name, value)
        return value

    def describe(self, object_name: str) -> Mapping:
        return self._cached(object_name, lambda: self.client.describe(object_name))

    def describe_global(self) -> Mapping:
        return self._cached(GLOBAL_CATALOG_KEY, self.client.describe_global)

    def bind_object(self, object_name: str, roles: Mapping[str, Any]) -> FieldRoleBinding:
        """Describe ``object_name`` and bind each role; errors propagate."""
        return bind_roles(object_name, self.describe(object_name), roles)

    def discover_object(self, purpose: ObjectPurpose) -> Optional[FieldRoleBinding]:
        return discover_object_for_role(self.describe_global(), purpose, self.describe)


# ─────────────────────────────────────────────────────────────────────────────
# Known objects and roles
# ─────────────────────────────────────────────────────────────────────────────
CLASS_OBJECT = "Yeshiva_Classes__c"
MEETING_OBJECT = "Yeshiva_Class_Meeting__c"
CONTACT_OBJECT = "Contact"

CLASS_LOOKUP = "classLookup"
DATE = "date"
MEETING_LOOKUP = "meetingLookup"
STUDENT_LOOKUP = "studentLookup"
STATUS = "status"
NOTES = "notes"
RATING = "rating"

MEETING_ROLES = {
    CLASS_LOOKUP: LookupRole(CLASS_OBJECT, ("class",)),
    DATE: DateRole(("date", "start")),
}

_MEETING_LOOKUP_ROLE = LookupRole(MEETING_OBJECT, ("class_meeting",))
_STUDENT_LOOKUP_ROLE = LookupRole(CONTACT_OBJECT, ("student",), keyword_first=True)

ATTENDANCE_PURPOSE = ObjectPurpose(
    keywords=("attendance",),
    required_role=MEETING_LOOKUP,
    required=_MEETING_LOOKUP_ROLE,
    optional={
        STUDENT_LOOKUP: _STUDENT_LOOKUP_ROLE,
        STATUS: NamedRole(("status",)),
        NOTES: NamedRole(("notes", "comment")),
    },
)

SUPERVISION_PURPOSE = ObjectPurpose(
    keywords=("supervision",),
    required_role=MEETING_LOOKUP,
    required=_MEETING_LOOKUP_ROLE,
    optional={
        STUDENT_LOOKUP: _STUDENT_LOOKUP_ROLE,
        RATING: NamedRole(("rating", "score")),
        NOTES: NamedRole(("notes", "comment")),
    },
)
