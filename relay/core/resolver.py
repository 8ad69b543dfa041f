"""Batch display-name resolution for lookup fields."""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from relay.core.crm import CrmError
from relay.core.identity import (
    CONTACT_KEY_PREFIX,
    NormalizedIdentity,
    id_pattern,
    parse_identity,
    truncate_to_core15,
)
from relay.core.schema_discovery import CONTACT_OBJECT
from relay.core.validators import soql_id_list

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


def chunked(items: Sequence, size: int) -> List[list]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ReferenceResolver:
    """Decorate records with the display names of their lookup targets.

    Ids are deduplicated and looked up in chunks of ``chunk_size``; a failed
    chunk leaves its ids unnamed instead of failing the request.
    """

    def __init__(self, client, chunk_size: int = DEFAULT_CHUNK_SIZE, target_object: str = CONTACT_OBJECT):
        self.client = client
        self.chunk_size = chunk_size
        self.target_object = target_object

    def resolve_names(
        self,
        records: Sequence[dict],
        field_selector: Callable[[dict], Any],
        key_prefix: str = CONTACT_KEY_PREFIX,
    ) -> List[NormalizedIdentity]:
        """Return one identity per record, in input order.

        A display name already carried by the raw value wins over the
        resolved one.
        """
        parsed = [parse_identity(field_selector(record), key_prefix) for record in records]

        pattern = id_pattern(key_prefix)
        distinct_ids = list(dict.fromkeys(
            p.id for p in parsed if isinstance(p.id, str) and pattern.match(p.id)
        ))
        resolved = self.resolve_contact_names(distinct_ids)
        names = {truncate_to_core15(record_id): name for record_id, name in resolved.items()}

        enriched = []
        for identity in parsed:
            if identity.display_name is None and identity.id is not None:
                name = names.get(truncate_to_core15(identity.id))
                if name is not None:
                    identity = NormalizedIdentity(id=identity.id, display_name=name)
            enriched.append(identity)
        return enriched

    def resolve_contact_names(self, ids: Iterable[str]) -> Dict[str, str]:
        """Map each returned record Id to its Name."""
        unique_by_core: Dict[str, str] = {}
        for record_id in ids:
            if record_id:
                unique_by_core.setdefault(truncate_to_core15(record_id), record_id)
        unique = list(unique_by_core.values())
        names: Dict[str, str] = {}
        if not unique:
            return names

        for chunk in chunked(unique, self.chunk_size):
            soql = f"SELECT Id, Name FROM {self.target_object} WHERE Id IN ({soql_id_list(chunk)})"
            try:
                result = self.client.query(soql)
            except CrmError as e:
                logger.warning("Name lookup failed for %d %s id(s): %s", len(chunk), self.target_object, e)
                continue
            for record in result.get("records") or []:
                record_id: Optional[str] = record.get("Id")
                if record_id:
                    names[record_id] = record.get("Name")
        return names

