"""
Identity Map Merger — deduplicates and progressively completes entities.

Updated by: every decoded response element
Queried by: callers holding results from one or more calls

Behavioral Contract:
- At most one canonical dict exists per identity key in an IdentityMap
- An entity seen again is merged into its canonical dict, never replaces it
- Fields missing from an incoming entity never erase canonical fields
- Entities that cannot be keyed are decoded like plain mappings and are
  not tracked; only that sub-value loses deduplication
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from entity_rpc.codec.wire import decode_datetime, is_date
from entity_rpc.models.operations import ENTITY_TYPE_KEY
from entity_rpc.models.schema import SchemaIndex

logger = logging.getLogger(__name__)


def get_entity_type(value: Any) -> Optional[str]:
    """The entity type tag of an entity-shaped dict, else None."""
    if not isinstance(value, dict):
        return None
    entity_type = value.get(ENTITY_TYPE_KEY)
    if isinstance(entity_type, str):
        return entity_type
    return None


def is_entity(value: Any) -> bool:
    return get_entity_type(value) is not None


class IdentityMap:
    """
    Table of canonical entities keyed by identity key.

    Canonical dicts reference each other directly, so a graph with cycles
    is fine. The map holds no lock: decode passes sharing one instance
    from several threads or tasks must be serialized by the caller.
    """

    def __init__(self):
        self._entities: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._entities.get(key)

    def claim(self, key: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        """Return the canonical dict for key, making `entity` canonical if new."""
        return self._entities.setdefault(key, entity)

    def assign(self, key: str, canonical: Dict[str, Any], field: str, value: Any) -> None:
        """Write one field of the canonical entity stored under `key`."""
        canonical[field] = value

    def staged(self) -> "StagedIdentityMap":
        """A view that holds back every change until `commit()`."""
        return StagedIdentityMap(self)

    def keys(self) -> List[str]:
        return list(self._entities)

    def entities(self) -> List[Dict[str, Any]]:
        return list(self._entities.values())

    def clear(self) -> None:
        self._entities.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)


class StagedIdentityMap(IdentityMap):
    """
    Overlay that buffers one batch's changes to a base map.

    New entities are kept in the overlay and writes to entities the base
    already holds are queued. Nothing reaches the base until `commit()`,
    so a batch that fails while decoding leaves the base as it was.
    """

    def __init__(self, base: IdentityMap):
        super().__init__()
        self.base = base
        self._writes: List[Tuple[str, Dict[str, Any], str, Any]] = []

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        existing = self.base.get(key)
        if existing is not None:
            return existing
        return super().get(key)

    def claim(self, key: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        existing = self.base.get(key)
        if existing is not None:
            return existing
        return super().claim(key, entity)

    def assign(self, key: str, canonical: Dict[str, Any], field: str, value: Any) -> None:
        if key in self.base:
            self._writes.append((key, canonical, field, value))
        else:
            canonical[field] = value

    def commit(self) -> None:
        """Apply the buffered entities and writes to the base map."""
        for key, entity in self._entities.items():
            self.base.claim(key, entity)
        for key, canonical, field, value in self._writes:
            self.base.assign(key, canonical, field, value)
        self._entities = {}
        self._writes = []


class EntityMerger:
    """Recursive decoder that routes entity-shaped values through an IdentityMap."""

    def __init__(self, schema_index: SchemaIndex):
        self.schema_index = schema_index

    def identity_key(self, entity: Dict[str, Any]) -> Optional[str]:
        """
        `<type>,<pk1>,<pk2>...` for an entity, or None when the type tag is
        not a string, the type is unknown or a primary key value is missing.
        """
        entity_type = get_entity_type(entity)
        if entity_type is None:
            return None
        primary_keys = self.schema_index.primary_keys_of(entity_type)
        if primary_keys is None:
            logger.debug("No primary keys for entity type %s", entity_type)
            return None
        parts = [entity_type]
        for name in primary_keys:
            if entity.get(name) is None:
                logger.debug(
                    "Entity %s lacks primary key %s, not tracked", entity_type, name
                )
                return None
            parts.append(str(entity[name]))
        return ",".join(parts)

    def decode(self, value: Any, identity_map: Optional[IdentityMap] = None) -> Any:
        """
        Decode a value in place, returning what should replace it.

        Lists and plain dicts are rewritten in place. Tagged dates become
        datetimes. Entities resolve to their canonical dict in `identity_map`
        (a fresh map when None).
        """
        if identity_map is None:
            identity_map = IdentityMap()

        if isinstance(value, list):
            for i, item in enumerate(value):
                value[i] = self.decode(item, identity_map)
            return value

        if isinstance(value, dict):
            if is_date(value):
                return decode_datetime(value, self.schema_index.timezone_support)
            key = self.identity_key(value)
            if key is not None:
                return self._merge(key, value, identity_map)
            for field, item in list(value.items()):
                value[field] = self.decode(item, identity_map)
            return value

        return value

    def _merge(
        self, key: str, entity: Dict[str, Any], identity_map: IdentityMap
    ) -> Dict[str, Any]:
        canonical = identity_map.claim(key, entity)
        # Snapshot: nested references to this same entity write into canonical.
        for field, item in list(entity.items()):
            identity_map.assign(key, canonical, field, self.decode(item, identity_map))
        return canonical
