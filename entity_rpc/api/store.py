"""
Entity Store — the in-memory data behind the reference server.

Rows are plain dicts keyed by entity type and primary key values. Schemas
use the same shape the server publishes through `query_schemas`; a property
declared as {"$ref": "<Type>", "key": "<attribute>"} is a reference to the
entity of that type whose primary key equals the row's `<attribute>`.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from entity_rpc.api.expression import Criterion, Expression, parse_expression
from entity_rpc.models.operations import ENTITY_TYPE_KEY


class StoreError(Exception):
    """Raised when an operation cannot be applied to the store."""
    pass


DEFAULT_SCHEMAS: List[Dict[str, Any]] = [
    {
        "id": "Task",
        "primary_key": ["id"],
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "description": {"type": "string"},
            "start_date": {"type": "datetime"},
            "status_id": {"type": "string"},
            "status": {"$ref": "Status", "key": "status_id"},
            "parent_id": {"type": "string"},
            "parent": {"$ref": "Task", "key": "parent_id"},
        },
    },
    {
        "id": "Status",
        "primary_key": ["id"],
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
        },
    },
    {
        "id": "Metadata",
        "primary_key": ["parent_id", "key"],
        "properties": {
            "parent_id": {"type": "string"},
            "key": {"type": "string"},
            "value": {"type": "string"},
        },
    },
]


class EntityStore:
    """
    In-memory entity store for development and tests.
    Production traffic goes to a real server.
    """

    def __init__(self, schemas: Optional[List[Dict[str, Any]]] = None):
        self.schemas = schemas if schemas is not None else DEFAULT_SCHEMAS
        self._schemas = {s["id"]: s for s in self.schemas}
        self._rows: Dict[str, Dict[Tuple[str, ...], Dict[str, Any]]] = {
            type_name: {} for type_name in self._schemas
        }

    # --- Schema helpers ---

    def _schema(self, entity_type: str) -> Dict[str, Any]:
        schema = self._schemas.get(entity_type)
        if schema is None:
            raise StoreError(f"Unknown entity type: {entity_type}")
        return schema

    def primary_keys_of(self, entity_type: str) -> List[str]:
        return list(self._schema(entity_type)["primary_key"])

    def _references(self, entity_type: str) -> Dict[str, Dict[str, Any]]:
        properties = self._schema(entity_type).get("properties", {})
        return {name: p for name, p in properties.items() if "$ref" in p}

    def _row_key(self, entity_type: str, values: Sequence[Any]) -> Tuple[str, ...]:
        primary_keys = self.primary_keys_of(entity_type)
        if len(values) != len(primary_keys):
            raise StoreError(
                f"{entity_type} key needs {len(primary_keys)} value(s), got {len(values)}"
            )
        return tuple(str(v) for v in values)

    # --- Writes ---

    def create(self, entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an entity, generating an `id` primary key when missing."""
        primary_keys = self.primary_keys_of(entity_type)
        row = {k: v for k, v in data.items() if k != ENTITY_TYPE_KEY}
        if primary_keys == ["id"] and row.get("id") is None:
            row["id"] = str(uuid4())
        missing = [k for k in primary_keys if row.get(k) is None]
        if missing:
            raise StoreError(f"{entity_type} missing primary key(s): {', '.join(missing)}")

        key = self._row_key(entity_type, [row[k] for k in primary_keys])
        if key in self._rows[entity_type]:
            raise StoreError(f"{entity_type} already exists: {', '.join(key)}")
        self._rows[entity_type][key] = row
        return self._render(entity_type, row)

    def update(
        self, entity_type: str, entity_key: Sequence[Any], data: Dict[str, Any]
    ) -> Dict[str, Any]:
        row = self.get(entity_type, entity_key)
        if row is None:
            raise StoreError(f"{entity_type} not found: {list(entity_key)}")
        primary_keys = self.primary_keys_of(entity_type)
        for name, value in data.items():
            if name == ENTITY_TYPE_KEY or name in primary_keys:
                continue
            row[name] = value
        return self._render(entity_type, row)

    def delete(self, entity_type: str, entity_key: Sequence[Any]) -> bool:
        key = self._row_key(entity_type, entity_key)
        if key not in self._rows[entity_type]:
            raise StoreError(f"{entity_type} not found: {list(entity_key)}")
        del self._rows[entity_type][key]
        return True

    # --- Reads ---

    def get(self, entity_type: str, entity_key: Sequence[Any]) -> Optional[Dict[str, Any]]:
        key = self._row_key(entity_type, entity_key)
        return self._rows[entity_type].get(key)

    def count(self, entity_type: str) -> int:
        return len(self._rows[self._schema(entity_type)["id"]])

    def query(self, expression: str) -> List[Dict[str, Any]]:
        """Run a query expression, returning entity-shaped records."""
        try:
            parsed = parse_expression(expression)
        except ValueError as e:
            raise StoreError(str(e))
        return self._execute(parsed)

    def _execute(self, expression: Expression) -> List[Dict[str, Any]]:
        entity_type = expression.entity_type
        self._schema(entity_type)
        matches = [
            row for row in self._rows[entity_type].values()
            if all(self._matches(entity_type, row, c) for c in expression.criteria)
        ]
        if expression.limit is not None:
            matches = matches[:expression.limit]
        return [
            self._render(entity_type, row, expression.fields) for row in matches
        ]

    def _follow(
        self, entity_type: str, row: Dict[str, Any], name: str
    ) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        """Resolve a reference attribute to (target type, target row)."""
        reference = self._references(entity_type).get(name)
        if reference is None:
            return None, None
        target_type = reference["$ref"]
        target_key = row.get(reference["key"])
        if target_key is None:
            return target_type, None
        return target_type, self._rows[target_type].get((str(target_key),))

    def _matches(self, entity_type: str, row: Dict[str, Any], criterion: Criterion) -> bool:
        *hops, attribute = criterion.path
        for hop in hops:
            entity_type, row = self._follow(entity_type, row, hop)
            if row is None:
                return criterion.value is None
        value = row.get(attribute)
        if value is None:
            return criterion.value is None
        return str(value) == criterion.value

    def _render(
        self,
        entity_type: str,
        row: Dict[str, Any],
        fields: Optional[List[Tuple[str, ...]]] = None,
    ) -> Dict[str, Any]:
        """
        Project a row into an entity-shaped record. The type tag and primary
        keys are always present; dotted paths nest referenced entities.
        """
        references = self._references(entity_type)
        record = {ENTITY_TYPE_KEY: entity_type}
        for name in self.primary_keys_of(entity_type):
            record[name] = row.get(name)

        if fields is None:
            for name, value in row.items():
                if name not in references:
                    record[name] = value
            return record

        nested: Dict[str, List[Tuple[str, ...]]] = {}
        for head, *rest in fields:
            if head in references:
                nested.setdefault(head, [])
                if rest:
                    nested[head].append(tuple(rest))
            elif rest:
                raise StoreError(f"{entity_type}.{head} is not a reference")
            else:
                record[head] = row.get(head)

        for name, paths in nested.items():
            target_type, target = self._follow(entity_type, row, name)
            record[name] = (
                self._render(target_type, target, paths) if target is not None else None
            )
        return record
