"""Schema Index — the read-only bootstrap state the decoder depends on."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class SchemaIndex(BaseModel):
    """
    Primary keys and schemas per entity type, plus the server's timezone flag.

    Built once when a session bootstraps and shared by reference afterwards.
    Frozen, so several sessions can hold different indexes side by side.
    """

    model_config = ConfigDict(frozen=True)

    primary_keys: Dict[str, List[str]] = {}
    schemas: Dict[str, Dict[str, Any]] = {}
    timezone_support: bool = False

    def primary_keys_of(self, entity_type: str) -> Optional[List[str]]:
        """Ordered primary key names, or None if the type is unknown."""
        return self.primary_keys.get(entity_type)

    def schema_of(self, entity_type: str) -> Optional[Dict[str, Any]]:
        return self.schemas.get(entity_type)

    @classmethod
    def from_schemas(
        cls,
        schemas: List[Dict[str, Any]],
        timezone_support: bool = False,
    ) -> "SchemaIndex":
        """
        Index schema descriptions by their `id`.

        Raises ValueError when a schema lacks `id` or `primary_key`, or its
        primary key names are not strings.
        """
        by_type: Dict[str, Dict[str, Any]] = {}
        primary_keys: Dict[str, List[str]] = {}
        for schema in schemas:
            if "id" not in schema:
                raise ValueError(f"schema missing key 'id' in {schema!r}")
            type_name = str(schema["id"])
            if "primary_key" not in schema:
                raise ValueError(f"schema missing key 'primary_key' in {schema!r}")
            keys = schema["primary_key"]
            if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
                raise ValueError(
                    f"schema {type_name!r} has invalid 'primary_key': {keys!r}"
                )
            by_type[type_name] = schema
            primary_keys[type_name] = list(keys)

        return cls(
            primary_keys=primary_keys,
            schemas=by_type,
            timezone_support=timezone_support,
        )
