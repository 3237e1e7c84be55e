"""Results — the decoded outcome of each operation in a batch."""

from typing import Any, Dict, List

from pydantic import BaseModel, RootModel


class QueryResult(BaseModel):
    """Entity records matched by a query expression, in server order."""

    action: str = "query"
    data: List[Dict[str, Any]] = []
    metadata: Dict[str, Any] = {}


class CreateResult(BaseModel):
    """The entity as stored by the server after a create."""

    action: str = "create"
    data: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}


class UpdateResult(BaseModel):
    action: str = "update"
    data: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}


class DeleteResult(BaseModel):
    action: str = "delete"
    data: bool = False


class QueryServerInformationResult(RootModel[Dict[str, Any]]):
    """Server metadata keyed by the requested field names."""

    def get(self, key: str, default: Any = None) -> Any:
        return self.root.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.root[key]


class QuerySchemasResult(RootModel[List[Dict[str, Any]]]):
    """One schema description per entity type known to the server."""

    def __iter__(self):
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)


class GetUploadMetadataResult(BaseModel):
    """Where and how to upload the bytes of a component."""

    url: str
    headers: Dict[str, str] = {}
