"""
The minimal capability set the CRUD service needs from a document store.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .envelope import DeleteResult, UpdateResult
from .models import ModelDescriptor, PopulateField, Projection

Document = Dict[str, Any]


class Store(Protocol):
    """
    Document store contract.

    Filters and update expressions are opaque to the service and passed
    through as given. Implementations return plain Python documents.
    """

    def find(
        self,
        model: ModelDescriptor,
        filter: Any = None,
        projection: Optional[Projection] = None,
        sort: Sequence[Tuple[str, bool]] = (),
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Document]:
        ...

    def find_one(
        self,
        model: ModelDescriptor,
        filter: Any = None,
        projection: Optional[Projection] = None
    ) -> Optional[Document]:
        ...

    def insert_one(self, model: ModelDescriptor, payload: Document) -> Document:
        ...

    def insert_many(self, model: ModelDescriptor, payloads: Sequence[Document]) -> List[Document]:
        ...

    def update_many(self, model: ModelDescriptor, filter: Any, update: Any) -> UpdateResult:
        ...

    def delete_many(self, model: ModelDescriptor, filter: Any) -> DeleteResult:
        ...

    def populate(self, model: ModelDescriptor, document: Document, spec: PopulateField) -> Document:
        ...
