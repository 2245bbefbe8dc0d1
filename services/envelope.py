"""
Uniform response shapes returned by the CRUD service.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ResponseEnvelope:
    """
    The wire-level envelope every service operation returns.

    ``doc_length``, ``error`` and ``stack`` are left out of the serialized
    form when they are not set.
    """

    message: str
    success_status: bool
    data: Any = None
    doc_length: Optional[int] = None
    error: Any = None
    stack: Any = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'message': self.message,
            'success_status': self.success_status,
            'data': self.data,
        }
        if self.doc_length is not None:
            body['doc_length'] = self.doc_length
        if self.error is not None:
            body['error'] = self.error
        if self.stack is not None:
            body['stack'] = self.stack
        return body


@dataclass
class UpdateResult:
    """Outcome of an update across every matching document."""

    matched_count: int = 0
    modified_count: int = 0
    documents: List[Dict[str, Any]] = field(default_factory=list)
    acknowledged: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'acknowledged': self.acknowledged,
            'matchedCount': self.matched_count,
            'modifiedCount': self.modified_count,
        }


@dataclass
class DeleteResult:
    """Outcome of a delete across every matching document."""

    deleted_count: int = 0
    acknowledged: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {'acknowledged': self.acknowledged, 'deletedCount': self.deleted_count}
