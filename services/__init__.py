"""
Service layer for model-agnostic CRUD over a document store.

The CRUD service holds the read/write policies; the store module defines
what it needs from storage and the DynamoDB service provides it.
"""
from .crud_service import CrudService
from .dynamodb_service import DynamoDBStore
from .envelope import DeleteResult, ResponseEnvelope, UpdateResult
from .error_normalizer import ErrorNormalizer
from .models import ModelDescriptor, PopulateField
from .result import Result, run_operation

__all__ = [
    'CrudService',
    'DeleteResult',
    'DynamoDBStore',
    'ErrorNormalizer',
    'ModelDescriptor',
    'PopulateField',
    'ResponseEnvelope',
    'Result',
    'UpdateResult',
    'run_operation',
]
