"""
Model-agnostic CRUD service.

Every operation takes an explicit model descriptor, validates its input
before touching the store, and returns a ResponseEnvelope. Failures are
raised as typed CrudErrors; turning them into responses is left to the
caller (see services.error_normalizer).
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from logger_config import get_logger
from utils.exceptions import Conflict, CrudError, InternalError, ValidationError
from .envelope import ResponseEnvelope
from .models import (
    DEFAULT_PAGE_SIZE,
    ModelDescriptor,
    PopulateField,
    QueryParams,
    combine_filters,
    normalize_populate,
    validate_filter,
    validate_model,
    validate_models,
    validate_update,
)
from .store import Document, Store

logger = get_logger(__name__)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise anything but a CrudError as an InternalError."""
    try:
        yield
    except CrudError:
        raise
    except Exception as e:
        raise InternalError(f'{operation} failed: {str(e)}', operation=operation, cause=e) from e


def _validate_payload(data: Any, name: str = 'data') -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError(f'{name} must be a mapping', field=name, value=data)
    return data


def _check_repeated_keys(model: ModelDescriptor, data: Sequence[Mapping[str, Any]]) -> None:
    seen: Dict[str, int] = {}
    for index, item in enumerate(data):
        key = item.get(model.key_attribute)
        if key in (None, ''):
            continue
        if str(key) in seen:
            raise Conflict(
                f'Document at index {index} repeats the {model.key_attribute} of index {seen[str(key)]}',
                table_name=model.table_name,
                index=index,
            )
        seen[str(key)] = index


class CrudService:
    """Create, read, update and delete documents of any model."""

    def __init__(self, store: Store, default_page_size: int = DEFAULT_PAGE_SIZE) -> None:
        """
        Initialize CRUD service.

        Args:
            store: Document store satisfying the Store contract
            default_page_size: Page size used when a query does not give a valid one
        """
        self.store = store
        self.default_page_size = default_page_size

    def create(self, model: ModelDescriptor, data: Mapping[str, Any], check: Any) -> ResponseEnvelope:
        """
        Insert a document unless one matching ``check`` already exists.

        Raises:
            ValidationError: If the descriptor, payload or check is malformed
            Conflict: If a document matching ``check`` exists (nothing is written)
            InternalError: If the store fails
        """
        validate_model(model)
        _validate_payload(data)
        validate_filter(check, 'check')

        with store_errors('create'):
            if self.store.find_one(model, check) is not None:
                raise Conflict(table_name=model.table_name)
            created = self.store.insert_one(model, dict(data))

        logger.info(f'Created document in {model.table_name}')
        return ResponseEnvelope(
            message='Successfully created',
            success_status=True,
            data=model.mask(created),
        )

    def create_many(
        self,
        model: ModelDescriptor,
        data: Sequence[Mapping[str, Any]],
        check: Sequence[Any]
    ) -> ResponseEnvelope:
        """
        Insert a batch of documents, all or nothing.

        ``check[i]`` is the duplicate check for ``data[i]``. Checks run one
        after another before anything is written; one match fails the batch.
        The store refuses keys that already exist, but the checks themselves
        are not part of the write, so a concurrent writer can still insert a
        document matching a check in between.

        Raises:
            ValidationError: If inputs are malformed or their lengths differ
            Conflict: If any check matches or two payloads share a key (nothing is written)
            InternalError: If the store fails
        """
        validate_model(model)
        if not isinstance(data, (list, tuple)) or not isinstance(check, (list, tuple)):
            raise ValidationError('data and check must be sequences', field='data')
        if len(data) != len(check):
            raise ValidationError(
                f'data and check must have the same length ({len(data)} != {len(check)})',
                field='check',
            )
        for item in data:
            _validate_payload(item)
        _check_repeated_keys(model, data)
        for condition in check:
            validate_filter(condition, 'check')

        with store_errors('create_many'):
            for index, condition in enumerate(check):
                if self.store.find_one(model, condition) is not None:
                    raise Conflict(
                        f'Document at index {index} already exists',
                        table_name=model.table_name,
                        index=index,
                    )
            created = self.store.insert_many(model, [dict(item) for item in data]) if data else []

        logger.info(f'Created {len(created)} documents in {model.table_name}')
        return ResponseEnvelope(
            message='Successfully created',
            success_status=True,
            data=[model.mask(doc) for doc in created],
            doc_length=len(created),
        )

    def update(self, model: ModelDescriptor, data: Mapping[str, Any], filter: Any) -> ResponseEnvelope:
        """
        Apply an update expression to every document matching ``filter``.

        ``data`` is the updated document when one matched, a list of them when
        several matched, and the update metadata when none did. Matching
        nothing is not an error.

        Raises:
            ValidationError: If the descriptor, update or filter is malformed
            InternalError: If the store fails
        """
        validate_model(model)
        validate_update(data, model.key_attribute)
        validate_filter(filter)

        with store_errors('update'):
            result = self.store.update_many(model, filter, data)

        documents = [model.mask(doc) for doc in result.documents]
        if result.matched_count == 0:
            payload: Any = result.to_dict()
        elif len(documents) == 1:
            payload = documents[0]
        else:
            payload = documents

        logger.info(
            f'Updated {model.table_name}: matched {result.matched_count}, modified {result.modified_count}'
        )
        return ResponseEnvelope(
            message='Successfully updated',
            success_status=True,
            data=payload,
            doc_length=result.matched_count,
        )

    def _populate(self, model: ModelDescriptor, document: Document, populate: List[PopulateField]) -> Document:
        for spec in populate:
            document = self.store.populate(model, document, spec)
        return document

    def _fetch_page(
        self,
        model: ModelDescriptor,
        params: QueryParams,
        populate: List[PopulateField],
        filter: Any
    ) -> List[Document]:
        documents = self.store.find(
            model,
            combine_filters(params.filter, filter),
            projection=params.projection.merge(model.exempt_projection),
            sort=params.sort,
            skip=params.pagination.skip,
            limit=params.pagination.limit,
        )
        return [self._populate(model, doc, populate) for doc in documents]

    def get_many(
        self,
        model: Any,
        query: Optional[Mapping[str, Any]] = None,
        populate: Any = None,
        filter: Any = None
    ) -> ResponseEnvelope:
        """
        Fetch a page of documents from one model or several.

        With a single descriptor ``data`` is the page of documents. With a
        sequence, every model is read independently with the same query and
        populate specs, ``data`` is the list of pages in descriptor order and
        ``doc_length`` the sum of their lengths.

        Raises:
            ValidationError: If descriptors, query, populate or filter are malformed
            InternalError: If the store fails
        """
        models = validate_models(model)
        params = QueryParams.parse(query, self.default_page_size)
        validate_filter(params.filter)
        validate_filter(filter)
        populate_specs = normalize_populate(populate)

        with store_errors('get_many'):
            pages = [self._fetch_page(m, params, populate_specs, filter) for m in models]

        if isinstance(model, (list, tuple)):
            data: Any = pages
            doc_length = sum(len(page) for page in pages)
        else:
            data = pages[0]
            doc_length = len(pages[0])

        return ResponseEnvelope(
            message='Successfully fetched',
            success_status=True,
            data=data,
            doc_length=doc_length,
        )

    def get_one(self, model: ModelDescriptor, filter: Any, populate: Any = None) -> ResponseEnvelope:
        """
        Fetch the first document matching ``filter``.

        No match is not an error: the envelope has ``success_status=True``,
        ``data=None`` and the message ``"Document not found"``.

        Raises:
            ValidationError: If the descriptor, filter or populate is malformed
            InternalError: If the store fails
        """
        validate_model(model)
        validate_filter(filter)
        populate_specs = normalize_populate(populate)

        with store_errors('get_one'):
            document = self.store.find_one(model, filter, projection=model.exempt_projection)
            if document is not None:
                document = self._populate(model, document, populate_specs)

        if document is None:
            return ResponseEnvelope(message='Document not found', success_status=True, data=None)
        return ResponseEnvelope(message='Successfully fetched', success_status=True, data=document)

    def delete(self, model: ModelDescriptor, filter: Any) -> ResponseEnvelope:
        """
        Delete every document matching ``filter``.

        How selective the filter is remains the caller's responsibility.
        Deleting nothing is not an error.

        Raises:
            ValidationError: If the descriptor or filter is malformed
            InternalError: If the store fails
        """
        validate_model(model)
        validate_filter(filter)

        with store_errors('delete'):
            result = self.store.delete_many(model, filter)

        logger.info(f'Deleted {result.deleted_count} documents from {model.table_name}')
        return ResponseEnvelope(
            message='Successfully deleted',
            success_status=True,
            data=result.to_dict(),
            doc_length=result.deleted_count,
        )
