"""
Request adapter between API Gateway Lambda events and the CRUD service.

``CrudController`` wraps one incoming event. Each method runs a service
operation, answers with an API Gateway proxy response, and on failure
either forwards the error to ``next_handler`` or formats it inline with
the ErrorNormalizer. ``make_handler`` builds a Lambda entry point that
routes REST-style events onto a controller.
"""
import json
from http import HTTPStatus
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from config import get_config
from logger_config import get_logger
from services.crud_service import CrudService
from services.dynamodb_service import DynamoDBStore
from services.envelope import ResponseEnvelope
from services.error_normalizer import ErrorNormalizer
from services.models import ModelDescriptor
from services.result import Result, run_operation
from utils.decorators import api_handler
from utils.exceptions import CrudError, NotFound, ValidationError
from utils.serialization import json_response

logger = get_logger(__name__)

NextHandler = Callable[[Exception], Dict[str, Any]]


class CrudController:
    """CRUD endpoints for a single API Gateway event."""

    def __init__(
        self,
        event: Optional[Mapping[str, Any]],
        service: CrudService,
        normalizer: ErrorNormalizer,
        next_handler: Optional[NextHandler] = None
    ) -> None:
        """
        Initialize controller.

        Args:
            event: API Gateway proxy event
            service: CRUD service to run operations on
            normalizer: Formats errors when there is no next handler
            next_handler: Receives errors instead of inline formatting if set
        """
        self.event = event or {}
        self.service = service
        self.normalizer = normalizer
        self.next_handler = next_handler

    @classmethod
    def from_config(
        cls,
        event: Optional[Mapping[str, Any]],
        config=None,
        next_handler: Optional[NextHandler] = None
    ) -> "CrudController":
        """Build a controller wired to DynamoDB from the process configuration."""
        config = config or get_config()
        service = CrudService(DynamoDBStore.from_config(config), config.default_page_size)
        return cls(event, service, ErrorNormalizer.from_config(config), next_handler)

    @property
    def query(self) -> Dict[str, Any]:
        return dict(self.event.get('queryStringParameters') or {})

    @property
    def path_parameters(self) -> Dict[str, Any]:
        return dict(self.event.get('pathParameters') or {})

    @property
    def body(self) -> Any:
        """
        The JSON-decoded request body, or ``None`` when there is none.

        Raises:
            ValidationError: If the body is not valid JSON
        """
        raw = self.event.get('body')
        if raw is None or raw == '':
            return None
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f'Request body is not valid JSON: {e.msg}', field='body') from e

    def _respond(self, result: Result[ResponseEnvelope], status: HTTPStatus) -> Dict[str, Any]:
        if result.ok:
            return json_response(status, result.value.to_dict())
        if self.next_handler is not None:
            return self.next_handler(result.error)
        status_code, envelope = self.normalizer.normalize(result.error)
        logger.warning(f'Request failed with status {status_code}: {envelope.message}')
        return json_response(status_code, envelope.to_dict())

    def create(self, model: ModelDescriptor, data: Mapping[str, Any], check: Any) -> Dict[str, Any]:
        result = run_operation(self.service.create, model, data, check)
        return self._respond(result, HTTPStatus.CREATED)

    def create_many(
        self,
        model: ModelDescriptor,
        data: Sequence[Mapping[str, Any]],
        check: Sequence[Any]
    ) -> Dict[str, Any]:
        result = run_operation(self.service.create_many, model, data, check)
        return self._respond(result, HTTPStatus.CREATED)

    def update(self, model: ModelDescriptor, data: Mapping[str, Any], filter: Any) -> Dict[str, Any]:
        result = run_operation(self.service.update, model, data, filter)
        return self._respond(result, HTTPStatus.OK)

    def get_many(
        self,
        model: Any,
        query: Optional[Mapping[str, Any]] = None,
        populate: Any = None,
        filter: Any = None
    ) -> Dict[str, Any]:
        """Fetch a page; ``query`` defaults to the event's query string."""
        if query is None:
            query = self.query
        result = run_operation(self.service.get_many, model, query, populate, filter)
        return self._respond(result, HTTPStatus.OK)

    def get_one(self, model: ModelDescriptor, filter: Any, populate: Any = None) -> Dict[str, Any]:
        result = run_operation(self.service.get_one, model, filter, populate)
        return self._respond(result, HTTPStatus.OK)

    def delete(self, model: ModelDescriptor, filter: Any) -> Dict[str, Any]:
        result = run_operation(self.service.delete, model, filter)
        return self._respond(result, HTTPStatus.OK)


def duplicate_check(model: ModelDescriptor, payload: Any, fields: Sequence[str]) -> Any:
    """Filter matching stored documents that share ``payload``'s values for ``fields``."""
    if not isinstance(payload, Mapping):
        return None
    check = {name: payload[name] for name in fields if payload.get(name) not in (None, '')}
    # A payload without any unique value cannot collide; match nothing
    return check or {model.key_attribute: {'$exists': False}}


def make_handler(
    models: Mapping[str, ModelDescriptor],
    unique_fields: Optional[Mapping[str, Sequence[str]]] = None
) -> Callable[[Any, Any], Dict[str, Any]]:
    """
    Build a Lambda entry point serving ``/{model}`` and ``/{model}/{id}``.

    Args:
        models: Value of the ``model`` path parameter -> descriptor
        unique_fields: Per model, the payload fields used as the duplicate
            check on create (the key attribute when not given)

    Returns:
        Handler function decorated with api_handler
    """
    unique_fields = unique_fields or {}

    @api_handler
    def handle(event, context):
        controller = CrudController.from_config(event)
        params = controller.path_parameters
        name = params.get('model')
        model = models.get(name)
        if model is None:
            raise NotFound(f'Unknown model: {name}')

        method = (controller.event.get('httpMethod') or 'GET').upper()
        key = params.get('id')
        key_filter = {model.key_attribute: key} if key else None
        fields = unique_fields.get(name, (model.key_attribute,))

        if method == 'GET':
            if key_filter:
                return controller.get_one(model, key_filter)
            return controller.get_many(model)
        if method == 'POST':
            body = controller.body
            if isinstance(body, list):
                return controller.create_many(model, body, [duplicate_check(model, item, fields) for item in body])
            return controller.create(model, body, duplicate_check(model, body, fields))
        if method not in ('PUT', 'PATCH', 'DELETE'):
            raise CrudError(f'Method {method} not allowed', status_code=HTTPStatus.METHOD_NOT_ALLOWED)
        if key_filter is None:
            raise ValidationError(f'{method} requires a document id', field='id')
        if method == 'DELETE':
            return controller.delete(model, key_filter)
        return controller.update(model, controller.body, key_filter)

    return handle
