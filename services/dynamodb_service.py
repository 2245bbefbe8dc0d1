"""
DynamoDB implementation of the document store contract.
"""
import re
import uuid
from functools import reduce
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from logger_config import get_logger
from utils.exceptions import Conflict, ValidationError
from utils.serialization import from_dynamo, to_dynamo
from .envelope import DeleteResult, UpdateResult
from .models import ModelDescriptor, PopulateField, Projection

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table
else:
    DynamoDBServiceResource = Any
    Table = Any

logger = get_logger(__name__)

Document = Dict[str, Any]

# DynamoDB limit on actions in one TransactWriteItems call.
MAX_TRANSACTION_ITEMS = 100


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _cancelled_index(error: ClientError) -> Optional[int]:
    """Position of the first item whose condition failed in a cancelled transaction."""
    reasons = error.response.get('CancellationReasons')
    if reasons is None:
        # Not every protocol surfaces the reasons; the message lists them in order
        match = re.search(r'\[(.*)\]', error.response.get('Error', {}).get('Message', ''))
        reasons = [{'Code': code.strip()} for code in match.group(1).split(',')] if match else []
    for index, reason in enumerate(reasons):
        if reason.get('Code') == 'ConditionalCheckFailed':
            return index
    return None


def _join(conditions: List[Any], operator) -> Any:
    conditions = [c for c in conditions if c is not None]
    if not conditions:
        return None
    return reduce(operator, conditions)


def _operator_condition(attr: Attr, op: str, operand: Any) -> Any:
    operand = to_dynamo(operand)
    if op == '$eq':
        return attr.eq(operand)
    if op == '$ne':
        return attr.ne(operand)
    if op == '$gt':
        return attr.gt(operand)
    if op == '$gte':
        return attr.gte(operand)
    if op == '$lt':
        return attr.lt(operand)
    if op == '$lte':
        return attr.lte(operand)
    if op == '$in':
        return attr.is_in(list(operand))
    if op == '$exists':
        return attr.exists() if operand else attr.not_exists()
    if op == '$contains':
        return attr.contains(operand)
    if op == '$begins_with':
        return attr.begins_with(operand)
    raise ValidationError(f'Unsupported filter operator: {op}', field='filter', value=op)


def build_condition(expression: Any) -> Any:
    """
    Translate a filter into a boto3 condition.

    boto3 conditions pass through untouched; mappings are read as
    mongo-style filters and every top-level clause is AND-ed.
    """
    if expression is None:
        return None
    if hasattr(expression, 'get_expression'):
        return expression
    conditions = []
    for key, value in expression.items():
        if key == '$and':
            conditions.append(_join([build_condition(v) for v in value], lambda a, b: a & b))
        elif key == '$or':
            conditions.append(_join([build_condition(v) for v in value], lambda a, b: a | b))
        elif isinstance(value, Mapping) and value and all(str(k).startswith('$') for k in value):
            for op, operand in value.items():
                conditions.append(_operator_condition(Attr(key), op, operand))
        else:
            conditions.append(Attr(key).eq(to_dynamo(value)))
    return _join(conditions, lambda a, b: a & b)


def build_update(update: Mapping[str, Any]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Translate an update mapping into a DynamoDB UpdateExpression.

    Plain keys are treated as ``$set``. Every path segment gets a
    placeholder name so reserved words such as ``name`` are safe.
    ``$inc`` maps to ADD, which DynamoDB only allows on top-level attributes.

    Returns:
        Tuple of (UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues)
    """
    if not any(str(k).startswith('$') for k in update):
        update = {'$set': update}

    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    placeholders: Dict[str, str] = {}

    def path(field_path: str) -> str:
        segments = []
        for segment in field_path.split('.'):
            if segment not in placeholders:
                placeholders[segment] = f'#f{len(placeholders)}'
                names[placeholders[segment]] = segment
            segments.append(placeholders[segment])
        return '.'.join(segments)

    def value(operand: Any) -> str:
        token = f':v{len(values)}'
        values[token] = to_dynamo(operand)
        return token

    set_parts: List[str] = []
    add_parts: List[str] = []
    remove_parts: List[str] = []
    for field_name, operand in update.get('$set', {}).items():
        set_parts.append(f'{path(field_name)} = {value(operand)}')
    for field_name, operand in update.get('$inc', {}).items():
        add_parts.append(f'{path(field_name)} {value(operand)}')
    for field_name in update.get('$unset', []):
        remove_parts.append(path(field_name))

    clauses = []
    if set_parts:
        clauses.append('SET ' + ', '.join(set_parts))
    if add_parts:
        clauses.append('ADD ' + ', '.join(add_parts))
    if remove_parts:
        clauses.append('REMOVE ' + ', '.join(remove_parts))
    return ' '.join(clauses), names, values


def _sort_value(value: Any) -> Tuple[int, Any, str]:
    if value is None:
        return (2, 0, '')
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value, '')
    return (1, 0, str(value))


def sort_documents(documents: List[Document], sort: Sequence[Tuple[str, bool]]) -> List[Document]:
    """Sort by ``(field, descending)`` pairs, the first pair being the primary key."""
    ordered = list(documents)
    for field_name, descending in reversed(list(sort)):
        ordered.sort(key=lambda doc: _sort_value(doc.get(field_name)), reverse=descending)
        # Missing values go last in either direction
        ordered.sort(key=lambda doc: doc.get(field_name) is None)
    return ordered


class DynamoDBStore:
    """Document store backed by one DynamoDB table per model descriptor."""

    def __init__(
        self,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        table_prefix: str = ''
    ) -> None:
        """
        Initialize DynamoDB store.

        Args:
            region_name: AWS region (boto3 default resolution if not set)
            endpoint_url: Custom endpoint, e.g. DynamoDB Local
            table_prefix: Prefix added to every descriptor's table name
        """
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.table_prefix = table_prefix
        self._resource: Optional[DynamoDBServiceResource] = None

    @classmethod
    def from_config(cls, config) -> "DynamoDBStore":
        return cls(
            region_name=config.aws_region,
            endpoint_url=config.dynamodb_endpoint_url,
            table_prefix=config.table_prefix,
        )

    @property
    def resource(self) -> DynamoDBServiceResource:
        """Lazy initialization of DynamoDB resource."""
        if self._resource is None:
            kwargs = {}
            if self.region_name:
                kwargs['region_name'] = self.region_name
            if self.endpoint_url:
                kwargs['endpoint_url'] = self.endpoint_url
            self._resource = boto3.resource('dynamodb', **kwargs)
        return self._resource

    def table_name(self, model: ModelDescriptor) -> str:
        return f'{self.table_prefix}{model.table_name}'

    def table(self, model: ModelDescriptor) -> Table:
        return self.resource.Table(self.table_name(model))

    def ensure_table(self, model: ModelDescriptor) -> Table:
        """
        Create the model's table if it does not exist yet.

        The table is keyed on the descriptor's key attribute (string type)
        and billed per request.

        Returns:
            The table resource

        Raises:
            ClientError: If DynamoDB operation fails
        """
        table_name = self.table_name(model)
        try:
            table = self.resource.create_table(
                TableName=table_name,
                KeySchema=[{'AttributeName': model.key_attribute, 'KeyType': 'HASH'}],
                AttributeDefinitions=[{'AttributeName': model.key_attribute, 'AttributeType': 'S'}],
                BillingMode='PAY_PER_REQUEST',
            )
            table.wait_until_exists()
            logger.info(f'Created DynamoDB table {table_name}')
            return table
        except ClientError as e:
            if _error_code(e) == 'ResourceInUseException':
                return self.table(model)
            logger.error(f'DynamoDB create_table failed for table {table_name}: {str(e)}')
            raise

    def _scan(self, model: ModelDescriptor, filter: Any = None) -> Iterator[Document]:
        kwargs: Dict[str, Any] = {}
        condition = build_condition(filter)
        if condition is not None:
            kwargs['FilterExpression'] = condition
        table = self.table(model)
        while True:
            response = table.scan(**kwargs)
            for item in response.get('Items', []):
                yield from_dynamo(item)
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return
            kwargs['ExclusiveStartKey'] = last_key

    def find(
        self,
        model: ModelDescriptor,
        filter: Any = None,
        projection: Optional[Projection] = None,
        sort: Sequence[Tuple[str, bool]] = (),
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Document]:
        """
        Find documents matching a filter.

        DynamoDB scans have no order, so documents are sorted here; without
        an explicit sort they are ordered by key attribute so pages are stable.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        try:
            documents = list(self._scan(model, filter))
        except ClientError as e:
            logger.error(f'DynamoDB scan failed for table {self.table_name(model)}: {str(e)}')
            raise
        documents = sort_documents(documents, sort or [(model.key_attribute, False)])
        end = None if limit is None else skip + limit
        page = documents[skip:end]
        if projection is None:
            return page
        return [projection.apply(doc, model.key_attribute) for doc in page]

    def find_one(
        self,
        model: ModelDescriptor,
        filter: Any = None,
        projection: Optional[Projection] = None
    ) -> Optional[Document]:
        """
        Return the first document matching a filter, in scan order.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        try:
            document = next(self._scan(model, filter), None)
        except ClientError as e:
            logger.error(f'DynamoDB scan failed for table {self.table_name(model)}: {str(e)}')
            raise
        if document is None or projection is None:
            return document
        return projection.apply(document, model.key_attribute)

    def _with_key(self, model: ModelDescriptor, payload: Document) -> Document:
        item = dict(payload)
        if item.get(model.key_attribute) in (None, ''):
            item[model.key_attribute] = uuid.uuid4().hex
        return to_dynamo(item)

    def insert_one(self, model: ModelDescriptor, payload: Document) -> Document:
        """
        Insert a document, generating its key if the payload has none.

        Raises:
            Conflict: If a document with the same key already exists
            ClientError: If DynamoDB operation fails
        """
        item = self._with_key(model, payload)
        try:
            self.table(model).put_item(
                Item=item,
                ConditionExpression=Attr(model.key_attribute).not_exists(),
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise Conflict(
                    f'Document with {model.key_attribute} {item[model.key_attribute]} already exists',
                    table_name=model.table_name,
                ) from e
            logger.error(f'DynamoDB put_item failed for table {self.table_name(model)}: {str(e)}')
            raise
        return from_dynamo(item)

    def insert_many(self, model: ModelDescriptor, payloads: Sequence[Document]) -> List[Document]:
        """
        Insert documents in a transaction, each conditioned on its key being new.

        A key that already exists cancels the whole transaction. Batches larger
        than MAX_TRANSACTION_ITEMS are written as consecutive transactions, so
        they are only all-or-nothing per chunk.

        Raises:
            Conflict: If a document with one of the keys already exists
            ClientError: If DynamoDB operation fails
        """
        items = [self._with_key(model, payload) for payload in payloads]
        table_name = self.table_name(model)
        serializer = TypeSerializer()
        client = self.resource.meta.client
        for start in range(0, len(items), MAX_TRANSACTION_ITEMS):
            chunk = items[start:start + MAX_TRANSACTION_ITEMS]
            try:
                client.transact_write_items(TransactItems=[
                    {
                        'Put': {
                            'TableName': table_name,
                            'Item': {k: serializer.serialize(v) for k, v in item.items()},
                            'ConditionExpression': 'attribute_not_exists(#key)',
                            'ExpressionAttributeNames': {'#key': model.key_attribute},
                        }
                    }
                    for item in chunk
                ])
            except ClientError as e:
                offset = _cancelled_index(e) if _error_code(e) == 'TransactionCanceledException' else None
                if offset is not None:
                    raise Conflict(
                        f'Document at index {start + offset} already exists',
                        table_name=model.table_name,
                        index=start + offset,
                    ) from e
                logger.error(f'DynamoDB transact write failed for table {table_name}: {str(e)}')
                raise
        return [from_dynamo(item) for item in items]

    def update_many(self, model: ModelDescriptor, filter: Any, update: Any) -> UpdateResult:
        """
        Apply an update to every document matching a filter.

        Each document is updated on condition that it still exists, so a
        document deleted after the scan is skipped rather than recreated.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        expression, names, values = build_update(update)
        key_placeholder = '#key'
        names = dict(names, **{key_placeholder: model.key_attribute})
        result = UpdateResult()
        table = self.table(model)
        try:
            for document in list(self._scan(model, filter)):
                kwargs: Dict[str, Any] = {
                    'Key': {model.key_attribute: to_dynamo(document[model.key_attribute])},
                    'UpdateExpression': expression,
                    'ConditionExpression': f'attribute_exists({key_placeholder})',
                    'ExpressionAttributeNames': names,
                    'ReturnValues': 'ALL_NEW',
                }
                if values:
                    kwargs['ExpressionAttributeValues'] = values
                try:
                    response = table.update_item(**kwargs)
                except ClientError as e:
                    if _error_code(e) == 'ConditionalCheckFailedException':
                        continue
                    raise
                updated = from_dynamo(response.get('Attributes', {}))
                result.matched_count += 1
                if updated != document:
                    result.modified_count += 1
                result.documents.append(updated)
        except ClientError as e:
            logger.error(f'DynamoDB update_item failed for table {self.table_name(model)}: {str(e)}')
            raise
        return result

    def delete_many(self, model: ModelDescriptor, filter: Any) -> DeleteResult:
        """
        Delete every document matching a filter.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        result = DeleteResult()
        try:
            keys = [
                {model.key_attribute: to_dynamo(doc[model.key_attribute])}
                for doc in self._scan(model, filter)
            ]
            with self.table(model).batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key=key)
        except ClientError as e:
            logger.error(f'DynamoDB delete failed for table {self.table_name(model)}: {str(e)}')
            raise
        result.deleted_count = len(keys)
        return result

    def _get(self, model: ModelDescriptor, key_value: Any) -> Optional[Document]:
        try:
            response = self.table(model).get_item(Key={model.key_attribute: to_dynamo(key_value)})
        except ClientError as e:
            if _error_code(e) == 'ValidationException':
                logger.warning(f'Unresolvable reference {key_value!r} into table {self.table_name(model)}')
                return None
            logger.error(f'DynamoDB get_item failed for table {self.table_name(model)}: {str(e)}')
            raise
        item = response.get('Item')
        return from_dynamo(item) if item is not None else None

    def _resolve(self, model: ModelDescriptor, key_value: Any, spec: PopulateField, depth: int) -> Optional[Document]:
        document = model.mask(self._get(model, key_value))
        if document is None:
            return None
        document = spec.projection.apply(document, model.key_attribute)
        if spec.second_layer_populate is not None and depth == 0:
            document = self.populate(model, document, spec.second_layer_populate, depth=1)
        return document

    def populate(
        self,
        model: ModelDescriptor,
        document: Document,
        spec: PopulateField,
        depth: int = 0
    ) -> Document:
        """
        Replace a reference field with the referenced document(s).

        Paths not declared in ``model.refs`` and paths missing from the
        document are left alone. A dangling single reference becomes ``None``;
        dangling entries of a reference list are dropped.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        ref_model = model.refs.get(spec.path)
        if ref_model is None:
            logger.debug(f'No relation {spec.path} declared on {model.table_name}, skipping populate')
            return document
        value = document.get(spec.path)
        if value is None or isinstance(value, dict):
            return document
        populated = dict(document)
        if isinstance(value, list):
            resolved = [self._resolve(ref_model, item, spec, depth) for item in value]
            populated[spec.path] = [doc for doc in resolved if doc is not None]
        else:
            populated[spec.path] = self._resolve(ref_model, value, spec, depth)
        return populated
