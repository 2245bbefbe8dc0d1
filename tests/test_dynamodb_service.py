"""
Unit tests for the DynamoDB store.
"""
from decimal import Decimal

import pytest
from unittest.mock import Mock, patch
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from services.dynamodb_service import DynamoDBStore, build_condition, build_update, sort_documents
from services.models import ModelDescriptor, PopulateField, Projection
from utils.exceptions import Conflict, ValidationError


class TestBuildCondition:
    """Tests for filter translation."""

    def test_empty_filters(self):
        """Test None and empty mappings mean no condition."""
        assert build_condition(None) is None
        assert build_condition({}) is None

    def test_condition_passthrough(self):
        """Test boto3 conditions are passed through unchanged."""
        condition = Attr('name').eq('Ann')
        assert build_condition(condition) is condition

    def test_equality(self):
        """Test plain values become equality conditions."""
        assert build_condition({'name': 'Ann'}) == Attr('name').eq('Ann')

    def test_operators_and_floats(self):
        """Test operator mappings and float conversion."""
        condition = build_condition({'score': {'$gt': 1.5}})
        assert condition == Attr('score').gt(Decimal('1.5'))

    def test_multiple_clauses_are_anded(self):
        """Test top-level clauses are combined with AND."""
        condition = build_condition({'name': 'Ann', 'age': {'$lt': 30}})
        assert condition == Attr('name').eq('Ann') & Attr('age').lt(30)

    def test_or(self):
        """Test $or combines sub-filters."""
        condition = build_condition({'$or': [{'name': 'Ann'}, {'name': 'Bob'}]})
        assert condition == Attr('name').eq('Ann') | Attr('name').eq('Bob')

    def test_unknown_operator(self):
        """Test unsupported operators are rejected."""
        with pytest.raises(ValidationError):
            build_condition({'name': {'$regex': 'A.*'}})


class TestBuildUpdate:
    """Tests for update expression translation."""

    def test_plain_fields_are_set(self):
        """Test a plain mapping becomes a SET clause with placeholders."""
        expression, names, values = build_update({'name': 'Ann', 'score': 2.5})

        assert expression == 'SET #f0 = :v0, #f1 = :v1'
        assert names == {'#f0': 'name', '#f1': 'score'}
        assert values == {':v0': 'Ann', ':v1': Decimal('2.5')}

    def test_operators(self):
        """Test $set, $inc and $unset together."""
        expression, names, values = build_update({
            '$set': {'address.city': 'Oslo'},
            '$inc': {'visits': 1},
            '$unset': ['nickname'],
        })

        assert expression == 'SET #f0.#f1 = :v0 ADD #f2 :v1 REMOVE #f3'
        assert names == {'#f0': 'address', '#f1': 'city', '#f2': 'visits', '#f3': 'nickname'}
        assert values == {':v0': 'Oslo', ':v1': 1}


class TestSortDocuments:
    """Tests for in-memory sorting."""

    def test_multi_key_sort(self):
        """Test the first key is primary and direction is per key."""
        docs = [
            {'id': 'a', 'team': 'red', 'score': 1},
            {'id': 'b', 'team': 'blue', 'score': 3},
            {'id': 'c', 'team': 'red', 'score': 5},
            {'id': 'd', 'team': 'blue', 'score': 2},
        ]

        ordered = sort_documents(docs, [('team', False), ('score', True)])

        assert [d['id'] for d in ordered] == ['b', 'd', 'c', 'a']

    def test_missing_values_sort_last(self):
        """Test documents without the field go to the end."""
        docs = [{'id': 'a'}, {'id': 'b', 'age': 3}, {'id': 'c', 'age': 1}]

        ordered = sort_documents(docs, [('age', False)])

        assert [d['id'] for d in ordered] == ['c', 'b', 'a']

    def test_missing_values_sort_last_descending(self):
        """Test documents without the field stay at the end of a descending sort."""
        docs = [{'id': 'a'}, {'id': 'b', 'age': 3}, {'id': 'c', 'age': 1}, {'id': 'd', 'age': None}]

        ordered = sort_documents(docs, [('age', True)])

        assert [d['id'] for d in ordered] == ['b', 'c', 'a', 'd']

    def test_missing_secondary_values_keep_primary_order(self):
        """Test moving missing values last does not disturb earlier sort keys."""
        docs = [
            {'id': 'a', 'team': 'red'},
            {'id': 'b', 'team': 'blue', 'score': 1},
            {'id': 'c', 'team': 'red', 'score': 2},
            {'id': 'd', 'team': 'blue'},
        ]

        ordered = sort_documents(docs, [('team', False), ('score', True)])

        assert [d['id'] for d in ordered] == ['b', 'd', 'c', 'a']


class TestDynamoDBStore:
    """Tests for DynamoDBStore."""

    def test_init(self):
        """Test DynamoDBStore initialization."""
        store = DynamoDBStore(region_name='eu-west-1', table_prefix='dev-')
        assert store.region_name == 'eu-west-1'
        assert store.table_prefix == 'dev-'
        assert store._resource is None

    @patch('services.dynamodb_service.boto3')
    def test_resource_lazy_init(self, mock_boto3):
        """Test lazy initialization of DynamoDB resource."""
        mock_resource = Mock()
        mock_boto3.resource.return_value = mock_resource

        store = DynamoDBStore(region_name='eu-west-1', endpoint_url='http://localhost:8000')
        resource = store.resource
        store.resource

        assert resource == mock_resource
        mock_boto3.resource.assert_called_once_with(
            'dynamodb', region_name='eu-west-1', endpoint_url='http://localhost:8000'
        )

    @patch('services.dynamodb_service.boto3')
    def test_table_prefix(self, mock_boto3):
        """Test table names carry the deployment prefix."""
        store = DynamoDBStore(table_prefix='dev-')
        store.table(ModelDescriptor('users'))
        mock_boto3.resource.return_value.Table.assert_called_once_with('dev-users')

    def test_find_propagates_client_error(self):
        """Test scan failures are re-raised for the service to wrap."""
        store = DynamoDBStore()
        mock_resource = Mock()
        mock_resource.Table.return_value.scan.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'no table'}},
            'Scan'
        )
        store._resource = mock_resource

        with pytest.raises(ClientError):
            store.find(ModelDescriptor('users'))

    def test_find_follows_pagination(self):
        """Test scans continue from LastEvaluatedKey."""
        store = DynamoDBStore()
        mock_table = Mock()
        mock_table.scan.side_effect = [
            {'Items': [{'id': 'b', 'n': Decimal('2')}], 'LastEvaluatedKey': {'id': 'b'}},
            {'Items': [{'id': 'a', 'n': Decimal('1')}]},
        ]
        store._resource = Mock()
        store._resource.Table.return_value = mock_table

        docs = store.find(ModelDescriptor('users'))

        assert docs == [{'id': 'a', 'n': 1}, {'id': 'b', 'n': 2}]
        assert mock_table.scan.call_args_list[1].kwargs == {'ExclusiveStartKey': {'id': 'b'}}

    def test_insert_one_generates_key(self, store, models):
        """Test a key is generated when the payload has none."""
        doc = store.insert_one(models.tags, {'label': 'python'})

        assert isinstance(doc['id'], str) and doc['id']
        assert store.find_one(models.tags, {'id': doc['id']}) == doc

    def test_insert_one_duplicate_key(self, store, models):
        """Test inserting an existing key is a conflict instead of an overwrite."""
        store.insert_one(models.tags, {'id': 't1', 'label': 'python'})

        with pytest.raises(Conflict):
            store.insert_one(models.tags, {'id': 't1', 'label': 'rust'})

        assert store.find_one(models.tags, {'id': 't1'})['label'] == 'python'

    def test_insert_many_duplicate_key_writes_nothing(self, store, models):
        """Test one existing key cancels the whole batch and names its index."""
        store.insert_one(models.tags, {'id': 't2', 'label': 'python'})

        with pytest.raises(Conflict) as exc_info:
            store.insert_many(models.tags, [{'id': 't1'}, {'id': 't2', 'label': 'rust'}, {'id': 't3'}])

        assert exc_info.value.index == 1
        assert store.find(models.tags) == [{'id': 't2', 'label': 'python'}]

    def test_insert_many_serializes_values(self, store, models):
        """Test nested values and floats survive the transactional write."""
        docs = store.insert_many(models.tags, [{'id': 't1', 'weight': 0.5, 'meta': {'aliases': ['py']}}])

        assert docs == [{'id': 't1', 'weight': 0.5, 'meta': {'aliases': ['py']}}]
        assert store.find_one(models.tags, {'id': 't1'}) == docs[0]

    def test_insert_many_other_cancellation_reraised(self, models):
        """Test a cancellation without a failed condition is not reported as a conflict."""
        store = DynamoDBStore(region_name='us-east-1')
        store._resource = Mock()
        store._resource.meta.client.transact_write_items.side_effect = ClientError(
            {
                'Error': {'Code': 'TransactionCanceledException', 'Message': 'Transaction cancelled'},
                'CancellationReasons': [{'Code': 'TransactionConflict'}],
            },
            'TransactWriteItems',
        )

        with pytest.raises(ClientError):
            store.insert_many(models.tags, [{'id': 't1'}])

    def test_find_projection_keeps_key(self, store, models):
        """Test an inclusion projection always keeps the key attribute."""
        store.insert_one(models.users, {'id': 'u1', 'name': 'Ann', 'age': 30})

        docs = store.find(models.users, projection=Projection(include=('name',)))

        assert docs == [{'id': 'u1', 'name': 'Ann'}]

    def test_update_many_counts(self, store, models):
        """Test matched and modified counts."""
        store.insert_many(models.users, [
            {'id': 'u1', 'role': 'admin'},
            {'id': 'u2', 'role': 'user'},
        ])

        result = store.update_many(models.users, {}, {'role': 'admin'})

        assert result.matched_count == 2
        assert result.modified_count == 1
        assert result.to_dict() == {'acknowledged': True, 'matchedCount': 2, 'modifiedCount': 1}

    def test_update_many_reserved_word(self, store, models):
        """Test updating an attribute named like a DynamoDB reserved word."""
        store.insert_one(models.users, {'id': 'u1', 'name': 'Ann'})

        result = store.update_many(models.users, {'id': 'u1'}, {'name': 'Anna', 'status': 'active'})

        assert result.documents == [{'id': 'u1', 'name': 'Anna', 'status': 'active'}]

    def test_delete_many(self, store, models):
        """Test every matching document is removed."""
        store.insert_many(models.tags, [{'id': 't1'}, {'id': 't2'}, {'id': 't3', 'keep': True}])

        result = store.delete_many(models.tags, {'keep': {'$exists': False}})

        assert result.deleted_count == 2
        assert store.find(models.tags) == [{'id': 't3', 'keep': True}]

    def test_populate_does_not_mutate_input(self, store, models):
        """Test populate returns a new document."""
        store.insert_one(models.users, {'id': 'u1', 'name': 'Ann', 'password': 'x'})
        post = {'id': 'p1', 'author': 'u1'}

        populated = store.populate(models.posts, post, PopulateField('author'))

        assert post == {'id': 'p1', 'author': 'u1'}
        assert populated['author'] == {'id': 'u1', 'name': 'Ann'}

