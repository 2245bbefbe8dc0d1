"""Pytest configuration and fixtures."""
from types import SimpleNamespace

import pytest
from moto import mock_aws

from services.crud_service import CrudService
from services.dynamodb_service import DynamoDBStore
from services.models import ModelDescriptor


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def models():
    """Descriptors for a small users/organizations/posts/tags schema."""
    organizations = ModelDescriptor('organizations', exempt='-billing_code')
    users = ModelDescriptor('users', exempt='-password', refs={'organization': organizations})
    organizations.refs['owner'] = users
    tags = ModelDescriptor('tags')
    posts = ModelDescriptor('posts', refs={'author': users, 'tags': tags})
    return SimpleNamespace(organizations=organizations, users=users, tags=tags, posts=posts)


@pytest.fixture
def store(models):
    """DynamoDB store with every model's table created in moto."""
    with mock_aws():
        store = DynamoDBStore(region_name='us-east-1')
        for model in (models.organizations, models.users, models.tags, models.posts):
            store.ensure_table(model)
        yield store


@pytest.fixture
def service(store):
    return CrudService(store, default_page_size=10)


@pytest.fixture
def count_items(store):
    """Number of items physically stored in a model's table."""
    def count(model):
        return store.table(model).scan(Select='COUNT')['Count']
    return count
