"""Pytest configuration and fixtures."""
import os

import pytest

# Must be set before constellation.utils.config is first imported
os.environ.update({
    'AWS_DEFAULT_REGION': 'us-east-1',
    'AWS_ACCESS_KEY_ID': 'testing',
    'AWS_SECRET_ACCESS_KEY': 'testing',
    'DYNAMODB_TABLE': 'test_lake',
    'OPENSEARCH_ENDPOINT': 'localhost',
    'BEDROCK_EMBED_DIMENSION': '8',
    'OPENSEARCH_DIMENSION': '8',
    'GITHUB_OWNER': 'test-owner',
    'GITHUB_REPO': 'test-archive',
    'GITHUB_TOKEN': 'test-token',
    'DASHBOARD_CONFLICT_RETRIES': '1',
    'LOG_LEVEL': 'WARNING',
})

from constellation.services.ingestion_orchestrator import IngestionOrchestrator  # noqa: E402
from tests.fakes import FakeArchive, FakeEmbed, FakeLLM, FakeRecordStore, FakeVectorIndex  # noqa: E402


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def embed():
    return FakeEmbed()


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def index():
    return FakeVectorIndex()


@pytest.fixture
def archive():
    return FakeArchive()


@pytest.fixture
def orchestrator(llm, embed, store, index):
    return IngestionOrchestrator(llm=llm, embed=embed, record_store=store, vector_index=index)
