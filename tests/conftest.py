"""
Pytest fixtures for Curator tests.
"""
import pytest
from typing import Any, Dict, Generator, List
from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from curator.core.capabilities import (
    BYPASS,
    CONNECTORAPI,
    KNOWLEDGE,
    KNOWLEDGE_KNASKIMPORT,
    KNOWLEDGE_KNUPDATE,
    KNOWLEDGE_KNUPDATE_KNDELETE,
    SETTINGS,
)
from curator.main import app
from curator.schemas.principal import Principal
from curator.services.auth_service import get_current_user


# ============ Fixtures ============

MOCK_USER_ID = "00000000-0000-0000-0000-000000000002"
MOCK_OTHER_USER_ID = "00000000-0000-0000-0000-000000000003"


def make_principal(capabilities: List[str], user_id: str = MOCK_USER_ID, name: str = "Test User") -> Principal:
    return Principal(
        id=user_id,
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        capabilities=capabilities,
    )


@pytest.fixture
def admin_principal() -> Principal:
    """Principal holding the BYPASS capability."""
    return make_principal([BYPASS], name="Admin User")


@pytest.fixture
def editor_principal() -> Principal:
    """Principal allowed to update and delete knowledge."""
    return make_principal([KNOWLEDGE, KNOWLEDGE_KNUPDATE_KNDELETE], name="Editor User")


@pytest.fixture
def updater_principal() -> Principal:
    """Principal allowed to update knowledge but not to delete it."""
    return make_principal([KNOWLEDGE, KNOWLEDGE_KNUPDATE], name="Updater User")


@pytest.fixture
def importer_principal() -> Principal:
    return make_principal([KNOWLEDGE, KNOWLEDGE_KNASKIMPORT], name="Importer User")


@pytest.fixture
def viewer_principal() -> Principal:
    """Principal without any write capability."""
    return make_principal([KNOWLEDGE], name="Viewer User")


@pytest.fixture
def settings_principal() -> Principal:
    return make_principal([SETTINGS], name="Settings User")


@pytest.fixture
def worker_principal() -> Principal:
    """Task runtime account reporting progress."""
    return make_principal([CONNECTORAPI], user_id="00000000-0000-0000-0000-000000000009", name="Worker")


@pytest.fixture
def mock_db_service():
    """Mock database service with a MagicMock supabase client."""
    mock_db = MagicMock()
    mock_db.client = MagicMock()
    return mock_db


def make_response(data: Any = None, count: int = None) -> MagicMock:
    """Mock supabase execute() response."""
    response = MagicMock()
    response.data = data if data is not None else []
    response.count = count
    return response


# ============ App / client ============

def create_auth_override(principal: Principal):
    """Create an auth override function for testing."""
    async def mock_get_current_user(credentials=None):
        return principal
    return mock_get_current_user


@pytest.fixture
def principal(admin_principal: Principal) -> Principal:
    """Principal returned by get_current_user; override per test module."""
    return admin_principal


@pytest.fixture
def test_app(principal: Principal) -> Generator[FastAPI, None, None]:
    """Create a test FastAPI app with dependency overrides."""
    app.dependency_overrides[get_current_user] = create_auth_override(principal)
    yield app
    # Clean up overrides after test
    app.dependency_overrides.clear()


@pytest.fixture
def client(test_app: FastAPI) -> Generator[TestClient, None, None]:
    """Create a test client with mocked dependencies."""
    with TestClient(test_app) as c:
        yield c


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    """Default authorization headers for tests."""
    return {"Authorization": "Bearer test-token"}
