"""Pytest configuration and shared fixtures."""

import json
import os
import sys
import tempfile
import threading
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import after path setup
from src.ledgerly.core.config import AppConfig, CompletionConfig, DatabaseConfig, SuggestionConfig
from src.ledgerly.core.database import AccountORM, DatabaseManager

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

COFFEE_SUGGESTION = {"category_name": "Coffee Shops", "confidence_score": 0.87, "reasoning": "Coffee purchase"}


def completion_envelope(content: str, model: str = "test/model") -> dict:
    """Build a chat completion response body around the given message content."""
    return {
        "id": "gen-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
    }


class FakeCompletionClient:
    """Stands in for CompletionClient; answers with queued contents or errors."""

    default_model = "test/model"

    def __init__(self, *responses):
        self.responses = list(responses) or [json.dumps(COFFEE_SUGGESTION)]
        self.calls = []
        self._lock = threading.Lock()

    def chat(self, messages, **kwargs):
        with self._lock:
            self.calls.append({"messages": messages, **kwargs})
            response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)

        if isinstance(response, Exception):
            raise response
        return completion_envelope(response)

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture(scope="function")
def temp_db_path():
    """Create a temporary database file."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    yield db_path

    os.unlink(db_path)


@pytest.fixture(scope="function")
def app_config(temp_db_path, tmp_path):
    """Application config pointing at the temporary database, without an API key."""
    return AppConfig(
        database=DatabaseConfig(url=f"sqlite:///{temp_db_path}", echo=False),
        completion=CompletionConfig(api_key="", max_retries=3, retry_backoff_seconds=0.0),
        suggestions=SuggestionConfig(sync_mode=False, max_workers=2),
        data_dir=tmp_path / "data",
    )


@pytest.fixture(scope="function")
def db_manager(app_config):
    """Database manager with tables created."""
    manager = DatabaseManager(app_config)
    manager.create_tables()

    yield manager

    manager.engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_manager):
    """Create a database session for testing."""
    session = db_manager.get_session()

    yield session

    session.close()


@pytest.fixture(scope="function")
def seeded_account_id(db_manager):
    """Seed the default account and categories for USER_ID and return the account id."""
    db_manager.seed_user_defaults(USER_ID)
    with db_manager.get_session() as session:
        account = session.query(AccountORM).filter(AccountORM.user_id == USER_ID).one()
        return account.id


@pytest.fixture(scope="function")
def fake_client():
    return FakeCompletionClient()


@pytest.fixture(scope="function")
def app(app_config, db_manager, fake_client):
    """Application wired to the temporary database and the fake completion client."""
    from main import create_app

    return create_app(config=app_config, completion_client=fake_client)


@pytest.fixture(scope="function")
def test_client(app):
    """Test client running the app lifespan."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers():
    return {"X-User-Id": USER_ID}


@pytest.fixture
def transaction_payload(seeded_account_id):
    return {
        "amount_cents": 550,
        "transaction_type": "expense",
        "description": "Starbucks latte",
        "transaction_date": "2024-03-15T08:30:00Z",
        "account_id": seeded_account_id,
    }
