"""Tests for the AI category suggestion generator."""

import json
import threading
from datetime import UTC, datetime

import pytest

from src.ledgerly.ai.errors import CompletionAuthenticationError, CompletionNetworkError
from src.ledgerly.ai.suggestion_generator import (
    RESPONSE_FORMAT,
    SuggestionGenerator,
    build_system_prompt,
    parse_suggestion,
)
from src.ledgerly.core.database import AISuggestionORM, CategoryORM, TransactionORM
from src.ledgerly.core.models import FailureReason, SuggestionStatus, TransactionForSuggestion
from tests.conftest import OTHER_USER_ID, USER_ID, FakeCompletionClient


def _suggestion(name, confidence, reasoning="because"):
    return json.dumps({"category_name": name, "confidence_score": confidence, "reasoning": reasoning})


@pytest.fixture
def transaction(db_manager, seeded_account_id):
    """A persisted Starbucks expense owned by USER_ID."""
    with db_manager.get_session() as session:
        row = TransactionORM(
            user_id=USER_ID,
            account_id=seeded_account_id,
            amount_cents=550,
            transaction_type="expense",
            description="Starbucks latte",
            transaction_date=datetime(2024, 3, 15, tzinfo=UTC),
        )
        session.add(row)
        session.commit()
        return TransactionForSuggestion(
            id=row.id, description=row.description, amount_cents=row.amount_cents, transaction_type="expense"
        )


def _generator(db_manager, app_config, client):
    return SuggestionGenerator(db_manager.get_session, client, app_config)


def _count(db_manager, model, *criteria):
    with db_manager.get_session() as session:
        return session.query(model).filter(*criteria).count()


class TestPromptAndParsing:
    def test_system_prompt_lists_existing_categories(self):
        prompt = build_system_prompt(["Groceries", "Dining Out"])

        assert "- Groceries" in prompt
        assert "- Dining Out" in prompt

    def test_parse_plain_json(self):
        parsed = parse_suggestion(_suggestion("  Coffee   Shops ", 0.87))

        assert parsed.category_name == "Coffee Shops"
        assert parsed.confidence_score == 0.87

    def test_parse_fenced_json(self):
        parsed = parse_suggestion("```json\n" + _suggestion("Groceries", 0.5) + "\n```")

        assert parsed.category_name == "Groceries"

    @pytest.mark.parametrize(
        "content",
        [
            "not json at all",
            "[]",
            json.dumps({"category_name": "Groceries"}),
            _suggestion("Groceries", 1.5),
            _suggestion("Groceries", -0.1),
            _suggestion("   ", 0.5),
        ],
    )
    def test_parse_rejects_malformed_output(self, content):
        with pytest.raises(ValueError):
            parse_suggestion(content)


class TestSuggestionGenerator:
    def test_creates_new_category_and_suggestion(self, db_manager, app_config, transaction):
        client = FakeCompletionClient(_suggestion("Coffee Shops", 0.87))

        outcome = _generator(db_manager, app_config, client).generate(transaction, USER_ID)

        assert outcome.status == SuggestionStatus.CREATED
        assert outcome.category_created is True
        assert outcome.category_name == "Coffee Shops"
        assert outcome.confidence_score == 0.87

        with db_manager.get_session() as session:
            suggestion = session.query(AISuggestionORM).filter_by(transaction_id=transaction.id).one()
            assert suggestion.approved is None
            assert suggestion.confidence_score == 0.87
            assert suggestion.suggested_category.name == "Coffee Shops"
            assert suggestion.suggested_category.user_id == USER_ID

    def test_request_uses_strict_schema_and_lists_categories(self, db_manager, app_config, transaction):
        client = FakeCompletionClient(_suggestion("Dining Out", 0.7))

        _generator(db_manager, app_config, client).generate(transaction, USER_ID)

        call = client.calls[0]
        assert call["response_format"] == RESPONSE_FORMAT
        assert call["temperature"] == app_config.completion.temperature
        assert "- Dining Out" in call["messages"][0]["content"]
        assert "Starbucks latte" in call["messages"][1]["content"]
        assert "$5.50" in call["messages"][1]["content"]

    def test_reuses_existing_category_case_insensitively(self, db_manager, app_config, transaction):
        client = FakeCompletionClient(_suggestion("dining OUT", 0.9))

        outcome = _generator(db_manager, app_config, client).generate(transaction, USER_ID)

        assert outcome.status == SuggestionStatus.CREATED
        assert outcome.category_created is False
        assert outcome.category_name == "Dining Out"
        assert _count(db_manager, CategoryORM, CategoryORM.user_id == USER_ID) == 16

    def test_second_run_returns_existing_without_calling_model(self, db_manager, app_config, transaction):
        client = FakeCompletionClient(_suggestion("Coffee Shops", 0.87))
        generator = _generator(db_manager, app_config, client)

        first = generator.generate(transaction, USER_ID)
        second = generator.generate(transaction, USER_ID)

        assert first.status == SuggestionStatus.CREATED
        assert second.status == SuggestionStatus.EXISTING
        assert second.suggestion_id == first.suggestion_id
        assert client.call_count == 1
        assert _count(db_manager, AISuggestionORM, AISuggestionORM.transaction_id == transaction.id) == 1

    def test_concurrent_runs_leave_one_suggestion(self, db_manager, app_config, transaction):
        client = FakeCompletionClient(_suggestion("Coffee Shops", 0.87))
        generator = _generator(db_manager, app_config, client)
        outcomes = []
        barrier = threading.Barrier(4)

        def run():
            barrier.wait()
            outcomes.append(generator.generate(transaction, USER_ID))

        threads = [threading.Thread(target=run) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(outcomes) == 4
        assert all(outcome.succeeded for outcome in outcomes)
        assert sum(outcome.status == SuggestionStatus.CREATED for outcome in outcomes) == 1
        assert _count(db_manager, AISuggestionORM, AISuggestionORM.transaction_id == transaction.id) == 1
        coffee = (CategoryORM.user_id == USER_ID, CategoryORM.name == "Coffee Shops")
        assert _count(db_manager, CategoryORM, *coffee) == 1

    @pytest.mark.parametrize(
        "response, reason",
        [
            (CompletionNetworkError("Request timed out after 30s"), FailureReason.COMPLETION_FAILED),
            (CompletionAuthenticationError(), FailureReason.COMPLETION_FAILED),
            ("I think it's coffee", FailureReason.MALFORMED_RESPONSE),
            (_suggestion("Coffee Shops", 1.2), FailureReason.MALFORMED_RESPONSE),
        ],
    )
    def test_failures_leave_no_suggestion_or_category(self, db_manager, app_config, transaction, response, reason):
        client = FakeCompletionClient(response)

        outcome = _generator(db_manager, app_config, client).generate(transaction, USER_ID)

        assert outcome.status == SuggestionStatus.FAILED
        assert outcome.reason == reason
        assert _count(db_manager, AISuggestionORM) == 0
        assert _count(db_manager, CategoryORM, CategoryORM.name == "Coffee Shops") == 0

    def test_no_client_fails_without_side_effects(self, db_manager, app_config, transaction):
        outcome = _generator(db_manager, app_config, None).generate(transaction, USER_ID)

        assert outcome.reason == FailureReason.NO_API_KEY
        assert _count(db_manager, AISuggestionORM) == 0

    def test_transaction_of_another_user_is_not_found(self, db_manager, app_config, transaction):
        client = FakeCompletionClient()

        outcome = _generator(db_manager, app_config, client).generate(transaction, OTHER_USER_ID)

        assert outcome.reason == FailureReason.TRANSACTION_NOT_FOUND
        assert client.call_count == 0
        assert _count(db_manager, CategoryORM, CategoryORM.user_id == OTHER_USER_ID) == 0

    def test_category_limit_caps_prompt(self, db_manager, app_config, transaction):
        app_config.suggestions.category_limit = 3
        client = FakeCompletionClient(_suggestion("Groceries", 0.6))

        _generator(db_manager, app_config, client).generate(transaction, USER_ID)

        system_prompt = client.calls[0]["messages"][0]["content"]
        assert system_prompt.count("\n- ") == 3

    def test_debug_mode_reports_diagnostics(self, db_manager, app_config, transaction):
        app_config.completion.api_key = "sk-secret"
        client = FakeCompletionClient(_suggestion("Coffee Shops", 0.87))

        outcome = _generator(db_manager, app_config, client).generate_debug(transaction, USER_ID)

        diagnostics = outcome.diagnostics
        assert diagnostics["env"]["has_api_key"] is True
        assert "sk-secret" not in json.dumps(diagnostics, default=str)
        assert diagnostics["categories"]["count"] == 16
        assert diagnostics["chat"]["ok"] is True
        assert diagnostics["db_insert"]["ok"] is True
        assert diagnostics["outcome"]["status"] == "created"
        assert "chat_call_ms" in diagnostics["timings"]


class EnvelopeClient:
    """A chat client that hands back whatever envelope it was given, unchecked."""

    default_model = "test/model"

    def __init__(self, envelope):
        self.envelope = envelope

    def chat(self, messages, **kwargs):
        return self.envelope


@pytest.mark.parametrize(
    "envelope",
    [
        {},
        {"choices": []},
        {"choices": [{}]},
        {"choices": [{"message": {"content": None}}]},
        {"choices": None},
    ],
)
def test_unexpected_envelope_is_reported_as_malformed(db_manager, app_config, transaction, envelope):
    generator = _generator(db_manager, app_config, EnvelopeClient(envelope))

    outcome = generator.generate(transaction, USER_ID)
    debug = generator.generate_debug(transaction, USER_ID)

    assert outcome.status == SuggestionStatus.FAILED
    assert outcome.reason == FailureReason.MALFORMED_RESPONSE
    assert debug.diagnostics["chat"]["ok"] is False
    assert _count(db_manager, AISuggestionORM) == 0
