"""AI category suggestion generation.

The generator runs outside the request that created the transaction, with its
own database session. It never raises: every failure is logged and reported
through the returned ``SuggestionOutcome`` so the already-created transaction
is left valid and uncategorized.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import AppConfig
from ..core.database import (
    AISuggestionORM,
    get_categories,
    get_or_create_category,
    get_suggestion_for_transaction,
    get_transaction,
)
from ..core.models import (
    CategorySuggestion,
    FailureReason,
    SuggestionCreate,
    SuggestionOutcome,
    SuggestionStatus,
    TransactionForSuggestion,
)
from .errors import CompletionError

RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "category_suggestion",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "category_name": {
                    "type": "string",
                    "description": "Name of the suggested category, reusing an existing name when one fits",
                },
                "confidence_score": {"type": "number", "description": "Confidence score between 0.0 and 1.0"},
                "reasoning": {"type": "string", "description": "Brief explanation of why this category was chosen"},
            },
            "required": ["category_name", "confidence_score", "reasoning"],
            "additionalProperties": False,
        },
    },
}


class ChatClient(Protocol):
    default_model: str

    def chat(self, messages: list[dict[str, str]], **kwargs: Any) -> dict[str, Any]: ...


def build_system_prompt(category_names: list[str]) -> str:
    """Build the system prompt listing the user's existing categories."""
    if category_names:
        category_list = "\n".join(f"- {name}" for name in category_names)
    else:
        category_list = "(no categories yet)"

    return f"""You are a financial transaction categorization assistant.
Your task is to suggest the most appropriate category for a transaction based on its description, amount, and type.

Existing categories:
{category_list}

Prefer one of the existing categories. Only propose a new, short category name when none of them fits.
Respond with the category name and your confidence score (0.0 to 1.0)."""


def build_user_prompt(transaction: TransactionForSuggestion) -> str:
    return f"""Transaction Details:
- Description: {transaction.description}
- Amount: ${transaction.amount_display}
- Type: {transaction.transaction_type.value}

Select the most appropriate category."""


def build_messages(transaction: TransactionForSuggestion, category_names: list[str]) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(category_names)},
        {"role": "user", "content": build_user_prompt(transaction)},
    ]


def parse_suggestion(content: str) -> CategorySuggestion:
    """Parse model output into a validated suggestion.

    Raises:
        ValueError: if the content is not JSON or misses a valid name or confidence
    """
    text = content.strip()
    if text.startswith("```"):
        # Some models wrap JSON in a markdown fence despite the response format
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")

    return CategorySuggestion.model_validate(data)


class SuggestionGenerator:
    """Produces at most one persisted suggestion per transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: ChatClient | None,
        config: AppConfig,
    ):
        self.session_factory = session_factory
        self.client = client
        self.config = config

    def generate(self, transaction: TransactionForSuggestion, owner_id: str) -> SuggestionOutcome:
        """Generate and persist a suggestion for a freshly created transaction."""
        return self._run(transaction, owner_id, diagnostics=None)

    def generate_debug(self, transaction: TransactionForSuggestion, owner_id: str) -> SuggestionOutcome:
        """Same pipeline, with diagnostics attached to the outcome."""
        completion = self.config.completion
        diagnostics: dict[str, Any] = {
            "env": {
                "has_api_key": completion.has_api_key,
                "default_model": completion.default_model,
                "base_url": completion.base_url,
                "timeout_seconds": completion.timeout_seconds,
                "max_retries": completion.max_retries,
            },
            "timings": {},
        }
        outcome = self._run(transaction, owner_id, diagnostics=diagnostics)
        diagnostics["timings"]["total_ms"] = outcome.processing_time_ms
        diagnostics["outcome"] = {"status": outcome.status.value, "reason": outcome.reason, "message": outcome.message}
        outcome.diagnostics = diagnostics
        return outcome

    def _run(
        self, transaction: TransactionForSuggestion, owner_id: str, diagnostics: dict[str, Any] | None
    ) -> SuggestionOutcome:
        start_time = time.perf_counter()

        def finish(status: SuggestionStatus, **fields: Any) -> SuggestionOutcome:
            return SuggestionOutcome(
                transaction_id=transaction.id,
                status=status,
                processing_time_ms=(time.perf_counter() - start_time) * 1000,
                **fields,
            )

        def fail(reason: FailureReason, message: str) -> SuggestionOutcome:
            return finish(SuggestionStatus.FAILED, reason=reason, message=message)

        with self.session_factory() as session:
            # Step 1: load the transaction and the user's categories (writes below are filtered by owner)
            try:
                fetch_start = time.perf_counter()
                if get_transaction(session, owner_id, transaction.id) is None:
                    logging.error(
                        "AI suggestion skipped, transaction not found: transaction=%s user=%s", transaction.id, owner_id
                    )
                    return fail(FailureReason.TRANSACTION_NOT_FOUND, "Transaction not found for owner")

                existing = get_suggestion_for_transaction(session, transaction.id)
                if existing is not None:
                    logging.info("AI suggestion already exists: transaction=%s user=%s", transaction.id, owner_id)
                    return finish(
                        SuggestionStatus.EXISTING,
                        suggestion_id=existing.id,
                        category_id=existing.suggested_category_id,
                        confidence_score=existing.confidence_score,
                    )

                categories = get_categories(session, owner_id, limit=self.config.suggestions.category_limit)
                category_names = [c.name for c in categories]
            except SQLAlchemyError as e:
                logging.error(
                    "AI suggestion failed loading data: transaction=%s user=%s error=%s", transaction.id, owner_id, e
                )
                return fail(FailureReason.PERSISTENCE_FAILED, str(e))

            if diagnostics is not None:
                diagnostics["categories"] = {"count": len(category_names)}
                diagnostics["timings"]["categories_fetch_ms"] = (time.perf_counter() - fetch_start) * 1000

            if self.client is None:
                logging.error(
                    "AI suggestion failed, no completion client configured: transaction=%s user=%s",
                    transaction.id,
                    owner_id,
                )
                return fail(FailureReason.NO_API_KEY, "Completion service is not configured")

            # Step 2: call the completion service
            messages = build_messages(transaction, category_names)
            model = self.client.default_model
            if diagnostics is not None:
                diagnostics["request"] = {
                    "model": model,
                    "message_count": len(messages),
                    "total_content_length": sum(len(m["content"]) for m in messages),
                }

            logging.info(
                "Calling completion service for category suggestion: transaction=%s categories=%d model=%s",
                transaction.id,
                len(category_names),
                model,
            )
            chat_start = time.perf_counter()
            try:
                response = self.client.chat(
                    messages, response_format=RESPONSE_FORMAT, temperature=self.config.completion.temperature
                )
            except CompletionError as e:
                if diagnostics is not None:
                    diagnostics["timings"]["chat_call_ms"] = (time.perf_counter() - chat_start) * 1000
                    diagnostics["chat"] = {"ok": False, **e.to_dict()}
                logging.error(
                    "AI suggestion completion failed: transaction=%s user=%s code=%s error=%s",
                    transaction.id,
                    owner_id,
                    e.code,
                    e.message,
                )
                return fail(FailureReason.COMPLETION_FAILED, e.message)

            try:
                content = response["choices"][0]["message"]["content"]
                if not isinstance(content, str):
                    raise TypeError(f"message content is {type(content).__name__}, not str")
            except (KeyError, IndexError, TypeError) as e:
                if diagnostics is not None:
                    diagnostics["timings"]["chat_call_ms"] = (time.perf_counter() - chat_start) * 1000
                    diagnostics["chat"] = {"ok": False, "error": f"unexpected response envelope: {e!r}"}
                logging.warning(
                    "AI suggestion response envelope malformed: transaction=%s user=%s error=%r",
                    transaction.id,
                    owner_id,
                    e,
                )
                return fail(FailureReason.MALFORMED_RESPONSE, f"Unexpected response envelope: {e!r}")

            if diagnostics is not None:
                diagnostics["timings"]["chat_call_ms"] = (time.perf_counter() - chat_start) * 1000
                diagnostics["chat"] = {
                    "ok": True,
                    "model": response.get("model", model),
                    "usage": response.get("usage"),
                    "content_snippet": content[:200],
                }

            # Step 3: parse the model output
            try:
                parsed = parse_suggestion(content)
            except ValueError as e:
                logging.warning(
                    "AI suggestion response malformed: transaction=%s user=%s content=%r error=%s",
                    transaction.id,
                    owner_id,
                    content[:200],
                    e,
                )
                return fail(FailureReason.MALFORMED_RESPONSE, str(e))

            # Step 4: resolve the category, creating it when the user has no case-insensitive match
            try:
                category, created = get_or_create_category(session, owner_id, parsed.category_name)
            except SQLAlchemyError as e:
                session.rollback()
                logging.error(
                    "AI suggestion category resolution failed: transaction=%s user=%s category=%r error=%s",
                    transaction.id,
                    owner_id,
                    parsed.category_name,
                    e,
                )
                return fail(FailureReason.CATEGORY_RESOLUTION_FAILED, str(e))

            # Step 5: insert-or-ignore on the transaction id
            if diagnostics is not None:
                diagnostics["db_insert"] = {"attempted": True}

            record = SuggestionCreate(
                transaction_id=transaction.id,
                suggested_category_id=category.id,
                confidence_score=parsed.confidence_score,
            )
            suggestion = AISuggestionORM(**record.model_dump(), approved=None)
            try:
                session.add(suggestion)
                session.commit()
            except IntegrityError as e:
                session.rollback()
                existing = get_suggestion_for_transaction(session, transaction.id)
                if existing is None:
                    logging.error(
                        "AI suggestion insert rejected: transaction=%s user=%s error=%s", transaction.id, owner_id, e
                    )
                    if diagnostics is not None:
                        diagnostics["db_insert"].update(ok=False, error=str(e.orig))
                    return fail(FailureReason.PERSISTENCE_FAILED, str(e.orig))

                logging.warning(
                    "AI suggestion already exists for transaction: transaction=%s user=%s", transaction.id, owner_id
                )
                if diagnostics is not None:
                    diagnostics["db_insert"].update(ok=True, duplicate=True)
                return finish(
                    SuggestionStatus.EXISTING,
                    suggestion_id=existing.id,
                    category_id=existing.suggested_category_id,
                    category_created=created,
                    confidence_score=existing.confidence_score,
                )
            except SQLAlchemyError as e:
                session.rollback()
                logging.error(
                    "AI suggestion insert failed: transaction=%s user=%s error=%s", transaction.id, owner_id, e
                )
                if diagnostics is not None:
                    diagnostics["db_insert"].update(ok=False, error=str(e))
                return fail(FailureReason.PERSISTENCE_FAILED, str(e))

            if diagnostics is not None:
                diagnostics["db_insert"]["ok"] = True

            outcome = finish(
                SuggestionStatus.CREATED,
                suggestion_id=suggestion.id,
                category_id=category.id,
                category_name=category.name,
                category_created=created,
                confidence_score=parsed.confidence_score,
            )
            logging.info(
                "AI category suggestion generated: transaction=%s user=%s category=%r created=%s "
                "confidence=%.3f time=%.1fms",
                transaction.id,
                owner_id,
                category.name,
                created,
                parsed.confidence_score,
                outcome.processing_time_ms,
            )
            return outcome
