"""Core data models for Ledgerly."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .database import MAX_AMOUNT_CENTS


class AccountType(StrEnum):
    """Supported kinds of financial accounts."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    INVESTMENT = "investment"


class TransactionType(StrEnum):
    """Money going out vs coming in."""

    EXPENSE = "expense"
    INCOME = "income"


class TransactionForSuggestion(BaseModel):
    """The transaction fields the suggestion generator needs."""

    id: str
    description: str
    amount_cents: int = Field(ge=0, le=MAX_AMOUNT_CENTS)
    transaction_type: TransactionType

    @property
    def amount_display(self) -> str:
        return f"{self.amount_cents / 100:.2f}"


class CategorySuggestion(BaseModel):
    """Structured answer parsed from the completion service."""

    category_name: str = Field(..., min_length=1, max_length=100)
    confidence_score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator("category_name")
    @classmethod
    def validate_category_name(cls, v: str) -> str:
        """Collapse whitespace and reject blank names."""
        normalized = " ".join(v.split())
        if not normalized:
            raise ValueError("category_name cannot be blank")
        return normalized


class SuggestionCreate(BaseModel):
    """Validated suggestion row about to be persisted."""

    transaction_id: str
    suggested_category_id: str
    confidence_score: float = Field(ge=0.0, le=1.0)


class SuggestionStatus(StrEnum):
    CREATED = "created"
    EXISTING = "existing"
    FAILED = "failed"


class FailureReason(StrEnum):
    NO_API_KEY = "no_api_key"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    COMPLETION_FAILED = "completion_failed"
    MALFORMED_RESPONSE = "malformed_response"
    CATEGORY_RESOLUTION_FAILED = "category_resolution_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class SuggestionOutcome(BaseModel):
    """Result of one suggestion generator run."""

    transaction_id: str
    status: SuggestionStatus
    reason: FailureReason | None = None
    message: str | None = None
    suggestion_id: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    category_created: bool = False
    confidence_score: float | None = None
    processing_time_ms: float = 0.0
    diagnostics: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != SuggestionStatus.FAILED
