"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.ledgerly.core.database import MAX_AMOUNT_CENTS
from src.ledgerly.core.models import AccountType, TransactionType


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("cannot be empty")
    return value


class AccountCreate(BaseModel):
    """Request model for creating an account."""

    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v)


class AccountResponse(BaseModel):
    """Response model for account data."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    account_type: AccountType
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CategoryCreate(BaseModel):
    """Request model for creating a category."""

    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v)


class CategoryResponse(BaseModel):
    """Response model for category data."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    created_at: datetime
    updated_at: datetime


class TransactionCreate(BaseModel):
    """Request model for creating a transaction."""

    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    transaction_type: TransactionType
    description: str = Field(..., min_length=1, max_length=500)
    transaction_date: datetime
    account_id: str
    category_id: str | None = None

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        return _strip_required(v)


class SuggestionResponse(BaseModel):
    """Response model for an AI category suggestion."""

    id: str
    transaction_id: str
    suggested_category_id: str
    suggested_category_name: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    approved: bool | None = None
    created_at: datetime
    updated_at: datetime


class TransactionResponse(BaseModel):
    """Response model for transaction data."""

    id: str
    amount_cents: int
    transaction_type: TransactionType
    description: str
    transaction_date: datetime
    account_id: str
    account_name: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    suggested_category_name: str | None = None
    suggestion: SuggestionResponse | None = None
    created_at: datetime
    updated_at: datetime


class TransactionCreateDebugResponse(BaseModel):
    """Response for transaction creation in synchronous suggestion mode."""

    transaction: TransactionResponse
    debug: dict[str, Any]


class SummaryQuery(BaseModel):
    """Date range for a summary request."""

    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_range(self) -> "SummaryQuery":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be before or equal to end date")
        return self


class SummaryResponse(BaseModel):
    """Aggregated totals for one transaction type over a period."""

    transaction_type: TransactionType
    total_cents: int
    transaction_count: int
    period_start: datetime
    period_end: datetime
