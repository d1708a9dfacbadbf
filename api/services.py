"""Service layer for database operations.

Every query is scoped to the owning user id passed in by the router.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from api.models import (
    AccountCreate,
    AccountResponse,
    CategoryCreate,
    CategoryResponse,
    SuggestionResponse,
    SummaryQuery,
    SummaryResponse,
    TransactionCreate,
    TransactionResponse,
)
from src.ledgerly.core.database import AccountORM, AISuggestionORM, CategoryORM, TransactionORM
from src.ledgerly.core.database import find_category_by_name
from src.ledgerly.core.database import get_transaction as db_get_transaction
from src.ledgerly.core.models import TransactionForSuggestion, TransactionType


class NotFoundError(Exception):
    """The requested row does not exist for this user."""


class ValidationFailure(Exception):
    """The request is well-formed but refers to data it may not use."""


class ConflictError(Exception):
    """The request collides with existing state."""


def _as_utc(value: datetime) -> datetime:
    """Normalize to UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class AccountService:
    """Service for account operations."""

    @staticmethod
    def create_account(session: Session, user_id: str, account: AccountCreate) -> AccountResponse:
        db_account = AccountORM(user_id=user_id, name=account.name, account_type=account.account_type.value)

        session.add(db_account)
        session.commit()
        session.refresh(db_account)

        return AccountResponse.model_validate(db_account)

    @staticmethod
    def get_active_account(session: Session, user_id: str, account_id: str) -> AccountORM | None:
        return (
            session.query(AccountORM)
            .filter(AccountORM.id == account_id, AccountORM.user_id == user_id, AccountORM.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def soft_delete_account(session: Session, user_id: str, account_id: str) -> AccountResponse:
        """Mark an account deleted. Its transactions stay in place."""
        account = AccountService.get_active_account(session, user_id, account_id)

        if not account:
            raise NotFoundError("Account not found")

        account.deleted_at = datetime.now(UTC)
        session.commit()

        return AccountResponse.model_validate(account)


class CategoryService:
    """Service for category operations."""

    @staticmethod
    def create_category(session: Session, user_id: str, category: CategoryCreate) -> CategoryResponse:
        """Create a new category; names are unique per user ignoring case."""
        if find_category_by_name(session, user_id, category.name) is not None:
            raise ConflictError("Category name already exists for this user")

        db_category = CategoryORM(user_id=user_id, name=category.name)
        session.add(db_category)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError("Category name already exists for this user") from e
        session.refresh(db_category)

        return CategoryResponse.model_validate(db_category)


class TransactionService:
    """Service for transaction operations."""

    @staticmethod
    def create_transaction(session: Session, user_id: str, data: TransactionCreate) -> TransactionResponse:
        """Create a transaction after checking account and category ownership."""
        account = AccountService.get_active_account(session, user_id, data.account_id)
        if not account:
            raise ValidationFailure("Account not found or does not belong to user")

        category = None
        if data.category_id:
            category = (
                session.query(CategoryORM)
                .filter(CategoryORM.id == data.category_id, CategoryORM.user_id == user_id)
                .first()
            )
            if not category:
                raise ValidationFailure("Category not found or does not belong to user")

        transaction = TransactionORM(
            user_id=user_id,
            account_id=account.id,
            category_id=category.id if category else None,
            amount_cents=data.amount_cents,
            transaction_type=data.transaction_type.value,
            description=data.description,
            transaction_date=_as_utc(data.transaction_date),
        )
        session.add(transaction)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logging.error("Transaction creation rejected by constraints: user=%s error=%s", user_id, e.orig)
            raise ValidationFailure("Transaction data violates database constraints") from e
        session.refresh(transaction)

        return TransactionService.to_response(transaction)

    @staticmethod
    def get_transaction(session: Session, user_id: str, transaction_id: str) -> TransactionResponse | None:
        """Get one transaction with its account, category and suggestion names embedded."""
        transaction = (
            session.query(TransactionORM)
            .options(
                joinedload(TransactionORM.account),
                joinedload(TransactionORM.category),
                joinedload(TransactionORM.suggestion).joinedload(AISuggestionORM.suggested_category),
            )
            .filter(TransactionORM.id == transaction_id, TransactionORM.user_id == user_id)
            .populate_existing()
            .first()
        )

        if not transaction:
            return None

        return TransactionService.to_response(transaction)

    @staticmethod
    def to_response(transaction: TransactionORM) -> TransactionResponse:
        suggestion = SuggestionService.to_response(transaction.suggestion) if transaction.suggestion else None

        return TransactionResponse(
            id=transaction.id,
            amount_cents=transaction.amount_cents,
            transaction_type=transaction.transaction_type,
            description=transaction.description,
            transaction_date=transaction.transaction_date,
            account_id=transaction.account_id,
            account_name=transaction.account.name if transaction.account else None,
            category_id=transaction.category_id,
            category_name=transaction.category.name if transaction.category else None,
            suggested_category_name=suggestion.suggested_category_name if suggestion else None,
            suggestion=suggestion,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )

    @staticmethod
    def to_suggestion_input(transaction: TransactionResponse) -> TransactionForSuggestion:
        return TransactionForSuggestion(
            id=transaction.id,
            description=transaction.description,
            amount_cents=transaction.amount_cents,
            transaction_type=transaction.transaction_type,
        )


class SuggestionService:
    """Service for the suggestion approval workflow.

    Suggestions carry no user id; ownership is checked through the transaction.
    """

    @staticmethod
    def _get_owned(session: Session, user_id: str, suggestion_id: str) -> AISuggestionORM | None:
        return (
            session.query(AISuggestionORM)
            .join(TransactionORM, AISuggestionORM.transaction_id == TransactionORM.id)
            .options(joinedload(AISuggestionORM.suggested_category))
            .filter(AISuggestionORM.id == suggestion_id, TransactionORM.user_id == user_id)
            .first()
        )

    @staticmethod
    def get_for_transaction(session: Session, user_id: str, transaction_id: str) -> SuggestionResponse | None:
        transaction = db_get_transaction(session, user_id, transaction_id)
        if not transaction or not transaction.suggestion:
            return None
        return SuggestionService.to_response(transaction.suggestion)

    @staticmethod
    def approve(session: Session, user_id: str, suggestion_id: str) -> SuggestionResponse:
        """Accept a suggestion: the transaction takes the suggested category."""
        suggestion = SuggestionService._decide(session, user_id, suggestion_id, approved=True)
        return SuggestionService.to_response(suggestion)

    @staticmethod
    def reject(session: Session, user_id: str, suggestion_id: str) -> SuggestionResponse:
        """Reject a suggestion; the transaction category is left unchanged."""
        suggestion = SuggestionService._decide(session, user_id, suggestion_id, approved=False)
        return SuggestionService.to_response(suggestion)

    @staticmethod
    def _decide(session: Session, user_id: str, suggestion_id: str, approved: bool) -> AISuggestionORM:
        suggestion = SuggestionService._get_owned(session, user_id, suggestion_id)

        if not suggestion:
            raise NotFoundError("Suggestion not found")
        if suggestion.approved is not None:
            raise ConflictError("Suggestion has already been decided")

        suggestion.approved = approved
        if approved:
            suggestion.transaction.category_id = suggestion.suggested_category_id
        session.commit()

        return suggestion

    @staticmethod
    def to_response(suggestion: AISuggestionORM) -> SuggestionResponse:
        return SuggestionResponse(
            id=suggestion.id,
            transaction_id=suggestion.transaction_id,
            suggested_category_id=suggestion.suggested_category_id,
            suggested_category_name=suggestion.suggested_category.name,
            confidence_score=suggestion.confidence_score,
            approved=suggestion.approved,
            created_at=suggestion.created_at,
            updated_at=suggestion.updated_at,
        )


class SummaryService:
    """Service for dashboard summaries."""

    @staticmethod
    def get_summary(
        session: Session, user_id: str, transaction_type: TransactionType, query: SummaryQuery
    ) -> SummaryResponse:
        """Total and count of one transaction type within an inclusive date range."""
        total, count = (
            session.query(
                func.coalesce(func.sum(TransactionORM.amount_cents), 0),
                func.count(TransactionORM.id),
            )
            .filter(
                TransactionORM.user_id == user_id,
                TransactionORM.transaction_type == transaction_type.value,
                TransactionORM.transaction_date >= _as_utc(query.start_date),
                TransactionORM.transaction_date <= _as_utc(query.end_date),
            )
            .one()
        )

        return SummaryResponse(
            transaction_type=transaction_type,
            total_cents=int(total),
            transaction_count=count,
            period_start=query.start_date,
            period_end=query.end_date,
        )
