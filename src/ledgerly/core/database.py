"""Database operations using SQLAlchemy."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
    func,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from .config import AppConfig

Base = declarative_base()

MAX_AMOUNT_CENTS = 99_999_999

DEFAULT_ACCOUNT_NAME = "Basic account"

DEFAULT_CATEGORIES = [
    "Salary",
    "Rent",
    "Utilities",
    "Groceries",
    "Transportation",
    "Healthcare",
    "Debt Payments",
    "Savings",
    "Investments",
    "Entertainment",
    "Personal Care",
    "Dining Out",
    "Education",
    "Insurance",
    "Charity",
    "Clothing",
]


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class AccountORM(Base):
    """Account table. Accounts are soft-deleted only."""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    name = Column(Text, nullable=False)
    account_type = Column(String(20), nullable=False)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="check_account_name_not_empty"),
        CheckConstraint(
            "account_type IN ('checking', 'savings', 'credit_card', 'cash', 'investment')",
            name="check_account_type",
        ),
        Index("idx_accounts_user", "user_id"),
    )

    transactions = relationship("TransactionORM", back_populates="account")


class CategoryORM(Base):
    """Category table. Names are unique per user, ignoring case."""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="check_category_name_not_empty"),
        Index("idx_categories_user", "user_id"),
    )


# Functional index, declared after the class so it can reference the columns
Index("uq_categories_user_lower_name", CategoryORM.user_id, func.lower(CategoryORM.name), unique=True)


class TransactionORM(Base):
    """Transaction table."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id"))
    amount_cents = Column(Integer, nullable=False)
    transaction_type = Column(String(10), nullable=False)
    description = Column(Text, nullable=False)
    transaction_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            f"amount_cents >= 0 AND amount_cents <= {MAX_AMOUNT_CENTS}", name="check_transaction_amount_range"
        ),
        CheckConstraint("transaction_type IN ('expense', 'income')", name="check_transaction_type"),
        CheckConstraint("length(trim(description)) > 0", name="check_transaction_description_not_empty"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_account_date", "account_id", "transaction_date"),
        Index("idx_transactions_category", "category_id"),
    )

    account = relationship("AccountORM", back_populates="transactions")
    category = relationship("CategoryORM", foreign_keys=[category_id])
    suggestion = relationship(
        "AISuggestionORM", back_populates="transaction", uselist=False, cascade="all, delete-orphan"
    )


class AISuggestionORM(Base):
    """AI category suggestion table, at most one row per transaction."""

    __tablename__ = "ai_suggestions"

    id = Column(String(36), primary_key=True, default=_new_id)
    transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    suggested_category_id = Column(String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    confidence_score = Column(Float, nullable=False)
    approved = Column(Boolean)  # None = pending, True = approved, False = rejected
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="check_suggestion_confidence_range"),
        Index("idx_ai_suggestions_category", "suggested_category_id"),
    )

    transaction = relationship("TransactionORM", back_populates="suggestion")
    suggested_category = relationship("CategoryORM")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, config: AppConfig):
        self.config = config

        # Background suggestion jobs use the engine from worker threads
        connect_args = {}
        if config.database.url.startswith("sqlite"):
            connect_args = {
                "timeout": 30,
                "check_same_thread": False,
            }

        self.engine = create_engine(config.database.url, echo=config.database.echo, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    def seed_user_defaults(self, user_id: str) -> int:
        """Create the default account and categories for a user without any.

        Returns:
            Number of rows created
        """
        created_count = 0

        with self.get_session() as session:
            has_account = session.query(AccountORM).filter(AccountORM.user_id == user_id).first() is not None
            if not has_account:
                session.add(AccountORM(user_id=user_id, name=DEFAULT_ACCOUNT_NAME, account_type="checking"))
                created_count += 1

            names = session.query(CategoryORM.name).filter(CategoryORM.user_id == user_id)
            existing = {name.lower() for (name,) in names}
            for name in DEFAULT_CATEGORIES:
                if name.lower() not in existing:
                    session.add(CategoryORM(user_id=user_id, name=name))
                    created_count += 1

            session.commit()

        return created_count


def get_categories(session: Session, user_id: str, limit: int | None = None) -> list[CategoryORM]:
    """Get a user's categories, oldest first."""
    query = session.query(CategoryORM).filter(CategoryORM.user_id == user_id).order_by(CategoryORM.created_at)
    if limit:
        query = query.limit(limit)
    return query.all()


def find_category_by_name(session: Session, user_id: str, name: str) -> CategoryORM | None:
    """Case-insensitive category lookup scoped to one user."""
    return (
        session.query(CategoryORM)
        .filter(CategoryORM.user_id == user_id, func.lower(CategoryORM.name) == name.strip().lower())
        .first()
    )


def get_or_create_category(session: Session, user_id: str, name: str) -> tuple[CategoryORM, bool]:
    """Resolve a category name for a user, creating the category if needed.

    Returns:
        The category and whether it was created by this call
    """
    existing = find_category_by_name(session, user_id, name)
    if existing is not None:
        return existing, False

    category = CategoryORM(user_id=user_id, name=name.strip())
    session.add(category)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race against a concurrent insert of the same name
        session.rollback()
        existing = find_category_by_name(session, user_id, name)
        if existing is None:
            raise
        return existing, False

    return category, True


def get_transaction(session: Session, user_id: str, transaction_id: str) -> TransactionORM | None:
    """Get a transaction owned by the given user."""
    return (
        session.query(TransactionORM)
        .filter(TransactionORM.id == transaction_id, TransactionORM.user_id == user_id)
        .first()
    )


def get_suggestion_for_transaction(session: Session, transaction_id: str) -> AISuggestionORM | None:
    """Get the suggestion attached to a transaction, if any."""
    return session.query(AISuggestionORM).filter(AISuggestionORM.transaction_id == transaction_id).first()
