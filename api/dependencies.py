"""Dependency injection for API routes."""

from collections.abc import Generator

from fastapi import Header, HTTPException, Request

from api.suggestion_jobs import BackgroundRunner
from src.ledgerly.ai.suggestion_generator import SuggestionGenerator
from src.ledgerly.core.config import AppConfig
from src.ledgerly.core.database import DatabaseManager


def get_config(request: Request) -> AppConfig:
    """Get application configuration from app state."""
    return request.app.state.config


def get_db_manager(request: Request) -> DatabaseManager:
    """Get database manager from app state."""
    return request.app.state.db_manager


def get_db_session(request: Request) -> Generator:
    """Get database session."""
    db_manager = get_db_manager(request)
    with db_manager.get_session() as session:
        yield session


def get_runner(request: Request) -> BackgroundRunner:
    return request.app.state.runner


def get_generator(request: Request) -> SuggestionGenerator:
    return request.app.state.generator


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the authenticated user from the X-User-Id header.

    Authentication itself happens in front of the app; the header carries
    the opaque user id it established.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()
