"""API routes for transaction operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from api.dependencies import get_config, get_current_user_id, get_db_session, get_generator, get_runner
from api.models import SuggestionResponse, TransactionCreate, TransactionCreateDebugResponse, TransactionResponse
from api.services import SuggestionService, TransactionService, ValidationFailure
from api.suggestion_jobs import BackgroundRunner
from src.ledgerly.ai.suggestion_generator import SuggestionGenerator
from src.ledgerly.core.config import AppConfig

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("/", response_model=TransactionResponse | TransactionCreateDebugResponse, status_code=201)
async def create_transaction(
    data: TransactionCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_config),
    runner: BackgroundRunner = Depends(get_runner),
    generator: SuggestionGenerator = Depends(get_generator),
) -> TransactionResponse | TransactionCreateDebugResponse:
    """Create a transaction and request an AI category suggestion for it.

    The suggestion is produced after the response is sent; clients poll the
    transaction until ``suggested_category_name`` appears. In sync mode the
    generator runs before responding and its diagnostics are returned.
    """
    try:
        transaction = TransactionService.create_transaction(session=db, user_id=user_id, data=data)
    except ValidationFailure as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    suggestion_input = TransactionService.to_suggestion_input(transaction)

    if config.suggestions.sync_mode:
        outcome = await run_in_threadpool(generator.generate_debug, suggestion_input, user_id)
        refreshed = TransactionService.get_transaction(session=db, user_id=user_id, transaction_id=transaction.id)
        return TransactionCreateDebugResponse(transaction=refreshed or transaction, debug=outcome.diagnostics or {})

    await runner.schedule_async(
        lambda: generator.generate(suggestion_input, user_id),
        label=f"suggest:{transaction.id}",
    )
    logging.debug("Scheduled AI suggestion for transaction %s", transaction.id)

    return transaction


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> TransactionResponse:
    """Get a transaction with its account, category and suggestion."""
    result = TransactionService.get_transaction(session=db, user_id=user_id, transaction_id=transaction_id)

    if not result:
        raise HTTPException(status_code=404, detail="Transaction not found")

    return result


@router.get("/{transaction_id}/suggestion", response_model=SuggestionResponse)
async def get_transaction_suggestion(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SuggestionResponse:
    """Get the AI suggestion for a transaction, 404 until one exists."""
    result = SuggestionService.get_for_transaction(session=db, user_id=user_id, transaction_id=transaction_id)

    if not result:
        raise HTTPException(status_code=404, detail="Suggestion not found")

    return result
