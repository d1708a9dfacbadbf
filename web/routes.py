"""Web routes for HTML pages."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse
from fasthtml.common import to_xml
from sqlalchemy.orm import Session

from api.dependencies import get_config, get_current_user_id, get_db_session
from api.services import ConflictError, NotFoundError, SuggestionService, TransactionService
from src.ledgerly.core.config import AppConfig
from web.components.suggestion_badge import create_found_badge, create_suggestion_badge
from web.pages.transaction_page import render_transaction_page

router = APIRouter()


def _load_transaction(db: Session, user_id: str, transaction_id: str):
    transaction = TransactionService.get_transaction(session=db, user_id=user_id, transaction_id=transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.get("/transactions/{transaction_id}", response_class=HTMLResponse)
async def transaction_page(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_config),
) -> HTMLResponse:
    """Transaction detail page."""
    transaction = _load_transaction(db, user_id, transaction_id)
    return HTMLResponse(content=render_transaction_page(transaction, config, user_id))


@router.get("/transactions/{transaction_id}/suggestion-badge", response_class=HTMLResponse)
async def suggestion_badge(
    transaction_id: str,
    elapsed: float = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_config),
) -> HTMLResponse:
    """HTMX fragment for the suggestion badge; keeps polling while pending."""
    transaction = _load_transaction(db, user_id, transaction_id)
    badge = create_suggestion_badge(
        transaction,
        elapsed=elapsed,
        interval=config.suggestions.poll_interval_seconds,
        timeout=config.suggestions.poll_timeout_seconds,
    )
    return HTMLResponse(content=to_xml(badge))


@router.post("/transactions/{transaction_id}/suggestion/{decision}", response_class=HTMLResponse)
async def decide_suggestion(
    transaction_id: str,
    decision: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> HTMLResponse:
    """HTMX approve/reject endpoint that returns the updated badge."""
    if decision not in ("approve", "reject"):
        raise HTTPException(status_code=404, detail="Unknown decision")

    transaction = _load_transaction(db, user_id, transaction_id)
    if transaction.suggestion is None:
        raise HTTPException(status_code=404, detail="Suggestion not found")

    action = SuggestionService.approve if decision == "approve" else SuggestionService.reject
    try:
        suggestion = action(session=db, user_id=user_id, suggestion_id=transaction.suggestion.id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictError:
        # Already decided elsewhere; show the stored decision
        suggestion = SuggestionService.get_for_transaction(session=db, user_id=user_id, transaction_id=transaction_id)

    return HTMLResponse(content=to_xml(create_found_badge(transaction_id, suggestion)))
