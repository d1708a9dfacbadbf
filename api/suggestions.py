"""API routes for approving or rejecting AI suggestions."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import get_current_user_id, get_db_session
from api.models import SuggestionResponse
from api.services import ConflictError, NotFoundError, SuggestionService

router = APIRouter(prefix="/suggestions", tags=["suggestions"])


@router.post("/{suggestion_id}/approve", response_model=SuggestionResponse)
async def approve_suggestion(
    suggestion_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SuggestionResponse:
    """Approve a suggestion and apply its category to the transaction."""
    try:
        return SuggestionService.approve(session=db, user_id=user_id, suggestion_id=suggestion_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.post("/{suggestion_id}/reject", response_model=SuggestionResponse)
async def reject_suggestion(
    suggestion_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SuggestionResponse:
    """Reject a suggestion."""
    try:
        return SuggestionService.reject(session=db, user_id=user_id, suggestion_id=suggestion_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
