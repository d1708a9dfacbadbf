"""API routes for account operations."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import get_current_user_id, get_db_session
from api.models import AccountCreate, AccountResponse
from api.services import AccountService, NotFoundError

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("/", response_model=AccountResponse, status_code=201)
async def create_account(
    account: AccountCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> AccountResponse:
    """Create a new account."""
    return AccountService.create_account(session=db, user_id=user_id, account=account)


@router.delete("/{account_id}", response_model=AccountResponse)
async def delete_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> AccountResponse:
    """Soft delete an account; its transactions remain readable."""
    try:
        return AccountService.soft_delete_account(session=db, user_id=user_id, account_id=account_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
