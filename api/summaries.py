"""API routes for expense and income summaries."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from api.dependencies import get_current_user_id, get_db_session
from api.models import SummaryQuery, SummaryResponse
from api.services import SummaryService
from src.ledgerly.core.models import TransactionType

router = APIRouter(prefix="/summaries", tags=["summaries"])


def _summary_query(
    start_date: datetime = Query(..., description="Start of the period (inclusive)"),
    end_date: datetime = Query(..., description="End of the period (inclusive)"),
) -> SummaryQuery:
    try:
        return SummaryQuery(start_date=start_date, end_date=end_date)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail="Start date must be before or equal to end date") from e


@router.get("/expense", response_model=SummaryResponse)
async def get_expense_summary(
    query: SummaryQuery = Depends(_summary_query),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SummaryResponse:
    """Total expenses for the period."""
    return SummaryService.get_summary(
        session=db, user_id=user_id, transaction_type=TransactionType.EXPENSE, query=query
    )


@router.get("/income", response_model=SummaryResponse)
async def get_income_summary(
    query: SummaryQuery = Depends(_summary_query),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SummaryResponse:
    """Total income for the period."""
    return SummaryService.get_summary(
        session=db, user_id=user_id, transaction_type=TransactionType.INCOME, query=query
    )
