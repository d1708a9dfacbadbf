"""API routes for category operations."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import get_current_user_id, get_db_session
from api.models import CategoryCreate, CategoryResponse
from api.services import CategoryService, ConflictError

router = APIRouter(prefix="/categories", tags=["categories"])


@router.post("/", response_model=CategoryResponse, status_code=201)
async def create_category(
    category: CategoryCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> CategoryResponse:
    """Create a new category."""
    try:
        return CategoryService.create_category(session=db, user_id=user_id, category=category)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
