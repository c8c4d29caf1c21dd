from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_optional_user
from ..database import get_db
from ..notifications import queue_quote_alert

router = APIRouter(prefix="/quotes", tags=["Quotes"])


@router.post("/", response_model=schemas.QuoteRequestOut, status_code=status.HTTP_201_CREATED)
def submit_quote_request(
    payload: schemas.QuoteRequestCreate,
    background_tasks: BackgroundTasks,
    current_user: Optional[Dict] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Bulk pricing enquiry. Signed-in callers get it linked to their account."""
    quote = crud.create_quote_request(
        db,
        payload.model_dump(),
        user_id=current_user["id"] if current_user else None,
    )
    queue_quote_alert(background_tasks, quote)
    return quote
