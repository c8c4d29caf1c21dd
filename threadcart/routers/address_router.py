from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user
from ..database import get_db

router = APIRouter(prefix="/addresses", tags=["Address Book"])


@router.get("/", response_model=List[schemas.AddressOut])
def list_addresses(current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return crud.get_user_addresses(db, current_user["id"])


@router.post("/", response_model=schemas.AddressOut, status_code=status.HTTP_201_CREATED)
def create_address(
    payload: schemas.AddressCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """City and state are filled in from the pincode; unserviceable pincodes are refused."""
    return crud.save_user_address(db, current_user["id"], payload.model_dump())


@router.delete("/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_address(address_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    if not crud.delete_user_address(db, current_user["id"], address_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found")
