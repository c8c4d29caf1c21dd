from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db

router = APIRouter(tags=["Catalog"])


@router.get("/categories", response_model=List[schemas.CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return crud.get_categories(db)


@router.get("/categories/{category_id}", response_model=schemas.CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    category = crud.get_category(db, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("/categories/{category_id}/subcategories", response_model=List[schemas.SubCategoryOut])
def list_category_subcategories(category_id: int, db: Session = Depends(get_db)):
    if not crud.get_category(db, category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return crud.get_subcategories(db, category_id=category_id)


@router.get("/subcategories/{subcategory_id}", response_model=schemas.SubCategoryOut)
def get_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    subcategory = crud.get_subcategory(db, subcategory_id)
    if not subcategory:
        raise HTTPException(status_code=404, detail="Subcategory not found")
    return subcategory


@router.get("/products", response_model=List[schemas.ProductOut])
def list_products(
    sub_cat_id: Optional[int] = Query(None, gt=0),
    search: Optional[str] = Query(None, description="Search in name, part number or material"),
    material: Optional[List[str]] = Query(None),
    grade: Optional[List[str]] = Query(None),
    coating: Optional[List[str]] = Query(None),
    in_stock: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return crud.get_products(
        db,
        sub_cat_id=sub_cat_id,
        search=search,
        material=material,
        grade=grade,
        coating=coating,
        in_stock=in_stock,
        skip=skip,
        limit=limit,
    )


@router.get("/products/{product_id}", response_model=schemas.ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = crud.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("/pincodes/{pincode}/check", response_model=schemas.PincodeCheckOut)
def check_pincode(pincode: str, db: Session = Depends(get_db)):
    return crud.validate_pincode(db, pincode)
