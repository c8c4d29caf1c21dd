import datetime as dt
import re
from typing import Optional, List

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .errors import NotFound, UnserviceableArea, ValidationError
from .models import (
    Category,
    ContactSubmission,
    Product,
    QuoteRequest,
    SubCategory,
    SupportedPincode,
    UserAddress,
)

_PINCODE_RE = re.compile(r"^\d{6}$")


def _apply_updates(obj, update_data: dict) -> None:
    """PATCH semantics: every given key is written, ``None`` clears the field."""
    columns = obj.__table__.columns
    for key, value in update_data.items():
        if value is None and key in columns and not columns[key].nullable:
            raise ValidationError(f"{key} cannot be empty", field=key)
        setattr(obj, key, value)


def _check_category_name(db: Session, name: Optional[str], category_id: Optional[int] = None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required", field="name")
    query = db.query(Category).filter(func.lower(Category.name) == name.lower())
    if category_id is not None:
        query = query.filter(Category.id != category_id)
    if query.first():
        raise ValidationError("Category name already exists", field="name")
    return name


# -----------------------------
# Categories
# -----------------------------

def get_categories(db: Session) -> List[Category]:
    return db.query(Category).order_by(Category.sort_number, Category.id).all()


def get_category(db: Session, category_id: int) -> Optional[Category]:
    return db.query(Category).filter(Category.id == category_id).first()


def create_category(db: Session, data: dict) -> Category:
    name = _check_category_name(db, data.get("name"))

    db_category = Category(**{**data, "name": name})
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


def update_category(db: Session, category_id: int, update_data: dict) -> Optional[Category]:
    db_category = get_category(db, category_id)
    if not db_category:
        return None
    if "name" in update_data:
        update_data = {**update_data, "name": _check_category_name(db, update_data["name"], category_id)}
    _apply_updates(db_category, update_data)
    db.commit()
    db.refresh(db_category)
    return db_category


def delete_category(db: Session, category_id: int) -> Optional[Category]:
    """Delete a category together with its subcategories and their products."""
    db_category = get_category(db, category_id)
    if db_category:
        db.delete(db_category)
        db.commit()
    return db_category


# -----------------------------
# Subcategories
# -----------------------------

def get_subcategories(db: Session, category_id: Optional[int] = None) -> List[SubCategory]:
    query = db.query(SubCategory)
    if category_id is not None:
        query = query.filter(SubCategory.category_id == category_id)
    return query.order_by(SubCategory.sort_number, SubCategory.id).all()


def get_subcategory(db: Session, subcategory_id: int) -> Optional[SubCategory]:
    return db.query(SubCategory).filter(SubCategory.id == subcategory_id).first()


def create_subcategory(db: Session, data: dict) -> SubCategory:
    if not get_category(db, data["category_id"]):
        raise NotFound("category", data["category_id"])

    db_sub = SubCategory(**data)
    db.add(db_sub)
    db.commit()
    db.refresh(db_sub)
    return db_sub


def update_subcategory(db: Session, subcategory_id: int, update_data: dict) -> Optional[SubCategory]:
    db_sub = get_subcategory(db, subcategory_id)
    if not db_sub:
        return None
    if update_data.get("category_id") is not None and not get_category(db, update_data["category_id"]):
        raise NotFound("category", update_data["category_id"])
    _apply_updates(db_sub, update_data)
    db.commit()
    db.refresh(db_sub)
    return db_sub


def delete_subcategory(db: Session, subcategory_id: int) -> Optional[SubCategory]:
    db_sub = get_subcategory(db, subcategory_id)
    if db_sub:
        db.delete(db_sub)
        db.commit()
    return db_sub


# -----------------------------
# Products
# -----------------------------

def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_products(
    db: Session,
    sub_cat_id: Optional[int] = None,
    search: Optional[str] = None,
    material: Optional[List[str]] = None,
    grade: Optional[List[str]] = None,
    coating: Optional[List[str]] = None,
    in_stock: bool = False,
    skip: int = 0,
    limit: int = 100,
) -> List[Product]:
    query = db.query(Product)
    if sub_cat_id is not None:
        query = query.filter(Product.sub_cat_id == sub_cat_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(pattern),
                Product.part_number.ilike(pattern),
                Product.material.ilike(pattern),
            )
        )
    if material:
        query = query.filter(Product.material.in_(material))
    if grade:
        query = query.filter(Product.grade.in_(grade))
    if coating:
        query = query.filter(Product.coating.in_(coating))
    if in_stock:
        query = query.filter(Product.quantity > 0)
    return (
        query.order_by(Product.sort_number, Product.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def create_product(db: Session, data: dict) -> Product:
    if not get_subcategory(db, data["sub_cat_id"]):
        raise NotFound("subcategory", data["sub_cat_id"])
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Product name is required")

    db_product = Product(**{**data, "name": name})
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def update_product(db: Session, product_id: int, update_data: dict) -> Optional[Product]:
    """Admin edit. ``quantity`` is an absolute set (last writer wins)."""
    db_product = get_product(db, product_id)
    if not db_product:
        return None
    if update_data.get("sub_cat_id") is not None and not get_subcategory(db, update_data["sub_cat_id"]):
        raise NotFound("subcategory", update_data["sub_cat_id"])
    if update_data.get("quantity") is not None and update_data["quantity"] < 0:
        raise ValidationError("quantity must be >= 0", field="quantity")
    _apply_updates(db_product, update_data)
    db.commit()
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, product_id: int) -> Optional[Product]:
    db_product = get_product(db, product_id)
    if db_product:
        db.delete(db_product)
        db.commit()
    return db_product


# -----------------------------
# Stock (conditional updates only)
# -----------------------------

def try_decrement_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Atomically take ``quantity`` units if that many are on hand.

    Runs as one ``UPDATE ... WHERE quantity >= :n`` so concurrent checkouts
    can never oversell. Returns False when no row matched. Does not commit.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")
    updated = (
        db.query(Product)
        .filter(Product.id == product_id, Product.quantity >= quantity)
        .update({Product.quantity: Product.quantity - quantity}, synchronize_session=False)
    )
    return updated == 1


def restore_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Inverse of ``try_decrement_stock``. Does not commit."""
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")
    updated = (
        db.query(Product)
        .filter(Product.id == product_id)
        .update({Product.quantity: Product.quantity + quantity}, synchronize_session=False)
    )
    return updated == 1


# -----------------------------
# Pincodes / shipping rates
# -----------------------------

def check_pincode_format(pincode: str) -> str:
    normalized = (pincode or "").strip()
    if not _PINCODE_RE.match(normalized):
        raise ValidationError("Pincode must be 6 digits", field="pincode")
    return normalized


def get_pincodes(db: Session) -> List[SupportedPincode]:
    return db.query(SupportedPincode).order_by(SupportedPincode.pincode).all()


def get_pincode(db: Session, pincode: str) -> Optional[SupportedPincode]:
    return db.query(SupportedPincode).filter(SupportedPincode.pincode == pincode).first()


def get_shipping_rate(db: Session, pincode: str) -> SupportedPincode:
    """Return the active rate row for ``pincode`` or raise ``UnserviceableArea``."""
    normalized = check_pincode_format(pincode)
    rate = (
        db.query(SupportedPincode)
        .filter(SupportedPincode.pincode == normalized, SupportedPincode.is_active.is_(True))
        .first()
    )
    if rate is None:
        raise UnserviceableArea(normalized)
    return rate


def validate_pincode(db: Session, pincode: str, today: Optional[dt.date] = None) -> dict:
    """Serviceability check used by the address form and product page."""
    try:
        rate = get_shipping_rate(db, pincode)
    except (ValidationError, UnserviceableArea) as e:
        return {"valid": False, "pincode": pincode, "message": e.message}

    today = today or dt.date.today()
    eta = today + dt.timedelta(days=rate.delivery_days)
    return {
        "valid": True,
        "pincode": rate.pincode,
        "city": rate.city,
        "state": rate.state,
        "delivery_days": rate.delivery_days,
        "shipping_charge": rate.shipping_charge,
        "estimated_delivery": eta.isoformat(),
        "message": f"Delivery available in {rate.delivery_days} days",
    }


def create_pincode(db: Session, data: dict) -> SupportedPincode:
    pincode = check_pincode_format(data["pincode"])
    if get_pincode(db, pincode):
        raise ValidationError("Pincode already exists", field="pincode")
    db_pin = SupportedPincode(**{**data, "pincode": pincode})
    db.add(db_pin)
    db.commit()
    db.refresh(db_pin)
    return db_pin


def update_pincode(db: Session, pincode: str, update_data: dict) -> Optional[SupportedPincode]:
    db_pin = get_pincode(db, pincode)
    if not db_pin:
        return None
    _apply_updates(db_pin, update_data)
    db.commit()
    db.refresh(db_pin)
    return db_pin


def delete_pincode(db: Session, pincode: str) -> Optional[SupportedPincode]:
    db_pin = get_pincode(db, pincode)
    if db_pin:
        db.delete(db_pin)
        db.commit()
    return db_pin


# -----------------------------
# Contact submissions
# -----------------------------

def create_contact_submission(db: Session, data: dict) -> ContactSubmission:
    submission = ContactSubmission(**data, status="new")
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


def get_contact_submissions(db: Session, status: Optional[str] = None) -> List[ContactSubmission]:
    query = db.query(ContactSubmission)
    if status:
        query = query.filter(ContactSubmission.status == status)
    return query.order_by(ContactSubmission.created_at.desc(), ContactSubmission.id.desc()).all()


def get_contact_submission(db: Session, submission_id: int) -> Optional[ContactSubmission]:
    return db.query(ContactSubmission).filter(ContactSubmission.id == submission_id).first()


def update_contact_status(db: Session, submission_id: int, status: str) -> Optional[ContactSubmission]:
    submission = get_contact_submission(db, submission_id)
    if not submission:
        return None
    submission.status = status
    db.commit()
    db.refresh(submission)
    return submission


def delete_contact_submission(db: Session, submission_id: int) -> Optional[ContactSubmission]:
    submission = get_contact_submission(db, submission_id)
    if submission:
        db.delete(submission)
        db.commit()
    return submission


# -----------------------------
# Bulk quote requests
# -----------------------------

def create_quote_request(db: Session, data: dict, user_id: Optional[str] = None) -> QuoteRequest:
    quote = QuoteRequest(**data, user_id=user_id, status="new")
    db.add(quote)
    db.flush()
    quote.request_number = f"QR-{quote.created_at:%Y%m%d}-{quote.id:06d}"
    db.commit()
    db.refresh(quote)
    return quote


def get_quote_requests(db: Session, status: Optional[str] = None) -> List[QuoteRequest]:
    query = db.query(QuoteRequest)
    if status:
        query = query.filter(QuoteRequest.status == status)
    return query.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc()).all()


def get_quote_request(db: Session, quote_id: int) -> Optional[QuoteRequest]:
    return db.query(QuoteRequest).filter(QuoteRequest.id == quote_id).first()


def update_quote_status(db: Session, quote_id: int, status: str) -> Optional[QuoteRequest]:
    quote = get_quote_request(db, quote_id)
    if not quote:
        return None
    quote.status = status
    db.commit()
    db.refresh(quote)
    return quote


def delete_quote_request(db: Session, quote_id: int) -> Optional[QuoteRequest]:
    quote = get_quote_request(db, quote_id)
    if quote:
        db.delete(quote)
        db.commit()
    return quote


# -----------------------------
# Address book
# -----------------------------

def get_user_addresses(db: Session, user_id: str) -> List[UserAddress]:
    return (
        db.query(UserAddress)
        .filter(UserAddress.user_id == user_id)
        .order_by(UserAddress.is_default.desc(), UserAddress.created_at.desc(), UserAddress.id.desc())
        .all()
    )


def get_user_address(db: Session, user_id: str, address_id: int) -> Optional[UserAddress]:
    return (
        db.query(UserAddress)
        .filter(UserAddress.id == address_id, UserAddress.user_id == user_id)
        .first()
    )


def save_user_address(db: Session, user_id: str, data: dict) -> UserAddress:
    """Create an address; city and state always come from the pincode table."""
    rate = get_shipping_rate(db, data["pincode"])

    has_any = db.query(UserAddress).filter(UserAddress.user_id == user_id).first() is not None
    is_default = bool(data.get("is_default")) or not has_any
    if is_default:
        db.query(UserAddress).filter(UserAddress.user_id == user_id).update(
            {UserAddress.is_default: False}, synchronize_session=False
        )

    address = UserAddress(
        **{**data, "is_default": is_default},
        user_id=user_id,
        city=rate.city,
        state=rate.state,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def delete_user_address(db: Session, user_id: str, address_id: int) -> Optional[UserAddress]:
    """Delete an address; losing the default promotes the newest remaining one."""
    address = get_user_address(db, user_id, address_id)
    if not address:
        return None
    was_default = address.is_default
    db.delete(address)
    db.flush()
    if was_default:
        newest = (
            db.query(UserAddress)
            .filter(UserAddress.user_id == user_id)
            .order_by(UserAddress.created_at.desc(), UserAddress.id.desc())
            .first()
        )
        if newest is not None:
            newest.is_default = True
    db.commit()
    return address
