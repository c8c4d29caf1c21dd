from pydantic import BaseModel, EmailStr, Field
from decimal import Decimal
from typing import Optional, List, Literal
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"


class ContactStatus(str, Enum):
    NEW = "new"
    READ = "read"
    REPLIED = "replied"
    ARCHIVED = "archived"


class QuoteStatus(str, Enum):
    NEW = "new"
    QUOTED = "quoted"
    CLOSED = "closed"


PINCODE_PATTERN = r"^\d{6}$"
PHONE_PATTERN = r"^\d{10}$"
GSTIN_PATTERN = r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$"


# -----------------------------
# Catalog
# -----------------------------

class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    image_url: Optional[str] = None
    description: Optional[str] = None
    sort_number: int = 0


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    image_url: Optional[str] = None
    description: Optional[str] = None
    sort_number: Optional[int] = None


class CategoryOut(CategoryBase):
    id: int

    model_config = {"from_attributes": True}


class SubCategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_id: int = Field(..., gt=0)
    image_url: Optional[str] = None
    description: Optional[str] = None
    sort_number: int = 0


class SubCategoryCreate(SubCategoryBase):
    pass


class SubCategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category_id: Optional[int] = Field(None, gt=0)
    image_url: Optional[str] = None
    description: Optional[str] = None
    sort_number: Optional[int] = None


class SubCategoryOut(SubCategoryBase):
    id: int

    model_config = {"from_attributes": True}


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    quantity: int = Field(..., ge=0)
    sub_cat_id: int = Field(..., gt=0)
    image_url: List[str] = []
    sort_number: int = 0
    material: Optional[str] = None
    grade: Optional[str] = None
    coating: Optional[str] = None
    thread_style: Optional[str] = None
    thread_size_pitch: Optional[str] = None
    fastener_length: Optional[str] = None
    head_height: Optional[str] = None
    part_number: Optional[str] = None
    hsn_sac: Optional[str] = None


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    quantity: Optional[int] = Field(None, ge=0)
    sub_cat_id: Optional[int] = Field(None, gt=0)
    image_url: Optional[List[str]] = None
    sort_number: Optional[int] = None
    material: Optional[str] = None
    grade: Optional[str] = None
    coating: Optional[str] = None
    thread_style: Optional[str] = None
    thread_size_pitch: Optional[str] = None
    fastener_length: Optional[str] = None
    head_height: Optional[str] = None
    part_number: Optional[str] = None
    hsn_sac: Optional[str] = None


class ProductOut(ProductBase):
    id: int

    model_config = {"from_attributes": True}


# -----------------------------
# Pincodes
# -----------------------------

class PincodeBase(BaseModel):
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    delivery_days: int = Field(5, ge=0)
    shipping_charge: Decimal = Field(Decimal("0"), ge=0, description="Shipping charge in INR, 0 = free")
    is_active: bool = True


class PincodeCreate(PincodeBase):
    pincode: str = Field(..., pattern=PINCODE_PATTERN)


class PincodeUpdate(BaseModel):
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=1, max_length=100)
    delivery_days: Optional[int] = Field(None, ge=0)
    shipping_charge: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class PincodeOut(PincodeBase):
    pincode: str

    model_config = {"from_attributes": True}


class PincodeCheckOut(BaseModel):
    valid: bool
    pincode: str
    city: Optional[str] = None
    state: Optional[str] = None
    delivery_days: Optional[int] = None
    shipping_charge: Optional[Decimal] = None
    estimated_delivery: Optional[str] = None
    message: str


# -----------------------------
# Cart
# -----------------------------

class CartItemIn(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class CartQuantityIn(BaseModel):
    quantity: int = Field(..., ge=0, description="0 removes the product from the cart")


class CartLineOut(BaseModel):
    product_id: int
    name: str
    image_url: List[str] = []
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    available: int


class TotalsOut(BaseModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Optional[Decimal] = Field(None, description="null until a pincode is known")
    total: Decimal


class CartOut(BaseModel):
    items: List[CartLineOut]
    item_count: int
    total_quantity: int
    totals: TotalsOut


class CartIssueOut(BaseModel):
    product_id: int
    product_name: str
    issue_type: Literal["out_of_stock", "insufficient_stock", "price_changed", "product_deleted"]
    message: str
    current_quantity: Optional[int] = None
    available_quantity: Optional[int] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None


class CartValidationOut(BaseModel):
    is_valid: bool
    issues: List[CartIssueOut]


class CartMergeOut(BaseModel):
    merged_count: int
    skipped: List[CartIssueOut]
    cart: CartOut


# -----------------------------
# Checkout
# -----------------------------

class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., pattern=PINCODE_PATTERN)
    country: str = "India"


class QuoteRequest(BaseModel):
    pincode: Optional[str] = Field(None, pattern=PINCODE_PATTERN)


class QuoteOut(BaseModel):
    items: List[CartLineOut]
    totals: TotalsOut
    delivery_days: Optional[int] = None


class PlaceOrderRequest(BaseModel):
    shipping_address: ShippingAddress
    billing_address: Optional[ShippingAddress] = Field(None, description="null = same as shipping")
    payment_method: PaymentMethod
    gst_number: Optional[str] = Field(None, pattern=GSTIN_PATTERN)


# -----------------------------
# Orders
# -----------------------------

class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    price_at_purchase: Decimal

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: str
    subtotal: Decimal
    tax: Decimal
    shipping_charge: Decimal
    grand_total: Decimal
    gst_number: Optional[str] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    shipping_address: ShippingAddress
    billing_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    model_config = {"from_attributes": True}


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_status: Optional[OrderStatus] = Field(
        None, description="Reject the update unless the order is still in this status"
    )


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class OrderNotesUpdate(BaseModel):
    notes: Optional[str] = None


class InvoiceEmailRequest(BaseModel):
    email: EmailStr


class TrackingStep(BaseModel):
    status: OrderStatus
    timestamp: Optional[datetime] = None
    is_current: bool
    is_completed: bool


class TrackingOut(BaseModel):
    order_number: str
    current_status: OrderStatus
    history: List[TrackingStep]
    estimated_delivery: Optional[datetime] = None


class StatusCountsOut(BaseModel):
    total: int
    by_status: dict[str, int]
    by_payment_status: dict[str, int]


class PaymentEvent(BaseModel):
    order_id: int = Field(..., gt=0)
    payment_id: str = Field(..., min_length=1)
    status: Literal["succeeded", "failed"]
    amount: Optional[Decimal] = Field(None, ge=0)


class PaymentIntentRequest(BaseModel):
    order_id: int = Field(..., gt=0)


class PaymentIntentOut(BaseModel):
    order_id: int
    payment_intent_id: str
    client_secret: str
    amount: Decimal
    currency: str


# -----------------------------
# Contact submissions
# -----------------------------

class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)


class ContactOut(ContactCreate):
    id: int
    status: ContactStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ContactStatusUpdate(BaseModel):
    status: ContactStatus


# -----------------------------
# Bulk quote requests
# -----------------------------

class QuoteRequestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)
    company_name: Optional[str] = Field(None, max_length=200)
    gst_number: Optional[str] = Field(None, pattern=GSTIN_PATTERN)
    message: str = Field(..., min_length=1)


class QuoteRequestOut(QuoteRequestCreate):
    id: int
    request_number: str
    user_id: Optional[str] = None
    status: QuoteStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class QuoteRequestStatusUpdate(BaseModel):
    status: QuoteStatus


# -----------------------------
# Address book
# -----------------------------

class AddressBase(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    country: str = "India"
    is_default: bool = False


class AddressCreate(AddressBase):
    pass


class AddressOut(AddressBase):
    id: int
    user_id: str
    city: str
    state: str
    created_at: datetime

    model_config = {"from_attributes": True}
