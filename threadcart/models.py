import datetime as dt

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    image_url = Column(String(500))
    description = Column(Text)
    sort_number = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    subcategories = relationship(
        "SubCategory",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="SubCategory.sort_number",
    )


class SubCategory(Base):
    __tablename__ = "sub_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    image_url = Column(String(500))
    description = Column(Text)
    sort_number = Column(Integer, nullable=False, default=0)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    category = relationship("Category", back_populates="subcategories")
    products = relationship(
        "Product",
        back_populates="subcategory",
        cascade="all, delete-orphan",
        order_by="Product.sort_number",
    )


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    image_url = Column(JSON, nullable=False, default=list)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    sub_cat_id = Column(Integer, ForeignKey("sub_categories.id", ondelete="CASCADE"), nullable=False, index=True)
    sort_number = Column(Integer, nullable=False, default=0)

    # fastener attributes shown on the product page and invoice
    material = Column(String(100))
    grade = Column(String(50))
    coating = Column(String(100))
    thread_style = Column(String(50))
    thread_size_pitch = Column(String(50))
    fastener_length = Column(String(50))
    head_height = Column(String(50))
    part_number = Column(String(100), index=True)
    hsn_sac = Column(String(20))

    subcategory = relationship("SubCategory", back_populates="products")
    cart_items = relationship("CartItem", back_populates="product", cascade="all, delete-orphan")


class SupportedPincode(Base):
    __tablename__ = "supported_pincodes"

    pincode = Column(String(6), primary_key=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    delivery_days = Column(Integer, nullable=False, default=5)
    shipping_charge = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Cart(Base):
    """A shopper's cart, keyed by ``user:<id>`` or ``session:<token>``."""

    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    owner_key = Column(String(200), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    # last price the shopper was shown; compared to the live price at checkout
    unit_price_snapshot = Column(Numeric(10, 2), nullable=False)
    added_at = Column(DateTime(timezone=True), default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product", back_populates="cart_items")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    shipping_charge = Column(Numeric(10, 2), nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False)
    gst_number = Column(String(15))

    status = Column(String(30), nullable=False, default="pending", index=True)
    payment_method = Column(String(30), nullable=False)
    payment_status = Column(String(30), nullable=False, default="unpaid", index=True)
    payment_id = Column(String(100))

    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime(timezone=True))
    processing_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    out_for_delivery_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    refunded_at = Column(DateTime(timezone=True))

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # plain id: the line survives catalog deletes
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="items")


class ContactSubmission(Base):
    __tablename__ = "contact_submissions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200), nullable=False)
    phone = Column(String(20))
    subject = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="new", index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class QuoteRequest(Base):
    """Bulk B2B enquiry; the sales team answers it by email."""

    __tablename__ = "quote_requests"

    id = Column(Integer, primary_key=True, index=True)
    request_number = Column(String(40), unique=True, index=True)
    user_id = Column(String(100), index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200), nullable=False)
    phone = Column(String(20))
    company_name = Column(String(200))
    gst_number = Column(String(15))
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="new", index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class UserAddress(Base):
    __tablename__ = "user_addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    phone = Column(String(15), nullable=False)
    address_line1 = Column(String(200), nullable=False)
    address_line2 = Column(String(200))
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(6), nullable=False)
    country = Column(String(60), nullable=False, default="India")
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
