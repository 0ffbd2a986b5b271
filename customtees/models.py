# customtees/models.py
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# All models share one Base so metadata.create_all sees every table.
from customtees.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PaymentMethod(str, Enum):
    COD = "cod"
    RAZORPAY = "razorpay"
    SQUARE = "square"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PLACED = "placed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ShipmentStatus(str, Enum):
    LABEL_GENERATED = "label_generated"
    DELIVERED = "delivered"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class TransactionOutcome(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"


REQUIRED_ADDRESS_FIELDS = ("fullName", "phone", "line1", "city", "state", "postalCode", "country")
ADDRESS_FIELDS = REQUIRED_ADDRESS_FIELDS[:3] + ("line2",) + REQUIRED_ADDRESS_FIELDS[3:]


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    passwordHash = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(50), default='customer', nullable=False)
    created_at = Column(DateTime, default=utcnow)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")
    cart = relationship("Cart", uselist=False, back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return (self.role or '').lower() == 'admin'


class Address(Base):
    """Address-book entry. Orders copy these by value at checkout."""

    __tablename__ = 'Address'
    addressID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID', ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    line1 = Column(String(255), nullable=False)
    line2 = Column(String(255))
    city = Column(String(120), nullable=False)
    state = Column(String(120), nullable=False)
    postal_code = Column(String(30), nullable=False)
    country = Column(String(80), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="addresses")

    def to_shipping_address(self) -> dict:
        return {
            "fullName": self.full_name,
            "phone": self.phone,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        }


class Product(Base):
    __tablename__ = 'Product'
    productID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    price = Column(Integer, nullable=False)  # minor currency units
    sizes = Column(JSON, default=list, nullable=False)
    variants = Column(JSON, default=list, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    customizable = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def colors(self) -> list:
        return [variant.get("color") for variant in (self.variants or []) if variant.get("color")]

    def offers_size(self, size: str) -> bool:
        # Products without a size list accept any size.
        return not self.sizes or size in self.sizes

    def offers_color(self, color: str) -> bool:
        colors = [c.lower() for c in self.colors]
        return not colors or (color or "").lower() in colors


class Cart(Base):
    """
    One cart per user. ``version`` is the optimistic-lock column: every
    mutation touches the row, so two writers holding the same version
    cannot both commit.
    """

    __tablename__ = 'Cart'
    cartID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID', ondelete="CASCADE"), unique=True, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.cartItemID",
    )

    __mapper_args__ = {"version_id_col": version}

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def subtotal(self) -> int:
        return sum(item.line_total for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class CartItem(Base):
    __tablename__ = 'CartItem'
    cartItemID = Column(Integer, primary_key=True, autoincrement=True)
    cartID = Column(Integer, ForeignKey('Cart.cartID', ondelete="CASCADE"), nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_slug = Column(String(255), nullable=False)
    selected_color = Column(String(80), nullable=False)
    selected_size = Column(String(20), nullable=False)
    front_design = Column(JSON)
    back_design = Column(JSON)
    base_price = Column(Integer, nullable=False)
    front_customization_cost = Column(Integer, default=0, nullable=False)
    back_customization_cost = Column(Integer, default=0, nullable=False)
    total_price = Column(Integer, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    instruction = Column(Text)
    added_at = Column(DateTime, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    def apply_quote(self, quote) -> None:
        """The only writer of the price columns; total is always derived."""
        self.base_price = quote.base_price
        self.front_customization_cost = quote.front_cost
        self.back_customization_cost = quote.back_cost
        self.total_price = quote.base_price + quote.front_cost + quote.back_cost

    @property
    def line_total(self) -> int:
        return (self.total_price or 0) * (self.quantity or 0)


class Coupon(Base):
    __tablename__ = 'Coupon'
    couponID = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False)  # stored upper-case
    description = Column(String(255))
    discount_type = Column(
        SAEnum(DiscountType, name="discount_type", native_enum=False, validate_strings=True, values_callable=_enum_values),
        nullable=False,
    )
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_purchase = Column(Integer, default=0, nullable=False)
    max_discount = Column(Integer)
    is_active = Column(Boolean, default=True, nullable=False)
    valid_from = Column(DateTime)
    valid_until = Column(DateTime)
    max_uses = Column(Integer)
    used_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def discount_for(self, subtotal: int) -> int:
        """Discount in minor units for ``subtotal``; never exceeds the subtotal."""
        if subtotal <= 0:
            return 0
        value = Decimal(str(self.discount_value))
        if DiscountType(self.discount_type) == DiscountType.FIXED:
            discount = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        else:
            discount = (Decimal(subtotal) * value / Decimal(100)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
            if self.max_discount is not None:
                discount = min(discount, Decimal(self.max_discount))
        return int(max(Decimal(0), min(discount, Decimal(subtotal))))

    def has_started(self, now: datetime) -> bool:
        return self.valid_from is None or as_utc(self.valid_from) <= now

    def has_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and as_utc(self.valid_until) < now

    @property
    def uses_remaining(self):
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - (self.used_count or 0))


class Order(Base):
    __tablename__ = 'Order'
    __table_args__ = (UniqueConstraint("userID", "checkout_key", name="uq_order_user_checkout_key"),)

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    subtotal = Column(Integer, nullable=False)
    discount_amount = Column(Integer, default=0, nullable=False)
    coupon_code = Column(String(64))
    couponID = Column(Integer, ForeignKey('Coupon.couponID'))
    total = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(
        SAEnum(PaymentMethod, name="payment_method", native_enum=False, validate_strings=True, values_callable=_enum_values),
        nullable=False,
    )
    payment_status = Column(
        SAEnum(PaymentStatus, name="payment_status", native_enum=False, validate_strings=True, values_callable=_enum_values),
    )
    payment_provider_order_id = Column(String(120))
    payment_provider_payment_id = Column(String(120))
    payment_checkout_url = Column(String(512))
    payment_failure_reason = Column(String(255))
    shipping_address = Column(JSON, nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True, values_callable=_enum_values),
        default=OrderStatus.PLACED,
        nullable=False,
        index=True,
    )
    shipment_status = Column(
        SAEnum(ShipmentStatus, name="shipment_status", native_enum=False, validate_strings=True, values_callable=_enum_values),
    )
    tracking_number = Column(String(120))
    label_url = Column(String(512))
    label_public_id = Column(String(255))
    checkout_key = Column(String(120))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="orders")
    coupon = relationship("Coupon")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.orderItemID",
    )
    events = relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.eventID",
    )
    transactions = relationship(
        "PaymentTransaction",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PaymentTransaction.transactionID",
    )

    _VALID_TRANSITIONS = {
        OrderStatus.PLACED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
        OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
        OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    }

    _VALID_PAYMENT_TRANSITIONS = {
        PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
        PaymentStatus.FAILED: {PaymentStatus.PAID, PaymentStatus.FAILED},
    }

    _VALID_SHIPMENT_TRANSITIONS = {
        None: {ShipmentStatus.LABEL_GENERATED},
        ShipmentStatus.LABEL_GENERATED: {ShipmentStatus.LABEL_GENERATED, ShipmentStatus.DELIVERED},
    }

    def can_transition(self, new_status: OrderStatus) -> bool:
        allowed = self._VALID_TRANSITIONS.get(OrderStatus(self.status), set())
        return new_status in allowed

    def transition_to(self, new_status: OrderStatus, actor: str = "system", detail: str | None = None) -> None:
        new_status = OrderStatus(new_status)
        if not self.can_transition(new_status):
            raise ValueError(f"Invalid order status transition from {self.status} to {new_status}")
        old_status = self.status
        self.status = new_status
        self.log_event("status_changed", old_status, new_status, detail=detail, actor=actor)

    def can_transition_payment(self, new_status: PaymentStatus) -> bool:
        if self.payment_status is None:
            return False
        allowed = self._VALID_PAYMENT_TRANSITIONS.get(PaymentStatus(self.payment_status), set())
        return new_status in allowed

    def transition_payment(self, new_status: PaymentStatus, detail: str | None = None) -> None:
        new_status = PaymentStatus(new_status)
        if not self.can_transition_payment(new_status):
            raise ValueError(f"Invalid payment status transition from {self.payment_status} to {new_status}")
        old_status = self.payment_status
        self.payment_status = new_status
        self.log_event("payment_status_changed", old_status, new_status, detail=detail)

    def transition_shipment(self, new_status: ShipmentStatus, detail: str | None = None) -> None:
        new_status = ShipmentStatus(new_status)
        current = ShipmentStatus(self.shipment_status) if self.shipment_status else None
        if new_status not in self._VALID_SHIPMENT_TRANSITIONS.get(current, set()):
            raise ValueError(f"Invalid shipment status transition from {current} to {new_status}")
        self.shipment_status = new_status
        self.log_event("shipment_status_changed", current, new_status, detail=detail)

    def log_event(self, event_type: str, old_value=None, new_value=None, detail: str | None = None, actor: str = "system") -> None:
        self.events.append(
            OrderEvent(
                event_type=event_type,
                old_value=_enum_value(old_value),
                new_value=_enum_value(new_value),
                detail=detail,
                actor=actor,
            )
        )

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def has_label(self) -> bool:
        return bool(self.tracking_number and self.label_url)


class OrderItem(Base):
    __tablename__ = 'OrderItem'
    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    price = Column(Integer, nullable=False)  # unit price frozen at order time
    custom_design = Column(JSON)
    instruction = Column(Text)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class OrderEvent(Base):
    """Append-only audit trail for order, payment and shipment changes."""

    __tablename__ = 'OrderEvent'
    eventID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    old_value = Column(String(50))
    new_value = Column(String(50))
    detail = Column(Text)
    actor = Column(String(100), default="system")
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="events")


class PaymentTransaction(Base):
    """One row per reconciliation attempt; history is never rewritten."""

    __tablename__ = 'PaymentTransaction'
    transactionID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(
        SAEnum(PaymentMethod, name="payment_provider", native_enum=False, validate_strings=True, values_callable=_enum_values),
        nullable=False,
    )
    reference = Column(String(120))
    gateway_status = Column(String(50))
    amount = Column(Integer)
    currency = Column(String(3))
    outcome = Column(
        SAEnum(TransactionOutcome, name="transaction_outcome", native_enum=False, validate_strings=True, values_callable=_enum_values),
        nullable=False,
    )
    failure_reason = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="transactions")


def _enum_value(value):
    if value is None:
        return None
    return value.value if isinstance(value, Enum) else str(value)
