"""
Data Schemas for the ShopFront session layer

Every document here is owned by the backend; the session only holds cached
copies. Wire names are the backend's camelCase (``itemsPrice``, ``createdAt``)
and Mongo-style ``_id``; Python attributes are snake_case. Both spellings are
accepted when parsing.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _ref_id(value: Any) -> Any:
    # populated references arrive as embedded documents
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    return value


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            folded = value.strip().casefold()
            for member in cls:
                if member.value.casefold() == folded:
                    return member
        return None


# ------------ Orders ------------
class OrderStatus(_CaseInsensitiveEnum):
    PENDING_VENDOR_APPROVAL = "Pending Vendor Approval"
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSING = "Processing"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"
    CLOSED = "Closed"
    REFUNDED = "Refunded"


class ReturnStatus(_CaseInsensitiveEnum):
    NONE = "None"
    REQUESTED = "Requested"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RETURNED = "Returned"
    REFUNDED = "Refunded"
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"


def _parse_return_status(value: Any) -> Any:
    if value is None or value == "":
        return None
    return ReturnStatus(value) if isinstance(value, str) else value


class OrderItem(Document):
    name: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    hsn: Optional[str] = None
    product: Optional[str] = None

    @field_validator("product", mode="before")
    @classmethod
    def _product_ref(cls, value):
        return _ref_id(value)


class ShippingAddress(Document):
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class Order(Document):
    """Cached copy of a backend order. ``total_price`` is authoritative."""

    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    order_items: List[OrderItem] = []
    shipping_address: Optional[ShippingAddress] = None
    payment_method: str = "COD"
    items_price: float = Field(0.0, ge=0)
    tax_price: float = Field(0.0, ge=0)
    shipping_price: float = Field(0.0, ge=0)
    discount_amount: float = Field(0.0, ge=0)
    total_price: float = Field(0.0, ge=0)
    is_paid: bool = False
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    is_refunded: bool = False
    refund_amount: float = Field(0.0, ge=0)
    refund_date: Optional[datetime] = None
    return_status: Optional[ReturnStatus] = None
    return_reason: Optional[str] = None
    coupon_code: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value):
        return OrderStatus(value) if isinstance(value, str) else value

    @field_validator("return_status", mode="before")
    @classmethod
    def _return_status(cls, value):
        return _parse_return_status(value)


class DraftItem(Document):
    product: str
    name: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class OrderDraft(Document):
    order_items: List[DraftItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = "COD"
    items_price: float = Field(..., ge=0)
    tax_price: float = Field(0.0, ge=0)
    shipping_price: float = Field(0.0, ge=0)
    total_price: float = Field(..., ge=0)
    coupon_code: Optional[str] = None
    discount_amount: float = Field(0.0, ge=0)


# ------------ Cart ------------
class CartLine(Document):
    """One product in the cart. Product fields beyond these are kept as they came."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., validation_alias=AliasChoices("_id", "id", "product"))
    name: str = ""
    image: Optional[str] = None
    price: float = Field(0.0, ge=0)
    quantity: int = Field(1, ge=1)

    @field_validator("id", mode="before")
    @classmethod
    def _product_ref(cls, value):
        return _ref_id(value)

    def wire(self) -> dict:
        doc = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        doc.update(_id=self.id, id=self.id, product=self.id)
        return doc


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ReturnRequest(BaseModel):
    reason: str = ""


class RefundPreview(BaseModel):
    refundable: float
    non_refundable: float
    total: float


class RefundLog(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    order: Optional[str] = None
    amount: float = Field(..., ge=0)
    delivery_charge: float = Field(0.0, ge=0)
    total_refundable_amount: float = Field(..., ge=0)
    initiated_by: Literal["User", "Vendor", "Admin"]
    status: Literal["Pending", "Completed", "Failed"] = "Completed"
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("order", mode="before")
    @classmethod
    def _order_ref(cls, value):
        return _ref_id(value)


# ------------ Coupons ------------
class CouponState(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    INACTIVE = "Inactive"
    EXHAUSTED = "Exhausted"


class UserRef(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    name: Optional[str] = None
    email: Optional[str] = None


class Coupon(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    code: str
    discount_type: Literal["percentage", "fixed"] = "percentage"
    discount_value: float = Field(..., ge=0)
    expiry_date: Optional[datetime] = None
    max_uses: int = Field(1, ge=0)
    used_count: int = Field(0, ge=0)
    is_active: bool = True
    assigned_to: Optional[UserRef] = None

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _assigned_to(cls, value):
        if isinstance(value, str):
            return {"_id": value}
        return value

    def state(self, now: Optional[datetime] = None) -> CouponState:
        """Derived status; an expiry date in the past wins over every flag."""
        now = now or datetime.now(timezone.utc)
        expiry = self.expiry_date
        if expiry is not None:
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if now.tzinfo is None:
                now = now.replace(tzinfo=timezone.utc)
            if expiry < now:
                return CouponState.EXPIRED
        if not self.is_active:
            return CouponState.INACTIVE
        if self.max_uses and self.used_count >= self.max_uses:
            return CouponState.EXHAUSTED
        return CouponState.ACTIVE


class CouponDraft(Document):
    code: str = Field(..., min_length=1)
    discount_type: Literal["percentage", "fixed"] = "percentage"
    discount_value: float = Field(..., gt=0)
    expiry_date: Optional[datetime] = None
    max_uses: int = Field(1, ge=1)
    is_active: bool = True
    assigned_to: Optional[str] = None

    @field_validator("code")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


# ------------ Vendors ------------
VendorStatus = Literal["pending", "under_review", "approved", "suspended", "rejected"]
DocumentStatus = Literal["pending", "approved", "rejected", "expired"]


class ComplianceDocument(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    name: str
    type: Optional[str] = None
    status: DocumentStatus = "pending"
    file_url: Optional[str] = None


class Subscription(Document):
    plan: Optional[str] = None
    upcoming_plan: Optional[str] = None


class Vendor(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    business_name: str
    email: Optional[str] = None
    status: VendorStatus = "pending"
    compliance_documents: List[ComplianceDocument] = []
    subscription: Optional[Subscription] = None
    commission_rate: float = Field(0.0, ge=0)


class PayoutRequest(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    vendor_id: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    amount: float = Field(..., ge=0)
    date: Optional[datetime] = None


class ReturnRecord(Document):
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    order_id: Optional[str] = None
    vendor_name: Optional[str] = None
    product_name: Optional[str] = None
    item_count: int = 0
    reason: Optional[str] = None
    status: Optional[ReturnStatus] = None
    created_at: Optional[datetime] = None
    subtotal: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value):
        return _parse_return_status(value)


# ------------ Auth & Account ------------
class Credentials(BaseModel):
    email: EmailStr
    password: str


class Registration(Credentials):
    name: str


class Address(Document):
    address: str
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str = "India"
    phone: Optional[str] = None
    is_default: bool = False


class WalletTransaction(Document):
    type: str = "credit"
    amount: float
    description: Optional[str] = None
    date: Optional[datetime] = None


class Profile(Document):
    name: str = ""
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    alt_phone: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    addresses: List[Address] = []
    wishlist: List[str] = []
    wallet_balance: float = 0.0
    wallet_transactions: List[WalletTransaction] = []

    @field_validator("wishlist", mode="before")
    @classmethod
    def _wishlist_refs(cls, value):
        return [_ref_id(v) for v in value or []]


class Identity(Profile):
    """The signed-in user as returned by the login endpoint."""

    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    is_admin: bool = False
    token: Optional[str] = None


class ProfileUpdate(Document):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    alt_phone: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    addresses: Optional[List[Address]] = None


class GSTSettings(BaseModel):
    gst_enabled: bool = False


class GSTClaim(BaseModel):
    claim_gst: bool = False
    user_gst_number: Optional[str] = None


class Review(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


# ------------ Results ------------
class Result(BaseModel):
    """Outcome of a mutating operation; failures carry a user-facing message."""

    success: bool
    message: str = ""
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "Result":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str) -> "Result":
        return cls(success=False, message=message)


