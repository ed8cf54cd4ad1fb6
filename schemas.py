"""
Database Schemas for the Fashion Storefront

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Request bodies sit at the bottom; they are the only shapes the API accepts.
"""
from typing import List, Optional, Literal
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentMethod = Literal["prepaid", "cod"]
PaymentStatus = Literal["pending", "paid", "refunded"]
ReturnStatus = Literal["pending", "approved", "rejected", "completed", "refunded"]


class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: Optional[str] = None
    price: int = Field(..., gt=0, description="Price in whole currency units")
    category: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Image URLs")
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    in_stock: bool = Field(True)
    is_featured: bool = Field(False, description="Shown in the featured strip")


class Profile(BaseModel):
    user_id: str = Field(..., description="Subject id issued by the identity provider")
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Literal["customer", "admin"] = "customer"


class CartLine(BaseModel):
    user_id: str
    product_id: str
    size: str
    color: str
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., gt=0)
    product_name: Optional[str] = None
    image: Optional[str] = None


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class Address(BaseModel):
    user_id: str
    name: str
    phone: str
    street: str
    apartment: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str = "India"
    is_default: bool = False


class OrderLine(BaseModel):
    id: str = Field(..., description="Line id, unique within the order")
    product_id: str
    product_name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., gt=0)
    size: str
    color: str
    image: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str
    address_id: str
    items: List[OrderLine]
    items_count: int
    subtotal: int
    shipping_fee: int
    total: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    checkout_key: str = Field(..., description="Duplicate-submission guard")
    cart_line_ids: List[str] = Field(default_factory=list, description="Cart rows this order consumed")


class ReturnRequest(BaseModel):
    order_id: str
    order_line_id: Optional[str] = None
    user_id: str
    reason: str
    description: Optional[str] = None
    refund_amount: int
    status: ReturnStatus = "pending"
    admin_notes: Optional[str] = None
    open_target: Optional[str] = Field(None, description="order_id:line_id while the return is open")
    order_sync_pending: bool = False


# ------------------------- Request bodies -------------------------

class CartLineIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., min_length=1)
    size: str
    color: str
    quantity: int = Field(1, ge=1)
    unit_price: int = Field(..., gt=0, validation_alias=AliasChoices("unit_price", "price"))
    product_name: Optional[str] = Field(None, validation_alias=AliasChoices("product_name", "name"))
    image: Optional[str] = None


class QuantityUpdate(BaseModel):
    quantity: int


class MergeRequest(BaseModel):
    items: List[CartLineIn] = Field(default_factory=list)
    wishlist: List[str] = Field(default_factory=list)


class WishlistIn(BaseModel):
    product_id: str = Field(..., min_length=1)


class AddressIn(BaseModel):
    # Older clients sent several spellings; they are mapped here and nowhere else.
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "full_name"))
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1,
                        validation_alias=AliasChoices("street", "address_line1", "street_address", "address"))
    apartment: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1, validation_alias=AliasChoices("postal_code", "pincode"))
    country: str = "India"
    is_default: bool = Field(False, validation_alias=AliasChoices("is_default", "isDefault"))


class PlaceOrderIn(BaseModel):
    address_id: str
    payment_method: PaymentMethod

    @field_validator("payment_method", mode="before")
    @classmethod
    def lower_method(cls, v):
        return v.lower() if isinstance(v, str) else v


class OrderStatusIn(BaseModel):
    status: OrderStatus


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus


class ReturnIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str
    order_line_id: Optional[str] = Field(None, validation_alias=AliasChoices("order_line_id", "order_item_id"))
    reason: str
    description: Optional[str] = None


class ReturnStatusIn(BaseModel):
    status: ReturnStatus
    admin_notes: Optional[str] = None
    refund_amount: Optional[int] = Field(None, ge=0)


class ProfileIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: Optional[str] = Field(None, validation_alias=AliasChoices("full_name", "name"))
    phone: Optional[str] = None


class RoleIn(BaseModel):
    role: Literal["customer", "admin"]

    @field_validator("role", mode="before")
    @classmethod
    def legacy_user_role(cls, v):
        return "customer" if v == "user" else v
