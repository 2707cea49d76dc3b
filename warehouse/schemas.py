"""
Pydantic schemas for request/response validation in the Warehouse service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, Tuple, TypeVar
from pydantic import BaseModel, EmailStr, Field

T = TypeVar("T")

MovementType = Literal["IN", "OUT", "TRANSFER"]
MovementStatus = Literal["PENDING", "COMPLETED", "VOIDED", "CANCELLED"]
InvoiceStatus = Literal["pending", "paid", "cancelled"]
CompanyStatus = Literal["active", "inactive", "suspended"]


class Page(BaseModel, Generic[T]):
    """Paginated list response."""
    items: List[T]
    total: int
    page: int
    total_pages: int


# ---------------------------------------------------------------------------
# Auth & users
# ---------------------------------------------------------------------------

class Permission(BaseModel):
    """A grant of actions on one service, e.g. {"service": "deliveries", "actions": ["read"]}."""
    service: str
    actions: List[str] = Field(default_factory=list)


class UserBase(BaseModel):
    """Base schema with common user attributes."""
    name: str
    email: EmailStr


class UserRegister(UserBase):
    """Schema for user registration with password."""
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")


class UserCreate(UserBase):
    """Schema for creating a user by an admin."""
    password: str = Field(..., min_length=8)
    role: Literal["admin", "user"] = "user"
    permissions: List[Permission] = Field(default_factory=list)


class UserUpdate(BaseModel):
    """Schema for updating an existing user. All fields are optional."""
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8)
    role: Optional[Literal["admin", "user"]] = None
    is_active: Optional[bool] = None
    permissions: Optional[List[Permission]] = None


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class Token(BaseModel):
    """Schema for JWT token pair response."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Schema for data stored in JWT token."""
    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Optional[str] = None


class User(UserBase):
    """
    Schema for user responses, includes all database fields except secrets.

    Attributes:
        id (int): User's unique identifier
        role (str): User role
        is_active (bool): Whether the account is active
        permissions (List[Permission]): Per-service grants
        last_login (datetime): Last successful login
        created_at (datetime): When the user was created
    """
    id: int
    role: str
    is_active: bool
    permissions: List[Permission] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class LocationBase(BaseModel):
    name: str
    address: str
    type: str = "warehouse"
    description: Optional[str] = None
    capacity: int = Field(..., ge=0)


class LocationCreate(LocationBase):
    pass


class LocationUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None
    capacity: Optional[int] = Field(default=None, ge=0)


class CapacityChange(BaseModel):
    """Signed change applied to a location's used capacity."""
    delta: int


class Location(LocationBase):
    id: int
    status: str
    used_capacity: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LocationSummary(BaseModel):
    id: int
    name: str
    type: str

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

class InventoryItemBase(BaseModel):
    """Base schema with common inventory item attributes."""
    name: str
    sku: str = Field(..., min_length=1)
    description: str = ""
    category: str
    current_stock: int = Field(0, ge=0)
    min_stock: int = Field(0, ge=0)
    max_stock: int = Field(0, ge=0)
    buying_price: float = Field(0.0, ge=0)
    unit_price: float = Field(0.0, ge=0)
    tax_rate: float = Field(0.0, ge=0)
    location_id: Optional[int] = None
    image: Optional[str] = None


class InventoryItemCreate(InventoryItemBase):
    """Schema for creating a new inventory item."""
    pass


class InventoryItemUpdate(BaseModel):
    """Schema for updating an existing inventory item. All fields are optional."""
    name: Optional[str] = None
    sku: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    current_stock: Optional[int] = Field(default=None, ge=0)
    min_stock: Optional[int] = Field(default=None, ge=0)
    max_stock: Optional[int] = Field(default=None, ge=0)
    buying_price: Optional[float] = Field(default=None, ge=0)
    unit_price: Optional[float] = Field(default=None, ge=0)
    tax_rate: Optional[float] = Field(default=None, ge=0)
    location_id: Optional[int] = None
    image: Optional[str] = None


class InventoryItem(InventoryItemBase):
    """
    Schema for inventory item responses, includes all database fields.

    Attributes:
        id (int): Inventory item's unique identifier
        status (str): in_stock, low_stock or out_of_stock
        created_at (datetime): When the item was created
    """
    id: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InventoryItemSummary(BaseModel):
    id: int
    name: str
    sku: str
    current_stock: int
    status: str

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Stock movements
# ---------------------------------------------------------------------------

class StockMovementBase(BaseModel):
    type: MovementType
    item_id: int
    quantity: int = Field(..., gt=0)
    location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    reason: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None
    manufacturing_date: Optional[datetime] = None
    quality_checks: Optional[Dict[str, Any]] = None
    unit_cost: Optional[float] = Field(default=None, ge=0)
    total_cost: Optional[float] = Field(default=None, ge=0)
    minimum_threshold: Optional[int] = Field(default=None, ge=0)
    maximum_threshold: Optional[int] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)


class StockMovementCreate(StockMovementBase):
    pass


class StockMovementUpdate(BaseModel):
    type: Optional[MovementType] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    reason: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[MovementStatus] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None
    manufacturing_date: Optional[datetime] = None
    quality_checks: Optional[Dict[str, Any]] = None
    unit_cost: Optional[float] = Field(default=None, ge=0)
    total_cost: Optional[float] = Field(default=None, ge=0)
    minimum_threshold: Optional[int] = Field(default=None, ge=0)
    maximum_threshold: Optional[int] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None


class StockMovementBulkUpdate(StockMovementUpdate):
    """One entry of a bulk update: the movement id plus the fields to change."""
    id: int


class BulkDelete(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class StockMovement(StockMovementBase):
    id: int
    status: str
    tags: Optional[List[str]] = None
    created_by: Optional[int] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    item: Optional[InventoryItemSummary] = None
    location: Optional[LocationSummary] = None
    to_location: Optional[LocationSummary] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Delivery companies
# ---------------------------------------------------------------------------

class DeliveryCompanyBase(BaseModel):
    name: str
    code: str
    contact_person: str
    email: EmailStr
    phone: str
    address: str
    notes: str = ""


class DeliveryCompanyCreate(DeliveryCompanyBase):
    status: CompanyStatus = "active"
    rating: float = Field(0.0, ge=0, le=5)


class DeliveryCompanyUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[CompanyStatus] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class CompanyStatusUpdate(BaseModel):
    status: CompanyStatus


class CompanyRatingUpdate(BaseModel):
    rating: float


class DeliveryCompany(DeliveryCompanyBase):
    id: int
    status: str
    rating: float
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------

class GeoPoint(BaseModel):
    """A reported position: [latitude, longitude] plus an optional address."""
    coordinates: Tuple[float, float]
    address: Optional[str] = None


class DeliveryLocation(BaseModel):
    address: str
    city: str
    state: str
    postal_code: str
    country: str
    coordinates: Optional[Tuple[float, float]] = None


class DeliveryItem(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    tax_rate: float = Field(0.0, ge=0)


class AdditionalTax(BaseModel):
    name: str
    rate: float = Field(..., ge=0)


class DeliveryCreate(BaseModel):
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    delivery_location: DeliveryLocation
    items: List[DeliveryItem] = Field(..., min_length=1)
    delivery_company_id: int
    vat_rate: float = Field(0.0, ge=0)
    additional_taxes: List[AdditionalTax] = Field(default_factory=list)
    notes: Optional[str] = None
    preferred_delivery_date: Optional[datetime] = None


class DeliveryUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    delivery_location: Optional[DeliveryLocation] = None
    items: Optional[List[DeliveryItem]] = None
    delivery_company_id: Optional[int] = None
    vat_rate: Optional[float] = Field(default=None, ge=0)
    additional_taxes: Optional[List[AdditionalTax]] = None
    notes: Optional[str] = None
    preferred_delivery_date: Optional[datetime] = None
    status: Optional[str] = None
    status_notes: Optional[str] = None
    status_location: Optional[GeoPoint] = None


class DeliveryBulkUpdate(DeliveryUpdate):
    id: int


class DeliveryStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    location: Optional[GeoPoint] = None


class ProofOfDelivery(BaseModel):
    received_by: str
    signature: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class TrackingEvent(BaseModel):
    id: int
    timestamp: datetime
    status: str
    location: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class Delivery(BaseModel):
    """
    Schema for delivery responses.

    Attributes:
        id (int): Delivery identifier
        invoice_number (str): Generated INVyymmdd-XXXX reference
        status (str): Current lifecycle state
        history (List[TrackingEvent]): Tracking history, oldest first
    """
    id: int
    invoice_number: str
    customer_name: str
    customer_email: str
    customer_phone: str
    delivery_location: Dict[str, Any]
    items: List[Dict[str, Any]]
    delivery_company_id: int
    vat_rate: float
    additional_taxes: Optional[List[Dict[str, Any]]] = None
    notes: Optional[str] = None
    preferred_delivery_date: Optional[datetime] = None
    status: str
    current_location: Optional[Dict[str, Any]] = None
    actual_delivery_date: Optional[datetime] = None
    proof_of_delivery: Optional[Dict[str, Any]] = None
    history: List[TrackingEvent] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RouteRequest(BaseModel):
    delivery_ids: List[int] = Field(..., min_length=1)


class RouteStop(BaseModel):
    id: int
    coordinates: Tuple[float, float]
    status: str


# ---------------------------------------------------------------------------
# Suppliers & supplier invoices
# ---------------------------------------------------------------------------

class SupplierBase(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    notes: Optional[str] = None
    contact_person: Optional[str] = None
    payment_terms: Optional[str] = None
    tax_id: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class SupplierCreate(SupplierBase):
    status: Literal["active", "inactive"] = "active"


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    contact_person: Optional[str] = None
    payment_terms: Optional[str] = None
    tax_id: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class Supplier(SupplierBase):
    id: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceLine(BaseModel):
    """Invoice line as submitted; numbers are range-checked by the invoice service."""
    item_id: int
    quantity: int
    buying_price: float
    tax_rate: float = 0.0


class InvoiceTax(BaseModel):
    name: str
    rate: float


class SupplierInvoiceCreate(BaseModel):
    invoice_ref: str = Field(..., min_length=1)
    supplier_id: int
    items: List[InvoiceLine] = Field(..., min_length=1)
    vat_rate: float = 0.0
    additional_taxes: List[InvoiceTax] = Field(default_factory=list)
    invoice_date: datetime
    due_date: datetime
    notes: Optional[str] = None


class SupplierInvoiceUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None
    due_date: Optional[datetime] = None
    is_reconciled: Optional[bool] = None


class SupplierInvoice(BaseModel):
    id: int
    invoice_ref: str
    supplier_id: int
    items: List[Dict[str, Any]]
    subtotal: float
    vat_rate: float
    vat_amount: float
    additional_taxes: List[Dict[str, Any]]
    total_amount: float
    invoice_date: datetime
    due_date: datetime
    status: str
    notes: Optional[str] = None
    created_by: Optional[int] = None
    is_reconciled: bool
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceStatistics(BaseModel):
    total_amount: float
    total_vat: float
    total_additional_taxes: float
    invoices_by_status: Dict[str, int]
    total_count: int


class SupplierInvoiceList(Page[SupplierInvoice]):
    statistics: InvoiceStatistics
