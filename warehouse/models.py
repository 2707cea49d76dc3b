"""
SQLAlchemy ORM models for the Warehouse service.

Defines the database schema for users, suppliers, inventory, locations,
stock movements, delivery companies, deliveries and supplier invoices.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, ForeignKey, Text
from sqlalchemy.orm import relationship

from .database import Base, JSONType


class User(Base):
    """
    User model representing an operator of the warehouse system.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        name (str): User's full name
        email (str): User's email address (unique)
        password_hash (str): Bcrypt password hash
        role (str): User role (admin, user)
        is_active (bool): Whether the user account is active
        permissions (list): Per-service grants, e.g. [{"service": "deliveries", "actions": ["read"]}]
        refresh_token (str): Currently valid refresh token, cleared on logout
        failed_login_attempts (int): Consecutive failed logins
        lockout_until (datetime): Login is refused until this time
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="user", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    permissions = Column(JSONType, default=list, nullable=False)
    refresh_token = Column(Text, nullable=True)
    last_login = Column(DateTime, nullable=True)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    lockout_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=False)
    address = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    contact_person = Column(String, nullable=True)
    payment_terms = Column(String, nullable=True)
    tax_id = Column(String, nullable=True)
    status = Column(String, default="active", nullable=False)
    rating = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Location(Base):
    """
    Storage location with capacity accounting.

    Invariant: 0 <= used_capacity <= capacity.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    type = Column(String, default="warehouse", nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default="active", nullable=False)
    capacity = Column(Integer, nullable=False)
    used_capacity = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class InventoryItem(Base):
    """
    Inventory item model representing a product in stock.

    Attributes:
        id (int): Primary key, auto-incremented inventory item ID
        sku (str): Stock Keeping Unit (unique identifier for the product)
        current_stock (int): Quantity available in inventory
        min_stock (int): At or below this level the item is low on stock
        max_stock (int): Upper stocking target
        buying_price (float): Last purchase price, overwritten by supplier invoices
        unit_price (float): Selling price
        status (str): in_stock, low_stock or out_of_stock, derived from the counters
    """
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String, index=True, nullable=False)
    current_stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)
    max_stock = Column(Integer, nullable=False, default=0)
    buying_price = Column(Float, nullable=False, default=0.0)
    unit_price = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, nullable=False, default=0.0)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    image = Column(String, nullable=True)
    status = Column(String, nullable=False, default="out_of_stock")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StockMovement(Base):
    """
    Journal entry for a single stock-affecting event.

    Rows are never edited in place by stock logic; void and cancel only
    change the status and stamp who did it.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False)
    item_id = Column(Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    reason = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="PENDING", index=True)
    batch_number = Column(String, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    manufacturing_date = Column(DateTime, nullable=True)
    quality_checks = Column(JSONType, nullable=True)
    unit_cost = Column(Float, nullable=True)
    total_cost = Column(Float, nullable=True)
    minimum_threshold = Column(Integer, nullable=True)
    maximum_threshold = Column(Integer, nullable=True)
    tags = Column(JSONType, nullable=True, default=list)
    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    item = relationship("InventoryItem")
    location = relationship("Location", foreign_keys=[location_id])
    to_location = relationship("Location", foreign_keys=[to_location_id])


class DeliveryCompany(Base):
    __tablename__ = "delivery_companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    code = Column(String, unique=True, nullable=False)
    contact_person = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    address = Column(String, nullable=False)
    status = Column(String, default="active", nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    notes = Column(Text, default="", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Delivery(Base):
    """
    Customer delivery with its lifecycle status.

    Attributes:
        invoice_number (str): Unique generated reference (INVyymmdd-XXXX)
        delivery_location (dict): address, city, state, postal_code, country, optional coordinates
        items (list): product_id, quantity, unit_price, tax_rate per line
        status (str): Current lifecycle state
        current_location (dict): Last reported position {coordinates, address}
        actual_delivery_date (datetime): Stamped when the delivery enters "delivered"
        proof_of_delivery (dict): receivedBy, signature, photos, notes; set at most once
        history (list): Append-only tracking entries, oldest first
    """
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String, unique=True, index=True, nullable=False)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    delivery_location = Column(JSONType, nullable=False)
    items = Column(JSONType, nullable=False, default=list)
    delivery_company_id = Column(Integer, ForeignKey("delivery_companies.id"), nullable=False)
    vat_rate = Column(Float, nullable=False, default=0.0)
    additional_taxes = Column(JSONType, nullable=True, default=list)
    notes = Column(Text, nullable=True)
    preferred_delivery_date = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    current_location = Column(JSONType, nullable=True)
    actual_delivery_date = Column(DateTime, nullable=True)
    proof_of_delivery = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    delivery_company = relationship("DeliveryCompany")
    history = relationship(
        "DeliveryTrackingEvent",
        order_by="DeliveryTrackingEvent.id",
        cascade="all, delete-orphan",
        back_populates="delivery",
    )


class DeliveryTrackingEvent(Base):
    """
    One entry of a delivery's tracking history.

    Attributes:
        delivery_id (int): Foreign key to the delivery
        timestamp (datetime): When the entry was recorded
        status (str): Delivery status at that moment
        location (dict): Optional {coordinates, address}
        notes (str): Optional free text
    """
    __tablename__ = "delivery_tracking_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    status = Column(String, nullable=False)
    location = Column(JSONType, nullable=True)
    notes = Column(Text, nullable=True)

    delivery = relationship("Delivery", back_populates="history")


class SupplierInvoice(Base):
    __tablename__ = "supplier_invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_ref = Column(String, unique=True, index=True, nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    items = Column(JSONType, nullable=False, default=list)
    subtotal = Column(Float, nullable=False, default=0.0)
    vat_rate = Column(Float, nullable=False, default=0.0)
    vat_amount = Column(Float, nullable=False, default=0.0)
    additional_taxes = Column(JSONType, nullable=False, default=list)
    total_amount = Column(Float, nullable=False, default=0.0)
    invoice_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    status = Column(String, default="pending", nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)
    is_reconciled = Column(Boolean, default=False, nullable=False)
    reconciled_at = Column(DateTime, nullable=True)
    reconciled_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Supplier")
