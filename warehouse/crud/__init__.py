"""
Database operations for the Warehouse service, one module per resource.

Functions take a SQLAlchemy Session as their first argument, return None (or
False) when the target row does not exist, and raise warehouse.errors
exceptions for domain rule violations.
"""
from . import deliveries, delivery_companies, inventory, invoices, locations, movements, suppliers, users

__all__ = [
    "deliveries",
    "delivery_companies",
    "inventory",
    "invoices",
    "locations",
    "movements",
    "suppliers",
    "users",
]
