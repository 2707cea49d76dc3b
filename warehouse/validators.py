"""
Business rule validation for the Warehouse service.

Holds the delivery status table, location type normalisation and the stock
status rule shared by every stock-affecting write.
"""
from typing import Optional, Tuple

from .errors import InvalidTransitionError, ValidationError

# Delivery lifecycle states
PENDING = "pending"
CONFIRMED = "confirmed"
ASSIGNED = "assigned"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
ARRIVING = "arriving"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
COMPLETED = "completed"
FAILED = "failed"
RETURNED = "returned"
CANCELLED = "cancelled"
VOIDED = "voided"

DELIVERY_STATUSES = (
    PENDING, CONFIRMED, ASSIGNED, PICKED_UP, IN_TRANSIT, ARRIVING, OUT_FOR_DELIVERY,
    DELIVERED, COMPLETED, FAILED, RETURNED, CANCELLED, VOIDED,
)

# "all" is only meaningful as a list filter
STATUS_FILTER_ALL = "all"

# States that accept no further transition
TERMINAL_STATUSES = (CANCELLED, VOIDED)

# Statuses counted by route clustering
ROUTABLE_STATUSES = (ASSIGNED, IN_TRANSIT, OUT_FOR_DELIVERY)

LOCATION_TYPES = ("warehouse", "store", "distribution_center")

IN_STOCK = "in_stock"
LOW_STOCK = "low_stock"
OUT_OF_STOCK = "out_of_stock"


def ensure_required_fields(model, patch: dict) -> None:
    """
    Reject explicit nulls for columns the table declares NOT NULL.

    Update schemas make every field optional, so a JSON null passes request
    validation and has to be caught before it reaches the database.

    Args:
        model: ORM model class the patch is applied to
        patch: Field values from model_dump(exclude_unset=True)

    Raises:
        ValidationError: listing every offending field
    """
    columns = model.__table__.columns
    problems = [
        {"field": key, "message": "cannot be null"}
        for key, value in patch.items()
        if value is None and key in columns and not columns[key].nullable
    ]
    if problems:
        raise ValidationError(
            f"Required fields cannot be null: {', '.join(p['field'] for p in problems)}",
            problems,
        )


def validate_delivery_status(value: str) -> str:
    """
    Check that a status is a known delivery state.

    Raises:
        ValidationError: if the value is not a lifecycle state
    """
    if value not in DELIVERY_STATUSES:
        raise ValidationError(
            f"Invalid delivery status: {value}",
            [{"field": "status", "message": f"must be one of {', '.join(DELIVERY_STATUSES)}"}],
        )
    return value


def validate_delivery_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a delivery status transition is allowed.

    Only two rules apply: nothing leaves cancelled or voided, and completed
    may only move to returned. Every other pair is permitted.

    Args:
        old_status: Current delivery status
        new_status: Requested delivery status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status in TERMINAL_STATUSES:
        return False, f"Cannot update status of a {old_status} delivery"

    if old_status == COMPLETED and new_status != RETURNED:
        return False, "Completed deliveries can only be marked as returned"

    return True, ""


def ensure_delivery_transition(old_status: str, new_status: str) -> None:
    """Raise InvalidTransitionError when validate_delivery_transition rejects the pair."""
    is_valid, error_message = validate_delivery_transition(old_status, new_status)
    if not is_valid:
        raise InvalidTransitionError(error_message)


def normalize_location_type(value: Optional[str]) -> Optional[str]:
    """
    Map accepted spellings onto the stored location type.

    Raises:
        ValidationError: if the type is not a warehouse, store or distribution center
    """
    if value is None:
        return None
    normalized = value.strip().lower().replace("-", "_")
    if normalized not in LOCATION_TYPES:
        raise ValidationError(
            f"Invalid location type: {value}",
            [{"field": "type", "message": f"must be one of {', '.join(LOCATION_TYPES)}"}],
        )
    return normalized


def stock_status(current_stock: int, min_stock: int) -> str:
    """
    Derive an inventory item's status from its counters.

    Args:
        current_stock: Units on hand
        min_stock: Low stock threshold

    Returns:
        out_of_stock at zero, low_stock at or below min_stock, else in_stock
    """
    if current_stock <= 0:
        return OUT_OF_STOCK
    if current_stock <= min_stock:
        return LOW_STOCK
    return IN_STOCK
