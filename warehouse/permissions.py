"""
Permission policy for the Warehouse service.

Every router declares the (service, action) pair each endpoint needs through
require_permission(). Admins pass every check; other users need the pair in
their permission list.
"""
import logging
from typing import Iterable, Optional

from fastapi import Depends

from . import models
from .auth import get_current_user
from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)

SERVICES = (
    "users",
    "deliveries",
    "movements",
    "inventory",
    "suppliers",
    "stock-movements",
    "delivery-companies",
    "supplier-invoices",
    "locations",
    "reports",
)

ACTIONS = ("create", "read", "update", "delete", "export", "import")


def has_permission(user: models.User, service: str, action: str) -> bool:
    """
    Decide whether a user may perform an action on a service.

    Args:
        user: The authenticated user
        service: Service name, e.g. "deliveries"
        action: Action name, e.g. "read"

    Returns:
        True for admins or when the user holds the pair
    """
    if user.role == "admin":
        return True
    grants: Iterable[dict] = user.permissions or []
    for grant in grants:
        if grant.get("service") == service and action in (grant.get("actions") or []):
            return True
    return False


def check_permission(user: models.User, service: str, action: str, resource_id: Optional[int] = None) -> None:
    if not has_permission(user, service, action):
        logger.warning(f"User {user.id} denied {action} on {service}" + (f" #{resource_id}" if resource_id else ""))
        raise PermissionDeniedError(f"Missing permission: {service}:{action}")


def require_permission(service: str, action: str):
    """
    Build a FastAPI dependency enforcing a (service, action) pair.

    Usage:
        current_user: models.User = Depends(require_permission("deliveries", "read"))
    """
    def dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        check_permission(current_user, service, action)
        return current_user

    return dependency
