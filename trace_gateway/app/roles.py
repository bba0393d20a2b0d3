"""
Role-based access control for the Trace Gateway.

Roles:
  consumer      - verifies and traces products; default for new users
  manufacturer  - registers products, updates their status, export orders
  retailer      - import and sale orders, own inventory

The caller is identified by the X-User-Id header, which the API gateway's
authorizer fills from the JWT "sub" claim. The role is never taken from
the request: it is read from the caller's stored profile.
"""
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException, Request

from . import records


class Role(str, Enum):
    CONSUMER     = records.UserRole.CONSUMER
    MANUFACTURER = records.UserRole.MANUFACTURER
    RETAILER     = records.UserRole.RETAILER


ROLE_PERMISSIONS: dict[Role, set[str]] = {
    Role.CONSUMER: {
        "read_profile", "read_products", "read_orders", "read_inventory",
    },
    Role.MANUFACTURER: {
        "read_profile", "read_products", "read_orders", "read_inventory",
        "create_product",        # POST /products
        "update_product",        # PUT /products/{id}
        "delete_product",        # DELETE /products/{id}
        "manage_orders",         # POST /orders, PUT /orders/{id}
    },
    Role.RETAILER: {
        "read_profile", "read_products", "read_orders", "read_inventory",
        "manage_orders",
    },
}

_DENIED_MESSAGES = {
    "create_product": "Only manufacturers can create products",
    "update_product": "Only manufacturers can update products",
    "delete_product": "Only manufacturers can delete products",
    "manage_orders":  "Only manufacturers and retailers can manage orders",
}


def has_permission(role: Role, operation: str) -> bool:
    return operation in ROLE_PERMISSIONS.get(role, set())


async def current_user(request: Request,
                       x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> dict:
    """FastAPI dependency: the caller's profile, 401 without an identity."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail={"message": "Unauthorized: Missing user ID"})
    return await records.get_user_profile(request.app.state.ctx.store, x_user_id)


def require_permission(operation: str):
    """FastAPI dependency: raises 403 if the caller's role lacks the operation."""
    async def _check(request: Request,
                     x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> dict:
        profile = await current_user(request, x_user_id)
        try:
            role = Role(profile.get("role"))
        except ValueError:
            role = Role.CONSUMER
        if not has_permission(role, operation):
            raise HTTPException(
                status_code=403,
                detail={
                    "message": _DENIED_MESSAGES.get(operation, "Access denied"),
                    "operation": operation,
                    "role": role.value,
                },
            )
        return profile
    return _check
