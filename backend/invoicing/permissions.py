# Overview: Closed set of feature-access flags carried on every user.

"""
Permission flags.

Each flag is a boolean column on User. The JSON surface keeps the short
feature names ("clients", "editUser", ...) while the database uses the
perm_* column names. Admins hold every flag implicitly.
"""

from __future__ import annotations

from enum import Enum

from .errors import ValidationError


class Permission(str, Enum):
    CLIENTS = "clients"
    PRODUCTS = "products"
    INVOICES = "invoices"
    DELIVERIES = "deliveries"
    STATISTICS = "statistics"
    WAREHOUSE = "warehouse"
    EDIT_USER = "editUser"

    @property
    def column(self) -> str:
        return PERMISSION_COLUMNS[self]


PERMISSION_COLUMNS = {
    Permission.CLIENTS: "perm_clients",
    Permission.PRODUCTS: "perm_products",
    Permission.INVOICES: "perm_invoices",
    Permission.DELIVERIES: "perm_deliveries",
    Permission.STATISTICS: "perm_statistics",
    Permission.WAREHOUSE: "perm_warehouse",
    Permission.EDIT_USER: "perm_edit_user",
}

# Regular users get every feature except user administration
DEFAULT_USER_PERMISSIONS = {perm: perm is not Permission.EDIT_USER for perm in Permission}
ADMIN_PERMISSIONS = {perm: True for perm in Permission}


def parse_permission_map(raw) -> dict[Permission, bool]:
    """
    Convert {"clients": true, ...} into {Permission.CLIENTS: True, ...}.

    Unknown keys are rejected; missing keys are left out so callers can merge.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Valid permissions object is required", field="permissions")

    parsed: dict[Permission, bool] = {}
    for key, value in raw.items():
        try:
            perm = Permission(key)
        except ValueError:
            raise ValidationError(f"Unknown permission: {key}", field="permissions")
        if not isinstance(value, bool):
            raise ValidationError(f"Permission {key} must be boolean", field="permissions")
        parsed[perm] = value
    return parsed


def apply_permissions(user, permissions: dict[Permission, bool]) -> None:
    for perm, value in permissions.items():
        setattr(user, perm.column, value)


def permission_map(user) -> dict[str, bool]:
    return {perm.value: bool(getattr(user, perm.column)) for perm in Permission}


def user_has_permission(user, permission: Permission) -> bool:
    if user is None or not user.is_active:
        return False
    if user.role == "admin":
        return True
    return bool(getattr(user, permission.column))
