"""
Tabla de permisos por rol.

Los servicios del núcleo no conocen roles: los routers piden un permiso
con require_permission() y esta tabla decide si el rol del usuario lo tiene.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    GERENTE = "GERENTE"
    SUPERVISOR = "SUPERVISOR"
    VENDEDOR = "VENDEDOR"


_MANAGEMENT = frozenset({
    "pos:access",
    "pos:create_sale",
    "pos:cancel_sale",
    "pos:apply_discount",
    "pos:refund_sale",
    "reports:view_all",
    "reports:view_basic",
    "reports:view_financial",
    "reports:view_cash",
    "reports:export",
    "products:view",
    "products:create",
    "products:edit",
    "products:delete",
    "products:adjust_stock",
    "products:view_margins",
    "purchases:view",
    "purchases:create",
    "purchases:void",
    "clients:view",
    "clients:view_full_profile",
    "clients:create",
    "clients:edit",
    "clients:delete",
    "clients:view_credit",
    "clients:edit_credit_limit",
    "clients:register_payment",
    "clients:view_activity_log",
    "cash:view",
    "cash:register_movement",
    "cash:close_day",
    "cash:view_history",
    "users:view",
    "users:create",
    "users:edit",
    "users:delete",
    "users:change_role",
    "settings:view",
    "settings:edit_business",
    "audit:view",
    "audit:export",
})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[str]] = {
    # Acceso total
    Role.OWNER: _MANAGEMENT | {"settings:edit_plans", "settings:view_saas_admin"},
    # Todo excepto administración del SaaS
    Role.ADMIN: _MANAGEMENT,
    # Gestión y análisis
    Role.GERENTE: frozenset({
        "pos:access",
        "pos:create_sale",
        "reports:view_all",
        "reports:view_basic",
        "reports:view_financial",
        "reports:export",
        "products:view",
        "products:create",
        "products:edit",
        "products:adjust_stock",
        "products:view_margins",
        "purchases:view",
        "purchases:create",
        "clients:view",
        "clients:view_full_profile",
        "clients:create",
        "clients:edit",
        "clients:view_credit",
        "clients:edit_credit_limit",
        "clients:register_payment",
        "cash:view",
        "cash:view_history",
        "users:view",
        "audit:view",
    }),
    # Control operativo
    Role.SUPERVISOR: frozenset({
        "pos:access",
        "pos:create_sale",
        "pos:apply_discount",
        "reports:view_basic",
        "reports:view_cash",
        "products:view",
        "clients:view",
        "clients:view_credit",
        "cash:view",
    }),
    Role.VENDEDOR: frozenset({
        "pos:access",
        "pos:create_sale",
        "clients:view",
        "clients:view_credit",
        "clients:register_payment",
        "products:view",
        "cash:view",
        "cash:register_movement",
        "cash:close_day",
    }),
}


def parse_role(value: Optional[str]) -> Optional[Role]:
    if not value:
        return None
    try:
        return Role(value.upper())
    except ValueError:
        return None


def has_permission(role: Optional[str], permission: str) -> bool:
    parsed = parse_role(role)
    if parsed is None:
        return False
    return permission in ROLE_PERMISSIONS[parsed]


def is_seller(role: Optional[str]) -> bool:
    """Los vendedores sólo ven sus propias ventas y cajas."""
    return parse_role(role) == Role.VENDEDOR
