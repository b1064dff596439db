"""
Esquemas Pydantic para el módulo POS (Point of Sale)

Define la validación de datos de entrada y salida para:
- CashRegister: apertura, cierre y consulta de cajas
- CashMovement: movimientos manuales y listado del libro de caja
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum


# ===== ENUMS =====

class CashRegisterStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CashMovementType(str, Enum):
    APERTURA = "APERTURA"
    CIERRE = "CIERRE"
    INGRESO = "INGRESO"
    EGRESO = "EGRESO"


class ManualMovementType(str, Enum):
    """Tipos que un usuario puede registrar a mano"""
    INGRESO = "INGRESO"
    EGRESO = "EGRESO"


class CashMovementConcept(str, Enum):
    VENTA = "VENTA"
    ANULACION_VENTA = "ANULACION_VENTA"
    DEVOLUCION = "DEVOLUCION"
    MANUAL = "MANUAL"
    APERTURA = "APERTURA"
    CIERRE = "CIERRE"


# ===== CASH REGISTER SCHEMAS =====

class CashRegisterOpen(BaseModel):
    """Esquema para abrir caja registradora"""
    opening_amount: Decimal = Field(..., ge=0, description="Efectivo inicial")
    notes: Optional[str] = Field(None, max_length=500, description="Notas de apertura")


class CashRegisterClose(BaseModel):
    """Esquema para cerrar caja registradora"""
    cash_register_id: Optional[UUID] = Field(None, description="Caja a cerrar (por defecto, la abierta del usuario)")
    closing_amount: Decimal = Field(..., ge=0, description="Efectivo contado")
    notes: Optional[str] = Field(None, max_length=500, description="Notas de cierre")


class CashRegisterOut(BaseModel):
    """Esquema de salida para caja registradora"""
    id: UUID
    user_id: UUID
    status: CashRegisterStatus
    opening_amount: Decimal
    closing_amount: Optional[Decimal] = None
    expected_amount: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    total_cash: Decimal
    total_card: Decimal
    total_transfer: Decimal
    total_other: Decimal
    sales_count: int
    opened_at: datetime
    closed_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class CashRegisterSummary(BaseModel):
    """Resumen de arqueo (al cerrar o como vista previa de la caja abierta)"""
    sales_count: int
    total_sales: Decimal
    total_cash: Decimal
    total_card: Decimal
    total_transfer: Decimal
    total_other: Decimal
    opening_amount: Decimal
    expected_amount: Decimal
    closing_amount: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    hours_worked: float


class CashRegisterClosed(BaseModel):
    register: CashRegisterOut
    summary: CashRegisterSummary


class CashRegisterCurrent(BaseModel):
    register: CashRegisterOut
    balance: Decimal = Field(description="Saldo actual según movimientos")
    summary: CashRegisterSummary


class CashRegisterList(BaseModel):
    items: List[CashRegisterOut]
    total: int
    limit: int
    offset: int


# ===== CASH MOVEMENT SCHEMAS =====

class CashMovementCreate(BaseModel):
    """Movimiento manual de caja"""
    type: ManualMovementType
    amount: Decimal = Field(..., gt=0, description="Monto (siempre positivo)")
    description: str = Field(..., min_length=3, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)


class CashMovementOut(BaseModel):
    id: UUID
    cash_register_id: Optional[UUID] = None
    type: CashMovementType
    concept: CashMovementConcept
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    user_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class CashMovementTotals(BaseModel):
    ingresos: Decimal
    egresos: Decimal
    balance: Decimal


class CashMovementList(BaseModel):
    items: List[CashMovementOut]
    total: int
    totals: CashMovementTotals
    limit: int
    offset: int
