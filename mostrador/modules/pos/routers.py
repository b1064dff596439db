"""
Routers FastAPI para el módulo POS (Point of Sale)

Define los endpoints REST para:
- CashRegisters: apertura, cierre, caja actual y listado
- CashMovements: movimientos manuales y libro de caja

Los vendedores (VENDEDOR) sólo ven sus propias cajas y movimientos.
"""

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import datetime

from mostrador.dependencies.dbDependecies import get_db
from mostrador.modules.auth.dependencies import AuthDependencies
from mostrador.modules.auth.permissions import is_seller
from mostrador.modules.auth.schemas import AuthContext
from mostrador.modules.pos.services import CashRegisterService, CashLedger
from mostrador.modules.pos.schemas import (
    CashRegisterOpen, CashRegisterClose, CashRegisterOut, CashRegisterClosed, CashRegisterCurrent,
    CashRegisterList, CashRegisterStatus, CashMovementCreate, CashMovementOut, CashMovementList,
    CashMovementType, CashMovementConcept
)


# ===== CASH REGISTERS ROUTER =====

cash_registers_router = APIRouter(prefix="/cash-registers", tags=["POS"])


@cash_registers_router.post("/open", response_model=CashRegisterOut, status_code=status.HTTP_201_CREATED)
def open_cash_register(
    register_data: CashRegisterOpen,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:register_movement")),
    db: Session = Depends(get_db)
):
    """
    Abrir caja registradora del usuario.

    - **opening_amount**: efectivo inicial (>= 0)
    - **notes**: notas opcionales de apertura

    Validaciones:
    - Sólo una caja abierta por usuario (409 si ya existe)
    - Registra un movimiento APERTURA por el monto inicial
    """
    service = CashRegisterService(db)
    return service.open_cash_register(register_data, auth_context.tenant_id, auth_context.user_id)


@cash_registers_router.post("/close", response_model=CashRegisterClosed)
def close_cash_register(
    close_data: CashRegisterClose,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:close_day")),
    db: Session = Depends(get_db)
):
    """
    Cerrar caja con arqueo.

    - Totaliza las ventas COMPLETADO por medio de pago (efectivo, tarjeta, transferencia, otros)
    - Esperado = apertura + efectivo
    - Diferencia = contado - esperado
    - Registra un movimiento CIERRE por el monto contado

    La caja queda CLOSED y no puede reabrirse.
    """
    service = CashRegisterService(db)
    return service.close_cash_register(close_data, auth_context.tenant_id, auth_context.user_id)


@cash_registers_router.get("/current", response_model=CashRegisterCurrent)
def get_current_cash_register(
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:view")),
    db: Session = Depends(get_db)
):
    """
    Devuelve la caja abierta del usuario con su saldo y un resumen parcial.

    - 404 si no hay caja abierta
    """
    service = CashRegisterService(db)
    return service.get_current_cash_register(auth_context.tenant_id, auth_context.user_id)


@cash_registers_router.get("", response_model=CashRegisterList)
def list_cash_registers(
    status: Optional[CashRegisterStatus] = Query(None),
    user_id: Optional[UUID] = Query(None, description="Filtrar por usuario"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:view")),
    db: Session = Depends(get_db)
):
    """Listar cajas del negocio, más recientes primero."""
    if is_seller(auth_context.user_role):
        user_id = auth_context.user_id
    service = CashRegisterService(db)
    return service.get_cash_registers(
        auth_context.tenant_id,
        status=status.value if status else None,
        user_id=user_id,
        limit=limit,
        offset=offset
    )


@cash_registers_router.get("/{register_id}", response_model=CashRegisterOut)
def get_cash_register(
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:view")),
    db: Session = Depends(get_db)
):
    service = CashRegisterService(db)
    only_user = auth_context.user_id if is_seller(auth_context.user_role) else None
    return service.get_cash_register(auth_context.tenant_id, register_id, only_user=only_user)


# ===== CASH MOVEMENTS ROUTER =====

cash_movements_router = APIRouter(prefix="/cash-movements", tags=["POS"])


@cash_movements_router.post("", response_model=CashMovementOut, status_code=status.HTTP_201_CREATED)
def create_cash_movement(
    movement_data: CashMovementCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:register_movement")),
    db: Session = Depends(get_db)
):
    """
    Registrar un INGRESO o EGRESO manual en la caja abierta del usuario.

    APERTURA y CIERRE sólo se generan al abrir y cerrar la caja.
    """
    ledger = CashLedger(db)
    return ledger.register_manual_movement(auth_context.tenant_id, auth_context.user_id, movement_data)


@cash_movements_router.get("", response_model=CashMovementList)
def list_cash_movements(
    cash_register_id: Optional[UUID] = Query(None),
    type: Optional[CashMovementType] = Query(None),
    concept: Optional[CashMovementConcept] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("cash:view")),
    db: Session = Depends(get_db)
):
    """
    Libro de caja con totales { ingresos, egresos, balance }.

    Ingresos: APERTURA + INGRESO. Egresos: EGRESO + CIERRE.
    """
    ledger = CashLedger(db)
    return ledger.list_movements(
        auth_context.tenant_id,
        cash_register_id=cash_register_id,
        movement_type=type.value if type else None,
        concept=concept.value if concept else None,
        user_id=auth_context.user_id if is_seller(auth_context.user_role) else None,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )
