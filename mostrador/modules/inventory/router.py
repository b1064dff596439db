from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session

from mostrador.modules.auth.dependencies import AuthDependencies
from mostrador.modules.auth.schemas import AuthContext
from mostrador.dependencies.dbDependecies import get_db, db_dependency
from mostrador.modules.inventory.service import InventoryLedger
from mostrador.modules.inventory.schemas import (
    StockMovementCreate, StockMovementOut, StockMovementList, StockMovementType, LowStockAlertList
)

inventory_router = APIRouter(prefix="/inventory", tags=["Inventory"])


@inventory_router.post("/movements", response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def register_stock_movement(
    movement_data: StockMovementCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("products:adjust_stock"))
):
    """
    Registrar un movimiento manual de stock.

    - **ENTRADA**: suma la cantidad
    - **SALIDA / TRANSFERENCIA**: resta la cantidad
    - **AJUSTE**: fija el stock en el valor indicado

    Si el movimiento es sobre una variante, se modifica el stock de la variante.
    """
    ledger = InventoryLedger(db)
    return ledger.register_movement(auth_context.tenant_id, movement_data, auth_context.user_id)


@inventory_router.get("/movements", response_model=StockMovementList)
def get_stock_movements(
    product_id: Optional[UUID] = Query(None),
    variant_id: Optional[UUID] = Query(None),
    type: Optional[StockMovementType] = Query(None, description="Tipo de movimiento"),
    reference: Optional[str] = Query(None, description="Venta, devolución o compra de origen"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("products:view"))
):
    """Historial de movimientos de stock (más recientes primero)."""
    ledger = InventoryLedger(db)
    return ledger.get_movements(
        tenant_id=auth_context.tenant_id,
        product_id=product_id,
        variant_id=variant_id,
        movement_type=type.value if type else None,
        reference=reference,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )


@inventory_router.get("/alerts", response_model=LowStockAlertList)
def get_low_stock_alerts(
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("products:view"))
):
    """Productos y variantes con stock igual o menor al mínimo configurado."""
    ledger = InventoryLedger(db)
    return ledger.get_low_stock_alerts(auth_context.tenant_id)
