from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import datetime

from mostrador.dependencies.dbDependecies import get_db
from mostrador.modules.auth.dependencies import AuthDependencies
from mostrador.modules.auth.schemas import AuthContext
from mostrador.modules.purchases.service import PurchaseService
from mostrador.modules.purchases.schemas import (
    PurchaseCreate, PurchaseVoid, PurchaseOut, PurchaseList, PurchaseStatus
)

purchases_router = APIRouter(prefix="/purchases", tags=["Purchases"])


@purchases_router.post("", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
def create_purchase(
    purchase_data: PurchaseCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("purchases:create")),
    db: Session = Depends(get_db)
):
    """
    Registrar una compra recibida.

    Ingresa el stock de cada línea y actualiza el costo del producto.
    """
    service = PurchaseService(db)
    return service.create_purchase(purchase_data, auth_context.tenant_id, auth_context.user_id)


@purchases_router.get("", response_model=PurchaseList)
def list_purchases(
    status: Optional[PurchaseStatus] = Query(None),
    supplier: Optional[str] = Query(None, description="Busca por nombre de proveedor"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("purchases:view")),
    db: Session = Depends(get_db)
):
    service = PurchaseService(db)
    return service.list_purchases(
        auth_context.tenant_id,
        status=status.value if status else None,
        supplier=supplier,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )


@purchases_router.get("/{purchase_id}", response_model=PurchaseOut)
def get_purchase(
    purchase_id: UUID = Path(...),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("purchases:view")),
    db: Session = Depends(get_db)
):
    service = PurchaseService(db)
    return service.get_purchase(auth_context.tenant_id, purchase_id)


@purchases_router.post("/{purchase_id}/void", response_model=PurchaseOut)
def void_purchase(
    void_data: PurchaseVoid,
    purchase_id: UUID = Path(...),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("purchases:void")),
    db: Session = Depends(get_db)
):
    """Anular una compra: retira el stock ingresado. Una compra anulada no se puede volver a anular."""
    service = PurchaseService(db)
    return service.void_purchase(purchase_id, void_data, auth_context.tenant_id, auth_context.user_id)
