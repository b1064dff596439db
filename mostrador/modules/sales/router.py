"""
Routers FastAPI para ventas y devoluciones

- POST /sales está limitado por usuario (SALES_RATE_LIMIT_REQUESTS por ventana)
- Los vendedores (VENDEDOR) sólo ven sus propias ventas
"""

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import datetime

from mostrador.common.rate_limit import RateLimiter, get_rate_limiter
from mostrador.core.config import settings
from mostrador.dependencies.dbDependecies import get_db
from mostrador.modules.auth.dependencies import AuthDependencies
from mostrador.modules.auth.permissions import is_seller
from mostrador.modules.auth.schemas import AuthContext
from mostrador.modules.sales.service import SaleService
from mostrador.modules.sales.refunds import RefundService
from mostrador.modules.sales.schemas import (
    SaleCreate, SaleCancel, SaleOut, SaleDetail, SaleList, SaleStatus, PaymentMethod,
    RefundCreate, RefundOut, RefundList, RefundType
)


def sales_rate_limit(
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:create_sale")),
    limiter: RateLimiter = Depends(get_rate_limiter)
) -> AuthContext:
    limiter.check(
        f"sales:{auth_context.tenant_id}:{auth_context.user_id}",
        limit=settings.SALES_RATE_LIMIT_REQUESTS,
        window=settings.RATE_LIMIT_WINDOW
    )
    return auth_context


# ===== SALES ROUTER =====

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def create_sale(
    sale_data: SaleCreate,
    auth_context: AuthContext = Depends(sales_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Registrar una venta.

    - **items**: productos o variantes, cantidad y precio unitario
    - **total**: debe coincidir con Σ(cantidad × precio) − descuento
    - **payments**: detalle de un pago MIXTO

    Requiere caja abierta salvo en CUENTA_CORRIENTE, donde el cliente debe
    tener cuenta corriente habilitada.
    """
    service = SaleService(db)
    return service.create_sale(sale_data, auth_context.tenant_id, auth_context.user_id)


@sales_router.get("", response_model=SaleList)
def list_sales(
    status: Optional[SaleStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    client_id: Optional[UUID] = Query(None),
    cash_register_id: Optional[UUID] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Desde (inclusive)"),
    end_date: Optional[datetime] = Query(None, description="Hasta (inclusive)"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:access")),
    db: Session = Depends(get_db)
):
    service = SaleService(db)
    return service.list_sales(
        auth_context.tenant_id,
        status=status.value if status else None,
        payment_method=payment_method.value if payment_method else None,
        client_id=client_id,
        user_id=auth_context.user_id if is_seller(auth_context.user_role) else None,
        cash_register_id=cash_register_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )


@sales_router.get("/{sale_id}", response_model=SaleDetail)
def get_sale(
    sale_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:access")),
    db: Session = Depends(get_db)
):
    """Detalle de la venta con líneas, pagos y monto ya devuelto."""
    service = SaleService(db)
    only_user = auth_context.user_id if is_seller(auth_context.user_role) else None
    return service.get_sale(auth_context.tenant_id, sale_id, only_user=only_user)


@sales_router.post("/{sale_id}/cancel", response_model=SaleOut)
def cancel_sale(
    cancel_data: SaleCancel,
    sale_id: UUID = Path(...),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:cancel_sale")),
    db: Session = Depends(get_db)
):
    """
    Anular una venta.

    Repone el stock, registra el EGRESO compensatorio (o descuenta la deuda
    en cuenta corriente) y deja la venta en CANCELADO.
    """
    service = SaleService(db)
    return service.cancel_sale(sale_id, cancel_data, auth_context.tenant_id, auth_context.user_id)


@sales_router.post("/{sale_id}/refunds", response_model=RefundOut, status_code=status.HTTP_201_CREATED)
def create_refund(
    refund_data: RefundCreate,
    sale_id: UUID = Path(...),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:refund_sale")),
    db: Session = Depends(get_db)
):
    """
    Registrar una devolución total o parcial.

    - 409 con **max_refundable** si se supera el monto o la cantidad disponible
    """
    service = RefundService(db)
    return service.create_refund(sale_id, refund_data, auth_context.tenant_id, auth_context.user_id)


@sales_router.get("/{sale_id}/refunds", response_model=RefundList)
def list_sale_refunds(
    sale_id: UUID = Path(...),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:access")),
    db: Session = Depends(get_db)
):
    service = RefundService(db)
    only_user = auth_context.user_id if is_seller(auth_context.user_role) else None
    return service.list_refunds_for_sale(auth_context.tenant_id, sale_id, only_user=only_user)


# ===== REFUNDS ROUTER =====

refunds_router = APIRouter(prefix="/refunds", tags=["Sales"])


@refunds_router.get("", response_model=RefundList)
def list_refunds(
    type: Optional[RefundType] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("pos:refund_sale")),
    db: Session = Depends(get_db)
):
    """Devoluciones del negocio con el total devuelto del período."""
    service = RefundService(db)
    return service.list_refunds(
        auth_context.tenant_id,
        refund_type=type.value if type else None,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    )
