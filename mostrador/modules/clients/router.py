from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from mostrador.dependencies.dbDependecies import get_db
from mostrador.modules.auth.dependencies import AuthDependencies
from mostrador.modules.auth.schemas import AuthContext
from mostrador.modules.clients.service import ClientService
from mostrador.modules.clients.schemas import (
    ClientCreate, ClientUpdate, ClientOut, ClientList, CreditLimitUpdate, ClientCreditSummary,
    ClientPaymentCreate, ClientPaymentResult, ClientPaymentList, ClientActivityOut, ClientStatus
)

clients_router = APIRouter(prefix="/clients", tags=["Clients"])


@clients_router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(
    client_data: ClientCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:create"))
):
    """
    Crear cliente.

    - **has_credit_account**: habilita ventas en cuenta corriente
    - **credit_limit**: límite a partir del cual el cliente pasa a DELINQUENT
    """
    service = ClientService(db)
    return service.create_client(auth_context.tenant_id, client_data, auth_context.user_id)


@clients_router.get("", response_model=ClientList)
def list_clients(
    search: Optional[str] = Query(None, description="Busca por nombre, email, teléfono o CUIT"),
    status: Optional[ClientStatus] = Query(None),
    with_debt: Optional[bool] = Query(None, description="Sólo clientes con deuda"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:view"))
):
    service = ClientService(db)
    return service.list_clients(
        auth_context.tenant_id,
        search=search,
        status=status.value if status else None,
        with_debt=with_debt,
        limit=limit,
        offset=offset
    )


@clients_router.get("/{client_id}", response_model=ClientOut)
def get_client(
    client_id: UUID = Path(...),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:view"))
):
    service = ClientService(db)
    return service.get_client(auth_context.tenant_id, client_id)


@clients_router.put("/{client_id}", response_model=ClientOut)
def update_client(
    client_data: ClientUpdate,
    client_id: UUID = Path(...),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:edit"))
):
    """Actualización parcial de datos del cliente (la deuda no se edita por aquí)."""
    service = ClientService(db)
    return service.update_client(auth_context.tenant_id, client_id, client_data, auth_context.user_id)


@clients_router.get("/{client_id}/credit", response_model=ClientCreditSummary)
def get_client_credit(
    client_id: UUID = Path(...),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:view_credit"))
):
    service = ClientService(db)
    return service.get_credit_summary(auth_context.tenant_id, client_id)


@clients_router.put("/{client_id}/credit-limit", response_model=ClientOut)
def update_credit_limit(
    limit_data: CreditLimitUpdate,
    client_id: UUID = Path(...),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:edit_credit_limit"))
):
    """
    Modificar el límite de crédito.

    El estado se recalcula: ACTIVE <-> DELINQUENT según deuda vs. nuevo límite.
    """
    service = ClientService(db)
    return service.update_credit_limit(auth_context.tenant_id, client_id, limit_data, auth_context.user_id)


@clients_router.post("/{client_id}/payments", response_model=ClientPaymentResult, status_code=status.HTTP_201_CREATED)
def register_client_payment(
    payment_data: ClientPaymentCreate,
    client_id: UUID = Path(...),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:register_payment"))
):
    """
    Registrar pago de cuenta corriente.

    - Reduce la deuda (nunca por debajo de 0)
    - Si la deuda queda dentro del límite, el cliente vuelve a ACTIVE
    - Encola el recibo por email si el cliente tiene email
    """
    service = ClientService(db)
    return service.register_payment(auth_context.tenant_id, client_id, payment_data, auth_context.user_id)


@clients_router.get("/{client_id}/payments", response_model=ClientPaymentList)
def list_client_payments(
    client_id: UUID = Path(...),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:view_credit"))
):
    service = ClientService(db)
    return service.list_payments(auth_context.tenant_id, client_id, limit=limit, offset=offset)


@clients_router.get("/{client_id}/activity", response_model=List[ClientActivityOut])
def list_client_activity(
    client_id: UUID = Path(...),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_permission("clients:view_activity_log"))
):
    service = ClientService(db)
    return service.list_activity(auth_context.tenant_id, client_id, limit=limit)
