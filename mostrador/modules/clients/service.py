"""
Servicios de clientes y cuenta corriente

- ClientCreditLedger: único punto que modifica current_debt (nunca hace commit)
- ClientService: alta, consulta, edición, límite de crédito y pagos
"""

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, func
from decimal import Decimal
from typing import Optional, Dict, Any, Tuple
from uuid import UUID
import logging

from mostrador.common.money import money, ZERO
from mostrador.core.exceptions import ConflictError, DomainError, InternalError, NotFoundError
from mostrador.modules.clients.models import Client, ClientPayment, ClientActivityLog, ClientStatus
from mostrador.modules.clients.schemas import (
    ClientCreate, ClientUpdate, CreditLimitUpdate, ClientPaymentCreate,
    ClientList, ClientOut, ClientCreditSummary, ClientPaymentList, ClientPaymentOut,
    ClientPaymentResult
)
from mostrador.modules.notifications.dispatcher import queue_client_payment_receipt

logger = logging.getLogger(__name__)


def recompute_status(client: Client) -> ClientStatus:
    """DELINQUENT si y sólo si la deuda supera el límite."""
    debt = Decimal(client.current_debt or 0)
    limit = Decimal(client.credit_limit or 0)
    client.status = ClientStatus.DELINQUENT if debt > limit else ClientStatus.ACTIVE
    return client.status


class ClientCreditLedger:

    def __init__(self, db: Session):
        self.db = db

    def get_client(self, tenant_id: UUID, client_id: UUID, lock: bool = False) -> Client:
        query = self.db.query(Client).filter(
            Client.tenant_id == tenant_id,
            Client.id == client_id
        )
        if lock:
            query = query.with_for_update()
        client = query.first()
        if not client:
            raise NotFoundError("Cliente no encontrado")
        return client

    def lock_client(self, tenant_id: UUID, client_id: UUID) -> Client:
        return self.get_client(tenant_id, client_id, lock=True)

    def apply_debt_delta(self, client: Client, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Suma amount (con signo) a la deuda, con piso en 0, y recalcula el estado.

        El cliente debe venir bloqueado por lock_client() dentro de la misma transacción.
        Retorna (deuda_anterior, deuda_nueva).
        """
        previous_debt = money(client.current_debt or 0)
        new_debt = money(previous_debt + money(amount))
        if new_debt < ZERO:
            new_debt = ZERO
        client.current_debt = new_debt
        previous_status = client.status
        status = recompute_status(client)

        if previous_status != status:
            logger.info(f"Cliente {client.id} pasa de {previous_status.value if previous_status else None} a {status.value}")
        logger.info(f"Deuda del cliente {client.id}: {previous_debt} -> {new_debt}")
        return previous_debt, new_debt


class ClientService:

    def __init__(self, db: Session):
        self.db = db
        self.ledger = ClientCreditLedger(db)

    def _log_activity(
        self,
        client: Client,
        action: str,
        description: str,
        user_id: Optional[UUID],
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.db.add(ClientActivityLog(
            tenant_id=client.tenant_id,
            client_id=client.id,
            action=action,
            description=description,
            details=details,
            user_id=user_id
        ))

    def get_client(self, tenant_id: UUID, client_id: UUID) -> Client:
        client = self.db.query(Client).filter(
            Client.tenant_id == tenant_id,
            Client.id == client_id
        ).first()
        if not client:
            raise NotFoundError("Cliente no encontrado")
        return client

    def create_client(self, tenant_id: UUID, data: ClientCreate, user_id: UUID) -> Client:
        try:
            if data.email:
                duplicated = self.db.query(Client.id).filter(
                    Client.tenant_id == tenant_id,
                    func.lower(Client.email) == data.email.lower()
                ).first()
                if duplicated:
                    raise ConflictError("Ya existe un cliente con ese email")

            client = Client(
                tenant_id=tenant_id,
                name=data.name,
                email=data.email,
                phone=data.phone,
                address=data.address,
                tax_id=data.tax_id,
                notes=data.notes,
                has_credit_account=data.has_credit_account,
                credit_limit=money(data.credit_limit),
                current_debt=ZERO,
                status=ClientStatus.ACTIVE,
            )
            self.db.add(client)
            self.db.flush()
            self._log_activity(client, "CREATE", f"Cliente creado: {client.name}", user_id)
            self.db.commit()
            self.db.refresh(client)
            logger.info(f"Cliente {client.id} creado en tenant {tenant_id}")
            return client

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Error de integridad al crear el cliente")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando cliente: {e}", exc_info=True)
            raise InternalError()

    def list_clients(
        self,
        tenant_id: UUID,
        search: Optional[str] = None,
        status: Optional[str] = None,
        with_debt: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0
    ) -> ClientList:
        query = self.db.query(Client).filter(Client.tenant_id == tenant_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Client.name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.phone.ilike(pattern),
                Client.tax_id.ilike(pattern)
            ))
        if status:
            query = query.filter(Client.status == ClientStatus(status))
        if with_debt:
            query = query.filter(Client.current_debt > 0)

        total = query.count()
        clients = query.order_by(Client.name).offset(offset).limit(limit).all()
        return ClientList(
            items=[ClientOut.model_validate(c) for c in clients],
            total=total,
            limit=limit,
            offset=offset
        )

    def update_client(self, tenant_id: UUID, client_id: UUID, data: ClientUpdate, user_id: UUID) -> Client:
        try:
            client = self.get_client(tenant_id, client_id)
            changes = data.model_dump(exclude_unset=True)
            if "name" in changes and changes["name"]:
                changes["name"] = changes["name"].strip()
            for field, value in changes.items():
                setattr(client, field, value)

            if changes:
                self._log_activity(
                    client, "UPDATE",
                    f"Datos actualizados: {', '.join(sorted(changes))}",
                    user_id,
                    {k: str(v) if v is not None else None for k, v in changes.items()}
                )
            self.db.commit()
            self.db.refresh(client)
            return client

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Error de integridad al actualizar el cliente")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando cliente {client_id}: {e}", exc_info=True)
            raise InternalError()

    def update_credit_limit(
        self, tenant_id: UUID, client_id: UUID, data: CreditLimitUpdate, user_id: UUID
    ) -> Client:
        """Cambia el límite y recalcula el estado en ambos sentidos."""
        try:
            client = self.ledger.lock_client(tenant_id, client_id)
            previous_limit = money(client.credit_limit or 0)
            client.credit_limit = money(data.credit_limit)
            recompute_status(client)

            self._log_activity(
                client, "CREDIT_LIMIT_CHANGE",
                f"Límite de crédito modificado de ${previous_limit} a ${client.credit_limit}",
                user_id,
                {"previous_limit": str(previous_limit), "new_limit": str(client.credit_limit)}
            )
            self.db.commit()
            self.db.refresh(client)
            logger.info(f"Límite de crédito de {client.id}: {previous_limit} -> {client.credit_limit} ({client.status.value})")
            return client

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando límite de {client_id}: {e}", exc_info=True)
            raise InternalError()

    def get_credit_summary(self, tenant_id: UUID, client_id: UUID) -> ClientCreditSummary:
        client = self.get_client(tenant_id, client_id)
        limit = money(client.credit_limit or 0)
        debt = money(client.current_debt or 0)
        usage = money(debt / limit * 100) if limit > 0 else ZERO
        return ClientCreditSummary(
            client_id=client.id,
            has_credit_account=client.has_credit_account,
            credit_limit=limit,
            current_debt=debt,
            available_credit=money(limit - debt),
            credit_usage_percentage=usage,
            status=client.status.value
        )

    def register_payment(
        self, tenant_id: UUID, client_id: UUID, data: ClientPaymentCreate, user_id: UUID
    ) -> ClientPaymentResult:
        """
        Registra un pago de cuenta corriente: baja la deuda (piso 0), guarda el
        pago y la actividad en la misma transacción. El comprobante se encola
        después del commit.
        """
        try:
            client = self.ledger.lock_client(tenant_id, client_id)
            amount = money(data.amount)

            payment = ClientPayment(
                tenant_id=tenant_id,
                client_id=client.id,
                amount=amount,
                payment_method=data.payment_method.value,
                reference=data.reference,
                notes=data.notes,
                user_id=user_id
            )
            self.db.add(payment)

            previous_debt, new_debt = self.ledger.apply_debt_delta(client, -amount)

            self._log_activity(
                client, "PAYMENT",
                f"Pago registrado: ${amount} vía {data.payment_method.value}",
                user_id,
                {
                    "amount": str(amount),
                    "payment_method": data.payment_method.value,
                    "reference": data.reference,
                    "previous_debt": str(previous_debt),
                    "new_debt": str(new_debt),
                }
            )
            self.db.commit()
            self.db.refresh(payment)
            self.db.refresh(client)

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Error de integridad al registrar el pago")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error registrando pago del cliente {client_id}: {e}", exc_info=True)
            raise InternalError()

        logger.info(f"Pago de ${amount} registrado para cliente {client.id}")
        queue_client_payment_receipt(payment, client)

        return ClientPaymentResult(
            payment=ClientPaymentOut.model_validate(payment),
            client=ClientOut.model_validate(client)
        )

    def list_payments(self, tenant_id: UUID, client_id: UUID, limit: int = 50, offset: int = 0) -> ClientPaymentList:
        self.get_client(tenant_id, client_id)
        query = self.db.query(ClientPayment).filter(
            ClientPayment.tenant_id == tenant_id,
            ClientPayment.client_id == client_id
        )
        total = query.count()
        total_paid = query.with_entities(func.coalesce(func.sum(ClientPayment.amount), 0)).scalar()
        payments = query.order_by(ClientPayment.created_at.desc()).offset(offset).limit(limit).all()
        return ClientPaymentList(
            items=[ClientPaymentOut.model_validate(p) for p in payments],
            total=total,
            total_paid=money(total_paid or 0)
        )

    def list_activity(self, tenant_id: UUID, client_id: UUID, limit: int = 50):
        self.get_client(tenant_id, client_id)
        return self.db.query(ClientActivityLog).filter(
            ClientActivityLog.tenant_id == tenant_id,
            ClientActivityLog.client_id == client_id
        ).order_by(ClientActivityLog.created_at.desc()).limit(limit).all()
