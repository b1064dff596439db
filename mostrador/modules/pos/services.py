"""
Servicios de negocio para el módulo POS (Point of Sale)

- CashLedger: libro de caja (record nunca hace commit) y movimientos manuales
- CashRegisterService: apertura, cierre con arqueo, caja actual y listado

Integración con ventas:
- Ventas no CUENTA_CORRIENTE generan INGRESO/VENTA en la caja abierta del vendedor
- Anulaciones y devoluciones generan EGRESO compensatorio
- El cierre totaliza las ventas COMPLETADO de la caja por medio de pago
"""

from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, case, desc
from decimal import Decimal
from typing import Dict, List, Optional, Union
from uuid import UUID
from datetime import datetime, timezone
import logging

from mostrador.common.money import money, ZERO
from mostrador.core.exceptions import ConflictError, DomainError, InternalError, NotFoundError, ValidationError
from mostrador.modules.pos.models import (
    CashRegister, CashMovement, CashRegisterStatus, CashMovementType, CashMovementConcept, INBOUND_TYPES
)
from mostrador.modules.pos.schemas import (
    CashRegisterOpen, CashRegisterClose, CashRegisterOut, CashRegisterSummary, CashRegisterClosed,
    CashRegisterCurrent, CashRegisterList, CashMovementCreate, CashMovementOut, CashMovementList,
    CashMovementTotals
)
from mostrador.modules.sales.models import Sale, SaleStatus, PaymentMethod

logger = logging.getLogger(__name__)

# Clasificación de medios de pago para el arqueo
PAYMENT_BUCKETS = {
    PaymentMethod.EFECTIVO: "cash",
    PaymentMethod.TARJETA_DEBITO: "card",
    PaymentMethod.TARJETA_CREDITO: "card",
    PaymentMethod.TRANSFERENCIA: "transfer",
    PaymentMethod.QR: "transfer",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _movement_type(value: Union[str, CashMovementType]) -> CashMovementType:
    if isinstance(value, CashMovementType):
        return value
    return CashMovementType(getattr(value, "value", value))


def _concept(value: Union[str, CashMovementConcept]) -> CashMovementConcept:
    if isinstance(value, CashMovementConcept):
        return value
    return CashMovementConcept(getattr(value, "value", value))


class CashLedger:
    """Libro de caja"""

    def __init__(self, db: Session):
        self.db = db

    def find_open_register(self, tenant_id: UUID, user_id: UUID, lock: bool = False) -> Optional[CashRegister]:
        query = self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.user_id == user_id,
            CashRegister.status == CashRegisterStatus.OPEN
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def record(
        self,
        tenant_id: UUID,
        user_id: UUID,
        movement_type: Union[str, CashMovementType],
        concept: Union[str, CashMovementConcept],
        amount: Decimal,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        register: Optional[CashRegister] = None,
    ) -> CashMovement:
        """
        Agrega un movimiento al libro. Nunca hace commit.

        INGRESO/EGRESO exigen monto > 0; APERTURA/CIERRE admiten 0.
        """
        movement_type = _movement_type(movement_type)
        amount = money(amount)
        if amount < ZERO or (amount == ZERO and movement_type in (CashMovementType.INGRESO, CashMovementType.EGRESO)):
            raise ValidationError(
                "El monto debe ser mayor a 0",
                details=[{"field": "amount", "message": "Debe ser mayor a 0"}]
            )
        if register is not None and register.status != CashRegisterStatus.OPEN:
            raise ConflictError("La caja está cerrada")

        movement = CashMovement(
            tenant_id=tenant_id,
            cash_register_id=register.id if register is not None else None,
            type=movement_type,
            concept=_concept(concept),
            amount=amount,
            description=description,
            reference=reference,
            user_id=user_id,
        )
        self.db.add(movement)
        self.db.flush()
        logger.debug(f"Movimiento de caja {movement_type.value} ${amount} ref={reference}")
        return movement

    def annotate_sale_movement(self, tenant_id: UUID, sale_id: UUID, note: str) -> int:
        """Marca los INGRESO/VENTA de una venta anulada. Única modificación permitida."""
        movements = self.db.query(CashMovement).filter(
            CashMovement.tenant_id == tenant_id,
            CashMovement.reference == str(sale_id),
            CashMovement.type == CashMovementType.INGRESO,
            CashMovement.concept == CashMovementConcept.VENTA
        ).all()
        for movement in movements:
            movement.description = note
        return len(movements)

    def register_manual_movement(self, tenant_id: UUID, user_id: UUID, data: CashMovementCreate) -> CashMovementOut:
        """INGRESO o EGRESO manual en la caja abierta del usuario."""
        try:
            register = self.find_open_register(tenant_id, user_id, lock=True)
            if not register:
                raise ConflictError("Debes abrir una caja antes de registrar movimientos")

            movement = self.record(
                tenant_id=tenant_id,
                user_id=user_id,
                movement_type=data.type.value,
                concept=CashMovementConcept.MANUAL,
                amount=data.amount,
                description=data.description,
                reference=data.reference,
                register=register,
            )
            self.db.commit()
            self.db.refresh(movement)
            logger.info(f"Movimiento manual {movement.type.value} ${movement.amount} en caja {register.id}")
            return CashMovementOut.model_validate(movement)

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error registrando movimiento de caja: {e}", exc_info=True)
            raise InternalError()

    def list_movements(
        self,
        tenant_id: UUID,
        cash_register_id: Optional[UUID] = None,
        movement_type: Optional[str] = None,
        concept: Optional[str] = None,
        user_id: Optional[UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> CashMovementList:
        """Movimientos más recientes primero, con totales del conjunto filtrado."""
        query = self.db.query(CashMovement).filter(CashMovement.tenant_id == tenant_id)
        if cash_register_id:
            query = query.filter(CashMovement.cash_register_id == cash_register_id)
        if movement_type:
            query = query.filter(CashMovement.type == _movement_type(movement_type))
        if concept:
            query = query.filter(CashMovement.concept == _concept(concept))
        if user_id:
            query = query.filter(CashMovement.user_id == user_id)
        if start_date:
            query = query.filter(CashMovement.created_at >= start_date)
        if end_date:
            query = query.filter(CashMovement.created_at <= end_date)

        inbound = case((CashMovement.type.in_(INBOUND_TYPES), CashMovement.amount), else_=0)
        outbound = case((CashMovement.type.in_(INBOUND_TYPES), 0), else_=CashMovement.amount)
        total, ingresos, egresos = query.with_entities(
            func.count(CashMovement.id),
            func.coalesce(func.sum(inbound), 0),
            func.coalesce(func.sum(outbound), 0),
        ).one()

        movements = query.order_by(desc(CashMovement.created_at)).offset(offset).limit(limit).all()
        ingresos = money(ingresos or 0)
        egresos = money(egresos or 0)

        return CashMovementList(
            items=[CashMovementOut.model_validate(m) for m in movements],
            total=total,
            totals=CashMovementTotals(ingresos=ingresos, egresos=egresos, balance=money(ingresos - egresos)),
            limit=limit,
            offset=offset
        )


class CashRegisterService:
    """Servicio para gestión de cajas registradoras"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = CashLedger(db)

    def open_cash_register(self, register_data: CashRegisterOpen, tenant_id: UUID, user_id: UUID) -> CashRegister:
        """Abrir caja: una sola abierta por usuario."""
        try:
            existing_open = self.ledger.find_open_register(tenant_id, user_id)
            if existing_open:
                raise ConflictError("Ya tienes una caja abierta. Debes cerrarla antes de abrir una nueva.")

            opening_amount = money(register_data.opening_amount)
            register = CashRegister(
                tenant_id=tenant_id,
                user_id=user_id,
                status=CashRegisterStatus.OPEN,
                opening_amount=opening_amount,
                total_cash=ZERO,
                total_card=ZERO,
                total_transfer=ZERO,
                total_other=ZERO,
                sales_count=0,
                opened_at=_utcnow(),
                notes=register_data.notes
            )
            self.db.add(register)
            self.db.flush()

            self.ledger.record(
                tenant_id=tenant_id,
                user_id=user_id,
                movement_type=CashMovementType.APERTURA,
                concept=CashMovementConcept.APERTURA,
                amount=opening_amount,
                description=f"Apertura de caja - {register_data.notes or 'Sin observaciones'}",
                register=register,
            )

            self.db.commit()
            self.db.refresh(register)
            logger.info(f"Caja {register.id} abierta por {user_id} con ${opening_amount}")
            return register

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Ya tienes una caja abierta. Debes cerrarla antes de abrir una nueva.")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error abriendo caja: {e}", exc_info=True)
            raise InternalError()

    def compute_summary(self, register: CashRegister, closing_amount: Optional[Decimal] = None,
                        until: Optional[datetime] = None) -> CashRegisterSummary:
        """
        Totales por medio de pago de las ventas COMPLETADO de la caja.
        Las ventas con pagos divididos se reparten según sus partes.
        """
        sales: List[Sale] = self.db.query(Sale).options(selectinload(Sale.payments)).filter(
            Sale.tenant_id == register.tenant_id,
            Sale.cash_register_id == register.id,
            Sale.status == SaleStatus.COMPLETADO
        ).all()

        totals: Dict[str, Decimal] = {"cash": ZERO, "card": ZERO, "transfer": ZERO, "other": ZERO}
        total_sales = ZERO
        for sale in sales:
            total_sales += money(sale.total)
            if sale.payments:
                for part in sale.payments:
                    bucket = PAYMENT_BUCKETS.get(part.payment_method, "other")
                    totals[bucket] += money(part.amount)
            else:
                bucket = PAYMENT_BUCKETS.get(sale.payment_method, "other")
                totals[bucket] += money(sale.total)

        opening_amount = money(register.opening_amount or 0)
        expected_amount = money(opening_amount + totals["cash"])
        difference = money(closing_amount - expected_amount) if closing_amount is not None else None

        end = _aware(until or register.closed_at or _utcnow())
        hours_worked = round((end - _aware(register.opened_at)).total_seconds() / 3600, 1)

        return CashRegisterSummary(
            sales_count=len(sales),
            total_sales=money(total_sales),
            total_cash=money(totals["cash"]),
            total_card=money(totals["card"]),
            total_transfer=money(totals["transfer"]),
            total_other=money(totals["other"]),
            opening_amount=opening_amount,
            expected_amount=expected_amount,
            closing_amount=money(closing_amount) if closing_amount is not None else None,
            difference=difference,
            hours_worked=max(hours_worked, 0.0)
        )

    def close_cash_register(self, close_data: CashRegisterClose, tenant_id: UUID, user_id: UUID) -> CashRegisterClosed:
        """Cerrar caja con arqueo: esperado = apertura + efectivo; diferencia = contado - esperado."""
        try:
            query = self.db.query(CashRegister).filter(
                CashRegister.tenant_id == tenant_id,
                CashRegister.user_id == user_id
            )
            if close_data.cash_register_id:
                query = query.filter(CashRegister.id == close_data.cash_register_id)
            else:
                query = query.filter(CashRegister.status == CashRegisterStatus.OPEN)
            register = query.with_for_update().first()

            if not register:
                raise NotFoundError("Caja no encontrada o ya cerrada" if close_data.cash_register_id
                                    else "No tienes una caja abierta")
            if register.status == CashRegisterStatus.CLOSED:
                raise ConflictError("La caja ya está cerrada")

            closed_at = _utcnow()
            closing_amount = money(close_data.closing_amount)
            summary = self.compute_summary(register, closing_amount=closing_amount, until=closed_at)

            self.ledger.record(
                tenant_id=tenant_id,
                user_id=user_id,
                movement_type=CashMovementType.CIERRE,
                concept=CashMovementConcept.CIERRE,
                amount=closing_amount,
                description=(
                    f"Cierre de caja - Diferencia: {'+' if summary.difference >= 0 else ''}{summary.difference} - "
                    f"{close_data.notes or 'Sin observaciones'}"
                ),
                register=register,
            )

            register.status = CashRegisterStatus.CLOSED
            register.closed_at = closed_at
            register.closing_amount = closing_amount
            register.expected_amount = summary.expected_amount
            register.difference = summary.difference
            register.total_cash = summary.total_cash
            register.total_card = summary.total_card
            register.total_transfer = summary.total_transfer
            register.total_other = summary.total_other
            register.sales_count = summary.sales_count
            if close_data.notes:
                register.notes = f"{register.notes or ''}\nCierre: {close_data.notes}".strip()

            self.db.commit()
            self.db.refresh(register)
            logger.info(
                f"Caja {register.id} cerrada: esperado ${summary.expected_amount}, "
                f"contado ${closing_amount}, diferencia ${summary.difference}"
            )
            return CashRegisterClosed(register=CashRegisterOut.model_validate(register), summary=summary)

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error cerrando caja: {e}", exc_info=True)
            raise InternalError()

    def get_current_cash_register(self, tenant_id: UUID, user_id: UUID) -> CashRegisterCurrent:
        """Caja abierta del usuario con saldo actual y vista previa del arqueo."""
        register = self.ledger.find_open_register(tenant_id, user_id)
        if not register:
            raise NotFoundError("No tienes una caja abierta")
        return CashRegisterCurrent(
            register=CashRegisterOut.model_validate(register),
            balance=money(register.calculated_balance),
            summary=self.compute_summary(register)
        )

    def get_cash_register(self, tenant_id: UUID, register_id: UUID, only_user: Optional[UUID] = None) -> CashRegister:
        query = self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.id == register_id
        )
        if only_user:
            query = query.filter(CashRegister.user_id == only_user)
        register = query.first()
        if not register:
            raise NotFoundError("Caja registradora no encontrada")
        return register

    def get_cash_registers(
        self,
        tenant_id: UUID,
        status: Optional[str] = None,
        user_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0
    ) -> CashRegisterList:
        query = self.db.query(CashRegister).filter(CashRegister.tenant_id == tenant_id)
        if status:
            query = query.filter(CashRegister.status == CashRegisterStatus(status))
        if user_id:
            query = query.filter(CashRegister.user_id == user_id)

        total = query.count()
        registers = query.order_by(desc(CashRegister.opened_at)).offset(offset).limit(limit).all()
        return CashRegisterList(
            items=[CashRegisterOut.model_validate(r) for r in registers],
            total=total,
            limit=limit,
            offset=offset
        )
