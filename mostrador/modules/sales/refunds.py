"""
Servicio de devoluciones

Límites que se validan bajo bloqueo de la venta:
- Σ refund_amount de la venta <= total de la venta
- Σ cantidades devueltas por línea <= cantidad vendida

Con REFUND_AMOUNT_POLICY="strict" el monto debe coincidir con Σ subtotales
de las líneas devueltas; con "lenient" se acepta cualquier monto dentro del
tope de la venta.
"""

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, desc
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID, uuid4
from datetime import datetime
import logging

from mostrador.common.money import money, money_sum, amounts_match
from mostrador.core.config import settings
from mostrador.core.exceptions import ConflictError, DomainError, InternalError, NotFoundError, ValidationError
from mostrador.modules.clients.service import ClientCreditLedger
from mostrador.modules.inventory.service import InventoryLedger
from mostrador.modules.pos.models import CashMovementType, CashMovementConcept
from mostrador.modules.pos.services import CashLedger
from mostrador.modules.products.models import StockMovementType
from mostrador.modules.sales.models import (
    Sale, SaleItem, Refund, RefundItem, SaleStatus, PaymentMethod, RefundType
)
from mostrador.modules.sales.schemas import RefundCreate, RefundOut, RefundList

logger = logging.getLogger(__name__)


class RefundService:

    def __init__(self, db: Session):
        self.db = db
        self.inventory = InventoryLedger(db)
        self.cash = CashLedger(db)
        self.credit = ClientCreditLedger(db)

    def _refunded_amount(self, tenant_id: UUID, sale_id: UUID) -> Decimal:
        value = self.db.query(func.coalesce(func.sum(Refund.refund_amount), 0)).filter(
            Refund.tenant_id == tenant_id,
            Refund.sale_id == sale_id
        ).scalar()
        return money(value or 0)

    def _refunded_quantities(self, tenant_id: UUID, sale_id: UUID) -> Dict[UUID, int]:
        rows = self.db.query(RefundItem.sale_item_id, func.sum(RefundItem.quantity)).join(Refund).filter(
            Refund.tenant_id == tenant_id,
            Refund.sale_id == sale_id
        ).group_by(RefundItem.sale_item_id).all()
        return {sale_item_id: int(quantity or 0) for sale_item_id, quantity in rows}

    def create_refund(self, sale_id: UUID, refund_data: RefundCreate, tenant_id: UUID, user_id: UUID) -> Refund:
        """
        Registrar una devolución total o parcial.

        - Repone stock (ENTRADA, referencia = id de la devolución) si restock_items
        - EGRESO/DEVOLUCION en caja, o −monto en la deuda si la venta fue a cuenta corriente
        - La venta pasa a PARCIALMENTE_REEMBOLSADO o REEMBOLSADO
        """
        try:
            sale = self.db.query(Sale).filter(
                Sale.tenant_id == tenant_id,
                Sale.id == sale_id
            ).with_for_update().first()
            if not sale:
                raise NotFoundError("Venta no encontrada")
            if sale.status == SaleStatus.CANCELADO:
                raise ConflictError("No se puede reembolsar una venta cancelada")
            if sale.status == SaleStatus.REEMBOLSADO:
                raise ConflictError("La venta ya fue reembolsada completamente")

            sale_total = money(sale.total)
            refund_amount = money(refund_data.refund_amount)
            previously_refunded = self._refunded_amount(tenant_id, sale.id)
            if previously_refunded + refund_amount > sale_total:
                max_refundable = max(sale_total - previously_refunded, Decimal("0"))
                raise ConflictError(
                    f"El monto a devolver supera lo disponible. Máximo reembolsable: ${money(max_refundable)}",
                    extra={"max_refundable": str(money(max_refundable))}
                )

            sale_items: Dict[UUID, SaleItem] = {item.id: item for item in sale.items}
            already_refunded = self._refunded_quantities(tenant_id, sale.id)
            requested: Dict[UUID, int] = {}
            for item in refund_data.items:
                sale_item = sale_items.get(item.sale_item_id)
                if not sale_item:
                    raise ValidationError(
                        "El ítem no pertenece a esta venta",
                        details=[{"field": "items", "message": f"Línea de venta desconocida: {item.sale_item_id}"}]
                    )
                if item.product_id and item.product_id != sale_item.product_id:
                    raise ValidationError(
                        "El producto no coincide con la línea de venta",
                        details=[{"field": "items", "message": f"Producto distinto en la línea {sale_item.id}"}]
                    )
                requested[sale_item.id] = requested.get(sale_item.id, 0) + item.quantity

            for sale_item_id, quantity in requested.items():
                sale_item = sale_items[sale_item_id]
                refunded_qty = already_refunded.get(sale_item_id, 0)
                if refunded_qty + quantity > sale_item.quantity:
                    max_refundable = max(sale_item.quantity - refunded_qty, 0)
                    raise ConflictError(
                        f"No se pueden devolver {quantity} unidades de '{sale_item.product_name}'. "
                        f"Máximo reembolsable: {max_refundable}",
                        extra={"sale_item_id": str(sale_item_id), "max_refundable": max_refundable}
                    )

            items_total = money_sum(item.subtotal for item in refund_data.items)
            if settings.REFUND_AMOUNT_POLICY == "strict" and not amounts_match(refund_amount, items_total):
                raise ValidationError(
                    "El monto a devolver no coincide con el detalle de ítems",
                    details=[{"field": "refund_amount", "message": f"Suma de ítems: {items_total}"}]
                )

            # Mismo orden de bloqueo que ventas y anulaciones: cliente o caja, luego productos
            on_account = sale.payment_method == PaymentMethod.CUENTA_CORRIENTE
            client = None
            register = None
            if on_account and sale.client_id:
                client = self.credit.lock_client(tenant_id, sale.client_id)
            elif not on_account:
                register = self.cash.find_open_register(tenant_id, user_id, lock=True)
            if refund_data.restock_items:
                self.inventory.lock_lines(tenant_id, [sale_items[sale_item_id] for sale_item_id in requested])

            refund = Refund(
                id=uuid4(),
                tenant_id=tenant_id,
                sale_id=sale.id,
                type=RefundType(refund_data.type.value),
                reason=refund_data.reason,
                refund_amount=refund_amount,
                restock_items=refund_data.restock_items,
                notes=refund_data.notes,
                user_id=user_id
            )
            for item in refund_data.items:
                refund.items.append(RefundItem(
                    tenant_id=tenant_id,
                    sale_item_id=item.sale_item_id,
                    product_id=sale_items[item.sale_item_id].product_id,
                    quantity=item.quantity,
                    price=money(item.price),
                    subtotal=money(item.subtotal)
                ))
            self.db.add(refund)
            self.db.flush()

            if refund_data.restock_items:
                for item in refund_data.items:
                    sale_item = sale_items[item.sale_item_id]
                    self.inventory.apply_delta(
                        tenant_id=tenant_id,
                        product_id=sale_item.product_id,
                        variant_id=sale_item.variant_id,
                        quantity=item.quantity,
                        movement_type=StockMovementType.ENTRADA,
                        reason=f"Devolución de venta #{sale.ticket_number}",
                        reference=str(refund.id),
                        user_id=user_id,
                    )

            cumulative = previously_refunded + refund_amount
            sale.status = SaleStatus.REEMBOLSADO if cumulative >= sale_total else SaleStatus.PARCIALMENTE_REEMBOLSADO

            if on_account:
                if client:
                    self.credit.apply_debt_delta(client, -refund_amount)
            else:
                self.cash.record(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    movement_type=CashMovementType.EGRESO,
                    concept=CashMovementConcept.DEVOLUCION,
                    amount=refund_amount,
                    description=f"Devolución venta #{sale.ticket_number}: {refund_data.reason}",
                    reference=str(refund.id),
                    register=register,
                )

            self.db.commit()
            self.db.refresh(refund)
            logger.info(
                f"Devolución {refund.id} de ${refund_amount} sobre venta #{sale.ticket_number}; "
                f"acumulado ${cumulative} de ${sale_total}"
            )
            return refund

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando devolución para venta {sale_id}: {e}", exc_info=True)
            raise InternalError()

    def list_refunds_for_sale(self, tenant_id: UUID, sale_id: UUID, only_user: Optional[UUID] = None) -> RefundList:
        query = self.db.query(Sale.id).filter(Sale.tenant_id == tenant_id, Sale.id == sale_id)
        if only_user:
            query = query.filter(Sale.user_id == only_user)
        if not query.first():
            raise NotFoundError("Venta no encontrada")

        refunds = self.db.query(Refund).options(selectinload(Refund.items)).filter(
            Refund.tenant_id == tenant_id,
            Refund.sale_id == sale_id
        ).order_by(Refund.created_at).all()

        return RefundList(
            items=[RefundOut.model_validate(r) for r in refunds],
            total=len(refunds),
            total_refunded=money_sum(r.refund_amount for r in refunds)
        )

    def list_refunds(
        self,
        tenant_id: UUID,
        refund_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> RefundList:
        """Devoluciones del negocio, más recientes primero."""
        query = self.db.query(Refund).filter(Refund.tenant_id == tenant_id)
        if refund_type:
            query = query.filter(Refund.type == RefundType(refund_type))
        if start_date:
            query = query.filter(Refund.created_at >= start_date)
        if end_date:
            query = query.filter(Refund.created_at <= end_date)

        total, total_refunded = query.with_entities(
            func.count(Refund.id),
            func.coalesce(func.sum(Refund.refund_amount), 0)
        ).one()
        refunds = query.options(selectinload(Refund.items)).order_by(
            desc(Refund.created_at)
        ).offset(offset).limit(limit).all()

        return RefundList(
            items=[RefundOut.model_validate(r) for r in refunds],
            total=total,
            total_refunded=money(total_refunded or 0)
        )
