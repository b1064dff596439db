"""
Servicio de ventas

Una venta toca cuatro libros en la misma transacción:
- Inventario: SALIDA por línea (referencia = id de la venta)
- Caja: INGRESO/VENTA en la caja abierta del vendedor (salvo CUENTA_CORRIENTE)
- Cuenta corriente: +total en la deuda del cliente (sólo CUENTA_CORRIENTE)
- La venta misma con sus líneas, pagos divididos y número de ticket

Si algo falla se hace rollback de todo. El comprobante por email se encola
recién después del commit.

Orden de bloqueo, igual en ventas, anulaciones y devoluciones:
venta -> cliente -> caja -> productos (por id) -> variantes (por id).
"""

from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, desc
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4
from datetime import datetime, timezone
import logging

from mostrador.common.money import money, money_sum, amounts_match, apply_discount, ZERO
from mostrador.core.exceptions import ConflictError, DomainError, InternalError, NotFoundError, ValidationError
from mostrador.modules.clients.models import Client
from mostrador.modules.clients.service import ClientCreditLedger
from mostrador.modules.inventory.service import InventoryLedger
from mostrador.modules.notifications.dispatcher import queue_sale_receipt
from mostrador.modules.pos.models import CashMovementType, CashMovementConcept
from mostrador.modules.pos.services import CashLedger
from mostrador.modules.products.models import Product, ProductVariant, StockMovementType
from mostrador.modules.sales.models import (
    Sale, SaleItem, SalePayment, Refund, SaleStatus, PaymentMethod, DiscountType
)
from mostrador.modules.sales.schemas import SaleCreate, SaleCancel, SaleOut, SaleDetail, SaleList

logger = logging.getLogger(__name__)

NOT_CANCELABLE = {
    SaleStatus.CANCELADO: "La venta ya está cancelada",
    SaleStatus.REEMBOLSADO: "No se puede anular una venta reembolsada",
    SaleStatus.PARCIALMENTE_REEMBOLSADO: "No se puede anular una venta con devoluciones",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SaleService:
    """Servicio para creación, anulación y consulta de ventas"""

    def __init__(self, db: Session):
        self.db = db
        self.inventory = InventoryLedger(db)
        self.cash = CashLedger(db)
        self.credit = ClientCreditLedger(db)

    # ===== HELPERS =====

    def _compute_totals(self, sale_data: SaleCreate) -> Tuple[Decimal, Decimal, Decimal]:
        """(subtotal, descuento, total) calculados a partir de las líneas."""
        subtotal = money_sum(money(item.unit_price * item.quantity) for item in sale_data.items)
        total = apply_discount(subtotal, sale_data.discount, sale_data.discount_type.value)
        return subtotal, money(subtotal - total), total

    def _load_catalog(
        self, tenant_id: UUID, sale_data: SaleCreate
    ) -> Tuple[Dict[UUID, Product], Dict[UUID, ProductVariant]]:
        """Bloquea productos y variantes (en orden de id) y valida que estén activos."""
        products = self.inventory.lock_products(tenant_id, [i.product_id for i in sale_data.items])
        variants = self.inventory.lock_variants(
            tenant_id, [i.variant_id for i in sale_data.items if i.variant_id]
        )

        for item in sale_data.items:
            product = products.get(item.product_id)
            if not product:
                raise NotFoundError(f"Producto {item.product_id} no encontrado")
            if not product.is_active:
                raise ValidationError(
                    f"El producto '{product.name}' no está activo",
                    details=[{"field": "items", "message": f"Producto inactivo: {product.id}"}]
                )
            if item.variant_id:
                variant = variants.get(item.variant_id)
                if not variant or variant.product_id != product.id:
                    raise NotFoundError(f"Variante {item.variant_id} no encontrada")
                if not variant.is_active:
                    raise ValidationError(
                        f"La variante '{variant.name}' no está activa",
                        details=[{"field": "items", "message": f"Variante inactiva: {variant.id}"}]
                    )
        return products, variants

    def _check_stock(
        self,
        sale_data: SaleCreate,
        products: Dict[UUID, Product],
        variants: Dict[UUID, ProductVariant]
    ) -> None:
        requested: Dict[Tuple[UUID, Optional[UUID]], int] = {}
        for item in sale_data.items:
            key = (item.product_id, item.variant_id)
            requested[key] = requested.get(key, 0) + item.quantity

        for (product_id, variant_id), quantity in requested.items():
            product = products[product_id]
            target = variants[variant_id] if variant_id else product
            available = target.stock or 0
            if available < quantity:
                label = f"{product.name} - {target.name}" if variant_id else product.name
                raise ConflictError(
                    f"Stock insuficiente para '{label}'. Disponible: {available}, Solicitado: {quantity}",
                    extra={"product_id": str(product_id), "available": available, "requested": quantity}
                )

    def _next_ticket_number(self, tenant_id: UUID) -> int:
        last = self.db.query(func.max(Sale.ticket_number)).filter(Sale.tenant_id == tenant_id).scalar()
        return (last or 0) + 1

    def _get_sale_for_update(self, tenant_id: UUID, sale_id: UUID) -> Sale:
        sale = self.db.query(Sale).filter(
            Sale.tenant_id == tenant_id,
            Sale.id == sale_id
        ).with_for_update().first()
        if not sale:
            raise NotFoundError("Venta no encontrada")
        return sale

    # ===== CREAR =====

    def create_sale(self, sale_data: SaleCreate, tenant_id: UUID, user_id: UUID) -> Sale:
        """
        Crear una venta completa.

        Validaciones previas (sin modificar nada):
        - Total declarado = Σ(cantidad × precio) − descuento, dentro de la tolerancia
        - Cliente existente; CUENTA_CORRIENTE exige cuenta corriente habilitada
        - Caja abierta del vendedor para todo medio de pago que no sea CUENTA_CORRIENTE
        - Productos y variantes activos con stock suficiente (bajo bloqueo)
        """
        try:
            payment_method = PaymentMethod(sale_data.payment_method.value)
            on_account = payment_method == PaymentMethod.CUENTA_CORRIENTE

            subtotal, discount_amount, total = self._compute_totals(sale_data)
            if not amounts_match(total, sale_data.total):
                raise ValidationError(
                    "El total no coincide con el detalle de la venta",
                    details=[{"field": "total", "message": f"Total calculado: {total}, recibido: {money(sale_data.total)}"}]
                )

            client: Optional[Client] = None
            if on_account and not sale_data.client_id:
                raise ValidationError(
                    "Las ventas en cuenta corriente requieren un cliente",
                    details=[{"field": "client_id", "message": "Requerido para CUENTA_CORRIENTE"}]
                )
            if sale_data.client_id:
                client = self.credit.get_client(tenant_id, sale_data.client_id, lock=on_account)
                if on_account and not client.has_credit_account:
                    raise ValidationError(
                        f"El cliente '{client.name}' no tiene cuenta corriente habilitada",
                        details=[{"field": "client_id", "message": "Cliente sin cuenta corriente"}]
                    )

            register = self.cash.find_open_register(tenant_id, user_id, lock=True)
            if not register and not on_account:
                raise ConflictError("Debes abrir una caja antes de registrar ventas")

            products, variants = self._load_catalog(tenant_id, sale_data)
            self._check_stock(sale_data, products, variants)

            sale = Sale(
                id=uuid4(),
                tenant_id=tenant_id,
                ticket_number=self._next_ticket_number(tenant_id),
                user_id=user_id,
                cash_register_id=register.id if register else None,
                client_id=client.id if client else None,
                status=SaleStatus.COMPLETADO,
                subtotal=subtotal,
                discount=discount_amount,
                discount_type=DiscountType(sale_data.discount_type.value),
                total=total,
                payment_method=payment_method,
                has_mixed_payment=sale_data.has_mixed_payment,
                notes=sale_data.notes
            )
            self.db.add(sale)

            for position, item in enumerate(sale_data.items):
                product = products[item.product_id]
                name = product.name
                if item.variant_id:
                    name = f"{product.name} - {variants[item.variant_id].name}"
                sale.items.append(SaleItem(
                    tenant_id=tenant_id,
                    position=position,
                    product_id=product.id,
                    variant_id=item.variant_id,
                    product_name=name,
                    quantity=item.quantity,
                    price=money(item.unit_price),
                    subtotal=money(item.unit_price * item.quantity)
                ))

            for part in sale_data.payments or []:
                sale.payments.append(SalePayment(
                    tenant_id=tenant_id,
                    payment_method=PaymentMethod(part.method.value),
                    amount=money(part.amount),
                    reference=part.reference
                ))

            self.db.flush()

            for item in sale.items:
                self.inventory.apply_delta(
                    tenant_id=tenant_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    movement_type=StockMovementType.SALIDA,
                    reason=f"Venta #{sale.ticket_number}",
                    reference=str(sale.id),
                    user_id=user_id,
                )

            if on_account:
                self.credit.apply_debt_delta(client, total)
            elif total > ZERO:
                self.cash.record(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    movement_type=CashMovementType.INGRESO,
                    concept=CashMovementConcept.VENTA,
                    amount=total,
                    description=f"Venta #{sale.ticket_number} - {payment_method.value}",
                    reference=str(sale.id),
                    register=register,
                )

            self.db.commit()
            self.db.refresh(sale)
            logger.info(
                f"Venta #{sale.ticket_number} ({sale.id}) por ${sale.total} "
                f"{payment_method.value} con {len(sale.items)} líneas"
            )

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Conflicto de integridad creando venta: {e}")
            raise ConflictError("No se pudo registrar la venta por un conflicto concurrente, intenta nuevamente")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando venta: {e}", exc_info=True)
            raise InternalError()

        queue_sale_receipt(sale, client)
        return sale

    # ===== ANULAR =====

    def cancel_sale(self, sale_id: UUID, cancel_data: SaleCancel, tenant_id: UUID, user_id: UUID) -> Sale:
        """
        Anular una venta: repone stock, revierte caja o deuda y marca CANCELADO.

        No se anulan ventas ya canceladas ni ventas con devoluciones.
        """
        try:
            sale = self._get_sale_for_update(tenant_id, sale_id)
            if sale.status in NOT_CANCELABLE:
                raise ConflictError(NOT_CANCELABLE[sale.status])

            on_account = sale.payment_method == PaymentMethod.CUENTA_CORRIENTE
            client = None
            register = None
            if on_account and sale.client_id:
                client = self.credit.lock_client(tenant_id, sale.client_id)
            elif not on_account:
                register = self.cash.find_open_register(tenant_id, user_id, lock=True)
            self.inventory.lock_lines(tenant_id, sale.items)

            for item in sale.items:
                self.inventory.apply_delta(
                    tenant_id=tenant_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    movement_type=StockMovementType.ENTRADA,
                    reason=f"Anulación de venta #{sale.ticket_number}",
                    reference=str(sale.id),
                    user_id=user_id,
                )

            if on_account:
                if client:
                    self.credit.apply_debt_delta(client, -money(sale.total))
            else:
                self.cash.annotate_sale_movement(tenant_id, sale.id, f"ANULADO - {cancel_data.reason}")
                if money(sale.total) > ZERO:
                    self.cash.record(
                        tenant_id=tenant_id,
                        user_id=user_id,
                        movement_type=CashMovementType.EGRESO,
                        concept=CashMovementConcept.ANULACION_VENTA,
                        amount=sale.total,
                        description=f"Anulación de venta #{sale.ticket_number}: {cancel_data.reason}",
                        reference=str(sale.id),
                        register=register,
                    )

            sale.status = SaleStatus.CANCELADO
            sale.cancel_reason = cancel_data.reason
            sale.canceled_at = _utcnow()
            sale.canceled_by = user_id

            self.db.commit()
            self.db.refresh(sale)
            logger.info(f"Venta #{sale.ticket_number} ({sale.id}) anulada por {user_id}")
            return sale

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error anulando venta {sale_id}: {e}", exc_info=True)
            raise InternalError()

    # ===== CONSULTAS =====

    def get_sale(self, tenant_id: UUID, sale_id: UUID, only_user: Optional[UUID] = None) -> SaleDetail:
        query = self.db.query(Sale).options(
            selectinload(Sale.items), selectinload(Sale.payments)
        ).filter(
            Sale.tenant_id == tenant_id,
            Sale.id == sale_id
        )
        if only_user:
            query = query.filter(Sale.user_id == only_user)
        sale = query.first()
        if not sale:
            raise NotFoundError("Venta no encontrada")

        refunded = self.db.query(func.coalesce(func.sum(Refund.refund_amount), 0)).filter(
            Refund.tenant_id == tenant_id,
            Refund.sale_id == sale.id
        ).scalar()

        return SaleDetail(
            **SaleOut.model_validate(sale).model_dump(),
            client_name=sale.client.name if sale.client else None,
            refunded_amount=money(refunded or 0)
        )

    def list_sales(
        self,
        tenant_id: UUID,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        client_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        cash_register_id: Optional[UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> SaleList:
        """Ventas más recientes primero."""
        query = self.db.query(Sale).filter(Sale.tenant_id == tenant_id)
        if status:
            query = query.filter(Sale.status == SaleStatus(status))
        if payment_method:
            query = query.filter(Sale.payment_method == PaymentMethod(payment_method))
        if client_id:
            query = query.filter(Sale.client_id == client_id)
        if user_id:
            query = query.filter(Sale.user_id == user_id)
        if cash_register_id:
            query = query.filter(Sale.cash_register_id == cash_register_id)
        if start_date:
            query = query.filter(Sale.created_at >= start_date)
        if end_date:
            query = query.filter(Sale.created_at <= end_date)

        total = query.count()
        sales: List[Sale] = query.options(
            selectinload(Sale.items), selectinload(Sale.payments)
        ).order_by(desc(Sale.created_at), desc(Sale.ticket_number)).offset(offset).limit(limit).all()

        return SaleList(
            items=[SaleOut.model_validate(s) for s in sales],
            total=total,
            limit=limit,
            offset=offset
        )
