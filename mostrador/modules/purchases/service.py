"""
Servicio de compras

- create_purchase: ENTRADA por línea (referencia = id de la compra) y costo del producto actualizado
- void_purchase: RECIBIDA -> ANULADA con SALIDA por línea (aplica STOCK_OVERSELL_POLICY)
"""

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import desc
from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime, timezone
import logging

from mostrador.common.money import money, money_sum
from mostrador.core.exceptions import ConflictError, DomainError, InternalError, NotFoundError
from mostrador.modules.inventory.service import InventoryLedger
from mostrador.modules.products.models import StockMovementType
from mostrador.modules.purchases.models import Purchase, PurchaseItem, PurchaseStatus
from mostrador.modules.purchases.schemas import PurchaseCreate, PurchaseVoid, PurchaseOut, PurchaseList

logger = logging.getLogger(__name__)


class PurchaseService:
    """Servicio para compras a proveedores"""

    def __init__(self, db: Session):
        self.db = db
        self.inventory = InventoryLedger(db)

    def create_purchase(self, purchase_data: PurchaseCreate, tenant_id: UUID, user_id: UUID) -> Purchase:
        try:
            products = self.inventory.lock_products(tenant_id, [i.product_id for i in purchase_data.items])
            variants = self.inventory.lock_variants(
                tenant_id, [i.variant_id for i in purchase_data.items if i.variant_id]
            )

            purchase = Purchase(
                id=uuid4(),
                tenant_id=tenant_id,
                supplier_name=purchase_data.supplier_name,
                invoice_number=purchase_data.invoice_number,
                status=PurchaseStatus.RECIBIDA,
                notes=purchase_data.notes,
                user_id=user_id
            )

            for position, item in enumerate(purchase_data.items):
                product = products.get(item.product_id)
                if not product:
                    raise NotFoundError(f"Producto {item.product_id} no encontrado")
                name = product.name
                if item.variant_id:
                    variant = variants.get(item.variant_id)
                    if not variant or variant.product_id != product.id:
                        raise NotFoundError(f"Variante {item.variant_id} no encontrada")
                    name = f"{product.name} - {variant.name}"

                purchase.items.append(PurchaseItem(
                    tenant_id=tenant_id,
                    position=position,
                    product_id=product.id,
                    variant_id=item.variant_id,
                    product_name=name,
                    quantity=item.quantity,
                    cost=money(item.cost),
                    subtotal=money(item.cost * item.quantity)
                ))
                product.cost = money(item.cost)

            purchase.subtotal = money_sum(i.subtotal for i in purchase.items)
            purchase.tax = money(purchase_data.tax)
            purchase.total = money(purchase.subtotal + purchase.tax)
            self.db.add(purchase)
            self.db.flush()

            label = f"Compra {purchase.invoice_number or purchase.id} - {purchase.supplier_name}"
            for item in purchase.items:
                self.inventory.apply_delta(
                    tenant_id=tenant_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    movement_type=StockMovementType.ENTRADA,
                    reason=label,
                    reference=str(purchase.id),
                    user_id=user_id,
                )

            self.db.commit()
            self.db.refresh(purchase)
            logger.info(f"Compra {purchase.id} a {purchase.supplier_name} por ${purchase.total}")
            return purchase

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando compra: {e}", exc_info=True)
            raise InternalError()

    def void_purchase(self, purchase_id: UUID, void_data: PurchaseVoid, tenant_id: UUID, user_id: UUID) -> Purchase:
        """Anular una compra retirando del stock las unidades ingresadas."""
        try:
            purchase = self.db.query(Purchase).filter(
                Purchase.tenant_id == tenant_id,
                Purchase.id == purchase_id
            ).with_for_update().first()
            if not purchase:
                raise NotFoundError("Compra no encontrada")
            if purchase.status == PurchaseStatus.ANULADA:
                raise ConflictError("La compra ya está anulada")

            self.inventory.lock_lines(tenant_id, purchase.items)
            for item in purchase.items:
                self.inventory.apply_delta(
                    tenant_id=tenant_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    movement_type=StockMovementType.SALIDA,
                    reason=f"Anulación de compra {purchase.invoice_number or purchase.id}",
                    reference=str(purchase.id),
                    user_id=user_id,
                )

            purchase.status = PurchaseStatus.ANULADA
            purchase.void_reason = void_data.reason
            purchase.voided_at = datetime.now(timezone.utc)
            purchase.voided_by = user_id

            self.db.commit()
            self.db.refresh(purchase)
            logger.info(f"Compra {purchase.id} anulada por {user_id}")
            return purchase

        except DomainError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error anulando compra {purchase_id}: {e}", exc_info=True)
            raise InternalError()

    def get_purchase(self, tenant_id: UUID, purchase_id: UUID) -> Purchase:
        purchase = self.db.query(Purchase).options(selectinload(Purchase.items)).filter(
            Purchase.tenant_id == tenant_id,
            Purchase.id == purchase_id
        ).first()
        if not purchase:
            raise NotFoundError("Compra no encontrada")
        return purchase

    def list_purchases(
        self,
        tenant_id: UUID,
        status: Optional[str] = None,
        supplier: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> PurchaseList:
        query = self.db.query(Purchase).filter(Purchase.tenant_id == tenant_id)
        if status:
            query = query.filter(Purchase.status == PurchaseStatus(status))
        if supplier:
            query = query.filter(Purchase.supplier_name.ilike(f"%{supplier}%"))
        if start_date:
            query = query.filter(Purchase.created_at >= start_date)
        if end_date:
            query = query.filter(Purchase.created_at <= end_date)

        total = query.count()
        purchases = query.options(selectinload(Purchase.items)).order_by(
            desc(Purchase.created_at)
        ).offset(offset).limit(limit).all()
        return PurchaseList(
            items=[PurchaseOut.model_validate(p) for p in purchases],
            total=total,
            limit=limit,
            offset=offset
        )
