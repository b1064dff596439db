"""
Libro de inventario.

Única puerta de entrada para modificar stock de productos y variantes.
apply_delta() nunca hace commit: siempre corre dentro de la transacción de
quien lo llama (venta, anulación, devolución, compra o movimiento manual).
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID
from datetime import datetime
import logging

from mostrador.core.config import settings
from mostrador.core.exceptions import (
    ConflictError, DomainError, InternalError, NotFoundError, ValidationError
)
from mostrador.modules.products.models import Product, ProductVariant, StockMovement, StockMovementType
from mostrador.modules.inventory.schemas import (
    StockMovementCreate, StockMovementOut, StockMovementList, LowStockAlert, LowStockAlertList
)

logger = logging.getLogger(__name__)


def _movement_type(value: Union[str, StockMovementType]) -> StockMovementType:
    if isinstance(value, StockMovementType):
        return value
    return StockMovementType(getattr(value, "value", value))


class InventoryLedger:

    def __init__(self, db: Session):
        self.db = db

    # ===== LOCKS =====

    def lock_products(self, tenant_id: UUID, product_ids: Iterable[UUID]) -> Dict[UUID, Product]:
        """
        Bloquea (SELECT ... FOR UPDATE) los productos pedidos en orden de id.
        Los ids inexistentes o de otro negocio no aparecen en el resultado.
        """
        ids = sorted(set(product_ids), key=str)
        if not ids:
            return {}
        rows = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.id.in_(ids)
        ).order_by(Product.id).with_for_update().all()
        return {row.id: row for row in rows}

    def lock_variants(self, tenant_id: UUID, variant_ids: Iterable[UUID]) -> Dict[UUID, ProductVariant]:
        ids = sorted(set(variant_ids), key=str)
        if not ids:
            return {}
        rows = self.db.query(ProductVariant).filter(
            ProductVariant.tenant_id == tenant_id,
            ProductVariant.id.in_(ids)
        ).order_by(ProductVariant.id).with_for_update().all()
        return {row.id: row for row in rows}

    def lock_lines(self, tenant_id: UUID, lines: Iterable) -> None:
        """
        Bloquea de una vez todos los productos y variantes de las líneas
        (objetos con product_id / variant_id), antes de aplicar los deltas uno a uno.
        """
        lines = list(lines)
        self.lock_products(tenant_id, [line.product_id for line in lines])
        self.lock_variants(tenant_id, [line.variant_id for line in lines if line.variant_id])

    def _lock_target(self, tenant_id: UUID, product_id: UUID, variant_id: Optional[UUID]):
        product = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.id == product_id
        ).with_for_update().first()
        if not product:
            raise NotFoundError("Producto no encontrado")

        if variant_id is None:
            return product, None

        variant = self.db.query(ProductVariant).filter(
            ProductVariant.tenant_id == tenant_id,
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id
        ).with_for_update().first()
        if not variant:
            raise NotFoundError("Variante no encontrada")
        return product, variant

    # ===== LEDGER =====

    def apply_delta(
        self,
        tenant_id: UUID,
        product_id: UUID,
        quantity: int,
        movement_type: Union[str, StockMovementType],
        reason: Optional[str] = None,
        reference: Optional[str] = None,
        variant_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
    ) -> StockMovement:
        """
        Aplica un cambio de stock y registra el StockMovement correspondiente.

        ENTRADA suma, SALIDA y TRANSFERENCIA restan, AJUSTE fija el valor absoluto.
        Si una salida dejaría el stock bajo cero se aplica STOCK_OVERSELL_POLICY:
        "clamp" deja el stock en 0, "reject" lanza ConflictError.
        """
        movement_type = _movement_type(movement_type)
        quantity = int(quantity)

        if movement_type == StockMovementType.AJUSTE:
            if quantity < 0:
                raise ValidationError(
                    "El stock ajustado no puede ser negativo",
                    details=[{"field": "quantity", "message": "Debe ser mayor o igual a cero"}]
                )
        elif quantity <= 0:
            raise ValidationError(
                "La cantidad del movimiento debe ser mayor a cero",
                details=[{"field": "quantity", "message": "Debe ser mayor a cero"}]
            )

        product, variant = self._lock_target(tenant_id, product_id, variant_id)
        target = variant if variant is not None else product
        previous_stock = target.stock or 0

        if movement_type == StockMovementType.ENTRADA:
            new_stock = previous_stock + quantity
        elif movement_type == StockMovementType.AJUSTE:
            new_stock = quantity
        else:
            new_stock = previous_stock - quantity

        if new_stock < 0:
            label = f"{product.name} - {variant.name}" if variant is not None else product.name
            if settings.STOCK_OVERSELL_POLICY == "reject":
                raise ConflictError(
                    f"Stock insuficiente para '{label}'. Disponible: {previous_stock}, Solicitado: {quantity}",
                    extra={"product_id": str(product.id), "available": previous_stock, "requested": quantity}
                )
            logger.warning(
                f"Stock de '{label}' quedaría en {new_stock}; se ajusta a 0 (ref={reference})"
            )
            new_stock = 0

        target.stock = new_stock

        movement = StockMovement(
            tenant_id=tenant_id,
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
            reference=reference,
            user_id=user_id,
        )
        self.db.add(movement)
        self.db.flush()

        logger.debug(
            f"Stock {movement_type.value} producto={product.id} variante={variant_id} "
            f"{previous_stock} -> {new_stock} ref={reference}"
        )
        return movement

    # ===== OPERACIONES EXPUESTAS =====

    def register_movement(
        self,
        tenant_id: UUID,
        movement_data: StockMovementCreate,
        user_id: UUID
    ) -> StockMovementOut:
        """Movimiento manual de stock: una transacción propia."""
        try:
            movement = self.apply_delta(
                tenant_id=tenant_id,
                product_id=movement_data.product_id,
                variant_id=movement_data.variant_id,
                quantity=movement_data.quantity,
                movement_type=movement_data.type.value,
                reason=movement_data.reason,
                reference=movement_data.reference,
                user_id=user_id,
            )
            self.db.commit()
            self.db.refresh(movement)
            logger.info(
                f"Movimiento manual {movement.type.value} de {movement.quantity} "
                f"sobre producto {movement.product_id}: {movement.previous_stock} -> {movement.new_stock}"
            )
            return self._movement_to_output(movement)

        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Error de integridad al registrar el movimiento")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error registrando movimiento de stock: {e}", exc_info=True)
            raise InternalError()

    def get_movements(
        self,
        tenant_id: UUID,
        product_id: Optional[UUID] = None,
        variant_id: Optional[UUID] = None,
        movement_type: Optional[str] = None,
        reference: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> StockMovementList:
        """Historial de movimientos, más recientes primero."""
        if product_id:
            exists = self.db.query(Product.id).filter(
                Product.tenant_id == tenant_id, Product.id == product_id
            ).first()
            if not exists:
                raise NotFoundError("Producto no encontrado")

        query = self.db.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)
        if product_id:
            query = query.filter(StockMovement.product_id == product_id)
        if variant_id:
            query = query.filter(StockMovement.variant_id == variant_id)
        if movement_type:
            query = query.filter(StockMovement.type == _movement_type(movement_type))
        if reference:
            query = query.filter(StockMovement.reference == reference)
        if start_date:
            query = query.filter(StockMovement.created_at >= start_date)
        if end_date:
            query = query.filter(StockMovement.created_at <= end_date)

        total = query.count()
        movements = query.order_by(desc(StockMovement.created_at)).offset(offset).limit(limit).all()

        return StockMovementList(
            items=[self._movement_to_output(m) for m in movements],
            total=total,
            limit=limit,
            offset=offset
        )

    def get_low_stock_alerts(self, tenant_id: UUID) -> LowStockAlertList:
        """Productos y variantes activos con stock <= stock mínimo."""
        products = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.is_active == True,
            Product.stock <= Product.min_stock
        ).order_by(Product.stock, Product.name).all()

        variants = self.db.query(ProductVariant).join(Product).filter(
            ProductVariant.tenant_id == tenant_id,
            ProductVariant.is_active == True,
            Product.is_active == True,
            ProductVariant.stock <= ProductVariant.min_stock
        ).order_by(ProductVariant.stock, ProductVariant.name).all()

        alerts: List[LowStockAlert] = [
            LowStockAlert(
                product_id=p.id,
                name=p.name,
                sku=p.sku,
                stock=p.stock,
                min_stock=p.min_stock,
                price=p.price,
                out_of_stock=p.stock <= 0,
            )
            for p in products
        ]
        alerts.extend(
            LowStockAlert(
                product_id=v.product_id,
                variant_id=v.id,
                name=f"{v.product.name} - {v.name}",
                sku=v.sku,
                stock=v.stock,
                min_stock=v.min_stock,
                price=v.price if v.price is not None else v.product.price,
                out_of_stock=v.stock <= 0,
            )
            for v in variants
        )

        return LowStockAlertList(
            items=alerts,
            total=len(alerts),
            out_of_stock_count=sum(1 for a in alerts if a.out_of_stock)
        )

    def _movement_to_output(self, movement: StockMovement) -> StockMovementOut:
        return StockMovementOut(
            id=movement.id,
            product_id=movement.product_id,
            variant_id=movement.variant_id,
            type=movement.type.value,
            quantity=movement.quantity,
            previous_stock=movement.previous_stock,
            new_stock=movement.new_stock,
            reason=movement.reason,
            reference=movement.reference,
            user_id=movement.user_id,
            created_at=movement.created_at,
            product_name=movement.product.name if movement.product else None,
            product_sku=movement.product.sku if movement.product else None,
            variant_name=movement.variant.name if movement.variant else None,
        )
