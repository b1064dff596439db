from mostrador.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint, Numeric, Enum, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from mostrador.common.mixins import TenantMixin, TimestampMixin
import enum


class StockMovementType(str, enum.Enum):
    """Tipos de movimiento de inventario"""
    ENTRADA = "ENTRADA"              # suma
    SALIDA = "SALIDA"                # resta
    AJUSTE = "AJUSTE"                # fija valor absoluto
    TRANSFERENCIA = "TRANSFERENCIA"  # salida hacia otro local


class Product(Base, TenantMixin, TimestampMixin):
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    sku = Column(String(50), nullable=False)
    barcode = Column(String(50), nullable=True)
    description = Column(String(255), nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)  # Umbral para alertas
    cost = Column(Numeric(15, 2), nullable=False, default=0)
    price = Column(Numeric(15, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")
    movements = relationship("StockMovement", back_populates="product")

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )


class ProductVariant(Base, TenantMixin, TimestampMixin):
    __tablename__ = "product_variants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)  # ej. "Talle M / Rojo"
    sku = Column(String(50), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(15, 2), nullable=True)  # None = usa el precio del producto
    is_active = Column(Boolean, nullable=False, default=True)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_variant_tenant_sku"),
        CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )


class StockMovement(Base, TenantMixin, TimestampMixin):
    """
    Historial inmutable de cambios de stock.

    Se escribe sólo desde InventoryLedger.apply_delta; nunca se actualiza ni borra.
    quantity es la cantidad informada (para AJUSTE, el nuevo valor absoluto).
    """
    __tablename__ = "stock_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=True, index=True)
    type = Column(Enum(StockMovementType), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    reference = Column(String(100), nullable=True, index=True)  # venta, devolución, compra
    user_id = Column(UUID(as_uuid=True), nullable=True)

    product = relationship("Product", back_populates="movements")
    variant = relationship("ProductVariant")

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock
