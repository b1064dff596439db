"""
Modelos SQLAlchemy de ventas y devoluciones

- Sale: ticket de venta con número correlativo por negocio
- SaleItem: líneas de la venta (producto o variante)
- SalePayment: partes de un pago mixto
- Refund / RefundItem: devoluciones totales o parciales

Estados de venta:
COMPLETADO -> CANCELADO
COMPLETADO -> PARCIALMENTE_REEMBOLSADO -> REEMBOLSADO
"""

from mostrador.database.database import Base
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Enum, Text,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from mostrador.common.mixins import TenantMixin, TimestampMixin
import enum


# ===== ENUMS =====

class SaleStatus(str, enum.Enum):
    COMPLETADO = "COMPLETADO"
    CANCELADO = "CANCELADO"
    REEMBOLSADO = "REEMBOLSADO"
    PARCIALMENTE_REEMBOLSADO = "PARCIALMENTE_REEMBOLSADO"


class PaymentMethod(str, enum.Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA_DEBITO = "TARJETA_DEBITO"
    TARJETA_CREDITO = "TARJETA_CREDITO"
    TRANSFERENCIA = "TRANSFERENCIA"
    QR = "QR"
    CUENTA_CORRIENTE = "CUENTA_CORRIENTE"
    MIXTO = "MIXTO"
    OTRO = "OTRO"


class DiscountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class RefundType(str, enum.Enum):
    TOTAL = "TOTAL"
    PARCIAL = "PARCIAL"


# ===== MODELOS =====

class Sale(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    ticket_number = Column(Integer, nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    status = Column(Enum(SaleStatus), nullable=False, default=SaleStatus.COMPLETADO, index=True)

    subtotal = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(15, 2), nullable=False, default=0)  # monto descontado
    discount_type = Column(Enum(DiscountType), nullable=False, default=DiscountType.FIXED)
    total = Column(Numeric(15, 2), nullable=False)

    payment_method = Column(Enum(PaymentMethod), nullable=False, index=True)
    has_mixed_payment = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    cancel_reason = Column(Text, nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    canceled_by = Column(UUID(as_uuid=True), nullable=True)

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.position")
    payments = relationship("SalePayment", back_populates="sale", cascade="all, delete-orphan")
    refunds = relationship("Refund", back_populates="sale", order_by="Refund.created_at")
    client = relationship("Client")
    cash_register = relationship("CashRegister")

    __table_args__ = (
        UniqueConstraint("tenant_id", "ticket_number", name="uq_sale_tenant_ticket"),
        CheckConstraint("total >= 0", name="ck_sale_total_non_negative"),
    )


class SaleItem(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sale_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=True)
    product_name = Column(String(255), nullable=False)  # snapshot al momento de la venta
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    subtotal = Column(Numeric(15, 2), nullable=False)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_item_quantity_positive"),
    )


class SalePayment(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sale_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    reference = Column(String(100), nullable=True)

    sale = relationship("Sale", back_populates="payments")


class Refund(Base, TenantMixin, TimestampMixin):
    __tablename__ = "refunds"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    type = Column(Enum(RefundType), nullable=False)
    reason = Column(Text, nullable=False)
    refund_amount = Column(Numeric(15, 2), nullable=False)
    restock_items = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)

    sale = relationship("Sale", back_populates="refunds")
    items = relationship("RefundItem", back_populates="refund", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("refund_amount > 0", name="ck_refund_amount_positive"),
    )


class RefundItem(Base, TenantMixin, TimestampMixin):
    __tablename__ = "refund_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    refund_id = Column(UUID(as_uuid=True), ForeignKey("refunds.id"), nullable=False, index=True)
    sale_item_id = Column(UUID(as_uuid=True), ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    subtotal = Column(Numeric(15, 2), nullable=False)

    refund = relationship("Refund", back_populates="items")
    sale_item = relationship("SaleItem")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_refund_item_quantity_positive"),
    )
