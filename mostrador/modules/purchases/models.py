"""
Modelos SQLAlchemy para compras a proveedores

Una compra RECIBIDA ingresa mercadería (ENTRADA por línea) y actualiza el
costo de cada producto. Anularla (ANULADA) retira esas unidades.
"""

from mostrador.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from mostrador.common.mixins import TenantMixin, TimestampMixin
import enum


class PurchaseStatus(str, enum.Enum):
    RECIBIDA = "RECIBIDA"
    ANULADA = "ANULADA"


class Purchase(Base, TenantMixin, TimestampMixin):
    __tablename__ = "purchases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supplier_name = Column(String(255), nullable=False)
    invoice_number = Column(String(50), nullable=True)
    status = Column(Enum(PurchaseStatus), nullable=False, default=PurchaseStatus.RECIBIDA, index=True)
    subtotal = Column(Numeric(15, 2), nullable=False)
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)

    void_reason = Column(Text, nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    voided_by = Column(UUID(as_uuid=True), nullable=True)

    items = relationship("PurchaseItem", back_populates="purchase", cascade="all, delete-orphan",
                         order_by="PurchaseItem.position")


class PurchaseItem(Base, TenantMixin, TimestampMixin):
    __tablename__ = "purchase_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_id = Column(UUID(as_uuid=True), ForeignKey("purchases.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=True)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    cost = Column(Numeric(15, 2), nullable=False)
    subtotal = Column(Numeric(15, 2), nullable=False)

    purchase = relationship("Purchase", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_purchase_item_quantity_positive"),
    )
