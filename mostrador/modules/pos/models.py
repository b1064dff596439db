"""
Modelos SQLAlchemy para el módulo POS (Point of Sale)

- CashRegister: sesión de caja de un usuario, con apertura y cierre (arqueo)
- CashMovement: libro de caja, filas inmutables

Reglas:
- Una sola caja OPEN por (negocio, usuario), reforzada con un índice único parcial
- APERTURA / INGRESO suman al saldo; CIERRE / EGRESO restan
"""

from mostrador.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, Index, CheckConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from decimal import Decimal
from mostrador.common.mixins import TenantMixin, TimestampMixin
import enum


# ===== ENUMS =====

class CashRegisterStatus(str, enum.Enum):
    """Estados de caja registradora"""
    OPEN = "OPEN"
    CLOSED = "CLOSED"  # terminal


class CashMovementType(str, enum.Enum):
    """Tipos de movimiento de caja"""
    APERTURA = "APERTURA"
    CIERRE = "CIERRE"
    INGRESO = "INGRESO"
    EGRESO = "EGRESO"


class CashMovementConcept(str, enum.Enum):
    """Origen del movimiento"""
    VENTA = "VENTA"
    ANULACION_VENTA = "ANULACION_VENTA"
    DEVOLUCION = "DEVOLUCION"
    MANUAL = "MANUAL"
    APERTURA = "APERTURA"
    CIERRE = "CIERRE"


INBOUND_TYPES = (CashMovementType.APERTURA, CashMovementType.INGRESO)


# ===== MODELOS =====

class CashRegister(Base, TenantMixin, TimestampMixin):
    """
    Caja registradora de un usuario.

    Los totales por medio de pago, el monto esperado y la diferencia se
    calculan y congelan al cerrar.
    """
    __tablename__ = "cash_registers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(Enum(CashRegisterStatus), nullable=False, default=CashRegisterStatus.OPEN, index=True)

    opening_amount = Column(Numeric(15, 2), nullable=False, default=0)
    closing_amount = Column(Numeric(15, 2), nullable=True)   # contado al cerrar
    expected_amount = Column(Numeric(15, 2), nullable=True)  # apertura + efectivo
    difference = Column(Numeric(15, 2), nullable=True)       # contado - esperado

    # Totales por medio de pago (sólo ventas COMPLETADO)
    total_cash = Column(Numeric(15, 2), nullable=False, default=0)
    total_card = Column(Numeric(15, 2), nullable=False, default=0)
    total_transfer = Column(Numeric(15, 2), nullable=False, default=0)
    total_other = Column(Numeric(15, 2), nullable=False, default=0)
    sales_count = Column(Integer, nullable=False, default=0)

    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    movements = relationship(
        "CashMovement",
        back_populates="cash_register",
        order_by="CashMovement.created_at"
    )

    __table_args__ = (
        Index(
            "uq_cash_register_open_per_user",
            "tenant_id", "user_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        CheckConstraint("opening_amount >= 0", name="ck_cash_register_opening_non_negative"),
    )

    @property
    def calculated_balance(self) -> Decimal:
        """Saldo a partir de los movimientos (la APERTURA ya incluye el monto inicial)."""
        return sum((m.signed_amount for m in self.movements), Decimal("0"))


class CashMovement(Base, TenantMixin, TimestampMixin):
    """
    Movimiento de caja. Inmutable salvo la anotación de la descripción de
    una VENTA cuando la venta se anula.
    """
    __tablename__ = "cash_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)
    type = Column(Enum(CashMovementType), nullable=False, index=True)
    concept = Column(Enum(CashMovementConcept), nullable=False, default=CashMovementConcept.MANUAL)
    amount = Column(Numeric(15, 2), nullable=False)  # Sin signo; 0 sólo en APERTURA/CIERRE
    description = Column(Text, nullable=True)
    reference = Column(String(100), nullable=True, index=True)  # venta, devolución
    user_id = Column(UUID(as_uuid=True), nullable=False)

    cash_register = relationship("CashRegister", back_populates="movements")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_cash_movement_amount_non_negative"),
    )

    @property
    def signed_amount(self) -> Decimal:
        """Monto con signo según el tipo de movimiento"""
        amount = Decimal(self.amount or 0)
        return amount if self.type in INBOUND_TYPES else -amount
