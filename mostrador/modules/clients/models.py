"""
Modelos SQLAlchemy para clientes y cuenta corriente

- Client: cliente del negocio con saldo de cuenta corriente
- ClientPayment: pagos que reducen la deuda
- ClientActivityLog: bitácora informativa de cambios (no es fuente de verdad)
"""

from mostrador.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric, Enum, Text, JSON, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from decimal import Decimal
from mostrador.common.mixins import TenantMixin, TimestampMixin
import enum


class ClientStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DELINQUENT = "DELINQUENT"  # deuda por encima del límite


class Client(Base, TenantMixin, TimestampMixin):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, index=True)
    email = Column(String(150), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(255), nullable=True)
    tax_id = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Cuenta corriente
    has_credit_account = Column(Boolean, nullable=False, default=False)
    credit_limit = Column(Numeric(15, 2), nullable=False, default=0)
    current_debt = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(Enum(ClientStatus), nullable=False, default=ClientStatus.ACTIVE, index=True)

    payments = relationship("ClientPayment", back_populates="client", order_by="ClientPayment.created_at.desc()")
    activity = relationship("ClientActivityLog", back_populates="client", order_by="ClientActivityLog.created_at.desc()")

    __table_args__ = (
        CheckConstraint("current_debt >= 0", name="ck_client_debt_non_negative"),
        CheckConstraint("credit_limit >= 0", name="ck_client_credit_limit_non_negative"),
    )

    @property
    def available_credit(self) -> Decimal:
        return Decimal(self.credit_limit or 0) - Decimal(self.current_debt or 0)


class ClientPayment(Base, TenantMixin, TimestampMixin):
    __tablename__ = "client_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)

    client = relationship("Client", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_client_payment_amount_positive"),
    )


class ClientActivityLog(Base, TenantMixin, TimestampMixin):
    __tablename__ = "client_activity_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False)  # PAYMENT, CREDIT_LIMIT_CHANGE, UPDATE, ...
    description = Column(Text, nullable=False)
    details = Column("metadata", JSON, nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=True)

    client = relationship("Client", back_populates="activity")
