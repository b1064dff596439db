"""
Esquemas Pydantic para clientes, cuenta corriente y pagos
"""

from pydantic import BaseModel, Field, EmailStr, field_validator
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from enum import Enum


class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELINQUENT = "DELINQUENT"


class ClientPaymentMethod(str, Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA_DEBITO = "TARJETA_DEBITO"
    TARJETA_CREDITO = "TARJETA_CREDITO"
    TRANSFERENCIA = "TRANSFERENCIA"
    QR = "QR"
    OTRO = "OTRO"


# ===== CLIENT SCHEMAS =====

class ClientBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=150, description="Nombre o razón social")
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=30, description="CUIT/CUIL/DNI")
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        cleaned = v.strip()
        if len(cleaned) < 2:
            raise ValueError('El nombre debe tener al menos 2 caracteres')
        return cleaned


class ClientCreate(ClientBase):
    has_credit_account: bool = False
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0, description="Límite de cuenta corriente")


class ClientUpdate(BaseModel):
    """Actualización parcial. La deuda y el estado no se editan directamente."""
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=30)
    notes: Optional[str] = Field(None, max_length=1000)
    has_credit_account: Optional[bool] = None
    is_active: Optional[bool] = None


class CreditLimitUpdate(BaseModel):
    credit_limit: Decimal = Field(..., ge=0, description="Nuevo límite de crédito")


class ClientOut(BaseModel):
    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_id: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    has_credit_account: bool
    credit_limit: Decimal
    current_debt: Decimal
    status: ClientStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ClientList(BaseModel):
    items: List[ClientOut]
    total: int
    limit: int
    offset: int


class ClientCreditSummary(BaseModel):
    client_id: UUID
    has_credit_account: bool
    credit_limit: Decimal
    current_debt: Decimal
    available_credit: Decimal
    credit_usage_percentage: Decimal
    status: ClientStatus


# ===== PAYMENT SCHEMAS =====

class ClientPaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Monto del pago")
    payment_method: ClientPaymentMethod
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class ClientPaymentOut(BaseModel):
    id: UUID
    client_id: UUID
    amount: Decimal
    payment_method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    user_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class ClientPaymentResult(BaseModel):
    payment: ClientPaymentOut
    client: ClientOut


class ClientPaymentList(BaseModel):
    items: List[ClientPaymentOut]
    total: int
    total_paid: Decimal


# ===== ACTIVITY =====

class ClientActivityOut(BaseModel):
    id: UUID
    action: str
    description: str
    details: Optional[Dict[str, Any]] = None
    user_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}
