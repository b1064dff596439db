"""
Esquemas Pydantic para ventas y devoluciones

Las reglas que dependen de configuración (largo mínimo del motivo, partes de
un pago mixto, tolerancia de redondeo) se leen de settings al validar.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum

from mostrador.core.config import settings


# ===== ENUMS =====

class SaleStatus(str, Enum):
    COMPLETADO = "COMPLETADO"
    CANCELADO = "CANCELADO"
    REEMBOLSADO = "REEMBOLSADO"
    PARCIALMENTE_REEMBOLSADO = "PARCIALMENTE_REEMBOLSADO"


class PaymentMethod(str, Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA_DEBITO = "TARJETA_DEBITO"
    TARJETA_CREDITO = "TARJETA_CREDITO"
    TRANSFERENCIA = "TRANSFERENCIA"
    QR = "QR"
    CUENTA_CORRIENTE = "CUENTA_CORRIENTE"
    MIXTO = "MIXTO"
    OTRO = "OTRO"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class RefundType(str, Enum):
    TOTAL = "TOTAL"
    PARCIAL = "PARCIAL"


def _validate_reason(v: str) -> str:
    cleaned = (v or "").strip()
    if len(cleaned) < settings.MIN_REASON_LENGTH:
        raise ValueError(f"El motivo debe tener al menos {settings.MIN_REASON_LENGTH} caracteres")
    return cleaned


# ===== SALE SCHEMAS =====

class SaleItemCreate(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., gt=0, description="Cantidad vendida")
    unit_price: Decimal = Field(..., gt=0, description="Precio unitario")


class SalePaymentCreate(BaseModel):
    """Parte de un pago mixto"""
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=100)


class SaleCreate(BaseModel):
    """
    Esquema para crear una venta.

    - **total**: total declarado; debe coincidir con Σ(cantidad × precio) − descuento
    - **payments**: partes de un pago mixto (sólo con MIXTO o has_mixed_payment)
    """
    items: List[SaleItemCreate] = Field(..., min_length=1)
    payment_method: PaymentMethod
    client_id: Optional[UUID] = None
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_type: DiscountType = DiscountType.FIXED
    total: Decimal = Field(..., ge=0)
    has_mixed_payment: bool = False
    payments: Optional[List[SalePaymentCreate]] = None
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_payments(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount > 100:
            raise ValueError("El descuento porcentual no puede superar 100")

        mixed = self.payment_method == PaymentMethod.MIXTO or self.has_mixed_payment
        if self.payments and not mixed:
            raise ValueError("Sólo se admiten pagos divididos con medio de pago MIXTO")
        if self.payment_method == PaymentMethod.MIXTO and not self.payments:
            raise ValueError("Un pago MIXTO requiere el detalle de pagos")

        if self.payments:
            if len(self.payments) > settings.MAX_SPLIT_PAYMENTS:
                raise ValueError(f"Un pago mixto admite como máximo {settings.MAX_SPLIT_PAYMENTS} partes")
            for part in self.payments:
                if part.method in (PaymentMethod.CUENTA_CORRIENTE, PaymentMethod.MIXTO):
                    raise ValueError(f"{part.method.value} no puede ser parte de un pago mixto")
            paid = sum((p.amount for p in self.payments), Decimal("0"))
            if abs(paid - self.total) > settings.MONEY_TOLERANCE:
                raise ValueError("La suma de los pagos debe ser igual al total de la venta")
            self.has_mixed_payment = True
        return self


class SaleCancel(BaseModel):
    reason: str = Field(..., max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return _validate_reason(v)


class SaleItemOut(BaseModel):
    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    product_name: str
    quantity: int
    price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class SalePaymentOut(BaseModel):
    payment_method: PaymentMethod
    amount: Decimal
    reference: Optional[str] = None

    model_config = {"from_attributes": True}


class SaleOut(BaseModel):
    id: UUID
    ticket_number: int
    user_id: UUID
    cash_register_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    status: SaleStatus
    subtotal: Decimal
    discount: Decimal
    discount_type: DiscountType
    total: Decimal
    payment_method: PaymentMethod
    has_mixed_payment: bool
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    created_at: datetime
    items: List[SaleItemOut] = []
    payments: List[SalePaymentOut] = []

    model_config = {"from_attributes": True}


class SaleDetail(SaleOut):
    client_name: Optional[str] = None
    refunded_amount: Decimal = Decimal("0")


class SaleList(BaseModel):
    items: List[SaleOut]
    total: int
    limit: int
    offset: int


# ===== REFUND SCHEMAS =====

class RefundItemCreate(BaseModel):
    sale_item_id: UUID
    product_id: Optional[UUID] = Field(None, description="Se toma de la línea de venta")
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)
    subtotal: Decimal = Field(..., gt=0)


class RefundCreate(BaseModel):
    """
    Esquema para crear una devolución.

    - **refund_amount**: monto a devolver; el acumulado no puede superar el total de la venta
    - **restock_items**: devuelve las unidades al stock (por defecto sí)
    """
    type: RefundType
    reason: str = Field(..., max_length=500)
    refund_amount: Decimal = Field(..., gt=0)
    items: List[RefundItemCreate] = Field(..., min_length=1)
    restock_items: bool = True
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return _validate_reason(v)


class RefundItemOut(BaseModel):
    id: UUID
    sale_item_id: UUID
    product_id: UUID
    quantity: int
    price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class RefundOut(BaseModel):
    id: UUID
    sale_id: UUID
    type: RefundType
    reason: str
    refund_amount: Decimal
    restock_items: bool
    notes: Optional[str] = None
    user_id: UUID
    created_at: datetime
    items: List[RefundItemOut] = []

    model_config = {"from_attributes": True}


class RefundList(BaseModel):
    items: List[RefundOut]
    total: int
    total_refunded: Decimal
