from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum


class PurchaseStatus(str, Enum):
    RECIBIDA = "RECIBIDA"
    ANULADA = "ANULADA"


class PurchaseItemCreate(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., gt=0)
    cost: Decimal = Field(..., ge=0, description="Costo unitario")


class PurchaseCreate(BaseModel):
    """
    Esquema para registrar una compra recibida.

    - **tax**: impuestos de la factura del proveedor (se suman al subtotal)
    """
    supplier_name: str = Field(..., min_length=1, max_length=255)
    invoice_number: Optional[str] = Field(None, max_length=50)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    items: List[PurchaseItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("supplier_name")
    @classmethod
    def validate_supplier(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("El proveedor es obligatorio")
        return cleaned


class PurchaseVoid(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PurchaseItemOut(BaseModel):
    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    product_name: str
    quantity: int
    cost: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class PurchaseOut(BaseModel):
    id: UUID
    supplier_name: str
    invoice_number: Optional[str] = None
    status: PurchaseStatus
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    user_id: UUID
    void_reason: Optional[str] = None
    voided_at: Optional[datetime] = None
    created_at: datetime
    items: List[PurchaseItemOut] = []

    model_config = {"from_attributes": True}


class PurchaseList(BaseModel):
    items: List[PurchaseOut]
    total: int
    limit: int
    offset: int
