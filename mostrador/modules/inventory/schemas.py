from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class StockMovementType(str, Enum):
    ENTRADA = "ENTRADA"
    SALIDA = "SALIDA"
    AJUSTE = "AJUSTE"
    TRANSFERENCIA = "TRANSFERENCIA"


# Movement schemas
class StockMovementCreate(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    type: StockMovementType
    quantity: int = Field(..., ge=0, description="Cantidad (para AJUSTE, el nuevo stock absoluto)")
    reason: Optional[str] = Field(None, max_length=255)
    reference: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def validate_quantity(self):
        if self.type != StockMovementType.AJUSTE and self.quantity <= 0:
            raise ValueError("La cantidad debe ser mayor a cero")
        return self


class StockMovementOut(BaseModel):
    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    type: StockMovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    user_id: Optional[UUID] = None
    created_at: datetime

    # Joined data
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    variant_name: Optional[str] = None

    class Config:
        from_attributes = True


class StockMovementList(BaseModel):
    items: List[StockMovementOut]
    total: int
    limit: int
    offset: int


# Alert schemas
class LowStockAlert(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    name: str
    sku: str
    stock: int
    min_stock: int
    price: Optional[Decimal] = None
    out_of_stock: bool


class LowStockAlertList(BaseModel):
    items: List[LowStockAlert]
    total: int
    out_of_stock_count: int
