from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from app.common.enums import Moneda
from app.common.validators import clean_text
from app.modules.inventory.models import MovementType


class StockMovementCreate(BaseModel):
    producto_id: int
    tipo: MovementType
    delta: int = Field(..., description="Cantidad con signo (positiva entra, negativa sale)")
    local_id: Optional[int] = None
    lugar_id: Optional[int] = None
    estado_id: Optional[int] = None
    costo_unit_neto: Optional[Decimal] = Field(None, ge=0)
    moneda: Moneda = Moneda.ARS
    ref_tabla: Optional[str] = Field(None, max_length=40)
    ref_id: Optional[int] = None
    notas: Optional[str] = Field(None, max_length=255)

    @field_validator('ref_tabla', 'notas')
    @classmethod
    def strip_text(cls, v):
        return clean_text(v)


class StockMovementNotesUpdate(BaseModel):
    """Lo único editable de un movimiento registrado"""
    notas: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(extra="forbid")


class StockMovementReverse(BaseModel):
    notas: Optional[str] = Field(None, max_length=200)


class StockMovementOut(BaseModel):
    id: int
    fecha: datetime
    producto_id: int
    local_id: Optional[int] = None
    lugar_id: Optional[int] = None
    estado_id: Optional[int] = None
    tipo: MovementType
    delta: int
    costo_unit_neto: Optional[Decimal] = None
    moneda: Moneda
    ref_tabla: Optional[str] = None
    ref_id: Optional[int] = None
    usuario_id: Optional[int] = None
    notas: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StockMovementList(BaseModel):
    items: List[StockMovementOut]
    total: int
    limit: int
    offset: int


class StockOut(BaseModel):
    producto_id: int
    local_id: Optional[int] = None
    lugar_id: Optional[int] = None
    estado_id: Optional[int] = None
    cantidad: int

    class Config:
        from_attributes = True
