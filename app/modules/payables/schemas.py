from pydantic import BaseModel, Field, ConfigDict, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import date

from app.common.enums import Canal
from app.modules.payables.models import PayableStatus


class PayableCreate(BaseModel):
    """Alta manual (excepcional) de una CxP para una compra confirmada"""
    compra_id: int
    fecha_emision: Optional[date] = None
    fecha_vencimiento: Optional[date] = None
    monto_total: Optional[Decimal] = Field(None, ge=0, description="Por defecto, el total de la compra")

    @model_validator(mode='after')
    def validate_dates(self):
        if self.fecha_emision and self.fecha_vencimiento and self.fecha_vencimiento < self.fecha_emision:
            raise ValueError('fecha_vencimiento no puede ser anterior a fecha_emision')
        return self


class PayableDatesUpdate(BaseModel):
    fecha_emision: Optional[date] = None
    fecha_vencimiento: Optional[date] = None


class PayableAdjustTotal(BaseModel):
    monto_total: Decimal = Field(..., ge=0)


class PayableOut(BaseModel):
    id: int
    canal: Canal
    proveedor_id: int
    compra_id: int
    fecha_emision: date
    fecha_vencimiento: date
    monto_total: Decimal
    saldo: Decimal
    estado: PayableStatus

    model_config = ConfigDict(from_attributes=True)


class PayableDetail(PayableOut):
    aplicado: Decimal = Decimal("0")


class PayableList(BaseModel):
    items: List[PayableOut]
    total: int
    limit: int
    offset: int
