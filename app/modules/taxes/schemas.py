from pydantic import BaseModel, Field, field_validator, ConfigDict
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from app.common.validators import normalize_codigo, clean_text
from app.modules.taxes.models import TaxType


class TaxConfigBase(BaseModel):
    tipo: TaxType = Field(..., description="IVA, Percepcion, Retencion u Otro")
    codigo: str = Field(..., min_length=1, max_length=30, description="Código único (ej. 'IVA21')")
    descripcion: Optional[str] = Field(None, max_length=120)
    alicuota: Decimal = Field(..., ge=0, le=1, description="Fracción (ej. 0.21 para 21%)")

    @field_validator('codigo')
    @classmethod
    def validate_codigo(cls, v):
        v = normalize_codigo(v)
        if not v:
            raise ValueError('Código inválido')
        return v

    @field_validator('descripcion')
    @classmethod
    def validate_descripcion(cls, v):
        return clean_text(v)


class TaxConfigCreate(TaxConfigBase):
    activo: bool = True


class TaxConfigUpdate(BaseModel):
    tipo: Optional[TaxType] = None
    codigo: Optional[str] = Field(None, min_length=1, max_length=30)
    descripcion: Optional[str] = Field(None, max_length=120)
    alicuota: Optional[Decimal] = Field(None, ge=0, le=1)

    @field_validator('codigo')
    @classmethod
    def validate_codigo(cls, v):
        if v is None:
            return v
        v = normalize_codigo(v)
        if not v:
            raise ValueError('Código inválido')
        return v


class TaxConfigSetActive(BaseModel):
    activo: bool


class TaxConfigOut(BaseModel):
    id: int
    tipo: TaxType
    codigo: str
    descripcion: Optional[str] = None
    alicuota: Decimal
    activo: bool

    model_config = ConfigDict(from_attributes=True)


class TaxConfigList(BaseModel):
    items: List[TaxConfigOut]
    total: int
    limit: int
    offset: int


# ===== Líneas de impuesto de compras =====

class PurchaseTaxCreate(BaseModel):
    """
    Línea de impuesto de una compra

    Con `codigo` se toma la alícuota (y el tipo, si no se envía) del catálogo.
    Sin `monto` se calcula como base x alícuota.
    """
    tipo: Optional[TaxType] = None
    codigo: Optional[str] = Field(None, max_length=30)
    base: Decimal = Field(default=Decimal("0"), ge=0)
    alicuota: Optional[Decimal] = Field(None, ge=0, le=1)
    monto: Optional[Decimal] = Field(None, ge=0)

    @field_validator('codigo')
    @classmethod
    def validate_codigo(cls, v):
        return normalize_codigo(v)


class PurchaseTaxUpdate(BaseModel):
    tipo: Optional[TaxType] = None
    codigo: Optional[str] = Field(None, max_length=30)
    base: Optional[Decimal] = Field(None, ge=0)
    alicuota: Optional[Decimal] = Field(None, ge=0, le=1)
    monto: Optional[Decimal] = Field(None, ge=0)

    @field_validator('codigo')
    @classmethod
    def validate_codigo(cls, v):
        return normalize_codigo(v)


class PurchaseTaxOut(BaseModel):
    id: int
    compra_id: int
    impuesto_id: Optional[int] = None
    tipo: TaxType
    codigo: Optional[str] = None
    base: Decimal
    alicuota: Decimal
    monto: Decimal
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
