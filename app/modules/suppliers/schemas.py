from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List

from app.common.validators import validate_cuit, normalize_cuit, clean_text


class SupplierCreate(BaseModel):
    razon_social: str = Field(..., min_length=1, max_length=200)
    cuit: Optional[str] = None
    dias_credito: int = Field(default=0, ge=0, le=365)

    @field_validator('razon_social')
    @classmethod
    def validate_razon_social(cls, v):
        v = clean_text(v)
        if not v:
            raise ValueError('La razón social es obligatoria')
        return v

    @field_validator('cuit')
    @classmethod
    def validate_cuit_format(cls, v):
        v = clean_text(v)
        if v is None:
            return None
        if not validate_cuit(v):
            raise ValueError('CUIT inválido')
        return normalize_cuit(v)


class SupplierOut(BaseModel):
    id: int
    razon_social: str
    cuit: Optional[str] = None
    dias_credito: int
    activo: bool

    model_config = ConfigDict(from_attributes=True)


class SupplierList(BaseModel):
    items: List[SupplierOut]
    total: int
    limit: int
    offset: int
