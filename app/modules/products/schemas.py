from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List

from app.common.validators import clean_text, normalize_codigo


class ProductCreate(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=200)
    codigo_sku: Optional[str] = Field(None, max_length=60)

    @field_validator('nombre')
    @classmethod
    def validate_nombre(cls, v):
        v = clean_text(v)
        if not v:
            raise ValueError('El nombre es obligatorio')
        return v

    @field_validator('codigo_sku')
    @classmethod
    def validate_sku(cls, v):
        return normalize_codigo(v)


class ProductOut(BaseModel):
    id: int
    nombre: str
    codigo_sku: Optional[str] = None
    activo: bool

    model_config = ConfigDict(from_attributes=True)


class ProductList(BaseModel):
    items: List[ProductOut]
    total: int
    limit: int
    offset: int
