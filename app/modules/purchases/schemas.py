"""
Esquemas Pydantic para el módulo de Compras
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime, date

from app.common.enums import Moneda, Canal
from app.common.validators import clean_text
from app.core.config import settings
from app.modules.payables.schemas import PayableOut
from app.modules.purchases.models import PurchaseStatus, VoucherType, PurchaseCondition
from app.modules.taxes.schemas import PurchaseTaxCreate, PurchaseTaxOut

MAX_PUNTO_VENTA = 9999
MAX_NRO_COMPROBANTE = 9999999999999


# ===== LÍNEAS =====

class PurchaseLineCreate(BaseModel):
    producto_id: Optional[int] = None
    descripcion: Optional[str] = Field(None, max_length=255)
    cantidad: int = Field(..., ge=1)
    costo_unit_neto: Decimal = Field(..., ge=0)
    alicuota_iva: Decimal = Field(default=Decimal(settings.DEFAULT_ALICUOTA_IVA), ge=0, le=100,
                                  description="Porcentaje (21 = 21%)")
    inc_iva: bool = False
    descuento_porcentaje: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    otros_impuestos: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator('descripcion')
    @classmethod
    def strip_descripcion(cls, v):
        return clean_text(v)

    @model_validator(mode='after')
    def producto_o_descripcion(self):
        if self.producto_id is None and not self.descripcion:
            raise ValueError('Sin producto la descripción es obligatoria')
        return self


class PurchaseLineUpdate(BaseModel):
    producto_id: Optional[int] = None
    descripcion: Optional[str] = Field(None, max_length=255)
    cantidad: Optional[int] = Field(None, ge=1)
    costo_unit_neto: Optional[Decimal] = Field(None, ge=0)
    alicuota_iva: Optional[Decimal] = Field(None, ge=0, le=100)
    inc_iva: Optional[bool] = None
    descuento_porcentaje: Optional[Decimal] = Field(None, ge=0, le=100)
    otros_impuestos: Optional[Decimal] = Field(None, ge=0)


class PurchaseLinesReplace(BaseModel):
    detalles: List[PurchaseLineCreate]


class PurchaseLineOut(BaseModel):
    id: int
    compra_id: int
    producto_id: Optional[int] = None
    descripcion: Optional[str] = None
    cantidad: int
    costo_unit_neto: Decimal
    alicuota_iva: Decimal
    inc_iva: bool
    descuento_porcentaje: Decimal
    otros_impuestos: Decimal
    total_linea: Decimal

    model_config = ConfigDict(from_attributes=True)


# ===== CABECERA =====

class PurchaseHeaderBase(BaseModel):
    canal: Canal = Canal.C1
    proveedor_id: int
    local_id: Optional[int] = None
    fecha: Optional[datetime] = None
    tipo_comprobante: VoucherType = VoucherType.FA
    punto_venta: Optional[int] = Field(None, ge=1, le=MAX_PUNTO_VENTA)
    nro_comprobante: Optional[int] = Field(None, ge=1, le=MAX_NRO_COMPROBANTE)
    condicion_compra: PurchaseCondition = PurchaseCondition.CUENTA_CORRIENTE
    fecha_vencimiento: Optional[date] = None
    moneda: Moneda = Moneda.ARS
    observaciones: Optional[str] = Field(None, max_length=500)

    @field_validator('observaciones')
    @classmethod
    def strip_observaciones(cls, v):
        return clean_text(v)

    @model_validator(mode='after')
    def comprobante_completo(self):
        if (self.punto_venta is None) != (self.nro_comprobante is None):
            raise ValueError('punto_venta y nro_comprobante van juntos o ninguno')
        if self.fecha and self.fecha_vencimiento and self.fecha_vencimiento < self.fecha.date():
            raise ValueError('fecha_vencimiento no puede ser anterior a fecha')
        return self


class PurchaseCreate(PurchaseHeaderBase):
    """
    Alta de compra en borrador

    `total` es opcional: si se informa debe coincidir con el recalculado
    (dentro de la tolerancia); el valor guardado es siempre el recalculado.
    """
    total: Optional[Decimal] = Field(None, ge=0)
    detalles: List[PurchaseLineCreate] = Field(default_factory=list)
    impuestos: List[PurchaseTaxCreate] = Field(default_factory=list)


class PurchaseUpdate(BaseModel):
    canal: Optional[Canal] = None
    proveedor_id: Optional[int] = None
    local_id: Optional[int] = None
    fecha: Optional[datetime] = None
    tipo_comprobante: Optional[VoucherType] = None
    punto_venta: Optional[int] = Field(None, ge=1, le=MAX_PUNTO_VENTA)
    nro_comprobante: Optional[int] = Field(None, ge=1, le=MAX_NRO_COMPROBANTE)
    condicion_compra: Optional[PurchaseCondition] = None
    fecha_vencimiento: Optional[date] = None
    moneda: Optional[Moneda] = None
    observaciones: Optional[str] = Field(None, max_length=500)

    @field_validator('observaciones')
    @classmethod
    def strip_observaciones(cls, v):
        return clean_text(v)


class PurchaseConfirm(BaseModel):
    local_id: Optional[int] = Field(None, description="Local que recibe la mercadería")


class PurchaseOut(BaseModel):
    id: int
    canal: Canal
    proveedor_id: int
    local_id: Optional[int] = None
    fecha: datetime
    tipo_comprobante: VoucherType
    punto_venta: Optional[int] = None
    nro_comprobante: Optional[int] = None
    condicion_compra: PurchaseCondition
    fecha_vencimiento: Optional[date] = None
    moneda: Moneda
    subtotal_neto: Decimal
    iva_total: Decimal
    percepciones_total: Decimal
    retenciones_total: Decimal
    total: Decimal
    observaciones: Optional[str] = None
    estado: PurchaseStatus
    created_by: Optional[int] = None
    updated_by: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseDetail(PurchaseOut):
    detalles: List[PurchaseLineOut] = []
    impuestos: List[PurchaseTaxOut] = []
    cuenta_por_pagar: Optional[PayableOut] = None


class PurchaseList(BaseModel):
    items: List[PurchaseOut]
    total: int
    limit: int
    offset: int
