from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from app.common.enums import Moneda, Canal
from app.common.money import round2
from app.common.validators import clean_text
from app.modules.payments.models import PaymentOrigin, PaymentStatus


class PaymentApplicationCreate(BaseModel):
    compra_id: int
    monto_aplicado: Decimal = Field(..., description="Importe a imputar (> 0)")


class PaymentApplicationApply(PaymentApplicationCreate):
    pago_id: int


class PaymentApplicationUpdate(BaseModel):
    monto_aplicado: Decimal


class PaymentApplicationOut(BaseModel):
    id: int
    pago_id: int
    compra_id: int
    monto_aplicado: Decimal
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentMethodCreate(BaseModel):
    tipo_origen: PaymentOrigin
    monto: Decimal = Field(..., gt=0)
    medio_pago_id: Optional[int] = None
    banco_cuenta_id: Optional[int] = None
    cheque_id: Optional[int] = None
    movimiento_caja_id: Optional[int] = None
    observaciones: Optional[str] = Field(None, max_length=300)

    @field_validator('observaciones')
    @classmethod
    def strip_observaciones(cls, v):
        return clean_text(v)

    @model_validator(mode='after')
    def referencias_por_tipo(self):
        if self.tipo_origen in (PaymentOrigin.TRANSFERENCIA, PaymentOrigin.DEPOSITO) and not self.banco_cuenta_id:
            raise ValueError(f'banco_cuenta_id es obligatorio para {self.tipo_origen.value}')
        if self.tipo_origen in (PaymentOrigin.CHEQUE_RECIBIDO, PaymentOrigin.CHEQUE_EMITIDO) and not self.cheque_id:
            raise ValueError(f'cheque_id es obligatorio para {self.tipo_origen.value}')
        return self


class PaymentMethodUpdate(BaseModel):
    """Solo monto y observaciones; el tipo y las referencias no se cambian"""
    monto: Optional[Decimal] = Field(None, gt=0)
    observaciones: Optional[str] = Field(None, max_length=300)

    model_config = ConfigDict(extra="forbid")

    @field_validator('observaciones')
    @classmethod
    def strip_observaciones(cls, v):
        return clean_text(v)


class PaymentMethodOut(BaseModel):
    id: int
    pago_id: int
    tipo_origen: PaymentOrigin
    monto: Decimal
    medio_pago_id: Optional[int] = None
    banco_cuenta_id: Optional[int] = None
    cheque_id: Optional[int] = None
    movimiento_caja_id: Optional[int] = None
    observaciones: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentMethodSummary(BaseModel):
    pago_id: int
    suma_medios: Decimal
    monto_total: Decimal
    diferencia: Decimal


class SupplierPaymentCreate(BaseModel):
    """
    Alta de pago

    Con `medios` el monto del pago es su suma (si además se informa
    `monto_total` debe coincidir). Sin medios se registra uno solo de tipo
    OTRO por `monto_total`.
    """
    proveedor_id: int
    canal: Canal = Canal.C1
    fecha: Optional[datetime] = None
    moneda: Moneda = Moneda.ARS
    monto_total: Optional[Decimal] = Field(None, gt=0)
    observaciones: Optional[str] = Field(None, max_length=500)
    medios: List[PaymentMethodCreate] = Field(default_factory=list)
    aplicaciones: List[PaymentApplicationCreate] = Field(default_factory=list)

    @field_validator('observaciones')
    @classmethod
    def strip_observaciones(cls, v):
        return clean_text(v)

    @model_validator(mode='after')
    def monto_o_medios(self):
        if not self.medios:
            if self.monto_total is None:
                raise ValueError('Informá monto_total o al menos un medio')
            return self
        suma = round2(sum(m.monto for m in self.medios))
        if self.monto_total is not None and round2(self.monto_total) != suma:
            raise ValueError('La suma de medios no coincide con monto_total')
        return self

    @field_validator('aplicaciones')
    @classmethod
    def unique_purchases(cls, v):
        compras = [a.compra_id for a in v]
        if len(compras) != len(set(compras)):
            raise ValueError('Cada compra puede imputarse una sola vez por pago')
        return v


class SupplierPaymentOut(BaseModel):
    id: int
    proveedor_id: int
    canal: Canal
    fecha: datetime
    moneda: Moneda
    monto_total: Decimal
    estado: PaymentStatus
    observaciones: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SupplierPaymentDetail(SupplierPaymentOut):
    aplicado: Decimal
    disponible: Decimal
    medios: List[PaymentMethodOut] = []
    aplicaciones: List[PaymentApplicationOut] = []


class SupplierPaymentList(BaseModel):
    items: List[SupplierPaymentOut]
    total: int
    limit: int
    offset: int
