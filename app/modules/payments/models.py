"""
Pagos a proveedores y su imputación a compras

Un pago se distribuye en una o más imputaciones (PaymentApplication), una por
compra. La suma de imputaciones nunca supera el monto del pago ni el saldo de
la CxP de cada compra.

El monto del pago es siempre la suma de sus medios (efectivo, transferencia,
cheques, etc.).
"""

from app.database.database import Base
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Numeric, Enum,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.enums import Moneda, Canal
from app.common.mixins import TimestampMixin
import enum


class PaymentStatus(enum.Enum):
    CONFIRMADO = "confirmado"
    ANULADO = "anulado"


class PaymentOrigin(enum.Enum):
    EFECTIVO = "EFECTIVO"
    TRANSFERENCIA = "TRANSFERENCIA"
    DEPOSITO = "DEPOSITO"
    CHEQUE_RECIBIDO = "CHEQUE_RECIBIDO"
    CHEQUE_EMITIDO = "CHEQUE_EMITIDO"
    AJUSTE = "AJUSTE"
    OTRO = "OTRO"


class SupplierPayment(Base, TimestampMixin):
    __tablename__ = "pagos_proveedor"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proveedor_id = Column(Integer, ForeignKey("proveedores.id", ondelete="RESTRICT"), nullable=False)
    canal = Column(Enum(Canal), nullable=False, default=Canal.C1)
    fecha = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    moneda = Column(Enum(Moneda), nullable=False, default=Moneda.ARS)
    monto_total = Column(Numeric(18, 2), nullable=False)
    estado = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.CONFIRMADO)
    observaciones = Column(String(500), nullable=True)
    created_by = Column(Integer, nullable=True)

    proveedor = relationship("Supplier")
    aplicaciones = relationship(
        "PaymentApplication", back_populates="pago",
        cascade="all, delete-orphan", order_by="PaymentApplication.id"
    )
    medios = relationship(
        "PaymentMethodLine", back_populates="pago",
        cascade="all, delete-orphan", order_by="PaymentMethodLine.id"
    )

    __table_args__ = (
        CheckConstraint("monto_total > 0", name="ck_pagos_proveedor_monto"),
        Index("idx_pp_prov_fecha", "proveedor_id", "fecha"),
    )


class PaymentApplication(Base):
    __tablename__ = "pago_proveedor_detalle"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pago_id = Column(Integer, ForeignKey("pagos_proveedor.id", ondelete="CASCADE"), nullable=False)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="RESTRICT"), nullable=False, index=True)
    monto_aplicado = Column(Numeric(18, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pago = relationship("SupplierPayment", back_populates="aplicaciones")
    compra = relationship("Purchase")

    __table_args__ = (
        UniqueConstraint("pago_id", "compra_id", name="uq_pago_compra"),
        CheckConstraint("monto_aplicado > 0", name="ck_pago_detalle_monto"),
    )


class PaymentMethodLine(Base):
    """Medio con el que se cancela (parte de) un pago.

    Las cuentas bancarias, cheques y movimientos de caja se guardan como ids
    opacos: sus tablas viven en tesorería.
    """
    __tablename__ = "pagos_proveedor_medios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pago_id = Column(Integer, ForeignKey("pagos_proveedor.id", ondelete="CASCADE"), nullable=False, index=True)
    tipo_origen = Column(Enum(PaymentOrigin), nullable=False, index=True)
    medio_pago_id = Column(Integer, nullable=True)
    banco_cuenta_id = Column(Integer, nullable=True, index=True)
    cheque_id = Column(Integer, nullable=True, index=True)
    movimiento_caja_id = Column(Integer, nullable=True)
    monto = Column(Numeric(18, 2), nullable=False)
    observaciones = Column(String(300), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pago = relationship("SupplierPayment", back_populates="medios")

    __table_args__ = (
        CheckConstraint("monto > 0", name="ck_pago_medio_monto"),
    )

    @property
    def tiene_referencias(self) -> bool:
        return any((self.banco_cuenta_id, self.cheque_id, self.movimiento_caja_id))
