"""
Cuentas por pagar a proveedores (CxP)

Invariantes:
- 0 <= saldo <= monto_total
- cancelado <=> saldo = 0; pendiente <=> saldo = monto_total; parcial en el medio
- fecha_vencimiento >= fecha_emision
"""

from app.database.database import Base
from sqlalchemy import (
    Column, Integer, Date, ForeignKey, Numeric, Enum, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from app.common.enums import Canal
from app.common.mixins import TimestampMixin
import enum


class PayableStatus(enum.Enum):
    PENDIENTE = "pendiente"
    PARCIAL = "parcial"
    CANCELADO = "cancelado"


class Payable(Base, TimestampMixin):
    __tablename__ = "cuentas_pagar_proveedores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    canal = Column(Enum(Canal), nullable=False, default=Canal.C1)
    proveedor_id = Column(Integer, ForeignKey("proveedores.id", ondelete="RESTRICT"), nullable=False, index=True)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="RESTRICT"), nullable=False, unique=True)
    fecha_emision = Column(Date, nullable=False)
    fecha_vencimiento = Column(Date, nullable=False)
    monto_total = Column(Numeric(18, 2), nullable=False)
    saldo = Column(Numeric(18, 2), nullable=False)
    estado = Column(Enum(PayableStatus), nullable=False, default=PayableStatus.PENDIENTE, index=True)

    proveedor = relationship("Supplier")
    compra = relationship("Purchase")

    __table_args__ = (
        CheckConstraint("monto_total >= 0", name="ck_cxp_monto_total"),
        CheckConstraint("saldo >= 0 AND saldo <= monto_total", name="ck_cxp_saldo_rango"),
        CheckConstraint("fecha_vencimiento >= fecha_emision", name="ck_cxp_fechas"),
        Index("idx_cxp_prov_venc", "proveedor_id", "fecha_vencimiento"),
    )
