"""
Modelos de impuestos de compras

- TaxConfig: catálogo de alícuotas por código (IVA21, PERC_IIBB_BA, ...)
- PurchaseTax: líneas de impuesto de una compra (IVA discriminado,
  percepciones, retenciones y otros)
"""

from app.database.database import Base
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Numeric, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship
from app.common.mixins import TimestampMixin
import enum


class TaxType(enum.Enum):
    IVA = "IVA"                 # Desglose; el IVA de las líneas ya está en el total
    PERCEPCION = "Percepcion"   # Suma al total
    RETENCION = "Retencion"     # Suma al total
    OTRO = "Otro"               # Suma al total


class TaxConfig(Base, TimestampMixin):
    __tablename__ = "impuestos_config"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tipo = Column(Enum(TaxType), nullable=False, index=True)
    codigo = Column(String(30), nullable=False, unique=True)  # siempre en mayúsculas
    descripcion = Column(String(120), nullable=True)
    alicuota = Column(Numeric(6, 4), nullable=False, default=0)  # fracción: 0.2100 = 21%
    activo = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("alicuota >= 0 AND alicuota <= 1", name="ck_impuestos_config_alicuota"),
    )


class PurchaseTax(Base, TimestampMixin):
    __tablename__ = "compras_impuestos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="CASCADE"), nullable=False, index=True)
    impuesto_id = Column(Integer, ForeignKey("impuestos_config.id", ondelete="SET NULL"), nullable=True)
    tipo = Column(Enum(TaxType), nullable=False)
    codigo = Column(String(30), nullable=True)
    base = Column(Numeric(18, 2), nullable=False, default=0)
    alicuota = Column(Numeric(6, 4), nullable=False, default=0)
    monto = Column(Numeric(18, 2), nullable=False, default=0)

    compra = relationship("Purchase", back_populates="impuestos")
    impuesto = relationship("TaxConfig")

    __table_args__ = (
        CheckConstraint("base >= 0", name="ck_compras_impuestos_base"),
        CheckConstraint("monto >= 0", name="ck_compras_impuestos_monto"),
        CheckConstraint("alicuota >= 0 AND alicuota <= 1", name="ck_compras_impuestos_alicuota"),
    )
