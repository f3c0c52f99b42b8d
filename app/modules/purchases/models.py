"""
Modelos SQLAlchemy del módulo de Compras

- Purchase: cabecera del comprobante del proveedor con sus totales derivados
- PurchaseLine: líneas de detalle (producto o descripción libre)

Los totales de cabecera nunca se cargan a mano: se recalculan a partir de las
líneas y de las líneas de impuesto (ver calculator.py).
"""

from app.database.database import Base
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Date, ForeignKey,
    Numeric, Enum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.enums import Moneda, Canal
from app.common.mixins import TimestampMixin, AuditUserMixin
import enum


# ===== ENUMS =====

class PurchaseStatus(enum.Enum):
    """Estados de la compra"""
    BORRADOR = "borrador"       # Editable, no afecta stock ni CxP
    CONFIRMADA = "confirmada"   # Genera CxP y movimientos de stock
    ANULADA = "anulada"         # Revierte stock y cancela la CxP


class VoucherType(enum.Enum):
    """Tipos de comprobante del proveedor"""
    FA = "FA"
    FB = "FB"
    FC = "FC"
    ND = "ND"
    NC = "NC"
    REMITO = "REMITO"
    OTRO = "OTRO"


class PurchaseCondition(enum.Enum):
    CONTADO = "contado"
    CUENTA_CORRIENTE = "cuenta_corriente"
    CREDITO = "credito"
    OTRO = "otro"


# ===== MODELOS =====

class Purchase(Base, TimestampMixin, AuditUserMixin):
    __tablename__ = "compras"

    id = Column(Integer, primary_key=True, autoincrement=True)
    canal = Column(Enum(Canal), nullable=False, default=Canal.C1)
    proveedor_id = Column(Integer, ForeignKey("proveedores.id", ondelete="RESTRICT"), nullable=False, index=True)
    local_id = Column(Integer, nullable=True)
    fecha = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    tipo_comprobante = Column(Enum(VoucherType), nullable=False, default=VoucherType.FA)
    punto_venta = Column(Integer, nullable=True)
    nro_comprobante = Column(BigInteger, nullable=True)

    condicion_compra = Column(Enum(PurchaseCondition), nullable=False, default=PurchaseCondition.CUENTA_CORRIENTE)
    fecha_vencimiento = Column(Date, nullable=True)
    moneda = Column(Enum(Moneda), nullable=False, default=Moneda.ARS)

    # Totales derivados
    subtotal_neto = Column(Numeric(18, 2), nullable=False, default=0)
    iva_total = Column(Numeric(18, 2), nullable=False, default=0)
    percepciones_total = Column(Numeric(18, 2), nullable=False, default=0)
    retenciones_total = Column(Numeric(18, 2), nullable=False, default=0)
    total = Column(Numeric(18, 2), nullable=False, default=0)

    observaciones = Column(String(500), nullable=True)
    estado = Column(Enum(PurchaseStatus), nullable=False, default=PurchaseStatus.BORRADOR, index=True)

    # Relationships
    proveedor = relationship("Supplier")
    detalles = relationship(
        "PurchaseLine", back_populates="compra",
        cascade="all, delete-orphan", order_by="PurchaseLine.id"
    )
    impuestos = relationship(
        "PurchaseTax", back_populates="compra",
        cascade="all, delete-orphan", order_by="PurchaseTax.id"
    )
    cuenta_por_pagar = relationship("Payable", uselist=False, viewonly=True)

    __table_args__ = (
        UniqueConstraint(
            "proveedor_id", "tipo_comprobante", "punto_venta", "nro_comprobante",
            name="uq_compras_comprobante"
        ),
        CheckConstraint(
            "(punto_venta IS NULL AND nro_comprobante IS NULL) OR "
            "(punto_venta IS NOT NULL AND nro_comprobante IS NOT NULL)",
            name="ck_compras_comprobante_completo"
        ),
        CheckConstraint(
            "subtotal_neto >= 0 AND iva_total >= 0 AND percepciones_total >= 0 "
            "AND retenciones_total >= 0 AND total >= 0",
            name="ck_compras_totales_no_negativos"
        ),
        Index("idx_compras_prov_fecha", "proveedor_id", "fecha"),
    )


class PurchaseLine(Base, TimestampMixin):
    """
    Línea de detalle de compra

    Sin producto la descripción es obligatoria. `total_linea` se recalcula en
    cada alta o modificación.
    """
    __tablename__ = "compras_detalle"

    id = Column(Integer, primary_key=True, autoincrement=True)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="CASCADE"), nullable=False, index=True)
    producto_id = Column(Integer, ForeignKey("productos.id", ondelete="RESTRICT"), nullable=True, index=True)
    descripcion = Column(String(255), nullable=True)
    cantidad = Column(Integer, nullable=False, default=1)
    costo_unit_neto = Column(Numeric(18, 4), nullable=False, default=0)
    alicuota_iva = Column(Numeric(5, 2), nullable=False, default=21)  # porcentaje
    inc_iva = Column(Boolean, nullable=False, default=False)
    descuento_porcentaje = Column(Numeric(5, 2), nullable=False, default=0)
    otros_impuestos = Column(Numeric(18, 2), nullable=False, default=0)
    total_linea = Column(Numeric(18, 2), nullable=False, default=0)

    compra = relationship("Purchase", back_populates="detalles")
    producto = relationship("Product")

    __table_args__ = (
        CheckConstraint("cantidad >= 1", name="ck_compras_detalle_cantidad"),
        CheckConstraint("costo_unit_neto >= 0", name="ck_compras_detalle_costo"),
        CheckConstraint("descuento_porcentaje >= 0 AND descuento_porcentaje <= 100",
                        name="ck_compras_detalle_descuento"),
        CheckConstraint("otros_impuestos >= 0", name="ck_compras_detalle_otros"),
        CheckConstraint("producto_id IS NOT NULL OR descripcion IS NOT NULL",
                        name="ck_compras_detalle_producto_o_descripcion"),
    )
