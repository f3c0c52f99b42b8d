"""
Modelos del libro de stock

- StockMovement: registro inmutable (append-only) de cada cambio de cantidad
- Stock: saldo derivado por producto + local + lugar + estado
"""

from app.database.database import Base
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Numeric, Enum,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.enums import Moneda
from app.common.mixins import TimestampMixin
import enum


class MovementType(enum.Enum):
    """Tipos de movimiento de stock"""
    COMPRA = "COMPRA"                               # delta > 0
    VENTA = "VENTA"                                 # delta < 0
    DEVOLUCION_PROVEEDOR = "DEVOLUCION_PROVEEDOR"   # delta < 0
    DEVOLUCION_CLIENTE = "DEVOLUCION_CLIENTE"       # delta > 0
    AJUSTE = "AJUSTE"                               # libre
    TRANSFERENCIA = "TRANSFERENCIA"                 # libre
    RECEPCION_OC = "RECEPCION_OC"                   # delta > 0


POSITIVE_TYPES = {MovementType.COMPRA, MovementType.DEVOLUCION_CLIENTE, MovementType.RECEPCION_OC}
NEGATIVE_TYPES = {MovementType.VENTA, MovementType.DEVOLUCION_PROVEEDOR}

# ref_tabla de las reversas: apuntan al movimiento original
REVERSAL_REF_TABLE = "stock_movimientos"


class Stock(Base, TimestampMixin):
    __tablename__ = "stock"

    id = Column(Integer, primary_key=True, autoincrement=True)
    producto_id = Column(Integer, ForeignKey("productos.id", ondelete="RESTRICT"), nullable=False, index=True)
    local_id = Column(Integer, nullable=True)
    lugar_id = Column(Integer, nullable=True)
    estado_id = Column(Integer, nullable=True)
    cantidad = Column(Integer, nullable=False, default=0)

    producto = relationship("Product", back_populates="stocks")

    __table_args__ = (
        UniqueConstraint(
            "producto_id", "local_id", "lugar_id", "estado_id",
            name="uq_stock_producto_ubicacion",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint("cantidad >= 0", name="ck_stock_cantidad_no_negativa"),
    )


class StockMovement(Base):
    """
    Movimiento de stock

    Una vez registrado solo se pueden editar las notas; la cantidad se corrige
    con una reversa (AJUSTE con delta inverso que referencia al original).
    """
    __tablename__ = "stock_movimientos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fecha = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    producto_id = Column(Integer, ForeignKey("productos.id", ondelete="RESTRICT"), nullable=False, index=True)
    local_id = Column(Integer, nullable=True)
    lugar_id = Column(Integer, nullable=True)
    estado_id = Column(Integer, nullable=True)
    tipo = Column(Enum(MovementType), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    costo_unit_neto = Column(Numeric(18, 4), nullable=True)
    moneda = Column(Enum(Moneda), nullable=False, default=Moneda.ARS)
    ref_tabla = Column(String(40), nullable=True)
    ref_id = Column(Integer, nullable=True)
    usuario_id = Column(Integer, nullable=True)
    notas = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    producto = relationship("Product")

    __table_args__ = (
        CheckConstraint("delta <> 0", name="ck_stock_mov_delta_no_cero"),
        Index("idx_stock_mov_ref", "ref_tabla", "ref_id"),
        Index("idx_stock_mov_prod_fecha", "producto_id", "fecha"),
    )
