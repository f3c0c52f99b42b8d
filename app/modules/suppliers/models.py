from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from app.common.mixins import TimestampMixin


class Supplier(Base, TimestampMixin):
    """
    Proveedores

    Catálogo mínimo usado por compras, cuentas por pagar y pagos.
    `dias_credito` define el vencimiento por defecto de la CxP al confirmar.
    """
    __tablename__ = "proveedores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    razon_social = Column(String(200), nullable=False, index=True)
    cuit = Column(String(13), nullable=True, unique=True)
    dias_credito = Column(Integer, nullable=False, default=0)
    activo = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("dias_credito >= 0", name="ck_proveedores_dias_credito"),
    )
