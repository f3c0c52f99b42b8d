from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship
from app.common.mixins import TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = "productos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre = Column(String(200), nullable=False, index=True)
    codigo_sku = Column(String(60), nullable=True, unique=True)
    activo = Column(Boolean, nullable=False, default=True)

    stocks = relationship("Stock", back_populates="producto")
