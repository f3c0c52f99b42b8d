from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from app.database.database import Base


class Log(Base):
    """Registro de auditoría de acciones de usuario"""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    usuario_id = Column(Integer, nullable=True, index=True)
    modulo = Column(String(50), nullable=False, index=True)
    accion = Column(String(30), nullable=False)
    descripcion = Column(String(2000), nullable=False)
    fecha_hora = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
