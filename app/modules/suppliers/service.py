from typing import Optional
import logging

from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit
from app.common.exceptions import NotFoundError, ConflictError
from app.database.database import unit_of_work
from app.modules.suppliers.models import Supplier
from app.modules.suppliers.schemas import SupplierCreate

logger = logging.getLogger(__name__)


class SupplierService:
    """Servicio del catálogo de proveedores"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, proveedor_id: int) -> Supplier:
        supplier = self.db.query(Supplier).filter(Supplier.id == proveedor_id).first()
        if not supplier:
            raise NotFoundError("Proveedor no encontrado", code="PROVEEDOR_NO_ENCONTRADO")
        return supplier

    def list(self, search: Optional[str] = None, limit: int = 20, offset: int = 0):
        query = self.db.query(Supplier)
        if search:
            query = query.filter(Supplier.razon_social.ilike(f"%{search}%"))
        total = query.count()
        items = query.order_by(Supplier.razon_social).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def create(self, data: SupplierCreate, usuario_id: Optional[int] = None) -> Supplier:
        if data.cuit and self.db.query(Supplier).filter(Supplier.cuit == data.cuit).first():
            raise ConflictError("Ya existe un proveedor con ese CUIT", code="CUIT_DUPLICADO")

        with unit_of_work(self.db, "alta de proveedor"):
            supplier = Supplier(**data.model_dump())
            self.db.add(supplier)
            self.db.flush()
            emit(self.db, AuditEvent(
                usuario_id, "proveedores", "crear",
                f"creó el proveedor '{supplier.razon_social}' (ID #{supplier.id})"
            ))
        self.db.refresh(supplier)
        return supplier
