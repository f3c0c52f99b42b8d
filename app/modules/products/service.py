from typing import Optional
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit
from app.common.exceptions import NotFoundError, ConflictError
from app.database.database import unit_of_work
from app.modules.products.models import Product
from app.modules.products.schemas import ProductCreate

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, producto_id: int) -> Product:
        product = self.db.query(Product).filter(Product.id == producto_id).first()
        if not product:
            raise NotFoundError("Producto no encontrado", code="PRODUCTO_NO_ENCONTRADO")
        return product

    def list(self, search: Optional[str] = None, limit: int = 20, offset: int = 0):
        query = self.db.query(Product)
        if search:
            like = f"%{search}%"
            query = query.filter(or_(Product.nombre.ilike(like), Product.codigo_sku.ilike(like)))
        total = query.count()
        items = query.order_by(Product.nombre).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def create(self, data: ProductCreate, usuario_id: Optional[int] = None) -> Product:
        if data.codigo_sku and self.db.query(Product).filter(Product.codigo_sku == data.codigo_sku).first():
            raise ConflictError("Ya existe un producto con ese SKU", code="SKU_DUPLICADO")

        with unit_of_work(self.db, "alta de producto"):
            product = Product(**data.model_dump())
            self.db.add(product)
            self.db.flush()
            emit(self.db, AuditEvent(
                usuario_id, "productos", "crear",
                f"creó el producto '{product.nombre}' (ID #{product.id})"
            ))
        self.db.refresh(product)
        return product
