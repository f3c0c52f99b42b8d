from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.products.schemas import ProductCreate, ProductOut, ProductList
from app.modules.products.service import ProductService

product_router = APIRouter(prefix="/productos", tags=["Productos"])


@product_router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return ProductService(db).create(data, usuario_id)


@product_router.get("", response_model=ProductList)
def list_products(
    search: Optional[str] = Query(None, description="Buscar por nombre o SKU"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return ProductService(db).list(search=search, limit=limit, offset=offset)


@product_router.get("/{producto_id}", response_model=ProductOut)
def get_product(producto_id: int, db: Session = Depends(get_db)):
    return ProductService(db).get(producto_id)
