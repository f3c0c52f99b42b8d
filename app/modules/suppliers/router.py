from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.suppliers.schemas import SupplierCreate, SupplierOut, SupplierList
from app.modules.suppliers.service import SupplierService

suppliers_router = APIRouter(prefix="/proveedores", tags=["Proveedores"])


@suppliers_router.post("", response_model=SupplierOut, status_code=status.HTTP_201_CREATED)
def create_supplier(
    data: SupplierCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Crear proveedor"""
    return SupplierService(db).create(data, usuario_id)


@suppliers_router.get("", response_model=SupplierList)
def list_suppliers(
    search: Optional[str] = Query(None, description="Buscar por razón social"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return SupplierService(db).list(search=search, limit=limit, offset=offset)


@suppliers_router.get("/{proveedor_id}", response_model=SupplierOut)
def get_supplier(proveedor_id: int, db: Session = Depends(get_db)):
    return SupplierService(db).get(proveedor_id)
