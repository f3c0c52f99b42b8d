from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.purchases.models import PurchaseStatus
from app.modules.purchases.schemas import (
    PurchaseCreate, PurchaseUpdate, PurchaseConfirm, PurchaseOut, PurchaseDetail, PurchaseList,
    PurchaseLineCreate, PurchaseLineUpdate, PurchaseLinesReplace, PurchaseLineOut
)
from app.modules.purchases.service import PurchaseService, PurchaseLineService

purchases_router = APIRouter(prefix="/compras", tags=["Compras"])


# ===== COMPRAS =====

@purchases_router.get("", response_model=PurchaseList)
def list_purchases(
    proveedor_id: Optional[int] = Query(None),
    estado: Optional[PurchaseStatus] = Query(None),
    desde: Optional[datetime] = Query(None),
    hasta: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, description="Buscar en observaciones"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return PurchaseService(db).list(
        proveedor_id=proveedor_id, estado=estado, desde=desde, hasta=hasta,
        search=search, limit=limit, offset=offset
    )


@purchases_router.post("", response_model=PurchaseDetail, status_code=status.HTTP_201_CREATED)
def create_purchase(
    data: PurchaseCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """
    Crear una compra en borrador

    Los totales se recalculan siempre desde las líneas e impuestos. Si se
    envía `total`, debe coincidir con el calculado con tolerancia de 0.01.
    """
    return PurchaseService(db).create_draft(data, usuario_id)


@purchases_router.get("/{compra_id}", response_model=PurchaseDetail)
def get_purchase(compra_id: int, db: Session = Depends(get_db)):
    return PurchaseService(db).get(compra_id)


@purchases_router.patch("/{compra_id}", response_model=PurchaseOut)
def update_purchase(
    compra_id: int,
    data: PurchaseUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Editar la cabecera (solo en borrador)"""
    return PurchaseService(db).update_draft(compra_id, data, usuario_id)


@purchases_router.delete("/{compra_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_purchase(
    compra_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PurchaseService(db).delete_draft(compra_id, usuario_id)


@purchases_router.post("/{compra_id}/confirmar", response_model=PurchaseDetail)
def confirm_purchase(
    compra_id: int,
    data: Optional[PurchaseConfirm] = None,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """
    Confirmar una compra en borrador

    Genera la cuenta por pagar y suma el stock de cada línea con producto.
    """
    local_id = data.local_id if data else None
    return PurchaseService(db).confirm(compra_id, local_id, usuario_id)


@purchases_router.post("/{compra_id}/anular", response_model=PurchaseDetail)
def annul_purchase(
    compra_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Anular una compra confirmada sin pagos imputados"""
    return PurchaseService(db).annul(compra_id, usuario_id)


# ===== DETALLES =====

@purchases_router.get("/{compra_id}/detalles", response_model=List[PurchaseLineOut])
def list_purchase_lines(compra_id: int, db: Session = Depends(get_db)):
    return PurchaseLineService(db).list(compra_id)


@purchases_router.post("/{compra_id}/detalles", response_model=PurchaseLineOut,
                       status_code=status.HTTP_201_CREATED)
def create_purchase_line(
    compra_id: int,
    data: PurchaseLineCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PurchaseLineService(db).create(compra_id, data, usuario_id)


@purchases_router.put("/{compra_id}/detalles", response_model=List[PurchaseLineOut])
def replace_purchase_lines(
    compra_id: int,
    data: PurchaseLinesReplace,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Reemplazar todas las líneas; si una falla no se modifica nada"""
    return PurchaseLineService(db).replace_all(compra_id, data.detalles, usuario_id)


@purchases_router.get("/{compra_id}/detalles/{linea_id}", response_model=PurchaseLineOut)
def get_purchase_line(compra_id: int, linea_id: int, db: Session = Depends(get_db)):
    return PurchaseLineService(db).get(compra_id, linea_id)


@purchases_router.patch("/{compra_id}/detalles/{linea_id}", response_model=PurchaseLineOut)
def update_purchase_line(
    compra_id: int,
    linea_id: int,
    data: PurchaseLineUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PurchaseLineService(db).update(compra_id, linea_id, data, usuario_id)


@purchases_router.delete("/{compra_id}/detalles/{linea_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_purchase_line(
    compra_id: int,
    linea_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PurchaseLineService(db).delete(compra_id, linea_id, usuario_id)
