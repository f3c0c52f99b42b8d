from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.payables.models import PayableStatus
from app.modules.payables.schemas import (
    PayableCreate, PayableDatesUpdate, PayableAdjustTotal, PayableOut, PayableDetail, PayableList
)
from app.modules.payables.service import PayableService

payables_router = APIRouter(prefix="/cxp", tags=["Cuentas por pagar"])


@payables_router.get("", response_model=PayableList)
def list_payables(
    proveedor_id: Optional[int] = Query(None),
    estado: Optional[PayableStatus] = Query(None),
    vencidas: Optional[bool] = Query(None, description="Solo vencidas con saldo"),
    desde: Optional[date] = Query(None, description="Vencimiento desde"),
    hasta: Optional[date] = Query(None, description="Vencimiento hasta"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return PayableService(db).list(
        proveedor_id=proveedor_id, estado=estado, vencidas=vencidas,
        desde=desde, hasta=hasta, limit=limit, offset=offset
    )


@payables_router.get("/compra/{compra_id}", response_model=PayableDetail)
def get_payable_by_purchase(compra_id: int, db: Session = Depends(get_db)):
    return PayableService(db).get_by_compra(compra_id)


@payables_router.get("/{cxp_id}", response_model=PayableDetail)
def get_payable(cxp_id: int, db: Session = Depends(get_db)):
    return PayableService(db).get_detail(cxp_id)


@payables_router.post("", response_model=PayableOut, status_code=status.HTTP_201_CREATED)
def create_payable(
    data: PayableCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Alta manual de CxP (la confirmación de compras ya la genera)"""
    return PayableService(db).create_manual(data, usuario_id)


@payables_router.patch("/{cxp_id}/fechas", response_model=PayableOut)
def update_payable_dates(
    cxp_id: int,
    data: PayableDatesUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PayableService(db).update_dates(cxp_id, data, usuario_id)


@payables_router.patch("/{cxp_id}/total", response_model=PayableOut)
def adjust_payable_total(
    cxp_id: int,
    data: PayableAdjustTotal,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Ajustar el total; no puede quedar por debajo de lo ya pagado"""
    return PayableService(db).adjust_total(cxp_id, data.monto_total, usuario_id)


@payables_router.post("/{cxp_id}/recalcular", response_model=PayableOut)
def recalculate_payable(
    cxp_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PayableService(db).recalculate(cxp_id, usuario_id)


@payables_router.delete("/{cxp_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payable(
    cxp_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PayableService(db).delete(cxp_id, usuario_id)
