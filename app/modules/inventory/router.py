from typing import Optional, List
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.common.exceptions import ConflictError
from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.inventory.models import MovementType
from app.modules.inventory.schemas import (
    StockMovementCreate, StockMovementOut, StockMovementList,
    StockMovementNotesUpdate, StockMovementReverse, StockOut
)
from app.modules.inventory.service import StockLedgerService

movements_router = APIRouter(prefix="/stock/movimientos", tags=["Stock"])
stock_router = APIRouter(prefix="/stock", tags=["Stock"])


@movements_router.get("", response_model=StockMovementList)
def list_movements(
    producto_id: Optional[int] = Query(None),
    tipo: Optional[MovementType] = Query(None),
    local_id: Optional[int] = Query(None),
    ref_tabla: Optional[str] = Query(None),
    ref_id: Optional[int] = Query(None),
    desde: Optional[datetime] = Query(None),
    hasta: Optional[datetime] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Listar movimientos de stock (más recientes primero)"""
    return StockLedgerService(db).list_movements(
        producto_id=producto_id, tipo=tipo, local_id=local_id,
        ref_tabla=ref_tabla, ref_id=ref_id, desde=desde, hasta=hasta,
        limit=limit, offset=offset
    )


@movements_router.get("/{movimiento_id}", response_model=StockMovementOut)
def get_movement(movimiento_id: int, db: Session = Depends(get_db)):
    return StockLedgerService(db).get_movement(movimiento_id)


@movements_router.post("", response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def post_movement(
    data: StockMovementCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """
    Registrar un movimiento de stock

    - COMPRA, DEVOLUCION_CLIENTE y RECEPCION_OC requieren delta positivo
    - VENTA y DEVOLUCION_PROVEEDOR requieren delta negativo
    - Si el saldo quedaría negativo se responde 409 y no se registra nada
    """
    return StockLedgerService(db).post_movement(data, usuario_id)


@movements_router.post("/{movimiento_id}/reversa", response_model=StockMovementOut,
                       status_code=status.HTTP_201_CREATED)
def reverse_movement(
    movimiento_id: int,
    data: Optional[StockMovementReverse] = None,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Revertir un movimiento con un AJUSTE inverso (una sola vez)"""
    notas = data.notas if data else None
    return StockLedgerService(db).reverse_movement(movimiento_id, usuario_id, notas)


@movements_router.patch("/{movimiento_id}", response_model=StockMovementOut)
def update_movement_notes(
    movimiento_id: int,
    data: StockMovementNotesUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Solo las notas son editables"""
    return StockLedgerService(db).update_notes(movimiento_id, data.notas, usuario_id)


@movements_router.delete("/{movimiento_id}", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
def delete_movement(movimiento_id: int, db: Session = Depends(get_db)):
    """Los movimientos no se eliminan; usar la reversa"""
    try:
        StockLedgerService(db).delete_movement(movimiento_id)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail=e.detail)


@stock_router.get("", response_model=List[StockOut])
def list_stock(
    producto_id: Optional[int] = Query(None),
    local_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    """Saldos de stock por ubicación"""
    return StockLedgerService(db).list_balances(producto_id=producto_id, local_id=local_id)
