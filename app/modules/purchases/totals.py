"""
Locks de cabecera y recálculo persistido de totales.

Lo usan el servicio de compras y el de impuestos de compra; toda mutación de
líneas o impuestos bloquea primero la cabecera (padre antes que hijos).
"""

import logging

from sqlalchemy.orm import Session

from app.common.exceptions import NotFoundError, InvalidStateError
from app.modules.purchases.calculator import (
    AggregateSchema, PurchaseTotals, PURCHASE_AGGREGATES_V1, aggregate_totals
)
from app.modules.purchases.models import Purchase, PurchaseLine, PurchaseStatus
from app.modules.taxes.models import PurchaseTax

logger = logging.getLogger(__name__)


def lock_purchase(db: Session, compra_id: int) -> Purchase:
    compra = db.query(Purchase).filter(Purchase.id == compra_id).with_for_update().first()
    if not compra:
        raise NotFoundError("Compra no encontrada", code="COMPRA_NO_ENCONTRADA")
    return compra


def ensure_editable(compra: Purchase) -> None:
    if compra.estado != PurchaseStatus.BORRADOR:
        raise InvalidStateError(
            f"La compra #{compra.id} está {compra.estado.value}; solo se edita en borrador",
            code="COMPRA_NO_EDITABLE",
        )


def lock_editable_purchase(db: Session, compra_id: int) -> Purchase:
    compra = lock_purchase(db, compra_id)
    ensure_editable(compra)
    return compra


def recompute_purchase_totals(
    db: Session,
    compra: Purchase,
    schema: AggregateSchema = PURCHASE_AGGREGATES_V1,
) -> PurchaseTotals:
    """Recalcula y asigna los agregados de la compra dentro de la transacción en curso"""
    db.flush()
    lines = db.query(PurchaseLine).filter(PurchaseLine.compra_id == compra.id).all()
    taxes = db.query(PurchaseTax).filter(PurchaseTax.compra_id == compra.id).all()
    totals = aggregate_totals(lines, taxes)
    written = schema.apply(compra, totals)
    db.flush()
    logger.debug(f"Compra {compra.id} recalculada (v{schema.version}): {', '.join(written)}")
    return totals
