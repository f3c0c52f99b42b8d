"""
Libro de stock (append-only) con saldo derivado por ubicación.

Cada movimiento valida el signo según su tipo y actualiza el saldo de la fila
`stock` correspondiente bajo lock de fila. Un saldo nunca queda negativo: si
el movimiento lo dejaría así, no se registra nada.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit
from app.common.enums import Moneda
from app.common.exceptions import NotFoundError, ConflictError, DomainValidationError
from app.common.money import round4, to_decimal
from app.common.validators import clean_text
from app.database.database import unit_of_work
from app.modules.inventory.models import (
    Stock, StockMovement, MovementType, POSITIVE_TYPES, NEGATIVE_TYPES, REVERSAL_REF_TABLE
)
from app.modules.inventory.schemas import StockMovementCreate
from app.modules.products.models import Product

logger = logging.getLogger(__name__)


def coerce_delta(delta: Any) -> int:
    """Acepta enteros (o valores numéricos enteros); rechaza cero y fracciones."""
    if isinstance(delta, bool) or delta is None:
        raise DomainValidationError("delta debe ser un entero distinto de 0", code="DELTA_INVALIDO")
    if not isinstance(delta, int):
        try:
            value = Decimal(str(delta))
        except Exception:
            raise DomainValidationError("delta debe ser un entero distinto de 0", code="DELTA_INVALIDO")
        if value != value.to_integral_value():
            raise DomainValidationError("delta debe ser un entero distinto de 0", code="DELTA_INVALIDO")
        delta = int(value)
    if delta == 0:
        raise DomainValidationError("delta debe ser un entero distinto de 0", code="DELTA_INVALIDO")
    return delta


def validate_sign(tipo: MovementType, delta: int) -> None:
    if tipo in POSITIVE_TYPES and delta <= 0:
        raise DomainValidationError(
            f"Para {tipo.value} el delta debe ser positivo", code="SIGNO_INVALIDO"
        )
    if tipo in NEGATIVE_TYPES and delta >= 0:
        raise DomainValidationError(
            f"Para {tipo.value} el delta debe ser negativo", code="SIGNO_INVALIDO"
        )


class StockLedgerService:
    """Servicio del libro de movimientos de stock"""

    def __init__(self, db: Session):
        self.db = db

    # ===== CONSULTAS =====

    def get_movement(self, movimiento_id: int) -> StockMovement:
        movement = self.db.query(StockMovement).filter(StockMovement.id == movimiento_id).first()
        if not movement:
            raise NotFoundError("Movimiento no encontrado", code="MOVIMIENTO_NO_ENCONTRADO")
        return movement

    def list_movements(
        self,
        producto_id: Optional[int] = None,
        tipo: Optional[MovementType] = None,
        local_id: Optional[int] = None,
        ref_tabla: Optional[str] = None,
        ref_id: Optional[int] = None,
        desde: Optional[datetime] = None,
        hasta: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ):
        query = self.db.query(StockMovement)
        if producto_id is not None:
            query = query.filter(StockMovement.producto_id == producto_id)
        if tipo is not None:
            query = query.filter(StockMovement.tipo == tipo)
        if local_id is not None:
            query = query.filter(StockMovement.local_id == local_id)
        if ref_tabla:
            query = query.filter(StockMovement.ref_tabla == ref_tabla)
        if ref_id is not None:
            query = query.filter(StockMovement.ref_id == ref_id)
        if desde is not None:
            query = query.filter(StockMovement.fecha >= desde)
        if hasta is not None:
            query = query.filter(StockMovement.fecha <= hasta)

        total = query.count()
        items = query.order_by(StockMovement.fecha.desc(), StockMovement.id.desc()) \
            .offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def get_balance(self, producto_id: int, local_id: Optional[int] = None,
                    lugar_id: Optional[int] = None, estado_id: Optional[int] = None) -> int:
        stock = self._balance_query(producto_id, local_id, lugar_id, estado_id).first()
        return stock.cantidad if stock else 0

    def list_balances(self, producto_id: Optional[int] = None, local_id: Optional[int] = None):
        query = self.db.query(Stock)
        if producto_id is not None:
            query = query.filter(Stock.producto_id == producto_id)
        if local_id is not None:
            query = query.filter(Stock.local_id == local_id)
        return query.order_by(Stock.producto_id, Stock.id).all()

    def has_reversal(self, movimiento_id: int) -> bool:
        return self.db.query(StockMovement.id).filter(
            StockMovement.ref_tabla == REVERSAL_REF_TABLE,
            StockMovement.ref_id == movimiento_id
        ).first() is not None

    # ===== OPERACIONES =====

    def post_movement(self, data: StockMovementCreate, usuario_id: Optional[int] = None) -> StockMovement:
        """Registrar un movimiento y actualizar el saldo en una sola transacción"""
        with unit_of_work(self.db, "registro de movimiento de stock"):
            movement = self.post(usuario_id=usuario_id, **data.model_dump())
            emit(self.db, AuditEvent(
                usuario_id, "stock_movimientos", "crear",
                f"registró {movement.tipo.value} de {movement.delta} unidades del producto "
                f"#{movement.producto_id} (movimiento #{movement.id})"
            ))
        return movement

    def reverse_movement(self, movimiento_id: int, usuario_id: Optional[int] = None,
                         notas: Optional[str] = None) -> StockMovement:
        with unit_of_work(self.db, "reversa de movimiento de stock"):
            reversal = self.reverse(movimiento_id, usuario_id=usuario_id, notas=notas)
            emit(self.db, AuditEvent(
                usuario_id, "stock_movimientos", "revertir",
                f"revirtió el movimiento #{movimiento_id} con el movimiento #{reversal.id} "
                f"(delta {reversal.delta})"
            ))
        return reversal

    def update_notes(self, movimiento_id: int, notas: Optional[str],
                     usuario_id: Optional[int] = None) -> StockMovement:
        notas = clean_text(notas)
        if notas and len(notas) > 255:
            raise DomainValidationError("notas admite hasta 255 caracteres", code="NOTAS_INVALIDAS")

        with unit_of_work(self.db, "actualización de notas de movimiento"):
            movement = self.get_movement(movimiento_id)
            anterior = movement.notas
            movement.notas = notas
            if anterior != movement.notas:
                emit(self.db, AuditEvent(
                    usuario_id, "stock_movimientos", "editar",
                    f"actualizó las notas del movimiento #{movimiento_id}: "
                    f"'{anterior or ''}' -> '{movement.notas or ''}'"
                ))
        return movement

    def delete_movement(self, movimiento_id: int) -> None:
        """Los movimientos son inmutables: la única corrección es la reversa."""
        self.get_movement(movimiento_id)
        raise ConflictError(
            f"El movimiento {movimiento_id} no se puede eliminar",
            code="MOVIMIENTO_INMUTABLE",
            sugerencia="Usá la reversa del movimiento",
        )

    # ===== PRIMITIVAS TRANSACCIONALES (sin commit) =====

    def post(
        self,
        producto_id: int,
        tipo: MovementType,
        delta: Any,
        local_id: Optional[int] = None,
        lugar_id: Optional[int] = None,
        estado_id: Optional[int] = None,
        costo_unit_neto: Any = None,
        moneda: Moneda = Moneda.ARS,
        ref_tabla: Optional[str] = None,
        ref_id: Optional[int] = None,
        notas: Optional[str] = None,
        usuario_id: Optional[int] = None,
    ) -> StockMovement:
        """
        Valida y registra un movimiento dentro de la transacción en curso.

        Lo usan tanto el endpoint de movimientos como la confirmación y la
        anulación de compras.
        """
        if not isinstance(tipo, MovementType):
            try:
                tipo = MovementType(tipo)
            except ValueError:
                raise DomainValidationError(f"Tipo de movimiento inválido: {tipo}", code="TIPO_INVALIDO")

        delta = coerce_delta(delta)
        validate_sign(tipo, delta)

        costo = None
        if costo_unit_neto is not None:
            costo = to_decimal(costo_unit_neto)
            if costo < 0:
                raise DomainValidationError("costo_unit_neto debe ser >= 0", code="COSTO_INVALIDO")
            costo = round4(costo)

        ref_tabla = clean_text(ref_tabla)
        if ref_id is not None and not ref_tabla:
            raise DomainValidationError("ref_tabla es obligatorio cuando se envía ref_id", code="REF_INCOMPLETA")
        if ref_tabla and len(ref_tabla) > 40:
            raise DomainValidationError("ref_tabla admite hasta 40 caracteres", code="REF_INVALIDA")
        notas = clean_text(notas)
        if notas and len(notas) > 255:
            raise DomainValidationError("notas admite hasta 255 caracteres", code="NOTAS_INVALIDAS")

        product = self.db.query(Product).filter(Product.id == producto_id).first()
        if not product:
            raise NotFoundError("Producto no encontrado", code="PRODUCTO_NO_ENCONTRADO")

        stock = self._lock_balance(producto_id, local_id, lugar_id, estado_id)
        nueva_cantidad = stock.cantidad + delta
        if nueva_cantidad < 0:
            logger.warning(
                f"Movimiento {tipo.value} rechazado para producto {producto_id}: "
                f"stock {stock.cantidad}, delta {delta}"
            )
            raise ConflictError(
                f"Stock insuficiente para '{product.nombre}'. Disponible: {stock.cantidad}, "
                f"Solicitado: {abs(delta)}",
                code="STOCK_INSUFICIENTE",
                sugerencia="Registrá primero el ingreso o ajustá la cantidad",
            )
        stock.cantidad = nueva_cantidad

        movement = StockMovement(
            producto_id=producto_id,
            local_id=local_id,
            lugar_id=lugar_id,
            estado_id=estado_id,
            tipo=tipo,
            delta=delta,
            costo_unit_neto=costo,
            moneda=moneda if isinstance(moneda, Moneda) else Moneda(moneda),
            ref_tabla=ref_tabla,
            ref_id=ref_id,
            usuario_id=usuario_id,
            notas=notas,
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def reverse(self, movimiento_id: int, usuario_id: Optional[int] = None,
                notas: Optional[str] = None) -> StockMovement:
        # El original se bloquea primero: dos reversas concurrentes quedan serializadas
        original = self.db.query(StockMovement).filter(
            StockMovement.id == movimiento_id
        ).with_for_update().first()
        if not original:
            raise NotFoundError("Movimiento no encontrado", code="MOVIMIENTO_NO_ENCONTRADO")

        if self.has_reversal(movimiento_id):
            raise ConflictError(
                f"El movimiento {movimiento_id} ya fue revertido",
                code="YA_REVERTIDO",
            )

        texto = f"Reversa de movimiento {movimiento_id}"
        extra = clean_text(notas)
        if extra:
            texto = f"{texto} - {extra}"

        reversal = self.post(
            producto_id=original.producto_id,
            tipo=MovementType.AJUSTE,
            delta=-original.delta,
            local_id=original.local_id,
            lugar_id=original.lugar_id,
            estado_id=original.estado_id,
            costo_unit_neto=original.costo_unit_neto,
            moneda=original.moneda,
            ref_tabla=REVERSAL_REF_TABLE,
            ref_id=original.id,
            notas=texto[:255],
            usuario_id=usuario_id,
        )
        logger.info(f"Movimiento {movimiento_id} revertido por movimiento {reversal.id}")
        return reversal

    def _balance_query(self, producto_id, local_id, lugar_id, estado_id):
        conditions = [Stock.producto_id == producto_id]
        for column, value in (
            (Stock.local_id, local_id),
            (Stock.lugar_id, lugar_id),
            (Stock.estado_id, estado_id),
        ):
            conditions.append(column.is_(None) if value is None else column == value)
        return self.db.query(Stock).filter(and_(*conditions))

    def _lock_balance(self, producto_id, local_id, lugar_id, estado_id) -> Stock:
        stock = self._balance_query(producto_id, local_id, lugar_id, estado_id) \
            .with_for_update().first()
        if stock:
            return stock

        # Alta concurrente de la misma fila: la unique constraint hace fallar
        # a una de las dos transacciones con un 409
        stock = Stock(
            producto_id=producto_id,
            local_id=local_id,
            lugar_id=lugar_id,
            estado_id=estado_id,
            cantidad=0,
        )
        self.db.add(stock)
        self.db.flush()
        return stock
