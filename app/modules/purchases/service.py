"""
Servicios de negocio para el módulo de Compras

Implementa:
- Compras en borrador con líneas e impuestos (totales siempre recalculados)
- Líneas de detalle: alta, modificación, baja y reemplazo completo
- Confirmación: genera la CxP y los movimientos de stock COMPRA
- Anulación: revierte el stock y cancela la CxP si no hay pagos imputados

Integración con otros módulos:
- Taxes: líneas de impuesto y catálogo de alícuotas
- Payables: CxP de la compra
- Inventory: movimientos de stock con lock de saldo
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any
import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit, diff, snapshot, describir_cambios
from app.common.exceptions import (
    NotFoundError, InvalidStateError, ConflictError, DomainValidationError
)
from app.database.database import unit_of_work
from app.modules.inventory.models import StockMovement, MovementType
from app.modules.inventory.service import StockLedgerService
from app.modules.payables.service import PayableService
from app.modules.products.models import Product
from app.modules.purchases.calculator import calculate_line, within_tolerance, TOTAL_TOLERANCE
from app.modules.purchases.models import Purchase, PurchaseLine, PurchaseStatus
from app.modules.purchases.schemas import (
    PurchaseCreate, PurchaseUpdate, PurchaseLineCreate, PurchaseLineUpdate
)
from app.modules.purchases.totals import (
    lock_purchase, lock_editable_purchase, recompute_purchase_totals
)
from app.modules.suppliers.models import Supplier
from app.modules.taxes.service import PurchaseTaxService

logger = logging.getLogger(__name__)

PURCHASE_REF_TABLE = "compras"

HEADER_FIELDS = [
    "canal", "proveedor_id", "local_id", "fecha", "tipo_comprobante", "punto_venta",
    "nro_comprobante", "condicion_compra", "fecha_vencimiento", "moneda", "observaciones",
]
LINE_FIELDS = [
    "producto_id", "descripcion", "cantidad", "costo_unit_neto", "alicuota_iva",
    "inc_iva", "descuento_porcentaje", "otros_impuestos",
]


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'detalle'}: {e['msg']}" for e in error.errors()
    )


class PurchaseLineService:
    """Líneas de detalle de compras en borrador"""

    def __init__(self, db: Session):
        self.db = db

    def list(self, compra_id: int) -> List[PurchaseLine]:
        if not self.db.query(Purchase.id).filter(Purchase.id == compra_id).first():
            raise NotFoundError("Compra no encontrada", code="COMPRA_NO_ENCONTRADA")
        return self.db.query(PurchaseLine).filter(
            PurchaseLine.compra_id == compra_id
        ).order_by(PurchaseLine.id).all()

    def get(self, compra_id: int, linea_id: int) -> PurchaseLine:
        line = self.db.query(PurchaseLine).filter(
            PurchaseLine.id == linea_id,
            PurchaseLine.compra_id == compra_id
        ).first()
        if not line:
            raise NotFoundError("Línea de compra no encontrada", code="LINEA_NO_ENCONTRADA")
        return line

    def create(self, compra_id: int, data: PurchaseLineCreate, usuario_id: Optional[int] = None) -> PurchaseLine:
        with unit_of_work(self.db, "alta de línea de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            line = self.add(compra, data)
            recompute_purchase_totals(self.db, compra)
            compra.updated_by = usuario_id
            emit(self.db, AuditEvent(
                usuario_id, "compras_detalle", "crear",
                f"agregó la línea #{line.id} a la compra #{compra_id} "
                f"({line.cantidad} x {line.costo_unit_neto} = {line.total_linea})"
            ))
        self.db.refresh(line)
        return line

    def update(self, compra_id: int, linea_id: int, data: PurchaseLineUpdate,
               usuario_id: Optional[int] = None) -> PurchaseLine:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "actualización de línea de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            line = self.get(compra_id, linea_id)
            before = snapshot(line, LINE_FIELDS)

            merged = dict(before)
            merged.update(changes)
            validated = self._validate(merged)
            self._check_product(validated.producto_id)
            self._assign(line, validated)

            recompute_purchase_totals(self.db, compra)
            compra.updated_by = usuario_id
            cambios = diff(before, snapshot(line, LINE_FIELDS), LINE_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "compras_detalle", "editar",
                    f"actualizó la línea #{line.id} de la compra #{compra_id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(line)
        return line

    def delete(self, compra_id: int, linea_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de línea de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            line = self.get(compra_id, linea_id)
            self.db.delete(line)
            recompute_purchase_totals(self.db, compra)
            compra.updated_by = usuario_id
            emit(self.db, AuditEvent(
                usuario_id, "compras_detalle", "eliminar",
                f"eliminó la línea #{linea_id} de la compra #{compra_id}"
            ))

    def replace_all(self, compra_id: int, lines: List[PurchaseLineCreate],
                    usuario_id: Optional[int] = None) -> List[PurchaseLine]:
        """Reemplaza todas las líneas de la compra en una sola transacción"""
        with unit_of_work(self.db, "reemplazo de líneas de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            anteriores = self.db.query(PurchaseLine).filter(PurchaseLine.compra_id == compra_id).all()
            for line in anteriores:
                self.db.delete(line)
            self.db.flush()
            for data in lines:
                self.add(compra, data)
            recompute_purchase_totals(self.db, compra)
            compra.updated_by = usuario_id
            emit(self.db, AuditEvent(
                usuario_id, "compras_detalle", "editar",
                f"reemplazó {len(anteriores)} líneas por {len(lines)} en la compra #{compra_id}"
            ))
        return self.list(compra_id)

    # ===== Primitivas sin commit =====

    def add(self, compra: Purchase, data: PurchaseLineCreate) -> PurchaseLine:
        self._check_product(data.producto_id)
        line = PurchaseLine(compra_id=compra.id)
        self._assign(line, data)
        self.db.add(line)
        self.db.flush()
        return line

    def _assign(self, line: PurchaseLine, data: PurchaseLineCreate) -> None:
        for field in LINE_FIELDS:
            setattr(line, field, getattr(data, field))
        line.total_linea = calculate_line(
            data.cantidad, data.costo_unit_neto, data.alicuota_iva,
            data.inc_iva, data.descuento_porcentaje, data.otros_impuestos
        ).total_linea

    def _validate(self, values: Dict[str, Any]) -> PurchaseLineCreate:
        try:
            return PurchaseLineCreate(**values)
        except ValidationError as e:
            raise DomainValidationError(_validation_message(e), code="LINEA_INVALIDA")

    def _check_product(self, producto_id: Optional[int]) -> None:
        if producto_id is None:
            return
        if not self.db.query(Product.id).filter(Product.id == producto_id).first():
            raise NotFoundError(f"Producto {producto_id} no encontrado", code="PRODUCTO_NO_ENCONTRADO")


class PurchaseService:
    """Servicio para gestión de compras"""

    def __init__(self, db: Session):
        self.db = db
        self.lines = PurchaseLineService(db)
        self.taxes = PurchaseTaxService(db)

    # ===== CONSULTAS =====

    def get(self, compra_id: int) -> Purchase:
        compra = self.db.query(Purchase).filter(Purchase.id == compra_id).first()
        if not compra:
            raise NotFoundError("Compra no encontrada", code="COMPRA_NO_ENCONTRADA")
        return compra

    def list(
        self,
        proveedor_id: Optional[int] = None,
        estado: Optional[PurchaseStatus] = None,
        desde: Optional[datetime] = None,
        hasta: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        query = self.db.query(Purchase)
        if proveedor_id is not None:
            query = query.filter(Purchase.proveedor_id == proveedor_id)
        if estado is not None:
            query = query.filter(Purchase.estado == estado)
        if desde is not None:
            query = query.filter(Purchase.fecha >= desde)
        if hasta is not None:
            query = query.filter(Purchase.fecha <= hasta)
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(Purchase.observaciones.ilike(like))

        total = query.count()
        items = query.order_by(Purchase.fecha.desc(), Purchase.id.desc()).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    # ===== BORRADOR =====

    def create_draft(self, data: PurchaseCreate, usuario_id: Optional[int] = None) -> Purchase:
        """Crear una compra en borrador con sus líneas e impuestos"""
        self._require_supplier(data.proveedor_id)
        self._check_duplicate_document(
            data.proveedor_id, data.tipo_comprobante, data.punto_venta, data.nro_comprobante
        )

        with unit_of_work(self.db, "alta de compra"):
            values = data.model_dump(include=set(HEADER_FIELDS))
            values["fecha"] = data.fecha or datetime.now(timezone.utc)
            self._check_due_date(values["fecha"], values.get("fecha_vencimiento"))
            compra = Purchase(
                **values,
                estado=PurchaseStatus.BORRADOR,
                created_by=usuario_id,
                updated_by=usuario_id,
            )
            self.db.add(compra)
            self.db.flush()

            for line_data in data.detalles:
                self.lines.add(compra, line_data)
            for tax_data in data.impuestos:
                self.taxes.add(compra, tax_data)

            totals = recompute_purchase_totals(self.db, compra)
            if data.total is not None and not within_tolerance(data.total, totals.total):
                raise DomainValidationError(
                    f"El total informado ({data.total}) no coincide con el calculado ({totals.total}); "
                    f"tolerancia {TOTAL_TOLERANCE}",
                    code="TOTAL_INCONSISTENTE",
                )

            emit(self.db, AuditEvent(
                usuario_id, "compras", "crear",
                f"creó la compra #{compra.id} del proveedor #{compra.proveedor_id} "
                f"con {len(data.detalles)} líneas por {compra.total}"
            ))
        self.db.refresh(compra)
        return compra

    def update_draft(self, compra_id: int, data: PurchaseUpdate, usuario_id: Optional[int] = None) -> Purchase:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "actualización de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            before = snapshot(compra, HEADER_FIELDS)

            merged = dict(before)
            merged.update(changes)
            for required in ("canal", "proveedor_id", "tipo_comprobante", "condicion_compra", "moneda", "fecha"):
                if merged.get(required) is None:
                    raise DomainValidationError(f"{required} es obligatorio", code="CAMPO_REQUERIDO")
            if (merged.get("punto_venta") is None) != (merged.get("nro_comprobante") is None):
                raise DomainValidationError(
                    "punto_venta y nro_comprobante van juntos o ninguno",
                    code="COMPROBANTE_INCOMPLETO",
                )
            self._check_due_date(merged["fecha"], merged.get("fecha_vencimiento"))
            if merged["proveedor_id"] != compra.proveedor_id:
                self._require_supplier(merged["proveedor_id"])
            self._check_duplicate_document(
                merged["proveedor_id"], merged["tipo_comprobante"],
                merged.get("punto_venta"), merged.get("nro_comprobante"),
                exclude_id=compra.id,
            )

            for field in HEADER_FIELDS:
                setattr(compra, field, merged.get(field))
            compra.updated_by = usuario_id

            cambios = diff(before, snapshot(compra, HEADER_FIELDS), HEADER_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "compras", "editar",
                    f"actualizó la compra #{compra.id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(compra)
        return compra

    def delete_draft(self, compra_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de compra"):
            compra = lock_purchase(self.db, compra_id)
            if compra.estado != PurchaseStatus.BORRADOR:
                raise InvalidStateError(
                    "Solo se eliminan compras en borrador",
                    code="COMPRA_NO_EDITABLE",
                    sugerencia="Anulá la compra confirmada",
                )
            total = compra.total
            self.db.delete(compra)
            emit(self.db, AuditEvent(
                usuario_id, "compras", "eliminar",
                f"eliminó la compra en borrador #{compra_id} por {total}"
            ))

    # ===== CICLO DE VIDA =====

    def confirm(self, compra_id: int, local_id: Optional[int] = None,
                usuario_id: Optional[int] = None) -> Purchase:
        """
        Confirmar una compra en borrador

        En una sola transacción:
        1. Recalcula los totales
        2. Completa el vencimiento con los días de crédito del proveedor
        3. Genera (o ajusta) la cuenta por pagar
        4. Registra un movimiento COMPRA por cada línea con producto
        """
        with unit_of_work(self.db, "confirmación de compra"):
            compra = lock_purchase(self.db, compra_id)
            if compra.estado != PurchaseStatus.BORRADOR:
                raise InvalidStateError(
                    f"Solo se confirman compras en borrador (estado actual: {compra.estado.value})",
                    code="COMPRA_NO_CONFIRMABLE",
                )
            lines = self.db.query(PurchaseLine).filter(
                PurchaseLine.compra_id == compra.id
            ).order_by(PurchaseLine.id).all()
            if not lines:
                raise InvalidStateError("La compra no tiene líneas", code="COMPRA_SIN_DETALLES")

            recompute_purchase_totals(self.db, compra)

            if compra.fecha_vencimiento is None:
                supplier = self.db.query(Supplier).filter(Supplier.id == compra.proveedor_id).first()
                dias = supplier.dias_credito if supplier else 0
                compra.fecha_vencimiento = compra.fecha.date() + timedelta(days=dias or 0)

            payable = PayableService(self.db).book_purchase(compra)

            destino = local_id if local_id is not None else compra.local_id
            ledger = StockLedgerService(self.db)
            movimientos = 0
            for line in lines:
                if line.producto_id is None:
                    continue
                ledger.post(
                    producto_id=line.producto_id,
                    tipo=MovementType.COMPRA,
                    delta=line.cantidad,
                    local_id=destino,
                    costo_unit_neto=line.costo_unit_neto,
                    moneda=compra.moneda,
                    ref_tabla=PURCHASE_REF_TABLE,
                    ref_id=compra.id,
                    notas=f"Compra #{compra.id}",
                    usuario_id=usuario_id,
                )
                movimientos += 1

            compra.estado = PurchaseStatus.CONFIRMADA
            compra.updated_by = usuario_id
            logger.info(
                f"Compra {compra.id} confirmada: total {compra.total}, CxP {payable.id}, "
                f"{movimientos} movimientos de stock"
            )
            emit(self.db, AuditEvent(
                usuario_id, "compras", "confirmar",
                f"confirmó la compra #{compra.id} por {compra.total} (CxP #{payable.id}, "
                f"{movimientos} movimientos de stock)"
            ))
        self.db.refresh(compra)
        return compra

    def annul(self, compra_id: int, usuario_id: Optional[int] = None) -> Purchase:
        """
        Anular una compra confirmada

        Rechaza si tiene pagos imputados. Revierte los movimientos de stock
        de la compra y deja la CxP en cero (cancelada).
        """
        with unit_of_work(self.db, "anulación de compra"):
            compra = lock_purchase(self.db, compra_id)
            if compra.estado != PurchaseStatus.CONFIRMADA:
                raise InvalidStateError(
                    f"Solo se anulan compras confirmadas (estado actual: {compra.estado.value})",
                    code="COMPRA_NO_ANULABLE",
                )

            payables = PayableService(self.db)
            payable = payables.lock_by_compra(compra.id)
            aplicado = payables.applied_total(compra.id)
            if aplicado > 0:
                logger.warning(f"Anulación de compra {compra.id} rechazada: {aplicado} imputado")
                raise ConflictError(
                    f"La compra tiene pagos imputados por {aplicado}",
                    code="COMPRA_CON_PAGOS",
                    sugerencia="Generá una Nota de Crédito o revertí las imputaciones",
                )

            ledger = StockLedgerService(self.db)
            movements = self.db.query(StockMovement).filter(
                StockMovement.ref_tabla == PURCHASE_REF_TABLE,
                StockMovement.ref_id == compra.id,
                StockMovement.tipo == MovementType.COMPRA
            ).order_by(StockMovement.id).all()
            revertidos = 0
            for movement in movements:
                if ledger.has_reversal(movement.id):
                    continue
                ledger.reverse(movement.id, usuario_id=usuario_id, notas=f"Anulación compra #{compra.id}")
                revertidos += 1

            if payable is not None:
                payables.apply_total(payable, 0)

            compra.estado = PurchaseStatus.ANULADA
            compra.updated_by = usuario_id
            logger.info(f"Compra {compra.id} anulada: {revertidos} movimientos revertidos")
            emit(self.db, AuditEvent(
                usuario_id, "compras", "anular",
                f"anuló la compra #{compra.id} ({revertidos} movimientos de stock revertidos)"
            ))
        self.db.refresh(compra)
        return compra

    # ===== Helpers =====

    def _require_supplier(self, proveedor_id: int) -> Supplier:
        supplier = self.db.query(Supplier).filter(Supplier.id == proveedor_id).first()
        if not supplier:
            raise NotFoundError("Proveedor no encontrado", code="PROVEEDOR_NO_ENCONTRADO")
        if not supplier.activo:
            raise DomainValidationError("El proveedor está inactivo", code="PROVEEDOR_INACTIVO")
        return supplier

    def _check_duplicate_document(self, proveedor_id, tipo_comprobante, punto_venta, nro_comprobante,
                                  exclude_id: Optional[int] = None) -> None:
        if punto_venta is None or nro_comprobante is None:
            return
        query = self.db.query(Purchase.id).filter(
            Purchase.proveedor_id == proveedor_id,
            Purchase.tipo_comprobante == tipo_comprobante,
            Purchase.punto_venta == punto_venta,
            Purchase.nro_comprobante == nro_comprobante
        )
        if exclude_id is not None:
            query = query.filter(Purchase.id != exclude_id)
        if query.first():
            raise ConflictError(
                f"Ya existe el comprobante {tipo_comprobante.value} "
                f"{punto_venta:04d}-{nro_comprobante:08d} para este proveedor",
                code="COMPROBANTE_DUPLICADO",
            )

    def _check_due_date(self, fecha: datetime, fecha_vencimiento) -> None:
        if fecha_vencimiento is not None and fecha_vencimiento < fecha.date():
            raise DomainValidationError(
                "fecha_vencimiento no puede ser anterior a la fecha de la compra",
                code="FECHAS_INVALIDAS",
            )
