"""
Motor de estado de cuentas por pagar

saldo y estado siempre se derivan de monto_total y de la suma de
imputaciones de pagos de la compra (`derive_saldo_estado`). Nunca se editan
a mano.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Tuple, Any
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit, diff, snapshot, describir_cambios
from app.common.exceptions import (
    NotFoundError, InvalidStateError, InvalidAmountError, ConflictError, DomainValidationError
)
from app.common.money import ZERO, round2, to_decimal
from app.database.database import unit_of_work
from app.modules.payables.models import Payable, PayableStatus
from app.modules.payables.schemas import PayableCreate, PayableDatesUpdate
from app.modules.payments.models import PaymentApplication
from app.modules.purchases.models import Purchase, PurchaseStatus
from app.modules.suppliers.models import Supplier

logger = logging.getLogger(__name__)

DATE_FIELDS = ["fecha_emision", "fecha_vencimiento"]


def derive_saldo_estado(monto_total: Any, aplicado: Any) -> Tuple[Decimal, PayableStatus]:
    """
    saldo = max(0, round2(monto_total - aplicado))
    estado = cancelado si saldo <= 0, parcial si hubo pagos, pendiente si no
    """
    aplicado = to_decimal(aplicado)
    saldo = max(ZERO, round2(to_decimal(monto_total) - aplicado))
    if saldo <= 0:
        return saldo, PayableStatus.CANCELADO
    if aplicado > 0:
        return saldo, PayableStatus.PARCIAL
    return saldo, PayableStatus.PENDIENTE


def default_due_date(fecha_emision: date, dias_credito: Optional[int]) -> date:
    return fecha_emision + timedelta(days=max(0, dias_credito or 0))


class PayableService:
    """Servicio de cuentas por pagar a proveedores"""

    def __init__(self, db: Session):
        self.db = db

    # ===== CONSULTAS =====

    def get(self, cxp_id: int) -> Payable:
        payable = self.db.query(Payable).filter(Payable.id == cxp_id).first()
        if not payable:
            raise NotFoundError("Cuenta por pagar no encontrada", code="CXP_NO_ENCONTRADA")
        return payable

    def get_detail(self, cxp_id: int) -> dict:
        payable = self.get(cxp_id)
        return self._with_aplicado(payable)

    def get_by_compra(self, compra_id: int) -> dict:
        payable = self.db.query(Payable).filter(Payable.compra_id == compra_id).first()
        if not payable:
            raise NotFoundError("La compra no tiene cuenta por pagar", code="CXP_NO_ENCONTRADA")
        return self._with_aplicado(payable)

    def list(
        self,
        proveedor_id: Optional[int] = None,
        estado: Optional[PayableStatus] = None,
        vencidas: Optional[bool] = None,
        desde: Optional[date] = None,
        hasta: Optional[date] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        query = self.db.query(Payable)
        if proveedor_id is not None:
            query = query.filter(Payable.proveedor_id == proveedor_id)
        if estado is not None:
            query = query.filter(Payable.estado == estado)
        if vencidas:
            query = query.filter(
                Payable.fecha_vencimiento < date.today(),
                Payable.estado != PayableStatus.CANCELADO
            )
        if desde is not None:
            query = query.filter(Payable.fecha_vencimiento >= desde)
        if hasta is not None:
            query = query.filter(Payable.fecha_vencimiento <= hasta)

        total = query.count()
        items = query.order_by(Payable.fecha_vencimiento, Payable.id).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def applied_total(self, compra_id: int, exclude_aplicacion_id: Optional[int] = None) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(PaymentApplication.monto_aplicado), 0)).filter(
            PaymentApplication.compra_id == compra_id
        )
        if exclude_aplicacion_id is not None:
            query = query.filter(PaymentApplication.id != exclude_aplicacion_id)
        return round2(query.scalar())

    # ===== OPERACIONES =====

    def create_manual(self, data: PayableCreate, usuario_id: Optional[int] = None) -> Payable:
        with unit_of_work(self.db, "alta de cuenta por pagar"):
            compra = self.db.query(Purchase).filter(Purchase.id == data.compra_id).with_for_update().first()
            if not compra:
                raise NotFoundError("Compra no encontrada", code="COMPRA_NO_ENCONTRADA")
            if compra.estado != PurchaseStatus.CONFIRMADA:
                raise InvalidStateError(
                    "Solo se registran cuentas por pagar de compras confirmadas",
                    code="COMPRA_NO_CONFIRMADA",
                )
            if self.db.query(Payable.id).filter(Payable.compra_id == compra.id).first():
                raise ConflictError(
                    "La compra ya tiene una cuenta por pagar",
                    code="CXP_DUPLICADA",
                    sugerencia="Ajustá el total o las fechas de la cuenta existente",
                )

            supplier = self.db.query(Supplier).filter(Supplier.id == compra.proveedor_id).first()
            fecha_emision = data.fecha_emision or compra.fecha.date()
            fecha_vencimiento = data.fecha_vencimiento or compra.fecha_vencimiento or \
                default_due_date(fecha_emision, supplier.dias_credito if supplier else 0)
            self._check_dates(fecha_emision, fecha_vencimiento)

            monto_total = round2(data.monto_total if data.monto_total is not None else compra.total)
            payable = Payable(
                canal=compra.canal,
                proveedor_id=compra.proveedor_id,
                compra_id=compra.id,
                fecha_emision=fecha_emision,
                fecha_vencimiento=fecha_vencimiento,
                monto_total=monto_total,
                saldo=monto_total,
                estado=PayableStatus.PENDIENTE,
            )
            self.db.add(payable)
            self.db.flush()
            self.sync_saldo_y_estado(payable)
            emit(self.db, AuditEvent(
                usuario_id, "cuentas_pagar", "crear",
                f"creó manualmente la CxP #{payable.id} de la compra #{compra.id} por {monto_total}"
            ))
        self.db.refresh(payable)
        return payable

    def update_dates(self, cxp_id: int, data: PayableDatesUpdate, usuario_id: Optional[int] = None) -> Payable:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "actualización de fechas de CxP"):
            payable = self._lock(cxp_id)
            before = snapshot(payable, DATE_FIELDS)
            fecha_emision = changes.get("fecha_emision") or payable.fecha_emision
            fecha_vencimiento = changes.get("fecha_vencimiento") or payable.fecha_vencimiento
            self._check_dates(fecha_emision, fecha_vencimiento)
            payable.fecha_emision = fecha_emision
            payable.fecha_vencimiento = fecha_vencimiento

            cambios = diff(before, snapshot(payable, DATE_FIELDS), DATE_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "cuentas_pagar", "editar",
                    f"actualizó la CxP #{payable.id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(payable)
        return payable

    def recalculate(self, cxp_id: int, usuario_id: Optional[int] = None) -> Payable:
        """Resincroniza saldo y estado a partir de las imputaciones"""
        with unit_of_work(self.db, "recálculo de CxP"):
            payable = self._lock(cxp_id)
            before = snapshot(payable, ["saldo", "estado"])
            self.sync_saldo_y_estado(payable)
            cambios = diff(before, snapshot(payable, ["saldo", "estado"]), ["saldo", "estado"])
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "cuentas_pagar", "editar",
                    f"recalculó la CxP #{payable.id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(payable)
        return payable

    def adjust_total(self, cxp_id: int, nuevo_total: Any, usuario_id: Optional[int] = None) -> Payable:
        with unit_of_work(self.db, "ajuste de total de CxP"):
            payable = self._lock(cxp_id)
            anterior = payable.monto_total
            self.apply_total(payable, nuevo_total)
            emit(self.db, AuditEvent(
                usuario_id, "cuentas_pagar", "editar",
                f"ajustó el total de la CxP #{payable.id}: '{anterior}' -> '{payable.monto_total}'"
            ))
        self.db.refresh(payable)
        return payable

    def delete(self, cxp_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de CxP"):
            payable = self._lock(cxp_id)
            aplicaciones = self.db.query(func.count(PaymentApplication.id)).filter(
                PaymentApplication.compra_id == payable.compra_id
            ).scalar()
            if aplicaciones:
                logger.warning(f"Baja de CxP {cxp_id} rechazada: {aplicaciones} imputaciones")
                raise ConflictError(
                    "La cuenta por pagar tiene pagos imputados",
                    code="CXP_CON_PAGOS",
                    sugerencia="Desvinculá los pagos primero",
                )
            compra_id = payable.compra_id
            self.db.delete(payable)
            emit(self.db, AuditEvent(
                usuario_id, "cuentas_pagar", "eliminar",
                f"eliminó la CxP #{cxp_id} de la compra #{compra_id}"
            ))

    # ===== PRIMITIVAS SIN COMMIT =====

    def lock_by_compra(self, compra_id: int) -> Optional[Payable]:
        return self.db.query(Payable).filter(Payable.compra_id == compra_id).with_for_update().first()

    def sync_saldo_y_estado(self, payable: Payable) -> Payable:
        """Idempotente: siempre deja saldo/estado coherentes con las imputaciones"""
        self.db.flush()
        aplicado = self.applied_total(payable.compra_id)
        payable.saldo, payable.estado = derive_saldo_estado(payable.monto_total, aplicado)
        self.db.flush()
        return payable

    def apply_total(self, payable: Payable, nuevo_total: Any) -> Payable:
        nuevo_total = to_decimal(nuevo_total)
        if nuevo_total < 0:
            raise InvalidAmountError("El total no puede ser negativo", code="TOTAL_NEGATIVO")
        nuevo_total = round2(nuevo_total)

        aplicado = self.applied_total(payable.compra_id)
        if nuevo_total < aplicado:
            raise InvalidStateError(
                f"El nuevo total ({nuevo_total}) es menor a lo ya pagado ({aplicado})",
                code="TOTAL_MENOR_A_APLICADO",
                sugerencia="Desvinculá los pagos primero",
            )
        payable.monto_total = nuevo_total
        payable.saldo, payable.estado = derive_saldo_estado(nuevo_total, aplicado)
        self.db.flush()
        return payable

    def book_purchase(self, compra: Purchase) -> Payable:
        """CxP de una compra que se confirma, por el total recalculado."""
        fecha_emision = compra.fecha.date()
        fecha_vencimiento = compra.fecha_vencimiento or fecha_emision
        self._check_dates(fecha_emision, fecha_vencimiento)

        payable = Payable(
            canal=compra.canal,
            proveedor_id=compra.proveedor_id,
            compra_id=compra.id,
            fecha_emision=fecha_emision,
            fecha_vencimiento=fecha_vencimiento,
            monto_total=round2(compra.total),
            saldo=round2(compra.total),
            estado=PayableStatus.PENDIENTE,
        )
        self.db.add(payable)
        self.db.flush()
        return self.sync_saldo_y_estado(payable)

    def _lock(self, cxp_id: int) -> Payable:
        payable = self.db.query(Payable).filter(Payable.id == cxp_id).with_for_update().first()
        if not payable:
            raise NotFoundError("Cuenta por pagar no encontrada", code="CXP_NO_ENCONTRADA")
        return payable

    def _check_dates(self, fecha_emision: date, fecha_vencimiento: date) -> None:
        if fecha_vencimiento < fecha_emision:
            raise DomainValidationError(
                "fecha_vencimiento no puede ser anterior a fecha_emision",
                code="FECHAS_INVALIDAS",
            )

    def _with_aplicado(self, payable: Payable) -> dict:
        data = {column.name: getattr(payable, column.name) for column in Payable.__table__.columns}
        data["aplicado"] = self.applied_total(payable.compra_id)
        return data
