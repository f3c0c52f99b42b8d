"""
Pagos a proveedores e imputación a cuentas por pagar

Orden de locks en toda imputación: pago primero, CxP después. Cada alta,
modificación o baja de imputación resincroniza la CxP en la misma transacción.
Los medios del pago definen su monto: `monto_total = SUM(medios.monto)`.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit, diff, snapshot, describir_cambios
from app.common.exceptions import (
    NotFoundError, InvalidStateError, InvalidAmountError, ConflictError, DomainValidationError
)
from app.common.money import round2, to_decimal
from app.database.database import unit_of_work
from app.modules.payables.models import Payable
from app.modules.payables.service import PayableService, derive_saldo_estado
from app.modules.payments.models import (
    SupplierPayment, PaymentApplication, PaymentMethodLine, PaymentOrigin, PaymentStatus
)
from app.modules.payments.schemas import SupplierPaymentCreate, PaymentMethodCreate, PaymentMethodUpdate
from app.modules.purchases.models import Purchase, PurchaseStatus
from app.modules.suppliers.models import Supplier

logger = logging.getLogger(__name__)

PAYMENT_METHOD_FIELDS = ["monto", "observaciones"]


def _positive_amount(monto: Any) -> Decimal:
    try:
        monto = to_decimal(monto)
    except Exception:
        raise InvalidAmountError("monto_aplicado inválido", code="MONTO_INVALIDO")
    if not monto.is_finite() or monto <= 0:
        raise InvalidAmountError("monto_aplicado debe ser > 0", code="MONTO_INVALIDO")
    return round2(monto)


class PaymentApplicationService:
    """Imputación de pagos a compras"""

    def __init__(self, db: Session):
        self.db = db
        self.payables = PayableService(db)

    def get(self, aplicacion_id: int) -> PaymentApplication:
        application = self.db.query(PaymentApplication).filter(
            PaymentApplication.id == aplicacion_id
        ).first()
        if not application:
            raise NotFoundError("Imputación no encontrada", code="APLICACION_NO_ENCONTRADA")
        return application

    def list(self, pago_id: Optional[int] = None, compra_id: Optional[int] = None):
        query = self.db.query(PaymentApplication)
        if pago_id is not None:
            query = query.filter(PaymentApplication.pago_id == pago_id)
        if compra_id is not None:
            query = query.filter(PaymentApplication.compra_id == compra_id)
        return query.order_by(PaymentApplication.id).all()

    def applied_to_payment(self, pago_id: int, exclude_aplicacion_id: Optional[int] = None) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(PaymentApplication.monto_aplicado), 0)).filter(
            PaymentApplication.pago_id == pago_id
        )
        if exclude_aplicacion_id is not None:
            query = query.filter(PaymentApplication.id != exclude_aplicacion_id)
        return round2(query.scalar())

    # ===== OPERACIONES =====

    def apply(self, pago_id: int, compra_id: int, monto_aplicado: Any,
              usuario_id: Optional[int] = None) -> PaymentApplication:
        monto = _positive_amount(monto_aplicado)
        with unit_of_work(self.db, "imputación de pago"):
            application = self.apply_in_transaction(pago_id, compra_id, monto)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor", "aplicar",
                f"imputó {monto} del pago #{pago_id} a la compra #{compra_id}"
            ))
        self.db.refresh(application)
        return application

    def update(self, aplicacion_id: int, monto_aplicado: Any,
               usuario_id: Optional[int] = None) -> PaymentApplication:
        monto = _positive_amount(monto_aplicado)
        with unit_of_work(self.db, "modificación de imputación"):
            current = self.get(aplicacion_id)
            pago = self.lock_payment(current.pago_id)
            payable = self._lock_payable(current.compra_id)
            application = self.db.query(PaymentApplication).filter(
                PaymentApplication.id == aplicacion_id
            ).with_for_update().first()
            anterior = application.monto_aplicado

            aplicado_pago = self.applied_to_payment(pago.id, exclude_aplicacion_id=application.id)
            if aplicado_pago + monto > pago.monto_total:
                raise ConflictError(
                    f"La suma de imputaciones ({aplicado_pago + monto}) supera el monto del pago ({pago.monto_total})",
                    code="EXCEDE_PAGO",
                )

            # El saldo disponible incluye lo que esta misma imputación ya consumía
            aplicado_cxp = self.payables.applied_total(application.compra_id, exclude_aplicacion_id=application.id)
            disponible, _ = derive_saldo_estado(payable.monto_total, aplicado_cxp)
            if monto > disponible:
                raise ConflictError(
                    f"Monto a aplicar ({monto}) supera el saldo disponible ({disponible})",
                    code="EXCEDE_SALDO",
                )

            application.monto_aplicado = monto
            self.payables.sync_saldo_y_estado(payable)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor", "editar",
                f"modificó la imputación #{aplicacion_id} (pago #{pago.id}, compra #{application.compra_id}): "
                f"'{anterior}' -> '{monto}'"
            ))
        self.db.refresh(application)
        return application

    def remove(self, aplicacion_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de imputación"):
            current = self.get(aplicacion_id)
            pago = self.lock_payment(current.pago_id)
            payable = self._lock_payable(current.compra_id)
            monto = current.monto_aplicado
            compra_id = current.compra_id
            self.db.delete(current)
            self.payables.sync_saldo_y_estado(payable)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor", "eliminar",
                f"desvinculó {monto} del pago #{pago.id} de la compra #{compra_id}"
            ))

    # ===== PRIMITIVA SIN COMMIT =====

    def apply_in_transaction(self, pago_id: int, compra_id: int, monto: Decimal) -> PaymentApplication:
        monto = _positive_amount(monto)
        pago = self.lock_payment(pago_id)

        compra = self.db.query(Purchase).filter(Purchase.id == compra_id).first()
        if not compra:
            raise NotFoundError(f"Compra {compra_id} no encontrada", code="COMPRA_NO_ENCONTRADA")
        if compra.estado == PurchaseStatus.ANULADA:
            raise InvalidStateError(f"La compra #{compra_id} está anulada", code="COMPRA_ANULADA")

        payable = self._lock_payable(compra_id)
        if payable.proveedor_id != pago.proveedor_id:
            raise DomainValidationError(
                f"La compra #{compra_id} pertenece a otro proveedor",
                code="PROVEEDOR_NO_COINCIDE",
            )

        existing = self.db.query(PaymentApplication.id).filter(
            PaymentApplication.pago_id == pago_id,
            PaymentApplication.compra_id == compra_id
        ).first()
        if existing:
            raise ConflictError(
                f"El pago #{pago_id} ya está imputado a la compra #{compra_id}",
                code="APLICACION_DUPLICADA",
                sugerencia="Modificá la imputación existente",
            )

        aplicado_pago = self.applied_to_payment(pago_id)
        if aplicado_pago + monto > pago.monto_total:
            logger.warning(f"Imputación rechazada: pago {pago_id} excedido ({aplicado_pago} + {monto})")
            raise ConflictError(
                f"La suma de imputaciones ({aplicado_pago + monto}) supera el monto del pago ({pago.monto_total})",
                code="EXCEDE_PAGO",
            )

        self.payables.sync_saldo_y_estado(payable)
        if monto > payable.saldo:
            logger.warning(f"Imputación rechazada: CxP {payable.id} saldo {payable.saldo}, monto {monto}")
            raise ConflictError(
                f"Monto a aplicar ({monto}) supera saldo ({payable.saldo})",
                code="EXCEDE_SALDO",
            )

        application = PaymentApplication(pago_id=pago_id, compra_id=compra_id, monto_aplicado=monto)
        self.db.add(application)
        self.db.flush()
        self.payables.sync_saldo_y_estado(payable)
        logger.info(
            f"Pago {pago_id} imputado a compra {compra_id} por {monto}: "
            f"CxP {payable.id} saldo {payable.saldo} ({payable.estado.value})"
        )
        return application

    def lock_payment(self, pago_id: int) -> SupplierPayment:
        pago = self.db.query(SupplierPayment).filter(
            SupplierPayment.id == pago_id
        ).with_for_update().first()
        if not pago:
            raise NotFoundError(f"Pago {pago_id} no encontrado", code="PAGO_NO_ENCONTRADO")
        if pago.estado == PaymentStatus.ANULADO:
            raise InvalidStateError(f"El pago #{pago_id} está anulado", code="PAGO_ANULADO")
        return pago

    def _lock_payable(self, compra_id: int) -> Payable:
        payable = self.payables.lock_by_compra(compra_id)
        if not payable:
            raise InvalidStateError(
                f"No existe CxP para compra_id={compra_id}",
                code="COMPRA_SIN_CXP",
                sugerencia="Confirmá la compra antes de imputar pagos",
            )
        return payable


class PaymentMethodService:
    """
    Medios de un pago (efectivo, transferencia, cheques...)

    Toda alta, modificación o baja bloquea el pago y resincroniza
    `monto_total = SUM(medios.monto)`. El nuevo total nunca puede quedar por
    debajo de lo ya imputado a compras.
    """

    def __init__(self, db: Session):
        self.db = db
        self.applications = PaymentApplicationService(db)

    def get(self, medio_id: int) -> PaymentMethodLine:
        medio = self.db.query(PaymentMethodLine).filter(PaymentMethodLine.id == medio_id).first()
        if not medio:
            raise NotFoundError("Medio de pago no encontrado", code="MEDIO_NO_ENCONTRADO")
        return medio

    def list(self, pago_id: int, tipo_origen: Optional[PaymentOrigin] = None):
        query = self.db.query(PaymentMethodLine).filter(PaymentMethodLine.pago_id == pago_id)
        if tipo_origen is not None:
            query = query.filter(PaymentMethodLine.tipo_origen == tipo_origen)
        return query.order_by(PaymentMethodLine.id).all()

    def methods_total(self, pago_id: int) -> Decimal:
        return round2(self.db.query(func.coalesce(func.sum(PaymentMethodLine.monto), 0)).filter(
            PaymentMethodLine.pago_id == pago_id
        ).scalar())

    def summary(self, pago_id: int) -> dict:
        """Compara la suma de medios con el monto registrado en el pago"""
        pago = self.db.query(SupplierPayment).filter(SupplierPayment.id == pago_id).first()
        if not pago:
            raise NotFoundError("Pago no encontrado", code="PAGO_NO_ENCONTRADO")
        suma = self.methods_total(pago_id)
        monto_total = round2(pago.monto_total)
        return {
            "pago_id": pago_id,
            "suma_medios": suma,
            "monto_total": monto_total,
            "diferencia": round2(suma - monto_total),
        }

    # ===== OPERACIONES =====

    def create(self, pago_id: int, data: PaymentMethodCreate, usuario_id: Optional[int] = None) -> PaymentMethodLine:
        with unit_of_work(self.db, "alta de medio de pago"):
            pago = self.applications.lock_payment(pago_id)
            medio = self.add(pago, data)
            self.sync_total(pago)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor_medios", "crear",
                f"agregó {medio.tipo_origen.value} por {medio.monto} al pago #{pago_id} "
                f"(total {pago.monto_total})"
            ))
        self.db.refresh(medio)
        return medio

    def update(self, medio_id: int, data: PaymentMethodUpdate, usuario_id: Optional[int] = None) -> PaymentMethodLine:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "modificación de medio de pago"):
            pago = self.applications.lock_payment(self.get(medio_id).pago_id)
            medio = self.db.query(PaymentMethodLine).filter(
                PaymentMethodLine.id == medio_id
            ).with_for_update().first()
            before = snapshot(medio, PAYMENT_METHOD_FIELDS)

            if changes.get("monto") is not None:
                medio.monto = round2(changes["monto"])
            if "observaciones" in changes:
                medio.observaciones = changes["observaciones"]
            self.sync_total(pago)

            cambios = diff(before, snapshot(medio, PAYMENT_METHOD_FIELDS), PAYMENT_METHOD_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "pagos_proveedor_medios", "editar",
                    f"actualizó el medio #{medio_id} del pago #{pago.id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(medio)
        return medio

    def delete(self, medio_id: int, force: bool = False, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de medio de pago"):
            pago = self.applications.lock_payment(self.get(medio_id).pago_id)
            medio = self.get(medio_id)
            if medio.tiene_referencias and not force:
                raise ConflictError(
                    "El medio tiene referencias de banco, cheque o caja",
                    code="MEDIO_CON_REFERENCIAS",
                    sugerencia="Usá force si comprendés el impacto en tesorería",
                )
            descripcion = f"{medio.tipo_origen.value} por {medio.monto}"
            self.db.delete(medio)
            self.sync_total(pago)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor_medios", "eliminar",
                f"eliminó {descripcion} del pago #{pago.id} (total {pago.monto_total})"
            ))

    def reconcile(self, pago_id: int, usuario_id: Optional[int] = None) -> SupplierPayment:
        """Fuerza monto_total = SUM(medios)"""
        with unit_of_work(self.db, "reconciliación de medios de pago"):
            pago = self.applications.lock_payment(pago_id)
            anterior = round2(pago.monto_total)
            self.sync_total(pago)
            if anterior != pago.monto_total:
                logger.warning(f"Pago {pago_id} reconciliado: {anterior} -> {pago.monto_total}")
                emit(self.db, AuditEvent(
                    usuario_id, "pagos_proveedor", "reconciliar",
                    f"reconcilió el pago #{pago_id} con sus medios: '{anterior}' -> '{pago.monto_total}'"
                ))
        self.db.refresh(pago)
        return pago

    # ===== PRIMITIVAS SIN COMMIT =====

    def add(self, pago: SupplierPayment, data: PaymentMethodCreate) -> PaymentMethodLine:
        medio = PaymentMethodLine(
            pago_id=pago.id,
            **data.model_dump(exclude={"monto"}),
            monto=round2(data.monto),
        )
        self.db.add(medio)
        self.db.flush()
        return medio

    def sync_total(self, pago: SupplierPayment) -> SupplierPayment:
        self.db.flush()
        suma = self.methods_total(pago.id)
        if suma <= 0:
            raise ConflictError(
                "El pago debe conservar al menos un medio",
                code="PAGO_SIN_MEDIOS",
                sugerencia="Eliminá el pago completo",
            )
        aplicado = self.applications.applied_to_payment(pago.id)
        if suma < aplicado:
            raise ConflictError(
                f"La suma de medios ({suma}) quedaría por debajo de lo imputado ({aplicado})",
                code="MEDIOS_MENOR_A_APLICADO",
                sugerencia="Desvinculá imputaciones primero",
            )
        pago.monto_total = suma
        self.db.flush()
        return pago


class SupplierPaymentService:
    """Cabecera de pagos a proveedores"""

    def __init__(self, db: Session):
        self.db = db
        self.applications = PaymentApplicationService(db)
        self.methods = PaymentMethodService(db)

    def get(self, pago_id: int) -> SupplierPayment:
        pago = self.db.query(SupplierPayment).filter(SupplierPayment.id == pago_id).first()
        if not pago:
            raise NotFoundError("Pago no encontrado", code="PAGO_NO_ENCONTRADO")
        return pago

    def get_detail(self, pago_id: int) -> dict:
        pago = self.get(pago_id)
        aplicado = self.applications.applied_to_payment(pago.id)
        return {
            "id": pago.id,
            "proveedor_id": pago.proveedor_id,
            "canal": pago.canal,
            "fecha": pago.fecha,
            "moneda": pago.moneda,
            "monto_total": pago.monto_total,
            "estado": pago.estado,
            "observaciones": pago.observaciones,
            "aplicado": aplicado,
            "disponible": round2(pago.monto_total - aplicado),
            "medios": self.methods.list(pago.id),
            "aplicaciones": self.applications.list(pago_id=pago.id),
        }

    def list(self, proveedor_id: Optional[int] = None, desde: Optional[datetime] = None,
             hasta: Optional[datetime] = None, limit: int = 20, offset: int = 0) -> dict:
        query = self.db.query(SupplierPayment)
        if proveedor_id is not None:
            query = query.filter(SupplierPayment.proveedor_id == proveedor_id)
        if desde is not None:
            query = query.filter(SupplierPayment.fecha >= desde)
        if hasta is not None:
            query = query.filter(SupplierPayment.fecha <= hasta)
        total = query.count()
        items = query.order_by(SupplierPayment.fecha.desc(), SupplierPayment.id.desc()) \
            .offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def create(self, data: SupplierPaymentCreate, usuario_id: Optional[int] = None) -> SupplierPayment:
        """
        Registrar un pago con sus medios y, opcionalmente, imputarlo en la
        misma transacción

        Sin medios se registra uno de tipo OTRO por el monto informado.
        """
        if not self.db.query(Supplier.id).filter(Supplier.id == data.proveedor_id).first():
            raise NotFoundError("Proveedor no encontrado", code="PROVEEDOR_NO_ENCONTRADO")
        montos = [_positive_amount(a.monto_aplicado) for a in data.aplicaciones]
        medios = data.medios or [PaymentMethodCreate(tipo_origen=PaymentOrigin.OTRO, monto=data.monto_total)]

        with unit_of_work(self.db, "alta de pago a proveedor"):
            values = data.model_dump(exclude={"aplicaciones", "medios"})
            if values.get("fecha") is None:
                values.pop("fecha", None)
            values["monto_total"] = round2(sum(m.monto for m in medios))
            pago = SupplierPayment(**values, created_by=usuario_id)
            self.db.add(pago)
            self.db.flush()

            for medio in medios:
                self.methods.add(pago, medio)
            self.methods.sync_total(pago)

            for application, monto in zip(data.aplicaciones, montos):
                self.applications.apply_in_transaction(pago.id, application.compra_id, monto)

            tipos = ", ".join(sorted({m.tipo_origen.value for m in medios}))
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor", "crear",
                f"registró el pago #{pago.id} al proveedor #{pago.proveedor_id} por {pago.monto_total}"
                f" ({len(medios)} medios: {tipos}) con {len(montos)} imputaciones"
            ))
        self.db.refresh(pago)
        return pago

    def delete(self, pago_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de pago a proveedor"):
            pago = self.db.query(SupplierPayment).filter(
                SupplierPayment.id == pago_id
            ).with_for_update().first()
            if not pago:
                raise NotFoundError("Pago no encontrado", code="PAGO_NO_ENCONTRADO")
            if self.db.query(PaymentApplication.id).filter(PaymentApplication.pago_id == pago_id).first():
                raise ConflictError(
                    "El pago tiene imputaciones",
                    code="PAGO_CON_APLICACIONES",
                    sugerencia="Desvinculá las imputaciones primero",
                )
            self.db.delete(pago)
            emit(self.db, AuditEvent(
                usuario_id, "pagos_proveedor", "eliminar",
                f"eliminó el pago #{pago_id} por {pago.monto_total}"
            ))
