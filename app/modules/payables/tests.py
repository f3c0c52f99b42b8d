"""
Tests para el módulo de Cuentas por Pagar

Cubren la derivación de saldo y estado, el ciclo pendiente → parcial →
cancelado por imputaciones y las guardas de ajuste y baja.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.common.exceptions import (
    ConflictError, DomainValidationError, InvalidStateError, InvalidAmountError, NotFoundError
)
from app.modules.payables.models import Payable, PayableStatus
from app.modules.payables.schemas import PayableCreate, PayableDatesUpdate
from app.modules.payables.service import PayableService, derive_saldo_estado, default_due_date
from app.modules.payments.schemas import SupplierPaymentCreate
from app.modules.payments.service import SupplierPaymentService, PaymentApplicationService


def _payable(db_session, compra):
    return db_session.query(Payable).filter(Payable.compra_id == compra.id).one()


def _pay(db_session, supplier, compra, monto):
    return SupplierPaymentService(db_session).create(SupplierPaymentCreate(
        proveedor_id=supplier.id, monto_total=monto,
        aplicaciones=[{"compra_id": compra.id, "monto_aplicado": monto}],
    ))


class TestDerivation:
    """Tests de saldo y estado derivados"""

    def test_sin_pagos(self):
        assert derive_saldo_estado(Decimal("1000"), 0) == (Decimal("1000.00"), PayableStatus.PENDIENTE)

    def test_pago_parcial(self):
        assert derive_saldo_estado(Decimal("1000"), Decimal("300")) == (Decimal("700.00"), PayableStatus.PARCIAL)

    def test_pago_total(self):
        assert derive_saldo_estado(Decimal("1000"), Decimal("1000")) == (Decimal("0.00"), PayableStatus.CANCELADO)

    def test_saldo_nunca_negativo(self):
        saldo, estado = derive_saldo_estado(Decimal("100"), Decimal("150"))
        assert saldo == 0
        assert estado == PayableStatus.CANCELADO

    def test_total_cero_cancelado(self):
        assert derive_saldo_estado(0, 0)[1] == PayableStatus.CANCELADO

    def test_vencimiento_por_defecto(self):
        assert default_due_date(date(2024, 1, 31), 30) == date(2024, 3, 1)
        assert default_due_date(date(2024, 1, 31), None) == date(2024, 1, 31)


class TestPayableLifecycle:
    """Tests del ciclo de vida de la CxP"""

    def test_pendiente_parcial_cancelado(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        payable = _payable(db_session, compra)
        assert payable.monto_total == Decimal("1000.00")
        assert payable.estado == PayableStatus.PENDIENTE

        _pay(db_session, sample_supplier, compra, "300")
        db_session.refresh(payable)
        assert payable.saldo == Decimal("700.00")
        assert payable.estado == PayableStatus.PARCIAL

        _pay(db_session, sample_supplier, compra, "700")
        db_session.refresh(payable)
        assert payable.saldo == 0
        assert payable.estado == PayableStatus.CANCELADO

        with pytest.raises(ConflictError) as exc:
            _pay(db_session, sample_supplier, compra, "1")
        assert exc.value.code == "EXCEDE_SALDO"
        db_session.refresh(payable)
        assert payable.saldo == 0

    def test_detalle_incluye_aplicado(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        _pay(db_session, sample_supplier, compra, "250")
        detail = PayableService(db_session).get_by_compra(compra.id)
        assert detail["aplicado"] == Decimal("250.00")
        assert detail["saldo"] == Decimal("750.00")

    def test_ajustar_total(self, db_session, make_purchase, sample_supplier, audit_events):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        _pay(db_session, sample_supplier, compra, "300")
        payable = _payable(db_session, compra)

        payable = PayableService(db_session).adjust_total(payable.id, Decimal("300"))
        assert payable.saldo == 0
        assert payable.estado == PayableStatus.CANCELADO
        assert "'1000.00' -> '300.00'" in audit_events[-1].descripcion

    def test_total_menor_a_lo_pagado(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        _pay(db_session, sample_supplier, compra, "300")
        payable = _payable(db_session, compra)
        with pytest.raises(InvalidStateError) as exc:
            PayableService(db_session).adjust_total(payable.id, Decimal("299.99"))
        assert exc.value.code == "TOTAL_MENOR_A_APLICADO"
        assert exc.value.sugerencia == "Desvinculá los pagos primero"

    def test_total_negativo(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        with pytest.raises(InvalidAmountError):
            PayableService(db_session).adjust_total(_payable(db_session, compra).id, Decimal("-1"))

    def test_recalcular_tras_desvincular(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        pago = _pay(db_session, sample_supplier, compra, "400")
        aplicacion = PaymentApplicationService(db_session).list(pago_id=pago.id)[0]
        PaymentApplicationService(db_session).remove(aplicacion.id)

        payable = PayableService(db_session).recalculate(_payable(db_session, compra).id)
        assert payable.saldo == Decimal("1000.00")
        assert payable.estado == PayableStatus.PENDIENTE

    def test_fechas_invalidas(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        payable = _payable(db_session, compra)
        with pytest.raises(DomainValidationError):
            PayableService(db_session).update_dates(
                payable.id, PayableDatesUpdate(fecha_vencimiento=payable.fecha_emision - timedelta(days=1))
            )

    def test_eliminar_con_pagos(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(confirmar=True)
        _pay(db_session, sample_supplier, compra, "10")
        with pytest.raises(ConflictError) as exc:
            PayableService(db_session).delete(_payable(db_session, compra).id)
        assert exc.value.code == "CXP_CON_PAGOS"

    def test_alta_manual(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        service = PayableService(db_session)
        service.delete(_payable(db_session, compra).id)

        payable = service.create_manual(PayableCreate(compra_id=compra.id, monto_total=Decimal("200")))
        assert payable.monto_total == Decimal("200.00")
        assert payable.fecha_vencimiento == compra.fecha_vencimiento

        with pytest.raises(ConflictError) as exc:
            service.create_manual(PayableCreate(compra_id=compra.id))
        assert exc.value.code == "CXP_DUPLICADA"

    def test_alta_manual_de_borrador(self, db_session, make_purchase):
        compra = make_purchase()
        with pytest.raises(InvalidStateError):
            PayableService(db_session).create_manual(PayableCreate(compra_id=compra.id))

    def test_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            PayableService(db_session).get(999)


class TestPayableRoutes:
    def test_listar_y_filtrar(self, client, make_purchase):
        make_purchase(confirmar=True)
        response = client.get("/cxp", params={"estado": "pendiente"})
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert client.get("/cxp", params={"estado": "cancelado"}).json()["total"] == 0

    def test_ajuste_por_debajo_de_lo_pagado(self, client, db_session, make_purchase, sample_supplier):
        compra = make_purchase(confirmar=True)
        _pay(db_session, sample_supplier, compra, "100")
        payable = _payable(db_session, compra)
        response = client.patch(f"/cxp/{payable.id}/total", json={"monto_total": "50"})
        assert response.status_code == 400
        assert response.json()["detail"]["sugerencia"] == "Desvinculá los pagos primero"
