"""
Tests para el módulo de Pagos a proveedores

- Alta de pagos con imputaciones atómicas
- Guardas de imputación (saldo, monto del pago, proveedor, duplicados)
- Modificación y baja de imputaciones con resincronización de la CxP
- Medios del pago: el monto del pago es siempre la suma de sus medios
"""

from decimal import Decimal

import pytest

from app.common.exceptions import (
    ConflictError, DomainValidationError, InvalidAmountError, InvalidStateError, NotFoundError
)
from app.modules.payables.models import Payable, PayableStatus
from app.modules.payments.models import SupplierPayment, PaymentApplication, PaymentMethodLine, PaymentOrigin
from app.modules.payments.schemas import SupplierPaymentCreate, PaymentMethodCreate, PaymentMethodUpdate
from app.modules.payments.service import SupplierPaymentService, PaymentApplicationService, PaymentMethodService
from app.modules.purchases.service import PurchaseService


def _new_payment(db_session, supplier, monto, aplicaciones=()):
    return SupplierPaymentService(db_session).create(SupplierPaymentCreate(
        proveedor_id=supplier.id, monto_total=monto, aplicaciones=list(aplicaciones)
    ), usuario_id=2)


def _payable(db_session, compra):
    return db_session.query(Payable).filter(Payable.compra_id == compra.id).one()


class TestPaymentCreation:
    """Tests de alta de pagos"""

    def test_pago_sin_imputaciones(self, db_session, sample_supplier, audit_events):
        pago = _new_payment(db_session, sample_supplier, "500")
        assert pago.monto_total == Decimal("500.00")
        detail = SupplierPaymentService(db_session).get_detail(pago.id)
        assert detail["aplicado"] == 0
        assert detail["disponible"] == Decimal("500.00")
        assert audit_events[-1].usuario_id == 2

    def test_pago_con_imputaciones_a_dos_compras(self, db_session, sample_supplier, make_purchase):
        primera = make_purchase(confirmar=True)
        segunda = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "400", [
            {"compra_id": primera.id, "monto_aplicado": "242"},
            {"compra_id": segunda.id, "monto_aplicado": "100"},
        ])
        assert _payable(db_session, primera).estado == PayableStatus.CANCELADO
        assert _payable(db_session, segunda).saldo == Decimal("142.00")
        assert SupplierPaymentService(db_session).get_detail(pago.id)["disponible"] == Decimal("58.00")

    def test_imputacion_fallida_no_registra_el_pago(self, db_session, sample_supplier, make_purchase, audit_events):
        compra = make_purchase(confirmar=True)
        eventos_previos = len(audit_events)
        with pytest.raises(ConflictError):
            _new_payment(db_session, sample_supplier, "1000", [{"compra_id": compra.id, "monto_aplicado": "500"}])
        assert db_session.query(SupplierPayment).count() == 0
        assert db_session.query(PaymentApplication).count() == 0
        assert _payable(db_session, compra).saldo == Decimal("242.00")
        assert len(audit_events) == eventos_previos

    def test_proveedor_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            SupplierPaymentService(db_session).create(SupplierPaymentCreate(proveedor_id=99, monto_total="10"))

    def test_compra_repetida_en_el_mismo_pago(self, sample_supplier):
        with pytest.raises(ValueError):
            SupplierPaymentCreate(proveedor_id=sample_supplier.id, monto_total="10", aplicaciones=[
                {"compra_id": 1, "monto_aplicado": "5"},
                {"compra_id": 1, "monto_aplicado": "5"},
            ])

    def test_eliminar_pago_con_imputaciones(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "10", [{"compra_id": compra.id, "monto_aplicado": "10"}])
        with pytest.raises(ConflictError) as exc:
            SupplierPaymentService(db_session).delete(pago.id)
        assert exc.value.code == "PAGO_CON_APLICACIONES"


class TestPaymentApplication:
    """Tests de imputaciones"""

    def test_imputar_y_excedente_de_saldo(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "2000")
        service = PaymentApplicationService(db_session)

        service.apply(pago.id, compra.id, Decimal("300"))
        payable = _payable(db_session, compra)
        assert (payable.saldo, payable.estado) == (Decimal("700.00"), PayableStatus.PARCIAL)

        otro_pago = _new_payment(db_session, sample_supplier, "1000")
        with pytest.raises(ConflictError) as exc:
            service.apply(otro_pago.id, compra.id, Decimal("700.01"))
        assert exc.value.code == "EXCEDE_SALDO"

    def test_excede_monto_del_pago(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(cantidad=1, costo="1000", alicuota="0", confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "100")
        with pytest.raises(ConflictError) as exc:
            PaymentApplicationService(db_session).apply(pago.id, compra.id, Decimal("100.01"))
        assert exc.value.code == "EXCEDE_PAGO"

    @pytest.mark.parametrize("monto", [Decimal("0"), Decimal("-5"), "abc"])
    def test_monto_invalido(self, db_session, sample_supplier, make_purchase, monto):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "100")
        with pytest.raises(InvalidAmountError):
            PaymentApplicationService(db_session).apply(pago.id, compra.id, monto)

    def test_imputacion_duplicada(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "100")
        service = PaymentApplicationService(db_session)
        service.apply(pago.id, compra.id, Decimal("10"))
        with pytest.raises(ConflictError) as exc:
            service.apply(pago.id, compra.id, Decimal("10"))
        assert exc.value.code == "APLICACION_DUPLICADA"

    def test_otro_proveedor(self, db_session, sample_supplier, other_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, other_supplier, "100")
        with pytest.raises(DomainValidationError) as exc:
            PaymentApplicationService(db_session).apply(pago.id, compra.id, Decimal("10"))
        assert exc.value.code == "PROVEEDOR_NO_COINCIDE"

    def test_compra_sin_cxp(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase()
        pago = _new_payment(db_session, sample_supplier, "100")
        with pytest.raises(InvalidStateError) as exc:
            PaymentApplicationService(db_session).apply(pago.id, compra.id, Decimal("10"))
        assert exc.value.code == "COMPRA_SIN_CXP"

    def test_compra_anulada(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        PurchaseService(db_session).annul(compra.id)
        pago = _new_payment(db_session, sample_supplier, "100")
        with pytest.raises(InvalidStateError) as exc:
            PaymentApplicationService(db_session).apply(pago.id, compra.id, Decimal("10"))
        assert exc.value.code == "COMPRA_ANULADA"

    def test_modificar_imputacion(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "300")
        service = PaymentApplicationService(db_session)
        aplicacion = service.apply(pago.id, compra.id, Decimal("100"))

        aplicacion = service.update(aplicacion.id, Decimal("242"))
        assert aplicacion.monto_aplicado == Decimal("242.00")
        assert _payable(db_session, compra).estado == PayableStatus.CANCELADO

        with pytest.raises(ConflictError) as exc:
            service.update(aplicacion.id, Decimal("242.01"))
        assert exc.value.code == "EXCEDE_SALDO"

    def test_desvincular_reabre_la_cxp(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "242", [{"compra_id": compra.id, "monto_aplicado": "242"}])
        service = PaymentApplicationService(db_session)
        aplicacion = service.list(pago_id=pago.id)[0]
        service.remove(aplicacion.id)

        payable = _payable(db_session, compra)
        assert payable.saldo == Decimal("242.00")
        assert payable.estado == PayableStatus.PENDIENTE
        SupplierPaymentService(db_session).delete(pago.id)
        assert db_session.query(SupplierPayment).count() == 0


class TestPaymentRoutes:
    def test_imputar_por_endpoint(self, client, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        response = client.post("/pagos-proveedor", json={
            "proveedor_id": sample_supplier.id, "monto_total": "300",
        })
        assert response.status_code == 201
        pago_id = response.json()["id"]

        response = client.post("/pagos-proveedor/aplicaciones", json={
            "pago_id": pago_id, "compra_id": compra.id, "monto_aplicado": "300",
        })
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "EXCEDE_SALDO"

        response = client.post("/pagos-proveedor/aplicaciones", json={
            "pago_id": pago_id, "compra_id": compra.id, "monto_aplicado": "42",
        })
        assert response.status_code == 201
        detail = client.get(f"/pagos-proveedor/{pago_id}").json()
        assert Decimal(detail["disponible"]) == Decimal("258.00")


class TestPaymentMethods:
    """Tests de medios de pago"""

    def _pay_with_methods(self, db_session, supplier, medios, aplicaciones=()):
        return SupplierPaymentService(db_session).create(SupplierPaymentCreate(
            proveedor_id=supplier.id, medios=list(medios), aplicaciones=list(aplicaciones)
        ))

    def test_monto_es_la_suma_de_medios(self, db_session, sample_supplier):
        pago = self._pay_with_methods(db_session, sample_supplier, [
            {"tipo_origen": "EFECTIVO", "monto": "100", "movimiento_caja_id": 8},
            {"tipo_origen": "TRANSFERENCIA", "monto": "150.50", "banco_cuenta_id": 3},
        ])
        assert pago.monto_total == Decimal("250.50")
        detail = SupplierPaymentService(db_session).get_detail(pago.id)
        assert [m.tipo_origen for m in detail["medios"]] == [PaymentOrigin.EFECTIVO, PaymentOrigin.TRANSFERENCIA]

    def test_sin_medios_registra_uno_por_el_total(self, db_session, sample_supplier):
        pago = _new_payment(db_session, sample_supplier, "500")
        medio = db_session.query(PaymentMethodLine).filter(PaymentMethodLine.pago_id == pago.id).one()
        assert medio.tipo_origen == PaymentOrigin.OTRO
        assert medio.monto == Decimal("500.00")

    def test_validaciones_de_alta(self, sample_supplier):
        with pytest.raises(ValueError):
            SupplierPaymentCreate(proveedor_id=sample_supplier.id, monto_total="90", medios=[
                {"tipo_origen": "EFECTIVO", "monto": "100"},
            ])
        with pytest.raises(ValueError):
            SupplierPaymentCreate(proveedor_id=sample_supplier.id)
        with pytest.raises(ValueError):
            PaymentMethodCreate(tipo_origen=PaymentOrigin.DEPOSITO, monto="10")
        with pytest.raises(ValueError):
            PaymentMethodCreate(tipo_origen=PaymentOrigin.CHEQUE_EMITIDO, monto="10")
        with pytest.raises(ValueError):
            PaymentMethodUpdate(tipo_origen="EFECTIVO")

    def test_alta_y_modificacion_resincronizan(self, db_session, sample_supplier, audit_events):
        pago = _new_payment(db_session, sample_supplier, "100")
        service = PaymentMethodService(db_session)

        medio = service.create(pago.id, PaymentMethodCreate(tipo_origen=PaymentOrigin.CHEQUE_EMITIDO,
                                                            monto="40", cheque_id=12))
        db_session.refresh(pago)
        assert pago.monto_total == Decimal("140.00")

        service.update(medio.id, PaymentMethodUpdate(monto="60"))
        db_session.refresh(pago)
        assert pago.monto_total == Decimal("160.00")
        assert "'40.00' -> '60.00'" in audit_events[-1].descripcion

    def test_baja_con_referencias(self, db_session, sample_supplier):
        pago = self._pay_with_methods(db_session, sample_supplier, [
            {"tipo_origen": "EFECTIVO", "monto": "100"},
            {"tipo_origen": "TRANSFERENCIA", "monto": "50", "banco_cuenta_id": 3},
        ])
        service = PaymentMethodService(db_session)
        transferencia = service.list(pago.id, tipo_origen=PaymentOrigin.TRANSFERENCIA)[0]
        with pytest.raises(ConflictError) as exc:
            service.delete(transferencia.id)
        assert exc.value.code == "MEDIO_CON_REFERENCIAS"

        service.delete(transferencia.id, force=True)
        db_session.refresh(pago)
        assert pago.monto_total == Decimal("100.00")

    def test_no_baja_de_lo_imputado(self, db_session, sample_supplier, make_purchase):
        compra = make_purchase(confirmar=True)
        pago = _new_payment(db_session, sample_supplier, "300", [{"compra_id": compra.id, "monto_aplicado": "242"}])
        service = PaymentMethodService(db_session)
        medio = service.list(pago.id)[0]
        with pytest.raises(ConflictError) as exc:
            service.update(medio.id, PaymentMethodUpdate(monto="200"))
        assert exc.value.code == "MEDIOS_MENOR_A_APLICADO"
        db_session.refresh(pago)
        assert pago.monto_total == Decimal("300.00")

        service.update(medio.id, PaymentMethodUpdate(monto="242"))
        db_session.refresh(pago)
        assert pago.monto_total == Decimal("242.00")

    def test_no_se_elimina_el_ultimo_medio(self, db_session, sample_supplier):
        pago = _new_payment(db_session, sample_supplier, "100")
        service = PaymentMethodService(db_session)
        with pytest.raises(ConflictError) as exc:
            service.delete(service.list(pago.id)[0].id)
        assert exc.value.code == "PAGO_SIN_MEDIOS"

    def test_resumen_y_reconciliacion(self, db_session, sample_supplier):
        pago = _new_payment(db_session, sample_supplier, "100")
        pago.monto_total = Decimal("120")
        db_session.commit()

        service = PaymentMethodService(db_session)
        resumen = service.summary(pago.id)
        assert resumen["suma_medios"] == Decimal("100.00")
        assert resumen["diferencia"] == Decimal("-20.00")

        pago = service.reconcile(pago.id)
        assert pago.monto_total == Decimal("100.00")
        assert service.summary(pago.id)["diferencia"] == 0

    def test_medio_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            PaymentMethodService(db_session).get(999)


class TestPaymentMethodRoutes:
    def test_agregar_medio_y_resumen(self, client, sample_supplier):
        response = client.post("/pagos-proveedor", json={
            "proveedor_id": sample_supplier.id,
            "medios": [{"tipo_origen": "EFECTIVO", "monto": "80"}],
        })
        assert response.status_code == 201
        pago_id = response.json()["id"]
        assert Decimal(response.json()["monto_total"]) == Decimal("80.00")

        response = client.post(f"/pagos-proveedor/{pago_id}/medios", json={
            "tipo_origen": "DEPOSITO", "monto": "20", "banco_cuenta_id": 2,
        })
        assert response.status_code == 201

        resumen = client.get(f"/pagos-proveedor/{pago_id}/medios/resumen").json()
        assert Decimal(resumen["suma_medios"]) == Decimal("100.00")
        assert Decimal(resumen["diferencia"]) == 0

    def test_no_se_cambia_el_tipo(self, client, db_session, sample_supplier):
        pago = _new_payment(db_session, sample_supplier, "50")
        medio_id = PaymentMethodService(db_session).list(pago.id)[0].id
        response = client.patch(f"/pagos-proveedor/medios/{medio_id}", json={"tipo_origen": "EFECTIVO"})
        assert response.status_code == 422
