"""
Tests para el módulo de Compras

Cubren:
- Cálculo de líneas y agregados de cabecera (funciones puras)
- Alta en borrador con tolerancia del total informado
- Edición de líneas solo en borrador con recálculo de totales
- Confirmación: CxP + movimientos de stock
- Anulación: reversa de stock, CxP en cero y rechazo con pagos imputados
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.common.exceptions import (
    ConflictError, DomainValidationError, InvalidStateError, NotFoundError
)
from app.modules.inventory.models import StockMovement, MovementType
from app.modules.inventory.service import StockLedgerService
from app.modules.payables.models import Payable, PayableStatus
from app.modules.payables.schemas import PayableCreate
from app.modules.payables.service import PayableService
from app.modules.payments.schemas import SupplierPaymentCreate
from app.modules.payments.service import SupplierPaymentService
from app.modules.purchases.calculator import (
    AggregateSchema, PurchaseTotals, aggregate_totals, calculate_line, within_tolerance
)
from app.modules.purchases.models import Purchase, PurchaseStatus
from app.modules.purchases.schemas import (
    PurchaseCreate, PurchaseUpdate, PurchaseLineCreate, PurchaseLineUpdate
)
from app.modules.purchases.service import PurchaseService, PurchaseLineService
from app.modules.purchases.totals import recompute_purchase_totals
from app.modules.taxes.models import PurchaseTax, TaxType
from app.modules.taxes.service import PurchaseTaxService


def _line(**kwargs):
    values = {
        "cantidad": 1, "costo_unit_neto": Decimal("0"), "alicuota_iva": Decimal("21"),
        "inc_iva": False, "descuento_porcentaje": Decimal("0"), "otros_impuestos": Decimal("0"),
    }
    values.update(kwargs)
    return SimpleNamespace(**values)


# ===== CÁLCULO =====

class TestLineCalculation:
    """Tests del total de línea"""

    def test_linea_con_iva(self):
        amounts = calculate_line(2, Decimal("100"), Decimal("21"))
        assert amounts.total_linea == Decimal("242.00")
        assert amounts.base == Decimal("200")
        assert amounts.iva == Decimal("42")

    def test_linea_con_descuento(self):
        assert calculate_line(1, Decimal("100"), Decimal("21"), descuento_porcentaje=10).total_linea == Decimal("108.90")

    def test_linea_con_iva_incluido(self):
        """Con inc_iva no se suma IVA sobre el costo"""
        amounts = calculate_line(1, Decimal("121"), Decimal("21"), inc_iva=True)
        assert amounts.iva == 0
        assert amounts.total_linea == Decimal("121.00")

    def test_otros_impuestos_se_suman(self):
        assert calculate_line(1, Decimal("10"), 0, otros_impuestos=Decimal("1.5")).total_linea == Decimal("11.50")

    def test_alicuota_nula_usa_21(self):
        assert calculate_line(1, Decimal("100"), None).total_linea == Decimal("121.00")

    def test_redondeo_half_up(self):
        # 1 x 0.125 sin IVA = 0.125 -> 0.13
        assert calculate_line(1, Decimal("0.125"), 0).total_linea == Decimal("0.13")


class TestAggregates:
    """Tests de agregados de cabecera"""

    def test_una_linea(self):
        totals = aggregate_totals([_line(cantidad=2, costo_unit_neto=Decimal("100"))])
        assert totals.subtotal_neto == Decimal("200.00")
        assert totals.iva_total == Decimal("42.00")
        assert totals.total == Decimal("242.00")

    def test_percepciones_y_retenciones_suman_al_total(self):
        taxes = [
            SimpleNamespace(tipo=TaxType.PERCEPCION, monto=Decimal("7.00")),
            SimpleNamespace(tipo=TaxType.RETENCION, monto=Decimal("4.00")),
        ]
        totals = aggregate_totals([_line(cantidad=2, costo_unit_neto=Decimal("100"))], taxes)
        assert totals.percepciones_total == Decimal("7.00")
        assert totals.retenciones_total == Decimal("4.00")
        assert totals.total == Decimal("253.00")

    def test_lineas_de_iva_solo_desglosan(self):
        taxes = [SimpleNamespace(tipo=TaxType.IVA, monto=Decimal("10.00"))]
        totals = aggregate_totals([_line(cantidad=2, costo_unit_neto=Decimal("100"))], taxes)
        assert totals.iva_total == Decimal("52.00")
        assert totals.total == Decimal("242.00")

    def test_sin_lineas(self):
        totals = aggregate_totals([])
        assert totals.total == 0
        assert totals.subtotal_neto == 0

    def test_schema_parcial_solo_escribe_sus_campos(self):
        schema = AggregateSchema(version=2, fields=frozenset({"total"}))
        target = SimpleNamespace(total=None, subtotal_neto=None)
        totals = PurchaseTotals(*(Decimal("1"),) * 5)
        assert schema.apply(target, totals) == ["total"]
        assert target.total == Decimal("1")
        assert target.subtotal_neto is None
        assert not schema.supports("iva_total")

    def test_schema_con_campo_desconocido(self):
        with pytest.raises(ValueError):
            AggregateSchema(version=9, fields=frozenset({"total_compra"}))

    def test_tolerancia(self):
        assert within_tolerance(Decimal("242.01"), Decimal("242.00"))
        assert not within_tolerance(Decimal("242.02"), Decimal("242.00"))


# ===== BORRADOR =====

class TestPurchaseDraft:
    """Tests de alta y edición en borrador"""

    def test_alta_recalcula_totales(self, db_session, make_purchase, audit_events):
        compra = make_purchase()
        assert compra.estado == PurchaseStatus.BORRADOR
        assert compra.subtotal_neto == Decimal("200.00")
        assert compra.iva_total == Decimal("42.00")
        assert compra.total == Decimal("242.00")
        assert compra.detalles[0].total_linea == Decimal("242.00")
        assert [(e.modulo, e.accion) for e in audit_events] == [("compras", "crear")]

    def test_total_informado_dentro_de_tolerancia(self, make_purchase):
        compra = make_purchase(total=Decimal("242.01"))
        assert compra.total == Decimal("242.00")

    def test_total_informado_inconsistente(self, db_session, make_purchase, audit_events):
        with pytest.raises(DomainValidationError) as exc:
            make_purchase(total=Decimal("250"))
        assert exc.value.code == "TOTAL_INCONSISTENTE"
        assert db_session.query(Purchase).count() == 0
        assert audit_events == []

    def test_alta_con_impuestos(self, db_session, sample_supplier, sample_product, tax_configs):
        data = PurchaseCreate(
            proveedor_id=sample_supplier.id,
            detalles=[{"producto_id": sample_product.id, "cantidad": 2, "costo_unit_neto": "100"}],
            impuestos=[{"codigo": "piibb", "base": "200"}],
        )
        compra = PurchaseService(db_session).create_draft(data)
        assert compra.percepciones_total == Decimal("7.00")
        assert compra.total == Decimal("249.00")
        assert compra.impuestos[0].codigo == "PIIBB"

    def test_proveedor_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            PurchaseService(db_session).create_draft(PurchaseCreate(proveedor_id=999))

    def test_comprobante_duplicado(self, make_purchase):
        make_purchase(punto_venta=1, nro_comprobante=15)
        with pytest.raises(ConflictError) as exc:
            make_purchase(punto_venta=1, nro_comprobante=15)
        assert exc.value.code == "COMPROBANTE_DUPLICADO"

    def test_actualizar_cabecera(self, db_session, make_purchase, audit_events):
        compra = make_purchase()
        actualizada = PurchaseService(db_session).update_draft(
            compra.id, PurchaseUpdate(observaciones="  entrega parcial  ")
        )
        assert actualizada.observaciones == "entrega parcial"
        assert "observaciones" in audit_events[-1].descripcion

    def test_comprobante_incompleto_al_actualizar(self, db_session, make_purchase):
        compra = make_purchase()
        with pytest.raises(DomainValidationError) as exc:
            PurchaseService(db_session).update_draft(compra.id, PurchaseUpdate(punto_venta=3))
        assert exc.value.code == "COMPROBANTE_INCOMPLETO"

    def test_vencimiento_anterior_a_la_fecha(self, sample_supplier):
        with pytest.raises(ValueError):
            PurchaseCreate(
                proveedor_id=sample_supplier.id,
                fecha=datetime(2024, 5, 10),
                fecha_vencimiento=date(2024, 5, 9),
            )

    def test_vencimiento_vencido_sin_fecha(self, db_session, make_purchase):
        with pytest.raises(DomainValidationError) as exc:
            make_purchase(fecha_vencimiento=date.today() - timedelta(days=10))
        assert exc.value.code == "FECHAS_INVALIDAS"
        assert db_session.query(Purchase).count() == 0

    def test_vencimiento_invalido_al_actualizar(self, db_session, make_purchase):
        compra = make_purchase(fecha=datetime(2024, 5, 10))
        service = PurchaseService(db_session)
        with pytest.raises(DomainValidationError) as exc:
            service.update_draft(compra.id, PurchaseUpdate(fecha_vencimiento=date(2024, 5, 1)))
        assert exc.value.code == "FECHAS_INVALIDAS"

        actualizada = service.update_draft(compra.id, PurchaseUpdate(fecha_vencimiento=date(2024, 6, 9)))
        assert actualizada.fecha_vencimiento == date(2024, 6, 9)

    def test_eliminar_borrador(self, db_session, make_purchase):
        compra = make_purchase()
        PurchaseService(db_session).delete_draft(compra.id)
        assert db_session.query(Purchase).count() == 0

    def test_no_se_elimina_confirmada(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        with pytest.raises(InvalidStateError):
            PurchaseService(db_session).delete_draft(compra.id)


class TestPurchaseLines:
    """Tests de líneas con recálculo de cabecera"""

    def test_agregar_linea(self, db_session, make_purchase):
        compra = make_purchase()
        PurchaseLineService(db_session).create(
            compra.id, PurchaseLineCreate(descripcion="Flete", cantidad=1, costo_unit_neto="50", alicuota_iva=0)
        )
        db_session.refresh(compra)
        assert compra.total == Decimal("292.00")

    def test_modificar_linea(self, db_session, make_purchase):
        compra = make_purchase()
        linea = compra.detalles[0]
        actualizada = PurchaseLineService(db_session).update(compra.id, linea.id, PurchaseLineUpdate(cantidad=3))
        assert actualizada.total_linea == Decimal("363.00")
        db_session.refresh(compra)
        assert compra.total == Decimal("363.00")

    def test_linea_sin_producto_ni_descripcion(self, db_session, make_purchase):
        compra = make_purchase()
        linea = compra.detalles[0]
        with pytest.raises(DomainValidationError) as exc:
            PurchaseLineService(db_session).update(compra.id, linea.id, PurchaseLineUpdate(producto_id=None))
        assert exc.value.code == "LINEA_INVALIDA"

    def test_eliminar_linea(self, db_session, make_purchase):
        compra = make_purchase()
        PurchaseLineService(db_session).delete(compra.id, compra.detalles[0].id)
        db_session.refresh(compra)
        assert compra.total == 0

    def test_reemplazar_lineas(self, db_session, make_purchase, sample_product):
        compra = make_purchase()
        lineas = PurchaseLineService(db_session).replace_all(compra.id, [
            PurchaseLineCreate(producto_id=sample_product.id, cantidad=1, costo_unit_neto="10"),
            PurchaseLineCreate(descripcion="Embalaje", cantidad=1, costo_unit_neto="5", alicuota_iva=0),
        ])
        assert len(lineas) == 2
        db_session.refresh(compra)
        assert compra.total == Decimal("17.10")

    def test_producto_inexistente(self, db_session, make_purchase):
        compra = make_purchase()
        with pytest.raises(NotFoundError):
            PurchaseLineService(db_session).create(
                compra.id, PurchaseLineCreate(producto_id=999, cantidad=1, costo_unit_neto="1")
            )

    def test_no_se_editan_lineas_de_compra_confirmada(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        with pytest.raises(InvalidStateError) as exc:
            PurchaseLineService(db_session).create(
                compra.id, PurchaseLineCreate(descripcion="Extra", cantidad=1, costo_unit_neto="1")
            )
        assert exc.value.code == "COMPRA_NO_EDITABLE"


class TestRecompute:
    """Tests del recálculo persistido de agregados"""

    def _purchase_with_taxes(self, db_session, sample_supplier, sample_product):
        return PurchaseService(db_session).create_draft(PurchaseCreate(
            proveedor_id=sample_supplier.id,
            detalles=[{"producto_id": sample_product.id, "cantidad": 2, "costo_unit_neto": "100"}],
            impuestos=[{"codigo": "PIIBB", "base": "200"}, {"codigo": "RGAN", "base": "200"}],
        ))

    def test_recalcular_dos_veces_da_lo_mismo(self, db_session, sample_supplier, sample_product, tax_configs):
        compra = self._purchase_with_taxes(db_session, sample_supplier, sample_product)
        campos = ("subtotal_neto", "iva_total", "percepciones_total", "retenciones_total", "total")

        primera = recompute_purchase_totals(db_session, compra)
        db_session.commit()
        cabecera = {campo: getattr(compra, campo) for campo in campos}
        segunda = recompute_purchase_totals(db_session, compra)
        db_session.commit()

        assert primera == segunda
        assert {campo: getattr(compra, campo) for campo in campos} == cabecera
        assert primera.as_dict() == {
            "subtotal_neto": Decimal("200.00"),
            "iva_total": Decimal("42.00"),
            "percepciones_total": Decimal("7.00"),
            "retenciones_total": Decimal("4.00"),
            "total": Decimal("253.00"),
        }

    def test_modificar_linea_y_quitar_impuesto(self, db_session, sample_supplier, sample_product, tax_configs):
        compra = self._purchase_with_taxes(db_session, sample_supplier, sample_product)
        PurchaseLineService(db_session).update(compra.id, compra.detalles[0].id, PurchaseLineUpdate(cantidad=3))
        retencion = db_session.query(PurchaseTax).filter(
            PurchaseTax.compra_id == compra.id, PurchaseTax.codigo == "RGAN"
        ).one()
        PurchaseTaxService(db_session).delete(compra.id, retencion.id)

        db_session.refresh(compra)
        assert compra.subtotal_neto == Decimal("300.00")
        assert compra.iva_total == Decimal("63.00")
        assert compra.percepciones_total == Decimal("7.00")
        assert compra.retenciones_total == 0
        assert compra.total == Decimal("370.00")


# ===== CICLO DE VIDA =====

class TestConfirmAndAnnul:
    """Tests de confirmación y anulación"""

    def test_confirmar_genera_cxp_y_stock(self, db_session, make_purchase, sample_product, sample_supplier):
        compra = make_purchase(confirmar=True)
        assert compra.estado == PurchaseStatus.CONFIRMADA
        assert compra.fecha_vencimiento == compra.fecha.date() + timedelta(days=sample_supplier.dias_credito)

        payable = db_session.query(Payable).filter(Payable.compra_id == compra.id).one()
        assert payable.monto_total == Decimal("242.00")
        assert payable.saldo == Decimal("242.00")
        assert payable.estado == PayableStatus.PENDIENTE

        assert StockLedgerService(db_session).get_balance(sample_product.id) == 2
        movement = db_session.query(StockMovement).one()
        assert movement.tipo == MovementType.COMPRA
        assert (movement.ref_tabla, movement.ref_id) == ("compras", compra.id)

    def test_confirmar_con_local(self, db_session, make_purchase, sample_product):
        compra = make_purchase()
        PurchaseService(db_session).confirm(compra.id, local_id=4)
        assert StockLedgerService(db_session).get_balance(sample_product.id, local_id=4) == 2
        assert StockLedgerService(db_session).get_balance(sample_product.id) == 0

    def test_confirmar_crea_una_sola_cxp(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        with pytest.raises(ConflictError) as exc:
            PayableService(db_session).create_manual(PayableCreate(compra_id=compra.id))
        assert exc.value.code == "CXP_DUPLICADA"
        assert db_session.query(Payable).filter(Payable.compra_id == compra.id).count() == 1

    def test_confirmar_dos_veces(self, db_session, make_purchase):
        compra = make_purchase(confirmar=True)
        with pytest.raises(InvalidStateError):
            PurchaseService(db_session).confirm(compra.id)

    def test_confirmar_sin_lineas(self, db_session, sample_supplier):
        service = PurchaseService(db_session)
        compra = service.create_draft(PurchaseCreate(proveedor_id=sample_supplier.id))
        with pytest.raises(InvalidStateError) as exc:
            service.confirm(compra.id)
        assert exc.value.code == "COMPRA_SIN_DETALLES"

    def test_anular_revierte_stock_y_cancela_cxp(self, db_session, make_purchase, sample_product, audit_events):
        compra = make_purchase(confirmar=True)
        anulada = PurchaseService(db_session).annul(compra.id, usuario_id=7)

        assert anulada.estado == PurchaseStatus.ANULADA
        assert StockLedgerService(db_session).get_balance(sample_product.id) == 0
        payable = db_session.query(Payable).filter(Payable.compra_id == compra.id).one()
        assert payable.monto_total == 0
        assert payable.saldo == 0
        assert payable.estado == PayableStatus.CANCELADO
        assert audit_events[-1].accion == "anular"
        assert audit_events[-1].usuario_id == 7

    def test_anular_con_pagos(self, db_session, make_purchase, sample_supplier):
        compra = make_purchase(confirmar=True)
        SupplierPaymentService(db_session).create(SupplierPaymentCreate(
            proveedor_id=sample_supplier.id, monto_total="100",
            aplicaciones=[{"compra_id": compra.id, "monto_aplicado": "100"}],
        ))
        with pytest.raises(ConflictError) as exc:
            PurchaseService(db_session).annul(compra.id)
        assert exc.value.code == "COMPRA_CON_PAGOS"
        assert "Nota de Crédito" in exc.value.sugerencia
        db_session.refresh(compra)
        assert compra.estado == PurchaseStatus.CONFIRMADA

    def test_anular_con_stock_consumido(self, db_session, make_purchase, sample_product):
        """Si el stock ya se vendió la reversa dejaría saldo negativo"""
        compra = make_purchase(confirmar=True)
        ledger = StockLedgerService(db_session)
        ledger.post(producto_id=sample_product.id, tipo=MovementType.VENTA, delta=-2)
        db_session.commit()

        with pytest.raises(ConflictError) as exc:
            PurchaseService(db_session).annul(compra.id)
        assert exc.value.code == "STOCK_INSUFICIENTE"
        db_session.refresh(compra)
        assert compra.estado == PurchaseStatus.CONFIRMADA

    def test_anular_borrador(self, db_session, make_purchase):
        compra = make_purchase()
        with pytest.raises(InvalidStateError):
            PurchaseService(db_session).annul(compra.id)


# ===== ENDPOINTS =====

class TestPurchaseRoutes:
    """Tests de los endpoints /compras"""

    def test_crear_y_confirmar(self, client, sample_supplier, sample_product):
        response = client.post("/compras", json={
            "proveedor_id": sample_supplier.id,
            "detalles": [{"producto_id": sample_product.id, "cantidad": 2, "costo_unit_neto": "100"}],
        }, headers={"X-Usuario-Id": "3"})
        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["total"]) == Decimal("242.00")
        assert body["created_by"] == 3

        response = client.post(f"/compras/{body['id']}/confirmar", json={})
        assert response.status_code == 200
        assert response.json()["estado"] == "confirmada"
        assert Decimal(response.json()["cuenta_por_pagar"]["saldo"]) == Decimal("242.00")

    def test_editar_confirmada_devuelve_400(self, client, make_purchase):
        compra = make_purchase(confirmar=True)
        response = client.post(f"/compras/{compra.id}/detalles", json={
            "descripcion": "Extra", "cantidad": 1, "costo_unit_neto": "1"
        })
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "COMPRA_NO_EDITABLE"

    def test_compra_inexistente(self, client):
        response = client.get("/compras/999")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "COMPRA_NO_ENCONTRADA"

    def test_listar_por_estado(self, client, make_purchase):
        make_purchase()
        make_purchase(confirmar=True)
        response = client.get("/compras", params={"estado": "confirmada"})
        assert response.status_code == 200
        assert response.json()["total"] == 1
