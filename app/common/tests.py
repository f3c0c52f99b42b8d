"""
Tests de utilidades comunes: dinero, validadores, auditoría y unidad de trabajo
"""

from decimal import Decimal
from enum import Enum

import pytest

from app.common.audit import (
    AuditEvent, emit, pending, dispatch, diff, describir_cambios, register_sink, unregister_sink
)
from app.common.exceptions import ConflictError, InternalError, NotFoundError
from app.common.money import round2, round4, to_decimal
from app.common.validators import validate_cuit, normalize_cuit, normalize_codigo, clean_text
from app.database.database import unit_of_work
from app.modules.suppliers.models import Supplier


class Color(Enum):
    ROJO = "rojo"
    AZUL = "azul"


class TestMoney:
    def test_half_up(self):
        assert round2(Decimal("1.005")) == Decimal("1.01")
        assert round2(Decimal("-1.005")) == Decimal("-1.01")
        assert round2("2.675") == Decimal("2.68")
        assert round4(Decimal("0.03505")) == Decimal("0.0351")

    def test_float_via_str(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(None) == 0


class TestValidators:
    def test_cuit_valido(self):
        assert validate_cuit("20-12345678-6")
        assert validate_cuit("30712345671")

    def test_cuit_invalido(self):
        assert not validate_cuit("20-12345678-5")
        assert not validate_cuit("99123456786")
        assert not validate_cuit("2012345678")

    def test_normalizaciones(self):
        assert normalize_cuit("20 12345678 6") == "20-12345678-6"
        assert normalize_codigo("  iva21 ") == "IVA21"
        assert normalize_codigo("   ") is None
        assert clean_text("  hola ") == "hola"
        assert clean_text("") is None
        with pytest.raises(ValueError):
            clean_text("abcdef", max_length=3)


class TestDiff:
    """Tests del diff de auditoría"""

    def test_numeros_por_valor(self):
        assert diff({"monto": Decimal("1.50")}, {"monto": 1.5}, ["monto"]) == []

    def test_textos_y_ausentes(self):
        assert diff({"notas": " a "}, {"notas": "a"}, ["notas"]) == []
        assert diff({}, {"notas": ""}, ["notas"]) == []

    def test_enums(self):
        cambios = diff({"color": Color.ROJO}, {"color": Color.AZUL}, ["color", "otro"])
        assert [c.campo for c in cambios] == ["color"]
        assert describir_cambios(cambios) == "color: 'rojo' -> 'azul'"


class TestAuditOutbox:
    """Los eventos solo se entregan si la transacción confirma"""

    def test_commit_entrega(self, db_session, audit_events):
        with unit_of_work(db_session):
            db_session.add(Supplier(razon_social="Proveedor A"))
            emit(db_session, AuditEvent(1, "proveedores", "crear", "alta"))
            assert audit_events == []
        assert [e.accion for e in audit_events] == ["crear"]
        assert pending(db_session) == []

    def test_rollback_descarta(self, db_session, audit_events):
        with pytest.raises(NotFoundError):
            with unit_of_work(db_session):
                emit(db_session, AuditEvent(1, "proveedores", "crear", "alta"))
                raise NotFoundError("no existe")
        assert audit_events == []
        assert pending(db_session) == []

    def test_rollback_no_se_filtra_al_siguiente_commit(self, db_session, audit_events):
        with pytest.raises(NotFoundError):
            with unit_of_work(db_session):
                emit(db_session, AuditEvent(1, "proveedores", "crear", "operacion fallida"))
                raise NotFoundError("no existe")
        with unit_of_work(db_session):
            db_session.add(Supplier(razon_social="Proveedor B"))
            emit(db_session, AuditEvent(1, "proveedores", "crear", "alta ok"))
        assert [e.descripcion for e in audit_events] == ["alta ok"]

    def test_sink_que_falla_no_interrumpe(self, audit_events):
        def roto(event):
            raise RuntimeError("cola caída")

        register_sink(roto)
        try:
            dispatch([AuditEvent(None, "m", "a", "d")])
        finally:
            unregister_sink(roto)
        assert len(audit_events) == 1

    def test_evento_serializable(self):
        data = AuditEvent(3, "compras", "crear", "x").to_dict()
        assert data["usuario_id"] == 3
        assert "T" in data["fecha_hora"]


class TestUnitOfWork:
    def test_integridad_como_conflicto(self, db_session):
        db_session.add(Supplier(razon_social="A", cuit="20123456786"))
        db_session.commit()
        with pytest.raises(ConflictError) as exc:
            with unit_of_work(db_session):
                db_session.add(Supplier(razon_social="B", cuit="20123456786"))
                db_session.flush()
        assert exc.value.code == "INTEGRIDAD"
        assert db_session.query(Supplier).count() == 1

    def test_error_inesperado(self, db_session):
        with pytest.raises(InternalError):
            with unit_of_work(db_session):
                raise RuntimeError("fallo")
