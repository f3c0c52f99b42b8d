"""
Tests para el módulo de Inventario (ledger de stock)

- Reglas de signo por tipo de movimiento
- Saldo nunca negativo
- Reversas: una sola por movimiento, con AJUSTE de delta opuesto
- Movimientos inmutables salvo las notas
"""

from decimal import Decimal

import pytest

from app.common.exceptions import ConflictError, DomainValidationError, NotFoundError
from app.modules.inventory.models import MovementType, Stock, StockMovement
from app.modules.inventory.schemas import StockMovementCreate
from app.modules.inventory.service import StockLedgerService, coerce_delta, validate_sign


class TestSignRules:
    """Tests de validación de delta"""

    @pytest.mark.parametrize("tipo", [MovementType.COMPRA, MovementType.DEVOLUCION_CLIENTE, MovementType.RECEPCION_OC])
    def test_tipos_positivos(self, tipo):
        validate_sign(tipo, 1)
        with pytest.raises(DomainValidationError):
            validate_sign(tipo, -1)

    @pytest.mark.parametrize("tipo", [MovementType.VENTA, MovementType.DEVOLUCION_PROVEEDOR])
    def test_tipos_negativos(self, tipo):
        validate_sign(tipo, -1)
        with pytest.raises(DomainValidationError):
            validate_sign(tipo, 1)

    def test_ajuste_y_transferencia_libres(self):
        for tipo in (MovementType.AJUSTE, MovementType.TRANSFERENCIA):
            validate_sign(tipo, 5)
            validate_sign(tipo, -5)

    def test_delta(self):
        assert coerce_delta(3) == 3
        assert coerce_delta("4") == 4
        assert coerce_delta(Decimal("-2.0")) == -2
        for invalido in (0, 1.5, "x", None, True):
            with pytest.raises(DomainValidationError):
                coerce_delta(invalido)


class TestLedger:
    """Tests de movimientos y saldo"""

    def _post(self, db_session, producto, tipo, delta, **extra):
        return StockLedgerService(db_session).post_movement(
            StockMovementCreate(producto_id=producto.id, tipo=tipo, delta=delta, **extra), usuario_id=5
        )

    def test_movimiento_actualiza_saldo(self, db_session, sample_product, audit_events):
        self._post(db_session, sample_product, MovementType.COMPRA, 3)
        ledger = StockLedgerService(db_session)
        assert ledger.get_balance(sample_product.id) == 3
        assert audit_events[-1].modulo == "stock_movimientos"

    def test_saldo_insuficiente(self, db_session, sample_product):
        self._post(db_session, sample_product, MovementType.COMPRA, 3)
        with pytest.raises(ConflictError) as exc:
            self._post(db_session, sample_product, MovementType.VENTA, -5)
        assert exc.value.code == "STOCK_INSUFICIENTE"
        assert StockLedgerService(db_session).get_balance(sample_product.id) == 3
        assert db_session.query(StockMovement).count() == 1

    def test_saldos_por_ubicacion(self, db_session, sample_product):
        self._post(db_session, sample_product, MovementType.COMPRA, 3, local_id=1)
        self._post(db_session, sample_product, MovementType.COMPRA, 2, local_id=1, lugar_id=7)
        ledger = StockLedgerService(db_session)
        assert ledger.get_balance(sample_product.id, local_id=1) == 3
        assert ledger.get_balance(sample_product.id, local_id=1, lugar_id=7) == 2
        assert ledger.get_balance(sample_product.id) == 0
        assert db_session.query(Stock).count() == 2

    def test_signo_incorrecto(self, db_session, sample_product):
        with pytest.raises(DomainValidationError) as exc:
            self._post(db_session, sample_product, MovementType.VENTA, 2)
        assert exc.value.code == "SIGNO_INVALIDO"

    def test_ref_id_sin_tabla(self, db_session, sample_product):
        with pytest.raises(DomainValidationError) as exc:
            self._post(db_session, sample_product, MovementType.AJUSTE, 2, ref_id=4)
        assert exc.value.code == "REF_INCOMPLETA"

    def test_producto_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            StockLedgerService(db_session).post_movement(
                StockMovementCreate(producto_id=999, tipo=MovementType.AJUSTE, delta=1)
            )

    def test_reversa(self, db_session, sample_product):
        original = self._post(db_session, sample_product, MovementType.COMPRA, 4, costo_unit_neto=Decimal("12.5"))
        ledger = StockLedgerService(db_session)
        reversal = ledger.reverse_movement(original.id, notas="carga duplicada")

        assert reversal.tipo == MovementType.AJUSTE
        assert reversal.delta == -4
        assert (reversal.ref_tabla, reversal.ref_id) == ("stock_movimientos", original.id)
        assert reversal.notas == f"Reversa de movimiento {original.id} - carga duplicada"
        assert ledger.get_balance(sample_product.id) == 0

    def test_doble_reversa(self, db_session, sample_product):
        original = self._post(db_session, sample_product, MovementType.COMPRA, 4)
        ledger = StockLedgerService(db_session)
        ledger.reverse_movement(original.id)
        with pytest.raises(ConflictError) as exc:
            ledger.reverse_movement(original.id)
        assert exc.value.code == "YA_REVERTIDO"
        assert ledger.get_balance(sample_product.id) == 0

    def test_reversa_que_dejaria_saldo_negativo(self, db_session, sample_product):
        original = self._post(db_session, sample_product, MovementType.COMPRA, 4)
        self._post(db_session, sample_product, MovementType.VENTA, -3)
        with pytest.raises(ConflictError) as exc:
            StockLedgerService(db_session).reverse_movement(original.id)
        assert exc.value.code == "STOCK_INSUFICIENTE"

    def test_actualizar_notas(self, db_session, sample_product, audit_events):
        movement = self._post(db_session, sample_product, MovementType.COMPRA, 1, notas="inicial")
        updated = StockLedgerService(db_session).update_notes(movement.id, "  recontado  ")
        assert updated.notas == "recontado"
        assert "'inicial' -> 'recontado'" in audit_events[-1].descripcion

    def test_eliminar_movimiento(self, db_session, sample_product):
        movement = self._post(db_session, sample_product, MovementType.COMPRA, 2)
        ledger = StockLedgerService(db_session)
        with pytest.raises(ConflictError) as exc:
            ledger.delete_movement(movement.id)
        assert exc.value.code == "MOVIMIENTO_INMUTABLE"
        assert db_session.query(StockMovement).count() == 1
        assert ledger.get_balance(sample_product.id) == 2
        with pytest.raises(NotFoundError):
            ledger.delete_movement(999)

    def test_listar_por_referencia(self, db_session, sample_product):
        self._post(db_session, sample_product, MovementType.COMPRA, 1, ref_tabla="compras", ref_id=10)
        self._post(db_session, sample_product, MovementType.COMPRA, 1)
        result = StockLedgerService(db_session).list_movements(ref_tabla="compras", ref_id=10)
        assert result["total"] == 1


class TestStockRoutes:
    def test_no_se_eliminan_movimientos(self, client, db_session, sample_product):
        movement = StockLedgerService(db_session).post_movement(
            StockMovementCreate(producto_id=sample_product.id, tipo=MovementType.COMPRA, delta=1)
        )
        response = client.delete(f"/stock/movimientos/{movement.id}")
        assert response.status_code == 405
        assert response.json()["detail"]["code"] == "MOVIMIENTO_INMUTABLE"

    def test_venta_sin_stock(self, client, sample_product):
        response = client.post("/stock/movimientos", json={
            "producto_id": sample_product.id, "tipo": "VENTA", "delta": -5,
        })
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "STOCK_INSUFICIENTE"

    def test_saldos(self, client, sample_product):
        client.post("/stock/movimientos", json={"producto_id": sample_product.id, "tipo": "COMPRA", "delta": 6})
        response = client.get("/stock", params={"producto_id": sample_product.id})
        assert response.status_code == 200
        assert response.json()[0]["cantidad"] == 6
