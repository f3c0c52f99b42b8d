"""
Tests para el catálogo de proveedores
"""

import pytest
from pydantic import ValidationError

from app.common.exceptions import ConflictError
from app.modules.suppliers.schemas import SupplierCreate
from app.modules.suppliers.service import SupplierService


class TestSupplierSchema:
    def test_cuit_normalizado(self):
        assert SupplierCreate(razon_social="Norte", cuit="20123456786").cuit == "20-12345678-6"

    def test_cuit_invalido(self):
        with pytest.raises(ValidationError):
            SupplierCreate(razon_social="Norte", cuit="20-12345678-0")

    def test_razon_social_vacia(self):
        with pytest.raises(ValidationError):
            SupplierCreate(razon_social="   ")


class TestSupplierService:
    def test_cuit_duplicado(self, db_session):
        service = SupplierService(db_session)
        service.create(SupplierCreate(razon_social="Norte", cuit="20-12345678-6"))
        with pytest.raises(ConflictError) as exc:
            service.create(SupplierCreate(razon_social="Otro", cuit="20123456786"))
        assert exc.value.code == "CUIT_DUPLICADO"

    def test_buscar(self, db_session, sample_supplier, other_supplier):
        result = SupplierService(db_session).list(search="norte")
        assert result["total"] == 1
        assert result["items"][0].id == sample_supplier.id


class TestSupplierRoutes:
    def test_alta_y_consulta(self, client, audit_events):
        response = client.post("/proveedores", json={"razon_social": "Mayorista Centro", "dias_credito": 15},
                               params={"usuario_log_id": 9})
        assert response.status_code == 201
        proveedor_id = response.json()["id"]
        assert client.get(f"/proveedores/{proveedor_id}").json()["dias_credito"] == 15
        assert any(e.usuario_id == 9 and e.modulo == "proveedores" for e in audit_events)

    def test_inexistente(self, client):
        response = client.get("/proveedores/404")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PROVEEDOR_NO_ENCONTRADO"
