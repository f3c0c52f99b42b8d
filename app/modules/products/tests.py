"""
Tests para el catálogo de productos
"""

import pytest

from app.common.exceptions import ConflictError, NotFoundError
from app.modules.products.schemas import ProductCreate
from app.modules.products.service import ProductService


class TestProductService:
    def test_sku_duplicado(self, db_session, sample_product):
        with pytest.raises(ConflictError) as exc:
            ProductService(db_session).create(ProductCreate(nombre="Otra yerba", codigo_sku="YER-1000"))
        assert exc.value.code == "SKU_DUPLICADO"

    def test_inexistente(self, db_session):
        with pytest.raises(NotFoundError):
            ProductService(db_session).get(123)

    def test_listado_por_endpoint(self, client, sample_product):
        response = client.get("/productos", params={"search": "yerba"})
        assert response.status_code == 200
        assert response.json()["items"][0]["codigo_sku"] == "YER-1000"
