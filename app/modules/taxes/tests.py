"""
Tests para el módulo de Impuestos

- Catálogo de alícuotas (alta, códigos normalizados, activación)
- Resolución de líneas de impuesto contra el catálogo
- Recálculo de la compra al agregar, modificar o quitar impuestos
"""

from decimal import Decimal

import pytest

from app.common.exceptions import ConflictError, DomainValidationError, NotFoundError, InvalidStateError
from app.modules.taxes.models import TaxType
from app.modules.taxes.schemas import TaxConfigCreate, TaxConfigUpdate, PurchaseTaxCreate, PurchaseTaxUpdate
from app.modules.taxes.service import TaxConfigService, PurchaseTaxService


class TestTaxConfig:
    """Tests del catálogo"""

    def test_crear_normaliza_codigo(self, db_session, audit_events):
        tax = TaxConfigService(db_session).create(
            TaxConfigCreate(tipo=TaxType.PERCEPCION, codigo=" iibb-caba ", alicuota=Decimal("0.03"))
        )
        assert tax.codigo == "IIBB-CABA"
        assert tax.activo is True
        assert audit_events[0].modulo == "impuestos_config"

    def test_codigo_duplicado(self, db_session, tax_configs):
        with pytest.raises(ConflictError) as exc:
            TaxConfigService(db_session).create(
                TaxConfigCreate(tipo=TaxType.IVA, codigo="iva21", alicuota=Decimal("0.21"))
            )
        assert exc.value.code == "CODIGO_DUPLICADO"

    def test_renombrar_a_codigo_existente(self, db_session, tax_configs):
        with pytest.raises(ConflictError):
            TaxConfigService(db_session).update(tax_configs["PIIBB"].id, TaxConfigUpdate(codigo="IVA21"))

    def test_resolver_solo_activos(self, db_session, tax_configs):
        service = TaxConfigService(db_session)
        assert service.resolve_active(" iva21 ").id == tax_configs["IVA21"].id
        with pytest.raises(NotFoundError):
            service.resolve_active("VIEJO")

    def test_desactivar(self, db_session, tax_configs):
        service = TaxConfigService(db_session)
        service.set_active(tax_configs["RGAN"].id, False)
        with pytest.raises(NotFoundError):
            service.resolve_active("RGAN")

    def test_listar_por_tipo(self, db_session, tax_configs):
        result = TaxConfigService(db_session).list(tipo=TaxType.PERCEPCION)
        assert result["total"] == 2


class TestTaxResolution:
    """Tests de normalización de líneas de impuesto"""

    def test_alicuota_y_tipo_del_catalogo(self, db_session, tax_configs):
        resolved = PurchaseTaxService(db_session).resolve(tipo=None, codigo="piibb", base=Decimal("200"))
        assert resolved["tipo"] == TaxType.PERCEPCION
        assert resolved["alicuota"] == Decimal("0.0350")
        assert resolved["monto"] == Decimal("7.00")
        assert resolved["impuesto_id"] == tax_configs["PIIBB"].id

    def test_monto_explicito(self, db_session, tax_configs):
        resolved = PurchaseTaxService(db_session).resolve(
            tipo=None, codigo="PIIBB", base=Decimal("200"), monto=Decimal("6.99")
        )
        assert resolved["monto"] == Decimal("6.99")

    def test_sin_codigo_ni_tipo(self, db_session):
        with pytest.raises(DomainValidationError) as exc:
            PurchaseTaxService(db_session).resolve(tipo=None, codigo=None, base=Decimal("10"))
        assert exc.value.code == "TIPO_REQUERIDO"

    def test_tipo_invalido(self, db_session):
        with pytest.raises(DomainValidationError) as exc:
            PurchaseTaxService(db_session).resolve(tipo="Tasa", codigo=None, base=Decimal("10"))
        assert exc.value.code == "TIPO_INVALIDO"

    def test_sin_catalogo_alicuota_cero(self, db_session):
        resolved = PurchaseTaxService(db_session).resolve(tipo="Otro", codigo=None, base=Decimal("10"))
        assert resolved["alicuota"] == 0
        assert resolved["monto"] == 0

    def test_alicuota_fuera_de_rango(self, db_session):
        with pytest.raises(DomainValidationError):
            PurchaseTaxService(db_session).resolve(
                tipo=TaxType.OTRO, codigo=None, base=Decimal("10"), alicuota=Decimal("21")
            )


class TestPurchaseTaxes:
    """Tests de impuestos sobre compras en borrador"""

    def test_agregar_recalcula_total(self, db_session, make_purchase, tax_configs):
        compra = make_purchase()
        tax = PurchaseTaxService(db_session).create(compra.id, PurchaseTaxCreate(codigo="PIIBB", base="200"))
        assert tax.monto == Decimal("7.00")
        db_session.refresh(compra)
        assert compra.percepciones_total == Decimal("7.00")
        assert compra.total == Decimal("249.00")

    def test_modificar_base_recalcula_monto(self, db_session, make_purchase, tax_configs):
        compra = make_purchase()
        service = PurchaseTaxService(db_session)
        tax = service.create(compra.id, PurchaseTaxCreate(codigo="PIIBB", base="200"))
        tax = service.update(compra.id, tax.id, PurchaseTaxUpdate(base=Decimal("100")))
        assert tax.monto == Decimal("3.50")
        db_session.refresh(compra)
        assert compra.total == Decimal("245.50")

    def test_cambiar_codigo_relee_catalogo(self, db_session, make_purchase, tax_configs):
        compra = make_purchase()
        service = PurchaseTaxService(db_session)
        tax = service.create(compra.id, PurchaseTaxCreate(codigo="PIIBB", base="200"))
        tax = service.update(compra.id, tax.id, PurchaseTaxUpdate(codigo="RGAN"))
        assert tax.tipo == TaxType.RETENCION
        assert tax.monto == Decimal("4.00")
        db_session.refresh(compra)
        assert compra.percepciones_total == 0
        assert compra.retenciones_total == Decimal("4.00")
        assert compra.total == Decimal("246.00")

    def test_quitar_impuesto(self, db_session, make_purchase, tax_configs):
        compra = make_purchase()
        service = PurchaseTaxService(db_session)
        tax = service.create(compra.id, PurchaseTaxCreate(codigo="PIIBB", base="200"))
        service.delete(compra.id, tax.id)
        db_session.refresh(compra)
        assert compra.total == Decimal("242.00")

    def test_codigo_inactivo(self, db_session, make_purchase, tax_configs):
        compra = make_purchase()
        with pytest.raises(NotFoundError):
            PurchaseTaxService(db_session).create(compra.id, PurchaseTaxCreate(codigo="VIEJO", base="10"))

    def test_compra_confirmada(self, db_session, make_purchase, tax_configs):
        compra = make_purchase(confirmar=True)
        with pytest.raises(InvalidStateError):
            PurchaseTaxService(db_session).create(compra.id, PurchaseTaxCreate(codigo="PIIBB", base="200"))


class TestTaxRoutes:
    def test_buscar_por_codigo(self, client, tax_configs):
        response = client.get("/impuestos-config/codigo/iva21")
        assert response.status_code == 200
        assert Decimal(response.json()["alicuota"]) == Decimal("0.21")

    def test_impuesto_de_compra(self, client, make_purchase, tax_configs):
        compra = make_purchase()
        response = client.post(f"/compras/{compra.id}/impuestos", json={"codigo": "rgan", "base": "200"})
        assert response.status_code == 201
        assert response.json()["tipo"] == "Retencion"
        response = client.get(f"/compras/{compra.id}")
        assert Decimal(response.json()["total"]) == Decimal("246.00")
