"""
Fixtures compartidas por los tests de los módulos

La base es SQLite en memoria (una sola conexión compartida) y se recrea en
cada test. SQLite ignora FOR UPDATE: los tests cubren la lógica, no la
concurrencia real de PostgreSQL.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.common.audit import register_sink, unregister_sink, clear_sinks
from app.database.database import Base, get_db
from app.modules.products.models import Product
from app.modules.purchases.schemas import PurchaseCreate
from app.modules.purchases.service import PurchaseService
from app.modules.suppliers.models import Supplier
from app.modules.taxes.models import TaxConfig, TaxType

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def audit_events():
    """Eventos de auditoría entregados después de cada commit"""
    events = []
    sink = events.append
    clear_sinks()
    register_sink(sink)
    yield events
    unregister_sink(sink)


@pytest.fixture
def sample_supplier(db_session):
    supplier = Supplier(razon_social="Distribuidora Norte S.A.", cuit="30712345671", dias_credito=30)
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture
def other_supplier(db_session):
    supplier = Supplier(razon_social="Mayorista Sur SRL", dias_credito=0)
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture
def sample_product(db_session):
    product = Product(nombre="Yerba 1kg", codigo_sku="YER-1000")
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def tax_configs(db_session):
    configs = {
        "IVA21": TaxConfig(tipo=TaxType.IVA, codigo="IVA21", descripcion="IVA 21%", alicuota=Decimal("0.21")),
        "PIIBB": TaxConfig(tipo=TaxType.PERCEPCION, codigo="PIIBB", descripcion="Percepción IIBB",
                           alicuota=Decimal("0.035")),
        "RGAN": TaxConfig(tipo=TaxType.RETENCION, codigo="RGAN", descripcion="Retención Ganancias",
                          alicuota=Decimal("0.02")),
        "VIEJO": TaxConfig(tipo=TaxType.PERCEPCION, codigo="VIEJO", alicuota=Decimal("0.01"), activo=False),
    }
    db_session.add_all(configs.values())
    db_session.commit()
    return configs


@pytest.fixture
def make_purchase(db_session, sample_supplier, sample_product):
    """Crea compras en borrador (o confirmadas) con líneas de producto"""
    def _make(cantidad=2, costo="100", alicuota="21", confirmar=False, proveedor=None, **extra):
        data = PurchaseCreate(
            proveedor_id=(proveedor or sample_supplier).id,
            detalles=[{
                "producto_id": sample_product.id,
                "cantidad": cantidad,
                "costo_unit_neto": Decimal(costo),
                "alicuota_iva": Decimal(alicuota),
            }],
            **extra,
        )
        service = PurchaseService(db_session)
        compra = service.create_draft(data, usuario_id=1)
        if confirmar:
            compra = service.confirm(compra.id, usuario_id=1)
        return compra

    return _make
