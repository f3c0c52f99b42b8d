from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.taxes.models import TaxType
from app.modules.taxes.service import TaxConfigService, PurchaseTaxService
from app.modules.taxes.schemas import (
    TaxConfigCreate, TaxConfigUpdate, TaxConfigSetActive, TaxConfigOut, TaxConfigList,
    PurchaseTaxCreate, PurchaseTaxUpdate, PurchaseTaxOut
)

taxes_router = APIRouter(prefix="/impuestos-config", tags=["Impuestos"])
purchase_taxes_router = APIRouter(prefix="/compras/{compra_id}/impuestos", tags=["Compras"])


@taxes_router.get("", response_model=TaxConfigList)
def list_tax_configs(
    tipo: Optional[TaxType] = Query(None),
    activo: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Buscar por código o descripción"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Listar el catálogo de impuestos"""
    return TaxConfigService(db).list(tipo=tipo, activo=activo, search=search, limit=limit, offset=offset)


@taxes_router.get("/codigo/{codigo}", response_model=TaxConfigOut)
def get_tax_config_by_codigo(codigo: str, db: Session = Depends(get_db)):
    """Obtener un impuesto por código (no distingue mayúsculas)"""
    return TaxConfigService(db).get_by_codigo(codigo)


@taxes_router.get("/{impuesto_id}", response_model=TaxConfigOut)
def get_tax_config(impuesto_id: int, db: Session = Depends(get_db)):
    return TaxConfigService(db).get(impuesto_id)


@taxes_router.post("", response_model=TaxConfigOut, status_code=status.HTTP_201_CREATED)
def create_tax_config(
    data: TaxConfigCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """
    Crear un impuesto en el catálogo

    La alícuota es una fracción: 0.21 = 21%, 0.035 = 3,5%.
    """
    return TaxConfigService(db).create(data, usuario_id)


@taxes_router.patch("/{impuesto_id}", response_model=TaxConfigOut)
def update_tax_config(
    impuesto_id: int,
    data: TaxConfigUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return TaxConfigService(db).update(impuesto_id, data, usuario_id)


@taxes_router.patch("/{impuesto_id}/activo", response_model=TaxConfigOut)
def set_tax_config_active(
    impuesto_id: int,
    data: TaxConfigSetActive,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return TaxConfigService(db).set_active(impuesto_id, data.activo, usuario_id)


@purchase_taxes_router.get("", response_model=List[PurchaseTaxOut])
def list_purchase_taxes(compra_id: int, db: Session = Depends(get_db)):
    return PurchaseTaxService(db).list(compra_id)


@purchase_taxes_router.get("/{impuesto_linea_id}", response_model=PurchaseTaxOut)
def get_purchase_tax(compra_id: int, impuesto_linea_id: int, db: Session = Depends(get_db)):
    return PurchaseTaxService(db).get(compra_id, impuesto_linea_id)


@purchase_taxes_router.post("", response_model=PurchaseTaxOut, status_code=status.HTTP_201_CREATED)
def create_purchase_tax(
    compra_id: int,
    data: PurchaseTaxCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Agregar una línea de impuesto (solo compras en borrador)"""
    return PurchaseTaxService(db).create(compra_id, data, usuario_id)


@purchase_taxes_router.patch("/{impuesto_linea_id}", response_model=PurchaseTaxOut)
def update_purchase_tax(
    compra_id: int,
    impuesto_linea_id: int,
    data: PurchaseTaxUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PurchaseTaxService(db).update(compra_id, impuesto_linea_id, data, usuario_id)


@purchase_taxes_router.delete("/{impuesto_linea_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_purchase_tax(
    compra_id: int,
    impuesto_linea_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PurchaseTaxService(db).delete(compra_id, impuesto_linea_id, usuario_id)
