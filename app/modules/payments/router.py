from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.userDependencies import get_usuario_id
from app.modules.payments.schemas import (
    SupplierPaymentCreate, SupplierPaymentOut, SupplierPaymentDetail, SupplierPaymentList,
    PaymentApplicationApply, PaymentApplicationUpdate, PaymentApplicationOut,
    PaymentMethodCreate, PaymentMethodUpdate, PaymentMethodOut, PaymentMethodSummary
)
from app.modules.payments.models import PaymentOrigin
from app.modules.payments.service import (
    SupplierPaymentService, PaymentApplicationService, PaymentMethodService
)

payments_router = APIRouter(prefix="/pagos-proveedor", tags=["Pagos a proveedores"])


@payments_router.get("", response_model=SupplierPaymentList)
def list_payments(
    proveedor_id: Optional[int] = Query(None),
    desde: Optional[datetime] = Query(None),
    hasta: Optional[datetime] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return SupplierPaymentService(db).list(
        proveedor_id=proveedor_id, desde=desde, hasta=hasta, limit=limit, offset=offset
    )


@payments_router.post("", response_model=SupplierPaymentOut, status_code=status.HTTP_201_CREATED)
def create_payment(
    data: SupplierPaymentCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """
    Registrar un pago a proveedor

    Si se envían `aplicaciones`, se imputan en la misma transacción: si una
    falla no se registra nada.
    """
    return SupplierPaymentService(db).create(data, usuario_id)


@payments_router.get("/aplicaciones", response_model=List[PaymentApplicationOut])
def list_applications(
    pago_id: Optional[int] = Query(None),
    compra_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    return PaymentApplicationService(db).list(pago_id=pago_id, compra_id=compra_id)


@payments_router.post("/aplicaciones", response_model=PaymentApplicationOut,
                      status_code=status.HTTP_201_CREATED)
def apply_payment(
    data: PaymentApplicationApply,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Imputar un pago a una compra confirmada"""
    return PaymentApplicationService(db).apply(data.pago_id, data.compra_id, data.monto_aplicado, usuario_id)


@payments_router.get("/aplicaciones/{aplicacion_id}", response_model=PaymentApplicationOut)
def get_application(aplicacion_id: int, db: Session = Depends(get_db)):
    return PaymentApplicationService(db).get(aplicacion_id)


@payments_router.patch("/aplicaciones/{aplicacion_id}", response_model=PaymentApplicationOut)
def update_application(
    aplicacion_id: int,
    data: PaymentApplicationUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    return PaymentApplicationService(db).update(aplicacion_id, data.monto_aplicado, usuario_id)


@payments_router.delete("/aplicaciones/{aplicacion_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_application(
    aplicacion_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PaymentApplicationService(db).remove(aplicacion_id, usuario_id)


@payments_router.get("/medios/{medio_id}", response_model=PaymentMethodOut)
def get_payment_method(medio_id: int, db: Session = Depends(get_db)):
    return PaymentMethodService(db).get(medio_id)


@payments_router.patch("/medios/{medio_id}", response_model=PaymentMethodOut)
def update_payment_method(
    medio_id: int,
    data: PaymentMethodUpdate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Modificar monto u observaciones; el pago se resincroniza"""
    return PaymentMethodService(db).update(medio_id, data, usuario_id)


@payments_router.delete("/medios/{medio_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_method(
    medio_id: int,
    force: bool = Query(False, description="Eliminar aunque tenga referencias de banco, cheque o caja"),
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    PaymentMethodService(db).delete(medio_id, force=force, usuario_id=usuario_id)


@payments_router.get("/{pago_id}/medios", response_model=List[PaymentMethodOut])
def list_payment_methods(
    pago_id: int,
    tipo_origen: Optional[PaymentOrigin] = Query(None),
    db: Session = Depends(get_db),
):
    return PaymentMethodService(db).list(pago_id, tipo_origen=tipo_origen)


@payments_router.post("/{pago_id}/medios", response_model=PaymentMethodOut,
                      status_code=status.HTTP_201_CREATED)
def create_payment_method(
    pago_id: int,
    data: PaymentMethodCreate,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Agregar un medio al pago; su monto pasa a ser la suma de medios"""
    return PaymentMethodService(db).create(pago_id, data, usuario_id)


@payments_router.get("/{pago_id}/medios/resumen", response_model=PaymentMethodSummary)
def payment_methods_summary(pago_id: int, db: Session = Depends(get_db)):
    return PaymentMethodService(db).summary(pago_id)


@payments_router.post("/{pago_id}/medios/reconciliar", response_model=SupplierPaymentOut)
def reconcile_payment_methods(
    pago_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    """Forzar monto_total = suma de medios"""
    return PaymentMethodService(db).reconcile(pago_id, usuario_id)


@payments_router.get("/{pago_id}", response_model=SupplierPaymentDetail)
def get_payment(pago_id: int, db: Session = Depends(get_db)):
    return SupplierPaymentService(db).get_detail(pago_id)


@payments_router.delete("/{pago_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    pago_id: int,
    db: Session = Depends(get_db),
    usuario_id: Optional[int] = Depends(get_usuario_id),
):
    SupplierPaymentService(db).delete(pago_id, usuario_id)
