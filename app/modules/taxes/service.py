"""
Servicios de impuestos

- TaxConfigService: catálogo de alícuotas por código
- PurchaseTaxService: líneas de impuesto de compras en borrador; cada cambio
  recalcula los agregados de la compra
"""

from decimal import Decimal
from typing import Optional, Any, Dict
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.common.audit import AuditEvent, emit, diff, snapshot, describir_cambios
from app.common.exceptions import NotFoundError, ConflictError, DomainValidationError
from app.common.money import ZERO, round2, round4, to_decimal
from app.common.validators import normalize_codigo
from app.database.database import unit_of_work
from app.modules.purchases.calculator import AggregateSchema, PURCHASE_AGGREGATES_V1
from app.modules.purchases.models import Purchase
from app.modules.purchases.totals import lock_editable_purchase, recompute_purchase_totals
from app.modules.taxes.models import TaxConfig, PurchaseTax, TaxType
from app.modules.taxes.schemas import (
    TaxConfigCreate, TaxConfigUpdate, PurchaseTaxCreate, PurchaseTaxUpdate
)

logger = logging.getLogger(__name__)

TAX_CONFIG_FIELDS = ["tipo", "codigo", "descripcion", "alicuota", "activo"]
PURCHASE_TAX_FIELDS = ["tipo", "codigo", "base", "alicuota", "monto"]


class TaxConfigService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, tipo: Optional[TaxType] = None, activo: Optional[bool] = None,
             search: Optional[str] = None, limit: int = 100, offset: int = 0) -> dict:
        query = self.db.query(TaxConfig)
        if tipo is not None:
            query = query.filter(TaxConfig.tipo == tipo)
        if activo is not None:
            query = query.filter(TaxConfig.activo == activo)
        if search:
            like = f"%{search}%"
            query = query.filter(or_(TaxConfig.codigo.ilike(like), TaxConfig.descripcion.ilike(like)))

        total = query.count()
        items = query.order_by(TaxConfig.tipo, TaxConfig.codigo).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def get(self, impuesto_id: int) -> TaxConfig:
        tax = self.db.query(TaxConfig).filter(TaxConfig.id == impuesto_id).first()
        if not tax:
            raise NotFoundError("Impuesto no encontrado", code="IMPUESTO_NO_ENCONTRADO")
        return tax

    def get_by_codigo(self, codigo: str) -> TaxConfig:
        tax = self.db.query(TaxConfig).filter(TaxConfig.codigo == normalize_codigo(codigo)).first()
        if not tax:
            raise NotFoundError("Impuesto no encontrado", code="IMPUESTO_NO_ENCONTRADO")
        return tax

    def resolve_active(self, codigo: str) -> TaxConfig:
        """Impuesto activo por código normalizado (trim + mayúsculas)"""
        normalized = normalize_codigo(codigo)
        tax = None
        if normalized:
            tax = self.db.query(TaxConfig).filter(
                TaxConfig.codigo == normalized,
                TaxConfig.activo == True
            ).first()
        if not tax:
            raise NotFoundError(
                f"No existe un impuesto activo con código '{normalized or codigo}'",
                code="IMPUESTO_NO_ENCONTRADO",
            )
        return tax

    def create(self, data: TaxConfigCreate, usuario_id: Optional[int] = None) -> TaxConfig:
        if self.db.query(TaxConfig.id).filter(TaxConfig.codigo == data.codigo).first():
            raise ConflictError("Ya existe un impuesto con ese código", code="CODIGO_DUPLICADO")

        with unit_of_work(self.db, "alta de impuesto"):
            values = data.model_dump()
            values["alicuota"] = round4(values["alicuota"])
            tax = TaxConfig(**values)
            self.db.add(tax)
            self.db.flush()
            emit(self.db, AuditEvent(
                usuario_id, "impuestos_config", "crear",
                f"creó el impuesto {tax.codigo} ({tax.tipo.value}, alícuota {tax.alicuota})"
            ))
        self.db.refresh(tax)
        return tax

    def update(self, impuesto_id: int, data: TaxConfigUpdate, usuario_id: Optional[int] = None) -> TaxConfig:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "actualización de impuesto"):
            tax = self.get(impuesto_id)
            before = snapshot(tax, TAX_CONFIG_FIELDS)

            nuevo_codigo = changes.get("codigo")
            if nuevo_codigo and nuevo_codigo != tax.codigo:
                clash = self.db.query(TaxConfig.id).filter(
                    TaxConfig.codigo == nuevo_codigo,
                    TaxConfig.id != tax.id
                ).first()
                if clash:
                    raise ConflictError("Ya existe otro impuesto con ese código", code="CODIGO_DUPLICADO")

            for field, value in changes.items():
                if value is None and field != "descripcion":
                    continue
                if field == "alicuota":
                    value = round4(value)
                setattr(tax, field, value)

            cambios = diff(before, snapshot(tax, TAX_CONFIG_FIELDS), TAX_CONFIG_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "impuestos_config", "editar",
                    f"actualizó el impuesto #{tax.id}: {describir_cambios(cambios)}"
                ))
        self.db.refresh(tax)
        return tax

    def set_active(self, impuesto_id: int, activo: bool, usuario_id: Optional[int] = None) -> TaxConfig:
        with unit_of_work(self.db, "cambio de estado de impuesto"):
            tax = self.get(impuesto_id)
            if tax.activo != activo:
                tax.activo = activo
                emit(self.db, AuditEvent(
                    usuario_id, "impuestos_config", "editar",
                    f"{'activó' if activo else 'desactivó'} el impuesto {tax.codigo}"
                ))
        self.db.refresh(tax)
        return tax


class PurchaseTaxService:
    """Líneas de impuesto de compras"""

    def __init__(self, db: Session, schema: AggregateSchema = PURCHASE_AGGREGATES_V1):
        self.db = db
        self.schema = schema

    def list(self, compra_id: int):
        if not self.db.query(Purchase.id).filter(Purchase.id == compra_id).first():
            raise NotFoundError("Compra no encontrada", code="COMPRA_NO_ENCONTRADA")
        return self.db.query(PurchaseTax).filter(
            PurchaseTax.compra_id == compra_id
        ).order_by(PurchaseTax.id).all()

    def get(self, compra_id: int, impuesto_linea_id: int) -> PurchaseTax:
        tax_line = self.db.query(PurchaseTax).filter(
            PurchaseTax.id == impuesto_linea_id,
            PurchaseTax.compra_id == compra_id
        ).first()
        if not tax_line:
            raise NotFoundError("Línea de impuesto no encontrada", code="IMPUESTO_COMPRA_NO_ENCONTRADO")
        return tax_line

    def create(self, compra_id: int, data: PurchaseTaxCreate, usuario_id: Optional[int] = None) -> PurchaseTax:
        with unit_of_work(self.db, "alta de impuesto de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            tax_line = self.add(compra, data)
            recompute_purchase_totals(self.db, compra, self.schema)
            emit(self.db, AuditEvent(
                usuario_id, "compras_impuestos", "crear",
                f"agregó {tax_line.tipo.value} {tax_line.codigo or ''} por {tax_line.monto} "
                f"a la compra #{compra_id}"
            ))
        self.db.refresh(tax_line)
        return tax_line

    def update(self, compra_id: int, impuesto_linea_id: int, data: PurchaseTaxUpdate,
               usuario_id: Optional[int] = None) -> PurchaseTax:
        changes = data.model_dump(exclude_unset=True)
        with unit_of_work(self.db, "actualización de impuesto de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            tax_line = self.get(compra_id, impuesto_linea_id)
            before = snapshot(tax_line, PURCHASE_TAX_FIELDS)

            codigo_changed = "codigo" in changes and changes["codigo"] != tax_line.codigo
            tipo = changes.get("tipo")
            if tipo is None and not (codigo_changed and changes["codigo"]):
                tipo = tax_line.tipo

            resolved = self.resolve(
                tipo=tipo,
                codigo=changes["codigo"] if codigo_changed else None,
                base=changes["base"] if changes.get("base") is not None else tax_line.base,
                alicuota=self._alicuota_for_update(tax_line, changes),
                monto=changes.get("monto"),
            )
            if not codigo_changed:
                resolved["codigo"] = tax_line.codigo
                resolved["impuesto_id"] = tax_line.impuesto_id
            for field, value in resolved.items():
                setattr(tax_line, field, value)

            recompute_purchase_totals(self.db, compra, self.schema)
            cambios = diff(before, snapshot(tax_line, PURCHASE_TAX_FIELDS), PURCHASE_TAX_FIELDS)
            if cambios:
                emit(self.db, AuditEvent(
                    usuario_id, "compras_impuestos", "editar",
                    f"actualizó el impuesto #{tax_line.id} de la compra #{compra_id}: "
                    f"{describir_cambios(cambios)}"
                ))
        self.db.refresh(tax_line)
        return tax_line

    def delete(self, compra_id: int, impuesto_linea_id: int, usuario_id: Optional[int] = None) -> None:
        with unit_of_work(self.db, "baja de impuesto de compra"):
            compra = lock_editable_purchase(self.db, compra_id)
            tax_line = self.get(compra_id, impuesto_linea_id)
            descripcion = f"{tax_line.tipo.value} {tax_line.codigo or ''} por {tax_line.monto}"
            self.db.delete(tax_line)
            recompute_purchase_totals(self.db, compra, self.schema)
            emit(self.db, AuditEvent(
                usuario_id, "compras_impuestos", "eliminar",
                f"eliminó {descripcion} de la compra #{compra_id}"
            ))

    # ===== Primitivas sin commit =====

    def add(self, compra: Purchase, data: PurchaseTaxCreate) -> PurchaseTax:
        resolved = self.resolve(
            tipo=data.tipo, codigo=data.codigo, base=data.base,
            alicuota=data.alicuota, monto=data.monto
        )
        tax_line = PurchaseTax(compra_id=compra.id, **resolved)
        self.db.add(tax_line)
        self.db.flush()
        return tax_line

    def resolve(self, tipo: Any, codigo: Optional[str], base: Any,
                alicuota: Any = None, monto: Any = None) -> Dict[str, Any]:
        """
        Normaliza una línea de impuesto.

        - codigo: se busca activo en el catálogo (404 si no existe)
        - alicuota: la enviada, la del catálogo o 0
        - monto: el enviado o round2(base * alicuota)
        """
        config = None
        codigo = normalize_codigo(codigo)
        if codigo:
            config = TaxConfigService(self.db).resolve_active(codigo)

        if tipo is None:
            if config is None:
                raise DomainValidationError("El tipo de impuesto es obligatorio", code="TIPO_REQUERIDO")
            tipo = config.tipo
        elif not isinstance(tipo, TaxType):
            try:
                tipo = TaxType(tipo)
            except ValueError:
                tipos = ", ".join(t.value for t in TaxType)
                raise DomainValidationError(f"Tipo inválido. Use uno de: {tipos}", code="TIPO_INVALIDO")

        base = to_decimal(base)
        if base < 0:
            raise DomainValidationError("La base debe ser >= 0", code="BASE_INVALIDA")
        base = round2(base)

        if alicuota is None:
            alicuota = config.alicuota if config is not None else ZERO
        alicuota = to_decimal(alicuota)
        if alicuota < 0 or alicuota > 1:
            raise DomainValidationError(
                "La alícuota debe ser fracción entre 0 y 1 (ej.: 0.2100 = 21%)",
                code="ALICUOTA_INVALIDA",
            )
        alicuota = round4(alicuota)

        if monto is None:
            monto = round2(base * alicuota)
        else:
            monto = to_decimal(monto)
            if monto < 0:
                raise DomainValidationError("El monto debe ser >= 0", code="MONTO_INVALIDO")
            monto = round2(monto)

        return {
            "tipo": tipo,
            "codigo": codigo,
            "impuesto_id": config.id if config is not None else None,
            "base": base,
            "alicuota": alicuota,
            "monto": monto,
        }

    def _alicuota_for_update(self, tax_line: PurchaseTax, changes: Dict[str, Any]) -> Optional[Decimal]:
        if changes.get("alicuota") is not None:
            return changes["alicuota"]
        # Cambio de código sin alícuota explícita: se vuelve a leer del catálogo
        if "codigo" in changes and changes["codigo"] != tax_line.codigo and changes["codigo"]:
            return None
        return tax_line.alicuota
