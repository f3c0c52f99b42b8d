"""
Cálculo de totales de compras

Funciones puras (sin sesión de base de datos) para:
- Total de cada línea de detalle
- Agregados de cabecera a partir de líneas y líneas de impuesto
- Descriptor explícito de los campos agregados que persiste el recálculo
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List

from app.common.money import ZERO, round2, to_decimal

# Diferencia máxima admitida entre un total informado por el cliente y el
# total recalculado. Por encima de este valor el alta se rechaza.
TOTAL_TOLERANCE = Decimal("0.01")

DEFAULT_ALICUOTA_IVA = Decimal("21")

AGGREGATE_FIELDS = (
    "subtotal_neto",
    "iva_total",
    "percepciones_total",
    "retenciones_total",
    "total",
)


@dataclass(frozen=True)
class LineAmounts:
    """Importes de una línea: base e IVA sin redondear, total redondeado"""
    base: Decimal
    iva: Decimal
    total_linea: Decimal


@dataclass(frozen=True)
class PurchaseTotals:
    subtotal_neto: Decimal
    iva_total: Decimal
    percepciones_total: Decimal
    retenciones_total: Decimal
    total: Decimal

    def as_dict(self) -> Dict[str, Decimal]:
        return {field: getattr(self, field) for field in AGGREGATE_FIELDS}


@dataclass(frozen=True)
class AggregateSchema:
    """
    Campos agregados que existen en la cabecera de compras.

    El recálculo solo escribe los campos declarados aquí; los demás se omiten
    sin error. Cambiar el conjunto implica una nueva versión.
    """
    version: int
    fields: FrozenSet[str]

    def __post_init__(self):
        unknown = set(self.fields) - set(AGGREGATE_FIELDS)
        if unknown:
            raise ValueError(f"Campos agregados desconocidos: {sorted(unknown)}")

    def supports(self, field: str) -> bool:
        return field in self.fields

    def apply(self, target: Any, totals: PurchaseTotals) -> List[str]:
        """Copia los totales soportados sobre `target`; devuelve los campos escritos"""
        written = []
        for field in AGGREGATE_FIELDS:
            if field in self.fields:
                setattr(target, field, getattr(totals, field))
                written.append(field)
        return written


PURCHASE_AGGREGATES_V1 = AggregateSchema(version=1, fields=frozenset(AGGREGATE_FIELDS))


def calculate_line(
    cantidad: Any,
    costo_unit_neto: Any,
    alicuota_iva: Any = DEFAULT_ALICUOTA_IVA,
    inc_iva: bool = False,
    descuento_porcentaje: Any = 0,
    otros_impuestos: Any = 0,
) -> LineAmounts:
    """
    Calcular los importes de una línea de compra

    Args:
        cantidad: Unidades
        costo_unit_neto: Costo unitario sin IVA
        alicuota_iva: Porcentaje de IVA (21 = 21%); None usa 21
        inc_iva: True si el costo ya incluye IVA (no se suma IVA)
        descuento_porcentaje: Descuento sobre la base (0-100)
        otros_impuestos: Importe fijo adicional de la línea

    Returns:
        LineAmounts con base, iva y total_linea redondeado a 2 decimales
    """
    if alicuota_iva is None:
        alicuota_iva = DEFAULT_ALICUOTA_IVA
    descuento = to_decimal(descuento_porcentaje)
    base = to_decimal(cantidad) * to_decimal(costo_unit_neto) * (1 - descuento / 100)
    iva = ZERO if inc_iva else base * (to_decimal(alicuota_iva) / 100)
    total_linea = round2(base + iva + to_decimal(otros_impuestos))
    return LineAmounts(base=base, iva=iva, total_linea=total_linea)


def line_amounts(line: Any) -> LineAmounts:
    return calculate_line(
        line.cantidad,
        line.costo_unit_neto,
        line.alicuota_iva,
        bool(line.inc_iva),
        line.descuento_porcentaje,
        line.otros_impuestos,
    )


def _tax_kind(tipo: Any) -> str:
    return tipo.value if hasattr(tipo, "value") else str(tipo)


def aggregate_totals(lines: Iterable[Any], taxes: Iterable[Any] = ()) -> PurchaseTotals:
    """
    Agregar los totales de cabecera

    El IVA de las líneas de impuesto se suma a iva_total como desglose pero no
    al total: el IVA ya está contenido en cada total_linea.
    """
    sum_base = ZERO
    sum_iva = ZERO
    sum_total_lineas = ZERO
    for line in lines:
        amounts = line_amounts(line)
        sum_base += amounts.base
        sum_iva += amounts.iva
        sum_total_lineas += amounts.total_linea

    by_kind = {"IVA": ZERO, "Percepcion": ZERO, "Retencion": ZERO, "Otro": ZERO}
    for tax in taxes:
        kind = _tax_kind(tax.tipo)
        if kind in by_kind:
            by_kind[kind] += to_decimal(tax.monto)

    percepciones = round2(by_kind["Percepcion"])
    retenciones = round2(by_kind["Retencion"])
    return PurchaseTotals(
        subtotal_neto=round2(sum_base),
        iva_total=round2(sum_iva + by_kind["IVA"]),
        percepciones_total=percepciones,
        retenciones_total=retenciones,
        total=round2(sum_total_lineas + percepciones + retenciones + by_kind["Otro"]),
    )


def within_tolerance(declared: Any, computed: Any, tolerance: Decimal = TOTAL_TOLERANCE) -> bool:
    return abs(to_decimal(declared) - to_decimal(computed)) <= tolerance
