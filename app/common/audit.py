"""
Eventos de auditoría post-commit.

Las operaciones de negocio encolan eventos en la sesión (`emit`). Solo cuando
la transacción se confirma se entregan a los sinks registrados; si se revierte
se descartan. Un sink que falla se registra en el log y nunca afecta a la
operación ya confirmada.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
import logging

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

OUTBOX_KEY = "audit_outbox"


@dataclass(frozen=True)
class Cambio:
    campo: str
    antes: Any
    despues: Any


@dataclass
class AuditEvent:
    usuario_id: Optional[int]
    modulo: str
    accion: str
    descripcion: str
    fecha_hora: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usuario_id": self.usuario_id,
            "modulo": self.modulo,
            "accion": self.accion,
            "descripcion": self.descripcion,
            "fecha_hora": self.fecha_hora.isoformat(),
        }


AuditSink = Callable[[AuditEvent], None]

_sinks: List[AuditSink] = []


def _normalizar(valor: Any) -> Any:
    if isinstance(valor, str):
        valor = valor.strip()
        return valor or None
    if isinstance(valor, bool) or valor is None:
        return valor
    if isinstance(valor, (int, float, Decimal)):
        try:
            return Decimal(str(valor)).normalize()
        except InvalidOperation:
            return valor
    if hasattr(valor, "value"):  # Enum
        return valor.value
    return valor


def diff(before: Mapping[str, Any], after: Mapping[str, Any],
         campos: Iterable[str]) -> List[Cambio]:
    """
    Compara dos snapshots sobre los campos auditables.

    Los números se comparan por valor (Decimal('1.50') == 1.5), los textos
    sin espacios de borde y una clave ausente equivale a None.
    """
    cambios = []
    for campo in campos:
        antes = before.get(campo)
        despues = after.get(campo)
        if _normalizar(antes) != _normalizar(despues):
            cambios.append(Cambio(campo=campo, antes=antes, despues=despues))
    return cambios


def snapshot(obj: Any, campos: Iterable[str]) -> Dict[str, Any]:
    return {campo: getattr(obj, campo, None) for campo in campos}


def describir_cambios(cambios: List[Cambio]) -> str:
    return "; ".join(
        f"{c.campo}: '{_texto(c.antes)}' -> '{_texto(c.despues)}'" for c in cambios
    )


def _texto(valor: Any) -> str:
    if valor is None:
        return ""
    if hasattr(valor, "value"):
        return str(valor.value)
    return str(valor)


def register_sink(sink: AuditSink) -> None:
    if sink not in _sinks:
        _sinks.append(sink)


def unregister_sink(sink: AuditSink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def clear_sinks() -> None:
    _sinks.clear()


def emit(db: Session, audit_event: AuditEvent) -> None:
    """Encola el evento; se entrega solo si la transacción confirma."""
    db.info.setdefault(OUTBOX_KEY, []).append(audit_event)


def pending(db: Session) -> List[AuditEvent]:
    return list(db.info.get(OUTBOX_KEY, []))


def discard_pending(db: Session) -> int:
    """Descarta los eventos encolados en la sesión y devuelve cuántos había."""
    discarded = db.info.pop(OUTBOX_KEY, [])
    if discarded:
        logger.debug(f"Descartados {len(discarded)} eventos de auditoría por rollback")
    return len(discarded)


def dispatch(events: List[AuditEvent]) -> None:
    for audit_event in events:
        for sink in list(_sinks):
            try:
                sink(audit_event)
            except Exception as e:
                logger.warning(
                    f"No se pudo registrar auditoría {audit_event.modulo}/{audit_event.accion}: {e}"
                )


@event.listens_for(Session, "after_commit")
def _flush_outbox(session: Session) -> None:
    events = session.info.pop(OUTBOX_KEY, [])
    if events:
        dispatch(events)


@event.listens_for(Session, "after_soft_rollback")
def _discard_outbox(session: Session, previous_transaction) -> None:
    # Solo se dispara si la transacción llegó a abrir una conexión;
    # unit_of_work descarta explícitamente en cada rollback
    discard_pending(session)


def log_sink(audit_event: AuditEvent) -> None:
    logger.info(
        f"[AUDIT] usuario={audit_event.usuario_id} modulo={audit_event.modulo} "
        f"accion={audit_event.accion} {audit_event.descripcion}"
    )
