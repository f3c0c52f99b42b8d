"""
Background tasks for the audit log
"""
from datetime import datetime
import logging

from app.core.celery import celery_app
from app.common.audit import AuditEvent
from app.database.database import SessionLocal
from app.modules.logs.models import Log

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def registrar_log(self, usuario_id, modulo: str, accion: str, descripcion: str, fecha_hora: str):
    """
    Persistir un evento de auditoría en la tabla logs
    """
    db = SessionLocal()
    try:
        db.add(Log(
            usuario_id=usuario_id,
            modulo=modulo,
            accion=accion,
            descripcion=descripcion[:2000],
            fecha_hora=datetime.fromisoformat(fecha_hora),
        ))
        db.commit()
        return {"status": "success", "modulo": modulo, "accion": accion}
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to persist audit log {modulo}/{accion}: {str(e)}")
        self.retry(exc=e, countdown=30, max_retries=3)
    finally:
        db.close()


def celery_sink(audit_event: AuditEvent) -> None:
    registrar_log.delay(**audit_event.to_dict())
