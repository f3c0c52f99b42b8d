from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from app.core.config import settings
from app.common.audit import discard_pending
from app.common.exceptions import ComprasError, ConflictError, InternalError
import logging

logger = logging.getLogger(__name__)

sync_engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.DEBUG and settings.ENVIRONMENT != "test",
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()

# Códigos SQLSTATE de PostgreSQL que indican contención de locks
LOCK_NOT_AVAILABLE = "55P03"
DEADLOCK_DETECTED = "40P01"
SERIALIZATION_FAILURE = "40001"
_RETRYABLE_SQLSTATES = {LOCK_NOT_AVAILABLE, DEADLOCK_DETECTED, SERIALIZATION_FAILURE}


def get_db():
    """Genera una sesión de base de datos por request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def apply_lock_timeout(db: Session) -> None:
    """Fija el lock_timeout de la transacción actual (solo PostgreSQL)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL lock_timeout = {int(settings.LOCK_TIMEOUT_MS)}"))


def is_lock_contention(exc: OperationalError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _RETRYABLE_SQLSTATES:
        return True
    # sqlite devuelve "database is locked"
    return "locked" in str(exc.orig).lower()


def _rollback(db: Session) -> None:
    db.rollback()
    discard_pending(db)


@contextmanager
def unit_of_work(db: Session, operacion: str = "operación") -> Iterator[Session]:
    """
    Frontera transaccional de las operaciones de escritura.

    Todo lo ejecutado dentro del bloque se confirma junto o se revierte junto.
    Los errores de dominio se propagan tal cual; el resto se traduce:
    - lock timeout / deadlock -> ConflictError reintentable
    - IntegrityError -> ConflictError
    - cualquier otro -> InternalError
    """
    try:
        apply_lock_timeout(db)
        yield db
        db.commit()
    except ComprasError:
        _rollback(db)
        raise
    except OperationalError as e:
        _rollback(db)
        if is_lock_contention(e):
            logger.warning(f"Lock ocupado durante {operacion}: {e.orig}")
            raise ConflictError(
                "El registro está siendo modificado por otra operación",
                code="LOCK_TIMEOUT",
                sugerencia="Reintentá la operación en unos segundos",
                retryable=True,
            )
        logger.error(f"Error de base de datos en {operacion}: {e}", exc_info=True)
        raise InternalError(f"Error de base de datos en {operacion}")
    except IntegrityError as e:
        _rollback(db)
        logger.warning(f"Violación de integridad en {operacion}: {e.orig}")
        raise ConflictError(
            f"Violación de integridad en {operacion}",
            code="INTEGRIDAD",
        )
    except Exception as e:
        _rollback(db)
        logger.error(f"Error inesperado en {operacion}: {e}", exc_info=True)
        raise InternalError(f"Error interno en {operacion}")
