"""
Common mixins for models
"""
from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.sql import func


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class AuditUserMixin:
    """Usuario que creó / modificó por última vez el registro"""

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
