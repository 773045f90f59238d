"""
Analysis and transformation audit models.

Both tables are append-only: once flushed, a row may never be updated or
deleted through the ORM.
"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, event
from sqlalchemy.orm import object_session
from sqlalchemy.sql import func
from app.core.database import Base
from app.core.exceptions import AuditRecordImmutableError


class DataAnalysis(Base):
    """Immutable snapshot of one analysis run over an import."""

    __tablename__ = "data_analyses"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("data_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    analysis_type = Column(String(50), nullable=False, index=True)  # quality, statistics, duplicates, ...
    configuration = Column(JSON, nullable=True)
    results = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DataTransformation(Base):
    """Write-once audit record of an applied fix."""

    __tablename__ = "data_transformations"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("data_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    column_name = Column(String(255), nullable=False)  # target column or "all"
    transformation_type = Column(String(50), nullable=False)
    parameters = Column(JSON, nullable=True)
    rows_affected = Column(Integer, nullable=False, default=0)
    applied_at = Column(DateTime(timezone=True), server_default=func.now())


def _reject_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise AuditRecordImmutableError(
            f"{type(target).__name__} {target.id} is immutable",
            details={"id": target.id},
        )


def _reject_delete(mapper, connection, target):
    raise AuditRecordImmutableError(
        f"{type(target).__name__} {target.id} cannot be deleted",
        details={"id": target.id},
    )


for _audit_model in (DataAnalysis, DataTransformation):
    event.listen(_audit_model, "before_update", _reject_update)
    event.listen(_audit_model, "before_delete", _reject_delete)
