"""
Staging store for parsed rows.
"""
from sqlalchemy import Column, Integer, JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.core.database import Base


class ImportRow(Base):
    """One parsed source row, keyed by its position in the file."""

    __tablename__ = "import_rows"

    id = Column(Integer, primary_key=True)
    import_id = Column(Integer, ForeignKey("data_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)  # 1-based, ascending in file order
    data = Column(JSON, nullable=False)  # {original header: raw string value}
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('import_id', 'row_number', name='uq_import_rows_import_row_number'),
    )
