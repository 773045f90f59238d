"""
Column metadata database model.
"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class ColumnMetadata(Base):
    """Per-column metadata of an import."""

    __tablename__ = "column_metadata"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("data_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    original_name = Column(String(255), nullable=False)  # as found in the source file
    display_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    data_type = Column(String(20), nullable=False, default="text")  # text, integer, numeric, boolean, timestamp
    sample_values = Column(JSON, nullable=True)
    statistics = Column(JSON, nullable=True)  # replaced wholesale by each quality run

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    data_import = relationship("DataImport", back_populates="columns")

    __table_args__ = (
        UniqueConstraint('import_id', 'original_name', name='uq_column_metadata_import_name'),
    )
