"""
Data import database model.
"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, Text, Enum as SQLEnum, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.core.database import Base


class ImportStatus(str, enum.Enum):
    """Import lifecycle status."""
    PENDING = "pending"
    UPLOADED = "uploaded"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class DataImport(Base):
    """One uploaded dataset and its lifecycle state."""

    __tablename__ = "data_imports"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    original_filename = Column(String(500), nullable=False)
    storage_path = Column(String(1000), nullable=True)
    file_type = Column(String(10), nullable=True)  # csv, xlsx, xls
    table_name = Column(String(63), nullable=True)
    status = Column(
        SQLEnum(ImportStatus, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=ImportStatus.PENDING
    )
    error_message = Column(Text, nullable=True)
    row_count = Column(Integer, nullable=True)
    context = Column(Text, nullable=True)  # free-text description of the dataset
    data_quality = Column(JSON, nullable=True)  # {lastAnalysisId, overallQuality, issuesCount, ...}

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    columns = relationship(
        "ColumnMetadata",
        back_populates="data_import",
        cascade="all, delete-orphan",
        order_by="ColumnMetadata.position",
    )

    __table_args__ = (
        Index('idx_data_imports_org_table', 'organization_id', 'table_name'),
    )
