# Database models package
from app.models.database.organizations import Organization
from app.models.database.data_imports import DataImport, ImportStatus
from app.models.database.column_metadata import ColumnMetadata
from app.models.database.import_rows import ImportRow
from app.models.database.data_analyses import DataAnalysis, DataTransformation

__all__ = [
    "Organization",
    "DataImport",
    "ImportStatus",
    "ColumnMetadata",
    "ImportRow",
    "DataAnalysis",
    "DataTransformation",
]
