# Processors package
from app.processors.file_processor import FileProcessor, ParsedFile, infer_column_type

__all__ = [
    "FileProcessor",
    "ParsedFile",
    "infer_column_type",
]
