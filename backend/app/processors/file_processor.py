"""
Tabular file processor for data ingestion (CSV, XLSX, XLS).
"""
import io
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Dict, Any, Optional

import pandas as pd

from app.core.config import settings
from app.core.exceptions import MalformedFileError, ValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

# Tie-break order for the type vote
TYPE_PRIORITY = ("integer", "numeric", "boolean", "timestamp", "text")

BOOLEAN_TOKENS = {"true", "false", "t", "f", "yes", "no", "sim", "não", "nao"}

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")
_TIME_PART = r"([ T]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?"
_TIMESTAMP_RES = [
    re.compile(r"^\d{4}-\d{2}-\d{2}" + _TIME_PART + "$"),
    re.compile(r"^\d{4}/\d{2}/\d{2}" + _TIME_PART + "$"),
    re.compile(r"^\d{2}/\d{2}/\d{4}" + _TIME_PART + "$"),
    re.compile(r"^\d{2}-\d{2}-\d{4}" + _TIME_PART + "$"),
]


def classify_value(value: Any) -> Optional[str]:
    """
    Classify a single raw cell.

    Returns:
        One of ``TYPE_PRIORITY`` or None for an empty cell
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _INTEGER_RE.match(text):
        return "integer"
    if _NUMERIC_RE.match(text):
        try:
            if math.isfinite(float(text)):
                return "numeric"
        except ValueError:
            pass
    if text.lower() in BOOLEAN_TOKENS:
        return "boolean"
    if any(pattern.match(text) for pattern in _TIMESTAMP_RES):
        return "timestamp"
    return "text"


def infer_column_type(values: List[Any], sample_size: Optional[int] = None) -> str:
    """
    Infer a column type by majority vote over its first non-empty values.

    Args:
        values: Raw cell values in file order
        sample_size: Number of non-empty values that vote

    Returns:
        Winning type; ties go to the earliest entry of ``TYPE_PRIORITY``
    """
    sample_size = sample_size or settings.TYPE_INFERENCE_SAMPLE_SIZE
    votes: Counter = Counter()
    for value in values:
        kind = classify_value(value)
        if kind is None:
            continue
        votes[kind] += 1
        if sum(votes.values()) >= sample_size:
            break

    if not votes:
        return "text"
    best = max(votes.values())
    return next(kind for kind in TYPE_PRIORITY if votes.get(kind) == best)


@dataclass
class ParsedFile:
    """Header row plus data rows, every cell kept as a string."""
    file_type: str
    headers: List[str]
    rows: List[Dict[str, str]]
    column_types: Dict[str, str] = field(default_factory=dict)
    encoding: Optional[str] = None

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def preview(self, n_rows: Optional[int] = None) -> List[Dict[str, str]]:
        return self.rows[:n_rows or settings.PREVIEW_ROWS]

    def sample_values(self, header: str, limit: Optional[int] = None) -> List[str]:
        return [row.get(header, "") for row in self.rows[:limit or settings.SAMPLE_VALUES_LIMIT]]


class FileProcessor:
    """Processor for uploaded tabular files."""

    SUPPORTED_EXTENSIONS = {".csv": "csv", ".xlsx": "xlsx", ".xls": "xls"}
    SUPPORTED_ENCODINGS = ['utf-8', 'latin-1', 'cp1252']

    def __init__(self, max_file_size: Optional[int] = None):
        self.max_file_size = max_file_size or settings.max_upload_size_bytes

    def validate_file(self, file_content: bytes, filename: str) -> str:
        """
        Validate size and extension of an uploaded file.

        Args:
            file_content: File content as bytes
            filename: Original filename

        Returns:
            File type (``csv``, ``xlsx`` or ``xls``)
        """
        file_size = len(file_content)
        if file_size > self.max_file_size:
            raise ValidationError(
                f"File size ({file_size / 1024 / 1024:.2f} MB) exceeds maximum allowed size "
                f"({self.max_file_size / 1024 / 1024:.0f} MB)",
                details={"file_size": file_size, "max_file_size": self.max_file_size},
            )

        extension = Path(filename or "").suffix.lower()
        file_type = self.SUPPORTED_EXTENSIONS.get(extension)
        if file_type is None:
            raise ValidationError(
                f"Unsupported file type '{extension or filename}'. Expected .csv, .xlsx or .xls",
                details={"filename": filename},
            )

        if file_size == 0:
            raise MalformedFileError("File is empty")
        return file_type

    def read_frame(self, file_content: bytes, file_type: str):
        """
        Read the raw grid (first sheet for spreadsheets) without a header.

        Returns:
            Tuple of (DataFrame, encoding used or None)
        """
        options = dict(header=None, dtype=str, keep_default_na=False)

        if file_type == "csv":
            for encoding in self.SUPPORTED_ENCODINGS:
                try:
                    df = pd.read_csv(io.BytesIO(file_content), encoding=encoding, skip_blank_lines=True, **options)
                    logger.info(f"Successfully read CSV with encoding: {encoding}")
                    return df, encoding
                except UnicodeDecodeError:
                    continue
                except pd.errors.EmptyDataError:
                    raise MalformedFileError("File has no header row")
                except pd.errors.ParserError as e:
                    raise MalformedFileError(f"Could not parse CSV file: {e}")
            raise MalformedFileError("Could not read CSV file with any supported encoding")

        engine = "openpyxl" if file_type == "xlsx" else "xlrd"
        try:
            df = pd.read_excel(io.BytesIO(file_content), sheet_name=0, engine=engine, **options)
        except Exception as e:
            logger.error(f"Error reading spreadsheet: {e}")
            raise MalformedFileError(f"Could not parse spreadsheet: {e}")
        return df, None

    def parse(self, file_content: bytes, file_type: str) -> ParsedFile:
        """
        Parse a file into headers, string rows and inferred column types.

        Raises:
            MalformedFileError: If there is no header row and at least one data row,
                or the header names are blank or duplicated
        """
        df, encoding = self.read_frame(file_content, file_type)
        grid = [[_cell_to_str(cell) for cell in record] for record in df.itertuples(index=False, name=None)]
        grid = [record for record in grid if any(cell for cell in record)]

        if len(grid) < 2:
            raise MalformedFileError(
                "File must contain a header row and at least one data row",
                details={"rows_found": len(grid)},
            )

        header_row = [cell.strip() for cell in grid[0]]
        data = grid[1:]

        # Drop trailing columns that have neither a header nor any value
        keep = [
            idx for idx, name in enumerate(header_row)
            if name or any(idx < len(record) and record[idx] for record in data)
        ]
        headers = [header_row[idx] for idx in keep]

        if any(not name for name in headers):
            raise MalformedFileError("Header row contains a blank column name")
        duplicates = sorted(name for name, count in Counter(headers).items() if count > 1)
        if duplicates:
            raise MalformedFileError(
                f"Duplicate column names: {', '.join(duplicates)}",
                details={"duplicates": duplicates},
            )

        rows = [
            {headers[pos]: (record[idx] if idx < len(record) else "") for pos, idx in enumerate(keep)}
            for record in data
        ]
        column_types = {
            header: infer_column_type([row[header] for row in rows])
            for header in headers
        }

        logger.info(
            f"Parsed {file_type} file: {len(rows)} rows, {len(headers)} columns",
            extra={"file_type": file_type, "rows": len(rows), "columns": len(headers)},
        )
        return ParsedFile(
            file_type=file_type,
            headers=headers,
            rows=rows,
            column_types=column_types,
            encoding=encoding,
        )


def _cell_to_str(cell: Any) -> str:
    if cell is None:
        return ""
    if isinstance(cell, float) and math.isnan(cell):
        return ""
    return str(cell)
