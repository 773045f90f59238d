"""
Pipeline exception hierarchy.

Every error raised by the import pipeline derives from ``PipelineError`` so the
API layer can translate it into a response with a single handler.
"""
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    http_status: int = 500
    default_code: str = "PIPELINE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary representation."""
        return {
            "error": self.code,
            "detail": self.message,
            "details": self.details,
        }


class ConfigurationError(PipelineError):
    """Raised at startup when required settings are missing or invalid."""

    default_code = "CONFIGURATION_ERROR"


class MalformedFileError(PipelineError):
    """
    Raised when an uploaded file cannot be parsed or lacks a header row
    plus at least one data row.
    """

    http_status = 400
    default_code = "MALFORMED_FILE"


class NotFoundError(PipelineError):
    """
    Raised when an import, column or table does not exist or belongs to
    another organization.

    Example:
        raise NotFoundError("Import", import_id)
    """

    http_status = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None, message: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        if message is None:
            message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(
            message=message,
            details={"resource": resource, "id": None if identifier is None else str(identifier)},
        )


class ValidationError(PipelineError):
    """Raised for missing parameters, unknown fix types and similar input errors."""

    http_status = 400
    default_code = "VALIDATION_ERROR"


class UnsupportedTypeError(ValidationError):
    """Raised when an operation does not support the column's data type."""

    default_code = "UNSUPPORTED_TYPE"

    def __init__(self, operation: str, column: str, data_type: str):
        self.operation = operation
        self.column = column
        self.data_type = data_type
        super().__init__(
            message=f"{operation} is not supported for column '{column}' of type {data_type}",
            details={"operation": operation, "column": column, "data_type": data_type},
        )


class CoercionError(PipelineError):
    """
    Raised when a staged value cannot be converted to its column's declared
    type during materialization. The whole batch is rejected.
    """

    http_status = 422
    default_code = "COERCION_ERROR"

    def __init__(self, column: str, data_type: str, value: Any, row_number: Optional[int] = None):
        self.column = column
        self.data_type = data_type
        self.value = value
        self.row_number = row_number
        location = f" at row {row_number}" if row_number is not None else ""
        super().__init__(
            message=f"Cannot convert value {value!r} to {data_type} for column '{column}'{location}",
            details={
                "column": column,
                "data_type": data_type,
                "value": None if value is None else str(value),
                "row_number": row_number,
            },
        )


class StateConflictError(PipelineError):
    """Raised when an import is not in the status a stage expects."""

    http_status = 409
    default_code = "STATE_CONFLICT"


class AuditRecordImmutableError(PipelineError):
    """Raised when an analysis or transformation record would be modified."""

    http_status = 409
    default_code = "AUDIT_RECORD_IMMUTABLE"


class SuggestionError(PipelineError):
    """Raised by the column name suggester. Callers treat it as advisory."""

    http_status = 502
    default_code = "SUGGESTION_ERROR"


class StorageError(PipelineError):
    """Raised when the raw file store is unavailable. Treated as transient."""

    http_status = 503
    default_code = "STORAGE_ERROR"
