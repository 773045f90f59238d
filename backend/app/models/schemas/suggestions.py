"""
Pydantic schemas for column name suggestions.
"""
from typing import Optional, Dict, Any, List
from pydantic import Field

from app.models.schemas.base import APIModel


class SuggestionColumn(APIModel):
    """Column sent to the suggester."""
    name: str
    type: str = "text"
    sample: List[Any] = Field(default_factory=list)


class SuggestionRequest(APIModel):
    """Schema for suggestion request."""
    description: Optional[str] = Field(None, max_length=2000)
    columns: List[SuggestionColumn] = Field(..., min_length=1)
    sample_data: List[Dict[str, Any]] = Field(default_factory=list, alias="sampleData")


class ColumnSuggestion(APIModel):
    """One suggested display name and description."""
    original_name: str
    suggested_name: str
    type: str = "text"
    description: Optional[str] = None
    needs_review: bool = False
    validation_message: Optional[str] = None


class SuggestionResponse(APIModel):
    """Schema for suggestion response. ``error`` is set when no suggestions could be produced."""
    suggestions: List[ColumnSuggestion] = Field(default_factory=list)
    error: Optional[str] = None


class AcceptSuggestionsRequest(APIModel):
    """Schema for accepting suggestions onto an import's columns."""
    organization_id: int = Field(..., alias="organizationId")
    suggestions: List[ColumnSuggestion] = Field(..., min_length=1)


class AcceptSuggestionsResponse(APIModel):
    updated: int
    skipped: List[str] = Field(default_factory=list)
