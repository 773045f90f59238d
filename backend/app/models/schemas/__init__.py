# Schemas package
from app.models.schemas.imports import (
    ColumnPreview,
    ImportUploadResponse,
    ColumnMetadataResponse,
    ImportResponse,
    ImportListResponse,
    StagedRowsRequest,
    StagedRowsResponse,
    ColumnStatisticsRequest,
    ColumnStatisticsResponse,
    ColumnUpdateRequest,
)
from app.models.schemas.quality import (
    QualityAnalysisRequest,
    QualityAnalysisResponse,
    AnalysisResponse,
    AnalysisListResponse,
)
from app.models.schemas.tables import ColumnDefinition, MaterializeRequest, MaterializeResponse
from app.models.schemas.fixes import (
    FixRequest,
    FixResponse,
    TransformationResponse,
    TransformationListResponse,
)
from app.models.schemas.suggestions import (
    SuggestionColumn,
    SuggestionRequest,
    ColumnSuggestion,
    SuggestionResponse,
    AcceptSuggestionsRequest,
    AcceptSuggestionsResponse,
)

__all__ = [
    "ColumnPreview",
    "ImportUploadResponse",
    "ColumnMetadataResponse",
    "ImportResponse",
    "ImportListResponse",
    "StagedRowsRequest",
    "StagedRowsResponse",
    "ColumnStatisticsRequest",
    "ColumnStatisticsResponse",
    "ColumnUpdateRequest",
    "QualityAnalysisRequest",
    "QualityAnalysisResponse",
    "AnalysisResponse",
    "AnalysisListResponse",
    "ColumnDefinition",
    "MaterializeRequest",
    "MaterializeResponse",
    "FixRequest",
    "FixResponse",
    "TransformationResponse",
    "TransformationListResponse",
    "SuggestionColumn",
    "SuggestionRequest",
    "ColumnSuggestion",
    "SuggestionResponse",
    "AcceptSuggestionsRequest",
    "AcceptSuggestionsResponse",
]
