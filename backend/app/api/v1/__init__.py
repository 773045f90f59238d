# API v1 package
from app.api.v1.imports import router as imports_router
from app.api.v1.quality import router as quality_router
from app.api.v1.tables import router as tables_router
from app.api.v1.fixes import router as fixes_router

__all__ = [
    "imports_router",
    "quality_router",
    "tables_router",
    "fixes_router",
]
