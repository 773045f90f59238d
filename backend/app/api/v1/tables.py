"""
Table materialization API endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.schemas.tables import MaterializeRequest, MaterializeResponse
from app.services.schema_materializer import SchemaMaterializerService

router = APIRouter(prefix="/tables", tags=["Tables"])


@router.post("/materialize", response_model=MaterializeResponse)
async def materialize_table(
    request: MaterializeRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Create the tenant table for an import and load its rows.
    """
    result = await SchemaMaterializerService.materialize(
        db,
        table_name=request.table_name,
        columns={name: definition.model_dump() for name, definition in request.columns.items()},
        organization_id=request.organization_id,
        preview_data=request.preview_data,
        file_id=request.file_id,
    )
    return MaterializeResponse(**result)
