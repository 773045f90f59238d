"""
Fix API endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.schemas.fixes import FixRequest, FixResponse
from app.services.fix_applicator import FixApplicatorService

router = APIRouter(prefix="/fixes", tags=["Fixes"])


@router.post("/apply", response_model=FixResponse, response_model_exclude_none=True)
async def apply_fix(
    request: FixRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Apply a corrective transformation to a materialized table.
    """
    result = await FixApplicatorService.apply_fix(
        db,
        import_id=request.file_id,
        fix_type=request.fix_type,
        organization_id=request.organization_id,
        column=request.column,
    )
    return FixResponse(**result)
