"""Project pricing routes: draft milestones and guarded line item edits."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.app.routes.auth import get_company_id_dep
from contractor_platform.app.routes.errors import SERVICE_ERRORS, to_http_exception
from contractor_platform.domain.enums import LineItemCategory
from contractor_platform.domain.schemas import (
    LineItemPatch,
    LineItemResponse,
    MilestoneResponse,
    SaveMilestonesRequest,
)
from contractor_platform.infra.database import get_db
from contractor_platform.services.document_service import DocumentService

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.put("/{project_id}/milestones", response_model=list[MilestoneResponse])
async def save_project_milestones(
    project_id: str,
    data: SaveMilestonesRequest,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Replace the project's draft pricing."""
    try:
        rows = await DocumentService(db).save_project_pricing(
            company_id,
            project_id,
            [m.model_dump(exclude_none=True) for m in data.milestones],
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return [MilestoneResponse.model_validate(row) for row in rows]


@router.patch("/{project_id}/line-items/{category}/{item_id}", response_model=LineItemResponse)
async def update_line_item(
    project_id: str,
    category: LineItemCategory,
    item_id: str,
    data: LineItemPatch,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Edit a cost line item unless a sent document has priced it."""
    changes = data.model_dump(exclude_unset=True)
    try:
        item = await DocumentService(db).update_line_item(company_id, project_id, category, item_id, changes)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return LineItemResponse(id=item.id, category=category.value, updated_fields=sorted(changes))
