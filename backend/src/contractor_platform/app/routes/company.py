"""Company pricing defaults routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.app.routes.auth import get_company_id_dep
from contractor_platform.app.routes.errors import SERVICE_ERRORS, to_http_exception
from contractor_platform.domain.schemas import PricingDefaults, PricingDefaultsUpdate
from contractor_platform.infra.database import get_db
from contractor_platform.services.pricing_defaults import get_pricing_defaults, update_pricing_defaults

router = APIRouter(prefix="/api/company", tags=["company"])


@router.get("/pricing-defaults", response_model=PricingDefaults)
async def read_pricing_defaults(
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        company = await get_pricing_defaults(db, company_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return PricingDefaults.model_validate(company)


@router.put("/pricing-defaults", response_model=PricingDefaults)
async def write_pricing_defaults(
    data: PricingDefaultsUpdate,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Partially update pricing defaults. Only fields sent are changed."""
    try:
        company = await update_pricing_defaults(db, company_id, data.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return PricingDefaults.model_validate(company)
