"""Company pricing defaults: read and validated partial update."""

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.domain.models import Company
from contractor_platform.services.errors import FieldValidationError, NotFoundError
from contractor_platform.services.pricing import validate_bounds

logger = logging.getLogger(__name__)

BOUND_PREFIXES = (
    "default_subcontractor_fee",
    "default_equipment_materials_fee",
    "default_additional_expenses_fee",
    "default_initial_fee",
    "default_final_fee",
)


async def get_pricing_defaults(db: AsyncSession, company_id: str) -> Company:
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id)
    return company


async def update_pricing_defaults(db: AsyncSession, company_id: str, changes: dict) -> Company:
    """Apply ``changes`` to the company's defaults.

    Bounds are validated against the merged result, so raising only a
    minimum above the stored maximum is rejected. The document counter may
    be raised but never lowered.

    Raises:
        NotFoundError: unknown company.
        PricingConfigError: a min/max pair is negative or inverted.
        FieldValidationError: unknown field or a lowered counter.
    """
    company = await get_pricing_defaults(db, company_id)
    changes = dict(changes)
    next_number = changes.pop("next_document_number", None)

    for name in changes:
        if not hasattr(Company, name) or name in ("id", "name", "created_at", "updated_at"):
            raise FieldValidationError(name, "is not a pricing default")

    for prefix in BOUND_PREFIXES:
        low = changes.get(f"{prefix}_min", getattr(company, f"{prefix}_min"))
        high = changes.get(f"{prefix}_max", getattr(company, f"{prefix}_max"))
        validate_bounds(low, high, prefix)

    for name, value in changes.items():
        setattr(company, name, value)

    if next_number is not None:
        result = await db.execute(
            update(Company)
            .where(Company.id == company_id, Company.next_document_number <= next_number)
            .values(next_document_number=next_number)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise FieldValidationError("next_document_number", "cannot be lower than the current counter")

    await db.commit()
    await db.refresh(company)
    logger.info("Updated pricing defaults for company %s (%s)", company_id, ", ".join(sorted(changes)) or "counter")
    return company
