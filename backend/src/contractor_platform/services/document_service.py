"""Document generation, draft project pricing and line-item guards.

``generate_document`` is the write path for new documents:

1. load the company and project (scoped to the caller's company)
2. merge saved draft prices with request overrides
3. assemble milestones (validation happens here, before any write)
4. allocate the number and insert document + milestone snapshots in one
   transaction, retried as a unit on numbering conflicts
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from contractor_platform.domain.enums import DocumentStatus, DocumentType, LineItemCategory, MilestoneType
from contractor_platform.domain.models import (
    Company,
    Milestone,
    Project,
    ProjectAdditionalExpense,
    ProjectDocument,
    ProjectEquipment,
    ProjectMaterial,
    ProjectSubcontractorFee,
)
from contractor_platform.services.document_numbers import DocumentNumberAllocator
from contractor_platform.services.errors import FieldValidationError, NotFoundError
from contractor_platform.services.milestone_assembler import (
    AssembledMilestone,
    ChangeOrderItem,
    MilestoneAssembler,
    PaymentSchedule,
    PriceOverride,
    build_payment_schedule,
    override_key,
)
from contractor_platform.services.pricing import to_decimal

logger = logging.getLogger(__name__)

LINE_ITEM_MODELS = {
    LineItemCategory.SUBCONTRACTOR: ProjectSubcontractorFee,
    LineItemCategory.EQUIPMENT: ProjectEquipment,
    LineItemCategory.MATERIALS: ProjectMaterial,
    LineItemCategory.ADDITIONAL: ProjectAdditionalExpense,
}

# Columns a caller may change on each kind of line item
EDITABLE_FIELDS = {
    LineItemCategory.SUBCONTRACTOR: {
        "job_description", "expected_value", "flat_fee", "customer_price",
        "markup_percent", "fee_min", "fee_max",
    },
    LineItemCategory.EQUIPMENT: {"name", "quantity", "expected_price", "actual_price"},
    LineItemCategory.MATERIALS: {"name", "quantity", "expected_price", "actual_price"},
    LineItemCategory.ADDITIONAL: {"description", "expected_value", "amount"},
}

_MONEY_FIELDS = {
    "expected_value", "flat_fee", "customer_price", "markup_percent",
    "fee_min", "fee_max", "expected_price", "actual_price", "amount",
}


class LineItemLockedError(Exception):
    """Raised when editing a line item already priced into a sent document."""

    def __init__(self, category: str, item_id: str, document_id: str):
        self.category = category
        self.item_id = item_id
        self.document_id = document_id
        super().__init__(
            f"{category} line item {item_id} is part of document {document_id} and can no longer be edited"
        )


def _draft_key(milestone: Milestone) -> tuple:
    source_id = None
    if milestone.milestone_type == MilestoneType.SUBCONTRACTOR.value:
        source_id = milestone.subcontractor_fee_id
    return override_key(MilestoneType(milestone.milestone_type), source_id)


class DocumentService:
    """Generates documents and guards the pricing data they snapshot."""

    def __init__(self, db: AsyncSession, allocator: Optional[DocumentNumberAllocator] = None):
        self.db = db
        self.allocator = allocator or DocumentNumberAllocator(db)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_company(self, company_id: str) -> Company:
        company = await self.db.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    async def get_project(self, company_id: str, project_id: str) -> Project:
        result = await self.db.execute(
            select(Project)
            .where(Project.id == project_id, Project.company_id == company_id)
            .options(
                selectinload(Project.subcontractor_fees),
                selectinload(Project.equipment),
                selectinload(Project.materials),
                selectinload(Project.additional_expenses),
            )
        )
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def get_document(self, company_id: str, document_id: str) -> ProjectDocument:
        result = await self.db.execute(
            select(ProjectDocument)
            .where(ProjectDocument.id == document_id, ProjectDocument.company_id == company_id)
            .options(selectinload(ProjectDocument.milestones))
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    async def draft_milestones(self, company_id: str, project_id: str) -> list[Milestone]:
        result = await self.db.execute(
            select(Milestone)
            .where(
                Milestone.company_id == company_id,
                Milestone.project_id == project_id,
                Milestone.document_id.is_(None),
            )
            .order_by(Milestone.sort_order)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_document(
        self,
        company_id: str,
        project_id: str,
        document_type: DocumentType,
        change_order_items: Optional[list[ChangeOrderItem]] = None,
        price_overrides: Optional[dict] = None,
        document_date: Optional[date] = None,
    ) -> ProjectDocument:
        """Create a numbered document with its milestone snapshot.

        Raises:
            NotFoundError: company or project outside the caller's scope.
            FieldValidationError: pricing or auto-include validation failed.
            DocumentNumberingError: numbering retries exhausted.
        """
        document_type = DocumentType(document_type)
        company = await self.get_company(company_id)
        project = await self.get_project(company_id, project_id)

        overrides: dict = {}
        for draft in await self.draft_milestones(company_id, project_id):
            if draft.flat_price is not None or draft.markup_percent is not None:
                overrides[_draft_key(draft)] = PriceOverride(
                    flat_price=draft.flat_price,
                    markup_percent=draft.markup_percent if draft.flat_price is None else None,
                )
        overrides.update(price_overrides or {})

        assembled = MilestoneAssembler(company).assemble(
            project, document_type, change_order_items=change_order_items, overrides=overrides
        )

        # Plain values only: a retried attempt rolls back and expires ORM state
        header = {
            "company_id": company_id,
            "project_id": project_id,
            "document_type": document_type.value,
            "document_date": document_date or date.today(),
            "status": DocumentStatus.DRAFT.value,
            "customer_name": project.customer_name,
            "customer_email": project.customer_email,
            "company_signer_name": company.company_signer_name,
            "company_signer_email": company.company_signer_email,
        }

        async def persist(number: int) -> ProjectDocument:
            document = ProjectDocument(document_number=number, **header)
            document.milestones = [
                self._snapshot(m, company_id, project_id, document_type) for m in assembled
            ]
            self.db.add(document)
            await self.db.flush()
            return document

        document = await self.allocator.run(company_id, persist)
        logger.info(
            "Generated %s #%d for project %s (%d milestones)",
            document_type.value, document.document_number, project_id, len(assembled),
        )
        return document

    @staticmethod
    def _snapshot(m: AssembledMilestone, company_id: str, project_id: str, document_type: DocumentType) -> Milestone:
        return Milestone(
            company_id=company_id,
            project_id=project_id,
            document_type=document_type.value,
            name=m.name,
            description=m.description,
            milestone_type=m.milestone_type.value,
            cost=m.cost,
            customer_price=m.customer_price,
            flat_price=m.flat_price,
            markup_percent=m.markup_percent,
            sort_order=m.sort_order,
            subcontractor_fee_id=m.subcontractor_fee_id,
            additional_expense_id=m.additional_expense_id,
        )

    async def customer_schedule(self, company_id: str, document_id: str) -> tuple[ProjectDocument, PaymentSchedule]:
        document = await self.get_document(company_id, document_id)
        return document, build_payment_schedule(document.milestones, DocumentType(document.document_type))

    # ------------------------------------------------------------------
    # Draft pricing
    # ------------------------------------------------------------------

    async def save_project_pricing(self, company_id: str, project_id: str, milestones: list[dict]) -> list[Milestone]:
        """Replace the project's draft milestones.

        Each entry carries ``milestone_type``, ``name`` and optional
        ``flat_price`` / ``markup_percent`` / source ids / ``cost`` /
        ``customer_price``. Generated documents are untouched.
        """
        await self.get_project(company_id, project_id)

        rows = []
        for index, item in enumerate(milestones):
            try:
                milestone_type = MilestoneType(item.get("milestone_type"))
            except ValueError as e:
                raise FieldValidationError(f"milestones[{index}].milestone_type", str(e)) from e
            flat_price = to_decimal(item.get("flat_price"), f"milestones[{index}].flat_price")
            rows.append(
                Milestone(
                    company_id=company_id,
                    project_id=project_id,
                    document_id=None,
                    name=item.get("name") or milestone_type.value.replace("_", " ").title(),
                    description=item.get("description"),
                    milestone_type=milestone_type.value,
                    cost=to_decimal(item.get("cost")) or 0,
                    customer_price=to_decimal(item.get("customer_price")) or flat_price or 0,
                    flat_price=flat_price,
                    markup_percent=to_decimal(item.get("markup_percent"), f"milestones[{index}].markup_percent"),
                    sort_order=item.get("sort_order", index),
                    subcontractor_fee_id=item.get("subcontractor_fee_id"),
                    additional_expense_id=item.get("additional_expense_id"),
                )
            )

        await self.db.execute(
            delete(Milestone).where(
                Milestone.company_id == company_id,
                Milestone.project_id == project_id,
                Milestone.document_id.is_(None),
            )
        )
        self.db.add_all(rows)
        await self.db.commit()
        logger.info("Saved %d draft milestones for project %s", len(rows), project_id)
        return rows

    # ------------------------------------------------------------------
    # Line items
    # ------------------------------------------------------------------

    async def find_locking_document(
        self, company_id: str, project_id: str, category: LineItemCategory, item_id: str
    ) -> Optional[str]:
        """Return the id of a non-draft document whose snapshot covers the item.

        Subcontractor fees and additional expenses are matched through the
        milestone back-reference. Equipment and materials are priced as one
        aggregate, so any sent document with that aggregate locks them all.
        """
        stmt = (
            select(ProjectDocument.id)
            .join(Milestone, Milestone.document_id == ProjectDocument.id)
            .where(
                ProjectDocument.company_id == company_id,
                ProjectDocument.project_id == project_id,
                ProjectDocument.status != DocumentStatus.DRAFT.value,
            )
            .limit(1)
        )
        if category == LineItemCategory.SUBCONTRACTOR:
            stmt = stmt.where(Milestone.subcontractor_fee_id == item_id)
        elif category == LineItemCategory.ADDITIONAL:
            stmt = stmt.where(
                (Milestone.additional_expense_id == item_id)
                | (Milestone.milestone_type == MilestoneType.ADDITIONAL.value)
            )
        else:
            stmt = stmt.where(
                Milestone.milestone_type.in_(
                    [
                        MilestoneType.EQUIPMENT_MATERIALS.value,
                        MilestoneType.EQUIPMENT.value,
                        MilestoneType.MATERIALS.value,
                    ]
                )
            )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def update_line_item(
        self,
        company_id: str,
        project_id: str,
        category: LineItemCategory,
        item_id: str,
        changes: dict,
    ):
        """Apply ``changes`` to a cost line item unless a sent document locks it.

        Raises:
            NotFoundError: item not in this project / company.
            LineItemLockedError: item is priced into a non-draft document.
            FieldValidationError: unknown or invalid field.
        """
        category = LineItemCategory(category)
        model = LINE_ITEM_MODELS[category]
        result = await self.db.execute(
            select(model).where(
                model.id == item_id,
                model.project_id == project_id,
                model.company_id == company_id,
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError(f"{category.value} line item", item_id)

        locking_document = await self.find_locking_document(company_id, project_id, category, item_id)
        if locking_document is not None:
            raise LineItemLockedError(category.value, item_id, locking_document)

        allowed = EDITABLE_FIELDS[category]
        for name, value in changes.items():
            if name not in allowed:
                raise FieldValidationError(name, f"cannot be edited on {category.value} line items")
            if name in _MONEY_FIELDS:
                value = to_decimal(value, name)
            setattr(item, name, value)

        await self.db.commit()
        logger.info("Updated %s line item %s (%s)", category.value, item_id, ", ".join(sorted(changes)))
        return item
