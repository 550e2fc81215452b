"""Integration tests for DocumentService: generation, draft pricing, line-item locks."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select

from contractor_platform.domain.enums import DocumentType, LineItemCategory, MilestoneType
from contractor_platform.domain.models import (
    Company,
    Milestone,
    ProjectDocument,
    ProjectEquipment,
    ProjectSubcontractorFee,
)
from contractor_platform.services.document_numbers import DocumentNumberAllocator
from contractor_platform.services.document_service import DocumentService, LineItemLockedError
from contractor_platform.services.errors import FieldValidationError, NotFoundError
from contractor_platform.services.milestone_assembler import (
    BALANCE_MESSAGE,
    ChangeOrderItem,
    MilestoneValidationError,
    PriceOverride,
    override_key,
)

D = Decimal

LINE_ITEMS = dict(
    subcontractors=[{"job_description": "Tear-off and decking", "expected_value": D("1000")}],
    equipment=[{"name": "Dumpster", "expected_price": D("200")}],
    materials=[{"name": "Shingles", "expected_price": D("100")}],
    expenses=[{"description": "Permit", "expected_value": D("50")}],
)


@pytest.fixture
async def priced_project(db_session, make_company, make_project):
    company = await make_company(db_session, next_document_number=100)
    project = await make_project(db_session, company, **LINE_ITEMS)
    return company, project


async def _only(db, model, project_id):
    result = await db.execute(select(model).where(model.project_id == project_id))
    return result.scalars().one()


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGenerateDocument:

    async def test_contract_numbered_with_snapshot(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        document = await service.generate_document(
            company.id, project.id, DocumentType.CONTRACT, document_date=date(2026, 3, 2),
        )

        assert document.document_number == 100
        assert document.status == "draft"
        assert document.document_date == date(2026, 3, 2)
        assert document.customer_email == "pat@henderson.test"
        assert document.company_signer_email == "dana@summitroofing.test"
        assert [m.milestone_type for m in document.milestones] == [
            "initial_fee", "subcontractor", "equipment_materials", "additional", "final_inspection",
        ]
        assert document.milestones[1].customer_price == D("1300.00")

        result = await db_session.execute(select(Company.next_document_number).where(Company.id == company.id))
        assert result.scalar_one() == 101

    async def test_second_document_gets_next_number(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        first = await service.generate_document(company.id, project.id, DocumentType.PROPOSAL)
        second = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        assert (first.document_number, second.document_number) == (100, 101)

    async def test_snapshot_is_frozen_against_line_item_edits(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        fee = await _only(db_session, ProjectSubcontractorFee, project.id)
        await service.update_line_item(
            company.id, project.id, LineItemCategory.SUBCONTRACTOR, fee.id, {"expected_value": "5000"},
        )

        result = await db_session.execute(
            select(Milestone.customer_price).where(
                Milestone.document_id == document.id,
                Milestone.milestone_type == MilestoneType.SUBCONTRACTOR.value,
            )
        )
        assert result.scalar_one() == D("1300.00")

    async def test_validation_failure_consumes_no_number(self, db_session, make_company, make_project):
        company = await make_company(db_session, next_document_number=5)
        project = await make_project(db_session, company)

        with pytest.raises(MilestoneValidationError) as exc_info:
            await DocumentService(db_session).generate_document(company.id, project.id, DocumentType.CONTRACT)
        assert exc_info.value.field == "auto_include_subcontractor"

        counter = await db_session.execute(select(Company.next_document_number).where(Company.id == company.id))
        documents = await db_session.execute(select(func.count()).select_from(ProjectDocument))
        assert counter.scalar_one() == 5
        assert documents.scalar_one() == 0

    async def test_change_order(self, db_session, make_company, make_project):
        company = await make_company(db_session)
        project = await make_project(db_session, company)

        document = await DocumentService(db_session).generate_document(
            company.id,
            project.id,
            DocumentType.CHANGE_ORDER,
            change_order_items=[ChangeOrderItem(name="Extra ridge vent", cost=D("100"))],
        )

        assert document.document_type == "change_order"
        assert [m.name for m in document.milestones] == ["Initial Fee", "Extra ridge vent", "Balance to be determined"]
        assert document.milestones[1].customer_price == D("130.00")

    async def test_other_company_cannot_generate(self, db_session, priced_project, make_company):
        _, project = priced_project
        intruder = await make_company(db_session, name="Other Co")

        with pytest.raises(NotFoundError):
            await DocumentService(db_session).generate_document(intruder.id, project.id, DocumentType.CONTRACT)

    async def test_concurrent_generation_numbers_are_distinct(self, file_session_factory, make_company, make_project):
        async with file_session_factory() as db:
            company = await make_company(db, next_document_number=1)
            project = await make_project(db, company, **LINE_ITEMS)
            company_id, project_id = company.id, project.id

        async def generate():
            async with file_session_factory() as session:
                allocator = DocumentNumberAllocator(session, max_retries=20, backoff_seconds=0.01)
                document = await DocumentService(session, allocator=allocator).generate_document(
                    company_id, project_id, DocumentType.CONTRACT,
                )
                return document.document_number

        numbers = await asyncio.gather(generate(), generate())

        assert sorted(numbers) == [1, 2]


# ---------------------------------------------------------------------------
# Draft pricing
# ---------------------------------------------------------------------------


class TestDraftPricing:

    async def test_saved_draft_price_feeds_generation(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        await service.save_project_pricing(
            company.id, project.id, [{"milestone_type": "equipment_materials", "flat_price": "500"}],
        )
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        aggregate = next(m for m in document.milestones if m.milestone_type == "equipment_materials")
        assert aggregate.customer_price == D("500")
        assert aggregate.flat_price == D("500")

    async def test_zero_markup_draft_prices_at_cost(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        await service.save_project_pricing(
            company.id, project.id, [{"milestone_type": "equipment_materials", "markup_percent": "0"}],
        )
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        aggregate = next(m for m in document.milestones if m.milestone_type == "equipment_materials")
        assert aggregate.cost == D("300.00")
        assert aggregate.customer_price == D("300.00")
        assert aggregate.markup_percent == D("0")

    async def test_draft_without_markup_keeps_company_default(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        drafts = await service.save_project_pricing(
            company.id, project.id, [{"milestone_type": "equipment_materials", "name": "Equipment Materials"}],
        )
        assert drafts[0].markup_percent is None
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        aggregate = next(m for m in document.milestones if m.milestone_type == "equipment_materials")
        assert aggregate.customer_price == D("390.00")
        assert aggregate.markup_percent == D("30")

    async def test_request_override_beats_draft(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        await service.save_project_pricing(
            company.id, project.id, [{"milestone_type": "equipment_materials", "flat_price": "500"}],
        )
        document = await service.generate_document(
            company.id,
            project.id,
            DocumentType.CONTRACT,
            price_overrides={override_key(MilestoneType.EQUIPMENT_MATERIALS): PriceOverride(flat_price=D("650"))},
        )

        aggregate = next(m for m in document.milestones if m.milestone_type == "equipment_materials")
        assert aggregate.customer_price == D("650")

    async def test_save_replaces_previous_drafts(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)

        await service.save_project_pricing(company.id, project.id, [{"milestone_type": "custom", "name": "A"}])
        await service.save_project_pricing(
            company.id, project.id,
            [{"milestone_type": "custom", "name": "B"}, {"milestone_type": "initial_fee", "flat_price": 750}],
        )

        drafts = await service.draft_milestones(company.id, project.id)
        assert [m.name for m in drafts] == ["B", "Initial Fee"]
        assert drafts[1].customer_price == D("750")

    async def test_drafts_do_not_touch_documents(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)

        await service.save_project_pricing(company.id, project.id, [])

        result = await db_session.execute(
            select(func.count()).select_from(Milestone).where(Milestone.document_id == document.id)
        )
        assert result.scalar_one() == 5

    async def test_unknown_milestone_type_rejected(self, db_session, priced_project):
        company, project = priced_project
        with pytest.raises(FieldValidationError) as exc_info:
            await DocumentService(db_session).save_project_pricing(
                company.id, project.id, [{"milestone_type": "bonus"}],
            )
        assert exc_info.value.field == "milestones[0].milestone_type"


# ---------------------------------------------------------------------------
# Customer schedule
# ---------------------------------------------------------------------------


class TestCustomerSchedule:

    async def test_proposal_schedule(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        document = await service.generate_document(company.id, project.id, DocumentType.PROPOSAL)

        _, schedule = await service.customer_schedule(company.id, document.id)

        assert [line.description for line in schedule.lines] == ["Initial Sign Fee", BALANCE_MESSAGE]
        assert schedule.total == D("1000.00")

    async def test_schedule_scoped_to_company(self, db_session, priced_project, make_company):
        company, project = priced_project
        document = await DocumentService(db_session).generate_document(company.id, project.id, DocumentType.CONTRACT)
        other = await make_company(db_session, name="Other Co")

        with pytest.raises(NotFoundError):
            await DocumentService(db_session).customer_schedule(other.id, document.id)


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


class TestLineItemGuards:

    async def test_draft_document_does_not_lock(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        await service.generate_document(company.id, project.id, DocumentType.CONTRACT)
        fee = await _only(db_session, ProjectSubcontractorFee, project.id)

        item = await service.update_line_item(
            company.id, project.id, LineItemCategory.SUBCONTRACTOR, fee.id, {"expected_value": "1500"},
        )

        assert item.expected_value == D("1500")

    async def test_sent_document_locks_priced_items(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)
        document.status = "sent"
        await db_session.commit()

        fee = await _only(db_session, ProjectSubcontractorFee, project.id)
        with pytest.raises(LineItemLockedError) as exc_info:
            await service.update_line_item(
                company.id, project.id, LineItemCategory.SUBCONTRACTOR, fee.id, {"expected_value": "1"},
            )
        assert exc_info.value.document_id == document.id

        equipment = await _only(db_session, ProjectEquipment, project.id)
        with pytest.raises(LineItemLockedError):
            await service.update_line_item(
                company.id, project.id, LineItemCategory.EQUIPMENT, equipment.id, {"actual_price": "210"},
            )

    async def test_unpriced_item_stays_editable(self, db_session, priced_project):
        company, project = priced_project
        service = DocumentService(db_session)
        document = await service.generate_document(company.id, project.id, DocumentType.CONTRACT)
        document.status = "signed"
        new_fee = ProjectSubcontractorFee(
            company_id=company.id, project_id=project.id,
            job_description="Gutters", expected_value=D("400"),
        )
        db_session.add(new_fee)
        await db_session.commit()

        item = await service.update_line_item(
            company.id, project.id, LineItemCategory.SUBCONTRACTOR, new_fee.id, {"markup_percent": 10},
        )
        assert item.markup_percent == D("10")

    async def test_non_editable_field(self, db_session, priced_project):
        company, project = priced_project
        fee = await _only(db_session, ProjectSubcontractorFee, project.id)

        with pytest.raises(FieldValidationError) as exc_info:
            await DocumentService(db_session).update_line_item(
                company.id, project.id, LineItemCategory.SUBCONTRACTOR, fee.id, {"company_id": "x"},
            )
        assert exc_info.value.field == "company_id"

    async def test_item_from_other_company(self, db_session, priced_project, make_company):
        _, project = priced_project
        fee = await _only(db_session, ProjectSubcontractorFee, project.id)
        other = await make_company(db_session, name="Other Co")

        with pytest.raises(NotFoundError):
            await DocumentService(db_session).update_line_item(
                other.id, project.id, LineItemCategory.SUBCONTRACTOR, fee.id, {"expected_value": "1"},
            )

    async def test_deleting_line_item_nulls_back_reference(self, db_session, priced_project):
        company, project = priced_project
        document = await DocumentService(db_session).generate_document(company.id, project.id, DocumentType.CONTRACT)
        fee = await _only(db_session, ProjectSubcontractorFee, project.id)

        await db_session.execute(delete(ProjectSubcontractorFee).where(ProjectSubcontractorFee.id == fee.id))
        await db_session.commit()

        result = await db_session.execute(
            select(Milestone.subcontractor_fee_id, Milestone.customer_price).where(
                Milestone.document_id == document.id,
                Milestone.milestone_type == MilestoneType.SUBCONTRACTOR.value,
            )
        )
        fee_id, price = result.one()
        assert fee_id is None
        assert price == D("1300.00")
