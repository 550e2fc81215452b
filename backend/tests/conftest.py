"""Shared test infrastructure for the contractor platform test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- file_engine: file-backed SQLite engine for tests that need concurrent sessions
- make_company / make_project / make_document: row factories
- signing_client_mock: mock SigningProviderClient capturing send requests
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from contractor_platform.infra.database import Base, enable_sqlite_foreign_keys

import contractor_platform.domain.models  # noqa: F401

from contractor_platform.domain.enums import ESignProvider, SignerTopology
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
from contractor_platform.services.auth_service import create_access_token


# ---------------------------------------------------------------------------
# Database session fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Foreign keys are enforced so ON DELETE SET NULL behaves as in production.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine; each session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_company():
    """Factory: build a Company with sensible pricing defaults."""

    async def _make(db: AsyncSession, **overrides) -> Company:
        fields = dict(
            name="Summit Roofing",
            default_markup_percent=Decimal("30"),
            next_document_number=1,
            company_signer_name="Dana Foreman",
            company_signer_email="dana@summitroofing.test",
        )
        fields.update(overrides)
        company = Company(**fields)
        db.add(company)
        await db.commit()
        return company

    return _make


@pytest.fixture
def make_project():
    """Factory: build a Project with optional line items.

    ``subcontractors`` / ``equipment`` / ``materials`` / ``expenses`` are
    lists of column dicts for the corresponding line item tables.
    """

    async def _make(
        db: AsyncSession,
        company: Company,
        subcontractors: list[dict] | None = None,
        equipment: list[dict] | None = None,
        materials: list[dict] | None = None,
        expenses: list[dict] | None = None,
        **overrides,
    ) -> Project:
        fields = dict(
            company_id=company.id,
            name="Henderson re-roof",
            customer_name="Pat Henderson",
            customer_email="pat@henderson.test",
            address="12 Elm St",
        )
        fields.update(overrides)
        project = Project(**fields)
        db.add(project)
        await db.flush()

        for row in subcontractors or []:
            db.add(ProjectSubcontractorFee(company_id=company.id, project_id=project.id, **row))
        for row in equipment or []:
            db.add(ProjectEquipment(company_id=company.id, project_id=project.id, **row))
        for row in materials or []:
            db.add(ProjectMaterial(company_id=company.id, project_id=project.id, **row))
        for row in expenses or []:
            db.add(ProjectAdditionalExpense(company_id=company.id, project_id=project.id, **row))

        await db.commit()
        return project

    return _make


@pytest.fixture
def make_document():
    """Factory: insert a ProjectDocument directly (bypassing generation)."""

    async def _make(db: AsyncSession, project: Project, milestones: list[dict] | None = None, **overrides) -> ProjectDocument:
        fields = dict(
            company_id=project.company_id,
            project_id=project.id,
            document_type="contract",
            status="draft",
            customer_name=project.customer_name,
            customer_email=project.customer_email,
        )
        fields.update(overrides)
        document = ProjectDocument(**fields)
        db.add(document)
        await db.flush()
        for index, row in enumerate(milestones or []):
            row = dict(row)
            row.setdefault("name", "Row")
            row.setdefault("milestone_type", "custom")
            row.setdefault("sort_order", index)
            db.add(Milestone(company_id=project.company_id, project_id=project.id, document_id=document.id, **row))
        await db.commit()
        return document

    return _make


# ---------------------------------------------------------------------------
# Signing provider mock
# ---------------------------------------------------------------------------

@pytest.fixture
def signing_client_mock():
    """Mock SigningProviderClient with declared-gated topology.

    ``create_signing_request`` records each request in ``.requests`` and
    returns ``"prov-doc-1"``.
    """
    mock = MagicMock()
    mock.provider = ESignProvider.BOLDSIGN
    mock.topology = SignerTopology.DECLARED_GATED
    mock.requests = []

    async def _create(request):
        mock.requests.append(request)
        return "prov-doc-1"

    mock.create_signing_request = AsyncMock(side_effect=_create)
    mock.get_status = AsyncMock()
    mock.add_signer = AsyncMock()
    return mock


@pytest.fixture
def auth_headers():
    """Factory: Authorization header for a company."""

    def _headers(company_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(company_id, 'user-1')}"}

    return _headers
