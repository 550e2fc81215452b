"""SQLAlchemy ORM models for the contractor platform document engine.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- Numeric for money and percentages
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from contractor_platform.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenant root
# ---------------------------------------------------------------------------


class Company(Base):
    """Tenant root. Owns pricing defaults and the document number counter.

    ``next_document_number`` is only ever advanced by the document number
    allocator; settings updates may raise it but never lower it.
    """

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    next_document_number = Column(Integer, nullable=False, default=1)

    # Global fallback markup
    default_markup_percent = Column(Numeric(8, 3), nullable=True, default=30)

    # Per-category defaults (null = fall through to the global default / no bound)
    default_subcontractor_markup_percent = Column(Numeric(8, 3), nullable=True)
    default_subcontractor_fee_min = Column(Numeric(12, 2), nullable=True)
    default_subcontractor_fee_max = Column(Numeric(12, 2), nullable=True)
    default_equipment_materials_markup_percent = Column(Numeric(8, 3), nullable=True)
    default_equipment_materials_fee_min = Column(Numeric(12, 2), nullable=True)
    default_equipment_materials_fee_max = Column(Numeric(12, 2), nullable=True)
    default_additional_expenses_markup_percent = Column(Numeric(8, 3), nullable=True)
    default_additional_expenses_fee_min = Column(Numeric(12, 2), nullable=True)
    default_additional_expenses_fee_max = Column(Numeric(12, 2), nullable=True)

    # Signing fee schedule (percent of the line-item customer subtotal; null = flat default)
    default_initial_fee_percent = Column(Numeric(5, 2), nullable=True)
    default_initial_fee_min = Column(Numeric(12, 2), nullable=True)
    default_initial_fee_max = Column(Numeric(12, 2), nullable=True)
    default_final_fee_percent = Column(Numeric(5, 2), nullable=True)
    default_final_fee_min = Column(Numeric(12, 2), nullable=True)
    default_final_fee_max = Column(Numeric(12, 2), nullable=True)

    # Auto-include preferences for contract/proposal generation
    auto_include_initial_payment = Column(Boolean, nullable=False, default=True)
    auto_include_subcontractor = Column(Boolean, nullable=False, default=True)
    auto_include_equipment_materials = Column(Boolean, nullable=False, default=True)
    auto_include_additional_expenses = Column(Boolean, nullable=False, default=True)
    auto_include_final_payment = Column(Boolean, nullable=False, default=True)

    # Company representative who countersigns documents
    company_signer_name = Column(String(255), nullable=True)
    company_signer_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    projects = relationship("Project", back_populates="company")


# ---------------------------------------------------------------------------
# Projects and cost line items
# ---------------------------------------------------------------------------


class Project(Base):
    """A job for one customer. Aggregates internal cost line items."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)
    status = Column(String(30), nullable=False, default="lead")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="projects")
    subcontractor_fees = relationship("ProjectSubcontractorFee", back_populates="project", passive_deletes=True)
    equipment = relationship("ProjectEquipment", back_populates="project", passive_deletes=True)
    materials = relationship("ProjectMaterial", back_populates="project", passive_deletes=True)
    additional_expenses = relationship("ProjectAdditionalExpense", back_populates="project", passive_deletes=True)
    documents = relationship("ProjectDocument", back_populates="project", passive_deletes=True)


class ProjectSubcontractorFee(Base):
    """Subcontractor job line. ``customer_price`` is an explicit flat override."""

    __tablename__ = "project_subcontractor_fees"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    subcontractor_id = Column(String(36), nullable=True)
    job_description = Column(String(500), nullable=True)
    expected_value = Column(Numeric(12, 2), nullable=True)
    flat_fee = Column(Numeric(12, 2), nullable=True)
    customer_price = Column(Numeric(12, 2), nullable=True)
    markup_percent = Column(Numeric(8, 3), nullable=True)
    fee_min = Column(Numeric(12, 2), nullable=True)
    fee_max = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="subcontractor_fees")


class ProjectEquipment(Base):
    """Equipment ordered for a project. Prices are line totals, not per unit."""

    __tablename__ = "project_equipment"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = Column(String(36), nullable=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    expected_price = Column(Numeric(12, 2), nullable=True)
    actual_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="equipment")


class ProjectMaterial(Base):
    """Materials ordered for a project. Prices are line totals, not per unit."""

    __tablename__ = "project_materials"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = Column(String(36), nullable=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    expected_price = Column(Numeric(12, 2), nullable=True)
    actual_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="materials")


class ProjectAdditionalExpense(Base):
    """Miscellaneous project cost (permits, disposal, rentals)."""

    __tablename__ = "project_additional_expenses"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    expected_value = Column(Numeric(12, 2), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="additional_expenses")


# ---------------------------------------------------------------------------
# Documents and pricing snapshots
# ---------------------------------------------------------------------------


class ProjectDocument(Base):
    """Generated contract / proposal / change order and its signature state.

    ``document_number`` is assigned once, in the same transaction that
    inserts the row, and never reassigned.
    """

    __tablename__ = "project_documents"
    __table_args__ = (
        UniqueConstraint("company_id", "document_number", name="uq_project_documents_company_number"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(String(20), nullable=False)
    document_number = Column(Integer, nullable=True)
    document_date = Column(Date, nullable=True)
    document_url = Column(String(1000), nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)

    # Signers
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    company_signer_name = Column(String(255), nullable=True)
    company_signer_email = Column(String(255), nullable=True)
    sender_email = Column(String(255), nullable=True)

    # Provider tracking
    provider = Column(String(20), nullable=True)
    provider_document_id = Column(String(255), nullable=True, index=True)
    signer_topology = Column(String(30), nullable=True)
    last_provider_status = Column(String(50), nullable=True)

    # Lifecycle timestamps
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    customer_signed_at = Column(DateTime, nullable=True)
    company_signer_added_at = Column(DateTime, nullable=True)
    company_signed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    voided_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="documents")
    milestones = relationship(
        "Milestone",
        back_populates="document",
        order_by="Milestone.sort_order",
        passive_deletes=True,
    )
    events = relationship("DocumentEvent", back_populates="document", passive_deletes=True)


class Milestone(Base):
    """Frozen customer-facing payment-schedule row.

    Rows with ``document_id`` set are snapshots of a generated document.
    Rows with ``document_id`` null are the project's editable draft pricing.
    The line item back-references are lookup-only and fall to NULL when the
    source item is deleted.
    """

    __tablename__ = "milestones"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("project_documents.id", ondelete="CASCADE"), nullable=True, index=True)
    document_type = Column(String(20), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    milestone_type = Column(String(30), nullable=False, index=True)
    cost = Column(Numeric(12, 2), nullable=False, default=0)
    customer_price = Column(Numeric(12, 2), nullable=False, default=0)
    flat_price = Column(Numeric(12, 2), nullable=True)
    # NULL on a draft row: no markup override
    markup_percent = Column(Numeric(8, 3), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    subcontractor_fee_id = Column(
        String(36),
        ForeignKey("project_subcontractor_fees.id", ondelete="SET NULL"),
        nullable=True,
    )
    additional_expense_id = Column(
        String(36),
        ForeignKey("project_additional_expenses.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    document = relationship("ProjectDocument", back_populates="milestones")


class DocumentEvent(Base):
    """Audit row for every signature status update offered to a document."""

    __tablename__ = "document_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("project_documents.id", ondelete="CASCADE"), nullable=False, index=True)
    source = Column(String(20), nullable=False)  # webhook, poll, user, system
    provider = Column(String(20), nullable=True)
    provider_event = Column(String(100), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    outcome = Column(String(20), nullable=False)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())

    document = relationship("ProjectDocument", back_populates="events")
