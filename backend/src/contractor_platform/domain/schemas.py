"""Pydantic v2 schemas for API request/response validation."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from contractor_platform.domain.enums import DocumentType, MilestoneType


# ---------------------------------------------------------------------------
# Document generation
# ---------------------------------------------------------------------------


class PriceOverrideIn(BaseModel):
    """Explicit price for one milestone of the generated document.

    ``source_id`` selects a single subcontractor fee line; leave it empty for
    aggregate and fee milestones.
    """

    milestone_type: MilestoneType
    source_id: str | None = None
    flat_price: Decimal | None = None
    markup_percent: Decimal | None = None


class ChangeOrderItemIn(BaseModel):
    name: str
    description: str = ""
    cost: Decimal | None = None
    customer_price: Decimal | None = None
    markup_percent: Decimal | None = None


class GenerateDocumentRequest(BaseModel):
    """Schema for generating a contract, proposal or change order."""

    document_type: DocumentType
    document_date: date | None = None
    change_order_items: list[ChangeOrderItemIn] = Field(default_factory=list)
    price_overrides: list[PriceOverrideIn] = Field(default_factory=list)


class MilestoneResponse(BaseModel):
    """Internal milestone view. Includes cost and markup; never shown to customers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    milestone_type: str
    name: str
    description: str | None = None
    cost: Decimal
    customer_price: Decimal
    flat_price: Decimal | None = None
    markup_percent: Decimal | None = None
    sort_order: int
    subcontractor_fee_id: str | None = None
    additional_expense_id: str | None = None


class DocumentStatusResponse(BaseModel):
    """Document header and signature state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    document_type: str
    document_number: int | None = None
    document_date: date | None = None
    document_url: str | None = None
    status: str
    customer_name: str | None = None
    customer_email: str | None = None
    company_signer_name: str | None = None
    company_signer_email: str | None = None
    provider: str | None = None
    provider_document_id: str | None = None
    signer_topology: str | None = None
    last_provider_status: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    customer_signed_at: datetime | None = None
    company_signer_added_at: datetime | None = None
    company_signed_at: datetime | None = None
    completed_at: datetime | None = None
    declined_at: datetime | None = None
    voided_at: datetime | None = None


class DocumentResponse(DocumentStatusResponse):
    milestones: list[MilestoneResponse] = Field(default_factory=list)


class PaymentLineResponse(BaseModel):
    description: str
    amount: Decimal


class CustomerScheduleResponse(BaseModel):
    """Customer-facing payment schedule. Carries no cost or markup."""

    document_id: str
    document_number: int | None = None
    document_type: str
    lines: list[PaymentLineResponse]
    total: Decimal


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------


class SendForSignatureRequest(BaseModel):
    document_url: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Company pricing defaults
# ---------------------------------------------------------------------------

_BOUND_PAIRS = (
    ("default_subcontractor_fee_min", "default_subcontractor_fee_max"),
    ("default_equipment_materials_fee_min", "default_equipment_materials_fee_max"),
    ("default_additional_expenses_fee_min", "default_additional_expenses_fee_max"),
    ("default_initial_fee_min", "default_initial_fee_max"),
    ("default_final_fee_min", "default_final_fee_max"),
)


class PricingDefaults(BaseModel):
    """Company pricing defaults and auto-include preferences."""

    model_config = ConfigDict(from_attributes=True)

    default_markup_percent: Decimal | None = None
    default_subcontractor_markup_percent: Decimal | None = None
    default_subcontractor_fee_min: Decimal | None = None
    default_subcontractor_fee_max: Decimal | None = None
    default_equipment_materials_markup_percent: Decimal | None = None
    default_equipment_materials_fee_min: Decimal | None = None
    default_equipment_materials_fee_max: Decimal | None = None
    default_additional_expenses_markup_percent: Decimal | None = None
    default_additional_expenses_fee_min: Decimal | None = None
    default_additional_expenses_fee_max: Decimal | None = None
    default_initial_fee_percent: Decimal | None = None
    default_initial_fee_min: Decimal | None = None
    default_initial_fee_max: Decimal | None = None
    default_final_fee_percent: Decimal | None = None
    default_final_fee_min: Decimal | None = None
    default_final_fee_max: Decimal | None = None
    auto_include_initial_payment: bool | None = None
    auto_include_subcontractor: bool | None = None
    auto_include_equipment_materials: bool | None = None
    auto_include_additional_expenses: bool | None = None
    auto_include_final_payment: bool | None = None
    company_signer_name: str | None = None
    company_signer_email: str | None = None
    next_document_number: int | None = None


class PricingDefaultsUpdate(PricingDefaults):
    """Partial update. Only fields present in the request body are applied."""

    @model_validator(mode="after")
    def check_bounds(self):
        for low_name, high_name in _BOUND_PAIRS:
            low = getattr(self, low_name)
            high = getattr(self, high_name)
            for name, value in ((low_name, low), (high_name, high)):
                if value is not None and value < 0:
                    raise ValueError(f"{name} cannot be negative")
            if low is not None and high is not None and low > high:
                raise ValueError(f"{low_name} ({low}) is greater than {high_name} ({high})")
        return self


# ---------------------------------------------------------------------------
# Project pricing
# ---------------------------------------------------------------------------


class DraftMilestoneIn(BaseModel):
    milestone_type: MilestoneType
    name: str | None = None
    description: str | None = None
    cost: Decimal | None = None
    customer_price: Decimal | None = None
    flat_price: Decimal | None = None
    markup_percent: Decimal | None = None
    sort_order: int | None = None
    subcontractor_fee_id: str | None = None
    additional_expense_id: str | None = None


class SaveMilestonesRequest(BaseModel):
    milestones: list[DraftMilestoneIn]


class LineItemPatch(BaseModel):
    """Fields accepted across line item kinds; each kind allows a subset."""

    job_description: str | None = None
    expected_value: Decimal | None = None
    flat_fee: Decimal | None = None
    customer_price: Decimal | None = None
    markup_percent: Decimal | None = None
    fee_min: Decimal | None = None
    fee_max: Decimal | None = None
    name: str | None = None
    quantity: int | None = None
    expected_price: Decimal | None = None
    actual_price: Decimal | None = None
    description: str | None = None
    amount: Decimal | None = None


class LineItemResponse(BaseModel):
    id: str
    category: str
    updated_fields: list[str]
