"""Milestone assembler - builds a document's customer payment schedule.

Pure transform: takes a company (pricing defaults + auto-include flags), a
project's cost line items and the requested document type, and returns an
ordered list of ``AssembledMilestone``. Persisting the result as snapshot
rows is the caller's job, done only after assembly succeeds.

Contract / proposal order:
    initial fee -> subcontractor lines -> equipment & materials -> additional
    expenses -> final inspection

Change order order:
    initial fee placeholder -> user-authored items -> balance placeholder
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from contractor_platform.domain.enums import CostCategory, DocumentType, MilestoneType
from contractor_platform.services.category_defaults import (
    ItemOverride,
    category_field_prefix,
    resolve_defaults,
)
from contractor_platform.services.errors import FieldValidationError
from contractor_platform.services.pricing import (
    resolve_percentage_fee,
    resolve_price,
    to_decimal,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Flat signing fee used when the company has no percentage configured
DEFAULT_SIGNING_FEE = Decimal("1000")

BALANCE_MESSAGE = "Balance of schedule will be provided with contract"
CHANGE_ORDER_BALANCE_NAME = "Balance to be determined"


class MilestoneValidationError(FieldValidationError):
    """Raised when a document cannot be assembled from the project's data."""


@dataclass(frozen=True)
class PriceOverride:
    """Explicit pricing for one milestone, set by the user."""

    flat_price: Decimal | None = None
    markup_percent: Decimal | None = None


@dataclass
class ChangeOrderItem:
    """User-authored change order row. No subcontractor/equipment linkage."""

    name: str
    description: str = ""
    cost: Decimal | None = None
    customer_price: Decimal | None = None
    markup_percent: Decimal | None = None


@dataclass
class AssembledMilestone:
    """One priced payment-schedule row, not yet persisted."""

    milestone_type: MilestoneType
    name: str
    cost: Decimal
    customer_price: Decimal
    markup_percent: Decimal = ZERO
    flat_price: Decimal | None = None
    sort_order: int = 0
    description: str | None = None
    subcontractor_fee_id: str | None = None
    additional_expense_id: str | None = None


@dataclass
class PaymentLine:
    """Customer-visible schedule row. Carries no internal cost."""

    description: str
    amount: Decimal


@dataclass
class PaymentSchedule:
    lines: list[PaymentLine] = field(default_factory=list)
    total: Decimal = ZERO


def override_key(milestone_type: MilestoneType, source_id: str | None = None) -> tuple[str, str | None]:
    """Key used to match a price override to the milestone it prices."""
    return (MilestoneType(milestone_type).value, source_id)


def _sum(values: Iterable) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value) or ZERO
    return total


def _first_amount(*values) -> Decimal:
    for value in values:
        amount = to_decimal(value)
        if amount is not None:
            return amount
    return ZERO


def subcontractor_cost(fee) -> Decimal:
    return _first_amount(fee.expected_value, fee.flat_fee)


def order_item_cost(item) -> Decimal:
    return _first_amount(item.expected_price, item.actual_price)


def expense_cost(expense) -> Decimal:
    return _first_amount(expense.expected_value, expense.amount)


class MilestoneAssembler:
    """Prices and orders the milestones for one document."""

    def __init__(self, company):
        self.company = company

    def assemble(
        self,
        project,
        document_type: DocumentType,
        change_order_items: Optional[list[ChangeOrderItem]] = None,
        overrides: Optional[dict] = None,
    ) -> list[AssembledMilestone]:
        """Return the ordered milestones for ``project`` as ``document_type``.

        Args:
            project: Object exposing ``subcontractor_fees``, ``equipment``,
                ``materials`` and ``additional_expenses`` sequences.
            document_type: contract, proposal or change_order.
            change_order_items: Rows for a change order; ignored otherwise.
            overrides: ``{override_key(...): PriceOverride}`` explicit prices.

        Raises:
            MilestoneValidationError: an auto-included category has no line
                items and no explicit override, or a change order has no
                usable items.
            PricingConfigError: company bounds are inconsistent (min > max).
        """
        document_type = DocumentType(document_type)
        overrides = overrides or {}

        if document_type == DocumentType.CHANGE_ORDER:
            milestones = self._assemble_change_order(change_order_items or [], overrides)
        else:
            milestones = self._assemble_schedule(project, document_type, overrides)

        for index, milestone in enumerate(milestones):
            milestone.sort_order = index

        logger.debug(
            "Assembled %d milestones for %s (project=%s)",
            len(milestones),
            document_type.value,
            getattr(project, "id", None),
        )
        return milestones

    # ------------------------------------------------------------------
    # Contract / proposal
    # ------------------------------------------------------------------

    def _assemble_schedule(self, project, document_type: DocumentType, overrides: dict) -> list[AssembledMilestone]:
        company = self.company
        line_items: list[AssembledMilestone] = []

        if getattr(company, "auto_include_subcontractor", True):
            line_items.extend(self._subcontractor_milestones(project, overrides))

        if getattr(company, "auto_include_equipment_materials", True):
            items = list(getattr(project, "equipment", None) or []) + list(getattr(project, "materials", None) or [])
            line_items.append(
                self._aggregate_milestone(
                    category=CostCategory.EQUIPMENT_MATERIALS,
                    milestone_type=MilestoneType.EQUIPMENT_MATERIALS,
                    name="Equipment & Materials",
                    items=items,
                    cost_of=order_item_cost,
                    flag="auto_include_equipment_materials",
                    overrides=overrides,
                )
            )

        if getattr(company, "auto_include_additional_expenses", True):
            expenses = list(getattr(project, "additional_expenses", None) or [])
            milestone = self._aggregate_milestone(
                category=CostCategory.ADDITIONAL_EXPENSES,
                milestone_type=MilestoneType.ADDITIONAL,
                name="Additional Fees",
                items=expenses,
                cost_of=expense_cost,
                flag="auto_include_additional_expenses",
                overrides=overrides,
            )
            if len(expenses) == 1:
                milestone.additional_expense_id = expenses[0].id
            line_items.append(milestone)

        subtotal = _sum(m.customer_price for m in line_items)
        milestones: list[AssembledMilestone] = []

        if getattr(company, "auto_include_initial_payment", True):
            name = "Initial Sign Fee" if document_type == DocumentType.PROPOSAL else "Initial Contract Fee"
            milestones.append(
                self._signing_fee(MilestoneType.INITIAL_FEE, name, "initial", subtotal, overrides)
            )

        milestones.extend(line_items)

        if getattr(company, "auto_include_final_payment", True):
            milestones.append(
                self._signing_fee(MilestoneType.FINAL_INSPECTION, "Final Inspection", "final", subtotal, overrides)
            )

        return milestones

    def _subcontractor_milestones(self, project, overrides: dict) -> list[AssembledMilestone]:
        fees = list(getattr(project, "subcontractor_fees", None) or [])
        category_override = overrides.get(override_key(MilestoneType.SUBCONTRACTOR))

        if not fees:
            if category_override is None or category_override.flat_price is None:
                raise MilestoneValidationError(
                    "auto_include_subcontractor",
                    "Subcontractor work is auto-included but the project has no "
                    "subcontractor fee lines and no explicit price",
                )
            return [
                AssembledMilestone(
                    milestone_type=MilestoneType.SUBCONTRACTOR,
                    name="Subcontractor Work",
                    cost=ZERO,
                    customer_price=resolve_price(ZERO, category_override.flat_price),
                    flat_price=to_decimal(category_override.flat_price),
                )
            ]

        prefix = category_field_prefix(CostCategory.SUBCONTRACTOR)
        milestones = []
        for fee in fees:
            cost = subcontractor_cost(fee)
            override = overrides.get(override_key(MilestoneType.SUBCONTRACTOR, fee.id)) or PriceOverride()

            flat_price = override.flat_price
            if flat_price is None:
                flat_price = getattr(fee, "customer_price", None)

            markup = override.markup_percent
            if markup is None:
                markup = getattr(fee, "markup_percent", None)

            defaults = resolve_defaults(
                self.company,
                CostCategory.SUBCONTRACTOR,
                ItemOverride(
                    markup_percent=markup,
                    min_price=getattr(fee, "fee_min", None),
                    max_price=getattr(fee, "fee_max", None),
                ),
            )
            price = resolve_price(
                cost,
                flat_price,
                defaults.markup_percent,
                defaults.min_price,
                defaults.max_price,
                prefix,
            )
            milestones.append(
                AssembledMilestone(
                    milestone_type=MilestoneType.SUBCONTRACTOR,
                    name=getattr(fee, "job_description", None) or "Work",
                    cost=cost,
                    customer_price=price,
                    markup_percent=defaults.markup_percent,
                    flat_price=to_decimal(flat_price),
                    subcontractor_fee_id=fee.id,
                )
            )
        return milestones

    def _aggregate_milestone(
        self,
        category: CostCategory,
        milestone_type: MilestoneType,
        name: str,
        items: list,
        cost_of,
        flag: str,
        overrides: dict,
    ) -> AssembledMilestone:
        override = overrides.get(override_key(milestone_type)) or PriceOverride()
        if not items and override.flat_price is None:
            raise MilestoneValidationError(
                flag,
                f"{name} is auto-included but the project has no line items "
                "in this category and no explicit price",
            )

        cost = _sum(cost_of(item) for item in items)
        defaults = resolve_defaults(
            self.company,
            category,
            ItemOverride(markup_percent=override.markup_percent),
        )
        price = resolve_price(
            cost,
            override.flat_price,
            defaults.markup_percent,
            defaults.min_price,
            defaults.max_price,
            category_field_prefix(category),
        )
        return AssembledMilestone(
            milestone_type=milestone_type,
            name=name,
            cost=cost,
            customer_price=price,
            markup_percent=defaults.markup_percent,
            flat_price=to_decimal(override.flat_price),
        )

    def _signing_fee(
        self,
        milestone_type: MilestoneType,
        name: str,
        setting: str,
        subtotal: Decimal,
        overrides: dict,
    ) -> AssembledMilestone:
        override = overrides.get(override_key(milestone_type)) or PriceOverride()
        percent = getattr(self.company, f"default_{setting}_fee_percent", None)
        min_price = getattr(self.company, f"default_{setting}_fee_min", None)
        max_price = getattr(self.company, f"default_{setting}_fee_max", None)
        prefix = f"default_{setting}_fee"

        if override.flat_price is not None:
            price = resolve_price(ZERO, override.flat_price)
        elif percent is None:
            price = resolve_price(DEFAULT_SIGNING_FEE, None, 0, min_price, max_price, prefix)
        else:
            price = resolve_percentage_fee(subtotal, percent, min_price, max_price, prefix)

        return AssembledMilestone(
            milestone_type=milestone_type,
            name=name,
            cost=ZERO,
            customer_price=price,
            flat_price=to_decimal(override.flat_price),
        )

    # ------------------------------------------------------------------
    # Change order
    # ------------------------------------------------------------------

    def _assemble_change_order(self, items: list[ChangeOrderItem], overrides: dict) -> list[AssembledMilestone]:
        usable = [item for item in items if (item.name or "").strip()]
        if not usable:
            raise MilestoneValidationError(
                "change_order_items",
                "A change order needs at least one item with a name",
            )

        initial_override = overrides.get(override_key(MilestoneType.INITIAL_FEE)) or PriceOverride()
        milestones = [
            AssembledMilestone(
                milestone_type=MilestoneType.INITIAL_FEE,
                name="Initial Fee",
                cost=ZERO,
                customer_price=resolve_price(ZERO, initial_override.flat_price),
                flat_price=to_decimal(initial_override.flat_price),
            )
        ]

        global_markup = to_decimal(getattr(self.company, "default_markup_percent", None)) or ZERO
        for item in usable:
            markup = to_decimal(item.markup_percent, "markup_percent")
            if markup is None:
                markup = global_markup
            cost = to_decimal(item.cost, "cost") or ZERO
            milestones.append(
                AssembledMilestone(
                    milestone_type=MilestoneType.CHANGE_ORDER_ITEM,
                    name=item.name.strip(),
                    description=item.description or "",
                    cost=cost,
                    customer_price=resolve_price(cost, item.customer_price, markup),
                    markup_percent=markup,
                    flat_price=to_decimal(item.customer_price, "customer_price"),
                )
            )

        milestones.append(
            AssembledMilestone(
                milestone_type=MilestoneType.CUSTOM,
                name=CHANGE_ORDER_BALANCE_NAME,
                cost=ZERO,
                customer_price=ZERO,
            )
        )
        return milestones


def build_payment_schedule(milestones: list, document_type: DocumentType) -> PaymentSchedule:
    """Customer-facing payment schedule. Never exposes cost or markup.

    Contracts list every milestone. Proposals list only the initial fee and a
    balance note. Change orders list the initial fee, each named item with a
    price, and the balance placeholder.
    """
    document_type = DocumentType(document_type)
    ordered = sorted(milestones, key=lambda m: m.sort_order)

    def _type(m) -> str:
        return MilestoneType(m.milestone_type).value

    lines: list[PaymentLine] = []
    if document_type == DocumentType.PROPOSAL:
        for m in ordered:
            if _type(m) == MilestoneType.INITIAL_FEE.value:
                lines.append(PaymentLine(m.name, to_decimal(m.customer_price)))
        lines.append(PaymentLine(BALANCE_MESSAGE, ZERO))
    elif document_type == DocumentType.CHANGE_ORDER:
        for m in ordered:
            price = to_decimal(m.customer_price) or ZERO
            if _type(m) == MilestoneType.CHANGE_ORDER_ITEM.value and not price:
                continue
            lines.append(PaymentLine(m.name, price))
    else:
        lines = [PaymentLine(m.name, to_decimal(m.customer_price) or ZERO) for m in ordered]

    return PaymentSchedule(lines=lines, total=_sum(line.amount for line in lines))
