"""Category defaults resolver - effective markup and fee bounds for a line item.

Fallback order, first non-null wins, evaluated per field:

1. item-specific override
2. company per-category default (``default_<category>_markup_percent/fee_min/fee_max``)
3. company global default (``default_markup_percent``; markup only)
4. zero markup, no bounds

The order is load-bearing: reversing it silently reprices every document.
"""

from dataclasses import dataclass
from decimal import Decimal

from contractor_platform.domain.enums import CostCategory
from contractor_platform.services.pricing import to_decimal


@dataclass(frozen=True)
class ItemOverride:
    """Pricing knobs set directly on a line item."""

    markup_percent: Decimal | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None


@dataclass(frozen=True)
class ResolvedDefaults:
    """Effective pricing inputs for one category (or one item)."""

    markup_percent: Decimal
    min_price: Decimal | None
    max_price: Decimal | None
    markup_source: str = "none"  # item, category, company, none


def _first_not_none(*candidates):
    for source, value in candidates:
        if value is not None:
            return source, value
    return None, None


def category_field_prefix(category: CostCategory) -> str:
    """Settings name prefix for a category's fee bounds."""
    return f"default_{category.value}_fee"


def resolve_defaults(
    company,
    category: CostCategory,
    item_override: ItemOverride | None = None,
) -> ResolvedDefaults:
    """Resolve the effective markup / min / max for ``category``.

    ``company`` may be an ORM ``Company`` or any object exposing the same
    attributes; missing attributes count as unset.
    """
    item = item_override or ItemOverride()
    key = category.value

    markup_source, markup = _first_not_none(
        ("item", to_decimal(item.markup_percent, "markup_percent")),
        ("category", to_decimal(getattr(company, f"default_{key}_markup_percent", None))),
        ("company", to_decimal(getattr(company, "default_markup_percent", None))),
    )
    _, min_price = _first_not_none(
        ("item", to_decimal(item.min_price, "fee_min")),
        ("category", to_decimal(getattr(company, f"default_{key}_fee_min", None))),
    )
    _, max_price = _first_not_none(
        ("item", to_decimal(item.max_price, "fee_max")),
        ("category", to_decimal(getattr(company, f"default_{key}_fee_max", None))),
    )

    return ResolvedDefaults(
        markup_percent=markup if markup is not None else Decimal("0"),
        min_price=min_price,
        max_price=max_price,
        markup_source=markup_source or "none",
    )
