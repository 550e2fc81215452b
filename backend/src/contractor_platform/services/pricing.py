"""Pricing resolver - turns an internal cost into a customer-facing price.

ECONOMIC ISOLATION: ``cost`` and ``markup_percent`` are internal. Only the
returned customer price may be shown to customers.

Everything here is pure: no database, no settings, no I/O.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from contractor_platform.services.errors import FieldValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class PricingConfigError(FieldValidationError):
    """Raised for invalid markup bounds (negative, or min greater than max)."""


def to_decimal(value, field: str = "amount") -> Decimal | None:
    """Coerce a numeric input to Decimal. ``None`` stays ``None``."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats like 0.1 do not drag binary noise along
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise FieldValidationError(field, f"not a number: {value!r}") from e


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half away from zero."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_bounds(min_price, max_price, field_prefix: str = "fee") -> tuple[Decimal | None, Decimal | None]:
    """Check and normalize a min/max pair. Bounds are never reordered."""
    low = to_decimal(min_price, f"{field_prefix}_min")
    high = to_decimal(max_price, f"{field_prefix}_max")
    if low is not None and low < 0:
        raise PricingConfigError(f"{field_prefix}_min", "minimum cannot be negative")
    if high is not None and high < 0:
        raise PricingConfigError(f"{field_prefix}_max", "maximum cannot be negative")
    if low is not None and high is not None and low > high:
        raise PricingConfigError(
            f"{field_prefix}_min",
            f"minimum ({low}) is greater than maximum ({high})",
        )
    return low, high


def resolve_price(
    cost,
    flat_price=None,
    markup_percent=0,
    min_price=None,
    max_price=None,
    field_prefix: str = "fee",
) -> Decimal:
    """Compute the customer price for one cost.

    Args:
        cost: Internal cost. ``None`` is treated as zero.
        flat_price: Explicit user override. When present it is returned
            unchanged and nothing else is evaluated.
        markup_percent: Percentage applied to cost. Negative values act as a
            discount; clamping still applies.
        min_price: Optional lower bound on the computed price.
        max_price: Optional upper bound on the computed price.
        field_prefix: Settings name reported when the bounds are invalid,
            e.g. ``default_subcontractor_fee``.

    Returns:
        The customer price, rounded to cents unless it is a flat override.

    Raises:
        PricingConfigError: if ``min_price > max_price`` or a bound is negative.
    """
    if flat_price is not None:
        return to_decimal(flat_price, "flat_price")

    low, high = validate_bounds(min_price, max_price, field_prefix)
    base = to_decimal(cost, "cost") or Decimal("0")
    markup = to_decimal(markup_percent, "markup_percent") or Decimal("0")

    raw = base * (1 + markup / HUNDRED)
    if low is not None and raw < low:
        return round_money(low)
    if high is not None and raw > high:
        return round_money(high)
    return round_money(raw)


def resolve_percentage_fee(
    base_amount,
    percent,
    min_price=None,
    max_price=None,
    field_prefix: str = "fee",
) -> Decimal:
    """Price a fee defined as a percentage of another amount, then clamp it.

    Used for the initial signing fee and the final inspection fee, which are
    a share of the document's line-item subtotal.
    """
    base = to_decimal(base_amount, "subtotal") or Decimal("0")
    pct = to_decimal(percent, "fee_percent") or Decimal("0")
    return resolve_price(base * pct / HUNDRED, None, 0, min_price, max_price, field_prefix)
