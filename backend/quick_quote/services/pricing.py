# services/pricing.py

import time
import logging
from decimal import Decimal
from typing import Mapping, Optional, Sequence, Tuple, Union

from ..core.common_types import (
    DiscountType,
    ItemBreakdown,
    PricedItem,
    PricedQuote,
    PricingConfig,
    QuickOrderItem,
    ShippingLocation,
    StudentDiscount,
)
from ..core.exceptions import NoItemsError
from ..core import utils
from .shipping import quote_shipping

logger = logging.getLogger(__name__)

STUDENT_DISCOUNT_RATE = Decimal("20")
STUDENT_DOMAIN_LABEL = "edu"
SECONDS_PER_HOUR = Decimal("3600")
_BREAKDOWN_PLACES = Decimal("0.0001")

Number = Union[Decimal, float, int, str]


# --- Student discount ---

def resolve_student_discount(email: Optional[str]) -> StudentDiscount:
    """Student rate for addresses whose domain carries an 'edu' label (e.g. uni.edu.au)."""
    if not email or "@" not in email:
        return StudentDiscount(eligible=False)
    domain = email.strip().rsplit("@", 1)[1].lower()
    labels = [label for label in domain.split(".") if label]
    if len(labels) > 1 and STUDENT_DOMAIN_LABEL in labels:
        return StudentDiscount(eligible=True, rate=STUDENT_DISCOUNT_RATE)
    return StudentDiscount(eligible=False)


def is_student_discount_locked(discount: StudentDiscount) -> bool:
    """A locked student discount cannot be edited by hand on the quote."""
    return discount.eligible and discount.rate == STUDENT_DISCOUNT_RATE


def _normalize_discount(discount_type, discount_value) -> Tuple[DiscountType, Decimal]:
    try:
        kind = DiscountType(discount_type) if discount_type is not None else DiscountType.NONE
    except ValueError:
        logger.warning(f"Unknown discount type '{discount_type}'; ignoring discount.")
        kind = DiscountType.NONE
    value = max(Decimal("0"), utils.to_decimal(discount_value))
    if kind == DiscountType.NONE or value <= 0:
        return DiscountType.NONE, Decimal("0")
    return kind, value


def _resolve_discount(
    discount_type, discount_value, requester_email: Optional[str]
) -> Tuple[DiscountType, Decimal, bool]:
    """Explicit discounts win; otherwise an eligible requester gets the student rate."""
    kind, value = _normalize_discount(discount_type, discount_value)
    if kind != DiscountType.NONE:
        return kind, value, False
    student = resolve_student_discount(requester_email)
    if student.eligible and student.rate > 0:
        logger.info(f"Student discount of {student.rate}% applied for requester domain.")
        return DiscountType.PERCENT, student.rate, True
    return DiscountType.NONE, Decimal("0"), False


# --- Item pricing ---

def price_item(item: QuickOrderItem, config: PricingConfig, material_costs: Mapping[str, Number]) -> PricedItem:
    """Prices one item: material (model and support), machine time and setup, floored at the minimum price."""
    default_rate = utils.to_decimal(config.default_cost_per_gram)
    cost_per_gram = utils.to_decimal(material_costs.get(item.material_id, default_rate))
    if item.material_id not in material_costs:
        logger.warning(f"Material '{item.material_id}' not in catalog; using default cost per gram {default_rate}.")

    if item.support_material_id and item.support_material_id != item.material_id:
        support_cost_per_gram = utils.to_decimal(material_costs.get(item.support_material_id, cost_per_gram))
    else:
        support_cost_per_gram = cost_per_gram

    metrics = item.metrics
    grams = max(Decimal("0"), utils.to_decimal(metrics.grams))
    support_grams = max(Decimal("0"), utils.to_decimal(metrics.support_grams))
    hours = max(Decimal("0"), utils.to_decimal(metrics.time_sec)) / SECONDS_PER_HOUR

    model_material_cost = grams * cost_per_gram
    support_material_cost = support_grams * support_cost_per_gram
    material_cost = model_material_cost + support_material_cost
    time_cost = hours * config.hourly_rate
    base = config.setup_fee + material_cost + time_cost

    unit_price = max(utils.round_money(config.minimum_price), utils.round_money(base))
    total = utils.round_money(unit_price * item.quantity)

    breakdown = ItemBreakdown(
        model_weight=grams,
        support_weight=support_grams,
        hours=hours.quantize(_BREAKDOWN_PLACES),
        model_material_cost=model_material_cost.quantize(_BREAKDOWN_PLACES),
        support_material_cost=support_material_cost.quantize(_BREAKDOWN_PLACES),
        material_cost=material_cost.quantize(_BREAKDOWN_PLACES),
        time_cost=time_cost.quantize(_BREAKDOWN_PLACES),
        setup_fee=config.setup_fee,
    )
    return PricedItem(
        file_name=item.file_name,
        quantity=item.quantity,
        unit_price=unit_price,
        total=total,
        breakdown=breakdown,
        fallback_estimate=metrics.fallback,
    )


def price_quick_order(
    items: Sequence[QuickOrderItem],
    location: Optional[ShippingLocation],
    config: PricingConfig,
    material_costs: Mapping[str, Number],
    discount_type: Optional[Union[DiscountType, str]] = None,
    discount_value: Optional[Number] = None,
    requester_email: Optional[str] = None,
) -> PricedQuote:
    """
    Prices a quick order: per-item totals, discount, shipping and tax.

    Args:
        items: Items with their slicing metrics.
        location: Delivery state/postcode used for the shipping region.
        config: Business pricing settings.
        material_costs: Cost per gram keyed by material id.
        discount_type: Explicit PERCENT or FIXED discount (takes precedence over the student rate).
        discount_value: Percentage or fixed amount for the explicit discount.
        requester_email: Checked for student eligibility when no explicit discount is given.

    Returns:
        A PricedQuote with every amount rounded half-up to cents.

    Raises:
        NoItemsError: If `items` is empty.
    """
    if not items:
        raise NoItemsError()

    start_time = time.time()
    priced_items = tuple(price_item(item, config, material_costs) for item in items)
    subtotal = sum((p.total for p in priced_items), Decimal("0"))

    kind, value, student_applied = _resolve_discount(discount_type, discount_value, requester_email)
    if kind == DiscountType.PERCENT:
        discounted = max(Decimal("0"), subtotal - subtotal * value / Decimal("100"))
    elif kind == DiscountType.FIXED:
        discounted = max(Decimal("0"), subtotal - value)
    else:
        discounted = subtotal
    discounted = utils.round_money(discounted)

    shipping = quote_shipping(location, config.shipping_regions, config.default_shipping_region)
    taxed_base = discounted + shipping.amount
    tax_amount = utils.round_money(max(Decimal("0"), taxed_base * config.tax_rate / Decimal("100")))
    total = utils.round_money(max(Decimal("0"), taxed_base + tax_amount))

    quote = PricedQuote(
        items=priced_items,
        original_subtotal=utils.round_money(subtotal),
        discount_type=kind,
        discount_value=value,
        discount_amount=utils.round_money(subtotal - discounted),
        subtotal=discounted,
        shipping=shipping,
        tax_rate=config.tax_rate,
        tax_amount=tax_amount,
        total=total,
        student_discount_applied=student_applied,
    )
    logger.info(
        f"Priced quick order: {len(priced_items)} item(s), subtotal {quote.original_subtotal}, "
        f"discount {quote.discount_amount}, shipping {shipping.amount}, tax {tax_amount}, "
        f"total {total} in {time.time() - start_time:.3f}s"
    )
    return quote
