# services/shipping.py

import logging
from typing import Optional, Sequence

from ..core.common_types import ShippingLocation, ShippingQuote, ShippingRegion
from ..core import utils

logger = logging.getLogger(__name__)


def _matches_postcode(region: ShippingRegion, postcode: str) -> bool:
    return bool(postcode) and any(postcode.startswith(prefix) for prefix in region.postcode_prefixes if prefix)


def quote_shipping(
    location: Optional[ShippingLocation],
    regions: Sequence[ShippingRegion],
    default_code: Optional[str] = None,
) -> ShippingQuote:
    """
    Resolves the delivery charge for a location against the configured regions.

    Regions listing the location's state are candidates; a postcode prefix
    match narrows them and also triggers the region's remote surcharge.
    Unmatched states get the default region (or the first one) at its base
    amount. With no regions configured shipping is free.
    """
    location = location or ShippingLocation()
    if not regions:
        return ShippingQuote(code="none", label="Shipping", base_amount=utils.round_money(0), amount=utils.round_money(0))

    fallback = next((r for r in regions if default_code and r.code == default_code), regions[0])
    target_state = (location.state or "").strip().upper()
    target_postcode = (location.postcode or "").strip()

    candidates = [
        r for r in regions
        if target_state and any(state.strip().upper() == target_state for state in r.states)
    ]
    if not candidates:
        if not target_state:
            logger.info(f"No state provided; using default shipping region '{fallback.code}'.")
        else:
            logger.info(f"State '{target_state}' not matched; using default shipping region '{fallback.code}'.")
        return ShippingQuote(
            code=fallback.code,
            label=fallback.label,
            base_amount=fallback.base_amount,
            amount=utils.round_money(fallback.base_amount),
            remote_surcharge=fallback.remote_surcharge,
            remote_applied=False,
        )

    if target_postcode:
        postcode_match = next((r for r in candidates if _matches_postcode(r, target_postcode)), None)
        if postcode_match is not None:
            candidates = [postcode_match]

    selected = candidates[0]
    surcharge = utils.to_decimal(selected.remote_surcharge) if _matches_postcode(selected, target_postcode) else utils.to_decimal(0)
    remote_applied = surcharge > 0
    quote = ShippingQuote(
        code=selected.code,
        label=selected.label,
        base_amount=selected.base_amount,
        amount=utils.round_money(selected.base_amount + surcharge),
        remote_surcharge=surcharge if remote_applied else None,
        remote_applied=remote_applied,
    )
    logger.debug(f"Shipping resolved to '{quote.code}' ({quote.amount}), remote surcharge applied: {remote_applied}")
    return quote
