# testing/test_shipping.py

from decimal import Decimal

from quick_quote.core.common_types import ShippingLocation, ShippingRegion
from quick_quote.services.shipping import quote_shipping


def test_no_regions_is_free():
    quote = quote_shipping(ShippingLocation(state="NSW"), [])
    assert quote.code == "none"
    assert quote.label == "Shipping"
    assert quote.amount == Decimal("0.00")
    assert not quote.remote_applied

def test_state_match_uses_first_candidate(shipping_regions):
    quote = quote_shipping(ShippingLocation(state=" vic "), shipping_regions, "west")
    assert quote.code == "metro"
    assert quote.amount == Decimal("10.00")
    assert not quote.remote_applied

def test_postcode_prefix_narrows_candidates_and_adds_surcharge(shipping_regions):
    quote = quote_shipping(ShippingLocation(state="NSW", postcode="2850"), shipping_regions, "west")
    assert quote.code == "regional"
    assert quote.base_amount == Decimal("15.00")
    assert quote.remote_surcharge == Decimal("7.50")
    assert quote.amount == Decimal("22.50")
    assert quote.remote_applied

def test_postcode_match_without_surcharge(shipping_regions):
    quote = quote_shipping(ShippingLocation(state="NSW", postcode="2000"), shipping_regions, "west")
    assert quote.code == "metro"
    assert quote.amount == Decimal("10.00")
    assert quote.remote_surcharge is None
    assert not quote.remote_applied

def test_unmatched_state_uses_default_region(shipping_regions):
    quote = quote_shipping(ShippingLocation(state="TAS", postcode="7000"), shipping_regions, "west")
    assert quote.code == "west"
    assert quote.amount == Decimal("20.00")
    assert not quote.remote_applied

def test_missing_default_uses_first_region(shipping_regions):
    quote = quote_shipping(ShippingLocation(), shipping_regions, "does-not-exist")
    assert quote.code == "metro"
    assert quote_shipping(None, shipping_regions).code == "metro"

def test_amount_rounded_to_cents():
    regions = [ShippingRegion(code="r", label="R", base_amount=Decimal("9.999"), states=["QLD"],
                              postcode_prefixes=["4"], remote_surcharge=Decimal("0.004"))]
    quote = quote_shipping(ShippingLocation(state="QLD", postcode="4000"), regions)
    assert quote.amount == Decimal("10.00")
