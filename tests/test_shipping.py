import pytest

from landed_cost.engine.models import CalculationError, Dimensions, QuoteItem
from landed_cost.engine.shipping import (
    DEFAULT_ITEM_WEIGHT_KG, find_weight_tier, item_weight, route_base_cost,
    select_shipping_option, shipping_options,
)

TIERS = [
    {'min': 0.0, 'max': 1.0, 'cost_per_kg': 15.0},
    {'min': 1.0, 'max': 5.0, 'cost_per_kg': 12.0},
    {'min': 5.0, 'max': None, 'cost_per_kg': 10.0},
]

ROUTE = {
    'origin_country': 'US', 'destination_country': 'IN',
    'base_shipping_cost': '15', 'shipping_per_kg': '12', 'cost_percentage': '0',
}


def make_item(**kwargs):
    defaults = dict(item_id='a', name='Item', quantity=1, unit_price=10.0)
    defaults.update(kwargs)
    return QuoteItem(**defaults)


def test_item_weight_uses_volumetric_when_larger():
    item = make_item(weight_kg=0.5, dimensions=Dimensions(30, 20, 10))
    weight, estimated = item_weight(item, 5000)
    assert weight == pytest.approx(1.2)
    assert not estimated


def test_item_weight_uses_actual_when_larger():
    item = make_item(weight_kg=2.0, dimensions=Dimensions(10, 10, 10))
    assert item_weight(item, 5000) == (2.0, False)


def test_item_weight_default_is_estimated():
    assert item_weight(make_item(), 5000) == (DEFAULT_ITEM_WEIGHT_KG, True)
    assert item_weight(make_item(weight_kg=0), 5000) == (DEFAULT_ITEM_WEIGHT_KG, True)


def test_weight_tier_boundaries():
    assert find_weight_tier(TIERS, 0.0)['cost_per_kg'] == 15.0
    # Shared boundary goes to the first tier
    assert find_weight_tier(TIERS, 1.0)['cost_per_kg'] == 15.0
    assert find_weight_tier(TIERS, 1.01)['cost_per_kg'] == 12.0
    assert find_weight_tier(TIERS, 250)['cost_per_kg'] == 10.0
    assert find_weight_tier(TIERS[:2], 6.0) is None


def test_route_base_cost_with_tier():
    cost, traces, rate = route_base_cost(ROUTE, 2.0, 100.0, TIERS)
    assert cost == pytest.approx(15 + 2.0 * 12)
    assert rate == 12.0
    assert any("Weight tier" in t for t in traces)


def test_route_base_cost_per_kg_fallback():
    """No matching tier falls back to shipping_per_kg."""
    cost, _, rate = route_base_cost(ROUTE, 6.0, 100.0, TIERS[:2])
    assert cost == pytest.approx(15 + 6.0 * 12)
    assert rate is None


def test_route_base_cost_value_percentage():
    route = dict(ROUTE, cost_percentage='0.5')
    cost, _, _ = route_base_cost(route, 1.0, 200.0, [])
    assert cost == pytest.approx(15 + 12 + 1.0)


def test_zero_base_cost_is_allowed():
    cost, _, _ = route_base_cost(dict(ROUTE, base_shipping_cost='0'), 1.0, 0.0, [])
    assert cost == pytest.approx(12.0)


def test_missing_base_cost_raises():
    with pytest.raises(CalculationError, match="base_shipping_cost"):
        route_base_cost(dict(ROUTE, base_shipping_cost=''), 1.0, 0.0, TIERS)


def test_missing_per_kg_raises():
    route = dict(ROUTE, shipping_per_kg='')
    with pytest.raises(CalculationError, match="No valid weight tier"):
        route_base_cost(route, 6.0, 0.0, TIERS[:2])
    with pytest.raises(CalculationError, match="shipping_per_kg"):
        route_base_cost(route, 6.0, 0.0, [])


def test_shipping_options_and_selection():
    delivery = [
        {'option_id': 'standard', 'name': 'Standard', 'premium': '0', 'days_min': '7', 'days_max': '10'},
        {'option_id': 'express', 'name': 'Express', 'premium': '25', 'days_min': '3', 'days_max': '5'},
    ]
    options, _ = shipping_options(ROUTE, 0.5, 50.0, TIERS, delivery)
    assert [o.option_id for o in options] == ['standard', 'express']
    assert options[1].cost == pytest.approx(options[0].cost + 25)
    assert options[1].days_min == 3

    assert select_shipping_option(options, 'express').option_id == 'express'
    assert select_shipping_option(options, None).option_id == 'standard'
    assert select_shipping_option(options, 'drone').option_id == 'standard'


def test_single_standard_option_without_delivery_options():
    options, _ = shipping_options(ROUTE, 1.0, 0.0, [], [])
    assert len(options) == 1
    assert options[0].option_id == 'standard'
    assert options[0].cost == pytest.approx(27.0)
