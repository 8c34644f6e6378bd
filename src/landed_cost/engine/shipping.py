"""
Shipping cost resolution - package weight, route weight tiers and delivery options.

Shipping is priced in the origin currency:
    base_shipping_cost + weight × tier rate (or shipping_per_kg) + value × cost_percentage%
"""
from typing import Optional

from .models import CalculationError, QuoteItem, ShippingOption
from .reference_data import to_float

DEFAULT_ITEM_WEIGHT_KG = 0.5
DEFAULT_VOLUMETRIC_DIVISOR = 5000.0


def volumetric_weight(item: QuoteItem, divisor: float = DEFAULT_VOLUMETRIC_DIVISOR) -> Optional[float]:
    """L × W × H / divisor, or None when the item has no dimensions."""
    dims = item.dimensions
    if dims is None or not divisor:
        return None
    return (dims.length_cm * dims.width_cm * dims.height_cm) / divisor


def item_weight(item: QuoteItem, divisor: float = DEFAULT_VOLUMETRIC_DIVISOR) -> tuple[float, bool]:
    """
    Chargeable weight per unit.

    Returns (weight_kg, estimated) where estimated is True when the default
    weight had to be used.
    """
    actual = item.weight_kg if item.weight_kg and item.weight_kg > 0 else None
    volumetric = volumetric_weight(item, divisor)

    if actual is None and volumetric is None:
        return DEFAULT_ITEM_WEIGHT_KG, True
    return max(actual or 0.0, volumetric or 0.0), False


def find_weight_tier(tiers: list[dict], weight: float) -> Optional[dict]:
    """First tier with min <= weight <= max (an empty max is unbounded)."""
    for tier in tiers:
        if weight >= tier['min'] and (tier['max'] is None or weight <= tier['max']):
            return tier
    return None


def route_base_cost(route: dict, weight: float, value: float, tiers: list[dict]) -> tuple[float, list[str], Optional[float]]:
    """
    Price the shipment on a route before delivery-option premiums.

    Returns (cost, trace_messages, tier_rate_per_kg).
    """
    lane = f"{route.get('origin_country')}->{route.get('destination_country')}"
    traces = []

    base = to_float(route.get('base_shipping_cost'))
    if base is None:
        raise CalculationError(
            f"Missing base_shipping_cost for route {lane}. "
            "Please configure complete shipping route data."
        )
    cost = base
    traces.append(f"Route base {base:.2f}")

    per_kg = to_float(route.get('shipping_per_kg'))
    tier = find_weight_tier(tiers, weight) if tiers else None
    tier_rate = None

    if tier:
        tier_rate = tier['cost_per_kg']
        cost += weight * tier_rate
        max_label = "∞" if tier['max'] is None else f"{tier['max']}kg"
        traces.append(
            f"Weight tier {tier['min']}kg-{max_label}: {weight:.3f}kg × {tier_rate:.2f}/kg"
        )
    else:
        if not per_kg or per_kg <= 0:
            if tiers:
                raise CalculationError(
                    f"No valid weight tier found and missing shipping_per_kg for route {lane}. "
                    f"Weight: {weight}kg"
                )
            raise CalculationError(
                f"Missing or invalid shipping_per_kg for route {lane}. "
                "Please configure weight-based pricing."
            )
        cost += weight * per_kg
        traces.append(f"Per-kg rate: {weight:.3f}kg × {per_kg:.2f}/kg")

    percentage = to_float(route.get('cost_percentage'), 0.0)
    if percentage > 0:
        cost += value * (percentage / 100)
        traces.append(f"Value-based {percentage}% of {value:.2f}")

    return cost, traces, tier_rate


def shipping_options(
    route: dict,
    weight: float,
    value: float,
    tiers: list[dict],
    delivery_options: list[dict],
) -> tuple[list[ShippingOption], list[str]]:
    """
    Price every delivery option configured for the route.

    Routes without delivery options get a single "standard" option.
    """
    base_cost, traces, tier_rate = route_base_cost(route, weight, value, tiers)

    if not delivery_options:
        return [ShippingOption(
            option_id='standard',
            name='Standard',
            cost=base_cost,
            tier_rate_per_kg=tier_rate,
        )], traces

    options = []
    for opt in delivery_options:
        premium = to_float(opt.get('premium'), 0.0)
        days_min = to_float(opt.get('days_min'))
        days_max = to_float(opt.get('days_max'))
        options.append(ShippingOption(
            option_id=opt.get('option_id') or 'standard',
            name=opt.get('name') or opt.get('option_id') or 'Standard',
            cost=base_cost + premium,
            days_min=int(days_min) if days_min is not None else None,
            days_max=int(days_max) if days_max is not None else None,
            tier_rate_per_kg=tier_rate,
        ))
    return options, traces


def select_shipping_option(options: list[ShippingOption], requested: Optional[str]) -> ShippingOption:
    """Requested option when available, otherwise the cheapest."""
    if requested:
        for opt in options:
            if opt.option_id == requested:
                return opt
    return min(options, key=lambda o: o.cost)
