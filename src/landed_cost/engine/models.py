"""
Data models for the landed cost engine.

Uses dataclasses for structured, type-safe data representation.
"""
from dataclasses import dataclass, field, asdict
from typing import Optional


# Tax methods (per quote and per item)
TAX_METHOD_AUTO = 'auto'
TAX_METHOD_HSN = 'hsn'
TAX_METHOD_ROUTE = 'route'
TAX_METHOD_COUNTRY = 'country'
TAX_METHOD_MANUAL = 'manual'
TAX_METHODS = (TAX_METHOD_AUTO, TAX_METHOD_HSN, TAX_METHOD_ROUTE, TAX_METHOD_COUNTRY, TAX_METHOD_MANUAL)

# Valuation methods
VALUATION_AUTO = 'auto'
VALUATION_ACTUAL = 'actual_price'
VALUATION_MINIMUM = 'minimum_valuation'
VALUATION_HIGHER = 'higher_of_both'
VALUATION_ADMIN = 'admin_override'
VALUATION_METHODS = (VALUATION_AUTO, VALUATION_ACTUAL, VALUATION_MINIMUM, VALUATION_HIGHER)

# Cost components that discounts can target
COMPONENTS = ('items', 'shipping', 'customs', 'handling', 'delivery', 'taxes')


class CalculationError(ValueError):
    """Raised when a quote cannot be priced from the request and reference data."""


@dataclass
class TraceStep:
    """A single step in the calculation trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class Dimensions:
    """Package dimensions in centimetres."""
    length_cm: float
    width_cm: float
    height_cm: float


@dataclass
class QuoteItem:
    """A single item in a quote request. Prices are in origin currency."""
    item_id: str
    name: str
    quantity: int
    unit_price: float
    weight_kg: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    hsn_code: Optional[str] = None
    category: Optional[str] = None

    # Per-item strategy overrides (fall back to the quote-level choice)
    tax_method: Optional[str] = None
    valuation_method: Optional[str] = None
    manual_customs_rate: Optional[float] = None
    manual_vat_rate: Optional[float] = None
    declared_value: Optional[float] = None  # admin override, per unit

    discount_percent: Optional[float] = None
    discount_amount: Optional[float] = None


@dataclass
class QuoteRequest:
    """A landed-cost request for one origin → destination shipment."""
    origin_country: str
    destination_country: str
    items: list[QuoteItem]
    quote_id: Optional[str] = None

    tax_method: str = TAX_METHOD_AUTO
    valuation_method: str = VALUATION_AUTO
    manual_customs_rate: Optional[float] = None
    manual_vat_rate: Optional[float] = None

    delivery_option: Optional[str] = None
    delivery_zone: str = 'urban'  # "urban" or "rural"
    destination_state: Optional[str] = None  # state sales tax, where the destination has a table
    insurance_opted_in: bool = False
    payment_gateway: Optional[str] = None
    purchase_tax_rate: Optional[float] = None
    merchant_shipping: float = 0.0

    discount_codes: list[str] = field(default_factory=list)
    is_first_order: bool = False
    request_date: Optional[str] = None  # ISO date string


@dataclass
class ValuationOption:
    """Duty calculated on one valuation basis, shown for admin choice."""
    basis_amount: float
    customs_amount: float
    local_tax_amount: float
    total_tax: float
    currency_conversion_details: Optional[str] = None


@dataclass
class ItemTaxBreakdown:
    """Per-item valuation, rate resolution and duty."""
    item_id: str
    name: str
    quantity: int
    hsn_code: Optional[str]
    category: Optional[str]

    tax_method: str
    rate_source: str
    valuation_method: str

    line_subtotal: float = 0.0
    item_discount: float = 0.0
    actual_unit_value: float = 0.0
    minimum_unit_value: Optional[float] = None
    dutiable_value: float = 0.0
    allocated_freight: float = 0.0
    cif_value: float = 0.0

    customs_rate: float = 0.0
    customs_amount: float = 0.0
    vat_rate: float = 0.0
    vat_amount: float = 0.0

    weight_kg: float = 0.0
    weight_estimated: bool = False

    actual_price_option: Optional[ValuationOption] = None
    minimum_valuation_option: Optional[ValuationOption] = None

    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    @property
    def total_taxes(self) -> float:
        return self.customs_amount + self.vat_amount

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this item."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        """Add a warning for this item."""
        self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)


@dataclass
class AppliedDiscount:
    """A discount that reduced a cost component."""
    discount_id: str
    name: str
    component: str
    amount: float
    code: Optional[str] = None


@dataclass
class ComponentCharge:
    """A cost component before and after discounts."""
    original: float
    discount: float = 0.0
    applied: list[AppliedDiscount] = field(default_factory=list)

    @property
    def final(self) -> float:
        return max(0.0, self.original - self.discount)


@dataclass
class ShippingOption:
    """A delivery option priced for the route and package weight."""
    option_id: str
    name: str
    cost: float
    days_min: Optional[int] = None
    days_max: Optional[int] = None
    tier_rate_per_kg: Optional[float] = None


@dataclass
class CostBreakdown:
    """Reported figures, rounded to the origin currency."""
    items_subtotal: float = 0.0
    item_discounts: float = 0.0
    order_discount: float = 0.0
    items_total: float = 0.0
    purchase_tax: float = 0.0
    merchant_shipping: float = 0.0
    shipping: float = 0.0
    shipping_discount: float = 0.0
    insurance: float = 0.0
    cif_value: float = 0.0
    customs: float = 0.0
    customs_discount: float = 0.0
    handling: float = 0.0
    handling_discount: float = 0.0
    domestic_delivery: float = 0.0
    delivery_discount: float = 0.0
    local_tax: float = 0.0
    tax_discount: float = 0.0
    subtotal: float = 0.0
    payment_gateway_fee: float = 0.0
    total: float = 0.0
    total_savings: float = 0.0


@dataclass
class QuoteResult:
    """Complete result of a landed-cost calculation."""
    quote_id: Optional[str]
    origin_country: str
    destination_country: str
    origin_currency: str
    destination_currency: str
    exchange_rate: float
    exchange_rate_source: str

    total: float = 0.0  # origin currency
    total_destination_currency: float = 0.0
    total_weight_kg: float = 0.0

    breakdown: CostBreakdown = field(default_factory=CostBreakdown)
    items: list[ItemTaxBreakdown] = field(default_factory=list)
    shipping_options: list[ShippingOption] = field(default_factory=list)
    selected_shipping: Optional[ShippingOption] = None
    component_discounts: dict = field(default_factory=dict)

    tax_method: str = TAX_METHOD_AUTO
    customs_method: str = TAX_METHOD_AUTO
    effective_customs_rate: float = 0.0
    applied_route_tier: Optional[str] = None

    policy: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    # Metadata
    calculated_at: Optional[str] = None
    reference_hash: Optional[str] = None

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the result-level trace."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        """Add a result-level warning (deduplicated)."""
        if warning not in self.warnings:
            self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable result trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Plain dict for JSON responses."""
        data = asdict(self)
        for item, item_data in zip(self.items, data['items']):
            item_data['total_taxes'] = item.total_taxes
        return data
