"""
Landed Cost Engine - Core landed-cost resolution logic with traceability.

Combines item price, weight-based shipping tiers, insurance, customs duty
(HSN codes, route tiers, country rates or manual rates), handling, domestic
delivery, local tax (VAT/GST), component discounts and the payment gateway fee
into one quote.

- Structured QuoteResult/ItemTaxBreakdown dataclass output
- Execution trace for every resolution step
- Warning collection for fallbacks and anomalies
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..config.settings import get_settings, Settings
from ..utils.logging import get_logger
from .currency import CurrencyConverter, SOURCE_FALLBACK, decimal_places, round_money
from .customs import (
    HSNTable, TaxRateResolver, default_vat_rate, match_route_tier, select_valuation,
)
from .discount_matcher import DiscountMatcher, apply_component
from .models import (
    CalculationError, CostBreakdown, ItemTaxBreakdown, QuoteItem, QuoteRequest,
    QuoteResult, ValuationOption, VALUATION_ACTUAL, VALUATION_MINIMUM,
)
from .reference_data import ReferenceData, to_bool, to_float
from .shipping import (
    DEFAULT_VOLUMETRIC_DIVISOR, item_weight,
    select_shipping_option, shipping_options,
)

logger = get_logger(__name__)


@dataclass
class _ItemWork:
    """Unrounded per-item figures carried between calculation steps."""
    item: QuoteItem
    line_subtotal: float
    item_discount: float
    net_line: float
    unit_weight: float
    weight_estimated: bool
    dutiable: float = 0.0
    freight: float = 0.0
    customs: float = 0.0
    vat: float = 0.0
    breakdown: Optional[ItemTaxBreakdown] = None


class LandedCostEngine:
    """
    Core engine that prices a cross-border quote in the origin currency.

    Resolution order:
    1. Items: line subtotals, item discounts, weights
    2. Order discounts and origin purchase tax
    3. Shipping options for the route, shipping discounts
    4. Insurance
    5. Per item: tax method, valuation, CIF allocation, customs
    6. Handling and domestic delivery
    7. Local tax on items and fees
    8. Payment gateway fee, totals, destination-currency total
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize engine with reference data and discounts."""
        self.settings = settings or get_settings()

        self.reference = ReferenceData(self.settings)
        self.currency = CurrencyConverter(self.reference)
        self.hsn_table = HSNTable(self.reference.hsn_master, self.reference.tax_overrides)
        self.resolver = TaxRateResolver(self.hsn_table)

        # Compiled discounts are optional
        self.discount_matcher = DiscountMatcher(self.settings.compiled_discounts)

        # Imported here to avoid a cycle: policy imports engine models
        from ..policy.quote_policy_engine import QuotePolicyEngine
        self.policy_engine = QuotePolicyEngine()

        logger.info(
            "Landed cost engine ready (reference %s, %d discounts)",
            self.reference.reference_hash, len(self.discount_matcher.discounts),
        )

    def reload_data(self):
        """Reload all reference data and discounts from disk."""
        self.__init__(self.settings)

    # Lookups used by the API

    def get_tax_info(self, country: str) -> dict:
        """Default tax settings and HSN coverage for a destination country."""
        settings = self.reference.country(country)
        if settings is None:
            raise CalculationError(f"Unknown country: {country}")
        code = settings['code']
        hsn_rows = self.hsn_table.master[self.hsn_table.master['country_code'] == code]
        return {
            "country": code,
            "currency": settings.get('currency'),
            "customs_percentage": to_float(settings.get('customs_percentage'), 0.0),
            "vat_percentage": to_float(settings.get('vat_percentage'), 0.0),
            "tax_label": settings.get('tax_label') or 'VAT',
            "purchase_tax_percentage": to_float(settings.get('purchase_tax_percentage'), 0.0),
            "high_value_threshold": to_float(settings.get('high_value_threshold')),
            "hsn_codes_with_rates": int(hsn_rows['hsn_code'].nunique()),
        }

    def get_route_summary(self, origin: str, destination: str, weight_kg: float = 1.0) -> dict:
        """Route configuration with priced shipping options for a weight."""
        route = self.reference.route(origin, destination)
        if route is None:
            raise CalculationError(f"No shipping route configured for {origin.upper()}->{destination.upper()}")

        tiers = self.reference.route_weight_tiers(origin, destination)
        options, traces = shipping_options(
            route, weight_kg, 0.0, tiers,
            self.reference.route_delivery_options(origin, destination),
        )
        rate, source = self.currency.exchange_rate(origin, destination)
        origin_decimals = decimal_places(self.currency.currency_for(origin))
        return {
            "origin_country": route['origin_country'],
            "destination_country": route['destination_country'],
            "exchange_rate": rate,
            "exchange_rate_source": source,
            "weight_kg": weight_kg,
            "weight_tiers": tiers,
            "customs_tiers": self.reference.route_customs_tiers(origin, destination),
            "shipping_options": [
                {
                    "option_id": o.option_id,
                    "name": o.name,
                    "cost": round_money(o.cost, origin_decimals),
                    "days_min": o.days_min,
                    "days_max": o.days_max,
                }
                for o in options
            ],
            "trace": traces,
        }

    def search_hsn(self, text: str, destination: Optional[str] = None, limit: int = 50) -> list[dict]:
        """Search HSN codes by code prefix or description."""
        return self.hsn_table.search(text, destination, limit)

    # Calculation

    def _validate(self, request: QuoteRequest):
        if not request.items:
            raise CalculationError("Quote has no items")
        for item in request.items:
            if item.quantity is None or item.quantity <= 0:
                raise CalculationError(f"Quantity must be positive for item {item.item_id}")
            if item.unit_price is None or item.unit_price < 0:
                raise CalculationError(f"Unit price must not be negative for item {item.item_id}")
        if request.delivery_zone not in ('urban', 'rural'):
            raise CalculationError(f"Invalid delivery zone '{request.delivery_zone}', must be urban or rural")

    def calculate(self, request: QuoteRequest) -> QuoteResult:
        """
        Calculate a landed-cost quote with full traceability.

        Args:
            request: QuoteRequest with route, items and strategy choices

        Returns:
            QuoteResult with breakdown, per-item taxes, trace and warnings
        """
        self._validate(request)
        origin = request.origin_country.strip().upper()
        destination = request.destination_country.strip().upper()

        origin_settings = self.reference.country(origin)
        dest_settings = self.reference.country(destination)
        if dest_settings is None:
            raise CalculationError(f"Unknown destination country: {destination}")
        route = self.reference.route(origin, destination)
        if route is None:
            raise CalculationError(f"No shipping route configured for {origin}->{destination}")
        local_rate = None
        state_rate = self.reference.state_tax_rate(destination, request.destination_state)
        if state_rate is not None:
            local_rate = (state_rate, f"state:{request.destination_state.strip().upper()}")

        origin_currency = self.currency.currency_for(origin)
        dest_currency = self.currency.currency_for(destination)
        decimals = decimal_places(origin_currency)
        exchange_rate, rate_source = self.currency.exchange_rate(origin, destination)

        def money(value: float) -> float:
            return round_money(value, decimals)

        result = QuoteResult(
            quote_id=request.quote_id,
            origin_country=origin,
            destination_country=destination,
            origin_currency=origin_currency,
            destination_currency=dest_currency,
            exchange_rate=exchange_rate,
            exchange_rate_source=rate_source,
            tax_method=request.tax_method,
            calculated_at=datetime.now().isoformat(),
            reference_hash=self.reference.reference_hash,
        )
        result.add_trace("Route", f"{origin} → {destination}", f"{origin_currency} → {dest_currency}")
        result.add_trace("Exchange Rate", f"Resolved from {rate_source}", f"{exchange_rate}")
        if rate_source == SOURCE_FALLBACK:
            result.add_warning(f"Fallback exchange rate used for {origin}->{destination}")

        # 1. Items
        divisor = to_float(route.get('volumetric_divisor'), DEFAULT_VOLUMETRIC_DIVISOR)
        work = []
        for item in request.items:
            line_subtotal = item.unit_price * item.quantity
            item_discount = 0.0
            if item.discount_percent:
                item_discount += line_subtotal * item.discount_percent / 100.0
            if item.discount_amount:
                item_discount += item.discount_amount
            item_discount = min(item_discount, line_subtotal)

            unit_weight, estimated = item_weight(item, divisor)
            work.append(_ItemWork(
                item=item,
                line_subtotal=line_subtotal,
                item_discount=item_discount,
                net_line=line_subtotal - item_discount,
                unit_weight=unit_weight,
                weight_estimated=estimated,
            ))
            if estimated:
                result.add_warning(f"Weight not provided for item {item.item_id}, using {unit_weight}kg estimate")

        items_subtotal = sum(w.line_subtotal for w in work)
        item_discounts = sum(w.item_discount for w in work)
        net_subtotal = items_subtotal - item_discounts
        total_weight = sum(w.unit_weight * w.item.quantity for w in work)
        result.add_trace("Items", f"{len(work)} lines, {item_discounts:.2f} item discounts", f"{net_subtotal:.2f}")
        result.add_trace("Weight", "Chargeable package weight", f"{total_weight:.3f}kg")

        # 2. Order discounts and purchase tax
        matched = self.discount_matcher.find_applicable(
            destination_country=destination,
            order_value=net_subtotal,
            codes=request.discount_codes,
            is_first_order=request.is_first_order,
            request_date=request.request_date,
        )
        for code in self.discount_matcher.unknown_codes(request.discount_codes):
            result.add_warning(f"Discount code {code} is not valid")

        charges = {}
        charges['items'] = self._discount_component('items', net_subtotal, matched, result)
        items_total = charges['items'].final
        items_factor = items_total / net_subtotal if net_subtotal > 0 else 1.0

        purchase_rate = request.purchase_tax_rate
        if purchase_rate is None:
            purchase_rate = to_float((origin_settings or {}).get('purchase_tax_percentage'), 0.0)
        purchase_tax = items_total * purchase_rate / 100.0
        items_cost = items_total + purchase_tax
        if purchase_tax:
            result.add_trace("Purchase Tax", f"{purchase_rate}% of {items_total:.2f}", f"{purchase_tax:.2f}")

        # 3. Shipping
        options, ship_traces = shipping_options(
            route, total_weight, items_total,
            self.reference.route_weight_tiers(origin, destination),
            self.reference.route_delivery_options(origin, destination),
        )
        for msg in ship_traces:
            result.add_trace("Shipping", msg)
        selected = select_shipping_option(options, request.delivery_option)
        if request.delivery_option and selected.option_id != request.delivery_option:
            result.add_warning(f"Delivery option {request.delivery_option} not available, using {selected.option_id}")
        result.add_trace("Shipping Option", selected.name, f"{selected.cost:.2f}")
        charges['shipping'] = self._discount_component('shipping', selected.cost, matched, result)
        shipping = charges['shipping'].final

        # 4. Insurance
        insurance = self._insurance(route, items_cost, request.insurance_opted_in, result)

        # 5. Customs per item
        route_tier = match_route_tier(
            self.reference.route_customs_tiers(origin, destination), items_total, total_weight
        )
        if route_tier:
            result.applied_route_tier = route_tier.get('rule_name')
            result.add_trace("Route Tier", f"Matched on {items_total:.2f} / {total_weight:.3f}kg", result.applied_route_tier)

        purchase_factor = 1 + purchase_rate / 100.0
        for w in work:
            self._value_item(
                w, request, route, route_tier, dest_settings, items_factor, purchase_factor, decimals, local_rate
            )

        self._allocate_freight(work, shipping + insurance)

        methods = set()
        for w in work:
            b = w.breakdown
            w.customs = (w.dutiable + w.freight) * b.customs_rate / 100.0
            methods.add(b.tax_method)

        total_customs = sum(w.customs for w in work)
        total_cif = sum(w.dutiable + w.freight for w in work)
        charges['customs'] = self._discount_component('customs', total_customs, matched, result)
        customs_factor = charges['customs'].final / total_customs if total_customs > 0 else 1.0
        result.customs_method = methods.pop() if len(methods) == 1 else 'per_item'
        result.effective_customs_rate = round_money(total_customs / total_cif * 100, 4) if total_cif > 0 else 0.0
        result.add_trace("Customs", f"{result.customs_method}, CIF {total_cif:.2f}", f"{total_customs:.2f}")

        # 6. Handling and domestic delivery
        handling = self._handling(route, items_cost, result)
        charges['handling'] = self._discount_component('handling', handling, matched, result)

        delivery = self._domestic_delivery(dest_settings, request.delivery_zone, exchange_rate, result)
        charges['delivery'] = self._discount_component('delivery', delivery, matched, result)

        # 7. Local tax
        fee_vat_rate, fee_vat_source = default_vat_rate(route, route_tier, dest_settings)
        if local_rate:
            fee_vat_rate, fee_vat_source = local_rate
        for w in work:
            w.vat = (w.dutiable + w.freight + w.customs * customs_factor) * w.breakdown.vat_rate / 100.0
        fees_vat = (charges['handling'].final + charges['delivery'].final) * fee_vat_rate / 100.0
        local_tax = sum(w.vat for w in work) + fees_vat
        tax_label = dest_settings.get('tax_label') or 'VAT'
        result.add_trace("Local Tax", f"{tax_label} on items + {fee_vat_rate}% on fees ({fee_vat_source})", f"{local_tax:.2f}")
        charges['taxes'] = self._discount_component('taxes', local_tax, matched, result)

        # 8. Gateway fee and totals
        merchant_shipping = request.merchant_shipping or 0.0
        subtotal = (
            items_cost + merchant_shipping + shipping + insurance
            + charges['customs'].final + charges['handling'].final
            + charges['delivery'].final + charges['taxes'].final
        )
        gateway = self.reference.gateway(request.payment_gateway or dest_settings.get('payment_gateway'))
        gateway_fee = (
            subtotal * to_float(gateway.get('percentage'), 0.0) / 100.0
            + to_float(gateway.get('fixed'), 0.0)
        )
        result.add_trace("Gateway Fee", f"{gateway.get('gateway')} on {subtotal:.2f}", f"{gateway_fee:.2f}")
        total = subtotal + gateway_fee

        result.total = money(total)
        result.total_destination_currency = round_money(total * exchange_rate, decimal_places(dest_currency))
        result.total_weight_kg = round_money(total_weight, 3)
        result.add_trace("Total", f"{origin_currency} total", f"{result.total:.{decimals}f}")
        result.add_trace("Total", f"{dest_currency} total at {exchange_rate}", f"{result.total_destination_currency}")

        savings = item_discounts + sum(c.discount for c in charges.values())
        result.breakdown = CostBreakdown(
            items_subtotal=money(items_subtotal),
            item_discounts=money(item_discounts),
            order_discount=money(charges['items'].discount),
            items_total=money(items_total),
            purchase_tax=money(purchase_tax),
            merchant_shipping=money(merchant_shipping),
            shipping=money(selected.cost),
            shipping_discount=money(charges['shipping'].discount),
            insurance=money(insurance),
            cif_value=money(total_cif),
            customs=money(total_customs),
            customs_discount=money(charges['customs'].discount),
            handling=money(handling),
            handling_discount=money(charges['handling'].discount),
            domestic_delivery=money(delivery),
            delivery_discount=money(charges['delivery'].discount),
            local_tax=money(local_tax),
            tax_discount=money(charges['taxes'].discount),
            subtotal=money(subtotal),
            payment_gateway_fee=money(gateway_fee),
            total=money(total),
            total_savings=money(savings),
        )

        result.shipping_options = options
        for opt in options:
            opt.cost = money(opt.cost)
        result.selected_shipping = selected
        result.component_discounts = {
            component: [
                {**vars(a), 'amount': money(a.amount)} for a in charge.applied
            ]
            for component, charge in charges.items() if charge.applied
        }

        for w in work:
            b = w.breakdown
            b.allocated_freight = money(w.freight)
            b.cif_value = money(w.dutiable + w.freight)
            b.customs_amount = money(w.customs)
            b.vat_amount = money(w.vat)
            b.dutiable_value = money(w.dutiable)
            b.add_trace("CIF", f"{w.dutiable:.2f} + freight {w.freight:.2f}", f"{b.cif_value:.2f}")
            b.add_trace("Customs", f"{b.customs_rate}% of CIF", f"{b.customs_amount:.2f}")
            b.add_trace("Local Tax", f"{b.vat_rate}% of CIF + customs", f"{b.vat_amount:.2f}")
            result.items.append(b)
            # Bubble up line warnings
            for warning in b.warnings:
                result.add_warning(warning)

        high_value = to_float(dest_settings.get('high_value_threshold'))
        self.policy_engine.apply_policies(request, result, high_value_threshold=high_value)

        logger.debug(
            "Quote %s %s->%s total %s %s",
            request.quote_id, origin, destination, result.total, origin_currency,
        )
        return result

    def _discount_component(self, component: str, amount: float, matched: dict, result: QuoteResult):
        charge, traces = apply_component(
            amount, matched.get(component, []), self.settings.max_total_discount_percentage
        )
        for msg in traces:
            result.add_trace("Discount", f"{component}: {msg}")
        return charge

    def _insurance(self, route: dict, items_cost: float, opted_in: bool, result: QuoteResult) -> float:
        percentage = to_float(route.get('insurance_percentage'), 0.0)
        if percentage <= 0:
            return 0.0
        optional = to_bool(route.get('insurance_optional'), default=True)
        if optional and not opted_in:
            result.add_trace("Insurance", "Optional insurance not selected", "0.00")
            return 0.0

        amount = items_cost * percentage / 100.0
        minimum = to_float(route.get('insurance_min'))
        maximum = to_float(route.get('insurance_max'))
        if minimum is not None:
            amount = max(amount, minimum)
        if maximum is not None and maximum > 0:
            amount = min(amount, maximum)
        result.add_trace("Insurance", f"{percentage}% of {items_cost:.2f}", f"{amount:.2f}")
        return amount

    def _handling(self, route: dict, items_cost: float, result: QuoteResult) -> float:
        fixed = to_float(route.get('handling_fixed'), 0.0)
        percentage = to_float(route.get('handling_percentage'), 0.0)
        amount = fixed + items_cost * percentage / 100.0
        minimum = to_float(route.get('handling_min'))
        maximum = to_float(route.get('handling_max'))
        if minimum is not None:
            amount = max(amount, minimum)
        if maximum is not None and maximum > 0:
            amount = min(amount, maximum)
        if amount:
            result.add_trace("Handling", f"{fixed:.2f} + {percentage}% of {items_cost:.2f}", f"{amount:.2f}")
        return amount

    def _domestic_delivery(self, dest_settings: dict, zone: str, exchange_rate: float, result: QuoteResult) -> float:
        local_amount = to_float(dest_settings.get(f'delivery_{zone}'), 0.0)
        if not local_amount:
            return 0.0
        amount = local_amount / exchange_rate if exchange_rate else local_amount
        result.add_trace(
            "Domestic Delivery",
            f"{zone} {local_amount} {dest_settings.get('currency')} ÷ {exchange_rate}",
            f"{amount:.2f}",
        )
        return amount

    def _value_item(
        self,
        w: _ItemWork,
        request: QuoteRequest,
        route: dict,
        route_tier: Optional[dict],
        dest_settings: dict,
        items_factor: float,
        purchase_factor: float,
        decimals: int,
        local_rate: Optional[tuple[float, str]] = None,
    ):
        """Resolve rates and the dutiable value for one item."""
        item = w.item
        rates = self.resolver.resolve(item, request, route, route_tier, dest_settings)
        if local_rate:
            rates.vat_rate, state_source = local_rate
            rates.source = f"{rates.source}+{state_source}"

        record = rates.hsn
        if record is None and item.hsn_code:
            record = self.hsn_table.lookup(item.hsn_code, request.destination_country)

        actual_unit = w.net_line / item.quantity * items_factor * purchase_factor
        minimum_unit = None
        conversion = None
        if record and record.minimum_valuation_usd:
            minimum_unit, currency, source = self.currency.convert_minimum_valuation(
                record.minimum_valuation_usd, request.origin_country
            )
            conversion = f"{record.minimum_valuation_usd} USD → {minimum_unit} {currency} ({source})"

        basis, method_used, valuation_warnings = select_valuation(
            item.valuation_method or request.valuation_method,
            actual_unit, minimum_unit, item.declared_value,
        )
        w.dutiable = basis * item.quantity

        b = ItemTaxBreakdown(
            item_id=item.item_id,
            name=item.name,
            quantity=item.quantity,
            hsn_code=item.hsn_code,
            category=item.category or (record.category if record else None),
            tax_method=rates.method,
            rate_source=rates.source,
            valuation_method=method_used,
            line_subtotal=round_money(w.line_subtotal, decimals),
            item_discount=round_money(w.item_discount, decimals),
            actual_unit_value=round_money(actual_unit, decimals),
            minimum_unit_value=minimum_unit,
            customs_rate=rates.customs_rate,
            vat_rate=rates.vat_rate,
            weight_kg=round_money(w.unit_weight * item.quantity, 3),
            weight_estimated=w.weight_estimated,
        )
        b.add_trace("Tax Method", rates.source, f"{rates.customs_rate}% / {rates.vat_rate}%")
        b.add_trace("Valuation", f"{method_used} per unit", f"{basis:.2f}")

        b.actual_price_option = self._valuation_option(actual_unit * item.quantity, rates, decimals)
        if minimum_unit is not None:
            b.minimum_valuation_option = self._valuation_option(
                minimum_unit * item.quantity, rates, decimals, conversion
            )

        for warning in rates.warnings + valuation_warnings:
            b.add_warning(warning)
        if method_used == VALUATION_MINIMUM:
            b.add_warning(
                f"Minimum valuation applied for item {item.item_id} "
                f"({minimum_unit:.2f} > {actual_unit:.2f} per unit)"
            )
        elif method_used != VALUATION_ACTUAL:
            b.add_trace("Valuation", "Declared value override", f"{basis:.2f}")
        w.breakdown = b

    @staticmethod
    def _valuation_option(basis: float, rates, decimals: int, conversion: Optional[str] = None) -> ValuationOption:
        """Duty on one valuation basis, before freight allocation."""
        customs = basis * rates.customs_rate / 100.0
        local_tax = (basis + customs) * rates.vat_rate / 100.0
        return ValuationOption(
            basis_amount=round_money(basis, decimals),
            customs_amount=round_money(customs, decimals),
            local_tax_amount=round_money(local_tax, decimals),
            total_tax=round_money(customs + local_tax, decimals),
            currency_conversion_details=conversion,
        )

    @staticmethod
    def _allocate_freight(work: list[_ItemWork], freight: float):
        """Apportion shipping and insurance to items by dutiable value."""
        total = sum(w.dutiable for w in work)
        for w in work:
            if total > 0:
                w.freight = freight * w.dutiable / total
            else:
                w.freight = freight / len(work)
