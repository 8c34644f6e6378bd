"""
Customs and local tax rate resolution.

Covers HSN lookups with admin overrides, route customs tiers, per-item tax
method resolution and valuation method selection.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import pandas as pd

from .models import (
    CalculationError, QuoteItem, QuoteRequest,
    TAX_METHODS, TAX_METHOD_AUTO, TAX_METHOD_HSN, TAX_METHOD_ROUTE,
    TAX_METHOD_COUNTRY, TAX_METHOD_MANUAL,
    VALUATION_METHODS, VALUATION_AUTO, VALUATION_ACTUAL, VALUATION_MINIMUM,
    VALUATION_HIGHER, VALUATION_ADMIN,
)
from .reference_data import ReferenceData, normalize_hsn, to_bool, to_float
from ..utils.logging import get_logger

logger = get_logger(__name__)

MIN_HSN_PREFIX = 4

OVERRIDE_SPECIFICITY = {'hsn_code': 3, 'category': 2, 'global': 1}


@dataclass
class HSNRecord:
    """HSN master data for one code and destination country."""
    hsn_code: str
    description: str
    category: str
    customs_rate: float
    vat_rate: Optional[float]
    minimum_valuation_usd: Optional[float] = None
    requires_currency_conversion: bool = False


@dataclass
class TaxRates:
    """Resolved customs and VAT rates for an item."""
    method: str
    customs_rate: float
    vat_rate: float
    source: str
    hsn: Optional[HSNRecord] = None
    overrides_applied: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class HSNTable:
    """Lookup over the built HSN master table and admin tax overrides."""

    def __init__(self, hsn_master: pd.DataFrame, overrides: Optional[pd.DataFrame] = None):
        self.master = hsn_master
        if 'is_active' in self.master.columns:
            self.master = self.master[self.master['is_active'].map(lambda v: to_bool(v, default=True))]
        self.overrides = overrides if overrides is not None else pd.DataFrame()
        self._codes = set(self.master['hsn_code']) if not self.master.empty else set()

    def lookup(self, code: Optional[str], destination: str) -> Optional[HSNRecord]:
        """
        Find rates for a code, trying the longest known prefix first
        (8 → 6 → 4 digits).
        """
        digits = normalize_hsn(code)
        if len(digits) < MIN_HSN_PREFIX:
            return None
        destination = destination.upper()

        for length in range(len(digits), MIN_HSN_PREFIX - 1, -1):
            candidate = digits[:length]
            if candidate not in self._codes:
                continue
            match = self.master[
                (self.master['hsn_code'] == candidate) &
                (self.master['country_code'] == destination)
            ]
            if match.empty:
                continue
            row = match.iloc[0]
            return HSNRecord(
                hsn_code=candidate,
                description=row.get('description', ''),
                category=row.get('category', ''),
                customs_rate=to_float(row.get('customs_rate'), 0.0),
                vat_rate=to_float(row.get('vat_rate')),
                minimum_valuation_usd=to_float(row.get('minimum_valuation_usd')),
                requires_currency_conversion=to_bool(row.get('requires_currency_conversion')),
            )
        return None

    def search(self, text: str, destination: Optional[str] = None, limit: int = 50) -> list[dict]:
        """Search codes and descriptions (case-insensitive)."""
        df = self.master
        if destination:
            df = df[df['country_code'] == destination.upper()]
        if text:
            digits = normalize_hsn(text)
            mask = df['description'].str.contains(text, case=False, na=False, regex=False)
            if digits:
                mask = mask | df['hsn_code'].str.startswith(digits)
            df = df[mask]
        return df.head(limit).to_dict(orient='records')

    def applicable_overrides(
        self,
        record: HSNRecord,
        destination: str,
        request_date: Optional[str] = None,
    ) -> dict[str, tuple[float, str]]:
        """
        Active overrides for an HSN record, keyed by tax type.

        The most specific scope wins: hsn_code > category > global.
        Returns {tax_type: (rate, override_id)}.
        """
        if self.overrides.empty:
            return {}

        today = request_date or datetime.now().strftime('%Y-%m-%d')
        best: dict[str, tuple[int, float, str]] = {}

        for _, row in self.overrides.iterrows():
            if not to_bool(row.get('is_active'), default=True):
                continue
            country = row.get('destination_country', '')
            if country and country != destination.upper():
                continue
            if row.get('start_date') and today < row['start_date']:
                continue
            if row.get('end_date') and today > row['end_date']:
                continue

            scope = row.get('scope', '')
            identifier = row.get('scope_identifier', '')
            if scope == 'hsn_code':
                applies = normalize_hsn(identifier) == record.hsn_code
            elif scope == 'category':
                applies = identifier.lower() == (record.category or '').lower()
            elif scope == 'global':
                applies = True
            else:
                applies = False
            if not applies:
                continue

            rate = to_float(row.get('override_rate'))
            if rate is None:
                continue
            tax_type = row.get('tax_type', 'customs') or 'customs'
            specificity = OVERRIDE_SPECIFICITY[scope]
            current = best.get(tax_type)
            if current is None or specificity > current[0]:
                best[tax_type] = (specificity, rate, row.get('override_id', scope))

        return {tax_type: (rate, oid) for tax_type, (_, rate, oid) in best.items()}


def match_route_tier(tiers: list[dict], price: float, weight: float) -> Optional[dict]:
    """
    First active tier (by priority_order) whose price and weight bounds match.

    Empty or zero bounds are open. AND needs both bounds to match, OR needs either.
    """
    active = [t for t in tiers if to_bool(t.get('is_active'), default=True)]
    active.sort(key=lambda t: to_float(t.get('priority_order'), 1.0))

    for tier in active:
        price_min = to_float(tier.get('price_min'))
        price_max = to_float(tier.get('price_max'))
        weight_min = to_float(tier.get('weight_min'))
        weight_max = to_float(tier.get('weight_max'))

        price_match = (not price_min or price >= price_min) and (not price_max or price <= price_max)
        weight_match = (not weight_min or weight >= weight_min) and (not weight_max or weight <= weight_max)

        if str(tier.get('logic_type', 'AND')).upper() == 'AND':
            applies = price_match and weight_match
        else:
            applies = price_match or weight_match
        if applies:
            return tier
    return None


def default_vat_rate(route: Optional[dict], route_tier: Optional[dict], destination: Optional[dict]) -> tuple[float, str]:
    """Destination VAT for non-item charges: route tier → route → country."""
    if route_tier:
        rate = to_float(route_tier.get('vat_percentage'))
        if rate is not None:
            return rate, f"route_tier:{route_tier.get('rule_name')}"
    if route:
        rate = to_float(route.get('vat_percentage'))
        if rate is not None:
            return rate, 'route'
    if destination:
        return to_float(destination.get('vat_percentage'), 0.0), 'country_settings'
    return 0.0, 'none'


class TaxRateResolver:
    """Resolves the tax method and rates for each quote item."""

    def __init__(self, hsn_table: HSNTable):
        self.hsn_table = hsn_table

    def resolve(
        self,
        item: QuoteItem,
        request: QuoteRequest,
        route: Optional[dict],
        route_tier: Optional[dict],
        destination: dict,
    ) -> TaxRates:
        method = item.tax_method or request.tax_method or TAX_METHOD_AUTO
        if method not in TAX_METHODS:
            raise CalculationError(
                f"Invalid tax method '{method}' for item {item.item_id}, must be one of: {TAX_METHODS}"
            )

        warnings = []
        record = None
        if method in (TAX_METHOD_AUTO, TAX_METHOD_HSN) and item.hsn_code:
            record = self.hsn_table.lookup(item.hsn_code, request.destination_country)

        if method == TAX_METHOD_AUTO:
            method = TAX_METHOD_HSN if record else TAX_METHOD_ROUTE

        if method == TAX_METHOD_HSN:
            if record is None:
                if item.hsn_code:
                    warnings.append(
                        f"HSN code {item.hsn_code} not found for {request.destination_country}, "
                        "using route rates"
                    )
                else:
                    warnings.append(f"HSN code not specified for item {item.item_id}, using route rates")
                rates = self._route_rates(route, route_tier, destination)
                rates.warnings = warnings + rates.warnings
                return rates
            return self._hsn_rates(record, request, destination)

        if method == TAX_METHOD_ROUTE:
            return self._route_rates(route, route_tier, destination)

        if method == TAX_METHOD_COUNTRY:
            return self._country_rates(destination)

        return self._manual_rates(item, request, destination)

    def _hsn_rates(self, record: HSNRecord, request: QuoteRequest, destination: dict) -> TaxRates:
        vat = record.vat_rate
        if vat is None:
            vat = to_float(destination.get('vat_percentage'), 0.0)
        rates = TaxRates(
            method=TAX_METHOD_HSN,
            customs_rate=record.customs_rate,
            vat_rate=vat,
            source=f"hsn:{record.hsn_code}",
            hsn=record,
        )

        overrides = self.hsn_table.applicable_overrides(
            record, request.destination_country, request.request_date
        )
        if 'customs' in overrides:
            rates.customs_rate, override_id = overrides['customs']
            rates.overrides_applied.append(override_id)
        if 'vat' in overrides:
            rates.vat_rate, override_id = overrides['vat']
            rates.overrides_applied.append(override_id)
        if rates.overrides_applied:
            rates.source += "+override:" + ",".join(rates.overrides_applied)

        if rates.customs_rate == 0 and rates.vat_rate == 0:
            rates.warnings.append("No taxes calculated - item may be tax-exempt")
        return rates

    def _route_rates(self, route: Optional[dict], route_tier: Optional[dict], destination: dict) -> TaxRates:
        if route_tier:
            return TaxRates(
                method=TAX_METHOD_ROUTE,
                customs_rate=to_float(route_tier.get('customs_percentage'), 0.0),
                vat_rate=to_float(route_tier.get('vat_percentage'), 0.0),
                source=f"route_tier:{route_tier.get('rule_name')}",
            )
        if route:
            customs = to_float(route.get('customs_percentage'))
            if customs is not None:
                vat = to_float(route.get('vat_percentage'))
                if vat is None:
                    vat = to_float(destination.get('vat_percentage'), 0.0)
                return TaxRates(
                    method=TAX_METHOD_ROUTE,
                    customs_rate=customs,
                    vat_rate=vat,
                    source='route',
                )
        rates = self._country_rates(destination)
        rates.method = TAX_METHOD_ROUTE
        return rates

    def _country_rates(self, destination: dict) -> TaxRates:
        return TaxRates(
            method=TAX_METHOD_COUNTRY,
            customs_rate=to_float(destination.get('customs_percentage'), 0.0),
            vat_rate=to_float(destination.get('vat_percentage'), 0.0),
            source='country_settings',
        )

    def _manual_rates(self, item: QuoteItem, request: QuoteRequest, destination: dict) -> TaxRates:
        warnings = []
        customs = item.manual_customs_rate
        if customs is None:
            customs = request.manual_customs_rate
        if customs is None:
            customs = 0.0
            warnings.append(f"Manual tax method without a customs rate for item {item.item_id}")

        vat = item.manual_vat_rate
        if vat is None:
            vat = request.manual_vat_rate
        if vat is None:
            vat = to_float(destination.get('vat_percentage'), 0.0)

        return TaxRates(
            method=TAX_METHOD_MANUAL,
            customs_rate=customs,
            vat_rate=vat,
            source='manual',
            warnings=warnings,
        )


def select_valuation(
    requested: Optional[str],
    actual_unit: float,
    minimum_unit: Optional[float],
    declared_value: Optional[float] = None,
) -> tuple[float, str, list[str]]:
    """
    Per-unit dutiable basis.

    Returns (basis, method_used, warnings) where method_used is the basis that
    was actually taken: actual_price, minimum_valuation or admin_override.
    """
    method = requested or VALUATION_AUTO
    if method not in VALUATION_METHODS:
        raise CalculationError(
            f"Invalid valuation method '{method}', must be one of: {VALUATION_METHODS}"
        )

    if declared_value is not None:
        return declared_value, VALUATION_ADMIN, []

    if method == VALUATION_ACTUAL:
        return actual_unit, VALUATION_ACTUAL, []

    if minimum_unit is None:
        warnings = []
        if method == VALUATION_MINIMUM:
            warnings.append("No minimum valuation configured, using actual price")
        return actual_unit, VALUATION_ACTUAL, warnings

    if method == VALUATION_MINIMUM:
        return minimum_unit, VALUATION_MINIMUM, []

    # auto / higher_of_both: ties keep the actual price
    if actual_unit >= minimum_unit:
        return actual_unit, VALUATION_ACTUAL, []
    return minimum_unit, VALUATION_MINIMUM, []
