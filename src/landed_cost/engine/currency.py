"""
Currency handling - exchange rate resolution, currency decimals and rounding.

All engine arithmetic stays in the origin currency; only reported figures are
rounded, and only the final total is converted to the destination currency.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .reference_data import ReferenceData, to_float
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Used only when neither the route nor both country settings carry a rate
FALLBACK_RATES = {
    'DE_NP': 134.5,
    'NP_DE': 0.0074,
    'IN_NP': 1.6,
    'NP_IN': 0.625,
    'US_NP': 134.5,
    'NP_US': 0.0074,
    'IN_US': 0.012,
    'US_IN': 83.33,
}

ZERO_DECIMAL_CURRENCIES = ('JPY', 'KRW', 'VND', 'IDR')

FALLBACK_COUNTRY_CURRENCIES = {
    'US': 'USD', 'IN': 'INR', 'NP': 'NPR', 'CA': 'CAD', 'AU': 'AUD', 'GB': 'GBP',
    'JP': 'JPY', 'CN': 'CNY', 'SG': 'SGD', 'AE': 'AED', 'SA': 'SAR', 'ID': 'IDR',
    'MY': 'MYR', 'PH': 'PHP', 'TH': 'THB', 'VN': 'VND', 'KR': 'KRW',
}

SOURCE_SAME_COUNTRY = 'same_country'
SOURCE_ROUTE = 'shipping_route'
SOURCE_COUNTRY_SETTINGS = 'country_settings'
SOURCE_FALLBACK = 'fallback'


def round_money(value: float, decimals: int = 2) -> float:
    """Round half-up to the given number of decimals."""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def decimal_places(currency: str) -> int:
    """Number of minor-unit decimals for a currency."""
    return 0 if str(currency).upper() in ZERO_DECIMAL_CURRENCIES else 2


class CurrencyConverter:
    """Resolves exchange rates from routes, country settings and a fallback table."""

    def __init__(self, reference: ReferenceData):
        self.reference = reference

    def currency_for(self, country: str) -> str:
        """Currency code for a country."""
        settings = self.reference.country(country)
        if settings and settings.get('currency'):
            return settings['currency']
        return FALLBACK_COUNTRY_CURRENCIES.get(str(country).upper(), 'USD')

    def rate_from_usd(self, country: str) -> Optional[float]:
        settings = self.reference.country(country)
        if not settings:
            return None
        rate = to_float(settings.get('rate_from_usd'))
        if rate is None or rate <= 0:
            return None
        return rate

    def exchange_rate(self, origin: str, destination: str) -> tuple[float, str]:
        """
        Rate multiplying an origin-currency amount into destination currency.

        Resolution order:
        1. Same country → 1.0
        2. Shipping route exchange_rate
        3. Ratio of the two countries' rate_from_usd
        4. Fallback table, else 1.0

        Returns (rate, source).
        """
        origin = str(origin).strip().upper()
        destination = str(destination).strip().upper()

        if origin == destination:
            return 1.0, SOURCE_SAME_COUNTRY

        route = self.reference.route(origin, destination)
        if route:
            route_rate = to_float(route.get('exchange_rate'))
            if route_rate and route_rate > 0:
                return route_rate, SOURCE_ROUTE

        origin_rate = self.rate_from_usd(origin)
        dest_rate = self.rate_from_usd(destination)
        if origin_rate and dest_rate:
            return dest_rate / origin_rate, SOURCE_COUNTRY_SETTINGS

        rate = FALLBACK_RATES.get(f"{origin}_{destination}", 1.0)
        logger.warning("Using fallback exchange rate %s→%s = %s", origin, destination, rate)
        return rate, SOURCE_FALLBACK

    def convert_minimum_valuation(self, usd_amount: float, origin_country: str) -> tuple[float, str, str]:
        """
        Convert a USD minimum valuation into origin currency.

        Returns (amount, currency, source).
        """
        currency = self.currency_for(origin_country)
        if currency == 'USD':
            return round_money(usd_amount, 2), currency, SOURCE_SAME_COUNTRY

        rate = self.rate_from_usd(origin_country)
        source = SOURCE_COUNTRY_SETTINGS
        if rate is None:
            rate, source = self.exchange_rate('US', origin_country)

        amount = round_money(usd_amount * rate, decimal_places(currency))
        return amount, currency, source
