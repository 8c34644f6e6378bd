"""
Reference data loading - country settings, routes, tiers, HSN master and overrides.

Everything is read as strings with pandas and normalised once, so lookups
compare stripped, upper-cased country codes.
"""
import hashlib
from pathlib import Path
from typing import Optional

import pandas as pd

from ..config.settings import Settings
from ..utils.logging import get_logger

logger = get_logger(__name__)

ROUTE_COLUMNS = [
    'origin_country', 'destination_country', 'base_shipping_cost', 'shipping_per_kg',
    'cost_percentage', 'exchange_rate', 'customs_percentage', 'vat_percentage',
    'handling_fixed', 'handling_percentage', 'handling_min', 'handling_max',
    'insurance_percentage', 'insurance_min', 'insurance_max', 'insurance_optional',
    'volumetric_divisor', 'active',
]

CUSTOMS_TIER_COLUMNS = [
    'tier_id', 'origin_country', 'destination_country', 'rule_name', 'price_min',
    'price_max', 'weight_min', 'weight_max', 'logic_type', 'customs_percentage',
    'vat_percentage', 'priority_order', 'is_active', 'description',
]


def get_file_hash(path: Path) -> str:
    """Get SHA256 hash of a file."""
    if not path.exists():
        return ""
    with open(path, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()[:12]


def to_float(value, default: Optional[float] = None) -> Optional[float]:
    """Parse a CSV cell as float; blanks and 'nan' give the default."""
    if value is None:
        return default
    text = str(value).strip()
    if text == '' or text.lower() in ('nan', 'none', 'null'):
        return default
    try:
        return float(text)
    except ValueError:
        return default


def to_bool(value, default: bool = False) -> bool:
    """Parse a CSV cell as bool."""
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in ('', 'nan', 'none'):
        return default
    return text in ('true', '1', 'yes', 'on')


def normalize_hsn(code) -> str:
    """Keep only the digits of an HSN code ("6109.10" -> "610910")."""
    if code is None:
        return ''
    return ''.join(ch for ch in str(code) if ch.isdigit())


def load_csv(path: Path, required: bool = True) -> pd.DataFrame:
    """Read a reference CSV as stripped strings."""
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Reference file not found: {path}")
        return pd.DataFrame()
    df = pd.read_csv(path, dtype=str).fillna('')
    df.columns = [c.strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df


def _upper_codes(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    for col in columns:
        if col in df.columns:
            df[col] = df[col].str.upper()
    return df


class ReferenceData:
    """All lookup tables the engine needs, loaded from the settings paths."""

    def __init__(self, settings: Settings):
        self.settings = settings

        if not settings.hsn_master.exists():
            raise FileNotFoundError(
                f"hsn_master.csv not found at {settings.hsn_master}. "
                "Run build_hsn_master first."
            )

        self.countries = _upper_codes(load_csv(settings.country_settings), ['code', 'currency'])
        self.routes = self._load_with_workbook(settings.shipping_routes, 'Routes', ROUTE_COLUMNS)
        self.routes = _upper_codes(self.routes, ['origin_country', 'destination_country'])
        self.weight_tiers = _upper_codes(
            load_csv(settings.route_weight_tiers, required=False),
            ['origin_country', 'destination_country'],
        )
        self.customs_tiers = self._load_with_workbook(
            settings.route_customs_tiers, 'Customs Tiers', CUSTOMS_TIER_COLUMNS
        )
        self.customs_tiers = _upper_codes(
            self.customs_tiers, ['origin_country', 'destination_country', 'logic_type']
        )
        self.delivery_options = _upper_codes(
            load_csv(settings.delivery_options, required=False),
            ['origin_country', 'destination_country'],
        )
        self.gateways = load_csv(settings.payment_gateways, required=False)
        if not self.gateways.empty:
            self.gateways['gateway'] = self.gateways['gateway'].str.lower()

        self.hsn_master = _upper_codes(load_csv(settings.hsn_master), ['country_code'])
        self.hsn_master['hsn_code'] = self.hsn_master['hsn_code'].map(normalize_hsn)
        self.tax_overrides = _upper_codes(
            load_csv(settings.tax_overrides, required=False), ['destination_country']
        )
        self.state_tax_rates = _upper_codes(
            load_csv(settings.state_tax_rates, required=False), ['country_code', 'state']
        )

        self.reference_hash = self._compute_hash()
        logger.debug(
            "Loaded reference data: %d countries, %d routes, %d HSN rows",
            len(self.countries), len(self.routes), len(self.hsn_master),
        )

    def _load_with_workbook(self, csv_path: Path, sheet_name: str, columns: list[str]) -> pd.DataFrame:
        """Workbook rows first (they win on first-match lookups), then CSV rows."""
        frames = []
        workbook = self.settings.rules_workbook
        if workbook and workbook.exists():
            try:
                sheet = pd.read_excel(workbook, sheet_name=sheet_name, dtype=str).fillna('')
            except ValueError:
                # Sheet missing from the workbook
                sheet = pd.DataFrame()
            if not sheet.empty:
                sheet.columns = [str(c).strip() for c in sheet.columns]
                for col in sheet.columns:
                    sheet[col] = sheet[col].astype(str).str.strip()
                frames.append(sheet)
                logger.info("Loaded %d rows from workbook sheet '%s'", len(sheet), sheet_name)

        csv_df = load_csv(csv_path, required=not frames)
        if not csv_df.empty:
            frames.append(csv_df)

        if not frames:
            return pd.DataFrame(columns=columns)
        df = pd.concat(frames, ignore_index=True).fillna('')
        for col in columns:
            if col not in df.columns:
                df[col] = ''
        return df

    def _compute_hash(self) -> str:
        s = self.settings
        parts = [
            get_file_hash(p) for p in (
                s.country_settings, s.shipping_routes, s.route_weight_tiers,
                s.route_customs_tiers, s.delivery_options, s.hsn_master, s.tax_overrides,
                s.state_tax_rates,
            )
        ]
        return hashlib.sha256("|".join(parts).encode()).hexdigest()[:12]

    # Lookups

    def country(self, code: str) -> Optional[dict]:
        """Country settings row as a dict, or None."""
        code = str(code).strip().upper()
        match = self.countries[self.countries['code'] == code]
        if match.empty:
            return None
        return match.iloc[0].to_dict()

    def route(self, origin: str, destination: str) -> Optional[dict]:
        """Active shipping route as a dict, or None."""
        origin = str(origin).strip().upper()
        destination = str(destination).strip().upper()
        match = self.routes[
            (self.routes['origin_country'] == origin) &
            (self.routes['destination_country'] == destination)
        ]
        if not match.empty and 'active' in match.columns:
            match = match[match['active'].map(lambda v: to_bool(v, default=True))]
        if match.empty:
            return None
        return match.iloc[0].to_dict()

    def route_weight_tiers(self, origin: str, destination: str) -> list[dict]:
        """Weight tiers for a route, ordered by lower bound."""
        if self.weight_tiers.empty:
            return []
        match = self.weight_tiers[
            (self.weight_tiers['origin_country'] == origin.upper()) &
            (self.weight_tiers['destination_country'] == destination.upper())
        ]
        tiers = [
            {
                'min': to_float(row['weight_min'], 0.0),
                'max': to_float(row['weight_max']),
                'cost_per_kg': to_float(row['cost_per_kg'], 0.0),
            }
            for _, row in match.iterrows()
        ]
        tiers.sort(key=lambda t: t['min'])
        return tiers

    def route_customs_tiers(self, origin: str, destination: str) -> list[dict]:
        """Customs tiers for a route as dicts."""
        if self.customs_tiers.empty:
            return []
        match = self.customs_tiers[
            (self.customs_tiers['origin_country'] == origin.upper()) &
            (self.customs_tiers['destination_country'] == destination.upper())
        ]
        return [row.to_dict() for _, row in match.iterrows()]

    def route_delivery_options(self, origin: str, destination: str) -> list[dict]:
        """Active delivery options configured for a route."""
        if self.delivery_options.empty:
            return []
        match = self.delivery_options[
            (self.delivery_options['origin_country'] == origin.upper()) &
            (self.delivery_options['destination_country'] == destination.upper())
        ]
        return [
            row.to_dict() for _, row in match.iterrows()
            if to_bool(row.get('active'), default=True)
        ]

    def gateway(self, name: Optional[str]) -> dict:
        """Payment gateway fee row; unknown names use the default gateway."""
        fallback = {'gateway': 'none', 'percentage': '0', 'fixed': '0'}
        if self.gateways.empty:
            return fallback
        if name:
            match = self.gateways[self.gateways['gateway'] == str(name).strip().lower()]
            if not match.empty:
                return match.iloc[0].to_dict()
        if 'is_default' in self.gateways.columns:
            default = self.gateways[self.gateways['is_default'].map(to_bool)]
            if not default.empty:
                return default.iloc[0].to_dict()
        return self.gateways.iloc[0].to_dict()

    def state_tax_rate(self, country: str, state: Optional[str]) -> Optional[float]:
        """Sales tax rate for a state, falling back to the country's DEFAULT row."""
        if not state or self.state_tax_rates.empty:
            return None
        rows = self.state_tax_rates[self.state_tax_rates['country_code'] == str(country).strip().upper()]
        if rows.empty:
            return None
        for key in (str(state).strip().upper(), 'DEFAULT'):
            match = rows[rows['state'] == key]
            if not match.empty:
                return to_float(match.iloc[0]['tax_rate'], 0.0)
        return None
