"""
Centralized settings and path configuration for the landed cost engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


DATA_DIR_ENV = 'LANDED_COST_DATA_DIR'


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def get_default_data_dir() -> Path:
    """Reference data shipped with the package."""
    return Path(__file__).resolve().parent.parent / 'data' / 'reference'


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path
    data_dir: Path

    # Country and route reference tables
    country_settings: Path
    shipping_routes: Path
    route_weight_tiers: Path
    route_customs_tiers: Path
    delivery_options: Path
    payment_gateways: Path

    # HSN inputs and the built master table
    hsn_codes: Path
    hsn_country_rates: Path
    hsn_master: Path
    tax_overrides: Path
    state_tax_rates: Path

    # Discount rules
    discounts_csv: Path
    compiled_discounts: Path

    # Output files
    build_report: Path

    # Optional workbook with admin-maintained sheets
    rules_workbook: Optional[Path] = None

    log_level: str = 'INFO'
    default_tax_method: str = 'auto'
    default_valuation_method: str = 'auto'

    # Cap on the sum of percentage discounts applied to one component
    max_total_discount_percentage: float = 50.0

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> 'Settings':
        """Load settings from the data directory."""
        root = get_project_root()
        env_dir = os.environ.get(DATA_DIR_ENV)
        data = Path(data_dir or env_dir or get_default_data_dir())

        return cls(
            project_root=root,
            data_dir=data,
            country_settings=data / 'country_settings.csv',
            shipping_routes=data / 'shipping_routes.csv',
            route_weight_tiers=data / 'route_weight_tiers.csv',
            route_customs_tiers=data / 'route_customs_tiers.csv',
            delivery_options=data / 'delivery_options.csv',
            payment_gateways=data / 'payment_gateways.csv',
            hsn_codes=data / 'hsn_codes.csv',
            hsn_country_rates=data / 'hsn_country_rates.csv',
            hsn_master=data / 'hsn_master.csv',
            tax_overrides=data / 'tax_overrides.csv',
            state_tax_rates=data / 'state_tax_rates.csv',
            discounts_csv=data / 'discounts.csv',
            compiled_discounts=data / 'compiled_discounts.json',
            build_report=data / 'build_report.json',
            rules_workbook=data / 'landed_cost_rules.xlsx',
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            max_total_discount_percentage=float(os.environ.get('MAX_TOTAL_DISCOUNT_PERCENTAGE', '50')),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
