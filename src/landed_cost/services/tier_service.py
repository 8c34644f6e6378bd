"""
Tier Service - CRUD operations for route customs tiers.
Handles reading/writing route_customs_tiers.csv.
"""
import csv
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

from ..engine.customs import match_route_tier
from ..engine.reference_data import CUSTOMS_TIER_COLUMNS, to_float


@dataclass
class CustomsTier:
    """A customs/tax rate tier for one origin → destination route."""
    tier_id: str
    origin_country: str
    destination_country: str
    rule_name: str
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    weight_min: Optional[float] = None
    weight_max: Optional[float] = None
    logic_type: str = "AND"
    customs_percentage: float = 0.0
    vat_percentage: float = 0.0
    priority_order: int = 1
    is_active: bool = True
    description: Optional[str] = None

    def to_csv_row(self) -> dict:
        """Convert to CSV row format."""
        def num(value):
            return '' if value is None else f"{value:g}"

        return {
            'tier_id': self.tier_id,
            'origin_country': self.origin_country,
            'destination_country': self.destination_country,
            'rule_name': self.rule_name,
            'price_min': num(self.price_min),
            'price_max': num(self.price_max),
            'weight_min': num(self.weight_min),
            'weight_max': num(self.weight_max),
            'logic_type': self.logic_type,
            'customs_percentage': num(self.customs_percentage),
            'vat_percentage': num(self.vat_percentage),
            'priority_order': str(self.priority_order),
            'is_active': 'true' if self.is_active else 'false',
            'description': self.description or '',
        }

    @classmethod
    def from_csv_row(cls, row: dict) -> 'CustomsTier':
        """Create CustomsTier from CSV row."""
        return cls(
            tier_id=row.get('tier_id', ''),
            origin_country=row.get('origin_country', '').upper(),
            destination_country=row.get('destination_country', '').upper(),
            rule_name=row.get('rule_name', ''),
            price_min=to_float(row.get('price_min')),
            price_max=to_float(row.get('price_max')),
            weight_min=to_float(row.get('weight_min')),
            weight_max=to_float(row.get('weight_max')),
            logic_type=(row.get('logic_type') or 'AND').upper(),
            customs_percentage=to_float(row.get('customs_percentage'), 0.0),
            vat_percentage=to_float(row.get('vat_percentage'), 0.0),
            priority_order=int(row.get('priority_order') or 1),
            is_active=(row.get('is_active') or 'true').lower() == 'true',
            description=row.get('description') or None,
        )


@dataclass
class ValidationResult:
    """Result of tier validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class TierService:
    """Service for managing route customs tiers."""

    CSV_COLUMNS = CUSTOMS_TIER_COLUMNS

    def __init__(self, tiers_csv_path: Path):
        self.tiers_csv_path = tiers_csv_path

    def list_tiers(
        self,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        include_inactive: bool = True,
    ) -> list[CustomsTier]:
        """List tiers from CSV, optionally for one route."""
        tiers = []
        if not self.tiers_csv_path.exists():
            return tiers

        with open(self.tiers_csv_path, 'r', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            for row in reader:
                if not row.get('tier_id'):
                    continue
                tier = CustomsTier.from_csv_row(row)
                if origin and tier.origin_country != origin.upper():
                    continue
                if destination and tier.destination_country != destination.upper():
                    continue
                if include_inactive or tier.is_active:
                    tiers.append(tier)

        return tiers

    def get_tier(self, tier_id: str) -> Optional[CustomsTier]:
        """Get a single tier by ID."""
        for tier in self.list_tiers():
            if tier.tier_id == tier_id:
                return tier
        return None

    def create_tier(self, tier: CustomsTier) -> CustomsTier:
        """Create a new tier."""
        tier.origin_country = tier.origin_country.upper()
        tier.destination_country = tier.destination_country.upper()
        tier.logic_type = tier.logic_type.upper()

        if not tier.tier_id:
            tier.tier_id = self._generate_tier_id(tier)

        if self.get_tier(tier.tier_id):
            raise ValueError(f"Tier with ID '{tier.tier_id}' already exists")

        tiers = self.list_tiers()
        tiers.append(tier)
        self._write_tiers(tiers)
        return tier

    def update_tier(self, tier_id: str, updates: dict) -> CustomsTier:
        """Update an existing tier."""
        tiers = self.list_tiers()

        for i, tier in enumerate(tiers):
            if tier.tier_id == tier_id:
                for key, value in updates.items():
                    if key != 'tier_id' and hasattr(tier, key):
                        setattr(tier, key, value)
                tier.logic_type = tier.logic_type.upper()
                break
        else:
            raise ValueError(f"Tier with ID '{tier_id}' not found")

        self._write_tiers(tiers)
        return tiers[i]

    def delete_tier(self, tier_id: str) -> bool:
        """Delete a tier."""
        tiers = self.list_tiers()
        original_count = len(tiers)
        tiers = [t for t in tiers if t.tier_id != tier_id]

        if len(tiers) == original_count:
            raise ValueError(f"Tier with ID '{tier_id}' not found")

        self._write_tiers(tiers)
        return True

    def validate_tier(self, tier: CustomsTier) -> ValidationResult:
        """Validate a tier before saving."""
        result = ValidationResult(valid=True)

        if not tier.rule_name:
            result.errors.append("Rule name is required")
        if not tier.origin_country or not tier.destination_country:
            result.errors.append("Origin and destination countries are required")
        if tier.logic_type.upper() not in ('AND', 'OR'):
            result.errors.append("Logic type must be AND or OR")

        for label, value in (('Customs', tier.customs_percentage), ('VAT', tier.vat_percentage)):
            if value is None or value < 0 or value > 100:
                result.errors.append(f"{label} percentage must be between 0 and 100")

        for label, low, high in (
            ('Price', tier.price_min, tier.price_max),
            ('Weight', tier.weight_min, tier.weight_max),
        ):
            if (low is not None and low < 0) or (high is not None and high < 0):
                result.errors.append(f"{label} bounds must not be negative")
            if low is not None and high is not None and high > 0 and low > high:
                result.errors.append(f"{label} minimum must not exceed maximum")

        if tier.priority_order is None or tier.priority_order < 1:
            result.errors.append("Priority order must be 1 or higher")

        if not any(v for v in (tier.price_min, tier.price_max, tier.weight_min, tier.weight_max)):
            result.warnings.append("Tier has no price or weight bounds and will match every quote")

        result.valid = not result.errors
        if result.valid:
            result.warnings.extend(self._check_conflicts(tier))

        return result

    def _check_conflicts(self, tier: CustomsTier) -> list[str]:
        """Check for tiers on the same route that overlap or share a priority."""
        warnings = []

        for existing in self.list_tiers(tier.origin_country, tier.destination_country):
            if existing.tier_id == tier.tier_id or not existing.is_active:
                continue

            if existing.priority_order == tier.priority_order:
                warnings.append(
                    f"Tier '{existing.tier_id}' has the same priority ({tier.priority_order})"
                )

            if (_ranges_overlap(tier.price_min, tier.price_max, existing.price_min, existing.price_max) and
                    _ranges_overlap(tier.weight_min, tier.weight_max, existing.weight_min, existing.weight_max)):
                warnings.append(
                    f"Overlaps with tier '{existing.tier_id}' "
                    f"(priority {existing.priority_order} vs {tier.priority_order})"
                )

        return warnings

    def match(self, origin: str, destination: str, price: float, weight: float) -> Optional[CustomsTier]:
        """Tier that would apply to a quote on this route."""
        rows = [t.to_csv_row() for t in self.list_tiers(origin, destination)]
        matched = match_route_tier(rows, price, weight)
        return CustomsTier.from_csv_row(matched) if matched else None

    def _generate_tier_id(self, tier: CustomsTier) -> str:
        """Generate a unique tier ID."""
        base = f"{tier.origin_country}-{tier.destination_country}"
        existing_ids = {t.tier_id for t in self.list_tiers()}
        counter = 1
        candidate = f"{base}-{counter}"
        while candidate in existing_ids:
            counter += 1
            candidate = f"{base}-{counter}"
        return candidate

    def _write_tiers(self, tiers: list[CustomsTier]):
        """Write tiers back to CSV."""
        self.tiers_csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.tiers_csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.CSV_COLUMNS)
            writer.writeheader()
            for tier in tiers:
                writer.writerow(tier.to_csv_row())

    def get_stats(self) -> dict:
        """Get statistics about tiers."""
        tiers = self.list_tiers()
        active = [t for t in tiers if t.is_active]
        by_route = {}
        for t in tiers:
            route = f"{t.origin_country}-{t.destination_country}"
            by_route[route] = by_route.get(route, 0) + 1

        return {
            'total': len(tiers),
            'active': len(active),
            'inactive': len(tiers) - len(active),
            'by_route': by_route,
        }


def _ranges_overlap(a_min, a_max, b_min, b_max) -> bool:
    """Closed ranges with open (None/0) upper bounds."""
    a_lo = a_min or 0.0
    b_lo = b_min or 0.0
    a_hi = a_max if a_max else float('inf')
    b_hi = b_max if b_max else float('inf')
    return a_lo <= b_hi and b_lo <= a_hi
