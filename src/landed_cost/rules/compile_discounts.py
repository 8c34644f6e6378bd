"""
Discount Compiler - Validates and compiles discounts from CSV to JSON.

Reads discounts.csv, validates each row, and outputs compiled_discounts.json.
"""
import csv
import json
from pathlib import Path
from typing import Optional
from datetime import datetime
from dataclasses import dataclass, field, asdict

from ..engine.models import COMPONENTS
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DiscountConditions:
    """When a discount applies."""
    min_order: Optional[float] = None
    countries: list[str] = field(default_factory=list)
    first_order_only: bool = False
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass
class Discount:
    """A compiled discount."""
    discount_id: str
    code: Optional[str]
    name: str
    active: bool
    priority: int
    component: str
    discount_type: str
    value: float
    stackable: bool
    conditions: DiscountConditions
    max_discount: Optional[float] = None
    max_discount_percentage: Optional[float] = None
    notes: str = ""


VALID_DISCOUNT_TYPES = {'percentage', 'fixed', 'free'}


def parse_bool(value: str) -> bool:
    """Parse a boolean from CSV string."""
    return (value or '').strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_float(value: str) -> Optional[float]:
    """Parse optional float."""
    if not value or value.strip() == '':
        return None
    return float(value)


def parse_optional_str(value: str) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if not value or value.strip() == '':
        return None
    return value.strip()


def parse_countries(value: str) -> list[str]:
    """Split "IN;NP" or "IN, NP" into upper-cased codes."""
    if not value:
        return []
    parts = value.replace(',', ';').split(';')
    return [p.strip().upper() for p in parts if p.strip()]


def validate_discount(row: dict, line_num: int) -> tuple[Optional[Discount], list[str]]:
    """
    Validate and parse a discount from a CSV row.

    Returns (discount, errors) - discount is None if validation failed.
    """
    errors = []

    discount_id = parse_optional_str(row.get('discount_id', ''))
    if not discount_id:
        errors.append(f"Line {line_num}: discount_id is required")
        return None, errors

    code = parse_optional_str(row.get('code', ''))
    name = parse_optional_str(row.get('name', '')) or discount_id
    active = parse_bool(row.get('active', 'false'))

    try:
        priority = int(row.get('priority') or '50')
    except ValueError:
        errors.append(f"Line {line_num}: priority must be an integer")
        return None, errors

    component = parse_optional_str(row.get('component', ''))
    if component not in COMPONENTS:
        errors.append(f"Line {line_num}: invalid component '{component}', must be one of: {COMPONENTS}")
        return None, errors

    discount_type = parse_optional_str(row.get('discount_type', ''))
    if discount_type not in VALID_DISCOUNT_TYPES:
        errors.append(
            f"Line {line_num}: invalid discount_type '{discount_type}', "
            f"must be one of: {sorted(VALID_DISCOUNT_TYPES)}"
        )
        return None, errors

    numbers = {}
    for col in ('value', 'min_order', 'max_discount', 'max_discount_percentage'):
        try:
            numbers[col] = parse_optional_float(row.get(col, ''))
        except ValueError:
            errors.append(f"Line {line_num}: {col} must be numeric")
    if errors:
        return None, errors

    value = numbers['value']
    if value is None:
        if discount_type != 'free':
            errors.append(f"Line {line_num}: value is required for {discount_type} discounts")
            return None, errors
        value = 100.0
    if value < 0:
        errors.append(f"Line {line_num}: value must not be negative")
    if discount_type == 'percentage' and value > 100:
        errors.append(f"Line {line_num}: percentage value must be between 0 and 100")

    conditions = DiscountConditions(
        min_order=numbers['min_order'],
        countries=parse_countries(row.get('countries', '')),
        first_order_only=parse_bool(row.get('first_order_only', '')),
        start_date=parse_optional_str(row.get('start_date', '')),
        end_date=parse_optional_str(row.get('end_date', '')),
    )

    # Validate dates
    for date_field in ['start_date', 'end_date']:
        date_val = getattr(conditions, date_field)
        if date_val:
            try:
                datetime.fromisoformat(date_val)
            except ValueError:
                errors.append(f"Line {line_num}: {date_field} must be YYYY-MM-DD format")

    if errors:
        return None, errors

    return Discount(
        discount_id=discount_id,
        code=code.upper() if code else None,
        name=name,
        active=active,
        priority=priority,
        component=component,
        discount_type=discount_type,
        value=value,
        stackable=parse_bool(row.get('stackable', 'true')),
        conditions=conditions,
        max_discount=numbers['max_discount'],
        max_discount_percentage=numbers['max_discount_percentage'],
        notes=parse_optional_str(row.get('notes', '')) or "",
    ), []


def compile_discounts(
    discounts_csv: Path,
    output_json: Path,
) -> tuple[bool, list[Discount], list[str]]:
    """
    Compile discounts from CSV to JSON.

    Returns (success, discounts, errors). Nothing is written when any row fails.
    """
    all_errors = []
    discounts = []

    if not discounts_csv.exists():
        all_errors.append(f"Discounts file not found: {discounts_csv}")
        return False, [], all_errors

    with open(discounts_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        seen = set()

        for line_num, row in enumerate(reader, start=2):  # +2 for 1-indexed header row
            discount, errors = validate_discount(row, line_num)

            if errors:
                all_errors.extend(errors)
            elif discount:
                if discount.discount_id in seen:
                    all_errors.append(f"Line {line_num}: duplicate discount_id '{discount.discount_id}'")
                    continue
                seen.add(discount.discount_id)
                discounts.append(discount)

    if all_errors:
        for err in all_errors:
            logger.error("Discount validation: %s", err)
        return False, discounts, all_errors

    # Higher number = applied first
    discounts.sort(key=lambda d: -d.priority)

    output_data = {
        "compiled_at": datetime.now().isoformat(),
        "source_file": str(discounts_csv),
        "total_discounts": len(discounts),
        "active_discounts": sum(1 for d in discounts if d.active),
        "discounts": [],
    }

    for discount in discounts:
        data = asdict(discount)
        data['conditions'] = {k: v for k, v in data['conditions'].items() if v not in (None, [], False)}
        output_data["discounts"].append(data)

    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w', encoding='utf-8') as f:
        json.dump(output_data, f, indent=2)

    logger.info(
        "Compiled %d discounts (%d active) to %s",
        len(discounts), output_data['active_discounts'], output_json,
    )
    return True, discounts, []


def main():
    """CLI entry point."""
    import sys

    from ..config.settings import get_settings

    settings = get_settings()

    print("Compiling discounts...")
    success, discounts, errors = compile_discounts(settings.discounts_csv, settings.compiled_discounts)

    if not success:
        print("Validation errors:")
        for err in errors:
            print(f"  ❌ {err}")
        print(f"\n❌ Compilation failed with {len(errors)} errors")
        sys.exit(1)

    print(f"✅ Compiled {len(discounts)} discounts")
    print(f"   Output: {settings.compiled_discounts}")


if __name__ == "__main__":
    main()
