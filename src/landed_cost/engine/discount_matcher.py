"""
Discount Matcher - Matches compiled discounts to a quote and applies them
to cost components.

Discounts are loaded from compiled_discounts.json. Coded discounts apply only
when the request carries the code; discounts without a code are automatic.
"""
import json
from pathlib import Path
from datetime import datetime
from typing import Optional
from dataclasses import dataclass

from .models import AppliedDiscount, ComponentCharge
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MatchedDiscount:
    """A discount that matched with context."""
    discount_id: str
    name: str
    code: Optional[str]
    priority: int
    component: str
    discount_type: str
    value: float
    stackable: bool
    max_discount: Optional[float]
    max_discount_percentage: Optional[float]
    match_reason: str


class DiscountMatcher:
    """
    Matches and applies component discounts.

    Discounts are matched against request context (codes, destination,
    order value, first order, date).
    """

    def __init__(self, compiled_discounts_path: Optional[Path] = None):
        """Load compiled discounts."""
        self.discounts = []
        self.loaded = False

        if compiled_discounts_path and compiled_discounts_path.exists():
            self._load_discounts(compiled_discounts_path)

    def _load_discounts(self, path: Path):
        """Load discounts from JSON file."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load discounts from %s: %s", path, e)
            self.discounts = []
            self.loaded = False
            return

        self.discounts = [d for d in data.get('discounts', []) if d.get('active', False)]
        self.loaded = True

    def find_applicable(
        self,
        destination_country: str,
        order_value: float,
        codes: Optional[list[str]] = None,
        is_first_order: bool = False,
        request_date: Optional[str] = None,
    ) -> dict[str, list[MatchedDiscount]]:
        """
        Find all discounts that apply, grouped by component.

        Each component's list is sorted by priority (higher = applied first).
        """
        if not self.loaded:
            return {}

        requested = {c.strip().upper() for c in (codes or []) if c and c.strip()}
        today = request_date or datetime.now().strftime('%Y-%m-%d')
        destination = destination_country.upper()
        by_component: dict[str, list[MatchedDiscount]] = {}

        for discount in self.discounts:
            cond = discount.get('conditions', {})
            reasons = []

            code = discount.get('code')
            if code:
                if code.upper() not in requested:
                    continue
                reasons.append(f"code={code}")
            else:
                reasons.append("automatic")

            if cond.get('countries'):
                if destination not in cond['countries']:
                    continue
                reasons.append(f"country={destination}")

            if cond.get('min_order'):
                if order_value < float(cond['min_order']):
                    continue
                reasons.append(f"order>={cond['min_order']}")

            if cond.get('first_order_only'):
                if not is_first_order:
                    continue
                reasons.append("first order")

            if cond.get('start_date') and today < cond['start_date']:
                continue
            if cond.get('end_date') and today > cond['end_date']:
                continue

            matched = MatchedDiscount(
                discount_id=discount['discount_id'],
                name=discount.get('name', discount['discount_id']),
                code=code,
                priority=discount.get('priority', 50),
                component=discount['component'],
                discount_type=discount['discount_type'],
                value=float(discount.get('value', 0)),
                stackable=discount.get('stackable', True),
                max_discount=discount.get('max_discount'),
                max_discount_percentage=discount.get('max_discount_percentage'),
                match_reason=", ".join(reasons),
            )
            by_component.setdefault(matched.component, []).append(matched)

        for matches in by_component.values():
            matches.sort(key=lambda d: -d.priority)
        return by_component

    def unknown_codes(self, codes: Optional[list[str]]) -> list[str]:
        """Requested codes that no active discount carries."""
        known = {d['code'].upper() for d in self.discounts if d.get('code')}
        return [c for c in (codes or []) if c and c.strip().upper() not in known]


def apply_component(
    original: float,
    discounts: list[MatchedDiscount],
    max_total_percentage: Optional[float] = None,
) -> tuple[ComponentCharge, list[str]]:
    """
    Apply matched discounts to one component amount.

    A non-stackable discount applies only when nothing has been applied yet.
    Percentage discounts together may not exceed max_total_percentage; one that
    would is skipped. Returns (charge, trace_messages).
    """
    charge = ComponentCharge(original=original)
    traces = []
    remaining = original
    total_percentage = 0.0

    for discount in discounts:
        if remaining <= 0:
            break
        if not discount.stackable and charge.applied:
            traces.append(f"{discount.discount_id} skipped (not stackable)")
            continue
        if discount.discount_type == 'percentage' and max_total_percentage is not None:
            if total_percentage + discount.value > max_total_percentage:
                traces.append(
                    f"{discount.discount_id} skipped (would exceed {max_total_percentage}% total)"
                )
                continue

        if discount.discount_type == 'free':
            amount = remaining
        elif discount.discount_type == 'percentage':
            amount = remaining * discount.value / 100.0
        else:
            amount = discount.value

        if discount.max_discount is not None:
            amount = min(amount, float(discount.max_discount))
        if discount.max_discount_percentage is not None:
            amount = min(amount, original * float(discount.max_discount_percentage) / 100.0)
        amount = min(amount, remaining)

        if amount <= 0:
            continue

        if discount.discount_type == 'percentage':
            total_percentage += discount.value
        remaining -= amount
        charge.discount += amount
        charge.applied.append(AppliedDiscount(
            discount_id=discount.discount_id,
            name=discount.name,
            component=discount.component,
            amount=amount,
            code=discount.code,
        ))
        traces.append(f"{discount.discount_id} ({discount.match_reason}) -{amount:.2f}")

    return charge, traces
