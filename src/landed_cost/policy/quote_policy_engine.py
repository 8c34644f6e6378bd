"""
Quote Policy Engine - Computes review holds and the optimisation score for a quote.
"""
from typing import Optional, Dict, Any

from ..engine.models import (
    QuoteRequest, QuoteResult, TAX_METHOD_AUTO, TAX_METHOD_HSN, TAX_METHOD_MANUAL,
    VALUATION_MINIMUM,
)
from ..engine.currency import SOURCE_FALLBACK


class QuotePolicyEngine:
    """
    Engine for computing quote-level policies.

    Holds flag quotes an admin should look at before sending them out.
    """

    def apply_policies(
        self,
        request: QuoteRequest,
        result: QuoteResult,
        high_value_threshold: Optional[float] = None,
    ):
        """
        Compute policies and update result.policy.
        """
        holds = self._compute_holds(request, result, high_value_threshold)

        result.policy = {
            "holds": holds,
            "needs_review": bool(holds),
            "optimization_score": self._optimization_score(result),
            "cost_share": self._cost_share(result),
        }

    def _compute_holds(
        self,
        request: QuoteRequest,
        result: QuoteResult,
        high_value_threshold: Optional[float],
    ) -> list[Dict[str, Any]]:
        holds = []
        requested = {item.item_id: item.tax_method or request.tax_method for item in request.items}

        minimum_items = [b.item_id for b in result.items if b.valuation_method == VALUATION_MINIMUM]
        if minimum_items:
            holds.append({
                "code": "HOLD_MINIMUM_VALUATION",
                "message": "Customs duty is based on minimum valuation rather than the price paid.",
                "details": {"items": minimum_items},
            })

        manual_zero = [
            b.item_id for b in result.items
            if b.tax_method == TAX_METHOD_MANUAL and b.customs_rate == 0
        ]
        if manual_zero:
            holds.append({
                "code": "HOLD_MANUAL_TAX_ZERO",
                "message": "Manual tax method with a zero customs rate.",
                "details": {"items": manual_zero},
            })

        missing_hsn = [
            b.item_id for b in result.items
            if requested.get(b.item_id) in (TAX_METHOD_AUTO, TAX_METHOD_HSN, None)
            and b.tax_method != TAX_METHOD_HSN
        ]
        if missing_hsn:
            holds.append({
                "code": "HOLD_MISSING_HSN",
                "message": "Items without a resolvable HSN code were taxed at route rates.",
                "details": {"items": missing_hsn},
            })

        if result.exchange_rate_source == SOURCE_FALLBACK:
            holds.append({
                "code": "HOLD_FALLBACK_EXCHANGE_RATE",
                "message": "Exchange rate came from the fallback table.",
                "details": {"rate": result.exchange_rate},
            })

        estimated = [b.item_id for b in result.items if b.weight_estimated]
        if estimated:
            holds.append({
                "code": "HOLD_ESTIMATED_WEIGHT",
                "message": "Shipping priced on an estimated weight.",
                "details": {"items": estimated},
            })

        if high_value_threshold and result.total_destination_currency > high_value_threshold:
            holds.append({
                "code": "HOLD_HIGH_VALUE",
                "message": "Quote total exceeds the destination high-value threshold.",
                "details": {
                    "total": result.total_destination_currency,
                    "threshold": high_value_threshold,
                    "currency": result.destination_currency,
                },
            })

        return holds

    def _optimization_score(self, result: QuoteResult) -> int:
        """Share of the total that is the goods themselves, 0-100."""
        if result.total <= 0:
            return 100
        score = round(result.breakdown.items_total / result.total * 100)
        return max(0, min(100, score))

    def _cost_share(self, result: QuoteResult) -> Dict[str, float]:
        b = result.breakdown
        if result.total <= 0:
            return {}
        parts = {
            "items": b.items_total + b.purchase_tax,
            "shipping": b.shipping - b.shipping_discount + b.insurance + b.merchant_shipping,
            "customs": b.customs - b.customs_discount,
            "fees": (
                b.handling - b.handling_discount
                + b.domestic_delivery - b.delivery_discount
                + b.payment_gateway_fee
            ),
            "taxes": b.local_tax - b.tax_discount,
        }
        return {k: round(v / result.total * 100, 1) for k, v in parts.items()}
