import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from landed_cost.engine import LandedCostEngine, QuoteItem, QuoteRequest
from landed_cost.utils.logging import setup_logging


def debug():
    setup_logging("DEBUG")
    engine = LandedCostEngine()

    print("Route US -> IN:")
    summary = engine.get_route_summary("US", "IN", 1.5)
    for option in summary["shipping_options"]:
        print(f"  {option['option_id']}: {option['cost']} ({option['days_min']}-{option['days_max']} days)")

    print("\n--- Sample quote: T-shirts and a phone, US -> IN ---")
    req = QuoteRequest(
        origin_country="US",
        destination_country="IN",
        quote_id="DEBUG-1",
        items=[
            QuoteItem(item_id="tee", name="Cotton T-shirt", quantity=2, unit_price=8.0,
                      weight_kg=0.3, hsn_code="6109"),
            QuoteItem(item_id="phone", name="Smartphone", quantity=1, unit_price=300.0,
                      weight_kg=0.4, hsn_code="8517.13"),
        ],
        payment_gateway="stripe",
        discount_codes=["DUTYHALF"],
    )
    result = engine.calculate(req)

    print(result.get_trace_text())
    for item in result.items:
        print(f"\n[{item.item_id}] {item.tax_method} ({item.rate_source}), {item.valuation_method}")
        print(item.get_trace_text())

    print(f"\nTotal: {result.total} {result.origin_currency} / "
          f"{result.total_destination_currency} {result.destination_currency}")
    print("Warnings:", result.warnings)
    print("Policy:", result.policy)


if __name__ == "__main__":
    debug()
