"""Engine subpackage - landed cost calculation and rate resolution."""
from .landed_cost_engine import LandedCostEngine
from .models import (
    CalculationError, Dimensions, QuoteItem, QuoteRequest, QuoteResult, ItemTaxBreakdown,
)

__all__ = [
    'LandedCostEngine', 'CalculationError', 'Dimensions', 'QuoteItem',
    'QuoteRequest', 'QuoteResult', 'ItemTaxBreakdown',
]
