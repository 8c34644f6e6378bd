"""
Landed Cost Package

Landed-cost calculation for cross-border shopping quotes.
Resolves item valuation, shipping tiers, customs duty (HSN, route tier or
manual rates), VAT/GST, insurance, handling and discounts into a traced total.
"""

__version__ = "1.0.0"
