import pytest

from landed_cost.config.settings import Settings
from landed_cost.engine import CalculationError, Dimensions, LandedCostEngine, QuoteItem, QuoteRequest


def tee(**kwargs):
    defaults = dict(item_id='tee', name='Cotton T-shirt', quantity=2, unit_price=8.0,
                    weight_kg=0.3, hsn_code='6109')
    defaults.update(kwargs)
    return QuoteItem(**defaults)


def us_in(items=None, **kwargs):
    defaults = dict(payment_gateway='stripe', request_date='2026-06-01')
    defaults.update(kwargs)
    return QuoteRequest(origin_country='US', destination_country='IN', items=items or [tee()], **defaults)


def test_missing_hsn_master_raises(settings):
    settings.hsn_master.unlink()
    with pytest.raises(FileNotFoundError, match="build_hsn_master"):
        LandedCostEngine(settings)


def test_reload_picks_up_changes(settings):
    engine = LandedCostEngine(settings)
    before = engine.calculate(us_in()).total

    text = settings.shipping_routes.read_text().replace('US,IN,15,12', 'US,IN,25,12')
    settings.shipping_routes.write_text(text)
    engine.reload_data()

    after = engine.calculate(us_in()).total
    assert after > before


def test_data_dir_from_environment(monkeypatch, data_dir):
    monkeypatch.setenv('LANDED_COST_DATA_DIR', str(data_dir))
    assert Settings.load().data_dir == data_dir


class TestValidation:
    def test_unknown_route(self, engine):
        with pytest.raises(CalculationError, match="No shipping route"):
            engine.calculate(QuoteRequest(origin_country='IN', destination_country='US', items=[tee()]))

    def test_inactive_route(self, engine):
        with pytest.raises(CalculationError, match="US->GB"):
            engine.calculate(QuoteRequest(origin_country='US', destination_country='GB', items=[tee()]))

    def test_unknown_destination(self, engine):
        with pytest.raises(CalculationError, match="Unknown destination"):
            engine.calculate(QuoteRequest(origin_country='US', destination_country='ZZ', items=[tee()]))

    def test_bad_items(self, engine):
        with pytest.raises(CalculationError, match="no items"):
            engine.calculate(us_in(items=[]))
        with pytest.raises(CalculationError, match="Quantity"):
            engine.calculate(us_in(items=[tee(quantity=0)]))
        with pytest.raises(CalculationError, match="Unit price"):
            engine.calculate(us_in(items=[tee(unit_price=-1)]))

    def test_bad_zone(self, engine):
        with pytest.raises(CalculationError, match="delivery zone"):
            engine.calculate(us_in(delivery_zone='suburban'))


class TestCalculation:
    def test_minimum_valuation_applied(self, engine):
        result = engine.calculate(us_in())
        item = result.items[0]
        assert item.valuation_method == 'minimum_valuation'
        assert item.actual_unit_value == 8.64
        assert item.minimum_unit_value == 10.0
        assert item.dutiable_value == 20.0
        assert item.cif_value == 44.0
        assert item.customs_amount == 5.28
        assert item.actual_price_option.basis_amount == 17.28
        assert item.minimum_valuation_option.basis_amount == 20.0
        assert 'USD' in item.minimum_valuation_option.currency_conversion_details
        assert any('Minimum valuation' in w for w in result.warnings)

    def test_actual_price_valuation(self, engine):
        result = engine.calculate(us_in(valuation_method='actual_price'))
        item = result.items[0]
        assert item.valuation_method == 'actual_price'
        assert item.dutiable_value == 17.28
        # Both options are still reported
        assert item.minimum_valuation_option is not None

    def test_declared_value(self, engine):
        result = engine.calculate(us_in(items=[tee(declared_value=5.0)]))
        assert result.items[0].valuation_method == 'admin_override'
        assert result.items[0].dutiable_value == 10.0

    def test_route_tier_and_fee_vat(self, engine):
        result = engine.calculate(us_in())
        assert result.applied_route_tier == 'Low Value Items'
        assert result.customs_method == 'hsn'
        assert result.effective_customs_rate == 12.0

    def test_mixed_methods_per_item(self, engine):
        items = [tee(), QuoteItem(item_id='misc', name='Gift', quantity=1, unit_price=20.0, weight_kg=0.2)]
        result = engine.calculate(us_in(items=items))
        methods = {i.item_id: i.tax_method for i in result.items}
        assert methods == {'tee': 'hsn', 'misc': 'route'}
        assert result.customs_method == 'per_item'
        misc = result.items[1]
        assert misc.rate_source == 'route_tier:Low Value Items'
        assert misc.customs_rate == 5

    def test_freight_allocated_by_dutiable_value(self, engine):
        items = [
            tee(quantity=1, unit_price=50.0),
            QuoteItem(item_id='b', name='B', quantity=1, unit_price=150.0, weight_kg=0.1, hsn_code='8471'),
        ]
        result = engine.calculate(us_in(items=items))
        a, b = result.items
        assert b.allocated_freight == pytest.approx(3 * a.allocated_freight, abs=0.01)
        assert a.allocated_freight + b.allocated_freight == pytest.approx(result.breakdown.shipping, abs=0.01)

    def test_volumetric_weight_drives_shipping(self, engine):
        boxed = tee(quantity=1, weight_kg=0.2, dimensions=Dimensions(40, 30, 20))
        result = engine.calculate(us_in(items=[boxed]))
        # 40*30*20/5000 = 4.8kg on the 1-5kg tier
        assert result.total_weight_kg == 4.8
        assert result.breakdown.shipping == pytest.approx(15 + 4.8 * 12)

    def test_estimated_weight_warning(self, engine):
        result = engine.calculate(us_in(items=[tee(weight_kg=None)]))
        assert result.items[0].weight_estimated
        assert result.total_weight_kg == 1.0
        assert any('estimate' in w for w in result.warnings)

    def test_express_option(self, engine):
        standard = engine.calculate(us_in())
        express = engine.calculate(us_in(delivery_option='express'))
        assert express.selected_shipping.option_id == 'express'
        assert express.breakdown.shipping == standard.breakdown.shipping + 25
        assert len(express.shipping_options) == 2

    def test_unavailable_option_warns(self, engine):
        result = engine.calculate(us_in(delivery_option='overnight'))
        assert result.selected_shipping.option_id == 'standard'
        assert any('overnight' in w for w in result.warnings)

    def test_optional_insurance(self, engine):
        assert engine.calculate(us_in()).breakdown.insurance == 0.0
        insured = engine.calculate(us_in(insurance_opted_in=True))
        # 1.5% of 17.28 is below the 5.00 minimum
        assert insured.breakdown.insurance == 5.0

    def test_mandatory_insurance(self, engine):
        request = QuoteRequest(
            origin_country='US', destination_country='NP',
            items=[tee(quantity=1, unit_price=1000.0, hsn_code='8517')],
        )
        result = engine.calculate(request)
        assert result.breakdown.insurance == 10.8

    def test_rural_delivery(self, engine):
        urban = engine.calculate(us_in())
        rural = engine.calculate(us_in(delivery_zone='rural'))
        assert urban.breakdown.domestic_delivery == 4.82
        assert rural.breakdown.domestic_delivery == 9.64

    def test_purchase_tax_override(self, engine):
        result = engine.calculate(us_in(purchase_tax_rate=0))
        assert result.breakdown.purchase_tax == 0.0
        assert result.items[0].actual_unit_value == 8.0

    def test_merchant_shipping_added(self, engine):
        base = engine.calculate(us_in())
        with_merchant = engine.calculate(us_in(merchant_shipping=10.0))
        assert with_merchant.breakdown.merchant_shipping == 10.0
        assert with_merchant.breakdown.subtotal == pytest.approx(base.breakdown.subtotal + 10.0, abs=0.01)

    def test_item_discounts(self, engine):
        result = engine.calculate(us_in(items=[tee(unit_price=20.0, discount_percent=25, discount_amount=2)]))
        assert result.breakdown.items_subtotal == 40.0
        assert result.breakdown.item_discounts == 12.0
        assert result.breakdown.items_total == 28.0

    def test_item_discount_capped_at_line(self, engine):
        result = engine.calculate(us_in(items=[tee(discount_amount=100)]))
        assert result.breakdown.items_total == 0.0

    def test_free_shipping_discount(self, engine):
        items = [tee(quantity=1, unit_price=250.0, hsn_code='8517')]
        result = engine.calculate(us_in(items=items, discount_codes=['FREESHIP', 'SHIP5']))
        b = result.breakdown
        assert b.shipping_discount == b.shipping
        assert [d['discount_id'] for d in result.component_discounts['shipping']] == ['FREESHIP']
        assert b.total_savings == b.shipping

    def test_invalid_code_warns(self, engine):
        result = engine.calculate(us_in(discount_codes=['NOPE']))
        assert 'Discount code NOPE is not valid' in result.warnings

    def test_fallback_gateway(self, engine):
        result = engine.calculate(us_in(payment_gateway='bitcoin'))
        # Unknown gateway uses the default (stripe)
        assert result.breakdown.payment_gateway_fee == engine.calculate(us_in()).breakdown.payment_gateway_fee

    def test_destination_total_uses_unrounded_total(self, engine):
        result = engine.calculate(us_in())
        assert result.exchange_rate == 83.0
        assert result.total_destination_currency == 5740.21

    def test_trace_and_dict(self, engine):
        result = engine.calculate(us_in(quote_id='Q-1'))
        text = result.get_trace_text()
        assert 'Exchange Rate' in text
        assert 'Gateway Fee' in text
        assert 'Valuation' in result.items[0].get_trace_text()
        data = result.to_dict()
        assert data['quote_id'] == 'Q-1'
        assert data['items'][0]['total_taxes'] == pytest.approx(
            result.items[0].customs_amount + result.items[0].vat_amount
        )
        assert data['reference_hash'] == engine.reference.reference_hash


class TestLookups:
    def test_tax_info(self, engine):
        info = engine.get_tax_info('in')
        assert info['currency'] == 'INR'
        assert info['tax_label'] == 'GST'
        assert info['vat_percentage'] == 18
        assert info['hsn_codes_with_rates'] == 6
        with pytest.raises(CalculationError):
            engine.get_tax_info('ZZ')

    def test_route_summary(self, engine):
        summary = engine.get_route_summary('us', 'in', 2.0)
        assert summary['exchange_rate'] == 83.0
        costs = {o['option_id']: o['cost'] for o in summary['shipping_options']}
        assert costs == {'standard': 39.0, 'express': 64.0}
        assert len(summary['customs_tiers']) == 3
        with pytest.raises(CalculationError):
            engine.get_route_summary('IN', 'US')

    def test_search_hsn(self, engine):
        assert engine.search_hsn('8471', 'IN')[0]['hsn_code'].startswith('8471')


class TestStateSalesTax:
    @pytest.fixture
    def in_us_engine(self, settings):
        with open(settings.shipping_routes, 'a') as f:
            f.write("IN,US,10,5,0,0.012,,,0,0,,,,,,true,5000,true\n")
        return LandedCostEngine(settings)

    def in_us(self, state=None):
        return QuoteRequest(
            origin_country='IN', destination_country='US', destination_state=state,
            items=[QuoteItem(item_id='saree', name='Silk saree', quantity=1, unit_price=1000.0, weight_kg=1.0)],
        )

    def test_state_rate_taxes_items_and_fees(self, in_us_engine):
        result = in_us_engine.calculate(self.in_us('ca'))
        item = result.items[0]
        assert item.vat_rate == 7.25
        assert item.rate_source.endswith('+state:CA')
        # (1000 + 15 shipping) and 1250 delivery at 7.25%
        assert result.breakdown.local_tax == pytest.approx(164.21, abs=0.01)
        assert 'state:CA' in result.get_trace_text()

    def test_unlisted_state_uses_default(self, in_us_engine):
        result = in_us_engine.calculate(self.in_us('ZZ'))
        assert result.breakdown.local_tax == pytest.approx(113.25, abs=0.01)

    def test_no_state_uses_country_rate(self, in_us_engine):
        assert in_us_engine.calculate(self.in_us()).breakdown.local_tax == 0.0
        assert in_us_engine.calculate(self.in_us('OR')).breakdown.local_tax == 0.0

    def test_state_ignored_without_table(self, engine):
        base = engine.calculate(us_in())
        assert engine.calculate(us_in(destination_state='CA')).total == base.total


def test_total_percentage_cap_from_settings(settings):
    settings.max_total_discount_percentage = 5
    engine = LandedCostEngine(settings)
    result = engine.calculate(us_in(discount_codes=['WELCOME10'], is_first_order=True))
    assert result.breakdown.order_discount == 0.0
    assert 'items' not in result.component_discounts
