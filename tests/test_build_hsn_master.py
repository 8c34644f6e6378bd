import json

import pandas as pd

from landed_cost.data.build_hsn_master import build_hsn_master
from landed_cost.engine.reference_data import load_csv


def test_build_matches_packaged_master(settings):
    packaged = load_csv(settings.hsn_master)
    settings.hsn_master.unlink()

    report = build_hsn_master(settings, verbose=False)

    assert report['status'] == 'success'
    pd.testing.assert_frame_equal(load_csv(settings.hsn_master), packaged)


def test_report_metrics(settings):
    report = build_hsn_master(settings, verbose=False)
    metrics = report['metrics']

    assert metrics['initial_code_count'] == 8
    assert metrics['duplicates_removed'] == 0
    assert metrics['codes_without_rates'] == 1
    assert metrics['final_code_count'] == 7
    assert metrics['rows'] == 10
    assert metrics['country_coverage']['IN'] == {'codes_with_rates': 7, 'coverage_pct': 87.5}
    assert metrics['country_coverage']['NP']['codes_with_rates'] == 3
    assert "HSN code 4202 has no country rates" in report['warnings']

    with open(settings.build_report) as f:
        assert json.load(f)['status'] == 'success'


def test_dotted_codes_are_normalised(settings):
    build_hsn_master(settings, verbose=False)
    master = load_csv(settings.hsn_master)
    assert '847130' in set(master['hsn_code'])
    assert not master['hsn_code'].str.contains(r'\.').any()


def test_duplicate_codes_keep_first(settings):
    with open(settings.hsn_codes, 'a') as f:
        f.write("6109,Duplicate tee row,clothing,99,true,true\n")

    report = build_hsn_master(settings, verbose=False)

    assert report['metrics']['duplicates_removed'] == 1
    master = load_csv(settings.hsn_master)
    tees = master[master['hsn_code'] == '6109']
    assert set(tees['minimum_valuation_usd']) == {'10'}


def test_orphan_rates_warn(settings):
    with open(settings.hsn_country_rates, 'a') as f:
        f.write("7113,IN,15,3\n")

    report = build_hsn_master(settings, verbose=False)

    assert any('7113' in w for w in report['warnings'])
    assert report['metrics']['rows'] == 10


def test_missing_input_fails(settings):
    settings.hsn_country_rates.unlink()

    report = build_hsn_master(settings, verbose=False)

    assert report['status'] == 'failed'
    assert any('hsn_country_rates.csv' in e for e in report['errors'])

    with open(settings.build_report) as f:
        saved = json.load(f)
    assert saved['status'] == 'failed'
    assert saved['errors'] == report['errors']
