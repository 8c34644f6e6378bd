"""
HSN Master Builder - Joins HSN code definitions with per-country duty rates.

- Configuration-driven paths
- Build report generation
- Structured logging
"""
import json
from datetime import datetime
from typing import Optional

import pandas as pd

from ..config.settings import get_settings, Settings
from ..engine.reference_data import get_file_hash, load_csv, normalize_hsn
from ..utils.logging import get_logger

logger = get_logger(__name__)

MASTER_COLUMNS = [
    'hsn_code', 'description', 'category', 'minimum_valuation_usd',
    'requires_currency_conversion', 'country_code', 'customs_rate', 'vat_rate', 'is_active',
]


def build_hsn_master(settings: Optional[Settings] = None, verbose: bool = True) -> dict:
    """
    Build hsn_master.csv from hsn_codes.csv and hsn_country_rates.csv.

    Args:
        settings: Optional settings override
        verbose: Print progress messages

    Returns:
        Build report dictionary
    """
    settings = settings or get_settings()

    report = {
        "timestamp": datetime.now().isoformat(),
        "status": "pending",
        "input_files": {},
        "metrics": {},
        "warnings": [],
        "errors": []
    }

    for key, path in (('hsn_codes', settings.hsn_codes), ('hsn_country_rates', settings.hsn_country_rates)):
        if not path.exists():
            msg = f"CRITICAL ERROR: {path} not found."
            report["errors"].append(msg)
        else:
            report["input_files"][key] = {"path": str(path), "hash": get_file_hash(path)}

    if report["errors"]:
        report["status"] = "failed"
        for msg in report["errors"]:
            logger.error(msg)
            if verbose:
                print(msg)
        _save_report(report, settings)
        return report

    try:
        codes = load_csv(settings.hsn_codes)
        codes['hsn_code'] = codes['hsn_code'].map(normalize_hsn)
        codes = codes[codes['hsn_code'] != '']
        report["metrics"]["initial_code_count"] = len(codes)

        duplicates_before = int(codes['hsn_code'].duplicated().sum())
        codes = codes.drop_duplicates('hsn_code', keep='first')
        report["metrics"]["duplicates_removed"] = duplicates_before
        if duplicates_before > 0:
            report["warnings"].append(f"Removed {duplicates_before} duplicate HSN codes (kept first row)")
            if verbose:
                print(f"Removed {duplicates_before} duplicate HSN codes (kept first row)")

        rates = load_csv(settings.hsn_country_rates)
        rates['hsn_code'] = rates['hsn_code'].map(normalize_hsn)
        rates['country_code'] = rates['country_code'].str.upper()
        rates = rates.drop_duplicates(['hsn_code', 'country_code'], keep='first')
    except (KeyError, pd.errors.ParserError) as e:
        msg = f"ERROR: Failed to read HSN inputs. {e}"
        report["errors"].append(msg)
        report["status"] = "failed"
        logger.error(msg)
        if verbose:
            print(msg)
        _save_report(report, settings)
        return report

    orphan_rates = sorted(set(rates['hsn_code']) - set(codes['hsn_code']))
    if orphan_rates:
        report["warnings"].append(f"Rates for unknown HSN codes ignored: {', '.join(orphan_rates)}")

    master = pd.merge(codes, rates[['hsn_code', 'country_code', 'customs_rate', 'vat_rate']],
                      on='hsn_code', how='inner')

    without_rates = sorted(set(codes['hsn_code']) - set(master['hsn_code']))
    report["metrics"]["codes_without_rates"] = len(without_rates)
    for code in without_rates:
        report["warnings"].append(f"HSN code {code} has no country rates")

    for col in MASTER_COLUMNS:
        if col not in master.columns:
            master[col] = ''
    master.loc[master['is_active'] == '', 'is_active'] = 'true'
    master = master[MASTER_COLUMNS].sort_values(['hsn_code', 'country_code'])

    country_coverage = {}
    total_codes = len(codes)
    for country, group in master.groupby('country_code'):
        priced = group['hsn_code'].nunique()
        country_coverage[country] = {
            "codes_with_rates": int(priced),
            "coverage_pct": round(priced / total_codes * 100, 1) if total_codes else 0.0
        }
        if verbose:
            print(f"SUCCESS: {country} rates for {priced} codes. Coverage: {country_coverage[country]['coverage_pct']}%")

    report["metrics"]["country_coverage"] = country_coverage
    report["metrics"]["final_code_count"] = int(master['hsn_code'].nunique())
    report["metrics"]["rows"] = len(master)

    output_path = settings.hsn_master
    output_path.parent.mkdir(parents=True, exist_ok=True)
    master.to_csv(output_path, index=False)
    report["output_file"] = str(output_path)
    report["status"] = "success"
    logger.info("Built %s with %d rows", output_path, len(master))

    if verbose:
        print(f"\nPROCESS COMPLETE: {output_path} generated with {len(master)} rows.")

    report_path = _save_report(report, settings)
    if verbose:
        print(f"Build report saved to: {report_path}")

    return report


def _save_report(report: dict, settings: Settings):
    """Write the build report, failed builds included."""
    report_path = settings.build_report
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, "w") as f:
        json.dump(report, f, indent=2)
    return report_path


if __name__ == "__main__":
    build_hsn_master()
