#!/usr/bin/env python
"""
Build pipeline - builds the HSN master, compiles discounts and runs golden tests.

Usage:
    python scripts/build_all.py
"""
import subprocess
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from landed_cost.config.settings import get_settings
from landed_cost.data.build_hsn_master import build_hsn_master
from landed_cost.rules.compile_discounts import compile_discounts
from landed_cost.utils.logging import setup_logging


def main():
    settings = get_settings()
    setup_logging(settings.log_level)

    print("=" * 60)
    print("LANDED COST BUILD PIPELINE")
    print("=" * 60)
    print()

    print("[1/3] Building HSN master...")
    report = build_hsn_master(settings, verbose=True)

    if report["status"] != "success":
        print("\n❌ BUILD FAILED")
        for error in report["errors"]:
            print(f"  ERROR: {error}")
        sys.exit(1)

    print()
    print("[2/3] Compiling discounts...")
    success, discounts, errors = compile_discounts(settings.discounts_csv, settings.compiled_discounts)
    if not success:
        print("\n❌ DISCOUNT COMPILATION FAILED")
        for error in errors:
            print(f"  ERROR: {error}")
        sys.exit(1)
    print(f"✅ Compiled {len(discounts)} discounts")

    print()
    print("[3/3] Running golden tests...")

    test_result = subprocess.run(
        [sys.executable, '-m', 'pytest', 'tests/test_golden_cases.py', '-v', '--tb=short'],
        cwd=Path(__file__).parent.parent
    )

    if test_result.returncode != 0:
        print("\n❌ TESTS FAILED")
        sys.exit(1)

    print()
    print("=" * 60)
    print("✅ BUILD COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  HSN codes: {report['metrics']['final_code_count']}")
    print(f"  Duplicates removed: {report['metrics']['duplicates_removed']}")
    print(f"  Codes without rates: {report['metrics']['codes_without_rates']}")
    print()
    print("Country Coverage:")
    for country, stats in report['metrics'].get('country_coverage', {}).items():
        print(f"  {country}: {stats['coverage_pct']}% ({stats['codes_with_rates']} codes)")
    for warning in report['warnings']:
        print(f"  ⚠ {warning}")


if __name__ == "__main__":
    main()
