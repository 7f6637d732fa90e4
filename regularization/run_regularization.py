#!/usr/bin/env python3
"""
Run regularization tasks from the command line.

Usage:
  # Load a SAAQ CSV export
  run-regularization seed data/vehicles_2011_2024.csv

  # Uncurated pairs, largest first
  run-regularization pairs --limit 20
  run-regularization pairs --exclude-exact --search honda

  # Canonical models for one make
  run-regularization hierarchy --make HONDA

  # Auto-regularize unmapped exact matches
  run-regularization auto

  # Coverage statistics
  run-regularization stats

  # Pair status report
  run-regularization export --out data/output/pairs.csv
"""

import argparse
import asyncio
from pathlib import Path

from backend.store import SQLModelStore, make_engine
from regularization.config.settings import (
    DATABASE_URL,
    OUTPUT_DIR,
    ensure_dirs,
    load_auto_regularization_config,
    load_regularization_config,
    load_year_configuration,
)
from regularization.src.session import RegularizationSession


def build_session(args) -> RegularizationSession:
    config = load_regularization_config(args.config)
    store = SQLModelStore(make_engine(args.database_url))
    return RegularizationSession(
        store, load_year_configuration(config), load_auto_regularization_config(config)
    )


def run_seed(args):
    from backend.seed import seed_csv

    count = seed_csv(args.csv, args.database_url)
    print(f"Seeded {count} rows")


def run_pairs(args):
    session = build_session(args)
    asyncio.run(session.load_initial_data(not args.exclude_exact, auto_regularize=False))
    pairs = session.sort_pairs(session.filter_pairs(search_text=args.search or ""))
    if args.limit:
        pairs = pairs[: args.limit]
    print(f"{'Make / Model':<40} {'Records':>10} {'%':>7}  Status")
    for pair in pairs:
        print(
            f"{pair.display_name[:40]:<40} {pair.record_count:>10,} "
            f"{pair.percentage_of_total:>6.2f}%  {pair.regularization_status.value}"
        )
    print(f"\n{len(pairs)} of {len(session.pairs)} pairs")


def run_hierarchy(args):
    session = build_session(args)
    hierarchy = session.builder.generate()
    makes = hierarchy.makes
    if args.make:
        makes = [m for m in makes if m.name == args.make]
    for make in makes:
        print(make.name)
        for model in make.models:
            types = ", ".join(vt.code for vt in model.vehicle_types) or "-"
            years = sorted(model.model_years.values())
            span = f"{years[0]}-{years[-1]}" if years else "no model years"
            print(f"  {model.name:<30} [{types}] {span}")
    print(f"\n{len(hierarchy.makes)} makes, {hierarchy.model_count} models")


def run_auto(args):
    session = build_session(args)
    asyncio.run(session.load_initial_data(auto_regularize=True))
    result = session.last_auto_result
    if result is None:
        print("Auto-regularization skipped")
        return
    print(f"Pairs mapped:      {result.pairs_regularized}")
    print(f"Triplets created:  {result.triplets_created}")
    print(f"Already mapped:    {result.skipped_existing}")
    print(f"No exact match:    {result.skipped_no_match}")
    print(f"Failures:          {result.failures}")


def run_stats(args):
    session = build_session(args)
    stats = session.store.statistics(session.year_config.uncurated_years)
    print(f"Mappings:          {stats.mapping_count:,}")
    print(f"Uncurated records: {stats.total_uncurated_records:,}")
    for label, coverage in (
        ("Make/Model", stats.make_model_coverage),
        ("Fuel type", stats.fuel_type_coverage),
        ("Vehicle type", stats.vehicle_type_coverage),
    ):
        print(f"{label:<18} {coverage.assigned_count:>10,} assigned  ({coverage.coverage_percentage:.1f}%)")


def run_export(args):
    from regularization.src.pipeline import run_pipeline

    session = build_session(args)
    run_pipeline(
        session.store,
        session.year_config,
        session.config,
        include_exact_matches=not args.exclude_exact,
        skip_auto=not args.auto,
        export_path=args.out,
    )


def main():
    parser = argparse.ArgumentParser(description="SAAQ Make/Model regularization")
    parser.add_argument("--database-url", default=DATABASE_URL)
    parser.add_argument("--config", type=Path, help="Regularization YAML (default: bundled config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # seed
    sp = subparsers.add_parser("seed", help="Load a SAAQ registration CSV")
    sp.add_argument("csv", type=Path)
    sp.set_defaults(func=run_seed)

    # pairs
    pp = subparsers.add_parser("pairs", help="List uncurated Make/Model pairs")
    pp.add_argument("--exclude-exact", action="store_true", help="Hide pairs that match a canonical pair")
    pp.add_argument("--search", help="Filter by make or model text")
    pp.add_argument("--limit", type=int, help="Show at most N pairs")
    pp.set_defaults(func=run_pairs)

    # hierarchy
    hp = subparsers.add_parser("hierarchy", help="Print the canonical hierarchy")
    hp.add_argument("--make", help="Only this make")
    hp.set_defaults(func=run_hierarchy)

    # auto
    ap = subparsers.add_parser("auto", help="Auto-regularize exact matches")
    ap.set_defaults(func=run_auto)

    # stats
    tp = subparsers.add_parser("stats", help="Regularization coverage")
    tp.set_defaults(func=run_stats)

    # export
    ep = subparsers.add_parser("export", help="Export pair statuses to CSV")
    ep.add_argument("--out", type=Path, default=OUTPUT_DIR / "regularization_pairs.csv")
    ep.add_argument("--exclude-exact", action="store_true")
    ep.add_argument("--auto", action="store_true", help="Auto-regularize before exporting")
    ep.set_defaults(func=run_export)

    args = parser.parse_args()
    ensure_dirs()
    args.func(args)


if __name__ == "__main__":
    main()
