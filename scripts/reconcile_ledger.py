#!/usr/bin/env python3
"""
Reconcile stock levels against the movement ledger.

For every stock row, compares the stored quantity with the running sum of its
ledger entries, and checks that every transfer correlation id carries exactly
one TRANSFER_OUT / TRANSFER_IN pair.  Exits 1 when anything is off.

Usage:
    python3 scripts/reconcile_ledger.py
    python3 scripts/reconcile_ledger.py --dome-id <uuid>
    python3 scripts/reconcile_ledger.py --json

Examples:
    # Use a specific configuration file
    python3 scripts/reconcile_ledger.py --config colony_config/sets/default.yaml

    # Custom database URL
    python3 scripts/reconcile_ledger.py --db-url sqlite:///colony.db
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 80

EXIT_CLEAN = 0
EXIT_DISCREPANCIES = 1
EXIT_ERROR = 2


def banner(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}")
    print("=" * W)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile colony stock levels against the movement ledger.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Configuration YAML file")
    parser.add_argument("--db-url", default=None, help="Override the configured database URL")
    parser.add_argument("--dome-id", default=None, help="Only reconcile one dome")
    parser.add_argument("--json", action="store_true", help="Print a JSON report")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    dome_id = None
    if args.dome_id:
        try:
            dome_id = UUID(args.dome_id)
        except ValueError as exc:
            print(f"  ERROR: Invalid UUID: {exc}", file=sys.stderr)
            return EXIT_ERROR

    from colony_ledger.exceptions import ColonyLedgerError
    from colony_services import build_ledger_engine

    # Suppress library logging
    logging.disable(logging.CRITICAL)
    try:
        engine = build_ledger_engine(
            config_path=args.config,
            database_url=args.db_url,
            create_schema=False,
        )
        discrepancies = engine.reconcile(dome_id)
        unpaired = engine.unpaired_transfers()
    except (ColonyLedgerError, OSError, ValueError, KeyError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        logging.disable(logging.NOTSET)

    if args.json:
        report = {
            "discrepancies": [
                {**asdict(d), "difference": d.difference} for d in discrepancies
            ],
            "unpaired_transfers": unpaired,
        }
        print(json.dumps(report, indent=2, default=str))
    else:
        banner("LEDGER RECONCILIATION")
        if not discrepancies:
            print("  Stock rows reconcile with the ledger.")
        for d in discrepancies:
            print(
                f"  dome {d.dome_id}  resource {d.resource_id}  "
                f"stock {d.stock_quantity}  ledger {d.ledger_sum}  diff {d.difference}"
            )
        banner("TRANSFER PAIRS")
        if not unpaired:
            print("  Every transfer has exactly one OUT and one IN entry.")
        for correlation_id in unpaired:
            print(f"  unpaired transfer {correlation_id}")
        print()

    if discrepancies or unpaired:
        return EXIT_DISCREPANCIES
    return EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
