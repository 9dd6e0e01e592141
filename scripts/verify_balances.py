#!/usr/bin/env python3
"""
Rescan the stock ledger and compare every cached balance with its replay.

For each (material, location) the movements are folded in seq order with
the same clamp-at-zero rule used when posting.  Any difference from the
cached StockBalance row is printed and the script exits non-zero.

Uses DATABASE_URL if set, otherwise the database url from the active
configuration (materials_config/sets/default.yaml).

Usage:
    python3 scripts/verify_balances.py
    python3 scripts/verify_balances.py --material 5f0c6c1e-...
    python3 scripts/verify_balances.py --config path/to/config.yaml --verbose
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--database-url", default=None, help="Overrides config and DATABASE_URL")
    parser.add_argument("--material", type=UUID, default=None, help="Check one material only")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from materials_config import get_active_config
    from materials_kernel.db import get_session, init_engine_from_url
    from materials_kernel.logging_config import configure_logging
    from materials_kernel.services.stock_ledger import StockLedgerService

    config = get_active_config(args.config)
    configure_logging(level=logging.DEBUG if args.verbose else config.logging.level)

    url = args.database_url or os.environ.get("DATABASE_URL") or config.database.url
    init_engine_from_url(
        url,
        echo=config.database.echo,
        sqlite_busy_timeout_ms=config.database.sqlite_busy_timeout_ms,
    )

    session = get_session()
    try:
        mismatches = StockLedgerService(session).verify_balances(args.material)
    finally:
        session.rollback()
        session.close()

    if not mismatches:
        print("OK: every cached balance matches its movement replay")
        return 0

    print(f"FAIL: {len(mismatches)} balance(s) disagree with the ledger", file=sys.stderr)
    for m in mismatches:
        print(
            f"  material={m.material_id} location={m.location} "
            f"cached={m.cached} replayed={m.replayed}",
            file=sys.stderr,
        )
    return 1


if __name__ == "__main__":
    sys.exit(main())
