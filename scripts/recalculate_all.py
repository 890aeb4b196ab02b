#!/usr/bin/env python3
"""
Rebuild FIFO costing for every product, or for selected SKUs.

Refreshes each product's fallback cost from its latest purchase lot, then
replays the product's full sales history through the FIFO engine. Each
product runs in its own transaction; a failing product is reported and
skipped.

Usage:
    python3 scripts/recalculate_all.py                  # every product
    python3 scripts/recalculate_all.py --sku A1 --sku B2
    python3 scripts/recalculate_all.py --dry-run        # list what would be replayed
"""

import argparse
import sys
from pathlib import Path

if __package__ is None or __package__ == "":
    sys.path.append(str(Path(__file__).resolve().parents[1]))

from costing.config import load_costing_config
from costing.db import get_session
from costing.logging_config import configure_logging
from costing.repositories.product_repository import ProductRepository
from costing.repositories.stock_repository import StockRepository
from costing.services.recalculation import RecalculationService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Recalculate FIFO cost of goods sold")
    parser.add_argument("--sku", action="append", default=[], help="Only this SKU (repeatable)")
    parser.add_argument("--actor", default="recalculate_all", help="Recorded as triggered_by on cost corrections")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be replayed without writing")
    args = parser.parse_args(argv)

    cfg = load_costing_config()
    configure_logging(level=cfg.logging.level, fmt=cfg.logging.format)

    db = get_session()
    try:
        products = ProductRepository(db)
        stock = StockRepository(db)

        if args.sku:
            selected = []
            for sku in args.sku:
                product = products.get_by_sku(sku)
                if product is None:
                    print(f"ERROR: unknown SKU {sku}", file=sys.stderr)
                    return 1
                selected.append(product)
        else:
            selected = products.list()

        if args.dry_run:
            for product in selected:
                start = stock.earliest_consuming_date(product.id)
                if start is None:
                    print(f"  {product.sku}: no sales, cost cache only")
                    continue
                lines = stock.consuming_lines_from(product.id, start)
                print(f"  {product.sku}: {len(lines)} line(s) from {start.isoformat()}")
            return 0

        report = RecalculationService(db).recalculate_all(
            [p.id for p in selected], triggered_by=args.actor
        )
    finally:
        db.close()

    print(f"Products recalculated: {len(report.results)}")
    print(f"Lines changed:         {report.lines_changed}")
    print(f"Cost caches refreshed: {len(report.cost_cache_changes)}")
    if report.failures:
        print(f"Failures:              {len(report.failures)}", file=sys.stderr)
        for product_id, message in sorted(report.failures.items()):
            print(f"  product {product_id}: {message}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
