"""
Re-apply restaurant order/revenue counters for orders that were persisted
without them (``stats_applied: false``). Safe to run repeatedly.

Usage: python reconcile_stats.py [--limit N]
"""
import argparse
import logging

import database
from orders import reconcile_restaurant_stats


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1].strip())
    parser.add_argument("--limit", type=int, default=None, help="maximum number of orders to process")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s %(name)s: %(message)s")
    if database.db is None:
        raise SystemExit("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    result = reconcile_restaurant_stats(limit=args.limit)
    print(f"checked={result['checked']} applied={result['applied']} failed={len(result['failed'])}")
    return 0 if not result["failed"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
