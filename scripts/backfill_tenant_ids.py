#!/usr/bin/env python3
"""
Tenant-id backfill from the command line.

Steps:
  1. Scan every registered table for rows without tenant_id
  2. Infer the owner of each row through its foreign keys
  3. Report (dry run) or write (apply) the result per table
  4. Route rows nobody can claim to the quarantine tenant

Usage:
    python scripts/backfill_tenant_ids.py                # dry run
    python scripts/backfill_tenant_ids.py --apply        # needs BACKFILL_TENANT_IDS_ALLOWED=true
    python scripts/backfill_tenant_ids.py --env production --apply
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger("tenant_id_backfill")


def main(apply=False, env="development"):
    from app import create_app

    return run(create_app(env), apply=apply)


def run(app, apply=False):
    """Run the backfill inside ``app`` and return a process exit code."""
    from app.core.exceptions import FeatureDisabledError
    from app.services.tenancy_services import get_services

    with app.app_context():
        services = get_services()
        logger.info("=" * 60)
        logger.info("Tenant-id backfill")
        logger.info("Mode: %s", "APPLY" if apply else "DRY RUN")
        logger.info("=" * 60)

        try:
            result = services.backfill.run("apply" if apply else "dry_run")
        except FeatureDisabledError as exc:
            logger.error("%s", exc)
            return 2

        for table in services.registry.names():
            updated = result["updated"].get(table, 0)
            quarantined = result["quarantined"].get(table, 0)
            ambiguous = result["ambiguous"].get(table, 0)
            if table in result["errors"]:
                logger.warning("  %-20s FAILED (%s)", table, result["errors"][table][:80])
            elif updated or quarantined or ambiguous:
                logger.info(
                    "  %-20s updated=%d quarantined=%d ambiguous=%d",
                    table, updated, quarantined, ambiguous,
                )
                if ambiguous:
                    logger.info("  %-20s ambiguous ids: %s", "", result["ambiguous_samples"].get(table))
            else:
                logger.info("  %-20s OK (no orphans)", table)

        logger.info("\n  Total updated:     %d", result["total_updated"])
        logger.info("  Total quarantined: %d", result["total_quarantined"])
        if result["quarantine_tenant_id"] is not None:
            logger.info("  Quarantine tenant: id=%d", result["quarantine_tenant_id"])
        return 1 if result["errors"] else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Tenant-id backfill")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--dry-run", action="store_true", help="Preview changes without writing (default)")
    group.add_argument("--apply", action="store_true", help="Write tenant_id values")
    parser.add_argument("--env", default=os.getenv("APP_ENV", "development"), help="Config name")
    args = parser.parse_args()
    sys.exit(main(apply=args.apply, env=args.env))
