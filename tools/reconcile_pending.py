"""
Poll the ledger for pending declarations that carry a transaction hash and
record their outcome.

A declaration drops out of the scan as soon as it is terminal; losing a
race with the HTTP service is harmless because finalize is idempotent.

Usage: python tools/reconcile_pending.py [--interval 5] [--limit 100] [--once]
"""
import argparse
import logging
import time

from amlchain.errors import LedgerUnavailable, StoreUnavailable
from amlchain_api.config import load_settings
from amlchain_api.event_log import record_finalize
from amlchain_api.logging_config import configure_logging
from amlchain_api.main import build_services

logger = logging.getLogger("amlchain.reconcile_pending")


def run_once(services, limit: int) -> int:
    """One scan; returns how many declarations were finalized."""
    applied = 0
    for result in services.recon.reconcile_unsettled(services.observer, limit):
        record_finalize(services.events, result, "poller", services.clock())
        if result.applied:
            applied += 1
    return applied


def main():
    parser = argparse.ArgumentParser(description="Reconcile pending declarations against the ledger")
    parser.add_argument("--interval", type=float, default=5.0, help="Seconds between scans")
    parser.add_argument("--limit", type=int, default=100, help="Declarations per scan")
    parser.add_argument("--once", action="store_true", help="Run a single scan and exit")
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    services = build_services(settings)
    if services.observer is None:
        raise SystemExit("LEDGER_RPC_URL is not set")
    services.store.init_schema()

    try:
        while True:
            try:
                applied = run_once(services, args.limit)
                logger.info("reconcile scan finished, %d finalized", applied)
            except (LedgerUnavailable, StoreUnavailable) as e:
                logger.warning("reconcile scan skipped: %s", e.message)
            if args.once:
                break
            time.sleep(args.interval)
    finally:
        services.store.close()


if __name__ == "__main__":
    main()
