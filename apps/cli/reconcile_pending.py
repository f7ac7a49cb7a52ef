import argparse
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from core.cache import IdempotencyCache, get_redis_client
from core.config import ConfigurationError, load_settings
from core.database import create_db_engine
from core.telemetry import configure_logging
from domains.payment.errors import PaymentError
from domains.payment.gateway import build_gateway
from domains.payment.service import PaymentService
from domains.payment.store import SqlPaymentStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Complete pending payments the gateway already reports as paid."
    )
    parser.add_argument("--older-than-minutes", type=int, default=30)
    parser.add_argument("--limit", type=int, default=100)
    return parser.parse_args(argv)


def reconcile(service: PaymentService, older_than_minutes: int, limit: int) -> int:
    logger.info(
        f" 🔍 Checking pending payments older than {older_than_minutes} minutes..."
    )
    try:
        summary = service.reconcile_pending(
            timedelta(minutes=older_than_minutes), limit=limit
        )
    except PaymentError as e:
        logger.error(f" ❌ Reconciliation aborted: {e.message}")
        return 1

    if not summary:
        logger.info(" ✅ Nothing pending. Nothing to reconcile.")
        return 0

    for outcome, count in sorted(summary.items()):
        logger.info(f"    {outcome}: {count}")
    logger.info(" 🎉 Reconciliation finished.")
    return 1 if summary.get("errors") else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    gateway = build_gateway(settings)
    store = SqlPaymentStore(create_db_engine(settings.database_url, settings.db_echo))
    cache = IdempotencyCache(
        get_redis_client(settings.redis_url), settings.idempotency_ttl_seconds
    )
    try:
        return reconcile(
            PaymentService(store, gateway, cache), args.older_than_minutes, args.limit
        )
    finally:
        if gateway is not None:
            gateway.close()


if __name__ == "__main__":
    sys.exit(main())
