"""
Staging sweeper background worker.

Every interval:
- deletes staging records past their 24 hour expiry
- asks the gateway about PENDING records that never received a webhook
- settles COMPLETED records that were never credited
"""
import asyncio
import signal
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog

from smm_panel.config import Settings, get_settings
from smm_panel.core.reconciliation import PaymentReconciler
from smm_panel.core.staging import PaymentStagingStore
from smm_panel.integrations.zenopay_client import GatewayError
from smm_panel.monitoring.logging import setup_logging
from smm_panel.monitoring.metrics import metrics
from smm_panel.services import build_services

logger = structlog.get_logger(__name__)


async def run_sweep_once(
    store: PaymentStagingStore,
    reconciler: PaymentReconciler,
    settings: Settings,
) -> Dict[str, Any]:
    """
    Run one sweep.

    Args:
        store: Payment staging store
        reconciler: Reconciler used to re-verify stale records
        settings: Application settings

    Returns:
        Dict[str, Any]: Purged count, records re-checked and their outcomes
    """
    logger.info("staging_sweep_started")

    purged = await store.purge_expired()
    metrics.record_purged(purged)

    older_than = timedelta(minutes=settings.sweeper_pending_after_minutes)
    # Listed before re-verification so a record settles at most once per sweep
    unsettled = await store.list_unsettled_completed(
        older_than=older_than,
        limit=settings.sweeper_batch_size,
    )
    stale = await store.list_stale_pending(
        older_than=older_than,
        limit=settings.sweeper_batch_size,
    )

    outcomes: Counter[str] = Counter()
    for record in stale:
        try:
            outcome = (await reconciler.reverify_pending(record.order_id)).value
        except GatewayError as e:
            logger.warning(
                "staging_reverify_failed",
                order_id=record.order_id,
                error=str(e),
            )
            outcome = "gateway_error"
        outcomes[outcome] += 1
        metrics.record_reverified(outcome)

    for record in unsettled:
        try:
            outcome = (await reconciler.settle(record.order_id)).value
        except GatewayError as e:
            logger.warning(
                "staging_resettle_failed",
                order_id=record.order_id,
                error=str(e),
            )
            outcome = "gateway_error"
        outcomes[outcome] += 1
        metrics.record_reverified(outcome)

    result = {
        "purged": purged,
        "reverified": len(stale),
        "resettled": len(unsettled),
        "outcomes": dict(outcomes),
    }
    logger.info("staging_sweep_completed", **result)
    return result


async def start_staging_sweeper(
    settings: Optional[Settings] = None, run_once: bool = False
) -> None:
    """
    Start the staging sweeper.

    Args:
        settings: Application settings (defaults to environment settings)
        run_once: Run a single sweep and exit
    """
    settings = settings or get_settings()
    setup_logging(settings)
    services = build_services(settings)

    logger.info(
        "staging_sweeper_starting",
        interval_seconds=settings.sweeper_interval_seconds,
        run_once=run_once,
    )

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("staging_sweeper_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await services.database.init_db()
        while running:
            try:
                await run_sweep_once(services.store, services.reconciler, settings)
            except Exception as e:
                # Keep the worker alive; the next sweep retries
                logger.error("staging_sweep_error", error=str(e))

            if run_once:
                break

            remaining = settings.sweeper_interval_seconds
            while remaining > 0 and running:
                sleep_time = min(remaining, 5)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time
    finally:
        await services.close()
        logger.info("staging_sweeper_stopped")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Payment staging sweeper")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--interval", type=int, default=None, help="Seconds between sweeps (overrides settings)"
    )
    args = parser.parse_args()

    worker_settings = get_settings()
    if args.interval is not None:
        worker_settings = worker_settings.model_copy(
            update={"sweeper_interval_seconds": args.interval}
        )

    asyncio.run(start_staging_sweeper(worker_settings, run_once=args.once))
