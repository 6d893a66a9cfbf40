"""Construction of the shared services used by the API and the workers."""
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis
import structlog

from smm_panel.config import Settings
from smm_panel.core.ledger import BalanceLedger
from smm_panel.core.locks import build_lock_provider
from smm_panel.core.reconciliation import PaymentReconciler
from smm_panel.core.staging import PaymentStagingStore
from smm_panel.database.connection import Database
from smm_panel.integrations.zenopay_client import ZenoPayClient
from smm_panel.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    database: Database
    gateway: ZenoPayClient
    store: PaymentStagingStore
    ledger: BalanceLedger
    reconciler: PaymentReconciler
    health_check: HealthCheck
    redis_client: Optional[aioredis.Redis] = None

    async def close(self) -> None:
        """Release HTTP, Redis and database connections."""
        await self.gateway.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.database.close()
        logger.info("services_closed")


def build_services(
    settings: Settings, http_client: Optional[httpx.AsyncClient] = None
) -> Services:
    """
    Wire the services for one process.

    Args:
        settings: Application settings
        http_client: Optional httpx client for the gateway

    Returns:
        Services: Constructed services (no connection is opened yet)
    """
    database = Database(settings)
    gateway = ZenoPayClient.from_settings(settings, http_client=http_client)

    redis_client = None
    if settings.lock_backend == "redis":
        redis_client = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    lock_provider = build_lock_provider(settings, redis_client)

    store = PaymentStagingStore(database.session_factory, ttl_hours=settings.staging_ttl_hours)
    ledger = BalanceLedger(database.session_factory, lock_provider)

    return Services(
        settings=settings,
        database=database,
        gateway=gateway,
        store=store,
        ledger=ledger,
        reconciler=PaymentReconciler(settings, gateway, store, ledger),
        health_check=HealthCheck(database, settings, redis_client),
        redis_client=redis_client,
    )
