"""
Pytest configuration and fixtures.

Tests run against a file-backed SQLite database, in-process locks and a
scripted ZenoPay behind ``httpx.MockTransport``; no external service is needed.
"""
import asyncio
import json
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from smm_panel.api.main import create_app
from smm_panel.config import Settings
from smm_panel.core.ledger import BalanceLedger
from smm_panel.core.locks import LocalLockProvider
from smm_panel.core.reconciliation import PaymentReconciler
from smm_panel.core.staging import PaymentStagingStore
from smm_panel.database import Database, User
from smm_panel.integrations.zenopay_client import ZenoPayClient

PAY_URL = "https://zeno.test/api/payments/mobile_money_tanzania"
STATUS_URL = "https://zeno.test/api/payments/order-status"

Handler = Callable[[httpx.Request], httpx.Response]


class ZenoPayStub:
    """
    Scripted ZenoPay API.

    By default initiation succeeds and echoes the order id, and the status
    endpoint reports the order COMPLETED for ``status_amount``. Replace
    ``initiate_handler`` or ``status_handler`` to script other answers.
    """

    def __init__(self) -> None:
        self.initiate_requests: List[httpx.Request] = []
        self.status_requests: List[httpx.Request] = []
        self.status_amount: Any = "1000"
        self.initiate_handler: Handler = self.accept_initiate
        self.status_handler: Handler = self.completed_status

    def accept_initiate(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": "success",
                "resultcode": "000",
                "message": "Request in progress. You will receive a callback shortly",
                "order_id": payload["order_id"],
            },
        )

    def completed_status(self, request: httpx.Request) -> httpx.Response:
        order_id = request.url.params.get("order_id")
        return httpx.Response(
            200,
            json={
                "reference": "0936183435",
                "resultcode": "000",
                "result": "SUCCESS",
                "message": "Order fetch successful",
                "data": [
                    {
                        "order_id": order_id,
                        "amount": self.status_amount,
                        "payment_status": "COMPLETED",
                        "transid": "CEJ3I3SETSN",
                        "channel": "MPESA-TZ",
                        "msisdn": "255712345678",
                    }
                ],
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("order-status"):
            self.status_requests.append(request)
            return self.status_handler(request)
        self.initiate_requests.append(request)
        return self.initiate_handler(request)

    def initiate_payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.initiate_requests]


async def eventually(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Wait until an async predicate holds (background tasks finish after the response)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        if await predicate():
            return
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def count_rows(database: Database, model: Any) -> int:
    async with database.session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def create_user(
    database: Database,
    email: str = "jane@example.com",
    balance: Decimal = Decimal("2500.00"),
    name: str = "Jane",
) -> User:
    async with database.session_factory() as session:
        user = User(name=name, email=email, phone="+255712345678", balance=balance)
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        lock_backend="local",
        zeno_api_key="test-api-key",
        zeno_pay_url=PAY_URL,
        zeno_status_url=STATUS_URL,
        status_query_attempts=3,
        status_query_backoff=0,
        public_domain="panel.example.com",
        app_name="smm-panel-test",
        app_env="test",
        log_level="INFO",
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """Create test database with all tables."""
    db = Database(test_settings)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def zeno() -> ZenoPayStub:
    return ZenoPayStub()


@pytest_asyncio.fixture
async def http_client(zeno: ZenoPayStub) -> AsyncGenerator[httpx.AsyncClient, Any]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(zeno.handler)) as client:
        yield client


@pytest.fixture
def gateway(test_settings: Settings, http_client: httpx.AsyncClient) -> ZenoPayClient:
    return ZenoPayClient.from_settings(test_settings, http_client=http_client)


@pytest.fixture
def store(database: Database) -> PaymentStagingStore:
    return PaymentStagingStore(database.session_factory, ttl_hours=24)


@pytest.fixture
def ledger(database: Database) -> BalanceLedger:
    return BalanceLedger(database.session_factory, LocalLockProvider(blocking_timeout=5))


@pytest.fixture
def reconciler(
    test_settings: Settings,
    gateway: ZenoPayClient,
    store: PaymentStagingStore,
    ledger: BalanceLedger,
) -> PaymentReconciler:
    return PaymentReconciler(test_settings, gateway, store, ledger)


@pytest_asyncio.fixture
async def user(database: Database) -> User:
    """Registered user with a 2500 TZS balance."""
    return await create_user(database)


@pytest_asyncio.fixture
async def app(test_settings: Settings, http_client: httpx.AsyncClient) -> AsyncGenerator[Any, Any]:
    """Application wired to the test database and the scripted gateway."""
    application = create_app(test_settings, http_client=http_client)
    # ASGITransport does not run the lifespan
    await application.state.services.database.init_db()
    yield application
    await application.state.services.close()


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def api_user(app: Any) -> User:
    return await create_user(app.state.services.database)


def webhook_payload(
    order_id: str, status: str = "COMPLETED", reference: Optional[str] = "REF1"
) -> Dict[str, Any]:
    return {"order_id": order_id, "payment_status": status, "reference": reference}
