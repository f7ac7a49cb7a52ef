from typing import Callable, Dict, Iterator, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine

from apps.api.main import create_app
from core.auth import SupabaseAuthClient
from core.cache import IdempotencyCache
from core.config import Settings
from core.database import create_db_engine, init_db
from domains.payment.gateway import RazorpayClient
from domains.payment.store import SqlPaymentStore
from tests.support import (
    KEY_ID,
    KEY_SECRET,
    TOKEN,
    InMemoryRedis,
    RazorpayStub,
    make_settings,
    supabase_auth_handler,
)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine: Engine) -> SqlPaymentStore:
    return SqlPaymentStore(engine)


@pytest.fixture
def redis_client() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def cache(redis_client: InMemoryRedis) -> IdempotencyCache:
    return IdempotencyCache(redis_client)


@pytest.fixture
def razorpay() -> RazorpayStub:
    return RazorpayStub()


@pytest.fixture
def gateway(razorpay: RazorpayStub) -> Iterator[RazorpayClient]:
    client = RazorpayClient(
        KEY_ID,
        KEY_SECRET,
        retry_delay=0.0,
        transport=httpx.MockTransport(razorpay),
    )
    yield client
    client.close()


@pytest.fixture
def auth_client() -> SupabaseAuthClient:
    return SupabaseAuthClient(
        "https://project.supabase.co",
        "service-role-key",
        transport=httpx.MockTransport(supabase_auth_handler),
    )


@pytest.fixture
def make_client(
    engine: Engine,
    store: SqlPaymentStore,
    gateway: RazorpayClient,
    cache: IdempotencyCache,
    auth_client: SupabaseAuthClient,
) -> Callable[..., TestClient]:
    def _make(
        settings: Optional[Settings] = None, with_gateway: bool = True
    ) -> TestClient:
        settings = settings or make_settings()
        app = create_app(
            settings=settings,
            engine=engine,
            store=store,
            gateway=gateway if with_gateway else None,
            cache=cache,
            auth_client=auth_client,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}
