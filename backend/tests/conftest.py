import os
import sys
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Import app from the correct location
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

os.environ.setdefault("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
os.environ.setdefault("RECOVER_STALE_DEPOSITS_ON_STARTUP", "0")

from app.api.v1.deps import get_registrar, get_store  # noqa: E402
from app.core.config import WorkflowConfig  # noqa: E402
from app.core.roles import Actor  # noqa: E402
from app.services.manuscript_store import ManuscriptStore  # noqa: E402
from fake_supabase import FakeSupabase  # noqa: E402
from workflow_fixtures import Clock, FakeRegistrar, Workflow  # noqa: E402
from main import app  # noqa: E402

# === 全局测试配置 ===
# 中文注释:
# 1. 所有测试都跑在内存 PostgREST fake 上，不依赖真实 Supabase。
# 2. 时间通过 Clock 注入，逾期/陈旧判断可确定性复现。
# 3. API 测试用 jose 签发与后端相同算法/受众的 JWT。


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(registrar_timeout_seconds=0.2, public_base_url="https://journal.example.org")


@pytest.fixture
def store(fake_db, workflow_config, clock) -> ManuscriptStore:
    return ManuscriptStore(fake_db, config=workflow_config, now_fn=clock)


@pytest.fixture
def registrar() -> FakeRegistrar:
    return FakeRegistrar()


@pytest.fixture
def author() -> Actor:
    return Actor(id="author-1", roles=frozenset({"author"}), email="author@example.org")


@pytest.fixture
def editor() -> Actor:
    return Actor(id="editor-1", roles=frozenset({"editor"}), email="editor@example.org")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", roles=frozenset({"admin"}), email="admin@example.org")


@pytest.fixture
def reviewers() -> list[Actor]:
    return [
        Actor(id=f"reviewer-{i}", roles=frozenset({"reviewer"}), email=f"r{i}@example.org")
        for i in range(1, 4)
    ]


@pytest_asyncio.fixture
async def client(store, registrar) -> AsyncGenerator:
    """
    提供一个注入内存存储与假注册方的异步测试客户端
    """
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_registrar] = lambda: registrar
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def workflow(store, registrar) -> Workflow:
    return Workflow(store, registrar)
