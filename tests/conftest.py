import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from answerwatch.core.config import settings

# Override settings for tests
settings.fernet_key = "KxJCocbnA3KD20pkgSN3uUZybasKP1X9lAJDX4oLxoQ="  # test-only Fernet key
settings.app_env = "development"
settings.openai_api_key = ""
settings.analysis_backoff_seconds = 0

import answerwatch.models  # noqa: E402, F401
from answerwatch.core.encryption import encrypt_value  # noqa: E402
from answerwatch.db.base import Base  # noqa: E402
from answerwatch.models import Business, Competitor, Platform, Prompt, Topic  # noqa: E402
from answerwatch.providers.base import ProviderResponse, TokenUsage  # noqa: E402
from answerwatch.services.repository import ExecutionRepository  # noqa: E402

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory(tmp_path):
    """A fresh SQLite file database per test, with foreign keys enforced as on PostgreSQL."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'answerwatch.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repo(session_factory):
    return ExecutionRepository(session_factory)


@pytest.fixture
def seed(session_factory):
    """Create a business with prompts, platforms and competitors; returns their ids."""

    async def _seed(
        *,
        name: str = "Tailscale",
        website: str | None = "https://tailscale.com",
        prompts: int = 1,
        platforms: tuple[str, ...] = ("chatgpt",),
        competitors: tuple[tuple[str, str | None, bool | None], ...] = (("Netbird", "https://netbird.io", True),),
        next_execution_time: datetime | None = None,
        refresh_period_days: int = 1,
    ) -> dict:
        async with session_factory() as db:
            business = Business(
                name=name,
                website=website,
                refresh_period_days=refresh_period_days,
                next_execution_time=next_execution_time,
            )
            db.add(business)
            await db.flush()

            topic = Topic(business_id=business.id, name="Remote access")
            db.add(topic)
            await db.flush()

            prompt_rows = [
                Prompt(business_id=business.id, topic_id=topic.id, text=f"What is the best mesh VPN? ({i})")
                for i in range(prompts)
            ]
            platform_rows = [
                Platform(business_id=business.id, platform_key=key, api_key=encrypt_value(f"key-{key}"))
                for key in platforms
            ]
            competitor_rows = [
                Competitor(business_id=business.id, name=c_name, website=c_site, is_active=active)
                for c_name, c_site, active in competitors
            ]
            db.add_all(prompt_rows + platform_rows + competitor_rows)
            await db.commit()
            return {
                "business_id": business.id,
                "prompt_ids": [p.id for p in prompt_rows],
                "platform_ids": [p.id for p in platform_rows],
                "competitor_ids": [c.id for c in competitor_rows],
            }

    return _seed


# ── Fakes ──────────────────────────────────────────────────────────


class FakeCaller:
    """Stands in for ProviderCaller; records calls and returns a canned answer."""

    def __init__(self, text: str = "Tailscale is great. See https://tailscale.com/kb/1017/install", sources=None):
        self.text = text
        self.sources = sources or []
        self.calls: list[tuple[int, int]] = []

    async def call(self, platform, prompt, *, business_id, execution_id=None, **kwargs):
        self.calls.append((platform.id, execution_id))
        return ProviderResponse(
            text=self.text,
            model="gpt-4o",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20),
            sources=list(self.sources),
        )


class FakeAnalysisClient:
    """Returns the given payload as JSON, or raises it if it is an exception."""

    def __init__(self, payload):
        self.payload = payload
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        if isinstance(self.payload, Exception):
            raise self.payload
        return json.dumps(self.payload)


def analysis_factory(client):
    async def _factory(business_id, execution_id):
        return client

    return _factory


async def no_metadata(candidates):
    return {}
