"""
Union Sync: Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory SQLite database (aiosqlite) with the cards table
- Raw catalog item factory
- respx responder that serves a fake paginated catalog
- Async test support via pytest-asyncio
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from unionsync.config import settings
from unionsync.models import Base, Card
from unionsync.pipeline.tcg_api import TCGApiConfig


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

BASE_URL = settings.TCG_API_BASE_URL


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for anyio tests."""
    return "asyncio"


@pytest.fixture
def api_config() -> TCGApiConfig:
    """Client config pointing at the (mocked) default base URL, no credential."""
    return TCGApiConfig(base_url=BASE_URL, page_size=100)


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory SQLite engine with all tables created.

    StaticPool keeps every session on the same connection, so separate
    sessions see the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def count_cards(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[], Any]:
    """Async helper returning the number of rows in the cards table."""

    async def _count() -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Card))
            return int(result.scalar_one())

    return _count


# ---------------------------------------------------------------------------
# Catalog Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_raw_card() -> Callable[..., dict[str, Any]]:
    """Factory for raw API card items; keyword overrides replace fields."""

    def _make(n: int, **overrides: Any) -> dict[str, Any]:
        card: dict[str, Any] = {
            "id": f"UE01BT-{n:03d}",
            "code": f"UE01BT/HTR-1-{n:03d}",
            "url": f"https://apitcg.com/union-arena/cards/UE01BT-{n:03d}",
            "name": f"Hunter {n}",
            "rarity": "R" if n % 2 else "C",
            "ap": "1",
            "type": "Character" if n % 3 else "Event",
            "bp": "2500",
            "affinity": "Hunter Association",
            "effect": f"[Activate: Main] Draw {n % 3 + 1} card(s).",
            "trigger": "-",
            "images": {
                "small": f"https://images.apitcg.com/ua/UE01BT-{n:03d}-small.png",
                "large": f"https://images.apitcg.com/ua/UE01BT-{n:03d}-large.png",
            },
            "set": {"name": "HUNTER x HUNTER"},
            "needEnergy": {"value": "1", "logo": "https://images.apitcg.com/ua/energy-blue.png"},
        }
        card.update(overrides)
        return card

    return _make


@pytest.fixture
def catalog_responder() -> Callable[..., Callable[[httpx.Request], httpx.Response]]:
    """
    Build a respx side_effect serving cards page by page.

    The responder honours page/limit/name query params and reports the total
    number of matching cards in totalCount, like the real API.
    """

    def _build(cards: list[dict[str, Any]]) -> Callable[[httpx.Request], httpx.Response]:
        def _respond(request: httpx.Request) -> httpx.Response:
            params = request.url.params
            page = int(params.get("page", 1))
            limit = int(params.get("limit", 100))
            name = params.get("name")
            card_id = params.get("id")

            matching = cards
            if name:
                matching = [c for c in matching if name.lower() in str(c.get("name", "")).lower()]
            if card_id:
                matching = [c for c in matching if c.get("id") == card_id]

            start = (page - 1) * limit
            return httpx.Response(
                200,
                json={"data": matching[start:start + limit], "totalCount": len(matching)},
            )

        return _respond

    return _build
