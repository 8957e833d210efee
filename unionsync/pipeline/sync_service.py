"""
Union Sync: Card Sync Orchestration

Ties the paginated fetcher to the reconciler. Two phases per run: fetch the
whole matching catalog into memory, then reconcile it item by item. A dry run
stops after the fetch and never opens a database session.

This layer is the failure boundary: every public method returns a structured
result and never lets an exception escape.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unionsync.config import settings
from unionsync.pipeline.card_store import CardStats, CardStore
from unionsync.pipeline.reconciler import CardReconciler, SyncProgress, SyncSummary
from unionsync.pipeline.tcg_api import (
    ConnectivityError,
    FetchProgress,
    TCGApiClient,
    TCGApiConfig,
)

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class FullSyncResult(BaseModel):
    success: bool
    dry_run: bool = False
    items_fetched: int = 0
    summary: Optional[SyncSummary] = None
    error: Optional[str] = None
    message: Optional[str] = None


class NameSyncResult(BaseModel):
    success: bool
    items_fetched: int = 0
    summary: Optional[SyncSummary] = None
    error: Optional[str] = None
    message: Optional[str] = None


class CardSyncResult(BaseModel):
    success: bool
    card_id: str
    was_created: Optional[bool] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Progress logging
# ---------------------------------------------------------------------------


def _log_fetch_progress(progress: FetchProgress) -> None:
    logger.info(
        "sync_fetch_progress",
        page=progress.page,
        percent=progress.percent,
        fetched=progress.cards_fetched,
        total=progress.total_count,
    )


def _log_reconcile_progress(progress: SyncProgress) -> None:
    logger.debug(
        "sync_reconcile_progress",
        percent=progress.percent,
        current=progress.current,
        total=progress.total,
        card=progress.current_card,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CardSyncService:
    """
    Entry points for catalog synchronization.

    Assumes at most one sync runs against a database at a time; concurrent
    runs race on the same external_id and the last writer wins.

    Usage:
        service = CardSyncService(session_factory)
        result = await service.run_full_sync(delay_ms=1000)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        api_config: TCGApiConfig | None = None,
    ):
        self._session_factory = session_factory
        self._api_config = api_config or TCGApiConfig.from_settings()

    def _client(self) -> TCGApiClient:
        return TCGApiClient(self._api_config)

    async def _reconcile(self, items: list[dict]) -> SyncSummary:
        async with self._session_factory() as session:
            reconciler = CardReconciler(CardStore(session))
            return await reconciler.reconcile(items, on_progress=_log_reconcile_progress)

    async def run_full_sync(
        self,
        name: str | None = None,
        delay_ms: int | None = None,
        dry_run: bool = False,
        preflight: bool | None = None,
    ) -> FullSyncResult:
        """
        Fetch the whole catalog (optionally name-filtered) and upsert it.

        Args:
            name: Optional card name filter.
            delay_ms: Pause between page requests; defaults to SYNC_DELAY_MS.
            dry_run: Fetch and count only; nothing is written.
            preflight: Probe connectivity first; defaults to SYNC_PREFLIGHT_CHECK.
        """
        delay = settings.SYNC_DELAY_MS if delay_ms is None else delay_ms
        check = settings.SYNC_PREFLIGHT_CHECK if preflight is None else preflight

        logger.info("sync_full_start", name=name, delay_ms=delay, dry_run=dry_run)

        try:
            async with self._client() as client:
                if check and not await client.test_connection():
                    raise ConnectivityError("Cannot connect to TCG API")

                cards = await client.fetch_all(
                    name=name,
                    delay_ms=delay,
                    on_progress=_log_fetch_progress,
                )

            if dry_run:
                logger.info("sync_full_dry_run_complete", items_fetched=len(cards))
                return FullSyncResult(
                    success=True,
                    dry_run=True,
                    items_fetched=len(cards),
                    message="Dry run completed - no cards were saved",
                )

            summary = await self._reconcile(cards)

        except Exception as e:
            logger.error(
                "sync_full_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return FullSyncResult(success=False, dry_run=dry_run, error=str(e))

        logger.info(
            "sync_full_complete",
            items_fetched=len(cards),
            saved=summary.saved,
            updated=summary.updated,
            errors=summary.errors,
        )
        return FullSyncResult(
            success=True,
            dry_run=False,
            items_fetched=len(cards),
            summary=summary,
        )

    async def run_name_sync(self, name: str, delay_ms: int | None = None) -> NameSyncResult:
        """
        Fetch and upsert every card matching name. No dry-run on this path.

        Zero matches is a success with an empty summary.
        """
        delay = settings.SYNC_DELAY_MS if delay_ms is None else delay_ms
        logger.info("sync_name_start", name=name)

        try:
            async with self._client() as client:
                cards = await client.fetch_all(name=name, delay_ms=delay)

            logger.info("sync_name_matches", name=name, matches=len(cards))
            if not cards:
                return NameSyncResult(
                    success=True,
                    items_fetched=0,
                    summary=SyncSummary(),
                    message=f'No cards found matching "{name}"',
                )

            summary = await self._reconcile(cards)

        except Exception as e:
            logger.error(
                "sync_name_failed",
                name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return NameSyncResult(success=False, error=str(e))

        return NameSyncResult(success=True, items_fetched=len(cards), summary=summary)

    async def run_card_sync(self, card_id: str) -> CardSyncResult:
        """Fetch one card by catalog id and upsert it."""
        logger.info("sync_card_start", card_id=card_id)

        try:
            async with self._client() as client:
                raw = await client.get_card_by_id(card_id)

            if raw is None:
                return CardSyncResult(
                    success=False,
                    card_id=card_id,
                    error=f'No card found with id "{card_id}"',
                )

            async with self._session_factory() as session:
                outcome = await CardReconciler(CardStore(session)).reconcile_one(raw)

        except Exception as e:
            logger.error(
                "sync_card_failed",
                card_id=card_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CardSyncResult(success=False, card_id=card_id, error=str(e))

        logger.info("sync_card_complete", card_id=card_id, was_created=outcome.was_created)
        return CardSyncResult(success=True, card_id=card_id, was_created=outcome.was_created)

    async def get_stats(self) -> CardStats:
        """Aggregate counts over the local cards table. Database errors propagate."""
        async with self._session_factory() as session:
            return await CardStore(session).stats()

    async def test_connection(self) -> bool:
        async with self._client() as client:
            return await client.test_connection()
