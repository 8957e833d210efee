"""
Union Sync: apitcg.com Union Arena API Client (Paginated Fetcher)

Walks the paginated /cards listing of the remote catalog and returns every
raw card item.

Base URL: https://apitcg.com/api/union-arena
Pagination: page + limit (fixed at 100 per page)

Termination: an empty page, or the running item count reaching the
totalCount reported by the FIRST page. Later totalCount values are ignored.

Rate limiting: a fixed delay between page requests. HTTP 429 and 5xx retry
the same page after twice that delay; the retry count is unbounded unless
SYNC_MAX_RETRIES is set. Anything else aborts the walk with FetchError.
"""

from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncIterator, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from unionsync.config import settings

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """A page request failed and the fetch was aborted."""

    def __init__(
        self,
        message: str,
        page: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.page = page
        self.status_code = status_code


class TransientFetchError(FetchError):
    """HTTP 429 or 5xx on a page request; the page may be retried."""


class ConnectivityError(FetchError):
    """The connectivity probe failed before a sync could start."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TCGApiConfig(BaseModel):
    """Connection settings for one TCGApiClient."""

    base_url: str
    api_key: str = ""
    timeout_seconds: float = 30.0
    page_size: int = Field(default=100, gt=0)
    user_agent: str = "UnionSync/0.1.0"
    max_retries: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def from_settings(cls) -> TCGApiConfig:
        return cls(
            base_url=settings.TCG_API_BASE_URL,
            api_key=settings.TCG_API_KEY,
            timeout_seconds=settings.TCG_API_TIMEOUT_SECONDS,
            page_size=settings.TCG_PAGE_SIZE,
            user_agent=settings.TCG_API_USER_AGENT,
            max_retries=settings.SYNC_MAX_RETRIES,
        )

    def headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["X-API-Key"] = self.api_key
        return headers


# ---------------------------------------------------------------------------
# Pydantic Response Models
# ---------------------------------------------------------------------------


class CardListResponse(BaseModel):
    """
    One page of the /cards listing.

    Items stay raw dicts: a single malformed card must not fail the whole
    page, so item parsing is left to the reconciler.
    """
    data: list[dict[str, Any]] = Field(default_factory=list)
    totalCount: Optional[int] = Field(default=None, ge=0)


class FetchProgress(BaseModel):
    """Progress after one completed page. total_count is None when unreported."""
    page: int
    cards_fetched: int
    total_count: Optional[int]
    percent: Optional[int]


class CardPage(BaseModel):
    """A fetched page together with the progress it produced."""
    items: list[dict[str, Any]]
    progress: FetchProgress


ProgressCallback = Callable[[FetchProgress], Any]


def percent_complete(done: int, total: int) -> int:
    """round(done / total * 100), rounding halves up. A zero total is complete."""
    if total <= 0:
        return 100
    ratio = Decimal(done) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class TCGApiClient:
    """
    Async client for the Union Arena card catalog.

    Usage:
        async with TCGApiClient(TCGApiConfig.from_settings()) as client:
            if await client.test_connection():
                cards = await client.fetch_all(delay_ms=1000)
    """

    def __init__(self, config: TCGApiConfig | None = None):
        self._config = config or TCGApiConfig.from_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> TCGApiConfig:
        return self._config

    async def __aenter__(self) -> TCGApiClient:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            headers=self._config.headers(),
            timeout=self._config.timeout_seconds,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -----------------------------------------------------------------------
    # Single requests
    # -----------------------------------------------------------------------

    async def fetch_page(self, params: dict[str, Any]) -> CardListResponse:
        """
        GET /cards once.

        Raises:
            TransientFetchError: HTTP 429 or >= 500.
            FetchError: any other HTTP error, network failure or malformed payload.
        """
        assert self._client is not None, "Client not initialized. Use 'async with'."

        page = params.get("page")
        try:
            response = await self._client.get("/cards", params=params)
        except httpx.RequestError as e:
            logger.error("tcg_api_request_error", page=page, error=str(e))
            raise FetchError(f"Failed to fetch cards: {e}", page=page) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientFetchError(
                f"Failed to fetch cards: HTTP {status}", page=page, status_code=status
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "tcg_api_http_error",
                page=page,
                status_code=status,
                body=response.text[:500],
            )
            raise FetchError(
                f"Failed to fetch cards: HTTP {status}", page=page, status_code=status
            ) from e

        try:
            return CardListResponse.model_validate(response.json())
        except ValueError as e:
            logger.error("tcg_api_malformed_page", page=page, error=str(e))
            raise FetchError(
                f"Failed to fetch cards: malformed response ({e})", page=page
            ) from e

    async def _fetch_page_with_retry(
        self,
        params: dict[str, Any],
        delay_ms: int,
    ) -> CardListResponse:
        """Retry the same page on 429/5xx, waiting delay_ms * 2 each time."""
        retry_wait_ms = delay_ms * 2
        retries = 0

        while True:
            try:
                return await self.fetch_page(params)
            except TransientFetchError as e:
                max_retries = self._config.max_retries
                if max_retries is not None and retries >= max_retries:
                    raise FetchError(
                        f"Failed to fetch cards: page {e.page} still failing "
                        f"after {retries + 1} attempts (HTTP {e.status_code})",
                        page=e.page,
                        status_code=e.status_code,
                    ) from e

                retries += 1
                logger.warning(
                    "tcg_api_transient_error",
                    page=e.page,
                    status_code=e.status_code,
                    retry=retries,
                    wait_ms=retry_wait_ms,
                )
                await asyncio.sleep(retry_wait_ms / 1000)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def iter_pages(
        self,
        name: str | None = None,
        delay_ms: int = 0,
    ) -> AsyncIterator[CardPage]:
        """
        Walk the listing page by page, yielding each non-empty page.

        Args:
            name: Optional card name filter, sent on every request.
            delay_ms: Pause between a completed page and the next request.

        Yields:
            CardPage with the page's raw items and cumulative progress.
        """
        if delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")

        page = 1
        fetched = 0
        total_count: int | None = None

        logger.info("tcg_api_fetch_all_start", name=name, delay_ms=delay_ms)

        while True:
            params: dict[str, Any] = {"page": page, "limit": self._config.page_size}
            if name:
                params["name"] = name

            response = await self._fetch_page_with_retry(params, delay_ms)

            if page == 1:
                total_count = response.totalCount
                logger.info("tcg_api_total_count", total_count=total_count)

            if not response.data:
                logger.info("tcg_api_empty_page", page=page)
                break

            fetched += len(response.data)
            progress = FetchProgress(
                page=page,
                cards_fetched=fetched,
                total_count=total_count,
                percent=(
                    percent_complete(fetched, total_count)
                    if total_count is not None
                    else None
                ),
            )
            logger.debug(
                "tcg_api_page_fetched",
                page=page,
                page_count=len(response.data),
                fetched_so_far=fetched,
                total=total_count,
            )
            yield CardPage(items=response.data, progress=progress)

            # Without a reported total only an empty page ends the walk
            if total_count is not None and fetched >= total_count:
                break

            page += 1
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

        logger.info("tcg_api_fetch_all_complete", name=name, total_cards=fetched)

    async def fetch_all(
        self,
        name: str | None = None,
        delay_ms: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch every card matching the optional name filter.

        Args:
            name: Optional card name filter.
            delay_ms: Pause between page requests in milliseconds.
            on_progress: Optional subscriber for per-page FetchProgress. Its
                exceptions are logged and otherwise ignored.

        Returns:
            Raw card items in the order the API returned them.

        Raises:
            FetchError: a page failed with a non-retryable error.
        """
        cards: list[dict[str, Any]] = []
        async for card_page in self.iter_pages(name=name, delay_ms=delay_ms):
            cards.extend(card_page.items)
            if on_progress is not None:
                try:
                    on_progress(card_page.progress)
                except Exception as e:
                    logger.warning(
                        "tcg_api_progress_callback_failed",
                        page=card_page.progress.page,
                        error=str(e),
                    )
        return cards

    async def get_card_by_id(self, card_id: str) -> dict[str, Any] | None:
        """Look up one card by its catalog id. Returns None when absent."""
        logger.info("tcg_api_fetch_card", card_id=card_id)
        response = await self.fetch_page({"id": card_id})
        return response.data[0] if response.data else None

    async def test_connection(self) -> bool:
        """Probe the API with a one-item page. Never raises for network trouble."""
        assert self._client is not None, "Client not initialized. Use 'async with'."

        try:
            response = await self._client.get("/cards", params={"limit": 1})
        except httpx.HTTPError as e:
            logger.warning("tcg_api_connection_test_failed", error=str(e))
            return False

        if response.status_code != 200:
            logger.warning(
                "tcg_api_connection_test_failed", status_code=response.status_code
            )
            return False
        return True
