"""
Union Sync: Card Reconciler

Maps raw catalog items onto local card rows. For each item, in order:

1. Parse and transform the raw item into card column values.
2. Look up an existing card by external_id.
3. Overwrite it if found, otherwise insert a new row.

A failing item is recorded in the SyncSummary and skipped; it never aborts
the run. Items are processed strictly one at a time, which is what keeps
external_id unique without any locking.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from unionsync.models.card import Card
from unionsync.pipeline.card_store import CardStore
from unionsync.pipeline.tcg_api import percent_complete

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Remote item model
# ---------------------------------------------------------------------------


def _coerce_text(value: Any) -> str | None:
    """Accept strings and plain numbers; the API is loose about both."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        raise ValueError("expected text, got a boolean")
    if isinstance(value, (int, float)):
        return str(value)
    raise ValueError(f"expected text, got {type(value).__name__}")


class _RemoteModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RemoteImages(_RemoteModel):
    small: Optional[str] = None
    large: Optional[str] = None


class RemoteSet(_RemoteModel):
    name: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v: Any) -> str | None:
        return _coerce_text(v)


class RemoteEnergy(_RemoteModel):
    value: Optional[str] = None
    logo: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> str | None:
        return _coerce_text(v)


class RemoteCard(_RemoteModel):
    """
    One card as returned by the Union Arena API.

    Every field may be missing. description and imageUrl are not part of the
    documented payload but are honoured when present.
    """
    id: Optional[str] = None
    code: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    rarity: Optional[str] = None
    ap: Optional[str] = None
    type: Optional[str] = None
    bp: Optional[str] = None
    affinity: Optional[str] = None
    effect: Optional[str] = None
    trigger: Optional[str] = None
    images: Optional[RemoteImages] = None
    set: Optional[RemoteSet] = None
    needEnergy: Optional[RemoteEnergy] = None
    description: Optional[str] = None
    imageUrl: Optional[str] = None

    @field_validator(
        "id", "code", "url", "name", "rarity", "ap", "type", "bp",
        "affinity", "effect", "trigger", "description", "imageUrl",
        mode="before",
    )
    @classmethod
    def coerce_scalars(cls, v: Any) -> str | None:
        return _coerce_text(v)


# ---------------------------------------------------------------------------
# Summary and progress
# ---------------------------------------------------------------------------


class SyncErrorDetail(BaseModel):
    """Why one item could not be reconciled."""
    card_name: Optional[str] = None
    card_id: Optional[str] = None
    error: str


class SyncSummary(BaseModel):
    """Counts for one reconcile run. saved + updated + errors == items processed."""
    total: int = 0
    saved: int = 0
    updated: int = 0
    errors: int = 0
    error_details: list[SyncErrorDetail] = Field(default_factory=list)


class SyncProgress(BaseModel):
    """Progress after one item; summary is a snapshot, not the live object."""
    current: int
    total: int
    percent: int
    current_card: Optional[str] = None
    summary: SyncSummary


class ReconcileOutcome(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    record: Card
    was_created: bool


SyncProgressCallback = Callable[[SyncProgress], Any]


def _identity(raw: Any, key: str) -> str | None:
    value = raw.get(key) if isinstance(raw, dict) else None
    return None if value is None else str(value)


def describe_error(exc: Exception) -> str:
    """Single-line failure message; validation errors list each bad field."""
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'card'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class CardReconciler:
    """
    Upserts raw catalog items into the card store.

    Usage:
        reconciler = CardReconciler(CardStore(session))
        summary = await reconciler.reconcile(items)
    """

    def __init__(self, store: CardStore):
        self._store = store

    @staticmethod
    def transform_card(raw: dict[str, Any]) -> dict[str, Any]:
        """
        Map a raw API item onto card column values.

        Missing source fields become None. The legacy description and
        image_url columns pass through as sent; CardRecord fills them from
        effect and the large image when they are empty.

        Raises:
            pydantic.ValidationError: a field has an unusable shape.
        """
        card = RemoteCard.model_validate(raw)
        images = card.images or RemoteImages()
        card_set = card.set or RemoteSet()
        energy = card.needEnergy or RemoteEnergy()

        return {
            "external_id": card.id,
            "code": card.code,
            "url": card.url,
            "name": card.name,
            "rarity": card.rarity,
            "ap": card.ap,
            "type": card.type,
            "bp": card.bp,
            "affinity": card.affinity,
            "effect": card.effect,
            "trigger": card.trigger,
            "image_small": images.small,
            "image_large": images.large,
            "set_name": card_set.name,
            "need_energy_value": energy.value,
            "need_energy_logo": energy.logo,
            "description": card.description,
            "image_url": card.imageUrl,
            "card_number": card.code,
        }

    async def reconcile_one(self, raw: dict[str, Any]) -> ReconcileOutcome:
        """
        Insert or overwrite a single item. Failures propagate to the caller.

        Returns:
            ReconcileOutcome with the stored card and whether it was new.
        """
        fields = self.transform_card(raw)
        external_id = fields["external_id"]

        existing = await self._store.find_by_external_id(external_id)
        if existing is not None:
            card = await self._store.update_by_external_id(external_id, fields, card=existing)
            return ReconcileOutcome(record=card, was_created=False)

        card = await self._store.insert(fields)
        return ReconcileOutcome(record=card, was_created=True)

    async def iter_reconcile(
        self,
        items: Sequence[dict[str, Any]],
        summary: SyncSummary,
    ) -> AsyncIterator[SyncProgress]:
        """
        Reconcile items in order, yielding progress after each one.

        summary is updated in place as items are processed.
        """
        total = len(items)

        for index, raw in enumerate(items, start=1):
            card_name = _identity(raw, "name")
            try:
                outcome = await self.reconcile_one(raw)
            except Exception as e:
                summary.errors += 1
                summary.error_details.append(
                    SyncErrorDetail(
                        card_name=card_name,
                        card_id=_identity(raw, "id"),
                        error=describe_error(e),
                    )
                )
                logger.warning(
                    "reconcile_item_failed",
                    card_name=card_name,
                    card_id=_identity(raw, "id"),
                    error=describe_error(e),
                    error_type=type(e).__name__,
                )
            else:
                if outcome.was_created:
                    summary.saved += 1
                else:
                    summary.updated += 1

            if index % 10 == 0:
                logger.info("reconcile_progress", processed=index, total=total)

            yield SyncProgress(
                current=index,
                total=total,
                percent=percent_complete(index, total),
                current_card=card_name,
                summary=summary.model_copy(deep=True),
            )

    async def reconcile(
        self,
        items: Sequence[dict[str, Any]],
        on_progress: SyncProgressCallback | None = None,
    ) -> SyncSummary:
        """
        Upsert every item, continuing past per-item failures.

        Args:
            items: Raw catalog items, typically from TCGApiClient.fetch_all.
            on_progress: Optional subscriber for per-item SyncProgress. Its
                exceptions are logged and otherwise ignored.

        Returns:
            SyncSummary with saved/updated/error counts and error details.
        """
        summary = SyncSummary(total=len(items))
        logger.info("reconcile_start", total=summary.total)

        async for progress in self.iter_reconcile(items, summary):
            if on_progress is None:
                continue
            try:
                on_progress(progress)
            except Exception as e:
                logger.warning(
                    "reconcile_progress_callback_failed",
                    current=progress.current,
                    error=str(e),
                )

        logger.info(
            "reconcile_complete",
            total=summary.total,
            saved=summary.saved,
            updated=summary.updated,
            errors=summary.errors,
        )
        return summary
