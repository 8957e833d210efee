"""
Union Sync: Card Store

Persistence collaborator for the reconciler. Point lookups and point writes
against the cards table, keyed by external_id. Each write commits on its own;
a failed write rolls the session back so the next item starts clean.

Field validation (required fields, length limits) happens here through
CardRecord, not in the reconciler.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from unionsync.models.card import Card, CardRecord

logger = structlog.get_logger(__name__)


class GroupCount(BaseModel):
    """Number of cards sharing one column value."""
    value: str | None
    count: int


class CardStats(BaseModel):
    """Read-only aggregate view of the cards table."""
    total_records: int = 0
    by_type: list[GroupCount] = Field(default_factory=list)
    by_rarity: list[GroupCount] = Field(default_factory=list)
    by_set: list[GroupCount] = Field(default_factory=list)


class CardStore:
    """
    Card persistence keyed by the remote catalog id.

    Usage:
        async with session_factory() as session:
            store = CardStore(session)
            card = await store.find_by_external_id("UA01-001")
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_by_external_id(self, external_id: str | None) -> Card | None:
        """Point lookup; the key is stripped the same way CardRecord stores it."""
        key = (external_id or "").strip()
        if not key:
            return None
        try:
            result = await self._session.execute(
                select(Card).where(Card.external_id == key)
            )
        except Exception:
            await self._session.rollback()
            raise
        return result.scalar_one_or_none()

    async def insert(self, fields: dict[str, Any]) -> Card:
        """Validate and create a new card row."""
        record = CardRecord.model_validate(fields)
        card = Card(**record.column_values())

        try:
            self._session.add(card)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.debug("card_inserted", external_id=record.external_id)
        return card

    async def update_by_external_id(
        self,
        external_id: str,
        fields: dict[str, Any],
        card: Card | None = None,
    ) -> Card:
        """
        Validate and overwrite every mapped column of an existing card.

        Columns absent from fields are cleared, not preserved. Pass card when
        the row was already loaded for this id to skip the second lookup.

        Raises:
            LookupError: no card has this external_id.
        """
        record = CardRecord.model_validate({**fields, "external_id": external_id})

        if card is None:
            card = await self.find_by_external_id(record.external_id)
        if card is None:
            raise LookupError(f"No card with external_id {record.external_id!r}")

        try:
            for column, value in record.column_values().items():
                setattr(card, column, value)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.debug("card_updated", external_id=record.external_id)
        return card

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Card))
        return int(result.scalar_one())

    async def _group_counts(self, column: Any) -> list[GroupCount]:
        count_col = func.count(Card.id).label("count")
        result = await self._session.execute(
            select(column, count_col)
            .group_by(column)
            .order_by(count_col.desc(), column)
        )
        return [GroupCount(value=value, count=count) for value, count in result.all()]

    async def stats(self) -> CardStats:
        """Totals grouped by type, rarity and set name, largest group first."""
        return CardStats(
            total_records=await self.count(),
            by_type=await self._group_counts(Card.type),
            by_rarity=await self._group_counts(Card.rarity),
            by_set=await self._group_counts(Card.set_name),
        )
