"""
Tests for the card reconciler (unionsync/pipeline/reconciler.py).

Covers:
- transform_card field mapping and legacy field defaults
- Insert vs. update by external_id (reconcile_one)
- Idempotent re-runs and in-run upserts
- Per-item failure isolation and error details
- Progress stream
"""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unionsync.models.card import Card
from unionsync.pipeline.card_store import CardStore
from unionsync.pipeline.reconciler import CardReconciler, SyncProgress, describe_error


@pytest.fixture
def reconciler(db_session: AsyncSession) -> CardReconciler:
    return CardReconciler(CardStore(db_session))


async def _card(session: AsyncSession, external_id: str) -> Card | None:
    result = await session.execute(select(Card).where(Card.external_id == external_id))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# transform_card
# ---------------------------------------------------------------------------


def test_transform_maps_every_field(make_raw_card: Any) -> None:
    raw = make_raw_card(7)
    fields = CardReconciler.transform_card(raw)

    assert fields["external_id"] == "UE01BT-007"
    assert fields["code"] == "UE01BT/HTR-1-007"
    assert fields["card_number"] == "UE01BT/HTR-1-007"
    assert fields["name"] == "Hunter 7"
    assert fields["type"] == "Character"
    assert fields["bp"] == "2500"
    assert fields["image_small"] == raw["images"]["small"]
    assert fields["image_large"] == raw["images"]["large"]
    assert fields["set_name"] == "HUNTER x HUNTER"
    assert fields["need_energy_value"] == "1"
    assert fields["need_energy_logo"] == raw["needEnergy"]["logo"]
    assert fields["description"] is None
    assert fields["image_url"] is None


@pytest.mark.asyncio
async def test_legacy_fields_filled_on_write(
    reconciler: CardReconciler,
    make_raw_card: Any,
) -> None:
    raw = make_raw_card(7)

    outcome = await reconciler.reconcile_one(raw)

    assert outcome.record.description == raw["effect"]
    assert outcome.record.image_url == raw["images"]["large"]


def test_transform_missing_fields_become_empty() -> None:
    fields = CardReconciler.transform_card({"id": "X-1", "name": "Bare"})

    assert fields["external_id"] == "X-1"
    assert fields["code"] is None
    assert fields["image_small"] is None
    assert fields["set_name"] is None
    assert fields["need_energy_value"] is None
    assert fields["description"] is None
    assert fields["image_url"] is None


def test_transform_keeps_item_legacy_fields(make_raw_card: Any) -> None:
    raw = make_raw_card(1, description="Printed flavour text", imageUrl="https://cdn.example/alt.png")
    fields = CardReconciler.transform_card(raw)

    assert fields["description"] == "Printed flavour text"
    assert fields["image_url"] == "https://cdn.example/alt.png"


def test_transform_coerces_numbers_to_text(make_raw_card: Any) -> None:
    fields = CardReconciler.transform_card(make_raw_card(1, bp=3000, ap=2, needEnergy={"value": 3}))

    assert fields["bp"] == "3000"
    assert fields["ap"] == "2"
    assert fields["need_energy_value"] == "3"


def test_transform_rejects_structurally_wrong_item(make_raw_card: Any) -> None:
    with pytest.raises(ValidationError):
        CardReconciler.transform_card(make_raw_card(1, images="not-an-object"))


def test_describe_error_lists_fields() -> None:
    with pytest.raises(ValidationError) as exc_info:
        CardReconciler.transform_card({"id": "X-1", "name": ["a", "list"]})

    assert describe_error(exc_info.value).startswith("name:")
    assert describe_error(RuntimeError("disk full")) == "disk full"
    assert describe_error(KeyError()) == "KeyError"


# ---------------------------------------------------------------------------
# reconcile_one
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reconcile_one_creates_then_updates(
    reconciler: CardReconciler,
    db_session: AsyncSession,
    make_raw_card: Any,
) -> None:
    first = await reconciler.reconcile_one(make_raw_card(1))
    second = await reconciler.reconcile_one(make_raw_card(1, name="Gon Freecss"))

    assert first.was_created is True
    assert second.was_created is False
    assert second.record.name == "Gon Freecss"
    assert (await _card(db_session, "UE01BT-001")).name == "Gon Freecss"


@pytest.mark.asyncio
async def test_padded_id_updates_on_rerun(
    reconciler: CardReconciler,
    db_session: AsyncSession,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    items = [make_raw_card(1, id="UE01BT-001 ")]

    first = await reconciler.reconcile(items)
    second = await reconciler.reconcile(items)

    assert (first.saved, first.updated, first.errors) == (1, 0, 0)
    assert (second.saved, second.updated, second.errors) == (0, 1, 0)
    assert await count_cards() == 1
    assert await _card(db_session, "UE01BT-001") is not None


@pytest.mark.asyncio
async def test_update_looks_card_up_once(db_session: AsyncSession, make_raw_card: Any) -> None:
    store = CardStore(db_session)
    reconciler = CardReconciler(store)
    await reconciler.reconcile_one(make_raw_card(1))

    with patch.object(store, "find_by_external_id", wraps=store.find_by_external_id) as find:
        outcome = await reconciler.reconcile_one(make_raw_card(1, name="Killua"))

    assert outcome.was_created is False
    assert outcome.record.name == "Killua"
    assert find.await_count == 1


@pytest.mark.asyncio
async def test_reconcile_one_propagates_failures(reconciler: CardReconciler, make_raw_card: Any) -> None:
    with pytest.raises(ValidationError):
        await reconciler.reconcile_one(make_raw_card(1, type=None))


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reconcile_inserts_new_cards(
    reconciler: CardReconciler,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    items = [make_raw_card(i) for i in range(1, 6)]

    summary = await reconciler.reconcile(items)

    assert (summary.total, summary.saved, summary.updated, summary.errors) == (5, 5, 0, 0)
    assert summary.error_details == []
    assert await count_cards() == 5


@pytest.mark.asyncio
async def test_reconcile_twice_is_idempotent(
    reconciler: CardReconciler,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    items = [make_raw_card(i) for i in range(1, 8)]

    await reconciler.reconcile(items)
    second = await reconciler.reconcile(items)

    assert second.saved == 0
    assert second.updated == len(items)
    assert second.errors == 0
    assert await count_cards() == len(items)


@pytest.mark.asyncio
async def test_later_duplicate_in_same_run_wins(
    reconciler: CardReconciler,
    db_session: AsyncSession,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    items = [
        make_raw_card(1, name="Killua", rarity="C"),
        make_raw_card(2),
        make_raw_card(1, name="Killua Zoldyck", rarity="SR"),
    ]

    summary = await reconciler.reconcile(items)

    assert (summary.saved, summary.updated) == (2, 1)
    assert await count_cards() == 2
    card = await _card(db_session, "UE01BT-001")
    assert card.name == "Killua Zoldyck"
    assert card.rarity == "SR"


@pytest.mark.asyncio
async def test_update_overwrites_every_field(
    reconciler: CardReconciler,
    db_session: AsyncSession,
    make_raw_card: Any,
) -> None:
    await reconciler.reconcile([make_raw_card(1)])

    stripped = make_raw_card(1, effect=None, trigger=None, affinity=None)
    await reconciler.reconcile([stripped])

    card = await _card(db_session, "UE01BT-001")
    assert card.effect is None
    assert card.trigger is None
    assert card.affinity is None
    assert card.description is None or card.description == ""


@pytest.mark.asyncio
async def test_one_bad_item_does_not_stop_the_run(
    reconciler: CardReconciler,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    items = [make_raw_card(i) for i in range(1, 7)]
    items[2] = make_raw_card(3, name="")

    summary = await reconciler.reconcile(items)

    assert summary.errors == 1
    assert summary.saved + summary.updated == len(items) - 1
    assert await count_cards() == len(items) - 1

    detail = summary.error_details[0]
    assert detail.card_id == "UE01BT-003"
    assert detail.card_name == ""
    assert "name" in detail.error


@pytest.mark.asyncio
async def test_various_item_failures_are_collected(
    reconciler: CardReconciler,
    make_raw_card: Any,
) -> None:
    items = [
        make_raw_card(1),
        make_raw_card(2, id=None),
        make_raw_card(3, name="N" * 101),
        make_raw_card(4, effect="E" * 1001),
        make_raw_card(5, set="HUNTER x HUNTER"),
        make_raw_card(6),
    ]

    summary = await reconciler.reconcile(items)

    assert summary.saved == 2
    assert summary.errors == 4
    assert [d.card_name for d in summary.error_details] == ["Hunter 2", "N" * 101, "Hunter 4", "Hunter 5"]
    assert summary.error_details[0].card_id is None


@pytest.mark.asyncio
async def test_store_failure_is_recorded_and_run_continues(
    db_session: AsyncSession,
    make_raw_card: Any,
) -> None:
    class FlakyStore(CardStore):
        async def insert(self, fields: dict[str, Any]) -> Card:
            if fields["external_id"] == "UE01BT-002":
                raise RuntimeError("write timed out")
            return await super().insert(fields)

    reconciler = CardReconciler(FlakyStore(db_session))
    summary = await reconciler.reconcile([make_raw_card(i) for i in range(1, 4)])

    assert (summary.saved, summary.errors) == (2, 1)
    assert summary.error_details[0].error == "write timed out"


@pytest.mark.asyncio
async def test_progress_after_every_item(reconciler: CardReconciler, make_raw_card: Any) -> None:
    items = [make_raw_card(1), make_raw_card(2, type=""), make_raw_card(3), make_raw_card(4)]
    events: list[SyncProgress] = []

    await reconciler.reconcile(items, on_progress=events.append)

    assert [e.current for e in events] == [1, 2, 3, 4]
    assert [e.percent for e in events] == [25, 50, 75, 100]
    assert [e.current_card for e in events] == ["Hunter 1", "Hunter 2", "Hunter 3", "Hunter 4"]
    # Each event carries a snapshot of the running summary
    assert [(e.summary.saved, e.summary.errors) for e in events] == [(1, 0), (1, 1), (2, 1), (3, 1)]


@pytest.mark.asyncio
async def test_failing_progress_subscriber_is_ignored(
    reconciler: CardReconciler,
    count_cards: Any,
    make_raw_card: Any,
) -> None:
    def broken(progress: SyncProgress) -> None:
        raise ValueError("bad terminal")

    summary = await reconciler.reconcile([make_raw_card(i) for i in range(1, 4)], on_progress=broken)

    assert summary.saved == 3
    assert await count_cards() == 3


@pytest.mark.asyncio
async def test_reconcile_empty_input(reconciler: CardReconciler) -> None:
    summary = await reconciler.reconcile([])

    assert (summary.total, summary.saved, summary.updated, summary.errors) == (0, 0, 0, 0)
