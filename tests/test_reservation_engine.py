"""
Tests for the reservation engine.

Every test that mutates reservations also checks that the stored
reserved_quantity counters still match the reservation rows.
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.database import transaction
from manastash.db.operations import (
    get_deck_instance,
    get_item,
    list_reservations,
    recompute_reserved_quantities,
)
from manastash.models.deck import DeckState
from manastash.models.failure import (
    InsufficientInventoryError,
    InvalidInputError,
    NotFoundError,
    ReservedItemDeletionError,
    ValidationFailedError,
)
from manastash.models.inventory import TRASH, UNSORTED
from manastash.services import inventory_service, reservation_engine


async def assert_counters_consistent(session: AsyncSession) -> None:
    async with transaction(session):
        drifted = await recompute_reserved_quantities(session)
    assert drifted == []


async def reservation_map(session: AsyncSession, deck_id: int) -> dict[int, int]:
    return {
        r.inventory_item_id: r.quantity_reserved
        for r in await list_reservations(session, deck_id)
    }


@pytest.fixture
async def sol_rings(session: AsyncSession, make_item, make_deck):
    """
    Three Sol Ring lines. I1 has 2 of 4 copies held by another deck D0,
    I2 is the cheapest and I3 the next cheapest.
    """
    i1 = await make_item("Sol Ring", quantity=4)
    i2 = await make_item("Sol Ring", quantity=1, price="0.50")
    i3 = await make_item("Sol Ring", quantity=3, price="2.00")

    d0 = await make_deck("Other deck", [("Sol Ring", 2)])
    async with transaction(session):
        await reservation_engine.add_card_to_deck(session, d0.id, i1.id, 2)

    return i1, i2, i3, d0


class TestReoptimize:
    async def test_cheapest_copies_first(self, session: AsyncSession, sol_rings, make_deck) -> None:
        """Unpriced I1 is passed over for the two priced lines."""
        i1, i2, i3, _ = sol_rings
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])

        async with transaction(session):
            result = await reservation_engine.reoptimize(session, deck.id)

        assert result.reserved_count == 3
        assert result.missing_count == 0
        assert await reservation_map(session, deck.id) == {i2.id: 1, i3.id: 2}
        assert (await get_item(session, i1.id)).reserved_quantity == 2
        assert (await get_item(session, i2.id)).reserved_quantity == 1
        assert (await get_item(session, i3.id)).reserved_quantity == 2
        await assert_counters_consistent(session)

    async def test_reoptimize_is_idempotent(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])

        async with transaction(session):
            await reservation_engine.reoptimize(session, deck.id)
        first = await reservation_map(session, deck.id)

        async with transaction(session):
            await reservation_engine.reoptimize(session, deck.id)

        assert await reservation_map(session, deck.id) == first
        await assert_counters_consistent(session)

    async def test_unpriced_copies_fill_the_rest(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        i1, i2, i3, _ = sol_rings
        deck = await make_deck("Artifacts", [("Sol Ring", 5)])

        async with transaction(session):
            result = await reservation_engine.reoptimize(session, deck.id)

        assert result.reserved_count == 5
        assert await reservation_map(session, deck.id) == {i2.id: 1, i3.id: 3, i1.id: 1}

    async def test_shortfall_is_reported(self, session: AsyncSession, sol_rings, make_deck) -> None:
        """Six copies are free in total; asking for eight leaves two missing."""
        deck = await make_deck("Artifacts", [("Sol Ring", 8), ("Mana Crypt", 1)])

        async with transaction(session):
            result = await reservation_engine.reoptimize(session, deck.id)

        assert result.reserved_count == 6
        assert result.missing_count == 3
        assert {(u.name, u.shortfall) for u in result.unmet} == {
            ("Sol Ring", 2),
            ("Mana Crypt", 1),
        }
        assert await reservation_engine.deck_state_of(session, deck.id) == DeckState.PARTIAL

    async def test_trashed_items_are_not_candidates(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2, price="1.00")
        async with transaction(session):
            await inventory_service.trash_items(session, [item.id])
        deck = await make_deck("Artifacts", [("Sol Ring", 1)])

        async with transaction(session):
            result = await reservation_engine.reoptimize(session, deck.id)

        assert result.reserved_count == 0
        assert result.missing_count == 1

    async def test_unknown_deck(self, session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            async with transaction(session):
                await reservation_engine.reoptimize(session, 999)


class TestAutoFill:
    async def test_keeps_existing_reservations(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        _, i2, i3, _ = sol_rings
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])
        async with transaction(session):
            await reservation_engine.add_card_to_deck(session, deck.id, i3.id, 1)

        async with transaction(session):
            result = await reservation_engine.auto_fill(session, deck.id)

        assert result.reserved_count == 2
        assert await reservation_map(session, deck.id) == {i3.id: 2, i2.id: 1}
        await assert_counters_consistent(session)

    async def test_complete_deck_reserves_nothing(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        deck = await make_deck("Artifacts", [("Sol Ring", 1)])
        async with transaction(session):
            await reservation_engine.reoptimize(session, deck.id)

        async with transaction(session):
            result = await reservation_engine.auto_fill(session, deck.id)

        assert result.reserved_count == 0
        assert result.unmet == []


class TestCandidateLocking:
    async def test_candidates_locked_once_in_id_order(
        self, session: AsyncSession, make_item, make_deck, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Deck lines list Sol Ring before Island; locks still follow item ids."""
        islands = [await make_item("Island", quantity=2) for _ in range(2)]
        rings = [await make_item("Sol Ring", quantity=1) for _ in range(2)]
        deck = await make_deck("Mixed", [("Sol Ring", 2), ("Island", 4)])

        locked: list[list[int]] = []
        real_lock = reservation_engine.candidate_items_for_update

        async def recording_lock(session, names):
            items = await real_lock(session, names)
            locked.append([item.id for item in items])
            return items

        monkeypatch.setattr(reservation_engine, "candidate_items_for_update", recording_lock)

        async with transaction(session):
            result = await reservation_engine.auto_fill(session, deck.id)

        assert result.reserved_count == 6
        assert locked == [sorted(item.id for item in islands + rings)]
        await assert_counters_consistent(session)

    async def test_repeated_name_does_not_overdraw(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Forest", quantity=3)
        deck = await make_deck("Lands", [("Forest", 2), ("Forest", 2)])

        async with transaction(session):
            result = await reservation_engine.auto_fill(session, deck.id)

        assert result.reserved_count == 3
        assert [(u.name, u.shortfall) for u in result.unmet] == [("Forest", 1)]
        assert (await get_item(session, item.id)).reserved_quantity == 3
        await assert_counters_consistent(session)


class TestAddCard:
    async def test_partial_add_is_downscaled(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        """One of two copies is held elsewhere; asking for three grants one."""
        item = await make_item("Sol Ring", quantity=2)
        other = await make_deck("Other deck", [("Sol Ring", 1)])
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])
        async with transaction(session):
            await reservation_engine.add_card_to_deck(session, other.id, item.id, 1)

        async with transaction(session):
            result = await reservation_engine.add_card_to_deck(
                session, deck.id, item.id, 3, exact=False
            )

        assert result.reserved_qty == 1
        assert result.requested_qty == 3
        assert result.downscaled
        assert (await get_item(session, item.id)).reserved_quantity == 2
        await assert_counters_consistent(session)

    async def test_exact_add_fails_on_shortfall(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        item_id = item.id
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])

        with pytest.raises(InsufficientInventoryError) as exc_info:
            async with transaction(session):
                await reservation_engine.add_card_to_deck(session, deck.id, item_id, 3)

        assert exc_info.value.required_count == 3
        assert exc_info.value.available_count == 2
        assert (await get_item(session, item_id)).reserved_quantity == 0

    async def test_nothing_available_fails_even_when_partial(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=1)
        first = await make_deck("First", [("Sol Ring", 1)])
        second = await make_deck("Second", [("Sol Ring", 1)])
        async with transaction(session):
            await reservation_engine.add_card_to_deck(session, first.id, item.id, 1)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            async with transaction(session):
                await reservation_engine.add_card_to_deck(
                    session, second.id, item.id, 1, exact=False
                )

        assert exc_info.value.available_count == 0

    async def test_trashed_item_counts_as_unavailable(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=3)
        deck = await make_deck("Artifacts", [("Sol Ring", 1)])
        async with transaction(session):
            await inventory_service.trash_items(session, [item.id])

        with pytest.raises(InsufficientInventoryError):
            async with transaction(session):
                await reservation_engine.add_card_to_deck(
                    session, deck.id, item.id, 1, exact=False
                )

    async def test_card_not_on_deck_list(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Mana Crypt", quantity=1)
        deck = await make_deck("Artifacts", [("Sol Ring", 1)])

        with pytest.raises(ValidationFailedError):
            async with transaction(session):
                await reservation_engine.add_card_to_deck(session, deck.id, item.id, 1)

    async def test_quantity_must_be_positive(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=1)
        deck = await make_deck("Artifacts", [("Sol Ring", 1)])

        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await reservation_engine.add_card_to_deck(session, deck.id, item.id, 0)

    async def test_repeated_add_grows_one_reservation(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=3)
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])

        async with transaction(session):
            first = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 1)
        async with transaction(session):
            second = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 2)

        assert first.reservation_id == second.reservation_id
        assert await reservation_map(session, deck.id) == {item.id: 3}


class TestRemoveCard:
    async def test_remove_part_of_a_reservation(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=3)
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 3)

        async with transaction(session):
            result = await reservation_engine.remove_card_from_deck(
                session, deck.id, added.reservation_id, 1
            )

        assert result.removed_qty == 1
        assert result.remaining_qty == 2
        assert (await get_item(session, item.id)).reserved_quantity == 2

    async def test_removal_is_clamped_and_deletes_the_row(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        deck = await make_deck("Artifacts", [("Sol Ring", 2)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 2)

        async with transaction(session):
            result = await reservation_engine.remove_card_from_deck(
                session, deck.id, added.reservation_id, 5
            )

        assert result.removed_qty == 2
        assert result.remaining_qty == 0
        assert await list_reservations(session, deck.id) == []
        assert (await get_item(session, item.id)).reserved_quantity == 0
        await assert_counters_consistent(session)

    async def test_reservation_of_another_deck(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        deck = await make_deck("Artifacts", [("Sol Ring", 2)])
        other = await make_deck("Other", [("Sol Ring", 2)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 1)

        with pytest.raises(NotFoundError):
            async with transaction(session):
                await reservation_engine.remove_card_from_deck(
                    session, other.id, added.reservation_id, 1
                )


class TestReleaseDeck:
    async def test_release_restores_availability(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        i1, i2, i3, _ = sol_rings
        deck = await make_deck("Artifacts", [("Sol Ring", 3)])
        async with transaction(session):
            await reservation_engine.reoptimize(session, deck.id)

        async with transaction(session):
            result = await reservation_engine.release_deck(session, deck.id)

        assert result.released_count == 3
        assert (await get_item(session, i1.id)).reserved_quantity == 2
        assert (await get_item(session, i2.id)).reserved_quantity == 0
        assert (await get_item(session, i3.id)).reserved_quantity == 0
        assert await get_deck_instance(session, deck.id) is None
        await assert_counters_consistent(session)


class TestMoveBetweenDecks:
    async def test_whole_reservation_moves(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        source = await make_deck("Source", [("Sol Ring", 2)])
        target = await make_deck("Target", [("Sol Ring", 2)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, source.id, item.id, 2)

        async with transaction(session):
            result = await reservation_engine.move_card_between_decks(
                session, added.reservation_id, target.id
            )

        assert result.quantity == 2
        assert await reservation_map(session, source.id) == {}
        assert await reservation_map(session, target.id) == {item.id: 2}
        assert (await get_item(session, item.id)).reserved_quantity == 2
        await assert_counters_consistent(session)

    async def test_target_must_need_the_copies(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        item_id = item.id
        source = await make_deck("Source", [("Sol Ring", 2)])
        source_id = source.id
        target = await make_deck("Target", [("Sol Ring", 1)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, source_id, item_id, 2)

        with pytest.raises(ValidationFailedError):
            async with transaction(session):
                await reservation_engine.move_card_between_decks(
                    session, added.reservation_id, target.id
                )

        assert await reservation_map(session, source_id) == {item_id: 2}

    async def test_same_deck_is_refused(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=1)
        deck = await make_deck("Deck", [("Sol Ring", 1)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 1)

        with pytest.raises(ValidationFailedError):
            async with transaction(session):
                await reservation_engine.move_card_between_decks(
                    session, added.reservation_id, deck.id
                )


class TestMoveToFolder:
    async def test_reservation_dropped_and_item_filed(
        self, session: AsyncSession, make_item, make_deck, make_folder
    ) -> None:
        await make_folder("Binder")
        item = await make_item("Sol Ring", quantity=2)
        deck = await make_deck("Deck", [("Sol Ring", 2)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 2)

        async with transaction(session):
            result = await reservation_engine.move_card_from_deck_to_folder(
                session, added.reservation_id, "binder"
            )

        stored = await get_item(session, item.id)
        assert result.target_folder == "Binder"
        assert stored.folder == "Binder"
        assert stored.reserved_quantity == 0
        assert await list_reservations(session, deck.id) == []

    async def test_trash_refused_while_other_decks_hold_copies(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring", quantity=2)
        item_id = item.id
        first = await make_deck("First", [("Sol Ring", 1)])
        second = await make_deck("Second", [("Sol Ring", 1)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, first.id, item_id, 1)
        async with transaction(session):
            await reservation_engine.add_card_to_deck(session, second.id, item_id, 1)

        with pytest.raises(ReservedItemDeletionError):
            async with transaction(session):
                await reservation_engine.move_card_from_deck_to_folder(
                    session, added.reservation_id, TRASH
                )

        stored = await get_item(session, item_id)
        assert stored.folder == UNSORTED
        assert stored.reserved_quantity == 2

    async def test_unknown_folder(self, session: AsyncSession, make_item, make_deck) -> None:
        item = await make_item("Sol Ring", quantity=1)
        deck = await make_deck("Deck", [("Sol Ring", 1)])
        async with transaction(session):
            added = await reservation_engine.add_card_to_deck(session, deck.id, item.id, 1)

        with pytest.raises(NotFoundError):
            async with transaction(session):
                await reservation_engine.move_card_from_deck_to_folder(
                    session, added.reservation_id, "Nowhere"
                )


class TestDeckViews:
    async def test_details_cost_and_missing(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        deck = await make_deck("Artifacts", [("Sol Ring", 3), ("Mana Crypt", 1)])
        async with transaction(session):
            await reservation_engine.reoptimize(session, deck.id)

        details = await reservation_engine.get_deck_details(session, deck.id)

        assert details.summary.reserved_count == 3
        assert details.summary.desired_count == 4
        assert details.summary.total_cost == Decimal("4.50")
        assert details.summary.state == DeckState.PARTIAL
        assert [(m.name, m.shortfall) for m in details.missing] == [("Mana Crypt", 1)]

    async def test_summaries_list_every_deck(
        self, session: AsyncSession, sol_rings, make_deck
    ) -> None:
        _, _, _, d0 = sol_rings
        empty = await make_deck("Empty", [("Mana Crypt", 1)])

        summaries = {s.id: s for s in await reservation_engine.list_deck_summaries(session)}

        assert summaries[d0.id].reserved_count == 2
        assert summaries[d0.id].state == DeckState.COMPLETE
        assert summaries[empty.id].state == DeckState.DRAFT

    async def test_rename(self, session: AsyncSession, make_deck) -> None:
        deck = await make_deck("Old", [("Sol Ring", 1)])

        async with transaction(session):
            renamed = await reservation_engine.rename_deck_instance(session, deck.id, " New ")

        assert renamed.name == "New"

        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await reservation_engine.rename_deck_instance(session, deck.id, "  ")
