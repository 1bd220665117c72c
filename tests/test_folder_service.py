import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.database import transaction
from manastash.db.operations import get_folder, get_item, list_folders
from manastash.models.failure import (
    DuplicateFolderError,
    InvalidInputError,
    NotFoundError,
    ReservedFolderNameError,
    ReservedItemDeletionError,
)
from manastash.models.inventory import TRASH, UNSORTED
from manastash.models.undo import UndoType
from manastash.services import folder_service, reservation_engine


class TestCreateFolder:
    async def test_create(self, session: AsyncSession) -> None:
        async with transaction(session):
            change = await folder_service.create_folder(session, "  Lands ", "Basics")

        assert change.name == "Lands"
        assert change.undo_entry.type == UndoType.FOLDER_CREATE
        folder = await get_folder(session, "lands")
        assert folder is not None
        assert folder.description == "Basics"

    @pytest.mark.parametrize(
        "name", ["trash", "Unsorted", "UNCATEGORIZED", "All", "all cards"]
    )
    async def test_reserved_names_are_refused(self, session: AsyncSession, name: str) -> None:
        with pytest.raises(ReservedFolderNameError):
            async with transaction(session):
                await folder_service.create_folder(session, name)

        assert await list_folders(session) == []

    async def test_duplicates_ignore_case(self, session: AsyncSession, make_folder) -> None:
        await make_folder("Lands")

        with pytest.raises(DuplicateFolderError):
            async with transaction(session):
                await folder_service.create_folder(session, "LANDS")

    async def test_empty_name(self, session: AsyncSession) -> None:
        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await folder_service.create_folder(session, "   ")


class TestRenameFolder:
    async def test_items_follow_the_folder(
        self, session: AsyncSession, make_folder, make_item
    ) -> None:
        await make_folder("Lands")
        item = await make_item("Forest", quantity=10, folder="Lands")

        async with transaction(session):
            change = await folder_service.rename_folder(session, "Lands", "Basic lands")

        assert change.moved_item_ids == [item.id]
        assert (await get_item(session, item.id)).folder == "Basic lands"
        assert await get_folder(session, "Lands") is None

    async def test_change_of_case_only(self, session: AsyncSession, make_folder) -> None:
        await make_folder("lands")

        async with transaction(session):
            change = await folder_service.rename_folder(session, "lands", "Lands")

        assert change.name == "Lands"
        assert [f.name for f in await list_folders(session)] == ["Lands"]

    async def test_rename_onto_existing_folder(self, session: AsyncSession, make_folder) -> None:
        await make_folder("Lands")
        await make_folder("Binder")

        with pytest.raises(DuplicateFolderError):
            async with transaction(session):
                await folder_service.rename_folder(session, "Binder", "lands")

    async def test_implicit_folders_cannot_be_renamed(self, session: AsyncSession) -> None:
        with pytest.raises(ReservedFolderNameError):
            async with transaction(session):
                await folder_service.rename_folder(session, UNSORTED, "Inbox")


class TestDeleteFolder:
    async def test_items_move_to_unsorted(
        self, session: AsyncSession, make_folder, make_item
    ) -> None:
        await make_folder("Lands")
        item = await make_item("Forest", quantity=10, folder="Lands")

        async with transaction(session):
            change = await folder_service.delete_folder(session, "Lands")

        assert change.moved_item_ids == [item.id]
        assert (await get_item(session, item.id)).folder == UNSORTED
        assert await list_folders(session) == []

    async def test_unknown_folder(self, session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            async with transaction(session):
                await folder_service.delete_folder(session, "Nowhere")


class TestListFolders:
    async def test_unsorted_first_and_trash_hidden(
        self, session: AsyncSession, make_folder, make_item
    ) -> None:
        await make_folder("Lands")
        await make_folder("Binder")
        await make_item("Forest", quantity=10, folder="Lands")
        await make_item("Sol Ring")
        trashed = await make_item("Mana Crypt")
        async with transaction(session):
            await folder_service.move_items(session, [trashed.id], TRASH)

        listings = await folder_service.list_folder_listings(session)

        assert [(f.name, f.item_count, f.implicit) for f in listings] == [
            (UNSORTED, 1, True),
            ("Binder", 0, False),
            ("Lands", 1, False),
        ]

    async def test_unsorted_hidden_when_empty(self, session: AsyncSession, make_folder) -> None:
        await make_folder("Lands")

        listings = await folder_service.list_folder_listings(session)

        assert [f.name for f in listings] == ["Lands"]


class TestMoveItems:
    async def test_single_move(self, session: AsyncSession, make_folder, make_item) -> None:
        await make_folder("Lands")
        item = await make_item("Forest")

        async with transaction(session):
            result = await folder_service.move_items(session, [item.id], "lands")

        assert result.folder == "Lands"
        assert result.undo_entry.type == UndoType.MOVE_TO_FOLDER
        assert (await get_item(session, item.id)).folder == "Lands"

    async def test_bulk_move(self, session: AsyncSession, make_folder, make_item) -> None:
        await make_folder("Lands")
        forest = await make_item("Forest")
        island = await make_item("Island")

        async with transaction(session):
            result = await folder_service.move_items(session, [island.id, forest.id], "Lands")

        assert result.item_ids == sorted([forest.id, island.id])
        assert result.undo_entry.type == UndoType.BULK_MOVE

    async def test_legacy_unsorted_spelling(
        self, session: AsyncSession, make_folder, make_item
    ) -> None:
        await make_folder("Lands")
        item = await make_item("Forest", folder="Lands")

        async with transaction(session):
            result = await folder_service.move_items(session, [item.id], "Uncategorized")

        assert result.folder == UNSORTED

    async def test_views_are_not_targets(self, session: AsyncSession, make_item) -> None:
        item = await make_item("Forest")

        with pytest.raises(ReservedFolderNameError):
            async with transaction(session):
                await folder_service.move_items(session, [item.id], "All Cards")

    async def test_unknown_target(self, session: AsyncSession, make_item) -> None:
        item = await make_item("Forest")

        with pytest.raises(NotFoundError):
            async with transaction(session):
                await folder_service.move_items(session, [item.id], "Nowhere")

    async def test_reserved_item_cannot_go_to_trash(
        self, session: AsyncSession, make_item, make_deck
    ) -> None:
        item = await make_item("Sol Ring")
        item_id = item.id
        deck = await make_deck("Deck", [("Sol Ring", 1)])
        async with transaction(session):
            await reservation_engine.add_card_to_deck(session, deck.id, item_id, 1)

        with pytest.raises(ReservedItemDeletionError):
            async with transaction(session):
                await folder_service.move_items(session, [item_id], TRASH)

        assert (await get_item(session, item_id)).folder == UNSORTED

    async def test_move_by_name(self, session: AsyncSession, make_folder, make_item) -> None:
        await make_folder("Lands")
        first = await make_item("Forest", set_code="M21")
        second = await make_item("forest", set_code="ZNR")
        await make_item("Island")

        async with transaction(session):
            result = await folder_service.move_by_name(session, "Forest", "Lands")

        assert result.item_ids == sorted([first.id, second.id])
        assert result.undo_entry.description == 'Move Forest to "Lands"'

    async def test_move_by_name_without_matches(self, session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            async with transaction(session):
                await folder_service.move_by_name(session, "Black Lotus", UNSORTED)
