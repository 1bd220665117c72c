import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.config import settings
from manastash.db.database import transaction
from manastash.db.operations import (
    get_deck_instance,
    get_deck_template,
    list_reservations,
    template_lines,
)
from manastash.models.deck import DeckCardLine
from manastash.models.failure import (
    ExternalAPIError,
    InvalidInputError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationFailedError,
)
from manastash.services import deck_generation, deck_templates


class TestCreateTemplate:
    async def test_create(self, session: AsyncSession) -> None:
        async with transaction(session):
            template = await deck_templates.create_template(
                session,
                name=" Artifacts ",
                cards=[DeckCardLine(name=" Sol Ring ", quantity=1, set_code="C21")],
            )

        assert template.name == "Artifacts"
        assert template.format == "commander"
        assert template_lines(template) == [
            DeckCardLine(name="Sol Ring", quantity=1, set_code="C21")
        ]

    async def test_deck_needs_a_card(self, session: AsyncSession) -> None:
        with pytest.raises(ValidationFailedError):
            async with transaction(session):
                await deck_templates.create_template(session, name="Empty", cards=[])

    async def test_quantity_must_be_positive(self, session: AsyncSession) -> None:
        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await deck_templates.create_template(
                    session, name="Bad", cards=[DeckCardLine(name="Sol Ring", quantity=0)]
                )

    async def test_name_required(self, session: AsyncSession) -> None:
        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await deck_templates.create_template(
                    session, name=" ", cards=[DeckCardLine(name="Sol Ring", quantity=1)]
                )


class TestImportTemplate:
    async def test_import_decklist_text(self, session: AsyncSession) -> None:
        async with transaction(session):
            template = await deck_templates.import_template(
                session,
                name="Elves",
                text="1 Sol Ring (C21)\n// Creatures\n4 Llanowar Elves\n",
                format="modern",
            )

        lines = template_lines(template)
        assert template.format == "modern"
        assert [(line.name, line.quantity) for line in lines] == [
            ("Sol Ring", 1),
            ("Llanowar Elves", 4),
        ]

    async def test_nothing_parses(self, session: AsyncSession) -> None:
        with pytest.raises(ValidationFailedError):
            async with transaction(session):
                await deck_templates.import_template(session, name="Elves", text="// nothing")


class TestUpdateTemplate:
    async def test_metadata_and_cards(self, session: AsyncSession) -> None:
        async with transaction(session):
            template = await deck_templates.create_template(
                session, name="Artifacts", cards=[DeckCardLine(name="Sol Ring", quantity=1)]
            )

        async with transaction(session):
            updated = await deck_templates.update_template(
                session,
                template.id,
                {"name": "Rocks", "description": "Mana rocks"},
                [DeckCardLine(name="Arcane Signet", quantity=1)],
            )

        assert updated.name == "Rocks"
        assert updated.description == "Mana rocks"
        assert [line.name for line in template_lines(updated)] == ["Arcane Signet"]

    async def test_unknown_field(self, session: AsyncSession) -> None:
        async with transaction(session):
            template = await deck_templates.create_template(
                session, name="Artifacts", cards=[DeckCardLine(name="Sol Ring", quantity=1)]
            )

        with pytest.raises(InvalidInputError):
            async with transaction(session):
                await deck_templates.update_template(session, template.id, {"cards_json": "[]"})

    async def test_unknown_template(self, session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            async with transaction(session):
                await deck_templates.update_template(session, 404, {"name": "Rocks"})


class TestBuildDeck:
    async def test_build_snapshots_and_reserves(self, session: AsyncSession, make_item) -> None:
        ring = await make_item("Sol Ring", quantity=1, price="1.00")
        async with transaction(session):
            template = await deck_templates.create_template(
                session,
                name="Artifacts",
                cards=[
                    DeckCardLine(name="Sol Ring", quantity=1),
                    DeckCardLine(name="Mana Crypt", quantity=1),
                ],
            )

        async with transaction(session):
            deck, allocation = await deck_templates.build_deck(session, template.id)

        assert deck.name == "Artifacts"
        assert deck.template_id == template.id
        assert allocation.reserved_count == 1
        assert [(u.name, u.shortfall) for u in allocation.unmet] == [("Mana Crypt", 1)]
        reservations = await list_reservations(session, deck.id)
        assert [(r.inventory_item_id, r.quantity_reserved) for r in reservations] == [(ring.id, 1)]

    async def test_instance_keeps_its_snapshot(self, session: AsyncSession) -> None:
        async with transaction(session):
            template = await deck_templates.create_template(
                session, name="Artifacts", cards=[DeckCardLine(name="Sol Ring", quantity=1)]
            )
        async with transaction(session):
            deck, _ = await deck_templates.build_deck(session, template.id, "My copy")

        async with transaction(session):
            await deck_templates.update_template(
                session, template.id, {}, [DeckCardLine(name="Mana Crypt", quantity=2)]
            )
        async with transaction(session):
            await deck_templates.delete_template(session, template.id)

        stored = await get_deck_instance(session, deck.id)
        assert stored.name == "My copy"
        assert [(c.name, c.quantity) for c in stored.cards] == [("Sol Ring", 1)]
        assert await get_deck_template(session, template.id) is None


class TestDeckGeneration:
    async def test_not_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await deck_generation.generate_deck_proposal("Budget elves")

        assert exc_info.value.status_code == 503

    async def test_reply_is_parsed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_request(prompt: str, format: str, commander: str | None = None) -> str:
            return "// Ramp\n1 Sol Ring\n4 Llanowar Elves (M19)\n"

        monkeypatch.setattr(deck_generation, "request_decklist", fake_request)

        proposal = await deck_generation.generate_deck_proposal(
            "Budget elves", "commander", "Lathril, Blade of the Elves"
        )

        assert proposal.name == "Lathril, Blade of the Elves"
        assert proposal.commander_name == "Lathril, Blade of the Elves"
        assert [(c.name, c.quantity, c.set_code) for c in proposal.cards] == [
            ("Sol Ring", 1, None),
            ("Llanowar Elves", 4, "M19"),
        ]

    async def test_name_defaults_to_prompt(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_request(prompt: str, format: str, commander: str | None = None) -> str:
            return "60 Forest"

        monkeypatch.setattr(deck_generation, "request_decklist", fake_request)

        proposal = await deck_generation.generate_deck_proposal("Mono green\nKeep it cheap")

        assert proposal.name == "Mono green"

    async def test_reply_without_decklist(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_request(prompt: str, format: str, commander: str | None = None) -> str:
            return "Sorry, I cannot help with that."

        monkeypatch.setattr(deck_generation, "request_decklist", fake_request)

        with pytest.raises(ExternalAPIError):
            await deck_generation.generate_deck_proposal("Budget elves")

    async def test_prompt_required(self) -> None:
        with pytest.raises(InvalidInputError):
            await deck_generation.generate_deck_proposal("  ")
