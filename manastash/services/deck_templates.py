"""
Deck template lifecycle: CRUD, decklist import and building instances.

A template only describes the desired composition. Building it snapshots
the cards into a new deck instance and allocates inventory in the same
transaction.
"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.operations import (
    create_deck_instance,
    create_deck_template,
    get_deck_template,
    template_lines,
)
from manastash.models.db import DeckInstanceDB, DeckTemplateDB
from manastash.models.deck import AllocationResult, DeckCardLine, total_quantity
from manastash.models.failure import InvalidInputError, NotFoundError, ValidationFailedError
from manastash.parsers.decklist import parse_decklist
from manastash.services.reservation_engine import reoptimize

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = frozenset({"name", "format", "commander_name", "description", "archidekt_url"})


def validate_cards(cards: Sequence[DeckCardLine]) -> list[DeckCardLine]:
    """
    Check a desired composition.

    Raises:
        InvalidInputError: A line has an empty name or a non-positive quantity.
        ValidationFailedError: The deck holds no cards at all.
    """
    cleaned = []
    for line in cards:
        name = line.name.strip()
        if not name:
            raise InvalidInputError("Card name must not be empty")
        if line.quantity <= 0:
            raise InvalidInputError(f"Quantity for '{name}' must be positive")
        cleaned.append(
            DeckCardLine(
                name=name,
                quantity=line.quantity,
                set_code=line.set_code,
                collector_number=line.collector_number,
            )
        )

    if total_quantity(cleaned) < 1:
        raise ValidationFailedError("A deck needs at least one card")
    return cleaned


async def require_template(session: AsyncSession, template_id: int) -> DeckTemplateDB:
    template = await get_deck_template(session, template_id)
    if template is None:
        raise NotFoundError("Deck", template_id)
    return template


async def create_template(
    session: AsyncSession,
    name: str,
    cards: Sequence[DeckCardLine],
    format: str = "commander",
    commander_name: str | None = None,
    description: str | None = None,
    archidekt_url: str | None = None,
) -> DeckTemplateDB:
    """Create a deck template after validating its cards."""
    if not name or not name.strip():
        raise InvalidInputError("Deck name must not be empty")

    template = await create_deck_template(
        session,
        name=name.strip(),
        cards=validate_cards(cards),
        format=format,
        commander_name=commander_name,
        description=description,
        archidekt_url=archidekt_url,
    )
    logger.info("Created deck template %d %r", template.id, template.name)
    return template


async def update_template(
    session: AsyncSession,
    template_id: int,
    fields: dict[str, Any],
    cards: Sequence[DeckCardLine] | None = None,
) -> DeckTemplateDB:
    """Update template metadata and, if given, replace its cards."""
    template = await require_template(session, template_id)

    unknown = set(fields) - TEMPLATE_FIELDS
    if unknown:
        raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    if "name" in fields and not (fields["name"] or "").strip():
        raise InvalidInputError("Deck name must not be empty")

    for field, value in fields.items():
        setattr(template, field, value.strip() if field == "name" else value)
    if cards is not None:
        template.cards = [line.to_dict() for line in validate_cards(cards)]

    await session.flush()
    return template


async def delete_template(session: AsyncSession, template_id: int) -> None:
    """Delete a template. Instances built from it keep their snapshot."""
    template = await require_template(session, template_id)
    await session.delete(template)
    await session.flush()
    logger.info("Deleted deck template %d", template_id)


async def import_template(
    session: AsyncSession,
    name: str,
    text: str,
    format: str = "commander",
    commander_name: str | None = None,
    archidekt_url: str | None = None,
) -> DeckTemplateDB:
    """
    Create a template from decklist text.

    Raises:
        ValidationFailedError: If no line of the text parses.
    """
    cards = parse_decklist(text)
    if not cards:
        raise ValidationFailedError(
            "No cards found in decklist",
            suggestion='Use one card per line, e.g. "1 Sol Ring (C21)".',
        )
    return await create_template(
        session,
        name=name,
        cards=cards,
        format=format,
        commander_name=commander_name,
        archidekt_url=archidekt_url,
    )


async def build_deck(
    session: AsyncSession, template_id: int, name: str | None = None
) -> tuple[DeckInstanceDB, AllocationResult]:
    """Snapshot a template into a new deck instance and reserve inventory for it."""
    template = await require_template(session, template_id)
    lines = validate_cards(template_lines(template))

    deck = await create_deck_instance(
        session,
        name=(name or "").strip() or template.name,
        cards=lines,
        template_id=template.id,
    )
    allocation = await reoptimize(session, deck.id)
    logger.info(
        "Built deck %d from template %d: %d reserved, %d missing",
        deck.id,
        template.id,
        allocation.reserved_count,
        allocation.missing_count,
    )
    return deck, allocation
