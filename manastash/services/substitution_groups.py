"""
Substitution groups: cards that can stand in for one another.

A card belongs to at most one group. Membership only affects IPS scoring,
where an in-stock substitute attenuates a card's demand pressure.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db import autobuy as store
from manastash.models.db import SubstitutionGroupDB, SubstitutionGroupMemberDB
from manastash.models.failure import DuplicateGroupMemberError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class GroupMember:
    scryfall_id: str
    card_name: str | None = None


async def require_group(session: AsyncSession, group_id: int) -> SubstitutionGroupDB:
    group = await store.get_group(session, group_id)
    if group is None:
        raise NotFoundError("Substitution group", group_id)
    return group


async def _check_member(session: AsyncSession, scryfall_id: str) -> str:
    cleaned = (scryfall_id or "").strip()
    if not cleaned:
        raise InvalidInputError("Card id must not be empty")
    existing = await store.get_member(session, cleaned)
    if existing is not None:
        raise DuplicateGroupMemberError(cleaned, existing.group_id)
    return cleaned


async def create_group(
    session: AsyncSession,
    name: str,
    description: str | None = None,
    members: Sequence[GroupMember] = (),
) -> SubstitutionGroupDB:
    """
    Create a group with its initial members.

    Raises:
        InvalidInputError: Empty name, or the same card listed twice.
        DuplicateGroupMemberError: A card already belongs to another group.
    """
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Group name must not be empty")

    ids = [m.scryfall_id for m in members]
    if len(ids) != len(set(ids)):
        raise InvalidInputError("A card is listed more than once")

    rows = [
        SubstitutionGroupMemberDB(
            scryfall_id=await _check_member(session, member.scryfall_id),
            card_name=member.card_name,
        )
        for member in members
    ]

    # Passing members, even none, initializes the collection before flush
    group = SubstitutionGroupDB(name=cleaned, description=description, members=rows)
    session.add(group)
    await session.flush()
    logger.info("Created substitution group %r with %d cards", cleaned, len(group.members))
    return group


async def update_group(
    session: AsyncSession,
    group_id: int,
    name: str | None = None,
    description: str | None = None,
) -> SubstitutionGroupDB:
    group = await require_group(session, group_id)
    if name is not None:
        if not name.strip():
            raise InvalidInputError("Group name must not be empty")
        group.name = name.strip()
    if description is not None:
        group.description = description
    await session.flush()
    return group


async def delete_group(session: AsyncSession, group_id: int) -> None:
    group = await require_group(session, group_id)
    await session.delete(group)
    await session.flush()
    logger.info("Deleted substitution group %d", group_id)


async def add_member(
    session: AsyncSession, group_id: int, member: GroupMember
) -> SubstitutionGroupDB:
    group = await require_group(session, group_id)
    card_id = await _check_member(session, member.scryfall_id)
    group.members.append(
        SubstitutionGroupMemberDB(scryfall_id=card_id, card_name=member.card_name)
    )
    await session.flush()
    return group


async def remove_member(
    session: AsyncSession, group_id: int, scryfall_id: str
) -> SubstitutionGroupDB:
    """
    Raises:
        NotFoundError: Unknown group, or the card is not in it.
    """
    group = await require_group(session, group_id)
    member = next((m for m in group.members if m.scryfall_id == scryfall_id), None)
    if member is None:
        raise NotFoundError("Group card", scryfall_id)
    group.members.remove(member)
    await session.flush()
    return group
