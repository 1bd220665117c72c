"""
Substitution group API endpoints.

A card belongs to at most one group; adding it to a second one is 409.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db import autobuy as autobuy_store
from manastash.db.database import get_session, transaction
from manastash.models.db import SubstitutionGroupDB
from manastash.services import substitution_groups
from manastash.services.substitution_groups import GroupMember

router = APIRouter(prefix="/autobuy/substitution-groups", tags=["autobuy"])


class MemberModel(BaseModel):
    scryfall_id: str = Field(..., min_length=1)
    card_name: str | None = None


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, examples=["Mana rocks"])
    description: str | None = None
    cards: list[MemberModel] = Field(default_factory=list)


class GroupUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class GroupResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    created_at: datetime
    cards: list[MemberModel] = Field(default_factory=list)


def _group_response(group: SubstitutionGroupDB) -> GroupResponse:
    return GroupResponse(
        id=group.id,
        name=group.name,
        description=group.description,
        created_at=group.created_at,
        cards=[
            MemberModel(scryfall_id=m.scryfall_id, card_name=m.card_name) for m in group.members
        ],
    )


@router.get("", response_model=list[GroupResponse])
async def list_groups(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[GroupResponse]:
    return [_group_response(g) for g in await autobuy_store.list_groups(session)]


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: GroupCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> GroupResponse:
    async with transaction(session):
        group = await substitution_groups.create_group(
            session,
            body.name,
            body.description,
            [GroupMember(**card.model_dump()) for card in body.cards],
        )
    return _group_response(group)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> GroupResponse:
    group = await substitution_groups.require_group(session, group_id)
    return _group_response(group)


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: int,
    body: GroupUpdateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> GroupResponse:
    async with transaction(session):
        group = await substitution_groups.update_group(
            session, group_id, body.name, body.description
        )
    return _group_response(group)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    async with transaction(session):
        await substitution_groups.delete_group(session, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/cards", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def add_card(
    group_id: int,
    body: MemberModel,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> GroupResponse:
    """Add a card. 409 if it already belongs to a group."""
    async with transaction(session):
        group = await substitution_groups.add_member(
            session, group_id, GroupMember(**body.model_dump())
        )
    return _group_response(group)


@router.delete("/{group_id}/cards/{card_id}", response_model=GroupResponse)
async def remove_card(
    group_id: int,
    card_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> GroupResponse:
    async with transaction(session):
        group = await substitution_groups.remove_member(session, group_id, card_id)
    return _group_response(group)
