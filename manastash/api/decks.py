"""
Deck template API endpoints.

CRUD for deck templates, decklist import and export, building a deck
instance from a template, and AI deck generation.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.api.deck_instances import CamelModel, UnmetLineModel
from manastash.db.database import get_session, transaction
from manastash.db.operations import list_deck_templates, template_lines
from manastash.models.db import DeckTemplateDB
from manastash.models.deck import DeckCardLine
from manastash.parsers.decklist import format_decklist
from manastash.services import deck_templates
from manastash.services.deck_generation import generate_deck_proposal

router = APIRouter(prefix="/decks", tags=["decks"])


class CardLine(BaseModel):
    """One decklist line."""

    name: str
    quantity: int = Field(default=1)
    set_code: str | None = None
    collector_number: str | None = None

    def to_line(self) -> DeckCardLine:
        return DeckCardLine(**self.model_dump())


class DeckTemplateResponse(BaseModel):
    """Response model for a deck template."""

    id: int
    name: str
    format: str
    commander_name: str | None = None
    description: str | None = None
    archidekt_url: str | None = None
    cards: list[CardLine] = Field(default_factory=list)
    card_count: int = 0
    created_at: datetime
    updated_at: datetime


class DeckTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    format: str = "commander"
    commander_name: str | None = None
    description: str | None = None
    archidekt_url: str | None = None
    cards: list[CardLine] = Field(..., description="Must hold at least one card")


class DeckTemplateUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    format: str | None = None
    commander_name: str | None = None
    description: str | None = None
    archidekt_url: str | None = None
    cards: list[CardLine] | None = None


class DeckImportRequest(BaseModel):
    """Archidekt-compatible text, one "<qty> <name> (<SET>)" per line."""

    name: str = Field(..., min_length=1)
    format: str = "commander"
    text: str = Field(..., examples=["1 Sol Ring (C21)\n// Lands\n36 Forest"])
    commander_name: str | None = None
    archidekt_url: str | None = None


class BuildRequest(BaseModel):
    name: str | None = Field(default=None, description="Defaults to the template name")


class BuiltDeckModel(CamelModel):
    id: int
    name: str
    template_id: int | None = None


class BuildResponse(CamelModel):
    """The new deck instance and how much of it could be reserved."""

    deck: BuiltDeckModel
    reserved_count: int
    missing_count: int
    unmet: list[UnmetLineModel] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, examples=["Budget elf tribal"])
    format: str = "commander"
    commander: str | None = None


def _template_response(template: DeckTemplateDB) -> DeckTemplateResponse:
    lines = template_lines(template)
    return DeckTemplateResponse(
        id=template.id,
        name=template.name,
        format=template.format,
        commander_name=template.commander_name,
        description=template.description,
        archidekt_url=template.archidekt_url,
        cards=[CardLine(**line.to_dict()) for line in lines],
        card_count=sum(line.quantity for line in lines),
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


@router.get("", response_model=list[DeckTemplateResponse])
async def list_templates(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[DeckTemplateResponse]:
    return [_template_response(t) for t in await list_deck_templates(session)]


@router.post("", response_model=DeckTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: DeckTemplateCreate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckTemplateResponse:
    """Create a template. Its cards must add up to at least one copy (422)."""
    async with transaction(session):
        template = await deck_templates.create_template(
            session,
            name=body.name,
            cards=[line.to_line() for line in body.cards],
            format=body.format,
            commander_name=body.commander_name,
            description=body.description,
            archidekt_url=body.archidekt_url,
        )
    return _template_response(template)


@router.post("/import", response_model=DeckTemplateResponse, status_code=status.HTTP_201_CREATED)
async def import_template(
    body: DeckImportRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckTemplateResponse:
    async with transaction(session):
        template = await deck_templates.import_template(
            session,
            name=body.name,
            text=body.text,
            format=body.format,
            commander_name=body.commander_name,
            archidekt_url=body.archidekt_url,
        )
    return _template_response(template)


@router.post("/generate", response_model=DeckTemplateResponse, status_code=status.HTTP_201_CREATED)
async def generate_template(
    body: GenerateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckTemplateResponse:
    """
    Ask the deck assistant for a deck and store it as a template.

    The assistant is called before any transaction is opened. Returns 503
    when generation is not configured or the assistant fails.
    """
    proposal = await generate_deck_proposal(body.prompt, body.format, body.commander)

    async with transaction(session):
        template = await deck_templates.create_template(
            session,
            name=proposal.name,
            cards=proposal.cards,
            format=proposal.format,
            commander_name=proposal.commander_name,
            description=f"Generated from: {body.prompt.strip()}",
        )
    return _template_response(template)


@router.get("/{template_id}", response_model=DeckTemplateResponse)
async def get_template(
    template_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckTemplateResponse:
    template = await deck_templates.require_template(session, template_id)
    return _template_response(template)


@router.get("/{template_id}/export", response_class=PlainTextResponse)
async def export_template(
    template_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> PlainTextResponse:
    """The template as decklist text, one card per line."""
    template = await deck_templates.require_template(session, template_id)
    return PlainTextResponse(format_decklist(template_lines(template)))


@router.put("/{template_id}", response_model=DeckTemplateResponse)
async def update_template(
    template_id: int,
    body: DeckTemplateUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckTemplateResponse:
    fields = body.model_dump(exclude_unset=True, exclude={"cards"})
    cards = [line.to_line() for line in body.cards] if body.cards is not None else None
    async with transaction(session):
        template = await deck_templates.update_template(session, template_id, fields, cards)
    return _template_response(template)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    async with transaction(session):
        await deck_templates.delete_template(session, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/build", response_model=BuildResponse)
async def build_deck(
    template_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    body: BuildRequest | None = None,
) -> BuildResponse:
    """Snapshot the template into a new deck instance and reserve inventory for it."""
    async with transaction(session):
        deck, allocation = await deck_templates.build_deck(
            session, template_id, body.name if body else None
        )
    return BuildResponse(
        deck=BuiltDeckModel(id=deck.id, name=deck.name, template_id=deck.template_id),
        reserved_count=allocation.reserved_count,
        missing_count=allocation.missing_count,
        unmet=[UnmetLineModel(name=u.name, shortfall=u.shortfall) for u in allocation.unmet],
    )
