"""
AI deck generation.

The assistant is an opaque external collaborator: it receives a prompt
and returns decklist text, which is parsed with the regular decklist
parser. Nothing here touches the store, so callers must make the call
before opening a transaction.
"""

import logging
from dataclasses import dataclass, field

import anthropic
from anthropic.types import TextBlock

from manastash.config import settings
from manastash.models.deck import DeckCardLine
from manastash.models.failure import (
    ExternalAPIError,
    InvalidInputError,
    ServiceUnavailableError,
)
from manastash.parsers.decklist import parse_decklist

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a Magic: The Gathering deck builder.

Reply with a decklist and nothing else: one card per line, formatted as
"<quantity> <card name>" with an optional "(<SET>)" suffix. Use exact
English card names. Comment lines starting with // are allowed for section
headers. Respect the format's deck size and copy limits."""


@dataclass
class DeckProposal:
    """A deck suggested by the assistant."""

    name: str
    format: str
    cards: list[DeckCardLine] = field(default_factory=list)
    commander_name: str | None = None
    raw_text: str = ""


def _user_message(prompt: str, format: str, commander: str | None) -> str:
    lines = [f"Format: {format}"]
    if commander:
        lines.append(f"Commander: {commander}")
    lines.append("")
    lines.append(prompt.strip())
    return "\n".join(lines)


async def request_decklist(prompt: str, format: str, commander: str | None = None) -> str:
    """
    Ask the assistant for a decklist.

    Raises:
        ServiceUnavailableError: If no API key is configured.
        ExternalAPIError: If the API call fails.
    """
    if not settings.anthropic_api_key:
        raise ServiceUnavailableError(
            "AI deck generation is not configured", detail="Anthropic API key not configured"
        )

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    try:
        response = await client.messages.create(
            model=settings.deck_generation_model,
            max_tokens=4096,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": _user_message(prompt, format, commander)}],
        )
    except anthropic.APIError as e:
        logger.warning("Deck generation request failed: %s", e)
        raise ExternalAPIError("The deck assistant could not be reached", detail=str(e)) from e

    return "".join(block.text for block in response.content if isinstance(block, TextBlock))


async def generate_deck_proposal(
    prompt: str, format: str = "commander", commander: str | None = None
) -> DeckProposal:
    """
    Generate a deck and parse it into card lines.

    Raises:
        ExternalAPIError: If the reply contains no decklist.
    """
    if not prompt or not prompt.strip():
        raise InvalidInputError("A prompt is required")
    text = await request_decklist(prompt, format, commander)
    cards = parse_decklist(text)
    if not cards:
        raise ExternalAPIError("The deck assistant did not return a decklist", detail=text[:200])

    logger.info("Generated %d-card %s deck", sum(c.quantity for c in cards), format)
    name = commander or prompt.strip().splitlines()[0][:80]
    return DeckProposal(
        name=name, format=format, cards=cards, commander_name=commander, raw_text=text
    )
