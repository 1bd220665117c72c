"""
Parser for Archidekt-compatible decklist text.

Decklist format:
    <quantity> <card name> [(<set_code>)]

Example:
    1 Sol Ring (C21)
    4 Lightning Bolt
    // Lands
    36 Mountain

Lines starting with // or # are comments. Blank lines and lines that do
not match the pattern are skipped.
"""

import re

from manastash.models.deck import DeckCardLine

# Pattern: "1 Sol Ring (C21)" or "4 Lightning Bolt"
# Groups: (quantity, card_name, set_code)
DECKLIST_LINE_PATTERN = re.compile(r"^\s*(\d+)\s+(.+?)(?:\s+\(([A-Z0-9]+)\))?\s*$")

COMMENT_PREFIXES = ("//", "#")


def parse_decklist_line(line: str) -> DeckCardLine | None:
    """
    Parse a single decklist line.

    Returns None for comments, blank lines, unparseable lines and
    zero quantities.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith(COMMENT_PREFIXES):
        return None

    match = DECKLIST_LINE_PATTERN.match(line)
    if not match:
        return None

    quantity, name, set_code = match.groups()
    if int(quantity) <= 0:
        return None
    return DeckCardLine(name=name.strip(), quantity=int(quantity), set_code=set_code)


def parse_decklist(text: str) -> list[DeckCardLine]:
    """
    Parse decklist text into card lines, in order of appearance.

    Args:
        text: Raw decklist text

    Returns:
        List of DeckCardLine. Empty list if nothing parses.
    """
    if not text or not text.strip():
        return []

    lines: list[DeckCardLine] = []
    for raw in text.splitlines():
        parsed = parse_decklist_line(raw)
        if parsed is not None:
            lines.append(parsed)
    return lines


def format_decklist(lines: list[DeckCardLine]) -> str:
    """Render card lines back into decklist text."""
    rendered = []
    for line in lines:
        suffix = f" ({line.set_code})" if line.set_code else ""
        rendered.append(f"{line.quantity} {line.name}{suffix}")
    return "\n".join(rendered)
