from manastash.parsers.decklist import format_decklist, parse_decklist, parse_decklist_line

__all__ = [
    "format_decklist",
    "parse_decklist",
    "parse_decklist_line",
]
