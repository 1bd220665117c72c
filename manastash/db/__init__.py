from manastash.db.database import get_session, init_db, transaction
from manastash.db.operations import (
    create_item,
    create_items,
    delete_item,
    delete_trashed_items,
    find_items,
    get_deck_instance,
    get_deck_template,
    get_item,
    get_item_for_update,
    list_deck_instances,
    list_deck_templates,
    list_items,
    list_reservations,
    recompute_reserved_quantities,
    update_item,
)

__all__ = [
    "create_item",
    "create_items",
    "delete_item",
    "delete_trashed_items",
    "find_items",
    "get_deck_instance",
    "get_deck_template",
    "get_item",
    "get_item_for_update",
    "get_session",
    "init_db",
    "list_deck_instances",
    "list_deck_templates",
    "list_items",
    "list_reservations",
    "recompute_reserved_quantities",
    "transaction",
    "update_item",
]
