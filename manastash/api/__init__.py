from manastash.api.autobuy import router as autobuy_router
from manastash.api.deck_instances import router as deck_instances_router
from manastash.api.decks import router as decks_router
from manastash.api.folders import router as folders_router
from manastash.api.health import router as health_router
from manastash.api.inventory import router as inventory_router
from manastash.api.substitution_groups import router as substitution_groups_router
from manastash.api.undo import router as undo_router

__all__ = [
    "autobuy_router",
    "deck_instances_router",
    "decks_router",
    "folders_router",
    "health_router",
    "inventory_router",
    "substitution_groups_router",
    "undo_router",
]
