"""
ManaStash services.

Business logic for the inventory, folders, deck reservations, undo history
and the autobuy analytics. Every mutating function expects to run inside
one `manastash.db.database.transaction()` and never commits on its own.
"""
