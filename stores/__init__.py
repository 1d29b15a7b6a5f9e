"""
Store backends.

Protocols live in stores.base; backends are imported from their modules
(stores.memory, stores.supabase_store) by services.session_service.
"""

from stores.base import (
    DraftStore,
    OrderCallback,
    OrderStore,
    ProfileStore,
    Subscription,
)

__all__ = [
    "DraftStore",
    "OrderCallback",
    "OrderStore",
    "ProfileStore",
    "Subscription",
]
