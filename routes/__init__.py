"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.basket import router as basket_router

__all__ = [
    "basket_router",
]
