"""
Database connection management.

Provides the Supabase client singleton used by the Supabase store backend.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings
from exceptions import IoError

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call get_supabase_client.cache_clear() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        IoError: If credentials are missing or the connection fails
    """
    if not settings.supabase_configured:
        raise IoError(
            "supabase",
            "Supabase is not configured (SUPABASE_URL / SUPABASE_KEY missing)"
        )

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_key
        )

        logger.info(
            "supabase_connected",
            status="success"
        )

        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise IoError("supabase", f"Failed to connect to Supabase: {e}") from e


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check store connection health.

    The in-memory backend is always healthy; the Supabase backend runs a
    cheap count against the orders table.

    Returns:
        dict: Connection status with details
    """
    if settings.store_backend == "memory":
        return {"status": "healthy", "backend": "memory"}

    try:
        client = get_supabase_client()
        orders = client.table("orders").select("id", count="exact").limit(1).execute()

        return {
            "status": "healthy",
            "backend": "supabase",
            "orders_count": orders.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "backend": "supabase",
            "error": str(e)
        }


def reset_connection():
    """
    Reset the cached database connection.

    Call this if connection becomes stale or after config changes.
    """
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
