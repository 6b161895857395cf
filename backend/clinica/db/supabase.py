"""Supabase client shared by the store repository and the auth dependency."""

import logging

from clinica.core.config import settings
from clinica.core.exceptions import DatabaseError
from supabase import Client, create_client
from supabase.client import ClientOptions

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Process-wide Supabase client, created on first use."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create the client.

        Uses the service-role key: row-level security is bypassed, so
        every query must filter by the acting user itself.

        Raises:
            DatabaseError: If the store is not configured or the client
                cannot be built.
        """
        if cls._client is not None:
            return cls._client

        if not settings.is_configured:
            raise DatabaseError("Store is not configured: set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")

        try:
            cls._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
                options=ClientOptions(postgrest_client_timeout=settings.SUPABASE_TIMEOUT_SECONDS),
            )
        except Exception as e:
            logger.exception("Failed to initialize Supabase client")
            raise DatabaseError(f"Failed to initialize database connection: {e}") from e

        logger.info("Supabase client initialized", extra={"url": settings.SUPABASE_URL})
        return cls._client

    @classmethod
    def reset_client(cls) -> None:
        """Drop the cached client; the next call builds a new one."""
        cls._client = None


def get_supabase_client() -> Client:
    """FastAPI dependency returning the shared client."""
    return SupabaseClient.get_client()
