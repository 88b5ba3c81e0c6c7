"""
Supabase Client

Provides the initialized Supabase client for the fan-out service.
Push delivery runs server-side across every event's participants,
so only the service role client is needed here.
"""

from supabase import create_client, Client
from timely_push.core.config import (
    SUPABASE_URL,
    SUPABASE_SERVICE_ROLE_KEY,
    validate_supabase_config,
)

# Module-level client, initialized lazily
_service_client: Client | None = None


def get_service_client() -> Client:
    """
    Get the Supabase client using the service_role (admin) key.

    WARNING: This client BYPASSES Row Level Security.
    It is used to read chat participants and push tokens for every
    recipient of a notification, and to write the delivery status back.
    """
    global _service_client
    if _service_client is None:
        validate_supabase_config()
        _service_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    return _service_client
