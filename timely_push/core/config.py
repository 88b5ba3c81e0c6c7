"""
Application Configuration

Loads environment variables and provides typed settings
for the push fan-out service. Uses python-dotenv to load from .env file.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file from the project root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)

# --- Supabase ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# --- Expo Push Gateway ---
EXPO_PUSH_URL: str = os.getenv(
    "EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"
)
EXPO_ACCESS_TOKEN: str = os.getenv("EXPO_ACCESS_TOKEN", "")

# --- Fan-out tuning ---
# Max recipients dispatched at once. Each recipient is one gateway call.
PUSH_CONCURRENCY_LIMIT: int = int(os.getenv("PUSH_CONCURRENCY_LIMIT", "10"))
PUSH_RECIPIENT_TIMEOUT_SECONDS: float = float(
    os.getenv("PUSH_RECIPIENT_TIMEOUT_SECONDS", "10.0")
)

# --- Trigger authentication ---
# Shared secret the surrounding application sends as a Bearer token.
# Falls back to the service role key when unset.
PUSH_TRIGGER_SECRET: str = os.getenv("PUSH_TRIGGER_SECRET", "")


def validate_supabase_config() -> bool:
    """Check that the Supabase credentials the fan-out needs are present."""
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_SERVICE_ROLE_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    if missing:
        raise EnvironmentError(
            f"Missing required Supabase environment variables: {', '.join(missing)}. "
            f"Please fill in your .env file at: {_env_path}"
        )
    return True


def validate_push_config(
    concurrency_limit: Optional[int] = None,
    recipient_timeout: Optional[float] = None,
) -> tuple[int, float]:
    """
    Resolve and check the fan-out tuning values.

    Args:
        concurrency_limit: Explicit limit, or None for PUSH_CONCURRENCY_LIMIT.
        recipient_timeout: Explicit timeout in seconds, or None for
                           PUSH_RECIPIENT_TIMEOUT_SECONDS.

    Returns:
        (concurrency_limit, recipient_timeout) as they will be used.

    Raises:
        ValueError: If the concurrency limit or the per-recipient timeout
                    is not a positive number.
    """
    limit = PUSH_CONCURRENCY_LIMIT if concurrency_limit is None else concurrency_limit
    timeout = PUSH_RECIPIENT_TIMEOUT_SECONDS if recipient_timeout is None else recipient_timeout

    if limit < 1:
        raise ValueError(f"PUSH_CONCURRENCY_LIMIT must be >= 1, got {limit}")
    if timeout <= 0:
        raise ValueError(f"PUSH_RECIPIENT_TIMEOUT_SECONDS must be > 0, got {timeout}")
    return limit, timeout


def get_trigger_secret() -> str:
    """Secret expected on inbound triggers. Empty when nothing is configured."""
    return PUSH_TRIGGER_SECRET or SUPABASE_SERVICE_ROLE_KEY
