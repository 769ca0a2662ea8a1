"""
docrepo Global Constants

Centralized location for field names and key conventions shared by the
repository layer and its collaborators.
"""

from datetime import datetime, timezone

# Document field names stamped by the repository layer
ID_FIELD = "id"
CREATED_AT_FIELD = "createdAt"
UPDATED_AT_FIELD = "updatedAt"

# Fields a client is never allowed to write on update
PROTECTED_UPDATE_FIELDS = frozenset({ID_FIELD, CREATED_AT_FIELD})

# Cache key layout: "<collection>:<operation>:<json params>"
CACHE_KEY_SEPARATOR = ":"


# Timestamp Functions
def get_current_timestamp() -> datetime:
    """Get current timestamp with UTC timezone.

    Returns:
        datetime: Current UTC timestamp

    Note: Use this function instead of a constant to get real-time timestamps.
    """
    return datetime.now(timezone.utc)


# Application Constants
APP_VERSION = "0.1.0"
