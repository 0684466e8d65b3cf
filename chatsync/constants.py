"""Constants shared by the HTTP surface."""

from typing import Final

# Base API prefix (all HTTP routes are served under /api/*)
API_PREFIX: Final = "/api"

# Router prefixes (relative to API_PREFIX)
SYNC_PREFIX: Final = "/sync"
