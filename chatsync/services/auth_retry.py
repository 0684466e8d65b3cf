"""Retry a remote call once after recovering an expired session.

Managed backends reject requests with an expired JWT long before the client
notices.  Rather than surfacing that as a write failure, the call is retried
exactly once after a session refresh.  Non-auth errors propagate untouched
so the reconciler can treat them as transient failures.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionRecovery = Callable[[], Awaitable[bool]]

_AUTH_STATUSES = {401, 403}
_AUTH_CODES = {"PGRST301"}  # JWT expired
_AUTH_WORDS = ("jwt", "token", "unauthorized", "forbidden")


def is_auth_error(error: Any) -> bool:  # noqa: D401 – helper
    """Return *True* when *error* looks like an expired or invalid session."""

    if error is None:
        return False

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status in _AUTH_STATUSES:
        return True

    code = getattr(error, "code", None)
    if code in _AUTH_CODES or code in _AUTH_STATUSES:
        return True

    message = str(getattr(error, "message", None) or error).lower()
    return any(word in message for word in _AUTH_WORDS)


async def with_auth_retry(
    operation: Callable[[], Awaitable[T]],
    recover_session: Optional[SessionRecovery],
    context: str = "operation",
) -> T:
    """Run *operation*; on an auth error recover the session and run it again.

    The retry happens at most once, and only when ``recover_session``
    reports success.  Otherwise the original error is re-raised.
    """
    try:
        return await operation()
    except Exception as exc:
        if recover_session is None or not is_auth_error(exc):
            raise
        logger.warning("%s: auth error (%s); attempting session recovery", context, exc)
        if not await recover_session():
            logger.error("%s: session recovery failed", context)
            raise

    logger.info("%s: session recovered, retrying once", context)
    return await operation()


__all__ = [
    "SessionRecovery",
    "is_auth_error",
    "with_auth_retry",
]
