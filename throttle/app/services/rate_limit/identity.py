"""Client identification for rate limiting.

Maps a request to a stable identifier string. Session identities are
hashed so raw tokens never reach the store or the logs; network addresses
are kept readable so operators can reset a specific IP.
"""

import hashlib
from typing import Optional

from starlette.requests import Request

from throttle.app.core.config import settings
from throttle.app.services.rate_limit.models import IdentificationMode

UNKNOWN_ADDRESS = "unknown"


def _hash_token(token: str) -> str:
    # Whole token is hashed; 32 hex chars (128 bits) of the digest are kept
    return hashlib.sha256(token.encode()).hexdigest()[:32]


def get_client_address(request: Request) -> str:
    """Best-effort network address of the caller.

    Order: the connection's peer address, the first X-Forwarded-For entry,
    X-Real-IP, and finally the shared "unknown" bucket.
    """
    if request.client and request.client.host:
        return request.client.host

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    return UNKNOWN_ADDRESS


def get_session_token(request: Request, cookie_name: Optional[str] = None) -> Optional[str]:
    """Opaque session token from the session cookie or a Bearer header."""
    token = request.cookies.get(cookie_name or settings.rate_limit_session_cookie)
    if token and token.strip():
        return token.strip()

    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        bearer = auth[7:].strip()
        if bearer:
            return bearer
    return None


def resolve_identifier(request: Request, mode: IdentificationMode) -> str:
    """Derive the bucket identifier for a request.

    Args:
        request: Incoming request
        mode: Identification mode of the profile being applied

    Returns:
        ``session:<hash>`` or ``ip:<address>``. SESSION mode falls back to
        the IP form when the request carries no session.
    """
    if mode is IdentificationMode.SESSION:
        token = get_session_token(request)
        if token is not None:
            return f"session:{_hash_token(token)}"

    return f"ip:{get_client_address(request)}"
