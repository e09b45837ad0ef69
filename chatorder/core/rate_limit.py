"""slowapi limiter for the admin sync endpoints.

Counters live in Redis so every API worker shares them. Authenticated calls
are keyed per bearer token, so dashboard users behind one NAT do not share a
budget; anything else falls back to the client IP.
"""

import hashlib

from slowapi import Limiter
from starlette.requests import Request

from chatorder.core.config import settings


def _client_ip(request: Request) -> str:
    return (
        request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or (request.client.host if request.client else "127.0.0.1")
    )


def rate_limit_key(request: Request) -> str:
    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith("bearer "):
        digest = hashlib.sha256(authorization[7:].strip().encode()).hexdigest()[:16]
        return f"token:{digest}"
    return f"ip:{_client_ip(request)}"


limiter = Limiter(key_func=rate_limit_key, storage_uri=str(settings.redis_url))
