"""
auth/dependencies.py -- FastAPI Depends() helpers for the Orbit routes.

Two credentials are recognised:
  1. X-Admin-Secret header -- operator access to the waitlist admin routes.
  2. Authorization: Bearer <github token> -- end-user routes that act on
     behalf of a GitHub identity (status check, room join).

require_admin() raises HTTP 401 when the secret is missing, wrong, or not
configured at all [M8].
bearer_token() raises HTTP 401 when no bearer token is present. It does not
validate the token; the route resolves it against the directory or GitHub.

Layer rule: no imports from directory/ or storage/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from core.config import get_settings


def require_admin(request: Request) -> None:
    """Require a matching X-Admin-Secret header.

    Use as a FastAPI dependency:
        @router.get("/admin/waitlist", dependencies=[Depends(require_admin)])
    """
    configured = get_settings().admin_secret
    supplied = request.headers.get("X-Admin-Secret", "")
    # Empty ADMIN_SECRET disables admin access entirely [M8].
    if not configured or not supplied or not hmac.compare_digest(supplied.encode(), configured.encode()):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Admin credentials required."},
        )


def bearer_token(request: Request) -> str:
    """Return the raw bearer token or raise HTTP 401."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Bearer token required."},
    )
