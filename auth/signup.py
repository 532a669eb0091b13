"""
auth/signup.py -- Browser sign-up onto the waitlist through GitHub's web flow.

Sequence:
  1. new_signup_state() returns a random state. The API keeps it in an
     httpOnly cookie and redirects the browser to provider.authorize_url().
  2. GitHub redirects back with code and state. states_match() compares the
     returned state against the cookie, then complete_signup() trades the
     code, reads the profile and records the login in the directory.
  3. The browser is sent to the landing page with ?status=&handle=.

Security notes:
  [S1] The state is bound to the browser by cookie and compared in constant
       time. A callback URL minted in another browser is rejected.
  [S2] The GitHub access token never appears in the landing URL, whatever
       the user's status.

Layer rule: no imports from api/ or storage/. The directory is passed in by
the caller.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlencode

from auth.provider import OAuthProvider
from core.errors import UpstreamError
from core.models import User

if TYPE_CHECKING:
    from directory.store import UserDirectory

logger = logging.getLogger("orbit.auth.signup")


def new_signup_state() -> str:
    return secrets.token_urlsafe(32)


def states_match(expected: Optional[str], received: Optional[str]) -> bool:
    """Constant-time comparison of the cookie state and the returned state [S1]."""
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


async def complete_signup(provider: OAuthProvider, directory: "UserDirectory", code: str) -> User:
    """Exchange code, fetch the profile, and create or refresh the waitlist entry.

    New logins land on the waitlist; returning logins keep their status and
    get their stored credential token refreshed.

    Raises:
        UpstreamError: GitHub rejected the code or answered with something unusable.
        BackendError:  the directory could not be written.
    """
    try:
        token = await provider.exchange_code(code)
        profile = await provider.fetch_profile(token["access_token"])
    except UpstreamError:
        raise
    except Exception:
        logger.exception("Unexpected failure during sign-up code exchange")
        raise UpstreamError() from None

    user = await directory.create_or_update_user(
        profile.login,
        email=profile.email,
        token=token["access_token"],
        metadata=profile.as_metadata(),
    )
    logger.info("Browser sign-up for %s (status=%s)", user.handle, user.status.value)
    return user


def landing_url(base: str, user: User) -> str:
    """Landing page URL carrying status and handle only [S2]."""
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode({'status': user.status.value, 'handle': user.handle})}"
