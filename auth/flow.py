"""
auth/flow.py -- CLI authorization: PKCE-protected OAuth code flow for a
terminal client that cannot receive the provider redirect itself.

Sequence:
  1. CLI generates code_verifier, sends S256(code_verifier) and a random
     state to start(); opens the returned auth_url in the browser.
  2. The provider redirects the browser to callback() with code and state;
     the code is parked on the session and a success page is shown.
  3. CLI polls token_exchange() with state and code_verifier. Until the
     callback lands it receives authorization_pending. Once the code is
     present and the verifier matches, the code is traded upstream and the
     session is deleted.

Session lifecycle:
  PENDING -> CODE_RECEIVED -> CONSUMED (deleted)
  Any state -> EXPIRED after the store TTL. Expired and consumed sessions
  are both reported as "session not found".

Security notes:
  [F1] The verifier is checked BEFORE the code is used. A caller that only
       knows the state value (visible in the browser URL) cannot redeem it.
  [F2] A failed verifier leaves the session untouched, so a guessing attacker
       cannot knock out the legitimate CLI's session.
  [F3] The session is claimed with compare_and_set() before the upstream
       call. Two concurrent exchanges for one state produce at most one
       upstream request; the loser sees authorization_pending.
  [F4] Upstream failures are reported with a generic message and the session
       is released so the CLI can retry within the TTL. Unexpected errors and
       cancellation during the exchange release the session too.
  [X1] Provider error text shown on the callback page is HTML-escaped by the
       template engine (see auth/pages.py).

Layer rule: no imports from api/ or storage/. directory/ is optional and
injected by the caller.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Optional

from auth import pages
from auth.models import AuthSession, CallbackResult, StartResult, TokenGrant
from auth.pkce import is_valid_code_challenge, verify_code_verifier
from auth.provider import OAuthProvider
from auth.sessions import AuthSessionStore
from core.errors import (
    AuthorizationPendingError,
    BackendError,
    InvalidGrantError,
    SessionNotFoundError,
    UpstreamError,
    ValidationError,
)

if TYPE_CHECKING:
    from directory.store import UserDirectory

logger = logging.getLogger("orbit.auth.flow")

# Upper bound on the client-chosen state value. It is used as a dict key.
MAX_STATE_LENGTH = 512


class CLIAuthorizationFlow:
    def __init__(
        self,
        sessions: AuthSessionStore,
        provider: OAuthProvider,
        directory: Optional["UserDirectory"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._provider = provider
        self._directory = directory
        self._clock = clock

    @property
    def expires_in(self) -> int:
        return self._sessions.ttl_seconds

    # ------------------------------------------------------------------
    # Step 1: start
    # ------------------------------------------------------------------

    async def start(self, code_challenge: str, state: str, force_reauth: bool = False) -> StartResult:
        """Register a PENDING session for state and return the provider URL.

        Reusing a state value replaces the earlier session.
        """
        if not code_challenge or not state:
            raise ValidationError("Missing required parameters")
        if not is_valid_code_challenge(code_challenge):
            raise ValidationError("Invalid code_challenge format")
        if len(state) > MAX_STATE_LENGTH:
            raise ValidationError("Invalid state")

        await self._sessions.set(state, AuthSession(code_challenge=code_challenge, created_at=self._clock()))
        return StartResult(
            auth_url=self._provider.authorize_url(state, force_reauth=force_reauth),
            expires_in=self.expires_in,
        )

    # ------------------------------------------------------------------
    # Step 2: provider redirect
    # ------------------------------------------------------------------

    async def callback(self, query: Mapping[str, str]) -> CallbackResult:
        """Attach the provider's code to the session named by state.

        Never raises for protocol problems; every outcome is a rendered page.
        """
        error = query.get("error")
        if error:
            description = query.get("error_description") or "Authentication failed"
            logger.info("Provider returned error %r on CLI callback", error)
            return CallbackResult(400, "failed", pages.failure_page(description))

        code = query.get("code")
        state = query.get("state")
        if not code or not state:
            return CallbackResult(400, "failed", pages.failure_page("Missing code or state parameter"))

        session = await self._sessions.get(state)
        if session is None:
            return CallbackResult(400, "expired", pages.expired_page())

        updated = dataclasses.replace(session, code=code)
        if not await self._sessions.compare_and_set(state, session, updated):
            # Expired or consumed between the read and the write.
            return CallbackResult(400, "expired", pages.expired_page())
        return CallbackResult(200, "success", pages.success_page())

    # ------------------------------------------------------------------
    # Step 3: token exchange [F1-F4]
    # ------------------------------------------------------------------

    async def token_exchange(self, state: str, code_verifier: str) -> TokenGrant:
        if not state or not code_verifier:
            raise ValidationError("Missing required parameters: state and code_verifier")

        session = await self._sessions.get(state)
        if session is None:
            raise SessionNotFoundError()
        if not verify_code_verifier(code_verifier, session.code_challenge):
            raise InvalidGrantError()
        if session.code is None or session.exchanging:
            raise AuthorizationPendingError()

        claimed = dataclasses.replace(session, exchanging=True)
        if not await self._sessions.compare_and_set(state, session, claimed):
            raise AuthorizationPendingError()

        try:
            token = await self._provider.exchange_code(session.code)
            profile = await self._provider.fetch_profile(token["access_token"])
        except UpstreamError:
            await self._release(state, claimed, session)
            raise
        except Exception:
            logger.exception("Unexpected failure during upstream code exchange")
            await self._release(state, claimed, session)
            raise UpstreamError() from None
        except BaseException:
            # Cancelled mid-exchange (client disconnect, shutdown).
            await self._release(state, claimed, session)
            raise

        await self._sessions.delete(state)
        grant = TokenGrant(
            access_token=token["access_token"],
            user=profile,
            token_type=token.get("token_type") or "bearer",
            scope=token.get("scope") or "",
        )
        if self._directory is not None:
            await self._enroll(grant)
        return grant

    async def _release(self, state: str, claimed: AuthSession, original: AuthSession) -> None:
        """Drop the exchange claim so the next poll can retry [F4]."""
        await self._sessions.compare_and_set(state, claimed, original)

    async def _enroll(self, grant: TokenGrant) -> None:
        """Record the authenticated login in the user directory.

        The upstream code is already spent, so a storage failure here is
        logged and the grant is still returned.
        """
        profile = grant.user
        try:
            await self._directory.create_or_update_user(
                profile.login,
                email=profile.email,
                token=grant.access_token,
                metadata=profile.as_metadata(),
            )
        except BackendError:
            logger.exception("Could not enroll %s in the user directory", profile.login)
