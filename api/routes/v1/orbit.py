"""
api/routes/v1/orbit.py -- End-user waitlist status and room presence.

Routes:
  GET  /api/v1/orbit/auth/github           -- start browser sign-up (redirect to GitHub)
  GET  /api/v1/orbit/auth/github/callback  -- finish sign-up, redirect to the landing page
  GET  /api/v1/orbit/auth/status           -- waitlist status for a Bearer GitHub token
  POST /api/v1/orbit/rooms/join            -- mark the caller present in a repository room
  GET  /api/v1/orbit/rooms/{owner}/{repo}  -- current room membership

The Bearer token is the GitHub access token the CLI obtained through
/auth/cli/token. It is resolved against the directory's stored credential
tokens; it is never forwarded upstream from these routes.

Security:
  [J1] Only approved users may join a room. Waitlisted and denied users get
       403, unknown tokens get 401.
  [J2] Sign-up state lives in an httpOnly, SameSite=Lax cookie scoped to the
       sign-up paths; a callback without the matching cookie is rejected
       (see auth/signup.py [S1]).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from api.limiter import limiter
from api.models import AuthStatusResponse, RoomJoinRequest, RoomResponse
from auth.dependencies import bearer_token
from auth.signup import complete_signup, landing_url, new_signup_state, states_match
from core.config import get_settings
from core.models import UserStatus
from directory.rooms import RoomSessionTracker
from directory.store import UserDirectory

logger = logging.getLogger("orbit.api.orbit")

_settings = get_settings()

SIGNUP_STATE_COOKIE = "orbit_signup_state"
_SIGNUP_COOKIE_PATH = "/api/v1/orbit/auth/github"

# Auth policy:
# - GET  /orbit/auth/github[/callback]: public -- browser sign-up, state cookie [J2]
# - GET  /orbit/auth/status:          Bearer GitHub token (unknown token -> status "new")
# - POST /orbit/rooms/join:           Bearer GitHub token of an approved user [J1]
# - GET  /orbit/rooms/{owner}/{repo}: Bearer GitHub token of an approved user [J1]
router = APIRouter()


async def _approved_user(request: Request, token: str):
    directory: UserDirectory = request.app.state.directory
    user = await directory.get_user_by_token(token)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Unknown token."},
        )
    if user.status is not UserStatus.approved:
        raise HTTPException(
            status_code=403,
            detail={"code": "not_approved", "message": "Account is not approved yet."},
        )
    return user


@router.get("/orbit/auth/status", response_model=AuthStatusResponse)
async def auth_status(request: Request, token: str = Depends(bearer_token)) -> AuthStatusResponse:
    """Report the waitlist status of the account owning this token."""
    directory: UserDirectory = request.app.state.directory
    user = await directory.get_user_by_token(token)
    if user is None:
        return AuthStatusResponse(status="new")
    return AuthStatusResponse(
        status=user.status.value,
        githubHandle=user.handle,
        email=user.email,
        metadata=dict(user.metadata),
    )


@router.post("/orbit/rooms/join", response_model=RoomResponse)
async def join_room(request: Request, body: RoomJoinRequest, token: str = Depends(bearer_token)) -> RoomResponse:
    user = await _approved_user(request, token)
    rooms: RoomSessionTracker = request.app.state.rooms
    room = await rooms.add_user_to_room(body.repoUrl, user.handle)
    logger.info("%s joined %s/%s", user.handle, room.owner, room.repo)
    return RoomResponse.from_room(room)


@router.get("/orbit/rooms/{owner}/{repo}", response_model=RoomResponse)
async def get_room(request: Request, owner: str, repo: str, token: str = Depends(bearer_token)) -> RoomResponse:
    await _approved_user(request, token)
    rooms: RoomSessionTracker = request.app.state.rooms
    room = await rooms.get_room(f"{owner}/{repo}")
    if room is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "room_not_found", "message": "No one has joined this room."},
        )
    return RoomResponse.from_room(room)


# ---------------------------------------------------------------------------
# Browser sign-up
# ---------------------------------------------------------------------------


@limiter.limit(_settings.cli_start_rate_limit)  # same budget as CLI start; ABOVE @router
@router.get("/orbit/auth/github")
async def github_signup(request: Request) -> RedirectResponse:
    """Send the browser to GitHub to join the waitlist."""
    state = new_signup_state()
    resp = RedirectResponse(request.app.state.signup_provider.authorize_url(state), status_code=302)
    resp.set_cookie(
        SIGNUP_STATE_COOKIE,
        value=state,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.signup_state_max_age_seconds,
        path=_SIGNUP_COOKIE_PATH,
    )
    return resp


@router.get("/orbit/auth/github/callback")
async def github_signup_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
) -> RedirectResponse:
    """Record the GitHub login on the waitlist and redirect to the landing page.

    Upstream failures surface as 400 token_exchange_failed through the
    OrbitError handler in api/main.py.
    """
    if error:
        logger.info("GitHub returned error %r on sign-up callback", error)
        raise HTTPException(
            status_code=400,
            detail={"code": "authorization_failed", "message": "GitHub authorization was not granted."},
        )
    if not code:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_request", "message": "Missing authorization code."},
        )
    if not states_match(request.cookies.get(SIGNUP_STATE_COOKIE), state):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_state", "message": "Sign-up session expired or invalid. Start again."},
        )

    user = await complete_signup(request.app.state.signup_provider, request.app.state.directory, code)
    resp = RedirectResponse(landing_url(_settings.signup_redirect_url, user), status_code=302)
    resp.delete_cookie(SIGNUP_STATE_COOKIE, path=_SIGNUP_COOKIE_PATH)
    resp.headers["Cache-Control"] = "no-store"
    return resp
