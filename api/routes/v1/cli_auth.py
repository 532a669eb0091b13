"""
api/routes/v1/cli_auth.py -- CLI login and room token endpoints.

Routes:
  POST /api/v1/auth/cli/start       -- register state + PKCE challenge; returns provider URL
  GET  /api/v1/auth/cli/callback    -- provider redirect target; renders an HTML page
  POST /api/v1/auth/cli/token       -- trade state + code_verifier for the provider token
  POST /api/v1/auth/cli/room-token  -- mint a room token for a repository
  GET  /api/v1/auth/cli/room-token  -- verify a room token (signaling server)

The start and token endpoints answer errors in the flat OAuth shape
{"error": code, "error_description": message} that CLI OAuth clients expect,
rather than the {"error": {...}} envelope used elsewhere.

Security:
  [H2] start and token are rate-limited per IP (CLI_START_RATE_LIMIT,
       CLI_TOKEN_RATE_LIMIT). token is polled, so its limit is looser.
  [M5] Cache-Control: no-store on every response that carries a token or
       the callback page.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse

from api.limiter import limiter
from api.models import (
    CliStartRequest,
    CliStartResponse,
    CliTokenRequest,
    CliTokenResponse,
    OAuthErrorResponse,
    RoomTokenRequest,
    RoomTokenResponse,
    RoomTokenVerifyResponse,
)
from auth.dependencies import bearer_token
from auth.flow import CLIAuthorizationFlow
from auth.tokens import decode_room_token, issue_room_token
from core.config import get_settings
from core.errors import AuthFlowError, UpstreamError, ValidationError

_settings = get_settings()

# Auth policy:
# - POST /auth/cli/start:       public -- the CLI has no credential yet
# - GET  /auth/cli/callback:    public -- browser redirect from the provider
# - POST /auth/cli/token:       public -- possession of the code_verifier is the credential
# - POST /auth/cli/room-token:  GitHub token in the body, verified upstream
# - GET  /auth/cli/room-token:  room token as Bearer
router = APIRouter()


def _oauth_error(status_code: int, code: str, description: str | None = None) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=OAuthErrorResponse(error=code, error_description=description).model_dump(exclude_none=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_settings.cli_start_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/cli/start", response_model=CliStartResponse)
async def cli_start(request: Request, body: CliStartRequest) -> JSONResponse:
    """Begin a CLI login. Reusing a state value replaces the earlier session."""
    flow: CLIAuthorizationFlow = request.app.state.cli_flow
    try:
        result = await flow.start(body.code_challenge, body.state, force_reauth=body.force_reauth)
    except ValidationError as exc:
        return _oauth_error(400, "invalid_request", exc.message)
    resp = JSONResponse(content=CliStartResponse(auth_url=result.auth_url, expires_in=result.expires_in).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/cli/callback", response_class=HTMLResponse)
async def cli_callback(request: Request) -> HTMLResponse:
    """Provider redirect target. Always answers with a rendered page."""
    flow: CLIAuthorizationFlow = request.app.state.cli_flow
    result = await flow.callback(request.query_params)
    resp = HTMLResponse(content=result.html, status_code=result.status_code)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_settings.cli_token_rate_limit)  # [H2]
@router.post("/auth/cli/token", response_model=CliTokenResponse)
async def cli_token(request: Request, body: CliTokenRequest) -> JSONResponse:
    """Exchange state + code_verifier for the provider access token.

    Returns authorization_pending until the browser callback has landed; the
    CLI polls this endpoint.
    """
    flow: CLIAuthorizationFlow = request.app.state.cli_flow
    try:
        grant = await flow.token_exchange(body.state, body.code_verifier)
    except ValidationError as exc:
        return _oauth_error(400, "invalid_request", exc.message)
    except (AuthFlowError, UpstreamError) as exc:
        return _oauth_error(exc.status_code, exc.code, exc.message)
    resp = JSONResponse(content=CliTokenResponse.from_grant(grant).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/cli/room-token", response_model=RoomTokenResponse)
async def create_room_token(request: Request, body: RoomTokenRequest) -> JSONResponse:
    """Issue a room token after verifying GitHub identity and repository access.

    An UpstreamError here means GitHub rejected the token, so it maps to 401.
    """
    try:
        issued = await issue_room_token(
            request.app.state.provider,
            body.github_token,
            body.repository,
            body.device_id,
            branch=body.branch,
        )
    except UpstreamError:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_github_token", "message": "GitHub rejected the supplied token."},
        ) from None
    resp = JSONResponse(content=RoomTokenResponse(**issued).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/cli/room-token", response_model=RoomTokenVerifyResponse)
async def verify_room_token(token: str = Depends(bearer_token)) -> RoomTokenVerifyResponse:
    """Verify a room token for the signaling server."""
    payload = decode_room_token(token)
    if payload is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_token", "message": "Invalid or expired room token."},
        )
    return RoomTokenVerifyResponse(payload=payload)
