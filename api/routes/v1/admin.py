"""
api/routes/v1/admin.py -- Operator endpoints for the waitlist.

Routes:
  GET  /api/v1/admin/waitlist           -- all users grouped by status, plus stats
  GET  /api/v1/admin/waitlist?status=x  -- users in one status
  POST /api/v1/admin/waitlist           -- approve or deny a handle
  GET  /api/v1/admin/stats              -- aggregate counts
  POST /api/v1/admin/reconcile          -- rebuild indexes and stats from user records

Every route requires the X-Admin-Secret header (require_admin). With
ADMIN_SECRET unset the routes answer 401 to everyone [M8].
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import (
    ReconcileResponse,
    StatsResponse,
    UserResponse,
    UserStatusEnum,
    WaitlistAction,
    WaitlistActionRequest,
    WaitlistActionResponse,
    WaitlistByStatusResponse,
    WaitlistResponse,
    WaitlistUsers,
)
from auth.dependencies import require_admin
from core.models import UserStatus
from directory.store import UserDirectory

logger = logging.getLogger("orbit.api.admin")

router = APIRouter(dependencies=[Depends(require_admin)])


def _users(users) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in users]


@router.get("/admin/waitlist", response_model=WaitlistResponse | WaitlistByStatusResponse)
async def list_waitlist(
    request: Request,
    status: Optional[UserStatusEnum] = None,
) -> WaitlistResponse | WaitlistByStatusResponse:
    directory: UserDirectory = request.app.state.directory
    if status is not None:
        users = await directory.get_users_by_status(UserStatus(status.value))
        return WaitlistByStatusResponse(users=_users(users))

    waitlisted, approved, denied = await asyncio.gather(
        directory.get_users_by_status(UserStatus.waitlisted),
        directory.get_users_by_status(UserStatus.approved),
        directory.get_users_by_status(UserStatus.denied),
    )
    stats = await directory.get_stats()
    return WaitlistResponse(
        stats=StatsResponse.from_stats(stats),
        users=WaitlistUsers(waitlisted=_users(waitlisted), approved=_users(approved), denied=_users(denied)),
    )


@router.post("/admin/waitlist", response_model=WaitlistActionResponse)
async def update_waitlist(request: Request, body: WaitlistActionRequest) -> WaitlistActionResponse:
    """Approve or deny a handle. Repeating the same action is a no-op."""
    directory: UserDirectory = request.app.state.directory
    if body.action is WaitlistAction.approve:
        user = await directory.approve_user(body.githubHandle)
    else:
        user = await directory.deny_user(body.githubHandle)
    logger.info("Admin %sd %s", body.action.value, user.handle)
    return WaitlistActionResponse(
        message=f"User {user.handle} has been {body.action.value}d",
        user=UserResponse.from_user(user),
    )


@router.get("/admin/stats", response_model=StatsResponse)
async def get_stats(request: Request) -> StatsResponse:
    directory: UserDirectory = request.app.state.directory
    return StatsResponse.from_stats(await directory.get_stats())


@router.post("/admin/reconcile", response_model=ReconcileResponse)
async def reconcile(request: Request) -> ReconcileResponse:
    directory: UserDirectory = request.app.state.directory
    report = await directory.reconcile()

    def _group(pairs: list[tuple[str, str]]) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for status, handle in pairs:
            grouped.setdefault(status, []).append(handle)
        return grouped

    return ReconcileResponse(
        usersScanned=report.users_scanned,
        added=_group(report.added),
        removed=_group(report.removed),
        skippedKeys=report.skipped_keys,
        stats=StatsResponse.from_stats(report.stats),
    )
