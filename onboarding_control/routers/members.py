"""Members router — members currently in onboarding."""

from fastapi import APIRouter, Query

from onboarding_control.services.members import list_active_members

router = APIRouter(prefix="/api/members", tags=["Members"])


@router.get("")
async def active_members(limit: int = Query(50, ge=1, le=200)):
    members = list_active_members(limit=limit)
    return {
        "members": members,
        "message": "" if members else "No active members found",
    }
