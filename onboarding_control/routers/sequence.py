"""Sequence router — read and save a user's onboarding content."""

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from onboarding_control.config import DEFAULT_USER_ID
from onboarding_control.errors import InvalidStep
from onboarding_control.services.content import get_sequence, save_sequence

router = APIRouter(prefix="/api/sequence", tags=["Sequence"])


def _user_id(x_user_id: str, user_id: Optional[str]) -> str:
    return x_user_id or user_id or DEFAULT_USER_ID


@router.get("")
async def read_sequence(
    x_user_id: str = Header(""),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    """The user's active sequence, or the built-in default."""
    return {"sequence": get_sequence(_user_id(x_user_id, user_id))}


@router.post("")
async def write_sequence(
    request: Request,
    x_user_id: str = Header(""),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    """Save steps as the user's active sequence.

    Body: {name?, steps: [{day, subject, body}]}. ``days`` is accepted for
    ``steps`` and ``content`` for ``body``.
    """
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be an object")
    steps = body.get("steps", body.get("days"))
    if not steps:
        raise HTTPException(status_code=400, detail="steps required")

    try:
        saved = save_sequence(_user_id(x_user_id, user_id), body.get("name", ""), steps)
    except InvalidStep as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "sequence": saved}
