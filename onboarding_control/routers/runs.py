"""Runs router — inspect, abort and manually process sequence runs."""

from fastapi import APIRouter, Header, HTTPException, Query, Request

from onboarding_control import config
from onboarding_control import supabase_client as db
from onboarding_control.errors import AlreadyEnrolled, EmptySequence, InvalidStep
from onboarding_control.services.event_recorder import SupabaseEventRecorder
from onboarding_control.services.sequence_runner import process_due_runs

router = APIRouter(prefix="/api/runs", tags=["Runs"])


def _require_secret(authorization: str) -> None:
    if config.WEBHOOK_SECRET and authorization != f"Bearer {config.WEBHOOK_SECRET}":
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.get("")
async def list_runs(
    status: str | None = Query(None, description="running, completed or aborted"),
    limit: int = Query(50, ge=1, le=200),
):
    runs = db.get_sequence_runs(status=status, limit=limit)
    return {"count": len(runs), "runs": runs}


@router.get("/{run_id}")
async def run_detail(run_id: str):
    """A run and the events it recorded."""
    run = db.get_sequence_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    events = SupabaseEventRecorder().events_for_run(run["user_id"], run_id)
    return {"run": run, "events": events}


@router.post("/{run_id}/abort")
async def abort_run(request: Request, run_id: str, authorization: str = Header("")):
    _require_secret(authorization)
    if not db.get_sequence_run(run_id):
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    aborted = request.app.state.runner.abort_run(run_id, "aborted by operator")
    if aborted:
        db.log_action("sequence_run_aborted", "sequence_run", run_id)
    return {"status": "aborted" if aborted else "unchanged"}


@router.post("/process-now")
async def process_now(request: Request, authorization: str = Header("")):
    """Manually advance due runs."""
    _require_secret(authorization)
    return await process_due_runs(request.app.state.runner)


@router.post("/test-enroll")
async def test_enroll(request: Request, authorization: str = Header("")):
    """Start a run for a test contact. Body: {user_id, email, steps?}."""
    _require_secret(authorization)
    body = await request.json()
    user_id = (body.get("user_id") or "").strip()
    email = (body.get("email") or "").strip().lower()
    if not user_id or "@" not in email:
        raise HTTPException(status_code=400, detail="user_id and email required")

    try:
        run = request.app.state.runner.start(user_id, email, body.get("steps"))
    except EmptySequence as e:
        return {"status": "empty", "detail": str(e)}
    except AlreadyEnrolled as e:
        return {"status": "already_enrolled", "run_id": e.run_id}
    except InvalidStep as e:
        raise HTTPException(status_code=400, detail=str(e))

    db.log_action("sequence_test_enroll", "sequence_run", run["id"], f"{email} ({user_id})")
    return {"status": "started", "run": run}
