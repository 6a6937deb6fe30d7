"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from onboarding_control import supabase_client as db
from onboarding_control.routers import members, metrics, runs, sequence, webhooks
from onboarding_control.services.content import SupabaseContentLookup
from onboarding_control.services.delivery import ResendDelivery
from onboarding_control.services.event_recorder import SupabaseEventRecorder
from onboarding_control.services.members import SupabaseStatusSink
from onboarding_control.services.run_store import SupabaseRunStore
from onboarding_control.services.sequence_runner import SequenceRunner
from onboarding_control.services.triggers import EnrollmentTrigger

logger = logging.getLogger(__name__)


def build_runner() -> SequenceRunner:
    """Runner wired to Supabase and Resend."""
    return SequenceRunner(
        content=SupabaseContentLookup(),
        delivery=ResendDelivery(),
        recorder=SupabaseEventRecorder(),
        status_sink=SupabaseStatusSink(),
        store=SupabaseRunStore(),
        audit=db.log_action,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    scheduler = None
    try:
        from onboarding_control.scheduler import build_scheduler
        scheduler = build_scheduler(app.state.runner)
        scheduler.start()
        logger.info("Scheduler started, advancing due sequence runs")
    except Exception as e:
        logger.warning("Scheduler failed to start: %s", e)

    yield

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)


def create_app(runner: SequenceRunner | None = None,
               trigger: EnrollmentTrigger | None = None) -> FastAPI:
    app = FastAPI(
        title="Onboarding Control",
        description="Member onboarding sequences: enrollment webhooks, content editing, delivery monitoring.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.runner = runner or build_runner()
    app.state.trigger = trigger or EnrollmentTrigger()
    app.state.trigger.on_enrollment(app.state.runner.handle_enrollment)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    app.include_router(webhooks.router, include_in_schema=False)
    for r in [sequence, members, metrics, runs]:
        app.include_router(r.router)

    return app
