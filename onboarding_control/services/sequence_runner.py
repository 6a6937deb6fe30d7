"""Sequence runner — durable, step-at-a-time execution of onboarding sequences.

Each run is a row in the run store holding the steps still to send and a
``resume_at`` timestamp. Nothing waits in memory: the scheduler calls
``run_due`` periodically and every due run is advanced until it suspends
again. A step counts as done once its ``email_sent`` event is recorded, so a
restarted process never re-sends it. A delivered message is parked on the run
as ``pending_sent`` before it is recorded, so a failed record is retried
without sending again.

Checkpoints are only written while the stored run is still running, so an
abort that lands while a step is in flight stays in place.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from onboarding_control.config import RECORD_RETRY_ATTEMPTS
from onboarding_control.errors import (
    AlreadyEnrolled,
    EmptySequence,
    InvalidStep,
    PermanentDeliveryFailure,
    RecordKeepingError,
    TransientDeliveryFailure,
)
from onboarding_control.sequences import normalize_steps
from onboarding_control.services import events
from onboarding_control.services.step_clock import resume_at, retry_backoff

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
ABORTED = "aborted"

# Lock to prevent overlapping scheduler ticks from advancing the same runs
_processing_lock = asyncio.Lock()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO timestamp from a row; naive values are taken as UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SequenceRunner:
    """Drives sequence runs through their steps.

    Collaborators:
        content: ``get_active_sequence(user_id) -> list[dict] | None``
        delivery: ``send(address, subject, body) -> {"delivery_id": ...}``
        recorder: ``append(event)`` and ``has_event(user_id, event_type, predicate)``
        status_sink: ``set_status(user_id, label, **fields)``, best effort
        store: ``create``, ``get``, ``save``, ``list_running``, ``list_due``.
            ``save`` only writes while the stored run is running and returns
            None otherwise
        clock: returns the current aware datetime
        audit: optional ``(action, entity_type, entity_id, details)`` callable
            used to surface run errors to operators
    """

    def __init__(self, content, delivery, recorder, status_sink, store,
                 clock: Callable[[], datetime] = utc_now,
                 audit: Callable[..., Any] | None = None,
                 record_attempts: int = RECORD_RETRY_ATTEMPTS):
        self.content = content
        self.delivery = delivery
        self.recorder = recorder
        self.status_sink = status_sink
        self.store = store
        self.clock = clock
        self.audit = audit
        self.record_attempts = max(record_attempts, 1)

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def start(self, user_id: str, contact_address: str, steps: list | None = None) -> dict:
        """Create a run for a user and record its start.

        ``steps`` defaults to the user's active sequence from the content
        lookup. Raises EmptySequence when there is nothing to send and
        AlreadyEnrolled when the user already has a running run.
        """
        if steps is None:
            steps = self.content.get_active_sequence(user_id)
        steps = normalize_steps(steps)
        if not steps:
            raise EmptySequence(user_id)

        running = self.store.list_running(user_id)
        if running:
            raise AlreadyEnrolled(user_id, running[0]["id"])

        now = self.clock()
        run = self.store.create({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "contact_address": contact_address,
            "steps_remaining": steps,
            "step_count": len(steps),
            "last_completed_day": 0,
            "started_at": now.isoformat(),
            "resume_at": resume_at(now, 0, steps[0]["day"]).isoformat(),
            "attempts": 0,
            "last_error": None,
            "started_recorded": False,
            "pending_sent": None,
            "status": RUNNING,
            "completed_at": None,
            "updated_at": now.isoformat(),
        })
        logger.info("Started sequence run %s for %s (%d steps, first at %s)",
                    run["id"], user_id, len(steps), run["resume_at"])

        self._set_status(user_id, "Enrolled", status="active", current_day=0)
        try:
            self._ensure_started(run)
        except RecordKeepingError as e:
            # The run exists; advance() records the start before its first step.
            self._flag_error(run, e)
            return run
        return self._checkpoint(run)

    def handle_enrollment(self, user_id: str, contact_address: str) -> dict | None:
        """Trigger callback: start a run, ignoring users with nothing to do."""
        try:
            return self.start(user_id, contact_address)
        except EmptySequence:
            logger.info("No active sequence for %s, nothing to run", user_id)
        except AlreadyEnrolled as e:
            logger.info("Ignoring duplicate enrollment for %s (run %s)", user_id, e.run_id)
        except InvalidStep as e:
            logger.warning("Sequence for %s is malformed, not enrolling: %s", user_id, e)
        return None

    # ------------------------------------------------------------------
    # Advancing
    # ------------------------------------------------------------------

    def advance(self, run_id: str) -> dict | None:
        """Execute at most one step of a run, if it is due.

        Returns the run as stored afterwards, or None if it does not exist.
        Runs that are not running, or whose ``resume_at`` is in the future,
        are returned unchanged.
        """
        run = self.store.get(run_id)
        if run is None:
            logger.warning("Sequence run %s not found", run_id)
            return None
        if run["status"] != RUNNING:
            return run

        now = self.clock()
        due_at = parse_timestamp(run.get("resume_at"))
        if due_at is not None and now < due_at:
            return run

        self._ensure_started(run)

        remaining = run.get("steps_remaining") or []
        if not remaining:
            return self._complete(run, now)

        step = remaining[0]
        index = self._step_index(run)

        if self.recorder.has_event(run["user_id"], events.EMAIL_SENT, events.for_step(run["id"], index)):
            logger.info("Run %s step %d already sent, resuming at next step", run["id"], index)
            return self._finish_step(run, step, now)

        pending = run.get("pending_sent")
        if pending and pending.get("step") == index:
            logger.info("Run %s step %d was delivered but not recorded, recording it now",
                        run["id"], index)
            return self._mark_sent(run, step, pending)

        try:
            result = self.delivery.send(run["contact_address"], step["subject"], step["body"])
        except PermanentDeliveryFailure as e:
            attempt = (run.get("attempts") or 0) + 1
            self._record_failure(run, index, step, e, attempt)
            logger.warning("Run %s day %d failed permanently, moving on: %s",
                           run["id"], step["day"], e)
            return self._finish_step(run, step, self.clock(), error=str(e))
        except TransientDeliveryFailure as e:
            attempt = (run.get("attempts") or 0) + 1
            self._record_failure(run, index, step, e, attempt)
            retry_at = now + retry_backoff(attempt)
            logger.info("Run %s day %d transient failure (attempt %d), retrying at %s: %s",
                        run["id"], step["day"], attempt, retry_at.isoformat(), e)
            run.update({
                "attempts": attempt,
                "resume_at": retry_at.isoformat(),
                "last_error": str(e),
                "updated_at": now.isoformat(),
            })
            return self._checkpoint(run)

        sent_at = self.clock()
        started_at = parse_timestamp(run["started_at"])
        pending = {
            "step": index,
            "day": step["day"],
            "delivery_id": result.get("delivery_id", ""),
            "latency_ms": max(int((sent_at - started_at).total_seconds() * 1000), 0),
            "subject": step["subject"],
            "sent_at": sent_at.isoformat(),
        }
        run.update({"pending_sent": pending, "updated_at": sent_at.isoformat()})
        logger.info("Run %s sent day %d to %s (%d ms since start)",
                    run["id"], step["day"], run["contact_address"], pending["latency_ms"])
        if self.store.save(run) is None:
            # Aborted mid-send. The message went out, so it is still recorded.
            self._record_sent(run, pending)
            return self._stopped(run)
        return self._mark_sent(run, step, pending)

    def drive(self, run_id: str) -> dict | None:
        """Advance a run until it suspends, finishes, or disappears."""
        run = self.store.get(run_id)
        if run is None:
            return None
        # Bounded so a misbehaving store can't spin forever
        for _ in range(len(run.get("steps_remaining") or []) + 2):
            if run is None or run["status"] != RUNNING:
                break
            due_at = parse_timestamp(run.get("resume_at"))
            if due_at is not None and self.clock() < due_at:
                break
            run = self.advance(run["id"])
        return run

    def run_due(self) -> dict:
        """Advance every running run whose resume time has passed.

        Returns counts: {processed, steps, completed, errors}.
        """
        runs = self.store.list_due(self.clock())
        steps = completed = errors = 0

        for run in runs:
            before = len(run.get("steps_remaining") or [])
            try:
                result = self.drive(run["id"])
            except RecordKeepingError as e:
                errors += 1
                logger.error("Run %s stopped at its last checkpoint: %s", run["id"], e)
                self._flag_error(run, e)
                continue
            except Exception as e:
                errors += 1
                logger.exception("Error advancing sequence run %s", run["id"])
                self._flag_error(run, e)
                continue
            if result is None:
                continue
            steps += before - len(result.get("steps_remaining") or [])
            if result["status"] == COMPLETED:
                completed += 1

        return {"processed": len(runs), "steps": steps, "completed": completed, "errors": errors}

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def abort_run(self, run_id: str, reason: str = "") -> bool:
        """Mark a running run aborted. Sent steps and recorded events stay."""
        run = self.store.get(run_id)
        if not run or run["status"] != RUNNING:
            return False
        now = self.clock()
        run.update({
            "status": ABORTED,
            "resume_at": None,
            "last_error": reason or run.get("last_error"),
            "completed_at": now.isoformat(),
            "updated_at": now.isoformat(),
        })
        if self.store.save(run) is None:
            return False
        self._set_status(run["user_id"], "Aborted")
        logger.info("Aborted sequence run %s for %s %s", run_id, run["user_id"], reason)
        return True

    def abort(self, user_id: str, reason: str = "membership ended") -> int:
        """Abort every running run for a user. Returns how many were aborted."""
        return sum(1 for run in self.store.list_running(user_id)
                   if self.abort_run(run["id"], reason))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish_step(self, run: dict, step: dict, now: datetime, error: str | None = None) -> dict:
        """Checkpoint a step as done (sent or permanently failed) and schedule the next."""
        remaining = (run.get("steps_remaining") or [])[1:]
        run.update({
            "steps_remaining": remaining,
            "last_completed_day": max(run.get("last_completed_day") or 0, step["day"]),
            "attempts": 0,
            "last_error": error,
            "pending_sent": None,
            "updated_at": now.isoformat(),
        })
        if not remaining:
            return self._complete(run, now)
        run["resume_at"] = resume_at(now, step["day"], remaining[0]["day"]).isoformat()
        return self._checkpoint(run)

    def _complete(self, run: dict, now: datetime) -> dict:
        current = self.store.get(run["id"])
        if current is None or current["status"] != RUNNING:
            return self._stopped(run)
        if not self.recorder.has_event(run["user_id"], events.SEQUENCE_COMPLETED,
                                       events.for_run(run["id"])):
            self._record(run, events.SEQUENCE_COMPLETED, {"total_days": run["step_count"]}, now)
        run.update({
            "status": COMPLETED,
            "resume_at": None,
            "completed_at": now.isoformat(),
            "updated_at": now.isoformat(),
        })
        saved = self.store.save(run)
        if saved is None:
            return self._stopped(run)
        self._set_status(run["user_id"], "Completed", status="completed")
        logger.info("Sequence run %s completed for %s", run["id"], run["user_id"])
        return saved

    def _mark_sent(self, run: dict, step: dict, pending: dict) -> dict:
        """Record a delivered step and move the run past it."""
        self._record_sent(run, pending)
        self._set_status(run["user_id"], f"Day {step['day']}: Sent", current_day=step["day"])
        return self._finish_step(run, step, parse_timestamp(pending["sent_at"]))

    def _record_sent(self, run: dict, pending: dict) -> dict:
        data = {k: v for k, v in pending.items() if k != "sent_at"}
        return self._record(run, events.EMAIL_SENT, data, parse_timestamp(pending["sent_at"]))

    def _checkpoint(self, run: dict) -> dict:
        saved = self.store.save(run)
        if saved is None:
            return self._stopped(run)
        return saved

    def _stopped(self, run: dict) -> dict | None:
        """The stored run left ``running`` under us; keep what is stored."""
        logger.info("Sequence run %s was stopped while a step was in flight", run["id"])
        return self.store.get(run["id"])

    @staticmethod
    def _step_index(run: dict) -> int:
        """Zero-based position of the next step within the run."""
        return run["step_count"] - len(run.get("steps_remaining") or [])

    def _ensure_started(self, run: dict) -> None:
        if run.get("started_recorded"):
            return
        if not self.recorder.has_event(run["user_id"], events.SEQUENCE_STARTED,
                                       events.for_run(run["id"])):
            self._record(run, events.SEQUENCE_STARTED, {"sequence_length": run["step_count"]},
                         parse_timestamp(run["started_at"]))
        run["started_recorded"] = True

    def _record(self, run: dict, event_type: str, data: dict, at: datetime) -> dict:
        """Append an essential event, retrying inline before giving up."""
        event = events.build_event(run["user_id"], run["contact_address"], event_type,
                                   {"run_id": run["id"], **data}, created_at=at)
        last_error = None
        for attempt in range(1, self.record_attempts + 1):
            try:
                self.recorder.append(event)
                return event
            except Exception as e:
                last_error = e
                logger.warning("Recording %s for run %s failed (attempt %d/%d): %s",
                               event_type, run["id"], attempt, self.record_attempts, e)
        raise RecordKeepingError(event_type, run["user_id"], last_error)

    def _record_failure(self, run: dict, index: int, step: dict, error: Exception,
                        attempt: int) -> None:
        event = events.build_event(run["user_id"], run["contact_address"], events.EMAIL_FAILED, {
            "run_id": run["id"],
            "step": index,
            "day": step["day"],
            "subject": step["subject"],
            "error": str(error),
            "permanent": isinstance(error, PermanentDeliveryFailure),
            "attempt": attempt,
        }, created_at=self.clock())
        try:
            self.recorder.append(event)
        except Exception as e:
            logger.warning("Could not record email_failed for run %s day %d: %s",
                           run["id"], step["day"], e)

    def _set_status(self, user_id: str, label: str, **fields) -> None:
        try:
            self.status_sink.set_status(user_id, label, **fields)
        except Exception as e:
            logger.warning("Member status update for %s failed: %s", user_id, e)

    def _flag_error(self, run: dict, error: Exception) -> None:
        """Leave a visible trace of a run error without changing its checkpoint."""
        try:
            stored = self.store.get(run["id"]) or run
            stored.update({"last_error": str(error), "updated_at": self.clock().isoformat()})
            self.store.save(stored)
            if self.audit:
                self.audit("sequence_run_error", "sequence_run", str(run["id"]), str(error))
        except Exception:
            logger.exception("Could not flag error on sequence run %s", run["id"])


async def process_due_runs(runner: SequenceRunner) -> dict:
    """Advance due runs. Called by the scheduler and the process-now endpoint.

    Uses an async lock so overlapping ticks in one process don't advance the
    same runs twice. The blocking work runs in a thread.
    """
    if _processing_lock.locked():
        logger.info("process_due_runs already running, skipping")
        return {"processed": 0, "steps": 0, "completed": 0, "errors": 0, "skipped": True}

    async with _processing_lock:
        result = await asyncio.to_thread(runner.run_due)
        return {**result, "skipped": False}
