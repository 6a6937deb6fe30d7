"""Sequence content — the built-in default and step normalization."""

import json
import logging

from onboarding_control.errors import InvalidStep
from onboarding_control.sequences.default import SEQUENCE as default

logger = logging.getLogger(__name__)

DEFAULT_SEQUENCE: dict = default


def normalize_steps(raw) -> list[dict]:
    """Validate steps and return them sorted by day.

    Accepts a list of step dicts or its JSON encoding. ``content`` is read as
    an alias for ``body``. The sort is stable, so steps sharing a day keep
    their authored order.

    Raises InvalidStep if a step has a non-positive day or lacks a subject.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidStep(f"Sequence content is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise InvalidStep("Sequence content must be a list of steps")

    steps = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise InvalidStep(f"Step {i} is not an object")
        day = item.get("day")
        if isinstance(day, bool) or not isinstance(day, int) or day < 1:
            raise InvalidStep(f"Step {i} has invalid day {day!r} (positive integer required)")
        subject = item.get("subject")
        if not isinstance(subject, str) or not subject.strip():
            raise InvalidStep(f"Step {i} (day {day}) has no subject")
        body = item.get("body", item.get("content", ""))
        if not isinstance(body, str):
            raise InvalidStep(f"Step {i} (day {day}) body must be text")
        steps.append({"day": day, "subject": subject, "body": body})

    steps.sort(key=lambda s: s["day"])
    days = [s["day"] for s in steps]
    if len(set(days)) != len(days):
        logger.warning("Sequence reuses day numbers %s; repeated days send back to back", days)
    return steps
