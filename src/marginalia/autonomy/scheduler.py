from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from .commenter import CommentFailure, CommentOutcome
from .config import DEFAULT_FREQUENCY
from .drafting import normalize_str
from .state import OptionStore


SCHEDULE_KEY = "schedules"

INTERVALS: Mapping[str, int] = {
    "hourly": 3600,
    "twicedaily": 43200,
    "daily": 86400,
}

logger = logging.getLogger("marginalia.autonomy")


class Scheduler:
    """Per-persona recurring triggers kept in the option store.

    Each entry is ``{frequency, interval_seconds, next_run_ts}`` keyed by
    persona id. ``run_due`` is driven by an outer polling loop; a due trigger
    has its next run pushed forward before the cycle runs, so a slow or
    failing cycle is attempted at most once per tick.
    """

    def __init__(
        self,
        store: OptionStore,
        registry,
        selector,
        commenter,
        *,
        intervals: Mapping[str, int] = INTERVALS,
        default_frequency: str = DEFAULT_FREQUENCY,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.registry = registry
        self.selector = selector
        self.commenter = commenter
        self.intervals = dict(intervals)
        if default_frequency not in self.intervals:
            # Fall back to the longest configured interval.
            default_frequency = max(self.intervals, key=self.intervals.get)
        self.default_frequency = default_frequency
        self.clock = clock

    def scheduled(self) -> Dict[str, Dict[str, Any]]:
        raw = self.store.get(SCHEDULE_KEY, {})
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, dict)}

    def _write(self, entries: Dict[str, Dict[str, Any]]) -> None:
        if entries:
            self.store.set(SCHEDULE_KEY, entries)
        else:
            self.store.delete(SCHEDULE_KEY)

    def reschedule(self, persona_id: str) -> Optional[float]:
        entries = self.scheduled()
        entries.pop(persona_id, None)

        persona = self.registry.get(persona_id)
        next_run: Optional[float] = None
        if persona is not None and persona.cron_enabled:
            frequency = persona.cron_frequency if persona.cron_frequency in self.intervals else self.default_frequency
            next_run = float(self.clock())
            entries[persona_id] = {
                "frequency": frequency,
                "interval_seconds": int(self.intervals[frequency]),
                "next_run_ts": next_run,
            }
            logger.info("Scheduled persona_id=%s frequency=%s", persona_id, frequency)

        self._write(entries)
        return next_run

    def unschedule(self, persona_id: Optional[str] = None) -> None:
        if persona_id:
            entries = self.scheduled()
            if entries.pop(persona_id, None) is not None:
                self._write(entries)
                logger.info("Unscheduled persona_id=%s", persona_id)
            return

        entries = self.scheduled()
        for persona in self.registry.list():
            entries.pop(persona.id, None)
        if entries:
            # Triggers for personas that no longer exist.
            logger.info("Removing orphaned schedules persona_ids=%s", ",".join(sorted(entries)))
        self._write({})

    def next_scheduled(self, persona_id: str) -> Optional[float]:
        entry = self.scheduled().get(persona_id)
        if not entry:
            return None
        try:
            return float(entry.get("next_run_ts"))
        except (TypeError, ValueError):
            return None

    def run(self, persona_id: str, strategy_id: Optional[str] = None) -> CommentOutcome:
        if not normalize_str(persona_id).strip():
            return CommentFailure("no_persona", "No persona id was given.")

        persona = self.registry.get(persona_id)
        if persona is None:
            return CommentFailure("persona_not_found", f"Persona not found: {persona_id}")

        logger.info("cycle start persona_id=%s strategy_id=%s", persona_id, strategy_id or "-")
        selection = self.selector.select(persona, strategy_id)
        if not selection.found:
            return CommentFailure("no_content", "No eligible post found.")

        return self.commenter.comment(selection.content_id, persona.id, 0, selection.context)

    def on_trigger(self, persona_id: str) -> None:
        try:
            outcome = self.run(persona_id)
        except Exception as e:
            logger.exception("cycle failed persona_id=%s error=%s", persona_id, e)
            return

        if isinstance(outcome, CommentFailure):
            if outcome.code == "no_content":
                logger.info("cycle skipped persona_id=%s reason=no_content", persona_id)
            else:
                logger.error(
                    "cycle failed persona_id=%s code=%s message=%s",
                    persona_id,
                    outcome.code,
                    outcome.message,
                )
            return

        logger.info(
            "cycle success persona_id=%s comment_id=%s post_id=%s",
            persona_id,
            outcome.comment_id,
            outcome.post_id,
        )

    def due(self, now: Optional[float] = None) -> List[str]:
        now = float(self.clock() if now is None else now)
        out: List[str] = []
        for persona_id, entry in self.scheduled().items():
            try:
                next_run = float(entry.get("next_run_ts") or 0)
            except (TypeError, ValueError):
                next_run = 0.0
            if next_run <= now:
                out.append(persona_id)
        return out

    def run_due(self, now: Optional[float] = None) -> int:
        now = float(self.clock() if now is None else now)
        fired = 0
        for persona_id in self.due(now):
            entries = self.scheduled()
            entry = entries.get(persona_id)
            if entry is None:
                continue
            interval = int(entry.get("interval_seconds") or self.intervals[self.default_frequency])
            entry["next_run_ts"] = now + interval
            self._write(entries)

            self.on_trigger(persona_id)
            fired += 1
        return fired

    def uninstall(self) -> None:
        self.store.delete(SCHEDULE_KEY)
