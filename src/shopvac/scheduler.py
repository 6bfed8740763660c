"""
Cron scheduler

Keeps one immutable ScheduleEntry per PodCleaner key. Entries are replaced,
never patched: a fire swaps in a successor entry, and a re-registration
discards the old entry entirely so a stale next-fire value cannot survive a
schedule change. The scheduler owns no thread; the controller loop asks it how
long to sleep and which entries are due.
"""

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from shopvac.cron import CronExpression, next_fire

logger = logging.getLogger(__name__)

_generations = itertools.count(1)


@dataclass(frozen=True)
class ScheduleEntry:
    key: str
    expression: CronExpression
    next_fire: datetime
    last_fired: Optional[datetime] = None
    generation: int = 0


class CronScheduler:
    def __init__(self, clock: Callable[[], datetime] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, ScheduleEntry] = {}

    def now(self) -> datetime:
        return self._clock()

    def register(self, key: str, schedule: str,
                 last_fired: Optional[datetime] = None) -> ScheduleEntry:
        """Install a fresh entry for key; raises CronError for a bad schedule"""
        expression = CronExpression.parse(schedule)
        entry = ScheduleEntry(
            key=key,
            expression=expression,
            next_fire=next_fire(expression, self.now(), last_fired),
            last_fired=last_fired,
            generation=next(_generations),
        )
        self._entries[key] = entry
        logger.info(f"Scheduled {key} ({schedule}), next fire at {entry.next_fire.isoformat()}")
        return entry

    def unregister(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def get(self, key: str) -> Optional[ScheduleEntry]:
        return self._entries.get(key)

    def __contains__(self, key):
        return key in self._entries

    def __len__(self):
        return len(self._entries)

    def due(self, now: Optional[datetime] = None) -> List[ScheduleEntry]:
        """Pop every entry due at now and install its successor

        Returns the fired entries ordered by their scheduled fire time. Each
        entry fires at most once per call no matter how many slots were missed.
        """
        now = now or self.now()
        fired = sorted(
            (entry for entry in self._entries.values() if entry.next_fire <= now),
            key=lambda entry: entry.next_fire,
        )
        for entry in fired:
            self._entries[entry.key] = replace(
                entry,
                last_fired=now,
                next_fire=next_fire(entry.expression, now, now),
            )
        return fired

    def seconds_until_next(self, now: Optional[datetime] = None) -> Optional[float]:
        if not self._entries:
            return None
        now = now or self.now()
        earliest = min(entry.next_fire for entry in self._entries.values())
        return max(0.0, (earliest - now).total_seconds())
