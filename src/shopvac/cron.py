"""
Five-field cron expressions and next-fire computation

All times are handled as timezone-aware UTC instants.
"""

from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional

from shopvac.errors import CronError

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

MONTH_NAMES = ["jan", "feb", "mar", "apr", "may", "jun",
               "jul", "aug", "sep", "oct", "nov", "dec"]
DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

# longest possible month, leap years included
_MONTH_DAYS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30,
               7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}

_SEARCH_YEARS = 30


class _Field:
    def __init__(self, name, low, high, names=None, offset=0):
        self.name = name
        self.low = low
        self.high = high
        self.names = {n: i + offset for i, n in enumerate(names or [])}

    def value(self, token, text):
        token = token.lower()
        if token in self.names:
            return self.names[token]
        if not token.isdigit():
            raise CronError(f"invalid {self.name} value '{token}' in '{text}'")
        number = int(token)
        # 7 is an alias for Sunday
        high = 7 if self.name == "day of week" else self.high
        if not self.low <= number <= high:
            raise CronError(
                f"{self.name} value {number} out of range {self.low}-{self.high} in '{text}'"
            )
        return number

    def parse(self, field, text) -> FrozenSet[int]:
        values = set()
        for item in field.split(","):
            if not item:
                raise CronError(f"empty list item in {self.name} field of '{text}'")
            base, _, step_text = item.partition("/")
            step = 1
            if step_text:
                if not step_text.isdigit() or int(step_text) == 0:
                    raise CronError(f"invalid step '{step_text}' in {self.name} field of '{text}'")
                step = int(step_text)

            if base in ("*", "?"):
                start, end = self.low, self.high
            elif "-" in base:
                first, _, last = base.partition("-")
                start, end = self.value(first, text), self.value(last, text)
                if start > end:
                    raise CronError(f"descending range '{base}' in {self.name} field of '{text}'")
            else:
                start = self.value(base, text)
                end = self.high if step_text else start

            values.update(range(start, end + 1, step))

        if self.name == "day of week" and 7 in values:
            values.discard(7)
            values.add(0)
        return frozenset(values)


_FIELDS = (
    _Field("minute", 0, 59),
    _Field("hour", 0, 23),
    _Field("day of month", 1, 31),
    _Field("month", 1, 12, MONTH_NAMES, offset=1),
    _Field("day of week", 0, 6, DAY_NAMES),
)


class CronExpression:
    """Parsed standard cron expression"""

    def __init__(self, source, minutes, hours, days, months, weekdays,
                 days_restricted, weekdays_restricted):
        self.source = source
        self.minutes = minutes
        self.hours = hours
        self.days = days
        self.months = months
        self.weekdays = weekdays
        self.days_restricted = days_restricted
        self.weekdays_restricted = weekdays_restricted

    @classmethod
    def parse(cls, text: str) -> "CronExpression":
        if not text or not text.strip():
            raise CronError("cron expression is empty")
        source = text.strip()
        expanded = MACROS.get(source.lower(), source)
        if expanded.startswith("@"):
            raise CronError(f"unknown cron macro '{source}'")

        fields = expanded.split()
        if len(fields) != 5:
            raise CronError(
                f"cron expression '{source}' must have 5 fields "
                f"(minute hour day-of-month month day-of-week), got {len(fields)}"
            )

        minutes, hours, days, months, weekdays = (
            spec.parse(field, source) for spec, field in zip(_FIELDS, fields)
        )
        expression = cls(
            source, minutes, hours, days, months, weekdays,
            days_restricted=fields[2][0] not in "*?",
            weekdays_restricted=fields[4][0] not in "*?",
        )
        if not (expression.days_restricted and expression.weekdays_restricted):
            if not any(day <= _MONTH_DAYS[month] for month in months for day in days):
                raise CronError(f"cron expression '{source}' can never fire")
        return expression

    def day_matches(self, moment: datetime) -> bool:
        day_ok = moment.day in self.days
        weekday_ok = moment.isoweekday() % 7 in self.weekdays
        # a leading star only switches between AND and OR, steps still apply
        if self.days_restricted and self.weekdays_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after moment"""
        current = _utc(moment).replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = current.year + _SEARCH_YEARS

        while current.year <= limit:
            if current.month not in self.months:
                if current.month == 12:
                    current = current.replace(year=current.year + 1, month=1, day=1, hour=0, minute=0)
                else:
                    current = current.replace(month=current.month + 1, day=1, hour=0, minute=0)
                continue
            if not self.day_matches(current):
                current = (current + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if current.hour not in self.hours:
                current = (current + timedelta(hours=1)).replace(minute=0)
                continue
            if current.minute not in self.minutes:
                current += timedelta(minutes=1)
                continue
            return current

        raise CronError(f"cron expression '{self.source}' has no fire time after {moment.isoformat()}")

    def __repr__(self):
        return f"CronExpression({self.source!r})"

    def __eq__(self, other):
        return isinstance(other, CronExpression) and other.source == self.source

    def __hash__(self):
        return hash(self.source)


def next_fire(expression: CronExpression, now: datetime,
              last_fired: Optional[datetime] = None) -> datetime:
    """Next time an entry should fire

    Without a previous fire this is the first slot after now. With one, the slot
    following last_fired is used; if that slot has already passed the entry is
    due immediately (a single catch-up at now, never one per missed slot).
    """
    now = _utc(now)
    if last_fired is None:
        return expression.next_after(now)

    last_fired = _utc(last_fired)
    due = expression.next_after(last_fired)
    if due <= now:
        return now
    return due


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
