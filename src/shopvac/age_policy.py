from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from shopvac.models import parse_timestamp


@dataclass(frozen=True)
class AgePolicy:
    """Pods become eligible once they are at least max_age_days old"""

    max_age_days: int

    def __post_init__(self):
        if self.max_age_days < 0:
            raise ValueError("max_age_days must be non-negative")

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)

    def is_eligible(self, created: Optional[datetime], now: datetime) -> bool:
        # 0 forces cleanup regardless of age
        if self.max_age_days == 0:
            return True
        if created is None:
            return False
        return now - parse_timestamp(created) >= self.max_age
