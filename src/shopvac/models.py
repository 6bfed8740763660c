"""
Data model for shopvac
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

CRD_GROUP = "shopvac.io"
CRD_VERSION = "v1"
CRD_PLURAL = "podcleaners"
CRD_KIND = "PodCleaner"


@dataclass(frozen=True)
class Scope:
    """Target of a pass: a single namespace, or the whole cluster when None"""

    namespace: Optional[str] = None

    @property
    def cluster_wide(self) -> bool:
        return self.namespace is None

    def __str__(self):
        return self.namespace or "<all namespaces>"


@dataclass(frozen=True)
class PodCleanerSpec:
    """User-declared cleanup intent"""

    schedule: str
    delete_older_than: int
    label_selector: Optional[str] = None
    field_selector: Optional[str] = None

    @classmethod
    def from_dict(cls, spec: Dict) -> "PodCleanerSpec":
        return cls(
            schedule=spec["schedule"],
            delete_older_than=int(spec["delete_older_than"]),
            label_selector=spec.get("label_selector") or None,
            field_selector=spec.get("field_selector") or None,
        )


@dataclass(frozen=True)
class PodCleaner:
    """A PodCleaner object as observed on the cluster"""

    namespace: str
    name: str
    spec: PodCleanerSpec
    uid: Optional[str] = None
    generation: Optional[int] = None
    status: Dict = field(default_factory=dict, compare=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def last_schedule_time(self) -> Optional[datetime]:
        value = (self.status or {}).get("lastScheduleTime")
        if not value:
            return None
        return parse_timestamp(value)

    @classmethod
    def from_object(cls, obj: Dict) -> "PodCleaner":
        """Build from a custom object as returned by CustomObjectsApi"""
        metadata = obj.get("metadata", {})
        return cls(
            namespace=metadata["namespace"],
            name=metadata["name"],
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            spec=PodCleanerSpec.from_dict(obj.get("spec", {})),
            status=obj.get("status") or {},
        )


@dataclass(frozen=True)
class DeletionCandidate:
    """A pod picked for deletion within a single pass"""

    namespace: str
    name: str
    resource_version: Optional[str] = None
    uid: Optional[str] = None
    phase: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconciliationOutcome:
    """Summary of one pass, written to status and used for alerts"""

    found: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    fatal_error: Optional[str] = None
    dry_run: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.fatal_error is None and self.failed == 0

    def record_failure(self, key: str, reason: str) -> None:
        self.failed += 1
        self.failures[key] = reason

    @classmethod
    def listing_failed(cls, reason: str) -> "ReconciliationOutcome":
        return cls(fatal_error=reason)

    def failure_lines(self, limit: int = 20) -> List[str]:
        return [f"{key}: {reason}" for key, reason in list(self.failures.items())[:limit]]

    def as_status(self) -> Dict:
        return {
            "found": self.found,
            "deleted": self.succeeded,
            "failed": self.failed,
        }


def parse_timestamp(value) -> datetime:
    """Parse an RFC 3339 timestamp as written by the API server"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
