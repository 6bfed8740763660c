"""
Candidate resolution: list pods in scope, then filter by selector and age
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from shopvac.age_policy import AgePolicy
from shopvac.errors import ConfigurationError, FieldPathError
from shopvac.models import DeletionCandidate, Scope
from shopvac.selectors import Selector

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Result of a successful listing: candidates plus per-pod evaluation errors"""

    candidates: List[DeletionCandidate] = field(default_factory=list)
    evaluation_errors: Dict[str, str] = field(default_factory=dict)
    listed: int = 0
    excluded_namespaces: int = 0


def compile_exclusion(pattern):
    """Compile a namespace exclusion regex; raises ConfigurationError when invalid"""
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f"invalid namespace exclusion pattern '{pattern}': {e}") from e


class CandidateResolver:
    def __init__(self, k8s_client, server_side_filtering=True, exclude_namespace_pattern=None):
        self.k8s_client = k8s_client
        self.server_side_filtering = server_side_filtering
        self.exclude_namespace = compile_exclusion(exclude_namespace_pattern)

    def resolve(self, scope: Scope, selector: Selector, age_policy: AgePolicy,
                now: Optional[datetime] = None) -> Resolution:
        """Resolve the full candidate set; ListingError propagates untouched"""
        now = now or datetime.now(timezone.utc)

        label_query = field_query = None
        if self.server_side_filtering:
            label_query, field_query = selector.label_query(), selector.field_query()

        # the whole listing completes before any pod is evaluated
        pods = self.k8s_client.list_pods(
            namespace=scope.namespace,
            label_selector=label_query,
            field_selector=field_query,
        )

        resolution = Resolution(listed=len(pods))
        for pod in pods:
            metadata = pod.metadata
            key = f"{metadata.namespace}/{metadata.name}"

            if scope.cluster_wide and self.exclude_namespace and \
                    self.exclude_namespace.search(metadata.namespace or ""):
                resolution.excluded_namespaces += 1
                continue

            try:
                matched = selector.matches(metadata.labels, self.k8s_client.pod_fields(pod), key)
            except FieldPathError as e:
                logger.warning(f"Skipping pod {key}: {e}")
                resolution.evaluation_errors[key] = str(e)
                continue

            if not matched:
                continue
            if not age_policy.is_eligible(metadata.creation_timestamp, now):
                continue

            resolution.candidates.append(DeletionCandidate(
                namespace=metadata.namespace,
                name=metadata.name,
                resource_version=metadata.resource_version,
                uid=metadata.uid,
                phase=pod.status.phase if pod.status else None,
            ))

        logger.info(
            f"Resolved {len(resolution.candidates)} candidates from {resolution.listed} pods "
            f"in {scope} ({len(resolution.evaluation_errors)} evaluation errors)"
        )
        return resolution
