"""
Deletion executor

Issues one delete per candidate, retrying transient API failures with
exponential backoff. Failures are isolated per pod and folded into the
ReconciliationOutcome; nothing raised by a single delete aborts the batch.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from shopvac.errors import describe, is_not_found, is_transient
from shopvac.models import DeletionCandidate, ReconciliationOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient delete failures

    Attributes:
        max_attempts: Attempts per candidate, including the first one
        base_delay: Delay in seconds before the first retry
        max_delay: Cap on any single delay
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


class DeletionExecutor:
    def __init__(self, k8s_client, retry_policy: Optional[RetryPolicy] = None,
                 max_workers: int = 10, semaphore: Optional[threading.Semaphore] = None,
                 dry_run: bool = False, sleep: Callable[[float], None] = time.sleep):
        self.k8s_client = k8s_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max(1, max_workers)
        # shared across every executor in the process to cap in-flight deletes
        self.semaphore = semaphore or threading.BoundedSemaphore(self.max_workers)
        self.dry_run = dry_run
        self._sleep = sleep

    def execute(self, candidates: Iterable[DeletionCandidate]) -> ReconciliationOutcome:
        candidates = list(candidates)
        outcome = ReconciliationOutcome(found=len(candidates), dry_run=self.dry_run)

        if self.dry_run:
            for candidate in candidates:
                logger.info(f"Dry run - would delete pod {candidate.key} (Phase: {candidate.phase})")
            return outcome

        if not candidates:
            return outcome

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(candidates)),
                                thread_name_prefix="shopvac-delete") as pool:
            results = list(pool.map(self._delete_with_retry, candidates))

        for candidate, (deleted, reason) in zip(candidates, results):
            if deleted:
                outcome.succeeded += 1
            else:
                outcome.record_failure(candidate.key, reason)

        logger.info(
            f"Deleted {outcome.succeeded}/{outcome.found} pods, {outcome.failed} failed"
        )
        return outcome

    def _delete_with_retry(self, candidate: DeletionCandidate) -> Tuple[bool, Optional[str]]:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                with self.semaphore:
                    self.k8s_client.delete_pod(
                        name=candidate.name,
                        namespace=candidate.namespace,
                        uid=candidate.uid,
                    )
                logger.info(f"Deleted pod {candidate.key} (Phase: {candidate.phase})")
                return True, None
            except Exception as e:
                if is_not_found(e):
                    logger.info(f"Pod {candidate.key} already gone")
                    return True, None
                reason = describe(e)
                if not is_transient(e):
                    logger.error(f"Failed to delete pod {candidate.key}: {reason}")
                    return False, reason
                if attempt == policy.max_attempts:
                    logger.error(
                        f"Giving up on pod {candidate.key} after {attempt} attempts: {reason}"
                    )
                    return False, f"{reason} (after {attempt} attempts)"

                delay = policy.delay(attempt)
                logger.warning(
                    f"Transient failure deleting pod {candidate.key} "
                    f"(attempt {attempt}/{policy.max_attempts}): {reason}; retrying in {delay:.2f}s"
                )
                self._sleep(delay)
        return False, "no attempts made"
