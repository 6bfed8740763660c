"""Tests for the deletion executor."""

import threading
import time

import pytest
import urllib3

from shopvac.errors import is_transient
from shopvac.executor import DeletionExecutor, RetryPolicy
from shopvac.models import DeletionCandidate

from conftest import FakeKubernetes, api_error


def candidates(*names):
    return [DeletionCandidate(namespace="ns1", name=name, uid=f"uid-{name}") for name in names]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor_for(sleeps):
    def build(kube, **kwargs):
        kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=0.5))
        return DeletionExecutor(kube, sleep=sleeps.append, **kwargs)
    return build


class TestRetryPolicy:

    def test_exponential_delays_are_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0)
        assert [policy.delay(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]

    def test_requires_an_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestExecute:

    def test_all_deleted(self, executor_for):
        kube = FakeKubernetes()
        outcome = executor_for(kube).execute(candidates("a", "b", "c"))
        assert sorted(kube.deleted) == ["ns1/a", "ns1/b", "ns1/c"]
        assert (outcome.found, outcome.succeeded, outcome.failed) == (3, 3, 0)
        assert outcome.ok

    def test_not_found_counts_as_success(self, executor_for, sleeps):
        kube = FakeKubernetes()
        kube.delete_errors = {"ns1/b": [api_error(404)], "ns1/d": [api_error(404)]}

        outcome = executor_for(kube).execute(candidates("a", "b", "c", "d", "e"))

        assert (outcome.succeeded, outcome.failed) == (5, 0)
        assert outcome.failures == {}
        assert sleeps == []

    def test_transient_failures_are_retried(self, executor_for, sleeps):
        kube = FakeKubernetes()
        kube.delete_errors = {"ns1/a": [api_error(429, "Too Many Requests"), api_error(503)]}

        outcome = executor_for(kube).execute(candidates("a"))

        assert outcome.succeeded == 1
        assert kube.deleted == ["ns1/a"]
        assert sleeps == [0.5, 1.0]

    def test_exhausted_retries_isolated_to_pod(self, executor_for, sleeps):
        kube = FakeKubernetes()
        kube.delete_errors = {"ns1/b": [api_error(409, "Conflict")] * 3}

        outcome = executor_for(kube).execute(candidates("a", "b", "c"))

        assert (outcome.succeeded, outcome.failed) == (2, 1)
        assert "after 3 attempts" in outcome.failures["ns1/b"]
        assert "409" in outcome.failures["ns1/b"]
        assert sorted(kube.deleted) == ["ns1/a", "ns1/c"]
        assert len(sleeps) == 2
        assert not outcome.ok

    def test_permanent_failure_not_retried(self, executor_for, sleeps):
        kube = FakeKubernetes()
        kube.delete_errors = {"ns1/a": [api_error(403, "Forbidden")]}

        outcome = executor_for(kube).execute(candidates("a"))

        assert outcome.failures == {"ns1/a": "403 Forbidden"}
        assert sleeps == []

    def test_unexpected_exception_recorded(self, executor_for):
        kube = FakeKubernetes()
        kube.delete_errors = {"ns1/a": [ValueError("boom")]}

        outcome = executor_for(kube).execute(candidates("a", "b"))

        assert outcome.failures == {"ns1/a": "ValueError: boom"}
        assert outcome.succeeded == 1

    def test_dry_run_deletes_nothing(self, executor_for):
        kube = FakeKubernetes()
        outcome = executor_for(kube, dry_run=True).execute(candidates("a", "b"))
        assert kube.deleted == []
        assert (outcome.found, outcome.succeeded, outcome.failed) == (2, 0, 0)
        assert outcome.dry_run and outcome.ok

    def test_no_candidates(self, executor_for):
        outcome = executor_for(FakeKubernetes()).execute([])
        assert (outcome.found, outcome.succeeded, outcome.failed) == (0, 0, 0)

    def test_shared_semaphore_caps_concurrency(self):
        class SlowKube(FakeKubernetes):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.peak = 0
                self.lock = threading.Lock()

            def delete_pod(self, name, namespace, uid=None):
                with self.lock:
                    self.active += 1
                    self.peak = max(self.peak, self.active)
                time.sleep(0.02)
                with self.lock:
                    self.active -= 1
                    self.deleted.append(f"{namespace}/{name}")

        kube = SlowKube()
        shared = threading.BoundedSemaphore(2)
        executor = DeletionExecutor(kube, max_workers=8, semaphore=shared)

        outcome = executor.execute(candidates(*[f"p{i}" for i in range(10)]))

        assert outcome.succeeded == 10
        assert kube.peak <= 2


class TestClassification:

    @pytest.mark.parametrize("status", [409, 429, 500, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert is_transient(api_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_permanent_statuses(self, status):
        assert not is_transient(api_error(status))

    def test_network_timeouts_are_transient(self):
        assert is_transient(urllib3.exceptions.ReadTimeoutError(None, "/api", "timed out"))
        assert not is_transient(ValueError("nope"))
