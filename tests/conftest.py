"""Shared fixtures for shopvac tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from shopvac.kubernetes_client import KubernetesClient

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_pod(name, namespace="ns1", phase="Succeeded", age_days=5.0, labels=None, now=NOW):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            uid=f"uid-{name}",
            resource_version="100",
            creation_timestamp=now - timedelta(days=age_days),
        ),
        status=client.V1PodStatus(phase=phase),
    )


def pod_page(pods, continue_token=None):
    return client.V1PodList(items=pods, metadata=client.V1ListMeta(_continue=continue_token))


def api_error(status, reason=""):
    return ApiException(status=status, reason=reason)


class FakeKubernetes:
    """In-memory stand-in for KubernetesClient"""

    def __init__(self, pods=None):
        self.pods = list(pods or [])
        self.list_error = None
        self.delete_errors = {}
        self.deleted = []
        self.statuses = []
        self.list_calls = []
        self._serializer = client.ApiClient()

    def list_pods(self, namespace=None, label_selector=None, field_selector=None):
        self.list_calls.append((namespace, label_selector, field_selector))
        if self.list_error:
            raise self.list_error
        return [p for p in self.pods if namespace is None or p.metadata.namespace == namespace]

    def delete_pod(self, name, namespace, uid=None):
        errors = self.delete_errors.get(f"{namespace}/{name}")
        if errors:
            raise errors.pop(0)
        self.deleted.append(f"{namespace}/{name}")

    def pod_fields(self, pod):
        return self._serializer.sanitize_for_serialization(pod)

    def patch_pod_cleaner_status(self, namespace, name, status):
        self.statuses.append((f"{namespace}/{name}", status))

    def last_status(self, key):
        for status_key, status in reversed(self.statuses):
            if status_key == key:
                return status
        return None


class ImmediatePool:
    """Runs submitted passes synchronously"""

    def submit(self, fn, *args):
        fn(*args)

    def shutdown(self, wait=True):
        pass


class ManualPool:
    """Holds submitted passes until the test releases them"""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run_next(self):
        fn, args = self.pending.pop(0)
        fn(*args)

    def shutdown(self, wait=True):
        pass


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def fake_kube():
    return FakeKubernetes()


@pytest.fixture
def core_api():
    return MagicMock()


@pytest.fixture
def k8s_client(core_api):
    return KubernetesClient(core_api=core_api, custom_api=MagicMock(), page_size=2)


@pytest.fixture
def clock():
    return Clock()
