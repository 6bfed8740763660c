"""Tests for the Kubernetes client wrapper."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from shopvac import kubernetes_client
from shopvac.errors import ListingError
from shopvac.kubernetes_client import KubernetesClient

from conftest import api_error, make_pod, pod_page


class TestListPods:

    def test_follows_continue_tokens(self, k8s_client, core_api):
        core_api.list_namespaced_pod.side_effect = [
            pod_page([make_pod("a"), make_pod("b")], "t1"),
            pod_page([make_pod("c")]),
        ]

        pods = k8s_client.list_pods(namespace="ns1", field_selector="status.phase!=Running")

        assert [p.metadata.name for p in pods] == ["a", "b", "c"]
        first, second = core_api.list_namespaced_pod.call_args_list
        assert first.args == ("ns1",)
        assert first.kwargs == {"limit": 2, "field_selector": "status.phase!=Running"}
        assert second.kwargs["_continue"] == "t1"

    def test_cluster_scope_uses_all_namespaces(self, k8s_client, core_api):
        core_api.list_pod_for_all_namespaces.return_value = pod_page([make_pod("a", "other")])

        pods = k8s_client.list_pods(label_selector="app=web")

        assert len(pods) == 1
        core_api.list_namespaced_pod.assert_not_called()
        assert core_api.list_pod_for_all_namespaces.call_args.kwargs["label_selector"] == "app=web"

    def test_page_failure_is_fatal(self, k8s_client, core_api):
        core_api.list_namespaced_pod.side_effect = [
            pod_page([make_pod("a"), make_pod("b")], "t1"),
            api_error(500, "Internal Server Error"),
            pod_page([make_pod("c")]),
        ]

        with pytest.raises(ListingError) as exc:
            k8s_client.list_pods(namespace="ns1")

        assert exc.value.page == 2
        assert exc.value.cause.status == 500
        assert core_api.list_namespaced_pod.call_count == 2


class TestDeletePod:

    def test_delete_with_uid_precondition(self, k8s_client, core_api):
        k8s_client.delete_pod("a", "ns1", uid="uid-a")

        kwargs = core_api.delete_namespaced_pod.call_args.kwargs
        assert kwargs["name"] == "a"
        assert kwargs["namespace"] == "ns1"
        assert kwargs["body"].preconditions.uid == "uid-a"

    def test_errors_propagate(self, k8s_client, core_api):
        core_api.delete_namespaced_pod.side_effect = api_error(404, "Not Found")
        with pytest.raises(ApiException) as exc:
            k8s_client.delete_pod("a", "ns1")
        assert exc.value.status == 404


class TestPodCleaners:

    def test_pod_fields_use_api_names(self, k8s_client):
        fields = k8s_client.pod_fields(make_pod("a", phase="Failed"))
        assert fields["status"]["phase"] == "Failed"
        assert fields["metadata"]["namespace"] == "ns1"
        assert "creationTimestamp" in fields["metadata"]

    def test_list_pod_cleaners(self, k8s_client):
        k8s_client.custom.list_namespaced_custom_object.return_value = {
            "items": [{"metadata": {"name": "x"}}],
            "metadata": {"resourceVersion": "42"},
        }
        items, version = k8s_client.list_pod_cleaners("ns1")
        assert version == "42"
        assert items == [{"metadata": {"name": "x"}}]
        k8s_client.custom.list_namespaced_custom_object.assert_called_once_with(
            "shopvac.io", "v1", "ns1", "podcleaners")

    def test_patch_status(self, k8s_client):
        k8s_client.patch_pod_cleaner_status("ns1", "x", {"state": "Active"})
        k8s_client.custom.patch_namespaced_custom_object_status.assert_called_once_with(
            "shopvac.io", "v1", "ns1", "podcleaners", "x", {"status": {"state": "Active"}})


class TestConfigLoading:

    def test_explicit_kubeconfig_path(self, monkeypatch, tmp_path):
        kubeconfig = tmp_path / "config"
        kubeconfig.write_text("apiVersion: v1\n")
        load = MagicMock()
        monkeypatch.setattr(kubernetes_client.config, "load_kube_config", load)
        monkeypatch.delenv("KUBECONFIG", raising=False)

        KubernetesClient(kube_config_path=str(kubeconfig))

        load.assert_called_once_with(config_file=str(kubeconfig))
