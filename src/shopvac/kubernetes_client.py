import os
import logging
from kubernetes import client, config, watch
from kubernetes.config.config_exception import ConfigException

from shopvac.errors import ListingError, describe
from shopvac.models import CRD_GROUP, CRD_PLURAL, CRD_VERSION

logger = logging.getLogger(__name__)


class KubernetesClient:
    def __init__(self, core_api=None, custom_api=None, page_size=500, kube_config_path=None):
        self.page_size = page_size
        self.kube_config_path = kube_config_path
        self.api_client = client.ApiClient() if core_api is not None else None

        if core_api is not None:
            self.v1 = core_api
            self.custom = custom_api
            return

        try:
            self._load_config()
            self.api_client = client.ApiClient()
            self.v1 = client.CoreV1Api(self.api_client)
            self.custom = custom_api or client.CustomObjectsApi(self.api_client)
            logger.info("Kubernetes client initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Kubernetes client: {e}")
            raise

    def _load_config(self):
        # An explicit path (KUBE_CONFIG_PATH) wins, then KUBECONFIG
        kubeconfig_path = self.kube_config_path or os.getenv('KUBECONFIG')
        if kubeconfig_path and os.path.exists(kubeconfig_path):
            logger.info(f"Loading kubeconfig from: {kubeconfig_path}")
            config.load_kube_config(config_file=kubeconfig_path)
            return

        try:
            # In-cluster config when running as a pod
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except ConfigException:
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig from default location")
            except ConfigException:
                possible_paths = [
                    os.path.expanduser("~/.kube/config"),
                    "/etc/kubernetes/admin.conf",
                    "/etc/rancher/k3s/k3s.yaml"
                ]
                for kube_path in possible_paths:
                    if os.path.exists(kube_path):
                        logger.info(f"Loading kubeconfig from: {kube_path}")
                        config.load_kube_config(config_file=kube_path)
                        break
                else:
                    raise ConfigException(
                        "Could not load Kubernetes configuration. "
                        "Run inside a cluster, configure kubectl, or set KUBECONFIG"
                    )

    def iter_pod_pages(self, namespace=None, label_selector=None, field_selector=None):
        """Yield pods page by page, following the continue token"""
        kwargs = {'limit': self.page_size}
        if label_selector:
            kwargs['label_selector'] = label_selector
        if field_selector:
            kwargs['field_selector'] = field_selector

        token = None
        page = 0
        while True:
            page += 1
            if token:
                kwargs['_continue'] = token
            try:
                if namespace:
                    result = self.v1.list_namespaced_pod(namespace, **kwargs)
                else:
                    result = self.v1.list_pod_for_all_namespaces(**kwargs)
            except Exception as e:
                raise ListingError(f"listing pods failed on page {page}: {describe(e)}",
                                   page=page, cause=e) from e

            yield result.items or []

            token = result.metadata._continue if result.metadata else None
            if not token:
                return

    def list_pods(self, namespace=None, label_selector=None, field_selector=None):
        """List every pod in scope; raises ListingError if any page fails"""
        pods = []
        for items in self.iter_pod_pages(namespace, label_selector, field_selector):
            pods.extend(items)
        logger.debug(f"Listed {len(pods)} pods in {namespace or 'all namespaces'}")
        return pods

    def delete_pod(self, name, namespace, uid=None):
        """Delete a pod; API errors propagate to the caller for classification"""
        body = client.V1DeleteOptions(
            preconditions=client.V1Preconditions(uid=uid) if uid else None
        )
        self.v1.delete_namespaced_pod(name=name, namespace=namespace, body=body)
        logger.debug(f"Delete issued for pod {namespace}/{name}")

    def pod_fields(self, pod):
        """API (camelCase) representation of a pod for field path lookups"""
        if isinstance(pod, dict):
            return pod
        return (self.api_client or client.ApiClient()).sanitize_for_serialization(pod)

    def list_pod_cleaners(self, namespace=None):
        """Return (items, resourceVersion) for PodCleaner objects in scope"""
        if namespace:
            result = self.custom.list_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, namespace, CRD_PLURAL)
        else:
            result = self.custom.list_cluster_custom_object(
                CRD_GROUP, CRD_VERSION, CRD_PLURAL)
        return result.get('items', []), result.get('metadata', {}).get('resourceVersion')

    def watch_pod_cleaners(self, namespace=None, resource_version=None, timeout_seconds=300):
        """Stream raw watch events for PodCleaner objects"""
        kwargs = {'timeout_seconds': timeout_seconds}
        if resource_version:
            kwargs['resource_version'] = resource_version

        w = watch.Watch()
        if namespace:
            stream = w.stream(self.custom.list_namespaced_custom_object,
                              CRD_GROUP, CRD_VERSION, namespace, CRD_PLURAL, **kwargs)
        else:
            stream = w.stream(self.custom.list_cluster_custom_object,
                              CRD_GROUP, CRD_VERSION, CRD_PLURAL, **kwargs)
        try:
            for event in stream:
                yield event
        finally:
            w.stop()

    def patch_pod_cleaner_status(self, namespace, name, status):
        self.custom.patch_namespaced_custom_object_status(
            CRD_GROUP, CRD_VERSION, namespace, CRD_PLURAL, name, {'status': status}
        )

    def test_connection(self):
        """Test Kubernetes connection"""
        try:
            self.v1.get_api_resources()
            return True
        except Exception:
            return False
