"""
Configuration management for shopvac
"""

import os
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class Config:
    """Configuration class for shopvac"""

    # Kubernetes configuration
    kube_config_path: Optional[str] = None
    watch_namespace: Optional[str] = None
    list_page_size: int = 500
    watch_timeout_seconds: int = 300
    server_side_filtering: bool = True

    # Namespaces skipped by cluster-wide one-shot runs
    exclude_namespace_pattern: str = "(openshift.*)|(kube.*)"

    # Concurrency limits
    max_concurrent_passes: int = 4
    max_concurrent_deletes: int = 10

    # Delete retries
    delete_max_attempts: int = 3
    delete_backoff_seconds: float = 0.5
    delete_max_backoff_seconds: float = 10.0

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"

    # Metrics and alerting
    metrics_port: int = 8080
    pushgateway_url: Optional[str] = None
    prometheus_job_name: str = "shopvac"
    notification_cooldown_minutes: int = 30

    def __post_init__(self):
        """Override defaults with environment variables if present"""
        self.kube_config_path = os.getenv("KUBE_CONFIG_PATH", self.kube_config_path)
        self.watch_namespace = os.getenv("WATCH_NAMESPACE", self.watch_namespace) or None
        self.list_page_size = int(os.getenv("LIST_PAGE_SIZE", self.list_page_size))
        self.watch_timeout_seconds = int(os.getenv("WATCH_TIMEOUT_SECONDS", self.watch_timeout_seconds))
        self.server_side_filtering = os.getenv(
            "SERVER_SIDE_FILTERING", str(self.server_side_filtering)).lower() == "true"
        self.exclude_namespace_pattern = os.getenv(
            "EXCLUDE_NAMESPACE_PATTERN", self.exclude_namespace_pattern)

        self.max_concurrent_passes = int(os.getenv("MAX_CONCURRENT_PASSES", self.max_concurrent_passes))
        self.max_concurrent_deletes = int(os.getenv("MAX_CONCURRENT_DELETES", self.max_concurrent_deletes))

        self.delete_max_attempts = int(os.getenv("DELETE_MAX_ATTEMPTS", self.delete_max_attempts))
        self.delete_backoff_seconds = float(os.getenv("DELETE_BACKOFF_SECONDS", self.delete_backoff_seconds))
        self.delete_max_backoff_seconds = float(
            os.getenv("DELETE_MAX_BACKOFF_SECONDS", self.delete_max_backoff_seconds))

        self.log_level = os.getenv("LOG_LEVEL", self.log_level)
        self.log_format = os.getenv("LOG_FORMAT", self.log_format)

        self.metrics_port = int(os.getenv("METRICS_PORT", self.metrics_port))
        self.pushgateway_url = os.getenv("PROMETHEUS_PUSHGATEWAY_URL", self.pushgateway_url) or None
        self.prometheus_job_name = os.getenv("PROMETHEUS_JOB_NAME", self.prometheus_job_name)
        self.notification_cooldown_minutes = int(
            os.getenv("NOTIFICATION_COOLDOWN_MINUTES", self.notification_cooldown_minutes))

        if self.list_page_size < 1:
            raise ValueError("LIST_PAGE_SIZE must be at least 1")
        if self.max_concurrent_passes < 1 or self.max_concurrent_deletes < 1:
            raise ValueError("concurrency limits must be at least 1")


# Global configuration instance
config = Config()
