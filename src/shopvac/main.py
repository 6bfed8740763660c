#!/usr/bin/env python3
"""
shopvac controller - runs PodCleaner resources on their cron schedules
"""

import argparse
import logging
import signal
import sys
import threading

from shopvac.config import config
from shopvac.executor import DeletionExecutor, RetryPolicy
from shopvac.kubernetes_client import KubernetesClient
from shopvac.logger import ShopvacLogger, setup_logging
from shopvac import metrics
from shopvac.notifications import NotificationManager
from shopvac.reconciler import Controller
from shopvac.resolver import CandidateResolver


def build_parser():
    parser = argparse.ArgumentParser(prog="shopvac-controller",
                                     description="PodCleaner controller")
    parser.add_argument("--namespace", default=config.watch_namespace,
                        help="Only watch PodCleaners in this namespace (default: all)")
    parser.add_argument("--log-level", default=config.log_level)
    parser.add_argument("--log-format", default=config.log_format, choices=["json", "console"])
    parser.add_argument("--metrics-port", type=int, default=config.metrics_port)
    return parser


def build_controller(k8s_client, namespace=None):
    """Wire the controller from the global configuration"""
    # one semaphore for the whole process, shared by every pass
    delete_slots = threading.BoundedSemaphore(config.max_concurrent_deletes)
    executor = DeletionExecutor(
        k8s_client,
        retry_policy=RetryPolicy(config.delete_max_attempts, config.delete_backoff_seconds,
                                 config.delete_max_backoff_seconds),
        max_workers=config.max_concurrent_deletes,
        semaphore=delete_slots,
    )
    resolver = CandidateResolver(k8s_client, server_side_filtering=config.server_side_filtering)
    notifier = NotificationManager(
        pushgateway_url=config.pushgateway_url,
        job_name=config.prometheus_job_name,
        cooldown_minutes=config.notification_cooldown_minutes,
    )
    return Controller(
        k8s_client,
        resolver,
        executor,
        notifier=notifier,
        namespace=namespace,
        max_concurrent_passes=config.max_concurrent_passes,
        watch_timeout_seconds=config.watch_timeout_seconds,
    )


def main(argv=None):
    """Main application entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    logger = logging.getLogger('shopvac.main')
    events = ShopvacLogger("shopvac.main")

    events.log_startup("controller", {
        "namespace": args.namespace or "<all namespaces>",
        "max_concurrent_passes": config.max_concurrent_passes,
        "max_concurrent_deletes": config.max_concurrent_deletes,
        "metrics_port": args.metrics_port,
    })

    try:
        k8s_client = KubernetesClient(kube_config_path=config.kube_config_path,
                                      page_size=config.list_page_size)
        if not k8s_client.test_connection():
            logger.warning("Kubernetes connection test failed, continuing anyway")
        controller = build_controller(k8s_client, args.namespace)
        metrics.serve(args.metrics_port, ready=controller.ready.is_set)
    except Exception as e:
        events.log_error(e, context="controller startup")
        return 1

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        controller.stop()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    controller.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
