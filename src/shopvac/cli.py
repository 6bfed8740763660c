#!/usr/bin/env python3
"""
shopvac - one-shot pod bulk deletion

Lists pods in a namespace (or the whole cluster), keeps those matching the
selectors that are older than the threshold, and deletes them. Dry run unless
--actually-delete is given.
"""

import argparse
import logging
import sys
import threading

from shopvac import __version__
from shopvac.age_policy import AgePolicy
from shopvac.config import config
from shopvac.errors import ConfigurationError
from shopvac.executor import DeletionExecutor, RetryPolicy
from shopvac.kubernetes_client import KubernetesClient
from shopvac.logger import ShopvacLogger, setup_logging
from shopvac.models import Scope
from shopvac.reconciler import run_pass
from shopvac.resolver import CandidateResolver, compile_exclusion
from shopvac.selectors import Selector

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser():
    parser = argparse.ArgumentParser(prog="shopvac", description="Pod bulk deletion tool")
    parser.add_argument("-n", "--namespace",
                        help="Namespace to scan pods for (default: all namespaces)")
    parser.add_argument("-o", "--older-than", type=int, default=3,
                        help="Remove pods that are at least this many days old (default: 3)")
    parser.add_argument("-l", "--label-selector", help="Label selector to use")
    parser.add_argument("-f", "--field-selector", help="Field selector to use")
    parser.add_argument("-a", "--actually-delete", action="store_true",
                        help="Delete the pods instead of doing a dry run (the default)")
    parser.add_argument("-e", "--exclude-namespace-pattern", default=config.exclude_namespace_pattern,
                        help="Namespace exclusion regex for cluster-wide runs")
    parser.add_argument("--log-level", default=config.log_level)
    parser.add_argument("--log-format", default=config.log_format, choices=["json", "console"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None, k8s_client=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    events = ShopvacLogger("shopvac.cli")
    logger = logging.getLogger("shopvac.cli")

    scope = Scope(args.namespace)
    events.log_startup("oneshot", {
        "namespace": str(scope),
        "older_than": args.older_than,
        "label_selector": args.label_selector,
        "field_selector": args.field_selector,
        "dry_run": not args.actually_delete,
    })
    if scope.cluster_wide:
        logger.warning("Initialized in cluster mode!")

    try:
        selector = Selector.parse(args.label_selector, args.field_selector)
        age_policy = AgePolicy(args.older_than)
        exclusion = compile_exclusion(args.exclude_namespace_pattern) if scope.cluster_wide else None
    except (ConfigurationError, ValueError) as e:
        events.log_error(e, context="parsing arguments")
        return EXIT_CONFIG

    if k8s_client is None:
        k8s_client = KubernetesClient(kube_config_path=config.kube_config_path,
                                      page_size=config.list_page_size)
    resolver = CandidateResolver(
        k8s_client,
        server_side_filtering=config.server_side_filtering,
        exclude_namespace_pattern=exclusion,
    )
    executor = DeletionExecutor(
        k8s_client,
        retry_policy=RetryPolicy(config.delete_max_attempts, config.delete_backoff_seconds,
                                 config.delete_max_backoff_seconds),
        max_workers=config.max_concurrent_deletes,
        semaphore=threading.BoundedSemaphore(config.max_concurrent_deletes),
        dry_run=not args.actually_delete,
    )

    events.log_pass_start("cli", str(scope), "oneshot")
    outcome = run_pass(resolver, executor, scope, selector, age_policy)
    events.log_pass_end("cli", outcome)

    if outcome.dry_run and not outcome.fatal_error:
        logger.info("Dry run initiated! Nothing was deleted.")
    return EXIT_OK if outcome.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
