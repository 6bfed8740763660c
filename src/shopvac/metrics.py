"""
Prometheus metrics for cleanup passes and the controller admin server

The admin server answers /live, /ready and /metrics on one port.
"""

import logging
import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CollectorRegistry, Counter, Gauge, make_wsgi_app

logger = logging.getLogger(__name__)

registry = CollectorRegistry()

passes_total = Counter(
    'shopvac_passes_total',
    'Cleanup passes by result',
    ['cleaner', 'result'],
    registry=registry,
)

pods_deleted_total = Counter(
    'shopvac_pods_deleted_total',
    'Pods deleted (or already gone) by cleanup passes',
    ['cleaner'],
    registry=registry,
)

pod_delete_failures_total = Counter(
    'shopvac_pod_delete_failures_total',
    'Pods that could not be deleted or evaluated',
    ['cleaner'],
    registry=registry,
)

candidates_found = Gauge(
    'shopvac_candidates_found',
    'Deletion candidates found by the most recent pass',
    ['cleaner'],
    registry=registry,
)

last_pass_timestamp = Gauge(
    'shopvac_last_pass_timestamp_seconds',
    'Unix time of the most recent pass',
    ['cleaner'],
    registry=registry,
)


def pass_result(outcome):
    if outcome.fatal_error:
        return 'aborted'
    if outcome.failed:
        return 'partial'
    return 'success'


def record_outcome(cleaner, outcome):
    """Fold one pass outcome into the metrics"""
    passes_total.labels(cleaner=cleaner, result=pass_result(outcome)).inc()
    if not outcome.dry_run:
        pods_deleted_total.labels(cleaner=cleaner).inc(outcome.succeeded)
    pod_delete_failures_total.labels(cleaner=cleaner).inc(outcome.failed)
    candidates_found.labels(cleaner=cleaner).set(outcome.found)
    last_pass_timestamp.labels(cleaner=cleaner).set(outcome.timestamp.timestamp())


def forget(cleaner):
    """Drop per-cleaner gauges once a PodCleaner is deleted"""
    for gauge in (candidates_found, last_pass_timestamp):
        try:
            gauge.remove(cleaner)
        except KeyError:
            pass


def make_admin_app(ready=None):
    """WSGI app for the admin endpoints; ready is a callable reporting readiness"""
    metrics_app = make_wsgi_app(registry)

    def app(environ, start_response):
        path = environ.get('PATH_INFO', '/')
        if path == '/live':
            return _plain(start_response, '200 OK', b'live\n')
        if path == '/ready':
            if ready is None or ready():
                return _plain(start_response, '200 OK', b'ready\n')
            return _plain(start_response, '503 Service Unavailable', b'not ready\n')
        return metrics_app(environ, start_response)

    return app


def _plain(start_response, status, body):
    start_response(status, [('Content-Type', 'text/plain; charset=utf-8'),
                            ('Content-Length', str(len(body)))])
    return [body]


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"admin {self.address_string()} {format % args}")


def serve(port, ready=None):
    """Start the admin server on a daemon thread; port <= 0 disables it"""
    if port <= 0:
        logger.info("Admin server disabled")
        return None
    httpd = make_server('', port, make_admin_app(ready), handler_class=_QuietHandler)
    thread = threading.Thread(target=httpd.serve_forever, name="shopvac-admin", daemon=True)
    thread.start()
    logger.info(f"Serving /live, /ready and /metrics on :{port}")
    return httpd
