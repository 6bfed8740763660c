"""
Error taxonomy for shopvac
"""

import urllib3
from kubernetes.client.exceptions import ApiException

# HTTP statuses worth retrying on a delete: conflict, throttling, server hiccups
TRANSIENT_STATUSES = {409, 429, 500, 502, 503, 504}


class ShopvacError(Exception):
    """Base class for all shopvac errors"""


class ConfigurationError(ShopvacError):
    """A PodCleaner spec that can never be scheduled or evaluated as written"""


class CronError(ConfigurationError):
    """Invalid or unsatisfiable cron expression"""


class SelectorError(ConfigurationError):
    """Unparsable label or field selector"""


class FieldPathError(ShopvacError):
    """A field selector path that does not resolve against a pod"""

    def __init__(self, path, pod_key):
        super().__init__(f"field path '{path}' does not resolve on pod {pod_key}")
        self.path = path
        self.pod_key = pod_key


class ListingError(ShopvacError):
    """Pod listing failed; the pass must not act on a partial result"""

    def __init__(self, message, page=None, cause=None):
        super().__init__(message)
        self.page = page
        self.cause = cause


def is_not_found(error):
    return isinstance(error, ApiException) and error.status == 404


def is_transient(error):
    """Check whether a failed API call is worth retrying"""
    if isinstance(error, ApiException):
        return error.status in TRANSIENT_STATUSES
    return isinstance(error, (urllib3.exceptions.TimeoutError,
                              urllib3.exceptions.ProtocolError,
                              urllib3.exceptions.MaxRetryError,
                              ConnectionError,
                              TimeoutError))


def describe(error):
    """Short human readable reason for an API failure"""
    if isinstance(error, ApiException):
        return f"{error.status} {error.reason}".strip()
    return f"{type(error).__name__}: {error}"
