"""
Alerts for failed cleanup passes - log and Prometheus Pushgateway
"""

import logging
from datetime import datetime, timedelta

import requests
from prometheus_client import generate_latest

from shopvac import metrics

logger = logging.getLogger(__name__)


class NotificationManager:
    def __init__(self, pushgateway_url=None, job_name='shopvac', cooldown_minutes=30, session=None):
        self.pushgateway_url = pushgateway_url.rstrip('/') if pushgateway_url else None
        self.job_name = job_name
        self.notification_cooldown = timedelta(minutes=cooldown_minutes)
        self.sent_notifications = {}
        self.session = session or requests.Session()

    def notify_outcome(self, cleaner, outcome, now=None):
        """Alert on a failed pass, at most once per cooldown per cleaner"""
        if outcome.ok:
            self.sent_notifications.pop(cleaner, None)
            return False

        now = now or datetime.now()
        last_notification = self.sent_notifications.get(cleaner)
        if last_notification and now - last_notification < self.notification_cooldown:
            logger.debug(f"Notification for {cleaner} is in cooldown")
            return False

        self.sent_notifications[cleaner] = now
        self._send_log_notification(cleaner, outcome)
        if self.pushgateway_url:
            try:
                self._push_to_pushgateway()
            except requests.RequestException as e:
                logger.error(f"Failed to push metrics to Pushgateway: {e}")
        return True

    def forget(self, cleaner):
        self.sent_notifications.pop(cleaner, None)

    def _send_log_notification(self, cleaner, outcome):
        if outcome.fatal_error:
            detail = f"Error: {outcome.fatal_error}"
        else:
            detail = "Failures:\n" + "\n".join(f"     {line}" for line in outcome.failure_lines())
        logger.error(
            f"CLEANUP PASS FAILED - {cleaner}\n"
            f"   Found: {outcome.found}, Deleted: {outcome.succeeded}, Failed: {outcome.failed}\n"
            f"   {detail}\n"
            f"   Timestamp: {outcome.timestamp.isoformat()}"
        )

    def _push_to_pushgateway(self):
        url = f"{self.pushgateway_url}/metrics/job/{self.job_name}"
        response = self.session.put(
            url,
            data=generate_latest(metrics.registry),
            headers={'Content-Type': 'text/plain; version=0.0.4'},
            timeout=10,
        )
        response.raise_for_status()
        logger.debug(f"Pushed metrics to Pushgateway at {url}")
