"""Tests for failed-pass alerts."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import requests

from shopvac.models import ReconciliationOutcome
from shopvac.notifications import NotificationManager

T0 = datetime(2024, 3, 10, 12, 0)


def failed_outcome():
    outcome = ReconciliationOutcome(found=2, succeeded=1)
    outcome.record_failure("ns1/a", "403 Forbidden")
    return outcome


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def manager(session):
    return NotificationManager("http://pushgateway:9091/", job_name="shopvac", cooldown_minutes=30,
                               session=session)


class TestNotifyOutcome:

    def test_successful_pass_is_quiet(self, manager, session):
        assert not manager.notify_outcome("ns1/x", ReconciliationOutcome(found=1, succeeded=1), T0)
        session.put.assert_not_called()

    def test_failure_pushes_metrics(self, manager, session):
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0)
        url = session.put.call_args.args[0]
        assert url == "http://pushgateway:9091/metrics/job/shopvac"
        assert b"shopvac_passes_total" in session.put.call_args.kwargs["data"]

    def test_cooldown_per_cleaner(self, manager, session):
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0)
        assert not manager.notify_outcome("ns1/x", failed_outcome(), T0 + timedelta(minutes=10))
        assert manager.notify_outcome("ns1/y", failed_outcome(), T0 + timedelta(minutes=10))
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0 + timedelta(minutes=31))

    def test_recovery_resets_cooldown(self, manager):
        manager.notify_outcome("ns1/x", failed_outcome(), T0)
        manager.notify_outcome("ns1/x", ReconciliationOutcome(), T0 + timedelta(minutes=1))
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0 + timedelta(minutes=2))

    def test_aborted_pass_alerts(self, manager):
        outcome = ReconciliationOutcome.listing_failed("listing pods failed on page 2")
        assert manager.notify_outcome("ns1/x", outcome, T0)

    def test_pushgateway_errors_are_logged(self, manager, session, caplog):
        session.put.side_effect = requests.ConnectionError("refused")
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0)
        assert "Failed to push metrics" in caplog.text

    def test_without_pushgateway_only_logs(self, session, caplog):
        manager = NotificationManager(session=session)
        assert manager.notify_outcome("ns1/x", failed_outcome(), T0)
        session.put.assert_not_called()
        assert "CLEANUP PASS FAILED - ns1/x" in caplog.text
