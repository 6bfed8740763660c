"""
PodCleaner controller loop

A single loop thread consumes an event queue fed by the watch thread and by
finished passes. Only the loop thread touches the cleaner table and the cron
scheduler; passes run on a bounded worker pool and report back through the
queue. A pass never overlaps with another pass for the same PodCleaner: a fire
that lands while one is running is deferred until it completes.
"""

import queue
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from shopvac import metrics
from shopvac.age_policy import AgePolicy
from shopvac.errors import ConfigurationError, ListingError, describe, is_not_found
from shopvac.logger import ShopvacLogger
from shopvac.models import PodCleaner, ReconciliationOutcome, Scope, format_timestamp
from shopvac.scheduler import CronScheduler
from shopvac.selectors import Selector

logger = logging.getLogger(__name__)

# upper bound on how long the loop sleeps when no schedule is due
IDLE_WAIT_SECONDS = 60.0
WATCH_RETRY_SECONDS = 5.0


class State(Enum):
    ABSENT = "Absent"
    REGISTERED = "Registered"
    ACTIVE = "Active"
    FAILED = "Failed"


@dataclass
class CleanerState:
    cleaner: PodCleaner
    state: State = State.ABSENT
    selector: Optional[Selector] = None
    age_policy: Optional[AgePolicy] = None
    registration: int = 0
    message: str = ""
    pending_fire: bool = False


@dataclass(frozen=True)
class WatchEvent:
    type: str
    object: Dict[str, Any]


@dataclass(frozen=True)
class Resync:
    objects: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class PassCompleted:
    key: str
    uid: Optional[str]
    registration: int
    outcome: ReconciliationOutcome


class _Stop:
    pass


class Controller:
    def __init__(self, k8s_client, resolver, executor, scheduler=None, notifier=None,
                 namespace=None, max_concurrent_passes=4, watch_timeout_seconds=300, pool=None):
        self.k8s_client = k8s_client
        self.resolver = resolver
        self.executor = executor
        self.scheduler = scheduler if scheduler is not None else CronScheduler()
        self.notifier = notifier
        self.namespace = namespace
        self.watch_timeout_seconds = watch_timeout_seconds

        self.events = queue.Queue()
        self.cleaners: Dict[str, CleanerState] = {}
        self.in_flight: Set[str] = set()

        self._pool = pool if pool is not None else ThreadPoolExecutor(
            max_workers=max_concurrent_passes, thread_name_prefix="shopvac-pass")
        self._stopped = threading.Event()
        # set once the first full PodCleaner listing has been applied
        self.ready = threading.Event()
        self._watch_thread = None
        self.events_log = ShopvacLogger("shopvac.controller")

    # -- lifecycle ---------------------------------------------------------

    def run(self):
        """Run until stop() is called"""
        self._watch_thread = threading.Thread(target=self._watch_loop, name="shopvac-watch", daemon=True)
        self._watch_thread.start()
        logger.info(f"Controller started, watching {self.namespace or 'all namespaces'}")
        try:
            while not self._stopped.is_set():
                self.step()
        finally:
            # in-flight passes run to completion, their outcomes are dropped
            self._pool.shutdown(wait=True)
            logger.info("Controller stopped")

    def stop(self):
        self._stopped.set()
        self.events.put(_Stop())

    def step(self, timeout=None):
        """Handle at most one event, then dispatch whatever schedules are due"""
        if timeout is None:
            wait = self.scheduler.seconds_until_next()
            timeout = IDLE_WAIT_SECONDS if wait is None else min(wait, IDLE_WAIT_SECONDS)
        try:
            event = self.events.get(timeout=timeout) if timeout > 0 else self.events.get_nowait()
        except queue.Empty:
            event = None
        if event is not None:
            self.handle(event)
        self.dispatch_due()

    def handle(self, event):
        if isinstance(event, WatchEvent):
            if event.type in ("ADDED", "MODIFIED"):
                self._on_upsert_object(event.object)
            elif event.type == "DELETED":
                metadata = event.object.get("metadata", {})
                self._on_delete(f"{metadata.get('namespace')}/{metadata.get('name')}")
        elif isinstance(event, Resync):
            self._on_resync(event.objects)
        elif isinstance(event, PassCompleted):
            self._on_pass_completed(event)

    # -- spec changes ------------------------------------------------------

    def _on_resync(self, objects):
        seen = set()
        for obj in objects:
            metadata = obj.get("metadata", {})
            seen.add(f"{metadata.get('namespace')}/{metadata.get('name')}")
            self._on_upsert_object(obj)
        for key in [key for key in self.cleaners if key not in seen]:
            self._on_delete(key)
        self.ready.set()

    def _on_upsert_object(self, obj):
        try:
            cleaner = PodCleaner.from_object(obj)
        except (KeyError, TypeError, ValueError) as e:
            metadata = obj.get("metadata", {})
            key = f"{metadata.get('namespace')}/{metadata.get('name')}"
            self.events_log.log_warning("Ignoring malformed PodCleaner", cleaner=key, error=repr(e))
            return
        self.upsert(cleaner)

    def upsert(self, cleaner: PodCleaner):
        existing = self.cleaners.get(cleaner.key)
        if existing and existing.cleaner.uid == cleaner.uid and existing.cleaner.spec == cleaner.spec:
            # status or metadata only, keep the current schedule
            existing.cleaner = cleaner
            return

        # first sighting after a (re)start resumes from the persisted last fire
        last_fired = cleaner.last_schedule_time if existing is None else None
        previous = existing.state if existing else State.ABSENT
        self.scheduler.unregister(cleaner.key)

        state = CleanerState(cleaner=cleaner)
        self.cleaners[cleaner.key] = state
        try:
            state.selector = Selector.parse(cleaner.spec.label_selector, cleaner.spec.field_selector)
            try:
                state.age_policy = AgePolicy(cleaner.spec.delete_older_than)
            except ValueError as e:
                raise ConfigurationError(f"delete_older_than: {e}") from e
            entry = self.scheduler.register(cleaner.key, cleaner.spec.schedule, last_fired=last_fired)
        except ConfigurationError as e:
            self._transition(state, previous, State.FAILED, f"invalid spec: {e}")
            self._write_status(state)
            return

        state.registration = entry.generation
        self._transition(state, previous, State.REGISTERED)
        self._write_status(state)

    def _on_delete(self, key):
        state = self.cleaners.pop(key, None)
        self.scheduler.unregister(key)
        if state is None:
            return
        self._transition(state, state.state, State.ABSENT)
        metrics.forget(key)
        if self.notifier:
            self.notifier.forget(key)

    # -- firing ------------------------------------------------------------

    def dispatch_due(self, now: Optional[datetime] = None):
        for entry in self.scheduler.due(now):
            state = self.cleaners.get(entry.key)
            if state is None or state.registration != entry.generation:
                continue
            if entry.key in self.in_flight:
                state.pending_fire = True
                logger.info(f"Pass for {entry.key} still running, deferring fire")
                continue
            self._start_pass(state, trigger="schedule")

    def _start_pass(self, state: CleanerState, trigger: str):
        key = state.cleaner.key
        self.in_flight.add(key)
        entry = self.scheduler.get(key)
        fired_at = entry.last_fired if entry and entry.last_fired else self.scheduler.now()

        self._transition(state, state.state, State.ACTIVE)
        self._write_status(state, last_fired=fired_at)

        self.events_log.log_pass_start(key, state.cleaner.namespace, trigger)
        self._pool.submit(self._run_pass, state.cleaner, state.selector, state.age_policy,
                          state.registration)

    def _run_pass(self, cleaner: PodCleaner, selector: Selector, age_policy: AgePolicy,
                  registration: int):
        """Worker side of a pass; always reports back through the event queue"""
        try:
            outcome = run_pass(self.resolver, self.executor, Scope(cleaner.namespace),
                               selector, age_policy, now=self.scheduler.now())
        except Exception as e:
            logger.exception(f"Unexpected error during pass for {cleaner.key}")
            outcome = ReconciliationOutcome.listing_failed(f"unexpected error: {describe(e)}")
        self.events.put(PassCompleted(cleaner.key, cleaner.uid, registration, outcome))

    def _on_pass_completed(self, event: PassCompleted):
        self.in_flight.discard(event.key)
        outcome = event.outcome

        state = self.cleaners.get(event.key)
        if state is None:
            logger.info(f"Discarding outcome for {event.key}: PodCleaner no longer exists")
            return

        if state.cleaner.uid != event.uid:
            logger.info(f"Discarding outcome for {event.key}: PodCleaner was recreated")
        else:
            self.events_log.log_pass_end(event.key, outcome)
            metrics.record_outcome(event.key, outcome)
            if self.notifier:
                self.notifier.notify_outcome(event.key, outcome)

            if state.registration == event.registration:
                if outcome.fatal_error:
                    self._transition(state, state.state, State.FAILED, outcome.fatal_error)
                else:
                    state.message = f"{outcome.failed} pods could not be deleted" if outcome.failed else ""
            self._write_status(state, outcome=outcome)

        if state.pending_fire and event.key in self.scheduler:
            state.pending_fire = False
            self._start_pass(state, trigger="deferred")

    # -- status ------------------------------------------------------------

    def _transition(self, state: CleanerState, previous: State, new: State, message: str = ""):
        state.state = new
        state.message = message
        if previous is not new:
            self.events_log.log_transition(state.cleaner.key, previous.value, new.value, message or None)

    def _write_status(self, state: CleanerState, last_fired=None, outcome=None):
        entry = self.scheduler.get(state.cleaner.key)
        next_fire = entry.next_fire if entry else None
        last_fired = last_fired or (entry.last_fired if entry else None)
        status = {
            "state": state.state.value,
            "message": state.message,
            "nextScheduleTime": format_timestamp(next_fire) if next_fire else None,
            "observedGeneration": state.cleaner.generation,
        }
        if last_fired:
            status["lastScheduleTime"] = format_timestamp(last_fired)
        if outcome is not None:
            status["lastReconcileTime"] = format_timestamp(outcome.timestamp)
            status["lastOutcome"] = outcome.as_status()
            status["failures"] = outcome.failure_lines()

        try:
            self.k8s_client.patch_pod_cleaner_status(state.cleaner.namespace, state.cleaner.name, status)
        except Exception as e:
            if is_not_found(e):
                logger.debug(f"PodCleaner {state.cleaner.key} vanished before status update")
                return
            self.events_log.log_error(e, context=f"status update for {state.cleaner.key}")

    # -- watch -------------------------------------------------------------

    def _watch_loop(self):
        while not self._stopped.is_set():
            try:
                items, resource_version = self.k8s_client.list_pod_cleaners(self.namespace)
                self.events.put(Resync(items))
                for event in self.k8s_client.watch_pod_cleaners(
                        self.namespace, resource_version, self.watch_timeout_seconds):
                    if self._stopped.is_set():
                        return
                    event_type = event.get("type")
                    if event_type == "ERROR":
                        logger.info(f"Watch expired, relisting: {event.get('object')}")
                        break
                    if event_type == "BOOKMARK":
                        continue
                    self.events.put(WatchEvent(event_type, event["object"]))
            except Exception as e:
                self.events_log.log_error(e, context="watching PodCleaner objects")
                self._stopped.wait(WATCH_RETRY_SECONDS)


def run_pass(resolver, executor, scope: Scope, selector: Selector, age_policy: AgePolicy,
             now: Optional[datetime] = None) -> ReconciliationOutcome:
    """One list-filter-delete cycle

    A listing failure aborts the pass before any delete is issued. Pods whose
    field paths could not be evaluated count as per-pod failures.
    """
    try:
        resolution = resolver.resolve(scope, selector, age_policy, now)
    except ListingError as e:
        logger.error(f"Listing failed for {scope}, no pods deleted: {e}")
        return ReconciliationOutcome.listing_failed(str(e))

    outcome = executor.execute(resolution.candidates)
    for key, reason in resolution.evaluation_errors.items():
        outcome.record_failure(key, reason)
    return outcome
