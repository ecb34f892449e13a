# src/wmrecorder/monitor/supervisor.py
"""
Connection supervisor: keeps a subscription to the event source alive and
drives every window event through the normalizer into the store.

There is no terminal state. Source failures end the current connection epoch
and lead to a reconnect after a capped exponential backoff. Store write
failures re-open the store and keep the unwritten entry pending; it is written
before the source is reconnected. After `max_pending_retries` failed writes the
entry is logged at ERROR and abandoned so the source is not blocked forever.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Callable, Optional

from wmrecorder import metrics
from wmrecorder.db.store import Store
from wmrecorder.errors import SourceError, TransportError, WriteError
from wmrecorder.monitor.events import OtherEvent, RawEvent, TimeEntry
from wmrecorder.monitor.i3_source import EventSource, Subscription
from wmrecorder.monitor.normalizer import normalize, utcnow

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_MAX_PENDING_RETRIES = 5


class Backoff:
    """Capped exponential delays with proportional jitter."""

    def __init__(
        self,
        initial: float = 0.5,
        maximum: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._attempt = 0

    def next_delay(self) -> float:
        base = min(self.maximum, self.initial * (self.factor ** self._attempt))
        self._attempt += 1
        spread = base * self.jitter
        return max(0.0, min(self.maximum, base + self._rng.uniform(-spread, spread)))

    def reset(self) -> None:
        self._attempt = 0


class Supervisor:
    def __init__(
        self,
        source: EventSource,
        store: Store,
        backoff: Optional[Backoff] = None,
        idle_timeout: Optional[float] = DEFAULT_IDLE_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
        max_pending_retries: int = DEFAULT_MAX_PENDING_RETRIES,
    ):
        self.source = source
        self.store = store
        self.backoff = backoff or Backoff()
        self.idle_timeout = idle_timeout
        self._sleep = sleep
        self._clock = clock
        self.max_pending_retries = max_pending_retries

        self.cycles = 0
        self.connections = 0
        self.reconnects = 0
        self.pending: Optional[TimeEntry] = None
        self.pending_failures = 0

    def run(self, max_cycles: Optional[int] = None) -> None:
        """Supervise forever, or for `max_cycles` connection cycles."""
        while max_cycles is None or self.cycles < max_cycles:
            self.run_cycle()

    def run_cycle(self) -> None:
        """One Disconnected -> Streaming -> Disconnected pass. Never raises boundary errors."""
        self.cycles += 1

        if self.pending is not None and not self._flush_pending():
            self._wait()
            return

        subscription = self._connect()
        if subscription is None:
            self._wait()
            return

        try:
            self._stream(subscription)
        except TransportError as exc:
            logger.error("Connection to event source lost: %s", exc)
        except WriteError as exc:
            metrics.WRITE_FAILURES_TOTAL.inc()
            logger.error("Store write failed, restarting connection epoch: %s", exc)
            self.store.recover()
        finally:
            subscription.close()

        self._wait()

    def _connect(self) -> Optional[Subscription]:
        subscription: Optional[Subscription] = None
        try:
            subscription = self.source.connect()
            subscription.subscribe()
        except SourceError as exc:
            logger.error("Could not subscribe to event source: %s", exc)
            if subscription is not None:
                subscription.close()
            return None

        self.connections += 1
        if self.connections > 1:
            self.reconnects += 1
            metrics.RECONNECTS_TOTAL.inc()
            logger.info("Reconnected to event source (reconnect #%d)", self.reconnects)
        else:
            logger.info("Connected to event source")
        self.backoff.reset()
        return subscription

    def _stream(self, subscription: Subscription) -> None:
        while True:
            event = subscription.next_event(timeout=self.idle_timeout)

            if event is None:
                # quiet desktop or stalled socket; only the latter ends the epoch
                logger.debug("No event for %ss, probing connection", self.idle_timeout)
                subscription.probe()
            elif isinstance(event, RawEvent):
                self._record(event)
            elif isinstance(event, OtherEvent):
                metrics.EVENTS_DISCARDED_TOTAL.inc()
                logger.debug("Discarding %s event", event.category)
            else:
                metrics.EVENTS_DISCARDED_TOTAL.inc()
                logger.debug("Discarding unrecognised event %r", event)

    def _record(self, raw: RawEvent) -> None:
        entry = normalize(raw, clock=self._clock)
        self.pending = entry
        self.pending_failures = 0
        self.store.append(entry)
        self.pending = None
        metrics.EVENTS_RECORDED_TOTAL.labels(event_source=entry.event_source.value).inc()
        logger.info("%s -> %s (%s)", raw.change_kind, entry.event_source.value, entry.window_class)

    def _flush_pending(self) -> bool:
        try:
            self.store.append(self.pending)
        except WriteError as exc:
            metrics.WRITE_FAILURES_TOTAL.inc()
            self.pending_failures += 1
            if self.pending_failures >= self.max_pending_retries:
                metrics.EVENTS_ABANDONED_TOTAL.inc()
                logger.error(
                    "Abandoning pending entry after %d failed writes, reconnecting anyway: %s (%s)",
                    self.pending_failures,
                    self.pending.model_dump(mode="json"),
                    exc,
                )
                self.pending = None
                self.pending_failures = 0
                self.store.recover()
                return True
            logger.error("Store still failing, holding pending %s event: %s", self.pending.event_source.value, exc)
            self.store.recover()
            return False
        self.pending_failures = 0
        logger.info("Wrote pending %s event after store recovery", self.pending.event_source.value)
        metrics.EVENTS_RECORDED_TOTAL.labels(event_source=self.pending.event_source.value).inc()
        self.pending = None
        return True

    def _wait(self) -> None:
        delay = self.backoff.next_delay()
        logger.info("Retrying in %.2fs", delay)
        self._sleep(delay)
