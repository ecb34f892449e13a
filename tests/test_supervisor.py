"""Tests for the connection supervisor and its backoff policy."""
import os
import random

import pytest
from sqlalchemy import create_engine, text

from wmrecorder.errors import ConnectError, SubscribeError, TransportError, WriteError
from wmrecorder.monitor.events import OtherEvent
from wmrecorder.monitor.supervisor import Backoff, Supervisor

from fakes import FakeSource, FakeSubscription, make_raw


def read_rows(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        with engine.connect() as conn:
            result = conn.execute(
                text("SELECT event_source, window_area, window_class, window_name FROM window_events ORDER BY id")
            )
            return [tuple(row) for row in result]
    finally:
        engine.dispose()


def make_supervisor(source, store, sleeps, fixed_clock, **kwargs):
    return Supervisor(
        source=source,
        store=store,
        backoff=Backoff(initial=0.5, maximum=8.0, jitter=0.0),
        sleep=sleeps.append,
        clock=fixed_clock,
        **kwargs,
    )


class FlakyStore:
    """Wraps a real store and fails the first `failures` appends."""

    def __init__(self, store, failures):
        self.store = store
        self.failures = failures
        self.recoveries = 0

    def append(self, entry):
        if self.failures > 0:
            self.failures -= 1
            raise WriteError("database is locked")
        self.store.append(entry)

    def recover(self):
        self.recoveries += 1
        self.store.recover()


def test_resilience_across_transport_error(store, db_path, sleeps, fixed_clock):
    event_a = make_raw("new", "A", {"class": "a"}, (0, 0, 2, 3))
    event_b = make_raw("focus", "B", {"class": "b"}, (0, 0, 4, 5))
    source = FakeSource([[event_a, TransportError("socket closed")], [event_b, TransportError("socket closed")]])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock)

    supervisor.run(max_cycles=2)

    assert read_rows(db_path) == [("open", 6, "a", "A"), ("focus", 20, "b", "B")]
    assert supervisor.reconnects == 1
    assert source.connect_calls == 2
    assert all(s.closed for s in source.subscriptions)


def test_end_to_end_open_event(store, db_path, sleeps, fixed_clock):
    raw = make_raw("new", "Terminal", {"class": "urxvt"}, (0, 0, 800, 600))
    supervisor = make_supervisor(FakeSource([[raw]]), store, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    assert read_rows(db_path) == [("open", 480000, "urxvt", "Terminal")]


def test_end_to_end_urgent_event_without_metadata(store, db_path, sleeps, fixed_clock):
    raw = make_raw("urgent", None, None, (0, 0, 0, 0))
    supervisor = make_supervisor(FakeSource([[raw]]), store, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    assert read_rows(db_path) == [("other", 0, "", "")]


def test_other_categories_are_discarded(store, db_path, sleeps, fixed_clock):
    script = [OtherEvent("shutdown"), make_raw("close"), OtherEvent("workspace"), make_raw("move")]
    supervisor = make_supervisor(FakeSource([script]), store, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    assert [r[0] for r in read_rows(db_path)] == ["close", "move"]
    assert supervisor.reconnects == 0


def test_connect_failures_back_off_then_recover(store, db_path, sleeps, fixed_clock):
    source = FakeSource([ConnectError("no socket"), ConnectError("no socket"), [make_raw()]])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock)

    supervisor.run(max_cycles=3)

    assert len(read_rows(db_path)) == 1
    # two failed attempts grow the delay, the epoch after a good connect starts over
    assert sleeps == [0.5, 1.0, 0.5]
    assert supervisor.reconnects == 0


def test_subscribe_failure_closes_handle(store, sleeps, fixed_clock):
    failing = FakeSubscription([], subscribe_error=SubscribeError("rejected"))
    source = FakeSource([failing])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    assert failing.closed
    assert supervisor.connections == 0


def test_idle_timeout_probes_and_keeps_streaming(store, db_path, sleeps, fixed_clock):
    subscription = FakeSubscription([None, None, make_raw("title")])
    supervisor = make_supervisor(FakeSource([subscription]), store, sleeps, fixed_clock, idle_timeout=1.0)

    supervisor.run(max_cycles=1)

    assert subscription.probes == 2
    assert [r[0] for r in read_rows(db_path)] == ["title_change"]


def test_failed_probe_ends_epoch(store, db_path, sleeps, fixed_clock):
    stalled = FakeSubscription([None, make_raw()], probe_error=TransportError("no reply"))
    source = FakeSource([stalled, [make_raw("close")]])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock, idle_timeout=1.0)

    supervisor.run(max_cycles=2)

    assert stalled.closed
    assert [r[0] for r in read_rows(db_path)] == ["close"]
    assert supervisor.reconnects == 1


def test_write_failure_keeps_entry_pending_until_store_recovers(store, db_path, sleeps, fixed_clock):
    flaky = FlakyStore(store, failures=2)
    source = FakeSource([[make_raw("new", "A")], [make_raw("close", "B")]])
    supervisor = make_supervisor(source, flaky, sleeps, fixed_clock)

    # cycle 1: append fails; cycle 2: pending retry fails, no reconnect;
    # cycle 3: pending written, reconnect, B recorded
    supervisor.run(max_cycles=3)

    assert read_rows(db_path) == [("open", 480000, "", "A"), ("close", 480000, "", "B")]
    assert supervisor.pending is None
    assert flaky.recoveries == 2
    assert source.connect_calls == 2
    assert source.subscriptions[0].closed


def test_write_failure_does_not_skip_to_next_event(store, db_path, sleeps, fixed_clock):
    flaky = FlakyStore(store, failures=1)
    first_epoch = FakeSubscription([make_raw("new", "A"), make_raw("close", "never read")])
    supervisor = make_supervisor(FakeSource([first_epoch]), flaky, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    assert supervisor.pending is not None
    assert supervisor.pending.window_name == "A"
    assert len(first_epoch.script) == 1
    assert read_rows(db_path) == []


def test_backoff_grows_and_caps():
    backoff = Backoff(initial=1.0, maximum=10.0, factor=2.0, jitter=0.0)

    assert [backoff.next_delay() for _ in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    backoff.reset()
    assert backoff.next_delay() == 1.0


def test_backoff_jitter_stays_within_bounds():
    backoff = Backoff(initial=4.0, maximum=100.0, jitter=0.25, rng=random.Random(7))

    for expected_base in [4.0, 8.0, 16.0, 32.0]:
        delay = backoff.next_delay()
        assert expected_base * 0.75 <= delay <= expected_base * 1.25


def test_backoff_jitter_never_exceeds_maximum():
    backoff = Backoff(initial=50.0, maximum=60.0, jitter=0.5, rng=random.Random(1))

    for _ in range(20):
        assert 0.0 <= backoff.next_delay() <= 60.0


@pytest.mark.parametrize("cycles", [1, 3])
def test_run_stops_after_max_cycles(store, sleeps, fixed_clock, cycles):
    supervisor = make_supervisor(FakeSource([]), store, sleeps, fixed_clock)

    supervisor.run(max_cycles=cycles)

    assert supervisor.cycles == cycles
    assert len(sleeps) == cycles


def drop_table(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE window_events"))
    engine.dispose()


def test_dropped_table_is_recreated_and_source_reconnects(store, db_path, sleeps, fixed_clock):
    drop_table(db_path)
    source = FakeSource([[make_raw("new", "A")], [make_raw("close", "B")]])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock)

    supervisor.run(max_cycles=2)

    assert [r[3] for r in read_rows(db_path)] == ["A", "B"]
    assert supervisor.pending is None
    assert supervisor.reconnects == 1


def test_deleted_database_file_is_recreated(store, db_path, sleeps, fixed_clock):
    os.remove(db_path)
    source = FakeSource([[make_raw("new", "A")], [make_raw("focus", "B")], [make_raw("close", "C")]])
    supervisor = make_supervisor(source, store, sleeps, fixed_clock)

    supervisor.run(max_cycles=3)

    assert os.path.exists(db_path)
    assert [r[3] for r in read_rows(db_path)] == ["A", "B", "C"]
    assert source.connect_calls == 3
    assert supervisor.reconnects == 2


def test_pending_entry_abandoned_after_retry_limit(store, db_path, sleeps, fixed_clock):
    # A's first write and two retries fail; the limit is two retries
    flaky = FlakyStore(store, failures=3)
    source = FakeSource([[make_raw("new", "A")], [make_raw("close", "B")]])
    supervisor = make_supervisor(source, flaky, sleeps, fixed_clock, max_pending_retries=2)

    supervisor.run(max_cycles=3)

    assert read_rows(db_path) == [("close", 480000, "", "B")]
    assert supervisor.pending is None
    assert supervisor.pending_failures == 0
    assert source.connect_calls == 2
    assert supervisor.reconnects == 1


def test_pending_retry_count_resets_after_success(store, sleeps, fixed_clock):
    flaky = FlakyStore(store, failures=2)
    source = FakeSource([[make_raw("new", "A")], [make_raw("close", "B")]])
    supervisor = make_supervisor(source, flaky, sleeps, fixed_clock, max_pending_retries=5)

    supervisor.run(max_cycles=3)

    assert supervisor.pending is None
    assert supervisor.pending_failures == 0


def test_title_with_lone_surrogate_is_recorded(store, db_path, sleeps, fixed_clock):
    script = [make_raw("title", "caf\udce9 - Firefox", {"class": "fire\udcfffox"}), make_raw("focus", "vim")]
    supervisor = make_supervisor(FakeSource([script]), store, sleeps, fixed_clock)

    supervisor.run(max_cycles=1)

    rows = read_rows(db_path)
    assert [r[0] for r in rows] == ["title_change", "focus"]
    assert rows[0][3].startswith("caf") and rows[0][3].endswith(" - Firefox")
    assert "�" in rows[0][3]
    assert "�" in rows[0][2]
    assert rows[1][3] == "vim"
