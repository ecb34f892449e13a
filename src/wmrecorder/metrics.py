# src/wmrecorder/metrics.py
"""Prometheus counters for the recorder (scraped by Prometheus; visualized in Grafana)."""

import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

EVENTS_RECORDED_TOTAL = Counter(
    "wmrecorder_events_recorded_total",
    "Window events normalized and written to the store",
    ["event_source"],
)
EVENTS_DISCARDED_TOTAL = Counter(
    "wmrecorder_events_discarded_total",
    "Source events that were not window changes",
)
RECONNECTS_TOTAL = Counter(
    "wmrecorder_reconnects_total",
    "Successful reconnects to the event source after the first connection",
)
WRITE_FAILURES_TOTAL = Counter(
    "wmrecorder_write_failures_total",
    "Failed appends to the durable store",
)
EVENTS_ABANDONED_TOTAL = Counter(
    "wmrecorder_events_abandoned_total",
    "Pending entries given up on after repeated write failures",
)


def start_metrics_server(port: int, addr: str = "127.0.0.1") -> None:
    start_http_server(port, addr=addr)
    logger.info("Metrics exporter listening on %s:%s", addr, port)
