"""
Latency measurement for player commands and connectivity probes.

One METRIC_TIMER log event per measured block. Durations come from the
monotonic clock; `ts_ms` is wall-clock so lines correlate with the rest
of the log.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from observability.logger import log_event


@dataclass
class Measurement:
    """Filled in when the timed block exits."""
    name: str
    started_ns: int = field(default_factory=time.monotonic_ns)
    value_ms: int | None = None
    outcome: str = "ok"


@contextmanager
def timed(
    name: str,
    *,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[Measurement]:
    """
    Measure the enclosed block and emit its duration.

    The metric is emitted exactly once, also when the block raises; the
    exception propagates and its type is recorded as the outcome.

        with timed("connectivity_probe", state=status) as m:
            await probe.check(url)
    """
    measurement = Measurement(name)
    try:
        yield measurement
    except BaseException as exc:
        measurement.outcome = type(exc).__name__
        raise
    finally:
        measurement.value_ms = (time.monotonic_ns() - measurement.started_ns) // 1_000_000
        log_event({
            "ts_ms": int(time.time() * 1000),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": measurement.value_ms,
            "outcome": measurement.outcome,
            "state": state,
            "details": details or {},
        })
