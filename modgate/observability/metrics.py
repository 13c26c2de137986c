"""Log-backed counters for moderation verdicts and gate outcomes."""

from __future__ import annotations

from collections import Counter
from threading import Lock

from modgate.util.logger import get_logger

_metric_logger = get_logger("metric")

_counts: Counter[tuple[str, tuple[tuple[str, str], ...]]] = Counter()
_counts_lock = Lock()


def _label_key(labels: dict | None) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v).lower()) for k, v in (labels or {}).items()))


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    key = (name, _label_key(labels))
    with _counts_lock:
        _counts[key] += value
        total = _counts[key]
    _metric_logger.info("metric counter name=%s value=%s total=%s labels=%s", name, value, total, dict(key[1]))


def record_verdict(is_violation: bool, *, stream: bool) -> None:
    emit_counter("moderation_verdict", labels={"violation": is_violation, "stream": stream})


def record_outcome(outcome: str, *, stream: bool) -> None:
    """outcome: relayed, blocked, error or client_disconnected."""
    emit_counter("gate_outcome", labels={"outcome": outcome, "stream": stream})


def counter_value(name: str, **labels: object) -> int:
    with _counts_lock:
        return _counts.get((name, _label_key(labels)), 0)


def reset_counters() -> None:
    with _counts_lock:
        _counts.clear()
