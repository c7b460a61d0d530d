"""
Thread-safe in-memory metrics collector for the bulk worker.

Tracks what the batch runner does:
  - Counters: images generated, gate outcomes, fallbacks, scene/item outcomes
  - Latency: per-capability call duration samples
  - Gauges: items in flight, batch start time
  - Errors: recent terminal failures for triage

All data is ephemeral (resets on restart). Durable history lives in the
item / scene / version tables.
"""

import time
import threading
from typing import Dict, List
from collections import defaultdict

_lock = threading.Lock()

# ── Counters ──────────────────────────────────────────────────────────────────
_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per capability) ────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Gauges ────────────────────────────────────────────────────────────────────
_gauges: Dict[str, float] = defaultdict(float)

# ── Error log (last 50 failures) ──────────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50


# ── Public API ────────────────────────────────────────────────────────────────

def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'gate.accept', 'fallback.animation_prompt')."""
    with _lock:
        _counters[name] += amount


def record_latency(capability: str, duration_ms: float):
    """Record a latency sample in milliseconds."""
    with _lock:
        samples = _latency_samples[capability]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[capability] = samples[-MAX_SAMPLES:]


def set_gauge(name: str, value: float):
    """Set a gauge value (e.g. 'items_in_flight')."""
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_error(stage: str, error_type: str, message: str, ref_id: str = ""):
    """Record a terminal failure (scene or item) for triage."""
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "error_type": error_type,
            "message": message[:300],
            "ref_id": ref_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def get_snapshot() -> dict:
    """
    Return a complete metrics snapshot for the /metrics endpoint.
    Thread-safe read of all collected data.
    """
    now = time.time()

    with _lock:
        latency_stats = {}
        for capability, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[capability] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        error_patterns: Dict[str, int] = defaultdict(int)
        for err in _recent_errors:
            error_patterns[f"{err['stage']}:{err['error_type']}"] += 1

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "recent_errors": list(_recent_errors[-10:]),
            "error_patterns": dict(error_patterns),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    """Clear all collected data."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()
