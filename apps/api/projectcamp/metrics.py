from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import monotonic

# Responses the authorization gate and token checks produce for refused callers.
DENIAL_STATUSES = frozenset({401, 403, 404})


@dataclass(frozen=True)
class Observation:
  at: datetime
  status_code: int
  elapsed_ms: float


@dataclass
class WindowStats:
  requests: int = 0
  server_errors: int = 0
  denials: int = 0

  def add(self, o: Observation) -> None:
    self.requests += 1
    if o.status_code >= 500:
      self.server_errors += 1
    elif o.status_code in DENIAL_STATUSES:
      self.denials += 1

  def error_rate(self) -> float:
    return round(self.server_errors * 100 / self.requests, 2) if self.requests else 0.0


class RuntimeMetrics:
  """Request outcomes over the last day, kept in memory per process."""

  retention = timedelta(hours=24)

  def __init__(self) -> None:
    self._boot = monotonic()
    self._observations: deque[Observation] = deque()
    self._lock = Lock()

  def observe_request(self, status_code: int, latency_ms: float) -> None:
    o = Observation(at=datetime.now(timezone.utc), status_code=status_code, elapsed_ms=latency_ms)
    with self._lock:
      self._observations.append(o)
      self._expire(o.at)

  def _expire(self, now: datetime) -> None:
    oldest = now - self.retention
    while self._observations and self._observations[0].at < oldest:
      self._observations.popleft()

  def snapshot(self) -> dict:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._expire(now)
      observed = list(self._observations)

    day, recent = WindowStats(), WindowStats()
    recent_since = now - timedelta(minutes=15)
    for o in observed:
      day.add(o)
      if o.at >= recent_since:
        recent.add(o)

    latencies = sorted(o.elapsed_ms for o in observed)
    p95 = latencies[max(0, int(len(latencies) * 0.95) - 1)] if latencies else 0.0

    return {
      "uptimeSeconds": max(0, int(monotonic() - self._boot)),
      "p95LatencyMs24h": round(p95, 2),
      "requestCount15m": recent.requests,
      "requestCount24h": day.requests,
      "deniedCount15m": recent.denials,
      "deniedCount24h": day.denials,
      "errorRate15m": recent.error_rate(),
      "errorRate24h": day.error_rate(),
    }


runtime_metrics = RuntimeMetrics()
