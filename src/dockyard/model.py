"""
Data models and structures for the dockyard engine.

This module defines the dataclasses shared by the runtime client, the
background workers and the presentation layer:
  - ContainerInfo / ImageInfo: list records, replaced wholesale per refresh
  - StatsSample / ContainerStats: one parsed stats snapshot and the rolling
    per-container history built from successive samples
  - HealthStatus / ContainerHealth: health-check state with an explicit
    priority order used for sorting
  - ViewportState / PerfMetrics: small records written by the UI and the
    performance sampler
  - EngineConfig: live-tunable settings read fresh by every loop each cycle

History Bounds:
  - Every ContainerStats history keeps at most HISTORY_LIMIT samples
  - Health check history keeps the last HEALTH_HISTORY_LIMIT results
  - Outputs are truncated to HEALTH_OUTPUT_LIMIT characters
"""

import re
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple, Union

HISTORY_LIMIT = 100
HEALTH_HISTORY_LIMIT = 5
HEALTH_OUTPUT_LIMIT = 200


@dataclass
class ContainerInfo:
    id: str
    short_id: str
    name: str
    image: str
    state: str  # running, exited, paused, created, ...
    status: str  # human string, e.g. "Up 2 hours (healthy)"
    ports: str = ""
    created: int = 0


@dataclass
class ContainerCounts:
    running: int = 0
    stopped: int = 0
    paused: int = 0

    @classmethod
    def from_containers(cls, containers: List[ContainerInfo]) -> "ContainerCounts":
        counts = cls()
        for c in containers:
            if c.state == "running":
                counts.running += 1
            elif c.state == "exited":
                counts.stopped += 1
            elif c.state == "paused":
                counts.paused += 1
        return counts


@dataclass
class ImageInfo:
    id: str  # 12 chars, sha256: prefix stripped
    repo_tags: List[str]
    size: int
    created: int


@dataclass
class StatsSample:
    cpu_percent: float
    user_cpu_percent: float
    system_cpu_percent: float
    memory_usage: int
    cached_memory: int
    memory_limit: int


def _history() -> Deque:
    return deque(maxlen=HISTORY_LIMIT)


@dataclass
class ContainerStats:
    cpu_percent: float = 0.0
    user_cpu_percent: float = 0.0
    system_cpu_percent: float = 0.0
    memory_usage: int = 0
    cached_memory: int = 0
    memory_limit: int = 0
    cpu_history: Deque[float] = field(default_factory=_history)
    user_cpu_history: Deque[float] = field(default_factory=_history)
    system_cpu_history: Deque[float] = field(default_factory=_history)
    memory_history: Deque[int] = field(default_factory=_history)
    cached_memory_history: Deque[int] = field(default_factory=_history)
    last_updated: float = 0.0

    @classmethod
    def from_sample(cls, sample: StatsSample, now: Optional[float] = None) -> "ContainerStats":
        stats = cls()
        stats.record(sample, now)
        return stats

    def record(self, sample: StatsSample, now: Optional[float] = None) -> None:
        """Overwrite the current values and push one point onto every history."""
        self.cpu_percent = sample.cpu_percent
        self.user_cpu_percent = sample.user_cpu_percent
        self.system_cpu_percent = sample.system_cpu_percent
        self.memory_usage = sample.memory_usage
        self.cached_memory = sample.cached_memory
        self.memory_limit = sample.memory_limit
        self.last_updated = time.time() if now is None else now
        # deque(maxlen=...) drops the oldest point once full
        self.cpu_history.append(sample.cpu_percent)
        self.user_cpu_history.append(sample.user_cpu_percent)
        self.system_cpu_history.append(sample.system_cpu_percent)
        self.memory_history.append(sample.memory_usage)
        self.cached_memory_history.append(sample.cached_memory)

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.last_updated

    def is_stale(self, max_age: float, now: Optional[float] = None) -> bool:
        return self.age(now) > max_age


class HealthStatus(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"
    NO_HEALTHCHECK = "none"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _HEALTH_PRIORITY[self]

    @property
    def label(self) -> str:
        return _HEALTH_LABELS[self]

    def __lt__(self, other):
        if not isinstance(other, HealthStatus):
            return NotImplemented
        return self.rank < other.rank


# Worst problems sort first. Independent of member declaration order.
_HEALTH_PRIORITY: Dict[HealthStatus, int] = {
    HealthStatus.UNHEALTHY: 0,
    HealthStatus.STARTING: 1,
    HealthStatus.HEALTHY: 2,
    HealthStatus.NO_HEALTHCHECK: 3,
    HealthStatus.UNKNOWN: 4,
}

_HEALTH_LABELS: Dict[HealthStatus, str] = {
    HealthStatus.UNHEALTHY: "Unhealthy",
    HealthStatus.STARTING: "Starting",
    HealthStatus.HEALTHY: "Healthy",
    HealthStatus.NO_HEALTHCHECK: "No Healthcheck",
    HealthStatus.UNKNOWN: "Unknown",
}


@dataclass
class HealthCheckResult:
    timestamp: datetime
    exit_code: int
    output: str


@dataclass
class ContainerHealth:
    status: HealthStatus = HealthStatus.NO_HEALTHCHECK
    failing_streak: int = 0
    last_check_at: Optional[datetime] = None
    last_check_output: Optional[str] = None
    check_history: Deque[HealthCheckResult] = field(
        default_factory=lambda: deque(maxlen=HEALTH_HISTORY_LIMIT)
    )
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None
    start_period: Optional[str] = None


@dataclass
class ViewportState:
    offset: int = 0
    height: int = 0
    # Container ids in displayed order (after UI sort/filter); None = list order
    rows: Optional[Tuple[str, ...]] = None


@dataclass
class PerfMetrics:
    cpu_usage: float = 0.0
    memory_usage: int = 0
    poll_time_ms: int = 0


class PollStrategy(Enum):
    ALL_CONTAINERS = "all"
    VISIBLE_ONLY = "visible"


class StatsView(Enum):
    DETAILED = "detailed"
    MINIMAL = "minimal"


class SortOrder(Enum):
    CREATED_DESC = "created_desc"
    CREATED_ASC = "created_asc"
    SIZE_DESC = "size_desc"
    SIZE_ASC = "size_asc"
    HEALTH_ASC = "health_asc"  # worst first
    HEALTH_DESC = "health_desc"


class HealthFilter(Enum):
    ALL = "all"
    UNHEALTHY = "unhealthy"
    HEALTHY = "healthy"


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")


@dataclass(frozen=True)
class RefreshRate:
    """Stats polling interval in seconds; ``None`` means manual (no polling)."""
    seconds: Optional[float] = 1.0

    @classmethod
    def manual(cls) -> "RefreshRate":
        return cls(None)

    @classmethod
    def every(cls, seconds: float) -> "RefreshRate":
        if seconds <= 0:
            raise ValueError(f"Refresh interval must be positive, got {seconds}")
        return cls(float(seconds))

    @classmethod
    def parse(cls, value: Union[str, int, float, None]) -> "RefreshRate":
        if value is None:
            return cls.manual()
        if isinstance(value, (int, float)):
            return cls.every(value)
        text = str(value).strip().lower()
        if text == "manual":
            return cls.manual()
        match = _DURATION_RE.match(text)
        if not match:
            raise ValueError(f"Invalid refresh rate: {value!r}")
        amount = float(match.group(1))
        unit = match.group(2) or "s"
        if unit == "ms":
            amount /= 1000.0
        elif unit == "m":
            amount *= 60.0
        return cls.every(amount)

    @property
    def is_manual(self) -> bool:
        return self.seconds is None

    def to_config(self) -> Union[str, float]:
        return "manual" if self.seconds is None else self.seconds

    def __str__(self) -> str:
        if self.seconds is None:
            return "manual"
        if self.seconds < 1:
            return f"{int(self.seconds * 1000)}ms"
        return f"{self.seconds:g}s"


@dataclass
class EngineConfig:
    turbo_mode: bool = False
    refresh_rate: RefreshRate = field(default_factory=RefreshRate)
    stats_view: StatsView = StatsView.DETAILED
    poll_strategy: PollStrategy = PollStrategy.ALL_CONTAINERS
    viewport_buffer: int = 5
    show_perf_metrics: bool = False
    max_concurrent_stats: int = 10
    container_refresh_interval: float = 10.0
    image_refresh_interval: float = 30.0
    health_sweep_interval: float = 5.0
    perf_sample_interval: float = 2.0
    log_tail: int = 100

    def apply_turbo_preset(self) -> None:
        if self.turbo_mode:
            self.refresh_rate = RefreshRate.every(2)
            self.stats_view = StatsView.MINIMAL
            self.poll_strategy = PollStrategy.VISIBLE_ONLY
        else:
            self.refresh_rate = RefreshRate.every(1)
            self.stats_view = StatsView.DETAILED
            self.poll_strategy = PollStrategy.ALL_CONTAINERS
