"""
Shared state store read by the presentation layer and written by workers.

Architecture:
  - StateStore: latest known snapshot of every entity class
  - One RLock per entity class (containers, images, stats, health, perf,
    viewport, filters, pull progress), never one global lock, so a stats
    write never blocks a container-list read
  - Readers always receive copies; writers hold a lock only for the
    in-memory update, never across a Docker API call

Consistency:
  - No cross-class transactions. A container can be gone from the list and
    still present in the stats or health maps; the UI tolerates this
  - Stats and health entries are never removed. An entry for a vanished
    container lingers until process restart; staleness is visible through
    ContainerStats.last_updated

View helpers:
  - filter_and_sort_containers(): health filter + created/health ordering
  - sort_images(): created/size ordering
  - next_container_sort() / next_image_sort(): sort-key cycling
"""

import copy
import threading
from collections import deque
from typing import Dict, List, Optional, Tuple

from .model import (
    ContainerCounts,
    ContainerHealth,
    ContainerInfo,
    ContainerStats,
    HealthFilter,
    HealthStatus,
    ImageInfo,
    PerfMetrics,
    SortOrder,
    StatsSample,
    ViewportState,
)

PULL_PROGRESS_LIMIT = 100


class StateStore:
    """Thread-safe store with one lock per entity class."""

    def __init__(self):
        self._containers_lock = threading.RLock()
        self._containers: List[ContainerInfo] = []
        self._counts = ContainerCounts()

        self._images_lock = threading.RLock()
        self._images: List[ImageInfo] = []

        self._stats_lock = threading.RLock()
        self._stats: Dict[str, ContainerStats] = {}

        self._health_lock = threading.RLock()
        self._health: Dict[str, ContainerHealth] = {}

        self._perf_lock = threading.RLock()
        self._perf = PerfMetrics()

        self._viewport_lock = threading.RLock()
        self._viewport = ViewportState()

        self._filters_lock = threading.RLock()
        self._show_all = True
        self._show_dangling = False

        self._pull_lock = threading.RLock()
        self._pull_progress = deque(maxlen=PULL_PROGRESS_LIMIT)
        self._is_pulling = False

    # --- Containers ---

    def set_containers(self, containers: List[ContainerInfo]) -> None:
        counts = ContainerCounts.from_containers(containers)
        with self._containers_lock:
            self._containers = list(containers)
            self._counts = counts

    def get_containers(self) -> List[ContainerInfo]:
        with self._containers_lock:
            return [copy.copy(c) for c in self._containers]

    def get_container(self, container_id: str) -> Optional[ContainerInfo]:
        with self._containers_lock:
            for c in self._containers:
                if c.id == container_id:
                    return copy.copy(c)
        return None

    def get_counts(self) -> ContainerCounts:
        with self._containers_lock:
            return copy.copy(self._counts)

    # --- Images ---

    def set_images(self, images: List[ImageInfo]) -> None:
        with self._images_lock:
            self._images = list(images)

    def get_images(self) -> List[ImageInfo]:
        with self._images_lock:
            return [copy.deepcopy(i) for i in self._images]

    # --- Stats ---

    def record_stats(self, container_id: str, sample: StatsSample, now: Optional[float] = None) -> None:
        with self._stats_lock:
            entry = self._stats.get(container_id)
            if entry is None:
                self._stats[container_id] = ContainerStats.from_sample(sample, now)
            else:
                entry.record(sample, now)

    def get_stats(self, container_id: str) -> Optional[ContainerStats]:
        with self._stats_lock:
            entry = self._stats.get(container_id)
            return copy.deepcopy(entry) if entry is not None else None

    def get_all_stats(self) -> Dict[str, ContainerStats]:
        with self._stats_lock:
            return copy.deepcopy(self._stats)

    # --- Health ---

    def set_health(self, container_id: str, health: ContainerHealth) -> None:
        with self._health_lock:
            self._health[container_id] = health

    def get_health(self, container_id: str) -> Optional[ContainerHealth]:
        with self._health_lock:
            entry = self._health.get(container_id)
            return copy.deepcopy(entry) if entry is not None else None

    def get_health_statuses(self) -> Dict[str, HealthStatus]:
        with self._health_lock:
            return {cid: h.status for cid, h in self._health.items()}

    def ids_with_health(self, *statuses: HealthStatus) -> List[str]:
        with self._health_lock:
            return [cid for cid, h in self._health.items() if h.status in statuses]

    # --- Perf ---

    def set_process_usage(self, cpu_usage: float, memory_usage: int) -> None:
        with self._perf_lock:
            self._perf.cpu_usage = cpu_usage
            self._perf.memory_usage = memory_usage

    def set_poll_time(self, poll_time_ms: int) -> None:
        with self._perf_lock:
            self._perf.poll_time_ms = poll_time_ms

    def get_perf(self) -> PerfMetrics:
        with self._perf_lock:
            return copy.copy(self._perf)

    # --- Viewport ---

    def set_viewport(self, offset: int, height: int, rows: Optional[List[str]] = None) -> None:
        with self._viewport_lock:
            self._viewport = ViewportState(
                offset=max(0, offset),
                height=max(0, height),
                rows=tuple(rows) if rows is not None else None,
            )

    def get_viewport(self) -> ViewportState:
        with self._viewport_lock:
            return copy.copy(self._viewport)

    # --- Filters ---

    @property
    def show_all(self) -> bool:
        with self._filters_lock:
            return self._show_all

    @property
    def show_dangling(self) -> bool:
        with self._filters_lock:
            return self._show_dangling

    def toggle_show_all(self) -> bool:
        with self._filters_lock:
            self._show_all = not self._show_all
            return self._show_all

    def toggle_show_dangling(self) -> bool:
        with self._filters_lock:
            self._show_dangling = not self._show_dangling
            return self._show_dangling

    # --- Image pull ---

    def begin_pull(self) -> bool:
        """Mark a pull as started; False if one is already running."""
        with self._pull_lock:
            if self._is_pulling:
                return False
            self._is_pulling = True
            self._pull_progress.clear()
            return True

    def add_pull_progress(self, line: str) -> None:
        with self._pull_lock:
            self._pull_progress.append(line)

    def end_pull(self) -> None:
        with self._pull_lock:
            self._is_pulling = False

    def get_pull_progress(self) -> Tuple[bool, List[str]]:
        with self._pull_lock:
            return self._is_pulling, list(self._pull_progress)


def _health_key(health: Dict[str, HealthStatus], container: ContainerInfo) -> HealthStatus:
    return health.get(container.id, HealthStatus.NO_HEALTHCHECK)


def filter_and_sort_containers(
    containers: List[ContainerInfo],
    health: Dict[str, HealthStatus],
    health_filter: HealthFilter = HealthFilter.ALL,
    order: SortOrder = SortOrder.CREATED_DESC,
) -> List[ContainerInfo]:
    if health_filter == HealthFilter.UNHEALTHY:
        items = [c for c in containers
                 if health.get(c.id) in (HealthStatus.UNHEALTHY, HealthStatus.STARTING)]
    elif health_filter == HealthFilter.HEALTHY:
        items = [c for c in containers if health.get(c.id) == HealthStatus.HEALTHY]
    else:
        items = list(containers)

    if order == SortOrder.CREATED_ASC:
        items.sort(key=lambda c: c.created)
    elif order == SortOrder.HEALTH_ASC:
        items.sort(key=lambda c: _health_key(health, c).rank)
    elif order == SortOrder.HEALTH_DESC:
        items.sort(key=lambda c: _health_key(health, c).rank, reverse=True)
    else:
        items.sort(key=lambda c: c.created, reverse=True)
    return items


def sort_images(images: List[ImageInfo], order: SortOrder = SortOrder.CREATED_DESC) -> List[ImageInfo]:
    items = list(images)
    if order == SortOrder.CREATED_ASC:
        items.sort(key=lambda i: i.created)
    elif order == SortOrder.SIZE_DESC:
        items.sort(key=lambda i: i.size, reverse=True)
    elif order == SortOrder.SIZE_ASC:
        items.sort(key=lambda i: i.size)
    else:
        items.sort(key=lambda i: i.created, reverse=True)
    return items


_CONTAINER_SORT_CYCLE = [
    SortOrder.CREATED_DESC,
    SortOrder.CREATED_ASC,
    SortOrder.HEALTH_ASC,
    SortOrder.HEALTH_DESC,
]

_IMAGE_SORT_CYCLE = [
    SortOrder.CREATED_DESC,
    SortOrder.CREATED_ASC,
    SortOrder.SIZE_DESC,
    SortOrder.SIZE_ASC,
]


def _next_in(cycle: List[SortOrder], current: SortOrder) -> SortOrder:
    try:
        idx = cycle.index(current)
        return cycle[(idx + 1) % len(cycle)]
    except ValueError:
        return cycle[0]


def next_container_sort(current: SortOrder) -> SortOrder:
    return _next_in(_CONTAINER_SORT_CYCLE, current)


def next_image_sort(current: SortOrder) -> SortOrder:
    return _next_in(_IMAGE_SORT_CYCLE, current)


def next_health_filter(current: HealthFilter) -> HealthFilter:
    order = [HealthFilter.ALL, HealthFilter.UNHEALTHY, HealthFilter.HEALTHY]
    return order[(order.index(current) + 1) % len(order)]
