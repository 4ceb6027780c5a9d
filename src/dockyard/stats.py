"""
Adaptive stats collection for dockyard.

This module keeps per-container CPU/memory history fresh without flooding
the Docker API.

Each cycle:
  1. Read a fresh config snapshot (refresh rate, poll strategy, buffer)
  2. Pick the target set: every running container, or only the running
     containers inside the viewport plus a margin of buffer rows
  3. Spread the targets evenly over the cycle window (stagger delays)
  4. Fan out one short-lived thread per target; each waits its delay,
     takes a slot from a bounded semaphore, then fetches one snapshot.
     A container whose previous fetch is still pending is skipped, so at
     most one fetch per container is ever in flight
  5. Record the dispatch time and sleep the rest of the interval

Architecture:
- select_targets(): target set selection
- stagger_delays(): per-target start offsets
- StatsWorker: the scheduler loop
"""

import logging
import threading
import time
from typing import List, Optional, Set

from .backend import DockerBackend
from .config import ConfigManager
from .model import ContainerInfo, PollStrategy, ViewportState
from .state import StateStore
from .workers import Worker

logger = logging.getLogger(__name__)

MANUAL_IDLE_SECONDS = 0.5
EMPTY_TARGETS_IDLE_SECONDS = 1.0


def select_targets(containers: List[ContainerInfo], strategy: PollStrategy,
                   viewport: ViewportState, buffer: int) -> List[str]:
    """Ids of the running containers to poll this cycle, in list order."""
    total = len(containers)
    if total == 0:
        return []
    if strategy == PollStrategy.ALL_CONTAINERS:
        return [c.id for c in containers if c.state == "running"]

    if viewport.rows is not None:
        # Index into what the UI actually shows, not the API order
        by_id = {c.id: c for c in containers}
        containers = [by_id[cid] for cid in viewport.rows if cid in by_id]
        total = len(containers)

    start = max(0, viewport.offset - buffer)
    end = min(viewport.offset + viewport.height + buffer, total)
    if start >= total:
        return []
    return [c.id for c in containers[start:end] if c.state == "running"]


def stagger_delays(count: int, interval: float) -> List[float]:
    if count <= 0:
        return []
    per_target = interval / count
    return [min(per_target * i, interval) for i in range(count)]


class StatsWorker(Worker):
    def __init__(self, backend: DockerBackend, store: StateStore, config: ConfigManager):
        super().__init__(name="stats-scheduler")
        self.backend = backend
        self.store = store
        self.config = config
        # Shared across cycles: slow fetches from one cycle count against the next
        self._limiter = threading.BoundedSemaphore(max(1, config.snapshot().max_concurrent_stats))
        self._in_flight_lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def in_flight(self) -> Set[str]:
        with self._in_flight_lock:
            return set(self._in_flight)

    def fetch_one(self, container_id: str, delay: float) -> None:
        try:
            self._fetch(container_id, delay)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(container_id)

    def _fetch(self, container_id: str, delay: float) -> None:
        if delay > 0 and self.sleep(delay):
            return
        with self._limiter:
            if not self.running:
                return
            try:
                sample = self.backend.fetch_stats_snapshot(container_id)
            except Exception as e:
                logger.error(f"Failed to fetch stats for {container_id}: {e}")
                return
        if sample is None:
            # Container stopped between selection and fetch
            return
        self.store.record_stats(container_id, sample)

    def dispatch(self, targets: List[str], interval: float) -> List[threading.Thread]:
        threads = []
        with self._in_flight_lock:
            pending = [cid for cid in targets if cid not in self._in_flight]
            self._in_flight.update(pending)
        if len(pending) < len(targets):
            logger.debug(f"Skipping {len(targets) - len(pending)} containers with a fetch still pending")
        for container_id, delay in zip(pending, stagger_delays(len(pending), interval)):
            t = threading.Thread(
                target=self.fetch_one,
                args=(container_id, delay),
                name=f"stats-{container_id[:12]}",
                daemon=True,
            )
            t.start()
            threads.append(t)
        return threads

    def run_cycle(self) -> Optional[List[threading.Thread]]:
        """
        Run one scheduling cycle and sleep until the next one is due.

        Returns the fetch threads started this cycle, or None when the cycle
        was skipped (manual refresh or nothing to poll).
        """
        start_time = time.monotonic()
        cfg = self.config.snapshot()

        if cfg.refresh_rate.is_manual:
            self.sleep(MANUAL_IDLE_SECONDS)
            return None
        interval = cfg.refresh_rate.seconds

        targets = select_targets(
            self.store.get_containers(),
            cfg.poll_strategy,
            self.store.get_viewport(),
            cfg.viewport_buffer,
        )
        if not targets:
            self.sleep(EMPTY_TARGETS_IDLE_SECONDS)
            return None

        threads = self.dispatch(targets, interval)

        elapsed = time.monotonic() - start_time
        self.store.set_poll_time(int(elapsed * 1000))
        if elapsed < interval:
            self.sleep(interval - elapsed)
        return threads

    def run(self) -> None:
        while self.running:
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Stats cycle failed: {e}", exc_info=True)
                self.sleep(EMPTY_TARGETS_IDLE_SECONDS)
