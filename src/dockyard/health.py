"""
Health-check tracking for dockyard.

Three independent sources keep the per-container health map current, and
all of them converge on HealthMonitor.refresh(), which re-inspects one
container and overwrites its entry:

  - HealthEventWorker: subscribes to Docker `health_status` events and
    refreshes the container named by each event
  - on_containers_refreshed(): change detection on every container list
    snapshot, comparing the coarse status string with the stored state
  - HealthSweepWorker: every few seconds, refreshes every container
    currently Unhealthy or Starting

Concurrent refreshes of one container are not serialized; inspect is an
idempotent read, so the last writer wins.

Stream termination: when the event stream ends or errors the event worker
exits; the sweep and change detection keep providing coverage.
"""

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .backend import HEALTH_EVENT_FILTERS, DockerBackend
from .config import ConfigManager
from .formatting import format_duration_ns
from .model import (
    HEALTH_HISTORY_LIMIT,
    HEALTH_OUTPUT_LIMIT,
    ContainerHealth,
    ContainerInfo,
    HealthCheckResult,
    HealthStatus,
)
from .state import StateStore
from .workers import Worker

logger = logging.getLogger(__name__)

_DOCKER_HEALTH = {
    "none": HealthStatus.NO_HEALTHCHECK,
    "starting": HealthStatus.STARTING,
    "healthy": HealthStatus.HEALTHY,
    "unhealthy": HealthStatus.UNHEALTHY,
}

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def parse_health_status_from_string(status: str) -> HealthStatus:
    """Coarse health state from a list status like 'Up 2 hours (healthy)'."""
    status = status.lower()
    if "(healthy)" in status:
        return HealthStatus.HEALTHY
    if "(unhealthy)" in status:
        return HealthStatus.UNHEALTHY
    if "(health: starting)" in status:
        return HealthStatus.STARTING
    return HealthStatus.NO_HEALTHCHECK


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse Docker RFC 3339 timestamps, which carry nanosecond precision."""
    match = _TIMESTAMP_RE.match(value.strip()) if value else None
    if not match:
        return None
    base, fraction, tz = match.groups()
    micros = (fraction or "0")[:6].ljust(6, "0")
    offset = "+00:00" if tz == "Z" else tz
    try:
        return datetime.fromisoformat(f"{base}.{micros}{offset}").astimezone(timezone.utc)
    except ValueError:
        return None


def parse_health_info(inspect: Dict[str, Any]) -> ContainerHealth:
    state = inspect.get("State") or {}
    health_data = state.get("Health")
    config = (inspect.get("Config") or {}).get("Healthcheck") or {}

    if not health_data:
        return ContainerHealth(status=HealthStatus.NO_HEALTHCHECK)

    health = ContainerHealth(
        status=_DOCKER_HEALTH.get(health_data.get("Status"), HealthStatus.NO_HEALTHCHECK),
        failing_streak=health_data.get("FailingStreak") or 0,
        interval=format_duration_ns(config.get("Interval")),
        timeout=format_duration_ns(config.get("Timeout")),
        retries=config.get("Retries"),
        start_period=format_duration_ns(config.get("StartPeriod")),
    )

    for entry in (health_data.get("Log") or [])[-HEALTH_HISTORY_LIMIT:]:
        exit_code = entry.get("ExitCode")
        output = entry.get("Output")
        ts = parse_timestamp(entry.get("Start") or "")
        if exit_code is None or output is None or ts is None:
            continue
        health.check_history.append(HealthCheckResult(
            timestamp=ts,
            exit_code=exit_code,
            output=output[:HEALTH_OUTPUT_LIMIT],
        ))

    if health.check_history:
        last = health.check_history[-1]
        health.last_check_at = last.timestamp
        health.last_check_output = last.output
    return health


class HealthMonitor:
    def __init__(self, backend: DockerBackend, store: StateStore, config: ConfigManager):
        self.backend = backend
        self.store = store
        self.config = config
        self.event_worker = HealthEventWorker(self)
        self.sweep_worker = HealthSweepWorker(self)

    def refresh(self, container_id: str) -> bool:
        """Fetch full health detail for one container and overwrite its entry."""
        try:
            inspect = self.backend.inspect_container(container_id)
        except Exception as e:
            logger.error(f"Failed to fetch health for {container_id}: {e}")
            return False
        self.store.set_health(container_id, parse_health_info(inspect))
        return True

    def refresh_async(self, container_id: str) -> threading.Thread:
        t = threading.Thread(
            target=self.refresh,
            args=(container_id,),
            name=f"health-{container_id[:12]}",
            daemon=True,
        )
        t.start()
        return t

    def on_containers_refreshed(self, containers: List[ContainerInfo]) -> List[str]:
        """Spawn refreshes for running containers whose coarse state changed."""
        known = self.store.get_health_statuses()
        changed = []
        for c in containers:
            if c.state != "running":
                continue
            current = known.get(c.id)
            if current is None or current != parse_health_status_from_string(c.status):
                changed.append(c.id)
        for container_id in changed:
            self.refresh_async(container_id)
        return changed

    def sweep(self) -> List[str]:
        ids = self.store.ids_with_health(HealthStatus.UNHEALTHY, HealthStatus.STARTING)
        for container_id in ids:
            self.refresh_async(container_id)
        return ids

    def start(self) -> None:
        self.event_worker.start()
        self.sweep_worker.start()

    def stop(self) -> None:
        self.event_worker.stop()
        self.sweep_worker.stop()


class HealthEventWorker(Worker):
    def __init__(self, monitor: HealthMonitor):
        super().__init__(name="health-events")
        self.monitor = monitor
        self._stream = None
        self._stream_lock = threading.Lock()

    def stop(self) -> None:
        super().stop()
        self._close_stream()

    def _close_stream(self) -> None:
        with self._stream_lock:
            stream = self._stream
        if stream is not None and hasattr(stream, "close"):
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Closing event stream failed: {e}")

    def run(self) -> None:
        try:
            stream = self.monitor.backend.stream_events(HEALTH_EVENT_FILTERS)
        except Exception as e:
            logger.error(f"Cannot subscribe to health events: {e}")
            return
        with self._stream_lock:
            self._stream = stream
        if not self.running:
            # stop() ran before the stream was stored
            self._close_stream()
            return

        try:
            for event in stream:
                if not self.running:
                    break
                actor = event.get("Actor") or {}
                container_id = actor.get("ID") or event.get("id")
                if container_id:
                    self.monitor.refresh_async(container_id)
        except Exception as e:
            if self.running:
                logger.warning(f"Health event stream ended: {e}")
            return
        logger.info("Health event stream closed")


class HealthSweepWorker(Worker):
    def __init__(self, monitor: HealthMonitor):
        super().__init__(name="health-sweep")
        self.monitor = monitor

    def run(self) -> None:
        while self.running:
            if self.sleep(self.monitor.config.snapshot().health_sweep_interval):
                break
            try:
                self.monitor.sweep()
            except Exception as e:
                logger.error(f"Health sweep failed: {e}", exc_info=True)
