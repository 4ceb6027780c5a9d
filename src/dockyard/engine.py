"""
Engine wiring for dockyard.

DashboardEngine owns the runtime client, the shared store, the selection
session and every background worker, so each spawned loop has an explicit
owner and a defined stop point:

  - ContainerListWorker (+ health change detection on each snapshot)
  - ImageListWorker
  - StatsWorker
  - HealthMonitor (event subscriber + periodic sweep)
  - PerfSampler

Lifecycle:
  - Construction connects to Docker; failure raises RuntimeUnavailableError
  - start(): initial container/image refresh, then start all workers
  - stop(): stop all workers and cancel the log stream

Commands issued by the presentation layer (start/stop/restart/pause/remove,
image remove/prune/pull, filter and turbo toggles) are methods here; each
lifecycle command forces an immediate container refresh.
"""

import logging
import threading
from typing import List, Optional

from .backend import DockerBackend
from .config import ConfigManager
from .health import HealthMonitor
from .model import EngineConfig, RefreshRate
from .session import SelectionSession
from .state import StateStore
from .stats import StatsWorker
from .workers import ContainerListWorker, ImageListWorker, PerfSampler, Worker

logger = logging.getLogger(__name__)


def describe_pull_event(event: dict) -> str:
    if "error" in event:
        return f"Error: {event['error']}"
    parts = [event.get("id"), event.get("status"), event.get("progress")]
    return " ".join(p for p in parts if p)


class DashboardEngine:
    def __init__(self, backend: Optional[DockerBackend] = None,
                 config: Optional[ConfigManager] = None,
                 store: Optional[StateStore] = None):
        self.backend = backend or DockerBackend()
        self.config = config or ConfigManager()
        self.store = store or StateStore()

        cfg = self.config.snapshot()
        self.session = SelectionSession(self.backend, tail=cfg.log_tail)
        self.health = HealthMonitor(self.backend, self.store, self.config)
        self.container_worker = ContainerListWorker(
            self.backend, self.store, self.config, on_refresh=self.health.on_containers_refreshed
        )
        self.image_worker = ImageListWorker(self.backend, self.store, self.config)
        self.stats_worker = StatsWorker(self.backend, self.store, self.config)
        self.perf_sampler = PerfSampler(self.backend, self.store, self.config)
        self._pull_thread: Optional[threading.Thread] = None
        self._started = False

    @property
    def workers(self) -> List[Worker]:
        return [
            self.container_worker,
            self.image_worker,
            self.stats_worker,
            self.health.event_worker,
            self.health.sweep_worker,
            self.perf_sampler,
        ]

    def start(self) -> None:
        if self._started:
            return
        self.container_worker.refresh()
        self.image_worker.refresh()
        self.container_worker.start()
        self.image_worker.start()
        self.stats_worker.start()
        self.health.start()
        self.perf_sampler.start()
        self._started = True
        logger.info("Dashboard engine started")

    def stop(self) -> None:
        for worker in self.workers:
            worker.stop()
        self.session.close()
        logger.info("Dashboard engine stopped")

    # --- Container commands ---

    def _after_command(self, ok: bool) -> bool:
        self.container_worker.refresh()
        return ok

    def start_container(self, container_id: str) -> bool:
        return self._after_command(self.backend.start_container(container_id))

    def stop_container(self, container_id: str) -> bool:
        return self._after_command(self.backend.stop_container(container_id))

    def restart_container(self, container_id: str) -> bool:
        return self._after_command(self.backend.restart_container(container_id))

    def remove_container(self, container_id: str) -> bool:
        return self._after_command(self.backend.remove_container(container_id))

    def toggle_pause(self, container_id: str) -> bool:
        container = self.store.get_container(container_id)
        if container is None:
            return False
        if container.state == "running":
            return self._after_command(self.backend.pause_container(container_id))
        if container.state == "paused":
            return self._after_command(self.backend.unpause_container(container_id))
        return False

    def exec_shell(self, container_id: str) -> None:
        shell, fallback = self.config.get_shells()
        self.backend.exec_shell(container_id, shell, fallback)
        self.container_worker.refresh()

    # --- Image commands ---

    def remove_image(self, image_id: str, force: bool = False) -> bool:
        ok = self.backend.remove_image(image_id, force)
        self.image_worker.refresh()
        return ok

    def prune_images(self) -> bool:
        ok = self.backend.prune_images()
        self.image_worker.refresh()
        return ok

    def pull_image(self, name: str) -> Optional[threading.Thread]:
        if not self.store.begin_pull():
            return None
        self._pull_thread = threading.Thread(
            target=self._pull, args=(name,), name="image-pull", daemon=True
        )
        self._pull_thread.start()
        return self._pull_thread

    def _pull(self, name: str) -> None:
        try:
            for event in self.backend.pull_image(name):
                self.store.add_pull_progress(describe_pull_event(event))
        except Exception as e:
            logger.error(f"Pull of {name} failed: {e}")
            self.store.add_pull_progress(f"Error: {e}")
        finally:
            self.store.end_pull()
        self.image_worker.refresh()

    # --- Toggles ---

    def toggle_show_all(self) -> bool:
        value = self.store.toggle_show_all()
        self.container_worker.refresh()
        return value

    def toggle_show_dangling(self) -> bool:
        value = self.store.toggle_show_dangling()
        self.image_worker.refresh()
        return value

    def toggle_turbo(self) -> EngineConfig:
        cfg = self.config.toggle_turbo()
        self.config.save_config()
        return cfg

    def cycle_refresh_rate(self) -> RefreshRate:
        rate = self.config.cycle_refresh_rate()
        self.config.save_config()
        return rate

    def toggle_perf_metrics(self) -> bool:
        value = self.config.toggle_perf_metrics()
        self.config.save_config()
        return value
