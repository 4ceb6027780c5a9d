"""
Background worker threads for the low-frequency refresh loops.

Architecture:
  - Worker: daemon thread base with a stop event; every wait goes through
    Worker.sleep() so stop() interrupts it immediately
  - ContainerListWorker: repopulates the container list (10s default)
  - ImageListWorker: repopulates the image list (30s default)
  - PerfSampler: samples this process's own CPU/memory (2s default)

Every loop reads a fresh config snapshot each cycle, so interval changes
take effect on the next cycle. A failed list call is logged and the
previous snapshot is kept, so the UI never flashes empty.
"""

import logging
import threading
from typing import Callable, List, Optional

from .backend import DockerBackend
from .config import ConfigManager
from .model import ContainerInfo
from .state import StateStore

logger = logging.getLogger(__name__)


class Worker(threading.Thread):
    def __init__(self, name: Optional[str] = None):
        super().__init__(daemon=True, name=name)
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`; returns True if the worker was stopped."""
        return self._stop_event.wait(max(0.0, seconds))


class ContainerListWorker(Worker):
    def __init__(self, backend: DockerBackend, store: StateStore, config: ConfigManager,
                 on_refresh: Optional[Callable[[List[ContainerInfo]], None]] = None):
        super().__init__(name="container-list")
        self.backend = backend
        self.store = store
        self.config = config
        self.on_refresh = on_refresh

    def refresh(self) -> bool:
        show_all = self.store.show_all
        try:
            containers = self.backend.list_containers(show_all)
        except Exception as e:
            logger.error(f"Failed to refresh containers: {e}", exc_info=True)
            return False

        if self.on_refresh:
            try:
                self.on_refresh(containers)
            except Exception as e:
                logger.error(f"Container refresh callback failed: {e}", exc_info=True)
        self.store.set_containers(containers)
        return True

    def run(self) -> None:
        while self.running:
            if self.sleep(self.config.snapshot().container_refresh_interval):
                break
            self.refresh()


class ImageListWorker(Worker):
    def __init__(self, backend: DockerBackend, store: StateStore, config: ConfigManager):
        super().__init__(name="image-list")
        self.backend = backend
        self.store = store
        self.config = config

    def refresh(self) -> bool:
        try:
            images = self.backend.list_images(self.store.show_dangling)
        except Exception as e:
            logger.error(f"Failed to refresh images: {e}", exc_info=True)
            return False
        self.store.set_images(images)
        return True

    def run(self) -> None:
        while self.running:
            if self.sleep(self.config.snapshot().image_refresh_interval):
                break
            self.refresh()


class PerfSampler(Worker):
    def __init__(self, backend: DockerBackend, store: StateStore, config: ConfigManager):
        super().__init__(name="perf-sampler")
        self.backend = backend
        self.store = store
        self.config = config

    def sample(self) -> None:
        try:
            cpu, memory = self.backend.get_self_usage()
        except Exception as e:
            # Stale value stays on screen
            logger.debug(f"Self usage sampling failed: {e}")
            return
        self.store.set_process_usage(cpu, memory)

    def run(self) -> None:
        while self.running:
            self.sample()
            if self.sleep(self.config.snapshot().perf_sample_interval):
                break
