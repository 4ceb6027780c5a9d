"""
Selection session: detail text and live logs of the inspected container.

At most one session is active. Selecting a different container:
  1. clears detail text and log buffer synchronously (never stale detail)
  2. fetches detail in a background thread (or stores an error string)
  3. cancels the previous log-stream task outright, then starts a new one
     that follows the container's logs into a 1000-line ring buffer

Re-selecting the active container is a no-op. Results that arrive for a
superseded session are discarded (generation check under the lock).

Debouncer implements the caller-side quiet period: navigation calls
touch(), the UI tick calls ready(), and select() runs only once input has
been quiet for the configured period.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, List, Optional

from .backend import DockerBackend, iter_log_lines
from .formatting import format_details, format_image_details

logger = logging.getLogger(__name__)

LOG_BUFFER_LIMIT = 1000
DEBOUNCE_SECONDS = 0.15


class LogStreamTask(threading.Thread):
    """Follows one container's logs; cancel() closes the stream."""

    def __init__(self, backend: DockerBackend, container_id: str, tail: int,
                 on_line: Callable[[str], bool]):
        super().__init__(daemon=True, name=f"logs-{container_id[:12]}")
        self.backend = backend
        self.container_id = container_id
        self.tail = tail
        self.on_line = on_line
        self._cancelled = threading.Event()
        self._stream = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            stream = self._stream
        if stream is not None and hasattr(stream, "close"):
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Closing log stream for {self.container_id} failed: {e}")

    def run(self) -> None:
        try:
            stream = self.backend.stream_logs(self.container_id, tail=self.tail)
        except Exception as e:
            logger.warning(f"Cannot stream logs for {self.container_id}: {e}")
            return
        with self._lock:
            self._stream = stream
        if self.cancelled:
            self.cancel()
            return

        try:
            for line in iter_log_lines(stream):
                if self.cancelled or not self.on_line(line):
                    break
        except Exception as e:
            # Broken stream: the next selection restarts it
            if not self.cancelled:
                logger.debug(f"Log stream for {self.container_id} ended: {e}")


class SelectionSession:
    def __init__(self, backend: DockerBackend, tail: int = 100, max_lines: int = LOG_BUFFER_LIMIT):
        self.backend = backend
        self.tail = tail
        self._lock = threading.RLock()
        self._active_id: Optional[str] = None
        self._details: Optional[str] = None
        self._logs = deque(maxlen=max_lines)
        self._generation = 0
        self._log_task: Optional[LogStreamTask] = None
        self._detail_thread: Optional[threading.Thread] = None

        self._image_lock = threading.Lock()
        self._image_id: Optional[str] = None
        self._image_details: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        with self._lock:
            return self._active_id

    def details(self) -> Optional[str]:
        with self._lock:
            return self._details

    def logs(self) -> List[str]:
        with self._lock:
            return list(self._logs)

    def select(self, container_id: str) -> bool:
        """Start a session for `container_id`; False if it is already active."""
        with self._lock:
            if container_id == self._active_id:
                return False
            self._active_id = container_id
            self._details = None
            self._logs.clear()
            self._generation += 1
            generation = self._generation
            previous = self._log_task
            self._log_task = None

        if previous is not None:
            previous.cancel()

        self._detail_thread = threading.Thread(
            target=self._fetch_details,
            args=(container_id, generation),
            name=f"details-{container_id[:12]}",
            daemon=True,
        )
        self._detail_thread.start()
        self._start_log_stream(container_id, generation)
        logger.debug(f"Selection session started for {container_id}")
        return True

    def clear(self) -> None:
        """Drop the session when nothing is selected."""
        with self._lock:
            self._active_id = None
            self._details = None
            self._logs.clear()
            self._generation += 1
            previous = self._log_task
            self._log_task = None
        if previous is not None:
            previous.cancel()

    def close(self) -> None:
        self.clear()

    def _fetch_details(self, container_id: str, generation: int) -> None:
        try:
            text = format_details(self.backend.inspect_container(container_id))
        except Exception as e:
            text = f"Error fetching details: {e}"
        with self._lock:
            if generation == self._generation:
                self._details = text

    def _start_log_stream(self, container_id: str, generation: int) -> None:
        def append(line: str) -> bool:
            with self._lock:
                if generation != self._generation:
                    return False
                self._logs.append(line)
                return True

        task = LogStreamTask(self.backend, container_id, self.tail, append)
        with self._lock:
            if generation != self._generation:
                return
            self._log_task = task
        task.start()

    # --- Images ---

    def show_image(self, image_id: str) -> threading.Thread:
        with self._image_lock:
            self._image_id = image_id
            self._image_details = None

        def fetch() -> None:
            try:
                text = format_image_details(self.backend.inspect_image(image_id))
            except Exception as e:
                text = f"Error: {e}"
            with self._image_lock:
                if self._image_id == image_id:
                    self._image_details = text

        t = threading.Thread(target=fetch, name=f"image-{image_id}", daemon=True)
        t.start()
        return t

    def image_details(self) -> Optional[str]:
        with self._image_lock:
            return self._image_details


class Debouncer:
    """Coalesces rapid navigation into one action after a quiet period."""

    def __init__(self, quiet_period: float = DEBOUNCE_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.quiet_period = quiet_period
        self.clock = clock
        self._last_input = clock()
        self._pending = True  # fetch once at startup

    @property
    def pending(self) -> bool:
        return self._pending

    def touch(self) -> None:
        self._last_input = self.clock()
        self._pending = True

    def ready(self) -> bool:
        if self._pending and self.clock() - self._last_input > self.quiet_period:
            self._pending = False
            return True
        return False
