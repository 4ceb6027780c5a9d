"""
Docker API wrapper used by the dockyard engine.

This module provides the runtime client the background workers and the
selection session talk to, built on the docker-py library:
  - Listing and inspecting containers and images
  - Lifecycle commands (start, stop, restart, pause, unpause, remove)
  - Image management (remove, prune, pull with progress)
  - One-shot stats snapshots, log streams and lifecycle event streams
  - Interactive shell access through the docker CLI

Error Handling:
  - Connection failure at construction → RuntimeUnavailableError (fatal)
  - Read/list/stream failures → RuntimeClientError, so callers can keep
    their previous snapshot instead of showing an empty view
  - Lifecycle commands → @docker_safe: logged, return False
  - Stats for a stopped or vanished container → None (not an error)

Dependencies:
  - docker>=7.0.0 (docker-py client)
  - subprocess (ps for self usage, docker exec for shells)
"""

import docker
import functools
import logging
import platform
import resource
import subprocess
import os
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from docker.utils import parse_repository_tag

from .model import ContainerInfo, ImageInfo, StatsSample

logger = logging.getLogger(__name__)

HEALTH_EVENT_FILTERS = {"type": "container", "event": "health_status"}


class RuntimeClientError(Exception):
    """A container runtime call failed."""


class RuntimeUnavailableError(RuntimeClientError):
    """The container runtime could not be reached at startup."""


def docker_safe(default_return: Any = None) -> Callable:
    """
    Decorator for Docker commands that must never crash the UI.

    Catches exceptions, logs them, and returns a default value.

    Args:
        default_return: Value to return if an exception occurs

    Usage:
        @docker_safe(default_return=False)
        def stop_container(self, container_id: str) -> bool:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Docker operation failed in {func.__name__}: {e}", exc_info=True)
                return default_return
        return wrapper
    return decorator


def runtime_call(func: Callable) -> Callable:
    """Re-raise docker SDK failures as RuntimeClientError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except RuntimeClientError:
            raise
        except docker.errors.DockerException as e:
            raise RuntimeClientError(f"{func.__name__} failed: {e}") from e
    return wrapper


def format_ports(ports: Optional[List[Dict[str, Any]]]) -> str:
    if not ports:
        return ""
    parts = []
    for port in ports[:2]:
        private = port.get("PrivatePort")
        public = port.get("PublicPort")
        if public:
            parts.append(f"{public}→{private}")
        else:
            parts.append(str(private))
    return ", ".join(parts)


def short_image_id(image_id: str) -> str:
    return image_id.replace("sha256:", "")[:12]


def _cpu_count(cpu_stats: Dict[str, Any]) -> int:
    online = cpu_stats.get("online_cpus")
    if online:
        return online
    percpu = cpu_stats.get("cpu_usage", {}).get("percpu_usage") or []
    return len(percpu) or 1


def cpu_percent(usage_delta: float, system_delta: float, cpus: int) -> float:
    if system_delta > 0 and usage_delta > 0:
        return (usage_delta / system_delta) * cpus * 100.0
    return 0.0


def parse_stats_snapshot(raw: Optional[Dict[str, Any]]) -> Optional[StatsSample]:
    """
    Convert a one-shot Docker stats payload into a StatsSample.

    The payload carries both the current counters (cpu_stats) and the
    previous sample's counters (precpu_stats), so percentages are computed
    from a single response. Returns None when the payload is empty, which
    is what Docker sends for a container that is not running.
    """
    if not raw:
        return None
    if str(raw.get("read", "")).startswith("0001-01-01"):
        return None
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    usage = cpu_stats.get("cpu_usage") or {}
    pre_usage = precpu_stats.get("cpu_usage") or {}
    if not usage:
        return None

    system_delta = max(0, cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get("system_cpu_usage", 0))
    total_delta = max(0, usage.get("total_usage", 0) - pre_usage.get("total_usage", 0))
    user_delta = max(0, usage.get("usage_in_usermode", 0) - pre_usage.get("usage_in_usermode", 0))
    kernel_delta = max(0, usage.get("usage_in_kernelmode", 0) - pre_usage.get("usage_in_kernelmode", 0))
    cpus = _cpu_count(cpu_stats)

    memory_stats = raw.get("memory_stats") or {}
    # cgroup v1 reports page cache as stats.cache; cgroup v2 has no such field
    cached = (memory_stats.get("stats") or {}).get("cache", 0)

    return StatsSample(
        cpu_percent=cpu_percent(total_delta, system_delta, cpus),
        user_cpu_percent=cpu_percent(user_delta, system_delta, cpus),
        system_cpu_percent=cpu_percent(kernel_delta, system_delta, cpus),
        memory_usage=memory_stats.get("usage", 0),
        cached_memory=cached,
        memory_limit=memory_stats.get("limit", 0),
    )


def iter_log_lines(stream: Iterator[bytes]) -> Iterator[str]:
    """Decode a docker log stream into text lines (frames may split lines)."""
    pending = ""
    for chunk in stream:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        pending += chunk
        *lines, pending = pending.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    if pending:
        yield pending.rstrip("\r")


class DockerBackend:
    def __init__(self, client: Optional[docker.DockerClient] = None):
        try:
            self.client = client or docker.from_env()
            self.client.ping()
        except Exception as e:
            raise RuntimeUnavailableError(f"Cannot connect to Docker: {e}") from e

    # --- Containers ---

    @runtime_call
    def list_containers(self, show_all: bool = True) -> List[ContainerInfo]:
        filters = {} if show_all else {"status": "running"}
        raw = self.client.containers.list(all=show_all, filters=filters, sparse=True)
        res = []
        for c in raw:
            attrs = c.attrs
            container_id = attrs.get("Id", "")
            names = attrs.get("Names") or []
            res.append(ContainerInfo(
                id=container_id,
                short_id=container_id[:12],
                name=names[0].lstrip("/") if names else "",
                image=attrs.get("Image", ""),
                state=attrs.get("State") or "unknown",
                status=attrs.get("Status", ""),
                ports=format_ports(attrs.get("Ports")),
                created=attrs.get("Created", 0),
            ))
        return res

    @runtime_call
    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        return self.client.api.inspect_container(container_id)

    @docker_safe(default_return=False)
    def start_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).start()
        return True

    @docker_safe(default_return=False)
    def stop_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).stop()
        return True

    @docker_safe(default_return=False)
    def restart_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).restart()
        return True

    @docker_safe(default_return=False)
    def pause_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).pause()
        return True

    @docker_safe(default_return=False)
    def unpause_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).unpause()
        return True

    @docker_safe(default_return=False)
    def remove_container(self, container_id: str) -> bool:
        self.client.containers.get(container_id).remove(force=True)
        return True

    # --- Stats / logs / events ---

    @runtime_call
    def fetch_stats_snapshot(self, container_id: str) -> Optional[StatsSample]:
        try:
            raw = self.client.api.stats(container_id, stream=False)
        except docker.errors.NotFound:
            return None
        return parse_stats_snapshot(raw)

    @runtime_call
    def stream_logs(self, container_id: str, tail: int = 100):
        """Follow-mode log stream. The returned object supports close()."""
        return self.client.api.logs(
            container_id,
            stdout=True,
            stderr=True,
            stream=True,
            follow=True,
            timestamps=True,
            tail=tail,
        )

    @runtime_call
    def stream_events(self, filters: Optional[Dict[str, Any]] = None):
        """Decoded lifecycle event stream. The returned object supports close()."""
        return self.client.events(decode=True, filters=filters or HEALTH_EVENT_FILTERS)

    # --- Images ---

    @runtime_call
    def list_images(self, show_dangling: bool = False) -> List[ImageInfo]:
        filters = {} if show_dangling else {"dangling": False}
        raw = self.client.images.list(filters=filters)
        res = []
        for i in raw:
            attrs = i.attrs
            res.append(ImageInfo(
                id=short_image_id(attrs.get("Id", i.id or "")),
                repo_tags=list(attrs.get("RepoTags") or []),
                size=attrs.get("Size", 0),
                created=attrs.get("Created", 0),
            ))
        return res

    @runtime_call
    def inspect_image(self, image_id: str) -> Dict[str, Any]:
        return self.client.api.inspect_image(image_id)

    @docker_safe(default_return=False)
    def remove_image(self, image_id: str, force: bool = False) -> bool:
        self.client.images.remove(image_id, force=force)
        return True

    @docker_safe(default_return=False)
    def prune_images(self) -> bool:
        self.client.images.prune(filters={"dangling": True})
        return True

    @runtime_call
    def pull_image(self, name: str) -> Iterator[Dict[str, Any]]:
        repository, tag = parse_repository_tag(name)
        return self.client.api.pull(repository, tag=tag or "latest", stream=True, decode=True)

    # --- Local process / shell ---

    def get_self_usage(self) -> Tuple[float, int]:
        """CPU percent and max RSS in bytes of this process."""
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # MacOS returns bytes, Linux returns KB
        if platform.system() == "Darwin":
            rss_bytes = usage.ru_maxrss
        else:
            rss_bytes = usage.ru_maxrss * 1024

        cmd = ["ps", "-p", str(os.getpid()), "-o", "%cpu"]
        output = subprocess.check_output(cmd).decode().strip().splitlines()
        cpu = 0.0
        if len(output) >= 2:
            cpu = float(output[1].strip().replace(",", "."))  # Handle 0,0
        return cpu, rss_bytes

    def exec_shell(self, container_id: str, shell: str = "/bin/bash", fallback_shell: str = "/bin/sh") -> None:
        """Run an interactive shell in the container via the docker CLI."""
        result = subprocess.call(["docker", "exec", "-it", container_id, shell])
        if result != 0 and fallback_shell:
            result = subprocess.call(["docker", "exec", "-it", container_id, fallback_shell])
        if result != 0:
            raise RuntimeClientError(f"Failed to start shell ({shell} or {fallback_shell}) in container")
