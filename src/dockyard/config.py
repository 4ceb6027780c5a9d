"""
Configuration management for dockyard.

This module provides configuration file support with YAML format and the
live, lock-guarded engine settings every background loop reads each cycle.

Features:
- YAML configuration file at ~/.config/dockyard/config.yaml
- Default values with user overrides
- Live engine settings (turbo mode, refresh rate, poll strategy, ...)
- Shell preferences for container exec
- Log level and rotation settings

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- snapshot() hands each loop an independent copy, so changes made by user
  commands take effect within one cycle without restarting anything
- Handles missing/invalid config gracefully
"""

import copy
import dataclasses
import logging
import threading
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .model import EngineConfig, PollStrategy, RefreshRate, StatsView

logger = logging.getLogger(__name__)

REFRESH_RATE_CYCLE: List[RefreshRate] = [
    RefreshRate.every(1),
    RefreshRate.every(2),
    RefreshRate.every(5),
    RefreshRate.manual(),
]


@dataclass
class DockerConfig:
    """Docker-related configuration."""
    default_shell: str = "/bin/bash"
    fallback_shell: str = "/bin/sh"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_dir() -> Path:
    return Path.home() / ".config" / "dockyard"


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None, persist: bool = True):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "config.yaml"
        self.persist = persist
        self._config: AppConfig = AppConfig()
        self._lock = threading.RLock()

        if self.persist:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}

                with self._lock:
                    self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except Exception as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            with self._lock:
                self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        if not self.persist:
            return
        try:
            with self._lock:
                config_dict = self._config_to_dict(self._config)
            with open(self.config_file, 'w') as f:
                yaml.dump(config_dict, f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except Exception as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get a copy of the full configuration."""
        with self._lock:
            return copy.deepcopy(self._config)

    def snapshot(self) -> EngineConfig:
        """Independent copy of the live engine settings."""
        with self._lock:
            return copy.deepcopy(self._config.engine)

    def update(self, **changes: Any) -> EngineConfig:
        with self._lock:
            self._config.engine = dataclasses.replace(self._config.engine, **changes)
            return copy.deepcopy(self._config.engine)

    def toggle_turbo(self) -> EngineConfig:
        with self._lock:
            engine = self._config.engine
            engine.turbo_mode = not engine.turbo_mode
            engine.apply_turbo_preset()
            result = copy.deepcopy(engine)
        logger.info(f"Turbo mode {'enabled' if result.turbo_mode else 'disabled'}")
        return result

    def cycle_refresh_rate(self) -> RefreshRate:
        with self._lock:
            current = self._config.engine.refresh_rate
            try:
                idx = REFRESH_RATE_CYCLE.index(current)
                nxt = REFRESH_RATE_CYCLE[(idx + 1) % len(REFRESH_RATE_CYCLE)]
            except ValueError:
                nxt = REFRESH_RATE_CYCLE[0]
            self._config.engine.refresh_rate = nxt
        logger.info(f"Stats refresh rate set to {nxt}")
        return nxt

    def toggle_perf_metrics(self) -> bool:
        with self._lock:
            engine = self._config.engine
            engine.show_perf_metrics = not engine.show_perf_metrics
            return engine.show_perf_metrics

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        if 'engine' in user:
            self._merge_engine(default.engine, user['engine'] or {})
        if 'docker' in user:
            self._merge_dataclass(default.docker, user['docker'] or {})
        if 'logging' in user:
            self._merge_dataclass(default.logging, user['logging'] or {})
        return default

    def _merge_engine(self, engine: EngineConfig, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key == 'refresh_rate':
                engine.refresh_rate = RefreshRate.parse(value)
            elif key == 'poll_strategy':
                engine.poll_strategy = PollStrategy(value)
            elif key == 'stats_view':
                engine.stats_view = StatsView(value)
            elif hasattr(engine, key):
                setattr(engine, key, value)

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)

    def _config_to_dict(self, config: AppConfig) -> Dict[str, Any]:
        """Convert config dataclass to dictionary."""
        engine = config.engine
        return {
            'engine': {
                'turbo_mode': engine.turbo_mode,
                'refresh_rate': engine.refresh_rate.to_config(),
                'stats_view': engine.stats_view.value,
                'poll_strategy': engine.poll_strategy.value,
                'viewport_buffer': engine.viewport_buffer,
                'show_perf_metrics': engine.show_perf_metrics,
                'max_concurrent_stats': engine.max_concurrent_stats,
                'container_refresh_interval': engine.container_refresh_interval,
                'image_refresh_interval': engine.image_refresh_interval,
                'health_sweep_interval': engine.health_sweep_interval,
                'perf_sample_interval': engine.perf_sample_interval,
                'log_tail': engine.log_tail,
            },
            'docker': {
                'default_shell': config.docker.default_shell,
                'fallback_shell': config.docker.fallback_shell,
            },
            'logging': {
                'level': config.logging.level,
                'file_path': config.logging.file_path,
                'max_size_mb': config.logging.max_size_mb,
                'backup_count': config.logging.backup_count,
            }
        }

    def get_shells(self) -> tuple:
        """Default and fallback shell for container exec."""
        with self._lock:
            return self._config.docker.default_shell, self._config.docker.fallback_shell
