"""
dockyard - A live terminal dashboard for Docker.

This package keeps a continuously-updated view of a fleet of containers
without overloading the Docker API or the terminal.

Features:
  - Container and image lists with running/stopped/paused counts
  - Per-container CPU (total/user/system) and memory history
  - Health-check tracking (events + change detection + periodic sweep)
  - Live log tail and detail view of the selected container
  - Turbo mode: visible-only polling with minimal detail for large fleets
  - Lifecycle commands (start, stop, restart, pause, remove, pull, prune)

Main Components:
  - engine.py: Owns and supervises every background worker
  - backend.py: Docker API wrapper
  - state.py: Shared state store (one lock per entity class)
  - stats.py: Adaptive, viewport-aware stats scheduler
  - health.py: Health monitor
  - session.py: Selection session (details + live logs) and debounce
  - workers.py: Container/image refresh loops and perf sampler
  - textual_app.py: Textual UI
  - model.py: Data structures

Usage:
  python -m dockyard

Dependencies:
  - docker>=7.0.0
  - textual, rich, PyYAML
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/dockyard/logs/dockyard.log with fallback to /tmp.
    Creates directory if it doesn't exist.
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'dockyard' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockyard.log')
    except (PermissionError, OSError):
        return '/tmp/dockyard.log'
