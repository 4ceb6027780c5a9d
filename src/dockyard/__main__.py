"""Entry point: python -m dockyard"""

import logging
import sys
from logging.handlers import RotatingFileHandler

from . import get_log_path
from .backend import RuntimeUnavailableError
from .config import ConfigManager, LogConfig


def setup_logging(log_config: LogConfig) -> str:
    """Log to a rotating file; the terminal belongs to the UI."""
    path = log_config.file_path or get_log_path()
    handler = RotatingFileHandler(
        path,
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )
    handler.setFormatter(logging.Formatter('%(asctime)s - %(threadName)s - %(levelname)s - %(name)s - %(message)s'))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_config.level.upper(), logging.INFO))
    return path


def main() -> int:
    config = ConfigManager()
    setup_logging(config.get_config().logging)

    from .textual_app import run
    try:
        run(config)
    except RuntimeUnavailableError as e:
        logging.critical(f"Startup failed: {e}")
        print(f"dockyard: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
