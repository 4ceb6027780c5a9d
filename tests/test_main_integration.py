import logging

import pytest
from unittest.mock import MagicMock
import dockyard.__main__ as app_main
from dockyard.backend import RuntimeUnavailableError
from dockyard.config import ConfigManager, LogConfig


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers:
        h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_to_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "dockyard.log"
    path = app_main.setup_logging(LogConfig(level="debug", file_path=str(log_file)))

    logging.getLogger("dockyard.test").debug("hello from test")
    for h in logging.getLogger().handlers:
        h.flush()

    assert path == str(log_file)
    assert logging.getLogger().level == logging.DEBUG
    assert "hello from test" in log_file.read_text()


def test_main_reports_unreachable_docker(mocker, capsys):
    mocker.patch("dockyard.__main__.ConfigManager", return_value=ConfigManager(persist=False))
    mocker.patch("dockyard.__main__.setup_logging")
    mocker.patch("dockyard.textual_app.run", side_effect=RuntimeUnavailableError("Cannot connect to Docker"))

    assert app_main.main() == 1
    assert "Cannot connect to Docker" in capsys.readouterr().err


def test_main_runs_app(mocker):
    mocker.patch("dockyard.__main__.ConfigManager", return_value=ConfigManager(persist=False))
    mocker.patch("dockyard.__main__.setup_logging")
    run = mocker.patch("dockyard.textual_app.run")

    assert app_main.main() == 0
    run.assert_called_once()


def test_run_builds_engine_before_app(mocker):
    import dockyard.textual_app as textual_app

    mocker.patch.object(textual_app, "DashboardEngine", side_effect=RuntimeUnavailableError("down"))
    app_cls = mocker.patch.object(textual_app, "DockyardApp")

    with pytest.raises(RuntimeUnavailableError):
        textual_app.run(MagicMock())
    app_cls.assert_not_called()
