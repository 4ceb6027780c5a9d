import asyncio
import threading

import pytest
from unittest.mock import MagicMock
from dockyard.config import ConfigManager
from dockyard.engine import DashboardEngine
from dockyard.model import ContainerInfo
from dockyard.textual_app import DockyardApp


def _container(cid: str, created: int) -> ContainerInfo:
    return ContainerInfo(id=cid, short_id=cid, name=cid, image="img", state="running", status="Up", created=created)


@pytest.fixture
def engine():
    backend = MagicMock()
    backend.list_containers.return_value = [_container("old", 1), _container("mid", 2), _container("new", 3)]
    backend.list_images.return_value = []
    backend.inspect_container.return_value = {"Id": "new", "Name": "/new", "State": {"Status": "running"}}
    backend.stream_logs.return_value = iter([])
    backend.stream_events.return_value = iter([])
    backend.fetch_stats_snapshot.return_value = None
    backend.get_self_usage.return_value = (0.0, 0)
    return DashboardEngine(backend=backend, config=ConfigManager(persist=False))


def test_navigation_and_viewport(engine):
    app = DockyardApp(engine)

    async def scenario():
        async with app.run_test(size=(140, 40)) as pilot:
            await pilot.pause(0.3)
            # Newest first; the stats scheduler sees the displayed order
            assert engine.store.get_viewport().rows == ("new", "mid", "old")

            await pilot.press("down")
            assert app.selected_index == 1

            await pilot.press("i")
            assert app.selected_tab == "images"
            await pilot.press("i")
            assert app.selected_tab == "containers"

    asyncio.run(scenario())
    engine.stop()


def test_selection_starts_session_after_quiet_period(engine):
    app = DockyardApp(engine)

    async def scenario():
        async with app.run_test(size=(140, 40)) as pilot:
            await pilot.pause(0.4)
            assert engine.session.active_id == "new"

    asyncio.run(scenario())
    engine.stop()


def test_docker_calls_and_config_saves_run_off_the_event_loop(engine, mocker):
    callers = []
    saves = []
    containers = engine.backend.list_containers.return_value

    def list_containers(*args, **kwargs):
        callers.append(threading.current_thread())
        return containers

    engine.backend.list_containers.side_effect = list_containers
    mocker.patch.object(engine.config, "save_config", side_effect=lambda: saves.append(threading.current_thread()))
    app = DockyardApp(engine)

    async def scenario():
        async with app.run_test(size=(140, 40)) as pilot:
            await pilot.pause(0.3)
            await pilot.press("T")
            await pilot.pause(0.3)
            assert app.message == "Turbo on"

    asyncio.run(scenario())
    engine.stop()

    assert callers and threading.main_thread() not in callers
    assert saves and threading.main_thread() not in saves


def test_overlapping_commands_each_report_completion(engine):
    release = threading.Event()

    def slow_start(container_id):
        release.wait(2)
        return True

    engine.backend.start_container.side_effect = slow_start
    app = DockyardApp(engine)

    async def scenario():
        async with app.run_test(size=(140, 40)) as pilot:
            await pilot.pause(0.3)
            await pilot.press("t")
            await pilot.press("m")
            await pilot.pause(0.2)
            assert app.message == "Perf metrics on"

            release.set()
            await pilot.pause(0.3)
            assert app.message == "Start new done"

    asyncio.run(scenario())
    engine.stop()
