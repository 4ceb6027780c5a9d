import docker
import pytest
from unittest.mock import MagicMock
from dockyard.backend import (
    DockerBackend,
    RuntimeClientError,
    RuntimeUnavailableError,
    cpu_percent,
    format_ports,
    iter_log_lines,
    parse_stats_snapshot,
)


@pytest.fixture
def mock_docker(mocker):
    # Mock the entire docker client
    mock_client = MagicMock()
    mocker.patch("docker.from_env", return_value=mock_client)
    return mock_client


def _sparse(attrs):
    c = MagicMock()
    c.attrs = attrs
    return c


def _raw_stats(total, pre_total, system, pre_system, online_cpus=2, memory=None):
    return {
        "read": "2024-01-01T00:00:00.000000000Z",
        "cpu_stats": {
            "cpu_usage": {"total_usage": total, "usage_in_usermode": total // 2, "usage_in_kernelmode": total // 4},
            "system_cpu_usage": system,
            "online_cpus": online_cpus,
        },
        "precpu_stats": {
            "cpu_usage": {"total_usage": pre_total, "usage_in_usermode": pre_total // 2, "usage_in_kernelmode": pre_total // 4},
            "system_cpu_usage": pre_system,
        },
        "memory_stats": memory if memory is not None else {"usage": 1024, "limit": 4096},
    }


def test_list_containers(mock_docker):
    mock_docker.containers.list.return_value = [
        _sparse({
            "Id": "a" * 64,
            "Names": ["/web_server"],
            "Image": "nginx:latest",
            "State": "running",
            "Status": "Up 2 hours (healthy)",
            "Ports": [{"PrivatePort": 80, "PublicPort": 8080}],
            "Created": 1700000000,
        }),
        _sparse({
            "Id": "b" * 64,
            "Names": ["/db"],
            "Image": "postgres",
            "State": "exited",
            "Status": "Exited (0) 3 minutes ago",
            "Created": 1600000000,
        }),
    ]

    backend = DockerBackend()
    results = backend.list_containers(show_all=True)

    mock_docker.containers.list.assert_called_once_with(all=True, filters={}, sparse=True)
    assert len(results) == 2
    assert results[0].name == "web_server"
    assert results[0].short_id == "a" * 12
    assert results[0].ports == "8080→80"
    assert results[1].state == "exited"
    assert results[1].ports == ""


def test_list_containers_running_only(mock_docker):
    mock_docker.containers.list.return_value = []
    DockerBackend().list_containers(show_all=False)
    mock_docker.containers.list.assert_called_once_with(
        all=False, filters={"status": "running"}, sparse=True
    )


def test_list_containers_failure_raises(mock_docker):
    mock_docker.containers.list.side_effect = docker.errors.APIError("boom")
    backend = DockerBackend()
    with pytest.raises(RuntimeClientError):
        backend.list_containers()


def test_list_images_strips_digest_prefix(mock_docker):
    i1 = MagicMock()
    i1.attrs = {
        "Id": "sha256:0123456789abcdef0123",
        "RepoTags": ["ubuntu:20.04"],
        "Size": 104857600,
        "Created": 1700000000,
    }
    mock_docker.images.list.return_value = [i1]

    results = DockerBackend().list_images()

    mock_docker.images.list.assert_called_once_with(filters={"dangling": False})
    assert results[0].id == "0123456789ab"
    assert results[0].repo_tags == ["ubuntu:20.04"]
    assert results[0].size == 104857600


def test_list_images_with_dangling(mock_docker):
    mock_docker.images.list.return_value = []
    DockerBackend().list_images(show_dangling=True)
    mock_docker.images.list.assert_called_once_with(filters={})


def test_connection_failure_is_fatal(mocker):
    mocker.patch("docker.from_env", side_effect=docker.errors.DockerException("no socket"))
    with pytest.raises(RuntimeUnavailableError):
        DockerBackend()


def test_ping_failure_is_fatal(mock_docker):
    mock_docker.ping.side_effect = docker.errors.APIError("daemon down")
    with pytest.raises(RuntimeUnavailableError):
        DockerBackend()


def test_container_actions(mock_docker):
    mock_container = MagicMock()
    mock_docker.containers.get.return_value = mock_container

    backend = DockerBackend()
    assert backend.start_container("123") is True

    mock_docker.containers.get.assert_called_with("123")
    mock_container.start.assert_called_once()

    backend.remove_container("123")
    mock_container.remove.assert_called_once_with(force=True)


def test_container_action_failure_returns_false(mock_docker):
    mock_docker.containers.get.side_effect = docker.errors.NotFound("gone")
    backend = DockerBackend()
    assert backend.stop_container("123") is False
    assert backend.pause_container("123") is False


def test_prune_uses_dangling_filter(mock_docker):
    assert DockerBackend().prune_images() is True
    mock_docker.images.prune.assert_called_once_with(filters={"dangling": True})


def test_pull_defaults_to_latest(mock_docker):
    DockerBackend().pull_image("nginx")
    mock_docker.api.pull.assert_called_once_with("nginx", tag="latest", stream=True, decode=True)


def test_pull_keeps_explicit_tag(mock_docker):
    DockerBackend().pull_image("registry.local:5000/app:1.2")
    mock_docker.api.pull.assert_called_once_with(
        "registry.local:5000/app", tag="1.2", stream=True, decode=True
    )


def test_fetch_stats_snapshot_not_found_is_none(mock_docker):
    mock_docker.api.stats.side_effect = docker.errors.NotFound("gone")
    assert DockerBackend().fetch_stats_snapshot("123") is None


def test_fetch_stats_snapshot_empty_payload_is_none(mock_docker):
    mock_docker.api.stats.return_value = {}
    assert DockerBackend().fetch_stats_snapshot("123") is None


def test_cpu_percent_from_single_snapshot():
    # 400 / 1000 * 2 cpus * 100
    sample = parse_stats_snapshot(_raw_stats(600, 200, 2000, 1000, online_cpus=2))
    assert sample.cpu_percent == pytest.approx(80.0)
    assert sample.user_cpu_percent == pytest.approx(40.0)
    assert sample.system_cpu_percent == pytest.approx(20.0)


def test_cpu_percent_formula():
    assert cpu_percent(200_000_000, 1_000_000_000, 4) == pytest.approx(80.0)
    assert cpu_percent(200_000_000, 0, 4) == 0.0


def test_cpu_count_falls_back_to_percpu_then_one():
    raw = _raw_stats(600, 200, 2000, 1000, online_cpus=None)
    raw["cpu_stats"]["cpu_usage"]["percpu_usage"] = [1, 2, 3, 4]
    assert parse_stats_snapshot(raw).cpu_percent == pytest.approx(160.0)

    raw = _raw_stats(600, 200, 2000, 1000, online_cpus=None)
    assert parse_stats_snapshot(raw).cpu_percent == pytest.approx(40.0)


def test_cpu_percent_zero_when_deltas_not_positive():
    assert parse_stats_snapshot(_raw_stats(600, 200, 1000, 1000)).cpu_percent == 0.0
    assert parse_stats_snapshot(_raw_stats(200, 200, 2000, 1000)).cpu_percent == 0.0


def test_cached_memory_cgroup_v1_and_v2():
    v1 = _raw_stats(600, 200, 2000, 1000, memory={"usage": 100, "limit": 1000, "stats": {"cache": 30}})
    v2 = _raw_stats(600, 200, 2000, 1000, memory={"usage": 100, "limit": 1000, "stats": {"anon": 70}})
    assert parse_stats_snapshot(v1).cached_memory == 30
    assert parse_stats_snapshot(v2).cached_memory == 0
    assert parse_stats_snapshot(v2).memory_limit == 1000


def test_stopped_container_snapshot_is_none():
    raw = _raw_stats(600, 200, 2000, 1000)
    raw["read"] = "0001-01-01T00:00:00Z"
    assert parse_stats_snapshot(raw) is None


def test_format_ports_limits_to_two():
    ports = [
        {"PrivatePort": 80, "PublicPort": 8080},
        {"PrivatePort": 443},
        {"PrivatePort": 9000, "PublicPort": 9000},
    ]
    assert format_ports(ports) == "8080→80, 443"


def test_iter_log_lines_handles_split_frames():
    frames = [b"first li", b"ne\nsecond\r\nthi", b"rd"]
    assert list(iter_log_lines(iter(frames))) == ["first line", "second", "third"]


def test_exec_shell_falls_back(mock_docker, mocker):
    call = mocker.patch("dockyard.backend.subprocess.call", side_effect=[1, 0])
    DockerBackend().exec_shell("abc", "/bin/bash", "/bin/sh")
    assert call.call_count == 2
    call.assert_called_with(["docker", "exec", "-it", "abc", "/bin/sh"])


def test_exec_shell_raises_when_both_shells_fail(mock_docker, mocker):
    mocker.patch("dockyard.backend.subprocess.call", return_value=126)
    with pytest.raises(RuntimeClientError):
        DockerBackend().exec_shell("abc")
