import threading

from dockyard.model import (
    ContainerHealth,
    ContainerInfo,
    HealthFilter,
    HealthStatus,
    ImageInfo,
    SortOrder,
    StatsSample,
)
from dockyard.state import (
    PULL_PROGRESS_LIMIT,
    StateStore,
    filter_and_sort_containers,
    next_container_sort,
    next_health_filter,
    next_image_sort,
    sort_images,
)


def _container(cid: str, created: int = 0, state: str = "running") -> ContainerInfo:
    return ContainerInfo(id=cid, short_id=cid, name=cid, image="img", state=state, status="", created=created)


def test_readers_get_copies():
    store = StateStore()
    store.set_containers([_container("a")])
    snapshot = store.get_containers()
    snapshot[0].name = "changed"
    snapshot.append(_container("b"))

    assert store.get_containers()[0].name == "a"
    assert len(store.get_containers()) == 1


def test_counts_follow_container_snapshot():
    store = StateStore()
    store.set_containers([_container("a"), _container("b", state="exited"), _container("c", state="paused")])
    counts = store.get_counts()
    assert (counts.running, counts.stopped, counts.paused) == (1, 1, 1)


def test_stats_entry_is_updated_in_place():
    store = StateStore()
    store.record_stats("a", StatsSample(1.0, 0.5, 0.25, 10, 0, 100), now=1.0)
    store.record_stats("a", StatsSample(2.0, 1.0, 0.5, 20, 0, 100), now=2.0)

    entry = store.get_stats("a")
    assert list(entry.cpu_history) == [1.0, 2.0]
    assert entry.last_updated == 2.0


def test_entries_linger_after_container_disappears():
    store = StateStore()
    store.set_containers([_container("a")])
    store.record_stats("a", StatsSample(1.0, 0.5, 0.25, 10, 0, 100))
    store.set_health("a", ContainerHealth(status=HealthStatus.HEALTHY))

    store.set_containers([])

    assert store.get_stats("a") is not None
    assert store.get_health("a").status == HealthStatus.HEALTHY


def test_ids_with_health():
    store = StateStore()
    store.set_health("a", ContainerHealth(status=HealthStatus.UNHEALTHY))
    store.set_health("b", ContainerHealth(status=HealthStatus.HEALTHY))
    store.set_health("c", ContainerHealth(status=HealthStatus.STARTING))

    ids = store.ids_with_health(HealthStatus.UNHEALTHY, HealthStatus.STARTING)
    assert sorted(ids) == ["a", "c"]


def test_viewport_is_clamped():
    store = StateStore()
    store.set_viewport(-3, -1)
    viewport = store.get_viewport()
    assert (viewport.offset, viewport.height, viewport.rows) == (0, 0, None)

    store.set_viewport(4, 10, ["x", "y"])
    assert store.get_viewport().rows == ("x", "y")


def test_filter_toggles():
    store = StateStore()
    assert store.show_all is True
    assert store.toggle_show_all() is False
    assert store.show_dangling is False
    assert store.toggle_show_dangling() is True


def test_pull_progress_is_bounded_and_exclusive():
    store = StateStore()
    assert store.begin_pull() is True
    assert store.begin_pull() is False
    for i in range(PULL_PROGRESS_LIMIT + 20):
        store.add_pull_progress(f"line {i}")
    pulling, lines = store.get_pull_progress()
    assert pulling is True
    assert len(lines) == PULL_PROGRESS_LIMIT
    assert lines[-1] == f"line {PULL_PROGRESS_LIMIT + 19}"

    store.end_pull()
    assert store.begin_pull() is True
    assert store.get_pull_progress()[1] == []


def test_stats_write_does_not_wait_on_container_lock():
    store = StateStore()
    done = threading.Event()

    def write_stats():
        store.record_stats("a", StatsSample(1.0, 0.5, 0.25, 10, 0, 100))
        done.set()

    with store._containers_lock:
        t = threading.Thread(target=write_stats)
        t.start()
        assert done.wait(timeout=1)
    t.join()


def test_health_filter_and_sort():
    containers = [_container("healthy", 3), _container("sick", 1), _container("plain", 2), _container("boot", 4)]
    health = {
        "healthy": HealthStatus.HEALTHY,
        "sick": HealthStatus.UNHEALTHY,
        "boot": HealthStatus.STARTING,
    }

    worst_first = filter_and_sort_containers(containers, health, HealthFilter.ALL, SortOrder.HEALTH_ASC)
    assert [c.id for c in worst_first] == ["sick", "boot", "healthy", "plain"]

    best_last = filter_and_sort_containers(containers, health, HealthFilter.ALL, SortOrder.HEALTH_DESC)
    assert [c.id for c in best_last] == ["plain", "healthy", "boot", "sick"]

    unhealthy = filter_and_sort_containers(containers, health, HealthFilter.UNHEALTHY)
    assert [c.id for c in unhealthy] == ["boot", "sick"]

    healthy = filter_and_sort_containers(containers, health, HealthFilter.HEALTHY)
    assert [c.id for c in healthy] == ["healthy"]

    oldest = filter_and_sort_containers(containers, health, HealthFilter.ALL, SortOrder.CREATED_ASC)
    assert [c.id for c in oldest] == ["sick", "plain", "healthy", "boot"]


def test_sort_images():
    images = [ImageInfo("a", [], 10, 2), ImageInfo("b", [], 30, 1), ImageInfo("c", [], 20, 3)]
    assert [i.id for i in sort_images(images)] == ["c", "a", "b"]
    assert [i.id for i in sort_images(images, SortOrder.SIZE_DESC)] == ["b", "c", "a"]
    assert [i.id for i in sort_images(images, SortOrder.SIZE_ASC)] == ["a", "c", "b"]


def test_sort_and_filter_cycles():
    assert next_container_sort(SortOrder.CREATED_DESC) == SortOrder.CREATED_ASC
    assert next_container_sort(SortOrder.CREATED_ASC) == SortOrder.HEALTH_ASC
    assert next_container_sort(SortOrder.HEALTH_DESC) == SortOrder.CREATED_DESC
    assert next_container_sort(SortOrder.SIZE_ASC) == SortOrder.CREATED_DESC
    assert next_image_sort(SortOrder.SIZE_ASC) == SortOrder.CREATED_DESC
    assert next_health_filter(HealthFilter.ALL) == HealthFilter.UNHEALTHY
    assert next_health_filter(HealthFilter.HEALTHY) == HealthFilter.ALL
