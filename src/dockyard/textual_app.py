"""Textual-based UI for dockyard."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static, Tab, Tabs
from rich.markup import escape as rich_escape

from .config import ConfigManager
from .engine import DashboardEngine
from .formatting import format_bytes, sparkline
from .model import (
    ContainerHealth,
    ContainerInfo,
    ContainerStats,
    HealthFilter,
    HealthStatus,
    ImageInfo,
    SortOrder,
    StatsView,
)
from .session import Debouncer
from .state import (
    filter_and_sort_containers,
    next_container_sort,
    next_health_filter,
    next_image_sort,
    sort_images,
)

TICK_SECONDS = 0.1
TABS = ("containers", "images")


class ConfirmScreen(ModalScreen[Optional[str]]):
    """Yes/no prompt; `extra` maps additional keys to their own answers."""

    def __init__(self, question: str, extra: Optional[dict[str, str]] = None) -> None:
        super().__init__()
        self.question = question
        self.extra = extra or {}

    def compose(self) -> ComposeResult:
        hints = ["[Enter/Y] Yes"] + [f"[{k}] {v}" for k, v in self.extra.items()] + ["[Esc/N] No"]
        yield Vertical(
            Static("Confirm", classes="modal_title"),
            Static(self.question, classes="modal_body", markup=False),
            Static("    ".join(hints), classes="modal_hint", markup=False),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss("yes")
        elif event.character in self.extra:
            self.dismiss(event.character)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(None)


class InputScreen(ModalScreen[Optional[str]]):
    def __init__(self, prompt: str) -> None:
        super().__init__()
        self.prompt = prompt

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Input", classes="modal_title"),
            Static(self.prompt, classes="modal_body", markup=False),
            Input(placeholder="Type value and press Enter", id="input_value"),
            Static("[Esc] Cancel", classes="modal_hint", markup=False),
            id="modal",
        )

    def on_mount(self) -> None:
        self.query_one("#input_value", Input).focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        value = event.value.strip()
        self.dismiss(value or None)

    async def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)


class DockyardApp(App[None]):
    TITLE = "dockyard"
    SUB_TITLE = "Docker dashboard"

    CSS = """
    Screen {
      layout: vertical;
    }

    #tabs {
      height: 1;
      padding: 0 1;
      background: $surface;
      color: $text;
    }

    #main {
      layout: vertical;
      height: 1fr;
    }

    #top {
      height: 1fr;
    }

    #list {
      width: 58%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #info {
      width: 42%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #logs {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    Screen.narrow #list {
      width: 100%;
    }

    Screen.narrow #info {
      display: none;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 70;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("up", "up", "Up", show=False),
        Binding("down", "down", "Down", show=False),
        Binding("k", "up", "Up", show=False),
        Binding("j", "down", "Down", show=False),
        Binding("i", "toggle_view", "Images"),
        Binding("t", "start", "Start", show=False),
        Binding("s", "stop", "Stop", show=False),
        Binding("r", "restart", "Restart", show=False),
        Binding("p", "pause", "Pause", show=False),
        Binding("d", "remove", "Remove", show=False),
        Binding("x", "shell", "Shell", show=False),
        Binding("f", "toggle_filter", "Filter"),
        Binding("h", "health_filter", "Health", show=False),
        Binding("o", "cycle_sort", "Sort"),
        Binding("T", "turbo", "Turbo"),
        Binding("R", "refresh_rate", "Rate"),
        Binding("m", "perf", "Perf", show=False),
        Binding("a", "auto_scroll", "Auto-scroll", show=False),
        Binding("enter", "image_details", "Details", show=False),
        Binding("P", "pull", "Pull", show=False),
        Binding("D", "remove_image", "Remove image", show=False),
        Binding("X", "prune", "Prune", show=False),
    ]

    def __init__(self, engine: DashboardEngine) -> None:
        super().__init__()
        self.engine = engine
        self.store = engine.store
        self.selected_tab = "containers"
        self.selected_index = 0
        self.scroll_offset = 0
        self.image_index = 0
        self.image_offset = 0
        self.health_filter = HealthFilter.ALL
        self.container_sort = SortOrder.CREATED_DESC
        self.image_sort = SortOrder.CREATED_DESC
        self.auto_scroll = True
        self.message = ""
        self._message_at = 0.0
        self.debouncer = Debouncer()
        self._syncing_tabs = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Tabs(
            Tab("CONTAINERS", id="containers"),
            Tab("IMAGES", id="images"),
            id="tabs",
        )
        yield Vertical(
            Horizontal(
                Static("", id="list"),
                Static("", id="info"),
                id="top",
            ),
            Static("", id="logs"),
            id="main",
        )
        yield Static("", id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self._start_engine(), group="engine")
        self.set_interval(TICK_SECONDS, self._tick)
        self._apply_responsive_layout()
        self._render()

    async def _start_engine(self) -> None:
        # First list calls hit the Docker API; keep them off the event loop
        await asyncio.to_thread(self.engine.start)
        self._render()

    def on_unmount(self) -> None:
        self.engine.stop()

    def on_resize(self, event: events.Resize) -> None:
        self._apply_responsive_layout()
        self._render()

    def _apply_responsive_layout(self) -> None:
        self.set_class(self.size.width < 120, "narrow")

    # --- Data access ---

    def _containers(self) -> list[ContainerInfo]:
        return filter_and_sort_containers(
            self.store.get_containers(),
            self.store.get_health_statuses(),
            self.health_filter,
            self.container_sort,
        )

    def _images(self) -> list[ImageInfo]:
        return sort_images(self.store.get_images(), self.image_sort)

    def _selected_container(self) -> Optional[ContainerInfo]:
        items = self._containers()
        if 0 <= self.selected_index < len(items):
            return items[self.selected_index]
        return None

    def _selected_image(self) -> Optional[ImageInfo]:
        items = self._images()
        if 0 <= self.image_index < len(items):
            return items[self.image_index]
        return None

    def _set_message(self, message: str) -> None:
        self.message = message
        self._message_at = time.monotonic()

    # --- Tick ---

    def _tick(self) -> None:
        if self.selected_tab == "containers":
            selected = self._selected_container()
            target = selected.id if selected else None
            # List refreshes can move the cursor onto another container
            if target != self.engine.session.active_id and not self.debouncer.pending:
                self.debouncer.touch()
            if self.debouncer.ready():
                if target:
                    self.engine.session.select(target)
                else:
                    self.engine.session.clear()
        if self.message and time.monotonic() - self._message_at > 3.0:
            self.message = ""
        self._render()

    # --- Rendering ---

    def _render(self) -> None:
        if self.selected_tab == "containers":
            list_text = self._render_containers()
            info_text = self._render_container_info()
            logs_text = self._render_logs()
        else:
            list_text = self._render_images()
            info_text = self.engine.session.image_details() or "Press Enter for details"
            logs_text = self._render_pull_progress()
        self.query_one("#list", Static).update(rich_escape(list_text))
        self.query_one("#info", Static).update(rich_escape(info_text))
        self.query_one("#logs", Static).update(rich_escape(logs_text))
        self.query_one("#status", Static).update(rich_escape(self._render_status()))

    def _list_height(self) -> int:
        return max(1, self.query_one("#list", Static).size.height - 2)

    def _render_containers(self) -> str:
        items = self._containers()
        if items:
            self.selected_index = max(0, min(self.selected_index, len(items) - 1))
        else:
            self.selected_index = 0
        height = self._list_height()
        if self.selected_index < self.scroll_offset:
            self.scroll_offset = self.selected_index
        elif self.selected_index >= self.scroll_offset + height:
            self.scroll_offset = self.selected_index - height + 1
        self.store.set_viewport(self.scroll_offset, height, [c.id for c in items])

        health = self.store.get_health_statuses()
        stats = self.store.get_all_stats()
        lines = ["  NAME                 STATE    HEALTH     CPU%    MEM        PORTS"]
        for idx in range(self.scroll_offset, min(len(items), self.scroll_offset + height)):
            c = items[idx]
            marker = ">" if idx == self.selected_index else " "
            h = health.get(c.id, HealthStatus.NO_HEALTHCHECK)
            s = stats.get(c.id)
            cpu = f"{s.cpu_percent:6.1f}" if s and c.state == "running" else "    --"
            mem = format_bytes(s.memory_usage) if s and c.state == "running" else "--"
            lines.append(f"{marker} {c.name[:20]:20} {c.state[:8]:8} {h.label[:10]:10} {cpu}  {mem:10} {c.ports}")
        if not items:
            lines.append("  No containers")
        return "\n".join(lines)

    def _render_container_info(self) -> str:
        selected = self._selected_container()
        if not selected:
            return "No container selected"
        cfg = self.engine.config.snapshot()
        parts = [self.engine.session.details() or "Loading details..."]

        health = self.store.get_health(selected.id)
        if health:
            parts.append(self._render_health(health))

        stats = self.store.get_stats(selected.id)
        if stats:
            parts.append(self._render_stats(stats, cfg.stats_view, cfg.refresh_rate.seconds))
        return "\n".join(parts)

    def _render_health(self, health: ContainerHealth) -> str:
        lines = [f"Health: {health.status.label} (failing streak {health.failing_streak})"]
        if health.interval:
            lines.append(
                f"  interval {health.interval}  timeout {health.timeout or '-'}  "
                f"retries {health.retries if health.retries is not None else '-'}  "
                f"start period {health.start_period or '-'}"
            )
        for check in health.check_history:
            ts = check.timestamp.astimezone().strftime("%H:%M:%S")
            output = check.output.strip().replace("\n", " ")[:60]
            lines.append(f"  {ts} exit={check.exit_code} {output}")
        return "\n".join(lines)

    def _render_stats(self, stats: ContainerStats, view: StatsView, interval: Optional[float]) -> str:
        stale = ""
        if interval and stats.is_stale(interval * 3):
            stale = f"  (stale {int(stats.age())}s)"
        limit = format_bytes(stats.memory_limit) if stats.memory_limit else "-"
        if view == StatsView.MINIMAL:
            return f"CPU {stats.cpu_percent:.1f}%  MEM {format_bytes(stats.memory_usage)} / {limit}{stale}"
        return "\n".join([
            f"CPU {stats.cpu_percent:.1f}% (user {stats.user_cpu_percent:.1f}% / sys {stats.system_cpu_percent:.1f}%){stale}",
            f"  {sparkline(stats.cpu_history)}",
            f"MEM {format_bytes(stats.memory_usage)} / {limit} (cache {format_bytes(stats.cached_memory)})",
            f"  {sparkline(stats.memory_history)}",
        ])

    def _render_logs(self) -> str:
        logs = self.engine.session.logs()
        if not logs:
            return "No logs"
        height = max(1, self.query_one("#logs", Static).size.height - 2)
        if self.auto_scroll:
            return "\n".join(logs[-height:])
        return "\n".join(logs[:height])

    def _render_images(self) -> str:
        items = self._images()
        if items:
            self.image_index = max(0, min(self.image_index, len(items) - 1))
        height = self._list_height()
        if self.image_index < self.image_offset:
            self.image_offset = self.image_index
        elif self.image_index >= self.image_offset + height:
            self.image_offset = self.image_index - height + 1

        lines = ["  ID            SIZE        CREATED           TAGS"]
        for idx in range(self.image_offset, min(len(items), self.image_offset + height)):
            i = items[idx]
            marker = ">" if idx == self.image_index else " "
            created = datetime.fromtimestamp(i.created).strftime("%Y-%m-%d %H:%M") if i.created else "-"
            tags = ", ".join(i.repo_tags) or "<none>"
            lines.append(f"{marker} {i.id:12}  {format_bytes(i.size):10}  {created:16}  {tags}")
        if not items:
            lines.append("  No images")
        return "\n".join(lines)

    def _render_pull_progress(self) -> str:
        pulling, progress = self.store.get_pull_progress()
        header = "Pulling..." if pulling else "Pull progress"
        return "\n".join([header] + progress[-20:]) if progress or pulling else "Press P to pull an image"

    def _render_status(self) -> str:
        cfg = self.engine.config.snapshot()
        counts = self.store.get_counts()
        images = self.store.get_images()
        parts = [
            f"running {counts.running} stopped {counts.stopped} paused {counts.paused}",
            f"images {len(images)} ({format_bytes(sum(i.size for i in images))})",
            f"rate {cfg.refresh_rate}",
            f"sort {self.container_sort.value if self.selected_tab == 'containers' else self.image_sort.value}",
        ]
        if self.selected_tab == "containers":
            parts.append(f"health {self.health_filter.value}")
            parts.append("all" if self.store.show_all else "running only")
        else:
            parts.append("dangling shown" if self.store.show_dangling else "dangling hidden")
        if cfg.turbo_mode:
            parts.append("TURBO")
        if cfg.show_perf_metrics:
            perf = self.store.get_perf()
            parts.append(f"self cpu {perf.cpu_usage:.1f}% mem {format_bytes(perf.memory_usage)} poll {perf.poll_time_ms}ms")
        if self.message:
            parts.append(self.message)
        return " | ".join(parts)

    # --- Navigation ---

    def action_up(self) -> None:
        self._move(-1)

    def action_down(self) -> None:
        self._move(1)

    def _move(self, delta: int) -> None:
        if self.selected_tab == "containers":
            total = len(self._containers())
            if total == 0:
                return
            self.selected_index = (self.selected_index + delta) % total
            self.debouncer.touch()
        else:
            total = len(self._images())
            if total == 0:
                return
            self.image_index = (self.image_index + delta) % total
        self._render()

    def _set_tab(self, tab: str) -> None:
        self.selected_tab = tab
        if tab == "containers":
            self.debouncer.touch()
        tabs = self.query_one("#tabs", Tabs)
        if tabs.active != tab:
            self._syncing_tabs = True
            try:
                tabs.active = tab
            finally:
                self._syncing_tabs = False
        self._render()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if self._syncing_tabs:
            return
        tab_id = event.tab.id
        if tab_id in TABS and tab_id != self.selected_tab:
            self._set_tab(tab_id)

    def action_toggle_view(self) -> None:
        self._set_tab("images" if self.selected_tab == "containers" else "containers")

    # --- Commands ---

    def _run_command(self, label: str, func: Callable[..., Any], *args: Any) -> None:
        async def flow() -> None:
            ok = await asyncio.to_thread(func, *args)
            self._set_message(f"{label} {'done' if ok else 'failed'}")
            self._render()

        self.run_worker(flow(), group="user-action")

    def _run_toggle(self, describe: Callable[[Any], str], func: Callable[[], Any]) -> None:
        async def flow() -> None:
            value = await asyncio.to_thread(func)
            self._set_message(describe(value))
            self._render()

        self.run_worker(flow(), group="user-action")

    def _container_command(self, label: str, func: Callable[[str], bool]) -> None:
        if self.selected_tab != "containers":
            return
        selected = self._selected_container()
        if selected:
            self._run_command(f"{label} {selected.name}", func, selected.id)

    def action_start(self) -> None:
        self._container_command("Start", self.engine.start_container)

    def action_stop(self) -> None:
        self._container_command("Stop", self.engine.stop_container)

    def action_restart(self) -> None:
        self._container_command("Restart", self.engine.restart_container)

    def action_pause(self) -> None:
        self._container_command("Pause/unpause", self.engine.toggle_pause)

    def action_remove(self) -> None:
        selected = self._selected_container() if self.selected_tab == "containers" else None
        if not selected:
            return

        def answered(answer: Optional[str]) -> None:
            if answer:
                self._run_command(f"Remove {selected.name}", self.engine.remove_container, selected.id)
                self.debouncer.touch()

        self.push_screen(ConfirmScreen(f"Remove container {selected.name}?"), answered)

    def action_shell(self) -> None:
        selected = self._selected_container() if self.selected_tab == "containers" else None
        if not selected:
            return
        with self.suspend():
            try:
                self.engine.exec_shell(selected.id)
            except Exception as e:
                self._set_message(f"Exec failed: {e}")
        self.refresh()

    def action_toggle_filter(self) -> None:
        if self.selected_tab == "containers":
            self._run_toggle(lambda v: "Showing all containers" if v else "Showing running only",
                             self.engine.toggle_show_all)
            self.debouncer.touch()
        else:
            self._run_toggle(lambda v: "Showing dangling images" if v else "Hiding dangling images",
                             self.engine.toggle_show_dangling)

    def action_health_filter(self) -> None:
        self.health_filter = next_health_filter(self.health_filter)
        self.selected_index = 0
        self.debouncer.touch()
        self._render()

    def action_cycle_sort(self) -> None:
        if self.selected_tab == "containers":
            self.container_sort = next_container_sort(self.container_sort)
            self.debouncer.touch()
        else:
            self.image_sort = next_image_sort(self.image_sort)
        self._render()

    # Settings changes save the YAML file, so they run off the event loop too
    def action_turbo(self) -> None:
        self._run_toggle(lambda cfg: f"Turbo {'on' if cfg.turbo_mode else 'off'}", self.engine.toggle_turbo)

    def action_refresh_rate(self) -> None:
        self._run_toggle(lambda rate: f"Refresh rate {rate}", self.engine.cycle_refresh_rate)

    def action_perf(self) -> None:
        self._run_toggle(lambda v: f"Perf metrics {'on' if v else 'off'}", self.engine.toggle_perf_metrics)

    def action_auto_scroll(self) -> None:
        self.auto_scroll = not self.auto_scroll
        self._render()

    def action_image_details(self) -> None:
        if self.selected_tab != "images":
            return
        image = self._selected_image()
        if image:
            self.engine.session.show_image(image.id)

    def action_pull(self) -> None:
        if self.selected_tab != "images":
            return

        def answered(name: Optional[str]) -> None:
            if name and self.engine.pull_image(name) is None:
                self._set_message("A pull is already running")

        self.push_screen(InputScreen("Image to pull (e.g. nginx:latest)"), answered)

    def action_remove_image(self) -> None:
        image = self._selected_image() if self.selected_tab == "images" else None
        if not image:
            return

        def answered(answer: Optional[str]) -> None:
            if answer:
                self._run_command(f"Remove image {image.id}", self.engine.remove_image, image.id, answer == "F")

        self.push_screen(ConfirmScreen(f"Remove image {image.id}?", {"F": "Force"}), answered)

    def action_prune(self) -> None:
        if self.selected_tab != "images":
            return

        def answered(answer: Optional[str]) -> None:
            if answer:
                self._run_command("Prune", self.engine.prune_images)

        self.push_screen(ConfirmScreen("Remove all dangling images?"), answered)

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool:
        # If a modal screen is active, app-level bindings must not steal keys.
        if len(self.screen_stack) > 1:
            return False
        return True


def run(config: Optional[ConfigManager] = None) -> None:
    engine = DashboardEngine(config=config)
    app = DockyardApp(engine)
    try:
        app.run()
    finally:
        engine.stop()
