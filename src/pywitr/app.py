"""pywitr - Interactive Textual viewer of an inspection result."""

from collections.abc import Callable
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Static, Tree

from pywitr.errors import WitrError
from pywitr.models import Result
from pywitr.render import clean, describe_source, render_warnings
from pywitr.watch import Update, Watcher


class SummaryHeader(Static):
    """Header widget showing the target, the queried process and its source."""

    DEFAULT_CSS = """
    SummaryHeader {
        height: auto;
        min-height: 4;
        padding: 1;
        background: $surface;
    }
    """

    def show_result(self, result: Result) -> None:
        self.update(self.format_result(result))

    def show_error(self, error: WitrError) -> None:
        text = f"[red]error:[/red] {clean(str(error))}"
        if error.remediation:
            text += f"\n{clean(error.remediation)}"
        self.update(text)

    @staticmethod
    def format_result(result: Result) -> str:
        """Markup for the header lines."""
        lines = [f"[blue]Target[/blue]  : {clean(result.target.kind.value)} {clean(result.target.value)}"]
        proc = result.process
        if proc is not None:
            lines.append(f"[blue]Process[/blue] : [green]{clean(proc.command)}[/green] (pid {proc.pid})")
        elif result.docker_match is not None:
            lines.append(f"[blue]Container[/blue]: [green]{clean(result.docker_match.name)}[/green]")
        lines.append(f"[cyan]Source[/cyan]  : {clean(describe_source(result.source))}")
        return "\n".join(lines)


class AncestryTree(Container):
    """Container for the ancestry tree, root process at the top."""

    DEFAULT_CSS = """
    AncestryTree {
        height: 1fr;
        border: solid $primary;
    }
    """

    def compose(self) -> ComposeResult:
        yield Tree("ancestry", id="ancestry-tree")

    def show_result(self, result: Result) -> None:
        """Rebuild the tree from ``result``."""
        tree = self.query_one("#ancestry-tree", Tree)
        tree.clear()
        tree.root.expand()
        node = tree.root
        for proc in result.ancestry:
            label = f"{clean(proc.command)} (pid {proc.pid})"
            if proc is result.process:
                label = f"[bold green]{label}[/bold green]"
            node = node.add(label, expand=True, data=proc.pid)
        for child in result.children:
            node.add_leaf(f"[dim]{clean(child.command)} (pid {child.pid})[/dim]", data=child.pid)
        if result.docker_match is not None and not result.ancestry:
            node.add_leaf("Docker Desktop (process not visible in current namespace)")


class WarningsPanel(Static):
    """Warnings produced by the rule engine."""

    DEFAULT_CSS = """
    WarningsPanel {
        height: auto;
        max-height: 12;
        padding: 0 1;
        border: solid $warning;
    }
    """

    def show_result(self, result: Result) -> None:
        self.update(render_warnings(result))


class WitrApp(App):
    """Main pywitr viewer application."""

    TITLE = "pywitr"
    SUB_TITLE = "Why is this running?"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary {
        dock: top;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        result: Result | None = None,
        inspect_fn: Callable[[], Result] | None = None,
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the WitrApp.

        Args:
            result: Result to show immediately.
            inspect_fn: When given, the result is refreshed in the
                background every ``poll_rate`` seconds.
            poll_rate: Refresh interval in seconds.
        """
        super().__init__()
        self._result = result
        self._update_queue: Queue[Update] = Queue()
        self._watcher = Watcher(inspect_fn, self._update_queue, poll_rate) if inspect_fn else None

    @property
    def result(self) -> Result | None:
        return self._result

    def compose(self) -> ComposeResult:
        yield SummaryHeader("Inspecting...", id="summary")
        yield AncestryTree()
        yield WarningsPanel(id="warnings")
        yield Footer()

    def on_mount(self) -> None:
        if self._result is not None:
            self._show(self._result)
        if self._watcher is not None:
            self._watcher.start()
            self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent outcome."""
        update = None
        while True:
            try:
                update = self._update_queue.get_nowait()
            except Empty:
                break
        if isinstance(update, WitrError):
            self.query_one(SummaryHeader).show_error(update)
        elif update is not None:
            self._show(update)

    def _show(self, result: Result) -> None:
        self._result = result
        self.query_one(SummaryHeader).show_result(result)
        self.query_one(AncestryTree).show_result(result)
        self.query_one(WarningsPanel).show_result(result)

    def action_refresh(self) -> None:
        if self._watcher is None:
            self.notify("Live refresh is not enabled")
            return
        self._watcher.trigger()

    def action_quit(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
        self.exit()
