"""
Progress Renderer - live per-file progress in the terminal

Observers receive StreamSnapshot objects from the orchestrator; the renderer
turns each one into a rich table inside a Live display.
"""

from pathlib import Path
from typing import Dict, Optional

from rich.box import ROUNDED
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from codestream.modules.continuation.controller import ContinuationState
from codestream.modules.continuation.generator import GenerationResult
from codestream.modules.streaming.types import FileStatus, StreamSnapshot


LANGUAGE_MAP = {
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.ts': 'typescript',
    '.tsx': 'typescript',
    '.css': 'css',
    '.json': 'json',
    '.md': 'markdown',
    '.sql': 'sql',
    '.html': 'html',
}

STATUS_STYLES = {
    FileStatus.PENDING: ("○", "dim"),
    FileStatus.STREAMING: ("◐", "yellow"),
    FileStatus.COMPLETE: ("●", "green"),
}

BAR_WIDTH = 20


def _bar(percent: int) -> Text:
    filled = int(BAR_WIDTH * percent / 100)
    bar = Text("█" * filled, style="cyan")
    bar.append("░" * (BAR_WIDTH - filled), style="dim")
    bar.append(f" {percent:>3}%")
    return bar


class ProgressRenderer:
    """Renders stream snapshots and the final result"""

    def __init__(self, console: Optional[Console] = None, syntax_theme: str = "monokai"):
        self.console = console or Console()
        self.syntax_theme = syntax_theme
        self._live: Optional[Live] = None
        self._batch = 1

    def __enter__(self) -> "ProgressRenderer":
        self._live = Live(
            Text("Waiting for response...", style="dim"),
            console=self.console,
            refresh_per_second=10,
            transient=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._live is not None:
            self._live.__exit__(exc_type, exc, tb)
            self._live = None

    def on_update(self, snapshot: StreamSnapshot) -> None:
        if self._live is not None:
            self._live.update(self.build_view(snapshot))

    def on_batch(self, state: ContinuationState) -> None:
        self._batch = state.batch_index
        self.console.print(
            f"[cyan]↻ Batch {state.batch_index} merged[/cyan] "
            f"[dim]{len(state.accumulated_files)} files, {len(state.remaining_files)} remaining[/dim]"
        )

    def build_view(self, snapshot: StreamSnapshot) -> Group:
        header = Text()
        header.append(f"{snapshot.status.value}", style="bold")
        header.append(f"  format={snapshot.format.value}", style="dim")
        header.append(f"  chars={snapshot.received_chars}", style="dim")
        header.append(f"  detected={len(snapshot.detected_paths)}", style="dim")
        if self._batch > 1:
            header.append(f"  batch={self._batch}", style="cyan")

        if not snapshot.progress:
            return Group(header)

        table = Table(box=ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("", width=1)
        table.add_column("File")
        table.add_column("Action", style="dim")
        table.add_column("Progress")
        table.add_column("Chars", justify="right", style="dim")

        for path, entry in snapshot.progress.items():
            icon, style = STATUS_STYLES[entry.status]
            table.add_row(
                Text(icon, style=style),
                Text(path, style=style if entry.status != FileStatus.PENDING else ""),
                entry.action.value,
                _bar(entry.percent),
                str(entry.received_chars),
            )

        done = snapshot.completed_count
        footer = Text(f"{done}/{len(snapshot.progress)} complete", style="green" if done else "dim")
        return Group(header, table, footer)

    def render_file(self, path: str, content: str) -> None:
        language = LANGUAGE_MAP.get(Path(path).suffix.lower(), 'text')
        syntax = Syntax(content, language, theme=self.syntax_theme, line_numbers=True, word_wrap=True)
        self.console.print(Panel(syntax, title=f"[bold]{path}[/bold]", border_style="green", padding=(0, 1)))

    def render_result(self, result: GenerationResult, files: Optional[Dict[str, str]] = None) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_row("Format", result.format.value)
        table.add_row("Files", str(len(result.files)))
        table.add_row("Batches", str(result.batches))
        if result.missing_files:
            table.add_row("Missing", ", ".join(result.missing_files))
        if result.deleted_files:
            table.add_row("Deleted", ", ".join(result.deleted_files))
        if result.invalid_files:
            table.add_row("Invalid", ", ".join(result.invalid_files))

        if result.success and not result.partial:
            title, style = "✓ Generation complete", "green"
        elif result.success:
            title, style = "⚠ Partial result", "yellow"
        elif result.cancelled:
            title, style = "■ Cancelled", "yellow"
        else:
            title, style = f"✗ {result.error or 'Generation failed'}", "red"

        body = [table]
        if result.explanation:
            body.append(Text(result.explanation, style="dim"))
        self.console.print(Panel(Group(*body), title=f"[bold]{title}[/bold]", border_style=style))

        for path, content in (files or {}).items():
            self.render_file(path, content)
