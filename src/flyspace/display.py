# display.py
# All terminal output for the flyspace run engine.
#
# This module owns presentation entirely. The engine never formats strings;
# it calls named functions here. Swap this file to change the entire UI.
#
# Colour language:
#   cyan    — server / routing events
#   blue    — runs starting and finishing
#   magenta — capability calls (act / extract / observe / goto)
#   yellow  — waiting on the operator
#   green   — success / confirmed
#   red     — crashes, rejected commands, transport errors

from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from flyspace.models import ExportDetails

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _short(entity_id: str | None) -> str:
    return (entity_id or "-")[-8:]


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def banner(host: str, port: int, scripts_dir: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]flyspace[/bold cyan]\n"
            "[dim]Live, editable instrumentation for AI browser scripts[/dim]\n\n"
            f"[dim]Listening :[/dim] [white]ws://{host}:{port}[/white]\n"
            f"[dim]Scripts   :[/dim] [white]{scripts_dir}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def scripts_discovered(files: dict[str, ExportDetails]) -> None:
    console.print()
    if not files:
        console.print(_label("DISCOVERY", "cyan"), "[yellow] No runnable scripts found.[/yellow]")
        return

    table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan", padding=(0, 1))
    table.add_column("File", style="white")
    table.add_column("Entry points", style="bold white")
    for path, details in sorted(files.items()):
        table.add_row(path, ", ".join(details.matching_exports))
    console.print(Panel(table, title=_label("DISCOVERY", "cyan"), border_style="cyan", padding=(0, 1)))


def script_skipped(path: str, reason: str) -> None:
    console.print(f"  [yellow]↳ skipped[/yellow] [white]{path}[/white] [dim]{_mono(reason, 100)}[/dim]")


def settings_invalid(exc: ValidationError) -> None:
    lines = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"])
        message = f"{field}: {error['msg']}" if field else error["msg"]
        lines.append(f"[white]{escape(message)}[/white]")

    console.print()
    console.print(
        Panel(
            "\n".join(lines),
            title=_label("CONFIG ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def model_not_recommended(model_name: str, alternatives: list[str]) -> None:
    console.print(
        _label("CONFIG", "yellow"),
        f"[yellow] {model_name} is not recommended due to its low parameter count. "
        f"Consider using {' or '.join(alternatives)} instead.[/yellow]",
    )


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def run_started(run_id: str, file: str, export_name: str) -> None:
    console.print()
    console.print(Rule(f"[blue]RUN {_short(run_id)}[/blue]", style="blue"))
    console.print(_label("RUN", "blue"), f"[blue] {file}[/blue] [bold white]{export_name}()[/bold white]")


def run_completed(run_id: str) -> None:
    console.print()
    console.print(_label("RUN", "green"), f"[bold green] ✓ Run {_short(run_id)} completed.[/bold green]")


def run_crashed(run_id: str, exc: BaseException) -> None:
    """Call from inside the except block so the traceback is available."""
    console.print()
    console.print(
        Panel(
            f"[bold red]Run {_short(run_id)} crashed.[/bold red]\n\n[white]{type(exc).__name__}: {exc}[/white]",
            title=_label("RUN CRASHED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print_exception(max_frames=8)


def trigger_rejected(file: str, reason: str) -> None:
    console.print(_label("TRIGGER", "red"), f"[red] {file}: {reason}[/red]")


# ---------------------------------------------------------------------------
# Capability calls
# ---------------------------------------------------------------------------


def goto_started(url: str) -> None:
    console.print(f"  [magenta]goto[/magenta]     [white]{_mono(url)}[/white]")


def goto_completed(url: str) -> None:
    console.print(f"  [bold green]✓ loaded[/bold green] [dim]{_mono(url)}[/dim]")


def step_started(step_type: str, prompt: str) -> None:
    console.print(f"  [magenta]{step_type:<8}[/magenta] [white]{_mono(prompt, 140)}[/white]")


def eval_completed(result: str) -> None:
    console.print(f"  [magenta]result[/magenta]   [dim white]{_mono(result, 140)}[/dim white]")


def capability_failed(capability: str, exc: BaseException) -> None:
    console.print(f"  [bold red]✗ {capability} failed:[/bold red] [white]{_mono(str(exc), 160)}[/white]")


def step_awaiting_operator(step_type: str, step_id: str) -> None:
    console.print(
        _label("OPERATOR", "yellow"),
        f"[yellow] {step_type} step {_short(step_id)} is idle: replay with a new prompt or advance.[/yellow]",
    )


def replay_started(prompt: str) -> None:
    console.print(f"  [yellow]↻ replay[/yellow] [white]{_mono(prompt, 140)}[/white]")


def step_completed(step_type: str, final_eval_id: str) -> None:
    console.print(
        f"  [bold green]✓ {step_type} accepted[/bold green]  [dim]final eval {_short(final_eval_id)}[/dim]"
    )


# ---------------------------------------------------------------------------
# Screencast
# ---------------------------------------------------------------------------


def relay_started(image_format: str, quality: int) -> None:
    console.print(_label("SCREENCAST", "cyan"), f"[cyan] streaming {image_format} frames (quality {quality})[/cyan]")


def relay_stopped() -> None:
    console.print(_label("SCREENCAST", "cyan"), "[cyan] stopped[/cyan]")


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def client_connected(remote: str) -> None:
    console.print(_label("SERVER", "cyan"), f"[cyan] client connected[/cyan] [dim]{remote}[/dim]")


def client_disconnected(remote: str) -> None:
    console.print(_label("SERVER", "cyan"), f"[cyan] client disconnected[/cyan] [dim]{remote}[/dim]")


def transport_error(method: str, exc: BaseException) -> None:
    console.print(
        _label("SERVER", "red"),
        f"[red] Error in handler '{method}':[/red] [white]{type(exc).__name__}: {_mono(str(exc), 160)}[/white]",
    )
