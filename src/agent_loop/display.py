# display.py
# All terminal output for the agent loop.
#
# This module owns presentation entirely. harness.py never formats strings;
# it calls named functions here. Log records are routed through the same
# console so they interleave cleanly with the panels.
#
# Colour language:
#   cyan    scaffolding / run events
#   blue    planned steps
#   yellow  loop hints and recoverable failures
#   green   success / completion
#   red     halts and fatal statuses

import json
import logging
from typing import Any

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from agent_loop.models import RunResult, RunStatus, Step, ToolCallInstruction

console = Console()

STATUS_COLORS = {
    RunStatus.COMPLETED: "green",
    RunStatus.STEP_LIMIT_REACHED: "yellow",
    RunStatus.SESSION_ERROR: "red",
    RunStatus.FATAL_TOOL_ERROR: "red",
}


def setup_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


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


def _compact(value: Any, max_len: int = 120) -> str:
    if isinstance(value, str):
        return escape(_mono(value, max_len))
    return escape(_mono(json.dumps(value, ensure_ascii=False, default=str), max_len))


def _instruction(step: Step) -> str:
    if isinstance(step.instruction, ToolCallInstruction):
        return f"{escape(step.instruction.tool_name)} {_compact(step.instruction.params, 80)}"
    return escape(_mono(step.instruction, 100))


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(model: str, automation_mode: str, tool_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Agent Loop[/bold cyan]\n"
            "[dim]Step-by-step goal execution with tools and browser sessions[/dim]\n\n"
            f"[dim]Model      :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Automation :[/dim] [white]{escape(automation_mode)}[/white]\n"
            f"[dim]Tools      :[/dim] [white]{tool_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def run_started(goal: str, session_id: str, max_steps: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]NEW RUN · session {escape(session_id)} · up to {max_steps} steps[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(goal)}[/white]",
            title=_label("GOAL", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def step_planned(step: Step, max_steps: int) -> None:
    console.print()
    console.print(
        f"[bold blue]  STEP [{step.sequence_number}/{max_steps}][/bold blue]  "
        f"[bold white]{step.kind.value}[/bold white]  [white]{escape(step.action)}[/white]"
    )
    if step.rationale:
        console.print(f"  [blue]Why[/blue]      [dim white]{escape(_mono(step.rationale, 200))}[/dim white]")
    console.print(f"  [blue]Do[/blue]       [dim]{_instruction(step)}[/dim]")


def step_result(step: Step) -> None:
    result = step.result
    if result is None:
        return
    if result.success:
        console.print(f"  [bold green]✓ Result[/bold green] [white]{_compact(result.payload, 140)}[/white]")
    elif result.loop_detected:
        console.print(f"  [bold yellow]⟳ Blocked[/bold yellow] [yellow]{escape(_mono(result.error or '', 140))}[/yellow]")
    else:
        kind = result.error_kind.value if result.error_kind else "error"
        console.print(f"  [bold yellow]✗ {escape(kind)}[/bold yellow] [white]{escape(_mono(result.error or '', 140))}[/white]")


def loop_hint(tool: str, count: int) -> None:
    console.print(
        f"  [yellow]↳ {escape(repr(tool))} used {count} times in a row; "
        "adding a loop-prevention hint to the next request.[/yellow]"
    )


# ---------------------------------------------------------------------------
# Tool catalogue
# ---------------------------------------------------------------------------


def tool_catalogue(catalogue: dict[str, Any]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Tool", style="bold white")
    table.add_column("Category", style="cyan", width=16)
    table.add_column("Description", style="white")

    for tool in catalogue["tools"]:
        table.add_row(escape(tool["name"]), escape(tool["category"]), escape(tool["description"]))

    console.print(
        Panel(
            table,
            title=_label("TOOLS", "cyan"),
            subtitle=f"[dim]{catalogue['total_count']} tools[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def run_summary(result: RunResult) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Kind", width=14)
    table.add_column("OK", justify="center", width=4)
    table.add_column("Outcome", style="dim white")

    for step in result.steps:
        ok = step.result is not None and step.result.success
        mark = "[bold green]✓[/bold green]" if ok else "[bold red]✗[/bold red]"
        if step.result is None:
            outcome = ""
        elif ok:
            outcome = _compact(step.result.payload, 60)
        else:
            outcome = escape(_mono(step.result.error or "", 60))
        table.add_row(str(step.sequence_number), escape(step.tool), mark, outcome)

    console.print(
        Panel(
            table,
            title="[dim]RUN SUMMARY[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


def run_finished(result: RunResult) -> None:
    color = STATUS_COLORS[result.status]
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result.message)}[/white]",
            title=_label(result.status.value.upper(), color),
            subtitle=f"[dim]{len(result.steps)} step(s)[/dim]",
            border_style=color,
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
