"""Rich console output for a completed council turn (the serialized payload stored on the run)."""

import logging
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_stage1_summary(responses: list[dict[str, Any]]) -> None:
    """Print a brief panel per Stage 1 answer."""
    console.print(Rule("[bold cyan]Stage 1: Independent Answers[/bold cyan]"))
    for resp in responses:
        if resp.get("error") is not None:
            body = Text(f"Failed: {resp['error']}", style="red")
            border = "red"
        else:
            body = Text(_preview(resp["content"]))
            border = "dim"
        console.print(
            Panel(
                body,
                title=f"[bold]{resp['label']}[/bold] | {resp['model_name']}",
                subtitle=resp["model_id"],
                border_style=border,
            )
        )


def format_review_table(reviews: list[dict[str, Any]], names: dict[str, str]) -> Table:
    """Reviewer -> ranking and mean score per reviewed model."""
    table = Table(title="Stage 2: Peer Review", show_lines=True)
    table.add_column("Reviewer", style="bold")
    table.add_column("Ranking (best first)")
    table.add_column("Mean score")
    for rev in reviews:
        review = rev["review_json"]
        means = ", ".join(
            f"{name}: {(s['accuracy'] + s['insight'] + s['clarity']) / 3:.1f}"
            for name, s in review["scores"].items()
        )
        table.add_row(
            names.get(rev["reviewer_model_id"], rev["reviewer_model_id"]),
            " > ".join(review["ranking"]) or "-",
            means or "-",
        )
    return table


def print_turn(turn: dict[str, Any]) -> None:
    """Print Stage 1 panels, the review table and the final synthesis."""
    stage1 = turn["stage1_responses"]
    print_stage1_summary(stage1)

    reviews = turn["stage2_reviews"]
    if reviews:
        names = {r["model_id"]: r["model_name"] for r in stage1}
        console.print(format_review_table(reviews, names))
    else:
        console.print("[yellow]No peer reviews were collected.[/yellow]")

    console.print(Rule("[bold green]Council Synthesis[/bold green]"))
    console.print(Text(f"Synthesized by: {turn['synthesizer_model_id']}", style="dim"))
    console.print(Markdown(turn["synthesis_response"]))
