"""Click CLI: start a council run from the terminal and poll it to completion."""

import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, EngineConfig, load_config
from council.gateway import ConfigurationError, ModelGateway
from council.healthcheck import run_health_checks
from council.models import HistoryEntry, ModelSpec, RunStage, RunStatus
from council.output import print_turn
from council.pipeline import CouncilPipeline, RunRequest

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_POLL_INTERVAL_SEC = 0.5

_STAGE_DESCRIPTIONS = {
    RunStage.IDLE: "Waiting...",
    RunStage.STAGE1: "Stage 1: collecting answers...",
    RunStage.STAGE2: "Stage 2: peer review...",
    RunStage.STAGE3: "Stage 3: synthesizing...",
    RunStage.COMPLETED: "Completed",
    RunStage.ERROR: "Failed",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # The openai SDK logs every request at INFO through httpx.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _engine_with_overrides(
    engine: EngineConfig,
    models_arg: str | None,
    synthesizer: str | None,
) -> EngineConfig:
    """Apply --models / --synthesizer on top of the configured engine.

    Ids given to --models reuse the configured display name when known.
    """
    models = engine.models
    if models_arg:
        known = {m.id: m for m in engine.models}
        ids = [s.strip() for s in models_arg.split(",") if s.strip()]
        models = [known.get(mid, ModelSpec(id=mid, name=mid)) for mid in ids]
    return replace(engine, models=models, synthesis_model=synthesizer or engine.synthesis_model)


def _load_history(path: str | None) -> list[HistoryEntry]:
    """Read a JSON list of {prompt, response} objects."""
    if not path:
        return []
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise click.BadParameter("history file must contain a JSON list", param_hint="--history")
    return [HistoryEntry(prompt=str(h["prompt"]), response=str(h["response"])) for h in raw]


async def _check_models(gateway: ModelGateway, engine: EngineConfig) -> list[str]:
    """Print health check results. Returns the ids of failing models."""
    console.print("\n[bold]Checking models...[/bold]")
    results = await run_health_checks(gateway, engine)
    failed = []
    for model_id, (ok, err) in results.items():
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {model_id}: {short_err}")
            failed.append(model_id)
    console.print()
    return failed


async def _poll_until_done(pipeline: CouncilPipeline, run_id: str) -> RunStatus:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=100)
        while True:
            status = pipeline.status(run_id)
            if status is None:
                raise RuntimeError(f"Run {run_id} disappeared from the run store")
            progress.update(task, completed=status.progress, description=_STAGE_DESCRIPTIONS[status.stage])
            if status.stage in (RunStage.COMPLETED, RunStage.ERROR):
                return status
            await asyncio.sleep(_POLL_INTERVAL_SEC)


async def _run_ask(config: AppConfig, request: RunRequest, skip_health_check: bool) -> RunStatus:
    gateway = ModelGateway(config.gateway)
    gateway.ensure_credentials()

    if not skip_health_check:
        failed = await _check_models(gateway, request.config)
        if len(failed) == len(request.config.models):
            console.print("[bold red]Error:[/bold red] No models passed the health check.")
            sys.exit(1)
        if failed and not click.confirm("Continue anyway? Failing models will be reported as errors.", default=True):
            sys.exit(0)

    pipeline = CouncilPipeline(gateway, config.prompts, pacing=config.pacing)
    run_id = pipeline.start(request)
    console.print(f"[dim]Run {run_id}[/dim]")
    return await _poll_until_done(pipeline, run_id)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(verbose: bool) -> None:
    """LLM Council -- ask several models, let them peer-review, get one synthesized answer."""
    load_dotenv()
    _setup_logging(verbose)


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("--models", default=None, help="Comma-separated model ids, overrides the configured council")
@click.option("--synthesizer", default=None, help="Model id of the primary synthesizer")
@click.option("--history", "history_file", type=click.Path(exists=True), default=None,
              help="JSON file with prior turns: [{\"prompt\": ..., \"response\": ...}]")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip pinging each model before the run")
def ask(
    prompt: str | None,
    prompt_file: str | None,
    models: str | None,
    synthesizer: str | None,
    history_file: str | None,
    skip_health_check: bool,
) -> None:
    """Run the full council on PROMPT.

    \b
    Examples:
      council-engine ask "What is 2+2?" --skip-health-check
      council-engine ask --file question.md --models openai/gpt-4.1,Phi-4
      council-engine ask "And in base 3?" --history history.json
    """
    if prompt_file:
        prompt = Path(prompt_file).read_text(encoding="utf-8").strip()
    if not prompt or not prompt.strip():
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument or --file.")
        sys.exit(1)

    config = _load_config_or_exit()
    engine = _engine_with_overrides(config.engine, models, synthesizer)
    request = RunRequest(prompt=prompt, config=engine, history=_load_history(history_file))

    console.print(f"\n[bold cyan]LLM Council[/bold cyan] — {len(engine.models)} models")
    console.print(f"Council: {', '.join(m.name for m in engine.models)}")
    console.print(f"Synthesizer: {engine.synthesis_model}\n")

    try:
        status = asyncio.run(_run_ask(config, request, skip_health_check))
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if status.stage == RunStage.ERROR:
        console.print(f"[bold red]Run failed:[/bold red] {status.error}")
        sys.exit(1)

    result = status.result or {}
    print_turn(result["turns"][0])


@main.command()
def check() -> None:
    """Ping every configured model and report which ones respond."""
    config = _load_config_or_exit()
    gateway = ModelGateway(config.gateway)
    try:
        gateway.ensure_credentials()
    except ConfigurationError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    failed = asyncio.run(_check_models(gateway, config.engine))
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
