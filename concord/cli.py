"""Click CLI: loads config, builds backends and participants, runs one debate."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, DebateConfig, ModelConfig, load_config
from concord.breaker import BackendRegistry
from concord.errors import InvalidRequest
from concord.events import (
    Event,
    InjectMessage,
    JudgingStarted,
    ParticipantResponded,
    ParticipantThinking,
    Resume,
    RoundStarted,
    Start,
    UserInterjectionRequested,
)
from concord.healthcheck import run_health_checks
from concord.invocation import Invoker
from concord.metrics import compute_metrics
from concord.models import DebateRunState, DebateStatus, Participant, Response
from concord.orchestrator import DebateOrchestrator
from concord.output import console, live_consensus, print_event, print_metrics, save_to_file
from concord.providers.anthropic import AnthropicBackend
from concord.providers.base import Backend, ProviderError
from concord.providers.gemini import GeminiBackend
from concord.providers.openai_provider import OpenAIBackend
from concord.providers.subprocess_cli import SubprocessCLIBackend
from concord.providers.xai import XAIBackend
from concord.routing import is_auto
from concord.topics import parse_topic_file

logger = logging.getLogger(__name__)

BACKEND_CLASSES: dict[str, type[Backend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
    "google": GeminiBackend,
    "xai": XAIBackend,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_backend(model_cfg: ModelConfig, config: AppConfig) -> Backend:
    if model_cfg.sdk == "cli":
        return SubprocessCLIBackend(model_cfg, kill_grace_sec=config.invocation.kill_grace_sec)
    if model_cfg.sdk not in BACKEND_CLASSES:
        raise ProviderError(model_cfg.name, f"Unknown sdk '{model_cfg.sdk}'")
    return BACKEND_CLASSES[model_cfg.sdk](model_cfg)


def build_backends(config: AppConfig) -> dict[str, Backend]:
    """Build all available backends. Returns dict keyed by backend id."""
    backends: dict[str, Backend] = {}
    for name in sorted(config.available_providers):
        try:
            backends[name] = _build_backend(config.models[name], config)
        except ProviderError as exc:
            logger.warning("Failed to instantiate backend '%s': %s", name, exc)
    return backends


def build_participants(panel: list[str], backends: dict[str, Backend]) -> list[Participant]:
    """One participant per panel entry; the same backend may appear twice."""
    participants: list[Participant] = []
    for i, backend_id in enumerate(panel, start=1):
        if backend_id in backends:
            title = f"{backend_id} ({backends[backend_id].model_string()})"
        elif is_auto(backend_id):
            title = "Auto-routed"
        else:
            logger.warning("Backend '%s' unavailable, leaving it out of the panel", backend_id)
            continue
        participants.append(Participant(session_id=f"p{i}-{backend_id}", backend_id=backend_id, title=title))
    return participants


def pick_judge(preferred: str, backends: dict[str, Backend], panel: list[str]) -> str:
    """Preferred judge if available, else a non-participant, else any backend."""
    if preferred in backends or is_auto(preferred):
        return preferred
    outside = [b for b in backends if b not in panel]
    if outside:
        return outside[0]
    return next(iter(backends))


def _check_and_filter_backends(backends: dict[str, Backend]) -> dict[str, Backend]:
    """Run health checks, print results, and ask the user what to do on failures."""
    console.print("\n[bold]Checking backends...[/bold]")
    results = asyncio.run(run_health_checks(backends))

    failed: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed.append(name)

    if not failed:
        console.print()
        return backends

    working = {n: b for n, b in backends.items() if n not in failed}
    if not working:
        console.print("\n[bold red]Error:[/bold red] No backends passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed)} backend(s) failed:[/yellow] {', '.join(failed)}")
    if not click.confirm("Continue with working backends only?", default=True):
        sys.exit(0)
    console.print()
    return working


async def _run_debate(
    orchestrator: DebateOrchestrator,
    topic: str,
    participants: list[Participant],
    debate_config: DebateConfig,
) -> DebateRunState:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting debate...", total=None)
        titles = {p.session_id: p.title for p in participants}
        in_round: list[Response] = []

        def on_event(event: Event) -> None:
            if isinstance(event, RoundStarted):
                in_round.clear()
                progress.update(task, description=f"Round {event.round_number}...")
            elif isinstance(event, ParticipantResponded):
                in_round.append(event.response)
                progress.update(task, description=f"{event.response.title}: {live_consensus(in_round)}")
            elif isinstance(event, ParticipantThinking):
                progress.update(task, description=f"Waiting for {titles.get(event.participant_id, event.participant_id)}...")
            elif isinstance(event, JudgingStarted):
                progress.update(task, description="Running judge...")
            print_event(event)

        unsubscribe = orchestrator.subscribe(on_event)
        events = orchestrator.stream()
        try:
            await orchestrator.dispatch(Start(topic=topic, participants=tuple(participants), config=debate_config))
            async for event in events:
                if isinstance(event, UserInterjectionRequested):
                    progress.stop()
                    text = await asyncio.to_thread(
                        click.prompt, "Add context for the next round (empty to continue)", default="", show_default=False
                    )
                    progress.start()
                    await orchestrator.dispatch(InjectMessage(text) if text.strip() else Resume())
            await orchestrator.join()
        finally:
            unsubscribe()
    return orchestrator.state


@click.command()
@click.argument("topic", required=False)
@click.option("--file", "topic_file", type=click.Path(exists=True), help="Read the topic from a .md file")
@click.option("--models", default=None, help="Comma-separated backend ids (use 'auto' for routed seats)")
@click.option("--rounds", default=None, type=int, help="Maximum debate rounds (default: from config)")
@click.option("--mode", type=click.Choice(["sequential", "parallel"]), default=None, help="Turn order within a round")
@click.option("--consensus-mode", type=click.Choice(["majority", "weighted", "unanimous"]), default=None)
@click.option("--judge", default=None, help="Backend that writes the final verdict (default: from config)")
@click.option("--pruning/--no-pruning", default=None, help="Drop participants that repeat another")
@click.option("--interactive", is_flag=True, default=False, help="Ask for input when disputes persist")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the connectivity check at startup")
def main(
    topic: str | None,
    topic_file: str | None,
    models: str | None,
    rounds: int | None,
    mode: str | None,
    consensus_mode: str | None,
    judge: str | None,
    pruning: bool | None,
    interactive: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Concord -- multi-model debate with algorithmic consensus.

    \b
    Examples:
      concord "Should we use REST or GraphQL?"
      concord "Monorepo vs polyrepo?" --models claude,openai,gemini --mode parallel
      concord "SQL or NoSQL?" --models auto,claude --rounds 4 --interactive
      concord --file topic.md
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, InvalidRequest) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    overrides: dict = {}
    file_models: list[str] = []
    slug_override: str | None = None
    if topic_file:
        parsed = parse_topic_file(Path(topic_file))
        topic_text = parsed.topic
        overrides.update(parsed.overrides)
        file_models = parsed.models
        slug_override = Path(topic_file).stem
    elif topic:
        topic_text = topic
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --file.")
        sys.exit(1)

    # CLI flags win over front matter, front matter over settings.yaml
    cli_overrides = {
        "max_rounds": rounds,
        "mode": mode,
        "consensus_mode": consensus_mode,
        "judge_backend_id": judge,
        "enable_pruning": pruning,
        "allow_user_interjection": True if interactive else None,
    }
    overrides.update({k: v for k, v in cli_overrides.items() if v is not None})

    backends = build_backends(config)
    if not backends:
        console.print("[bold red]Error:[/bold red] No backends available. Check API keys in .env or CLI installs.")
        sys.exit(1)
    if not skip_health_check:
        backends = _check_and_filter_backends(backends)

    panel = [m.strip() for m in models.split(",")] if models else (file_models or config.defaults.panel)
    participants = build_participants(panel, backends)
    if len(participants) < 2:
        console.print(
            f"[bold red]Error:[/bold red] Need at least 2 participants, got {len(participants)}. "
            "Check API keys in .env or adjust --models."
        )
        sys.exit(1)

    try:
        debate_config = config.defaults.debate.with_overrides(**overrides)
    except (InvalidRequest, ValueError) as exc:
        console.print(f"[bold red]Invalid options:[/bold red] {exc}")
        sys.exit(1)
    judge_id = pick_judge(debate_config.judge_backend_id, backends, panel)
    if judge_id != debate_config.judge_backend_id:
        logger.info("Judge '%s' unavailable, using '%s'", debate_config.judge_backend_id, judge_id)
        debate_config = debate_config.with_overrides(judge_backend_id=judge_id)

    registry = BackendRegistry(
        failure_threshold=config.invocation.failure_threshold,
        cooldown_sec=config.invocation.cooldown_sec,
    )
    invoker = Invoker(
        backends,
        registry=registry,
        routing=config.routing,
        correction_template=config.prompts.correction,
        timeout_sec=config.invocation.timeout_sec,
    )
    orchestrator = DebateOrchestrator(invoker, config.prompts, config=debate_config)

    console.print(
        f"\n[bold cyan]Concord[/bold cyan] - {len(participants)} participants, up to "
        f"{debate_config.max_rounds} rounds [{debate_config.mode.value}]"
    )
    console.print(f"Panel: {', '.join(p.title for p in participants)}")
    console.print(f"Judge: {debate_config.judge_backend_id}")
    console.print(f"Topic: [italic]{topic_text[:80]}{'...' if len(topic_text) > 80 else ''}[/italic]\n")

    try:
        state = asyncio.run(_run_debate(orchestrator, topic_text, participants, debate_config))
    except InvalidRequest as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    metrics = compute_metrics(state)
    print_metrics(metrics)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    saved_path = save_to_file(state, metrics, output_dir, slug_override=slug_override)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")

    if state.status != DebateStatus.COMPLETE:
        sys.exit(1)


if __name__ == "__main__":
    main()
