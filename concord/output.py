"""Rich console rendering of debate events and the markdown report file."""

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from concord.consensus import quick_check
from concord.events import (
    ConsensusUpdated,
    DebateCancelled,
    DebateComplete,
    DebateError,
    Event,
    JudgingStarted,
    ParticipantFailed,
    ParticipantPruned,
    RoundComplete,
    RoundStarted,
    UserInterjectionRequested,
)
from concord.metrics import DebateMetrics
from concord.models import ConsensusAnalysis, DebateRunState, Response

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_LEVEL_STYLES = {
    "unanimous": "bold green",
    "strong": "green",
    "partial": "yellow",
    "low": "red",
    "none": "bold red",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _response_preview(response: Response, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = response.content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def consensus_line(consensus: ConsensusAnalysis) -> Text:
    level = consensus.level.value
    return Text(
        f"Consensus {consensus.score:.0%} ({level}) | outcome: {consensus.consensus_outcome.value} | "
        f"weighted support {consensus.influence.weighted_support_ratio:.0%} | "
        f"next: {consensus.recommendation.value}",
        style=_LEVEL_STYLES.get(level, ""),
    )


def live_consensus(responses: Sequence[Response]) -> str:
    """One-line stance tally for the progress display while a round is in flight."""
    score, level = quick_check(responses)
    return f"{len(responses)} responded, stance agreement {score:.0%} ({level.value})"


def print_round(rnd_number: int, responses: tuple[Response, ...]) -> None:
    """Print a brief summary of round responses to the console."""
    console.print(Rule(f"[bold cyan]Round {rnd_number} Summary[/bold cyan]"))
    for resp in responses:
        console.print(
            Panel(
                _response_preview(resp),
                title=f"[bold]{resp.title}[/bold] ({resp.backend_id})",
                subtitle=f"{resp.stance.label} | {resp.confidence:.0%} | {resp.duration_ms / 1000:.1f}s",
                border_style="dim",
            )
        )


def print_event(event: Event) -> None:
    """Console renderer suitable for ``DebateOrchestrator.subscribe``."""
    if isinstance(event, RoundStarted):
        console.print(f"[cyan]Round {event.round_number} started[/cyan]")
    elif isinstance(event, ParticipantFailed):
        console.print(f"[yellow]{event.participant_id} failed:[/yellow] {event.error}")
    elif isinstance(event, RoundComplete):
        print_round(event.round.number, event.round.responses)
    elif isinstance(event, ConsensusUpdated):
        console.print(consensus_line(event.consensus))
    elif isinstance(event, ParticipantPruned):
        console.print(f"[dim]Pruned {event.title}: {event.reason}[/dim]")
    elif isinstance(event, UserInterjectionRequested):
        console.print("[bold yellow]Disputes persist; waiting for input.[/bold yellow]")
    elif isinstance(event, JudgingStarted):
        console.print("[bold]Judge is synthesizing...[/bold]")
    elif isinstance(event, DebateComplete):
        console.print(Rule("[bold green]Final Verdict[/bold green]"))
        console.print(Markdown(event.final_answer))
    elif isinstance(event, DebateError):
        console.print(f"[bold red]Debate failed:[/bold red] {event.error}")
    elif isinstance(event, DebateCancelled):
        console.print("[yellow]Debate cancelled.[/yellow]")


def print_metrics(metrics: DebateMetrics) -> None:
    table = Table(title="Participants", show_lines=False)
    table.add_column("Participant")
    table.add_column("Backend")
    table.add_column("Responses", justify="right")
    table.add_column("Missed", justify="right")
    table.add_column("Avg influence", justify="right")
    table.add_column("Avg latency", justify="right")
    for p in metrics.participants:
        title = p.title + (f" (pruned r{p.pruned_at_round})" if p.pruned_at_round else "")
        table.add_row(
            title,
            p.backend_id,
            str(p.responses),
            str(p.missed_rounds),
            f"{p.mean_influence:.0%}",
            f"{p.mean_duration_ms / 1000:.1f}s",
        )
    console.print(table)
    console.print(
        Text(
            f"Rounds: {metrics.rounds} | Duration: {metrics.duration_sec:.1f}s | "
            f"Final consensus: {metrics.final_score:.0%} ({metrics.final_level.value})",
            style="dim",
        )
    )


def render_report(state: DebateRunState, metrics: DebateMetrics) -> str:
    """Markdown transcript of the debate, its consensus and the verdict."""
    config = state.config
    lines: list[str] = [
        f"# Concord Debate: {state.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Panel:** {', '.join(f'{p.title} ({p.backend_id})' for p in state.participants)}",
        f"**Judge:** {config.judge_backend_id}",
        f"**Mode:** {config.mode.value}, {config.consensus_mode.value} consensus",
        f"**Rounds:** {metrics.rounds} of {config.max_rounds}",
        f"**Duration:** {metrics.duration_sec:.1f}s",
        f"**Status:** {state.status.value}",
        "",
        "---",
        "",
    ]

    for rnd in state.rounds:
        lines.append(f"## Round {rnd.number}")
        lines.append("")
        for resp in rnd.responses:
            lines.append(f"### {resp.title} ({resp.backend_id})")
            lines.append("")
            lines.append(resp.content)
            lines.append("")
            lines.append(
                f"*Stance: {resp.stance.label} | Confidence: {resp.confidence:.0%} | "
                f"Influence: {resp.effective_influence:.0%} | Latency: {resp.duration_ms / 1000:.2f}s*"
            )
            lines.append("")
        missed = state.non_responders.get(rnd.number)
        if missed:
            lines.append(f"*No response from: {', '.join(missed)}*")
            lines.append("")
        c = rnd.consensus_at_end
        lines.append(
            f"**Consensus:** {c.score:.0%} ({c.level.value}), outcome {c.consensus_outcome.value}, "
            f"trend {c.trend.value}, next step {c.recommendation.value}"
        )
        lines.append("")

    if state.pruned_participants:
        lines.append("## Pruned Participants")
        lines.append("")
        for p in state.pruned_participants:
            lines.append(f"- {p.title} (round {p.pruned_at_round}): {p.reason}")
        lines.append("")

    if state.consensus:
        c = state.consensus
        lines += ["## Consensus", ""]
        if c.proposal_convergence.leading_proposal:
            lines.append(
                f"**Leading proposal** ({c.proposal_convergence.support_ratio:.0%} support): "
                f"{c.proposal_convergence.leading_proposal}"
            )
            lines.append("")
        for heading, points in (("Agreed", c.agreed_points), ("Disputed", c.disputed_points), ("Unclear", c.unclear_points)):
            if points:
                lines.append(f"**{heading}:**")
                lines.extend(f"- {p}" for p in points)
                lines.append("")

    if state.final_answer:
        lines += ["## Verdict", "", state.final_answer, ""]
    elif state.error:
        lines += ["## Error", "", state.error, ""]

    return "\n".join(lines)


def save_to_file(
    state: DebateRunState,
    metrics: DebateMetrics,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save the full debate transcript as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(state.topic)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    filepath.write_text(render_report(state, metrics), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
