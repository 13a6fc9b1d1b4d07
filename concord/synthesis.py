"""Judge prompt: full transcript plus the final consensus analysis."""

import logging
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from concord.models import ConsensusAnalysis, Round

logger = logging.getLogger(__name__)


def format_transcript(rounds: Sequence[Round]) -> str:
    """Format all rounds into a single transcript string for the judge."""
    parts: list[str] = []
    for rnd in rounds:
        parts.append(f"### Round {rnd.number}")
        for resp in rnd.responses:
            parts.append(f"**{resp.title}** ({resp.stance.label})\n{resp.content}")
    return "\n\n".join(parts)


def _bullet_or_none(points: Sequence[str]) -> str:
    return "; ".join(points) if points else "None identified"


def build_judge_prompt(
    topic: str,
    rounds: Sequence[Round],
    consensus: ConsensusAnalysis | None,
    prompts: PromptsConfig,
) -> str:
    """Render the synthesis template for the judge backend."""
    if consensus is None:
        level, score_pct, outcome = "none", 0, "not-reached"
        agreed = disputed = stances = "None identified"
    else:
        level = consensus.level.value
        score_pct = round(consensus.score * 100)
        outcome = consensus.consensus_outcome.value
        agreed = _bullet_or_none(consensus.agreed_points)
        disputed = _bullet_or_none(consensus.disputed_points)
        titles = {r.participant_id: r.title for rnd in rounds for r in rnd.responses}
        stances = ", ".join(
            f"{titles.get(pid, pid)}: {stance.label}" for pid, stance in consensus.stance_breakdown.items()
        ) or "None identified"

    prompt = prompts.synthesis.format(
        topic=topic,
        transcript=format_transcript(rounds),
        level=level,
        score_pct=score_pct,
        outcome=outcome,
        agreed=agreed,
        disputed=disputed,
        stances=stances,
    )
    logger.debug("Judge prompt: %d rounds, %d chars", len(rounds), len(prompt))
    return prompt
