"""Prompt assembly for debate turns, with a token budget on the history block."""

import logging
import math
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from concord.models import Participant, Response

logger = logging.getLogger(__name__)

_TOKENS_PER_WORD = 1.3


def estimate_tokens(text: str) -> int:
    """Rough token estimate: 1.3 tokens per whitespace-separated word."""
    return math.ceil(len(text.split()) * _TOKENS_PER_WORD)


def _full_block(round_number: int, response: Response) -> str:
    return (
        f"**{response.title}** (Round {round_number}, {response.stance.label}):\n"
        f"{response.content}"
    )


def _condensed_block(round_number: int, response: Response) -> str:
    points = "\n".join(f"- {p}" for p in response.key_points) or "- (no key points extracted)"
    return f"**{response.title}** (Round {round_number}, {response.stance.label}, condensed):\n{points}"


def render_history(entries: Sequence[tuple[int, Response]], max_tokens: int) -> str:
    """Render prior responses, condensing the oldest first to fit ``max_tokens``.

    Responses are condensed whole (stance plus key points) rather than cut, so
    no block ever ends mid-sentence. The newest response is condensed last and
    only if everything older is already condensed and the total is still over.
    """
    if not entries:
        return ""

    blocks = [_full_block(n, r) for n, r in entries]
    sizes = [estimate_tokens(b) for b in blocks]
    total = sum(sizes)

    condensed = 0
    for i in range(len(entries)):
        if total <= max_tokens:
            break
        round_number, response = entries[i]
        blocks[i] = _condensed_block(round_number, response)
        new_size = estimate_tokens(blocks[i])
        total += new_size - sizes[i]
        sizes[i] = new_size
        condensed += 1

    if condensed:
        logger.debug(
            "History condensed: %d/%d responses, ~%d tokens (budget %d)",
            condensed,
            len(entries),
            total,
            max_tokens,
        )
    return "\n\n".join(blocks)


def _context_block(interjections: Sequence[str]) -> str:
    if not interjections:
        return ""
    lines = "\n".join(f"- {text}" for text in interjections)
    return f"\n## Additional Context From The User\n\n{lines}\n"


def build_system_prompt(participant: Participant, prompts: PromptsConfig) -> str:
    """Participant's own system prompt, else the shared one with its persona."""
    if participant.system_prompt:
        return participant.system_prompt
    persona = prompts.personas.get(participant.backend_id, "")
    persona_block = f"\nPerspective: {persona}\n" if persona else ""
    return prompts.participant_system.format(title=participant.title, persona_block=persona_block)


def build_turn_prompt(
    topic: str,
    prompts: PromptsConfig,
    round_number: int,
    history: Sequence[tuple[int, Response]],
    interjections: Sequence[str] = (),
    max_tokens: int = 8000,
) -> str:
    """Opening prompt when nothing has been said yet, else the critique prompt."""
    context = _context_block(interjections)
    if not history:
        return prompts.initial.format(topic=topic, context=context)
    return prompts.critique.format(
        topic=topic,
        context=context,
        round=round_number,
        history=render_history(history, max_tokens),
    )
