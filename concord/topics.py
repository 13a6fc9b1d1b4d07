"""Topic files: markdown with optional YAML front matter carrying debate options."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import frontmatter

from concord.errors import InvalidRequest

logger = logging.getLogger(__name__)

# Front matter key -> DebateConfig field
_CONFIG_KEYS = {
    "rounds": "max_rounds",
    "max_rounds": "max_rounds",
    "mode": "mode",
    "judge": "judge_backend_id",
    "threshold": "consensus_threshold",
    "consensus_mode": "consensus_mode",
    "pruning": "enable_pruning",
    "interjection": "allow_user_interjection",
}


@dataclass
class TopicFile:
    topic: str
    models: list[str] = field(default_factory=list)
    overrides: dict[str, Any] = field(default_factory=dict)
    source: Path | None = None


def _models(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [m.strip() for m in raw.split(",") if m.strip()]
    return [str(m).strip() for m in raw if str(m).strip()]


def parse_topic_file(file_path: Path) -> TopicFile:
    """Parse a topic file.

    Front matter may set ``models`` (comma string or list) and any of the
    keys in ``_CONFIG_KEYS``; unknown keys are logged and ignored.

    Raises:
        InvalidRequest: If the body is empty.
    """
    post = frontmatter.load(str(file_path))
    topic = post.content.strip()
    if not topic:
        raise InvalidRequest(f"Topic file has no body: {file_path}")

    metadata = dict(post.metadata)
    overrides: dict[str, Any] = {}
    for key, value in metadata.items():
        if key == "models":
            continue
        if key in _CONFIG_KEYS:
            overrides[_CONFIG_KEYS[key]] = value
        else:
            logger.info("Ignoring unknown front matter key in %s: %s", file_path.name, key)

    return TopicFile(topic=topic, models=_models(metadata.get("models")), overrides=overrides, source=file_path)
