"""Heuristic extraction of stance, confidence and points from free-text responses."""

import re

from concord.models import Stance

_STRUCTURED_STANCE = re.compile(r"(?:^|\n)\s*(?:\*\*)?stance(?:\*\*)?\s*[:\-][ \t]*(?:\*\*)?[ \t]*([a-z_ \t-]+)", re.IGNORECASE)
_STRUCTURED_CONFIDENCE = re.compile(r"confidence(?:\*\*)?\s*[:\-]?\s*(?:\*\*)?\s*(\d{1,3})\s*%", re.IGNORECASE)

_LIST_PATTERNS = [
    re.compile(r"\d+\.\s*\*\*([^*]+)\*\*"),
    re.compile(r"\d+\.\s+([^\n]+)"),
    re.compile(r"[-•]\s*\*\*([^*]+)\*\*"),
    re.compile(r"[-•]\s+([^\n]+)"),
]
_KEY_POINTS_SECTION = re.compile(r"key points?:?\s*([\s\S]*?)(?=\n\n|\n#|$)", re.IGNORECASE)
_SECTION_HEADING = re.compile(r"^\s*(?:\*\*)?([a-z_ ]+?)(?:\*\*)?\s*:\s*(.*)$", re.IGNORECASE)

_AGREEMENT_PATTERNS = [
    re.compile(r"i agree (?:with|that) ([^.\n]+)", re.IGNORECASE),
    re.compile(r"(?:agree|concur) (?:with|on) ([^.\n]+)", re.IGNORECASE),
    re.compile(r"(?:correct|valid|good) point (?:about|regarding|on) ([^.\n]+)", re.IGNORECASE),
]
_DISAGREEMENT_PATTERNS = [
    re.compile(r"i disagree (?:with|that) ([^.\n]+)", re.IGNORECASE),
    re.compile(r"(?:disagree|differ) (?:with|on) ([^.\n]+)", re.IGNORECASE),
    re.compile(r"(?:incorrect|flawed|wrong) (?:about|regarding|on) ([^.\n]+)", re.IGNORECASE),
    re.compile(r"however,?\s+([^.\n]+)", re.IGNORECASE),
    re.compile(r"\bbut\s+([^.\n]+)", re.IGNORECASE),
]

_RESOLUTION_PATTERNS = [
    re.compile(r"(?:^|\n)\s*(?:\*\*)?proposed[_\s-]?resolution(?:\*\*)?\s*[:\-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*(?:\*\*)?final[_\s-]?recommendation(?:\*\*)?\s*[:\-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*(?:\*\*)?recommendation(?:\*\*)?\s*[:\-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*(?:\*\*)?conclusion(?:\*\*)?\s*[:\-]\s*(.+)", re.IGNORECASE),
]

_MAX_KEY_POINTS = 5
_MAX_AGREEMENTS = 3


def parse_stance(content: str) -> Stance:
    """Read the STANCE heading, falling back to phrase cues near the start."""
    match = _STRUCTURED_STANCE.search(content)
    if match:
        raw = re.sub(r"[\s-]+", "_", match.group(1).strip().lower())
        # Longest names first: "strongly_disagree" contains "disagree" contains "agree".
        for stance in (Stance.STRONGLY_DISAGREE, Stance.STRONGLY_AGREE, Stance.DISAGREE, Stance.AGREE,
                       Stance.REFINE, Stance.SYNTHESIZE, Stance.NEUTRAL):
            if stance.value in raw:
                return stance

    lower = content.lower()
    head = lower[:500]
    if any(cue in head for cue in ("strongly agree", "completely agree", "fully support")):
        return Stance.STRONGLY_AGREE
    if any(cue in head for cue in ("strongly disagree", "completely disagree", "cannot support")):
        return Stance.STRONGLY_DISAGREE
    if any(cue in head for cue in ("i disagree", "disagree with", "oppose")):
        return Stance.DISAGREE
    if any(cue in head for cue in ("i agree", "agree with", "support this")):
        return Stance.AGREE
    if any(cue in head for cue in ("refine", "build upon", "extend")):
        return Stance.REFINE
    if any(cue in head for cue in ("synthesize", "combine", "merge")):
        return Stance.SYNTHESIZE

    words = set(re.findall(r"[a-z]+", lower))
    positive = sum(1 for s in ("yes", "correct", "valid", "agree") if s in words) + ("makes sense" in lower)
    negative = sum(1 for s in ("no", "incorrect", "invalid", "flawed", "wrong", "disagree") if s in words)
    if positive > negative + 2:
        return Stance.AGREE
    if negative > positive + 2:
        return Stance.DISAGREE
    return Stance.NEUTRAL


def extract_confidence(content: str) -> float:
    """Return confidence in [0, 1] from an explicit percentage or hedging language."""
    match = _STRUCTURED_CONFIDENCE.search(content)
    if match:
        return min(100, int(match.group(1))) / 100

    lower = content.lower()
    if "high confidence" in lower or "very confident" in lower:
        return 0.85
    if "moderate confidence" in lower or "fairly confident" in lower:
        return 0.65
    if "low confidence" in lower or "uncertain" in lower:
        return 0.4
    if any(w in lower for w in ("definitely", "certainly", "absolutely")):
        return 0.8
    if "probably" in lower or "likely" in lower:
        return 0.65
    if any(w in lower for w in ("possibly", "maybe", "might")):
        return 0.45
    return 0.6


def _sections(content: str) -> dict[str, list[str]]:
    """Split contract-style output (``HEADING: ...`` blocks) into bullet lists."""
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in content.splitlines():
        heading = _SECTION_HEADING.match(line)
        if heading and not line.lstrip().startswith(("-", "•")):
            current = heading.group(1).strip().lower().replace(" ", "_")
            sections.setdefault(current, [])
            inline = heading.group(2).strip()
            if inline:
                sections[current].append(inline)
            continue
        stripped = line.strip()
        if current and stripped.startswith(("-", "•")):
            item = stripped.lstrip("-• ").strip()
            if item:
                sections[current].append(item)
    return sections


def extract_key_points(content: str) -> list[str]:
    """Pull up to five list items (10-200 chars) that summarize the response."""
    points: list[str] = []
    for pattern in _LIST_PATTERNS:
        for match in pattern.finditer(content):
            point = match.group(1).strip()
            if 10 < len(point) < 200 and point not in points:
                points.append(point)

    if not points:
        section = _KEY_POINTS_SECTION.search(content)
        if section:
            lines = [line.strip() for line in section.group(1).splitlines() if line.strip()]
            points.extend(re.sub(r"^[-•\d.]+\s*", "", line) for line in lines[:_MAX_KEY_POINTS])

    if not points:
        resolution = extract_proposed_resolution(content)
        if resolution:
            points.append(resolution)

    return points[:_MAX_KEY_POINTS]


def extract_agreements_and_disagreements(content: str) -> tuple[list[str], list[str]]:
    """Return (agreements, disagreements), preferring the contract's bullet sections."""
    sections = _sections(content)
    agreements = [p for p in sections.get("agreements", []) if len(p) > 3]
    disagreements = [
        p for p in sections.get("disagreements", [])
        if len(p) > 3 and p.lower().strip(" .") not in ("none", "n/a", "nothing")
    ]

    if not agreements:
        for pattern in _AGREEMENT_PATTERNS:
            agreements.extend(m.group(1).strip() for m in pattern.finditer(content) if 10 < len(m.group(1).strip()) < 150)
    if not disagreements:
        for pattern in _DISAGREEMENT_PATTERNS:
            disagreements.extend(
                m.group(1).strip() for m in pattern.finditer(content) if 10 < len(m.group(1).strip()) < 150
            )

    return list(dict.fromkeys(agreements))[:_MAX_AGREEMENTS], list(dict.fromkeys(disagreements))[:_MAX_AGREEMENTS]


def extract_proposed_resolution(content: str, key_points: list[str] | tuple[str, ...] = ()) -> str:
    """Find the one-line recommendation a response is converging on."""
    for pattern in _RESOLUTION_PATTERNS:
        match = pattern.search(content)
        if match and match.group(1).strip():
            return match.group(1).strip()[:280]

    if key_points:
        return key_points[0].strip()[:280]

    flattened = re.sub(r"\s+", " ", content)
    for sentence in re.split(r"[.!?](?:\s|$)", flattened):
        if len(sentence.strip()) > 20:
            return sentence.strip()
    return flattened[:180].strip()
