"""Quality gate: rejects well-formed but unusable replies before they are accepted."""

import re
from dataclasses import dataclass

_CLARIFICATION = re.compile(
    r"could you clarify|can you clarify|what do you mean|are you referring to|something else\?|which one do you mean",
    re.IGNORECASE,
)
_ACTIONABLE = re.compile(
    r"reply with|answer with|return|what is|who is|when is|where is|how many|calculate|write|generate|"
    r"summarize|fix|debug|compare|explain",
    re.IGNORECASE,
)
_ONE_WORD = re.compile(r"one word only|(?:return|reply with|answer with|answer in) one word", re.IGNORECASE)
_NUMBER_ONLY = re.compile(r"\b(?:only|just) the number\b|\bnumber only\b", re.IGNORECASE)
_NUMERIC = re.compile(r"^-?\d+(?:[.,]\d+)?%?$")
_MODEL_NAME = re.compile(r"model name only|only (?:your|the) model name", re.IGNORECASE)
_TERSE = re.compile(
    r"no explanation|reply with only|answer only|just the answer|\bno other text\b",
    re.IGNORECASE,
)

_MODEL_MARKERS = {
    "claude": re.compile(r"claude"),
    "gpt": re.compile(r"gpt|codex"),
    "codex": re.compile(r"gpt|codex"),
    "openai": re.compile(r"gpt|codex|openai"),
    "gemini": re.compile(r"gemini"),
    "grok": re.compile(r"grok"),
}

MAX_TERSE_LINES = 3
MAX_TERSE_CHARS = 260
MAX_MODEL_NAME_WORDS = 8
MIN_ACTIONABLE_WORDS = 4


@dataclass(frozen=True)
class QualityVerdict:
    ok: bool
    reason: str = ""


_OK = QualityVerdict(True)


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower()).strip()


def is_actionable(request: str) -> bool:
    normalized = _normalize(request)
    return len(normalized.split(" ")) >= MIN_ACTIONABLE_WORDS and bool(_ACTIONABLE.search(normalized))


def _model_name_ok(reply: str, backend_id: str) -> bool:
    normalized = _normalize(reply)
    if "?" in normalized or len(normalized.split(" ")) > MAX_MODEL_NAME_WORDS:
        return False
    backend = backend_id.lower()
    markers = [pattern for key, pattern in _MODEL_MARKERS.items() if key in backend]
    if not markers:
        return bool(normalized)
    return any(pattern.search(normalized) for pattern in markers)


def check(request: str, reply: str, backend_id: str = "", *, strict_shape: bool = True) -> QualityVerdict:
    """Judge ``reply`` against the request that produced it.

    The shape rules (one word, bare number, model name, terse) only fire on
    explicit directives in ``request``. Pass ``strict_shape=False`` for
    free-form requests such as debate turns, where only empty output and
    clarification loops are rejected.
    """
    text = reply.strip()
    if not text:
        return QualityVerdict(False, "empty output")

    if _CLARIFICATION.search(text) and is_actionable(request):
        return QualityVerdict(False, "asked for clarification on an actionable request")

    if not strict_shape:
        return _OK

    request = _normalize(request)
    if _ONE_WORD.search(request) and len(text.split()) != 1:
        return QualityVerdict(False, "expected exactly one word")

    if _NUMBER_ONLY.search(request) and not _NUMERIC.match(text):
        return QualityVerdict(False, "expected a bare number")

    if _MODEL_NAME.search(request) and not _model_name_ok(text, backend_id):
        return QualityVerdict(False, "expected only a model name")

    if _TERSE.search(request):
        if len(text.splitlines()) > MAX_TERSE_LINES or len(text) > MAX_TERSE_CHARS:
            return QualityVerdict(False, "expected a terse answer")

    return _OK


def correction_prompt(template: str, request: str, draft: str) -> str:
    return template.format(request=request, draft=draft.strip() or "(empty)")
