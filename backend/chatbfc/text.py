import re

DEFAULT_SPEAKABLE_CHARS = 280
SENTENCE_BOUNDARY_MIN_RATIO = 0.4
SIMILARITY_THRESHOLD = 0.75

FOLLOW_UP_MAX_CHARS = 220
FOLLOW_UP_MAX_WORDS = 50

_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9']+")


def cap_text(text: str, limit: int = DEFAULT_SPEAKABLE_CHARS) -> str:
    """
    Trim text to a speakable length.

    Cuts after the last sentence-ending punctuation that fits under ``limit``
    when that boundary sits at or past 40% of the limit, otherwise hard-cuts
    and appends an ellipsis. The result never exceeds ``limit``.
    """
    value = str(text or "").strip()
    limit = max(4, int(limit))
    if len(value) <= limit:
        return value

    cut = -1
    for match in _SENTENCE_END_RE.finditer(value):
        if match.end() > limit:
            break
        cut = match.end()

    if cut >= int(limit * SENTENCE_BOUNDARY_MIN_RATIO):
        return value[:cut]

    return f"{value[:limit - 3].rstrip()}..."


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", str(text or "")).strip()


def sum_conversation_chars(conversation) -> int:
    total = 0
    for message in conversation or []:
        content = getattr(message, "content", None)
        if content is None and isinstance(message, dict):
            content = message.get("content")
        total += len(str(content or ""))
    return total


def _tokens(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(str(text or "").lower()))


def token_jaccard(a: str, b: str) -> float:
    left = _tokens(a)
    right = _tokens(b)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def too_similar(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return token_jaccard(a, b) >= threshold


def should_follow_up(answer: str) -> bool:
    # brief answers earn a same-question follow-up
    value = str(answer or "").strip()
    if not value:
        return False
    return len(value) < FOLLOW_UP_MAX_CHARS and len(value.split()) < FOLLOW_UP_MAX_WORDS
