"""
Text preparation before extraction - normalize whitespace, drop boilerplate, cap length.
Line structure is preserved: the degraded extractor and name heuristics read line by line.
"""
import re

from cvpipeline.app.core.config import settings

TRUNCATION_MARKER = "\n\n[Content truncated due to length]"

_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_BULLET_GLYPHS = re.compile("^[ \t]*[\u2022\u25aa\u25ab\u2023\u2043\u25cf\u25e6\u25a0\u2219\uf0b7]+[ \t]*", re.MULTILINE)
_ARROWS = re.compile("[\u2190-\u2193]")
_HSPACE = re.compile("[ \t\u00a0]+")

_HEADER_PATTERNS = [
    re.compile(r"^(page \d+ of \d+|page \d+)$", re.IGNORECASE),
    re.compile(r"^(curriculum vitae|resume|résumé|cv)$", re.IGNORECASE),
    re.compile(r"^(personal information|contact information)$", re.IGNORECASE),
    re.compile(r"^(confidential|private)$", re.IGNORECASE),
]

_NAME_SKIP_WORDS = ("resume", "curriculum", "vitae", "cv", "profile", "summary", "experience", "education", "skills")
_NAME_WORD = re.compile(r"^[A-Za-z][A-Za-z'\-]*$")


def clean_extracted_text(text: str) -> str:
    """Normalize line endings, whitespace, bullet glyphs and zero-width characters."""
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
    cleaned = _ZERO_WIDTH.sub("", cleaned)
    cleaned = _BULLET_GLYPHS.sub("- ", cleaned)
    cleaned = _ARROWS.sub(" ", cleaned)
    cleaned = "\n".join(_HSPACE.sub(" ", line).strip() for line in cleaned.split("\n"))
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def remove_common_headers(text: str) -> str:
    """Drop page counters and boilerplate title lines ("Resume", "Confidential", ...)."""
    kept = []
    for line in text.split("\n"):
        stripped = line.strip()
        if not kept and not stripped:
            continue
        if stripped and any(p.match(stripped) for p in _HEADER_PATTERNS):
            continue
        kept.append(line)
    return "\n".join(kept)


def limit_text_length(text: str, max_length: int | None = None) -> str:
    """Cap length, cutting at the last sentence/line break when it falls in the final 20%."""
    max_length = max_length or settings.max_input_chars
    if not text or len(text) <= max_length:
        return text
    truncated = text[:max_length]
    cut = max(truncated.rfind("."), truncated.rfind("\n"))
    if cut > max_length * 0.8:
        return truncated[: cut + 1] + TRUNCATION_MARKER
    return truncated + TRUNCATION_MARKER


def prepare_for_ai(text: str, max_length: int | None = None) -> str:
    """Full preparation pipeline used before every extraction."""
    cleaned = clean_extracted_text(text)
    cleaned = remove_common_headers(cleaned)
    return limit_text_length(cleaned, max_length)


def extract_name_candidates(text: str) -> list[str]:
    """Lines near the top that look like a person's name: 2-4 alphabetic words."""
    candidates = []
    for line in text.split("\n")[:10]:
        line = line.strip()
        if len(line) < 3 or len(line) > 50:
            continue
        if re.search(r"[0-9@#$%^&*()+=\[\]{}|\\:\";<>?,./]", line):
            continue
        lower = line.lower()
        if any(re.search(rf"\b{w}\b", lower) for w in _NAME_SKIP_WORDS):
            continue
        words = line.split()
        if 2 <= len(words) <= 4 and all(_NAME_WORD.match(w) and len(w) > 1 for w in words):
            candidates.append(line)
    return candidates
