"""
Response repair for model replies - turns a raw text reply into a dict.

Strategies run in order and the first one that yields a JSON object wins:
  1. direct        - first "{" to last "}" parsed as-is
  2. sanitized     - invalid escapes, control chars, trailing commas, bare keys,
                     smart quotes and stray inner quotes repaired
  3. aggressive    - every backslash escape removed (lossy), then sanitized
  4. line_rebuild  - each line cleaned on its own, comment lines dropped, rejoined
Each step is more destructive than the previous one but tolerates more.
"""
import json
import re
from typing import Callable

from cvpipeline.app.core.errors import ParseError
from cvpipeline.app.core.logging_config import get_logger

logger = get_logger("services.cv_extractor.response_parser")

_CODE_FENCE = re.compile(r"```(?:json|JSON)?")
_INVALID_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')
_ANY_ESCAPE = re.compile(r"\\.", re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "„": '"', "‘": "'", "’": "'"})
_LINE_COMMENT = re.compile(r"^\s*(//|#)")

# A quote inside a string only closes it when followed by one of these
_STRING_TERMINATORS = ",}]:"


def extract_json_block(raw_text: str) -> str:
    """Return the first "{" through the last "}" of the reply, code fences removed."""
    text = _CODE_FENCE.sub("", raw_text or "")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in reply")
    return text[start : end + 1]


def escape_stray_quotes(text: str) -> str:
    """Escape double quotes that sit inside a string value without closing it."""
    out = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string and ch == "\\" and i + 1 < n:
            out.append(text[i : i + 2])
            i += 2
            continue
        if ch == '"':
            if not in_string:
                in_string = True
                out.append(ch)
            else:
                j = i + 1
                while j < n and text[j].isspace():
                    j += 1
                if j >= n or text[j] in _STRING_TERMINATORS:
                    in_string = False
                    out.append(ch)
                else:
                    out.append('\\"')
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply fn only to the parts of text that are not inside string literals."""
    out = []
    segment_start = 0
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string and ch == "\\":
            i += 2
            continue
        if ch == '"':
            if in_string:
                out.append(text[segment_start : i + 1])
            else:
                out.append(fn(text[segment_start:i]))
            segment_start = i if not in_string else i + 1
            in_string = not in_string
        i += 1
    tail = text[segment_start:]
    out.append(tail if in_string else fn(tail))
    return "".join(out)


def _fix_structure(segment: str) -> str:
    segment = _TRAILING_COMMA.sub(r"\1", segment)
    return _BARE_KEY.sub(r'\1"\2":', segment)


def sanitize(text: str) -> str:
    text = text.translate(_SMART_QUOTES)
    text = _INVALID_ESCAPE.sub("", text)
    text = _CONTROL_CHARS.sub(" ", text)
    text = escape_stray_quotes(text)
    return _outside_strings(text, _fix_structure)


def _loads(text: str, strict: bool = False) -> dict:
    value = json.loads(text, strict=strict)
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def _direct(raw_text: str) -> dict:
    return _loads(extract_json_block(raw_text), strict=True)


def _sanitized(raw_text: str) -> dict:
    return _loads(sanitize(extract_json_block(raw_text)))


def _aggressive(raw_text: str) -> dict:
    block = _ANY_ESCAPE.sub("", extract_json_block(raw_text))
    return _loads(sanitize(block))


def _line_rebuild(raw_text: str) -> dict:
    lines = []
    for line in extract_json_block(raw_text).split("\n"):
        if _LINE_COMMENT.match(line):
            continue
        line = _INVALID_ESCAPE.sub("", line)
        line = _CONTROL_CHARS.sub(" ", line).strip()
        if line:
            lines.append(line)
    rebuilt = escape_stray_quotes(" ".join(lines).translate(_SMART_QUOTES))
    return _loads(_outside_strings(rebuilt, _fix_structure))


STRATEGIES: list[tuple[str, Callable[[str], dict]]] = [
    ("direct", _direct),
    ("sanitized", _sanitized),
    ("aggressive", _aggressive),
    ("line_rebuild", _line_rebuild),
]


def parse_response(raw_text: str, context: str = "") -> dict:
    """
    Parse a model reply into a dict, trying each repair strategy in order.
    Raises ParseError only when every strategy fails.
    """
    attempted = []
    last_error: Exception | None = None
    for name, strategy in STRATEGIES:
        attempted.append(name)
        try:
            result = strategy(raw_text)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError subclass
            last_error = e
            continue
        if name == "direct":
            logger.debug("Parsed reply%s with strategy=%s", f" ({context})" if context else "", name)
        else:
            logger.info("Repaired reply%s with strategy=%s", f" ({context})" if context else "", name)
        return result

    preview = (raw_text or "")[:200].replace("\n", " ")
    logger.warning(
        "All parse strategies failed%s: strategies=%s error=%s preview=%r",
        f" ({context})" if context else "", attempted, last_error, preview,
    )
    raise ParseError(f"Unparseable model reply: {last_error}", strategies=attempted)
