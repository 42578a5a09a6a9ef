"""
Structured <-> editable text reconciliation for profile sections.

structured -> text renders each section as plain paragraphs a user can edit by hand.
text -> structured parses the edited text back. For experience, the previous structured
entries (the anchor) are kept and only the bullet lines are re-attached, so titles,
companies and dates survive edits to the prose. Boundary detection is heuristic and
best effort; it is not a correctness guarantee.
"""
import re
from typing import Any

from pydantic import BaseModel

from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.schemas.profile import (
    CertificationEntry,
    EducationEntry,
    ExperienceEntry,
    ProjectEntry,
    Skills,
    as_entry_list,
)

logger = get_logger("services.reconciler")

SECTIONS = ("experience", "skills", "education", "projects", "certifications")

BULLET = "•"
_BULLET_LINE = re.compile(r"^\s*(?:[•\-\*▪◦‣]|\d+[.)])\s+")
_DATE_TOKEN = re.compile(
    r"\b(?:19|20)\d{2}\b|\b\d{1,2}/\d{4}\b"
    r"|\b(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{4}\b|\bpresent\b",
    re.IGNORECASE,
)
_DATE_RANGE = re.compile(
    r"(?P<start>(?:(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+)?(?:\d{1,2}/)?\d{4})"
    r"\s*(?:-|–|—|to)\s*"
    r"(?P<end>(?:(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+)?(?:\d{1,2}/)?\d{4}|Present|Current|Now)",
    re.IGNORECASE,
)
_TRAILING_PARENS = re.compile(r"\s*\(([^()]*)\)\s*$")
_ACHIEVEMENTS_LABEL = re.compile(r"^(key achievements|achievements)\s*:?\s*$", re.IGNORECASE)
_JOB_KEYWORDS = (
    "lead", "manager", "director", "developer", "engineer", "analyst",
    "specialist", "consultant", "designer", "architect", "intern", "officer",
)
_MIN_HEADER_LENGTH = 20


def _entries(model: type[BaseModel], data: Any, scalar_key: str) -> list:
    return [model.model_validate(item) for item in as_entry_list(data, scalar_key)]


def _dump(entries: list[BaseModel]) -> list[dict]:
    return [e.model_dump() for e in entries]


def _is_bullet(line: str) -> bool:
    return bool(_BULLET_LINE.match(line))


def _strip_bullet(line: str) -> str:
    return _BULLET_LINE.sub("", line, count=1).strip()


def _split_list(value: str) -> list[str]:
    return [s.strip() for s in re.split(r"[,;]", value) if s.strip()]


def _blocks(text: str) -> list[list[str]]:
    """Split text into paragraphs of non-empty stripped lines."""
    blocks, current = [], []
    for line in (text or "").split("\n"):
        if line.strip():
            current.append(line.strip())
        elif current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


# --- Rendering (structured -> text) ---
def experience_header(entry: ExperienceEntry) -> str:
    head = entry.title
    if entry.company:
        head = f"{head} at {entry.company}" if head else entry.company
    if entry.location:
        head = f"{head} ({entry.location})"
    dates = " - ".join(d for d in (entry.startDate, entry.endDate) if d)
    if dates:
        head = f"{head} | {dates}"
    return head


def _render_experience(data: Any) -> str:
    blocks = []
    for entry in _entries(ExperienceEntry, data, "title"):
        lines = [experience_header(entry)]
        if entry.description:
            # One line only: a second dated line would read as a new entry header
            lines.append(" ".join(entry.description.split()))
        if entry.achievements:
            lines.append("Key Achievements:")
            lines.extend(f"{BULLET} {a}" for a in entry.achievements)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _render_skills(data: Any) -> str:
    skills = Skills.model_validate(data or {})
    groups = [
        ("Technical Skills:", skills.technical),
        ("Professional Skills:", skills.soft),
        ("Languages:", skills.languages),
    ]
    return "\n\n".join(f"{label}\n{', '.join(items)}" for label, items in groups if items)


def _render_education(data: Any) -> str:
    blocks = []
    for entry in _entries(EducationEntry, data, "degree"):
        head = entry.degree
        if entry.institution:
            head = f"{head} from {entry.institution}" if head else entry.institution
        if entry.location:
            head = f"{head} ({entry.location})"
        lines = [head]
        if entry.graduationDate:
            lines.append(f"Graduated: {entry.graduationDate}")
        if entry.gpa:
            lines.append(f"GPA: {entry.gpa}")
        if entry.achievements:
            lines.append("Achievements:")
            lines.extend(f"{BULLET} {a}" for a in entry.achievements)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _render_projects(data: Any) -> str:
    blocks = []
    for entry in _entries(ProjectEntry, data, "name"):
        lines = [entry.name]
        if entry.description:
            lines.append(entry.description)
        if entry.technologies:
            lines.append(f"Technologies: {', '.join(entry.technologies)}")
        if entry.url:
            lines.append(f"URL: {entry.url}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _render_certifications(data: Any) -> str:
    blocks = []
    for entry in _entries(CertificationEntry, data, "name"):
        head = entry.name
        if entry.issuer:
            head = f"{head} - {entry.issuer}"
        if entry.date:
            head = f"{head} ({entry.date})"
        lines = [head]
        if entry.url:
            lines.append(f"ID/URL: {entry.url}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


# --- Parsing (text -> structured) ---
def _looks_like_header(line: str) -> bool:
    if _is_bullet(line) or _ACHIEVEMENTS_LABEL.match(line):
        return False
    return len(line) > _MIN_HEADER_LENGTH and bool(_DATE_TOKEN.search(line))


def find_boundaries(lines: list[str], anchor_headers: set[str] | None = None) -> list[int]:
    """
    Indexes of lines that open a new experience entry: an exact anchor header, or a
    heuristic header line. A heuristic header directly below another header is read as
    that entry's description line instead.
    """
    anchor_headers = anchor_headers or set()
    boundaries = []
    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line:
            continue
        if line in anchor_headers:
            boundaries.append(i)
        elif _looks_like_header(line) and not (boundaries and boundaries[-1] == i - 1):
            boundaries.append(i)
    return boundaries


def _split_title_company(left: str) -> tuple[str, str]:
    at = left.lower().find(" at ")
    if at > 0:
        return left[:at].strip(), left[at + 4 :].strip()
    for sep in (" - ", " – ", ", "):
        if sep in left:
            first, second = (p.strip() for p in left.split(sep, 1))
            first_is_job = any(k in first.lower() for k in _JOB_KEYWORDS)
            second_is_job = any(k in second.lower() for k in _JOB_KEYWORDS)
            if second_is_job and not first_is_job:
                return second, first
            return first, second
    return left.strip(), ""


def parse_experience_header(line: str) -> dict:
    """Split a header line into title, company, location and dates."""
    left, dates = line, ""
    if " | " in line:
        left, dates = line.rsplit(" | ", 1)
    else:
        match = _DATE_RANGE.search(line)
        if match:
            dates = match.group(0)
            left = (line[: match.start()] + line[match.end() :]).strip(" ,|-–")
    start, end = "", ""
    match = _DATE_RANGE.search(dates)
    if match:
        start, end = match.group("start"), match.group("end")
    elif dates.strip():
        start = dates.strip()

    location = ""
    parens = _TRAILING_PARENS.search(left)
    if parens:
        location = parens.group(1).strip()
        left = left[: parens.start()]
    title, company = _split_title_company(left.strip())
    return {"title": title, "company": company, "location": location, "startDate": start, "endDate": end}


def _read_body(lines: list[str]) -> tuple[str, list[str]]:
    description, bullets = [], []
    for line in lines:
        line = line.strip()
        if not line or _ACHIEVEMENTS_LABEL.match(line):
            continue
        if _is_bullet(line):
            bullets.append(_strip_bullet(line))
        else:
            description.append(line)
    return " ".join(description), bullets


def _parse_experience(text: str, anchor: Any = None) -> list[dict]:
    anchors = _entries(ExperienceEntry, anchor, "title") if anchor else []
    lines = (text or "").split("\n")
    headers = {experience_header(a) for a in anchors}
    boundaries = find_boundaries(lines, headers)

    if not boundaries:
        if anchors:
            logger.info("No entry boundaries in edited experience text; keeping anchor unchanged")
        return _dump(anchors)

    result = []
    for n, start in enumerate(boundaries):
        stop = boundaries[n + 1] if n + 1 < len(boundaries) else len(lines)
        description, bullets = _read_body(lines[start + 1 : stop])
        if n < len(anchors):
            entry = anchors[n].model_copy(deep=True)
            if bullets:
                entry.achievements = bullets
        else:
            fields = parse_experience_header(lines[start].strip())
            entry = ExperienceEntry(**fields, description=description, achievements=bullets)
        result.append(entry)

    if len(boundaries) != len(anchors) and anchors:
        logger.info(
            "Experience entry count changed (%d anchors, %d edited); extra edited entries appended, "
            "removed ones dropped", len(anchors), len(boundaries),
        )
    return _dump(result)


_SKILL_HEADERS = [
    (re.compile(r"^(technical|tech|hard)\b(\s+skills)?\s*:?\s*", re.IGNORECASE), "technical"),
    (re.compile(r"^(professional|soft)\b(\s+skills)?\s*:?\s*", re.IGNORECASE), "soft"),
    (re.compile(r"^languages?\b\s*:?\s*", re.IGNORECASE), "languages"),
]


def _parse_skills(text: str) -> dict | None:
    groups: dict[str, list[str]] = {"technical": [], "soft": [], "languages": []}
    current = "technical"
    found = False
    for raw in (text or "").split("\n"):
        line = raw.strip()
        if not line:
            continue
        for pattern, group in _SKILL_HEADERS:
            match = pattern.match(line)
            # "Technical Skills:" or "Languages: English", but not a skill like "Technical writing"
            if match and (":" in line[: match.end()] or not line[match.end() :].strip()):
                current = group
                line = line[match.end() :].strip()
                break
        if not line:
            continue
        items = [_strip_bullet(line)] if _is_bullet(line) else _split_list(line)
        for item in items:
            if item and item not in groups[current]:
                groups[current].append(item)
                found = True
    return groups if found else None


_LABELED = re.compile(r"^(graduated|gpa|technologies|url|id/url|credential|achievements)\s*:\s*(.*)$", re.IGNORECASE)


def _parse_education(text: str) -> list[dict]:
    result = []
    for block in _blocks(text):
        head, rest = block[0], block[1:]
        degree, institution, location = head, "", ""
        parens = _TRAILING_PARENS.search(head)
        if parens and " from " in head[: parens.start()]:
            location = parens.group(1).strip()
            head = head[: parens.start()]
        if " from " in head:
            degree, institution = (p.strip() for p in head.split(" from ", 1))
        else:
            degree = head.strip()
        entry = EducationEntry(degree=degree, institution=institution, location=location)
        for line in rest:
            labeled = _LABELED.match(line)
            if labeled:
                label, value = labeled.group(1).lower(), labeled.group(2).strip()
                if label == "graduated":
                    entry.graduationDate = value
                elif label == "gpa":
                    entry.gpa = value
            elif _is_bullet(line):
                entry.achievements.append(_strip_bullet(line))
        result.append(entry)
    return _dump(result)


def _parse_projects(text: str) -> list[dict]:
    result = []
    for block in _blocks(text):
        entry = ProjectEntry(name=_strip_bullet(block[0]) if _is_bullet(block[0]) else block[0])
        description = []
        for line in block[1:]:
            labeled = _LABELED.match(line)
            if labeled and labeled.group(1).lower() == "technologies":
                entry.technologies = _split_list(labeled.group(2))
            elif labeled and labeled.group(1).lower() in ("url", "id/url"):
                entry.url = labeled.group(2).strip()
            else:
                description.append(_strip_bullet(line) if _is_bullet(line) else line)
        entry.description = " ".join(description)
        result.append(entry)
    return _dump(result)


def _parse_certifications(text: str) -> list[dict]:
    result: list[CertificationEntry] = []
    for raw in (text or "").split("\n"):
        line = raw.strip()
        if not line:
            continue
        labeled = _LABELED.match(line)
        if labeled and labeled.group(1).lower() in ("id/url", "url", "credential"):
            if result:
                result[-1].url = labeled.group(2).strip()
            continue
        if _is_bullet(line):
            line = _strip_bullet(line)
        date = ""
        parens = _TRAILING_PARENS.search(line)
        if parens:
            date = parens.group(1).strip()
            line = line[: parens.start()]
        name, issuer = line.strip(), ""
        if " - " in line:
            name, issuer = (p.strip() for p in line.split(" - ", 1))
        result.append(CertificationEntry(name=name, issuer=issuer, date=date))
    return _dump(result)


_RENDERERS = {
    "experience": _render_experience,
    "skills": _render_skills,
    "education": _render_education,
    "projects": _render_projects,
    "certifications": _render_certifications,
}
_PARSERS = {
    "skills": _parse_skills,
    "education": _parse_education,
    "projects": _parse_projects,
    "certifications": _parse_certifications,
}


def _check_section(section: str) -> None:
    if section not in SECTIONS:
        raise ValueError(f"Unknown section '{section}'. Expected one of: {', '.join(SECTIONS)}")


def reconcile_structured_to_text(section: str, data: Any) -> str:
    """Render one structured section as editable plain text."""
    _check_section(section)
    return _RENDERERS[section](data)


def reconcile_text_to_structured(section: str, text: str, anchor: Any = None) -> Any:
    """
    Parse edited text for one section back into structured data.
    Experience is anchored to the previous entries when given; other sections are parsed
    from the text alone and fall back to the anchor when nothing parses.
    """
    _check_section(section)
    if section == "experience":
        return _parse_experience(text, anchor)
    parsed = _PARSERS[section](text)
    if not parsed and anchor is not None:
        logger.info("Nothing parsed from edited %s text; keeping anchor", section)
        if section == "skills":
            return Skills.model_validate(anchor).model_dump()
        model = {"education": EducationEntry, "projects": ProjectEntry, "certifications": CertificationEntry}[section]
        return _dump(_entries(model, anchor, "degree" if section == "education" else "name"))
    if parsed is None:
        return Skills().model_dump()
    return parsed
