"""
Degraded extraction used when the model provider is unreachable.
Pattern matching only - email, phone, a name guess from the top lines, a summary section,
and clearly-labeled placeholder entries for the professional phase.
"""
import re

from cvpipeline.app.schemas.profile import (
    EducationEntry,
    ExperienceEntry,
    PersonalInfo,
    ProfessionalInfo,
    Skills,
)

from .text_cleaner import extract_name_candidates

PLACEHOLDER_NAME = "Name not detected"
PLACEHOLDER_LABEL = "Pending review (automatic extraction unavailable)"

_TECH_KEYWORDS = [
    "python", "javascript", "java", "react", "node", "sql", "aws", "docker",
    "git", "html", "css", "typescript", "angular", "vue", "postgresql", "mongodb",
    "linux", "rest", "kubernetes", "figma", "azure", "gcp", "excel",
]
_SECTION_ENDS = [
    "experience", "education", "skills", "projects", "summary", "objective",
    "certifications", "references", "contact", "work history", "employment",
]


def extract_email(text: str) -> str:
    """Extract first email from text."""
    match = re.search(r"[\w.+-]+@[\w.-]+\.\w{2,}", text)
    return match.group(0) if match else ""


def extract_phone(text: str) -> str:
    """Extract first phone number from text."""
    patterns = [
        r"\+?\d{1,3}[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}",
        r"\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}",
        r"\+?\d{10,15}",
    ]
    for pat in patterns:
        match = re.search(pat, text)
        if match:
            return match.group(0).strip()
    return ""


def guess_name(text: str) -> str:
    """First short multi-word line near the top that looks like a name."""
    candidates = extract_name_candidates(text)
    if candidates:
        return candidates[0]
    for line in [l.strip() for l in text.split("\n") if l.strip()][:5]:
        if "@" in line or re.search(r"\d{3}[-.\s]\d{3}", line):
            continue
        parts = line.split()
        if 2 <= len(parts) <= 4 and all(p[:1].isupper() for p in parts):
            return line
    return ""


def extract_section(text: str, section_names: list[str]) -> str:
    """Extract content under a section header until the next known header."""
    section_pattern = re.compile(
        r"^(" + "|".join(re.escape(s) for s in section_names) + r")\s*:?\s*$",
        re.IGNORECASE,
    )
    end_pattern = re.compile(
        r"^(" + "|".join(re.escape(s) for s in _SECTION_ENDS) + r")\s*:?\s*$",
        re.IGNORECASE,
    )
    in_section = False
    content_lines = []
    for line in text.split("\n"):
        stripped = line.strip()
        if section_pattern.match(stripped):
            in_section = True
            continue
        if in_section:
            if end_pattern.match(stripped):
                break
            if stripped:
                content_lines.append(stripped)
    return "\n".join(content_lines)


def detect_tech_skills(text: str) -> list[str]:
    lower = text.lower()
    return [kw for kw in _TECH_KEYWORDS if re.search(rf"\b{re.escape(kw)}\b", lower)]


def degraded_basic_info(text: str) -> PersonalInfo:
    """Phase-1 fallback. Always has a name, a placeholder when nothing looks like one."""
    summary = extract_section(text, ["summary", "professional summary", "objective", "profile", "about", "about me"])
    return PersonalInfo(
        name=guess_name(text) or PLACEHOLDER_NAME,
        email=extract_email(text),
        phone=extract_phone(text),
        summary=summary[:800],
    )


def degraded_professional(text: str) -> ProfessionalInfo:
    """Phase-2 fallback: labeled placeholders so the profile still shows each section."""
    return ProfessionalInfo(
        experience=[ExperienceEntry(
            title="Work experience",
            company=PLACEHOLDER_LABEL,
            description="Automatic extraction was unavailable. Please add your work history.",
        )],
        skills=Skills(technical=detect_tech_skills(text) or [PLACEHOLDER_LABEL]),
        education=[EducationEntry(
            degree="Education",
            institution=PLACEHOLDER_LABEL,
        )],
    )
