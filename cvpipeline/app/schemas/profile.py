"""
Profile Pydantic schemas - per-phase extraction results and the merged ExtractedProfile.

Model replies are loosely shaped, so every schema here is lenient on input
(None -> "", str -> list, key aliases) and strict on output (all fields present,
empty string/list defaults). That keeps the merge in session memory total.
"""
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# --- Coercion helpers ---
def as_str(value: Any) -> str:
    """Coerce a model-produced scalar to a clean single-line-ish string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip().strip("\"'").strip()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(s for s in (as_str(v) for v in value) if s)
    if isinstance(value, dict):
        return _dict_to_label(value)
    return str(value).strip()


def _dict_to_label(value: dict) -> str:
    # {"language": "Spanish", "proficiency": "Fluent"} -> "Spanish (Fluent)"
    parts = [as_str(v) for v in value.values() if v not in (None, "", [], {})]
    parts = [p for p in parts if p]
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]} ({', '.join(parts[1:])})"


def as_str_list(value: Any, split_commas: bool = False) -> List[str]:
    """Coerce to a list of non-empty strings. Strings become one item, or are comma-split."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        if split_commas:
            return [s.strip() for s in re.split(r"[,;\n]", value) if s.strip()]
        return [value.strip()] if value.strip() else []
    if isinstance(value, dict):
        label = _dict_to_label(value)
        return [label] if label else []
    if isinstance(value, (list, tuple)):
        out = []
        for item in value:
            s = as_str(item)
            if s:
                out.append(s)
        return out
    return [as_str(value)]


def as_entry_list(value: Any, scalar_key: str) -> List[dict]:
    """Coerce to a list of dicts. Models are dumped; bare strings become {scalar_key: s}."""
    if value is None or value == "":
        return []
    if isinstance(value, (dict, BaseModel)):
        value = [value]
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    out = []
    for item in value:
        if isinstance(item, dict):
            out.append(item)
        elif isinstance(item, BaseModel):
            out.append(item.model_dump())
        elif isinstance(item, str) and item.strip():
            out.append({scalar_key: item.strip()})
    return out


def _rename(data: Any, aliases: Dict[str, str]) -> Any:
    """Copy alias keys onto canonical keys when the canonical key is missing/empty."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for alias, canonical in aliases.items():
        if alias in data and not data.get(canonical):
            data[canonical] = data[alias]
    return data


class _Lenient(BaseModel):
    model_config = {"extra": "ignore"}


# --- Phase 1 ---
class PersonalInfo(_Lenient):
    name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    currentTitle: str = ""
    summary: str = ""
    aboutMe: str = ""

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {"title": "currentTitle", "fullName": "name", "about": "aboutMe"})

    @field_validator("*", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return re.sub(r"\s+", " ", as_str(v))


# --- Phase 2 ---
class ExperienceEntry(_Lenient):
    title: str = ""
    company: str = ""
    location: str = ""
    startDate: str = ""
    endDate: str = ""
    description: str = ""
    achievements: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {
            "position": "title", "jobTitle": "title", "role": "title",
            "companyName": "company", "organization": "company",
            "start": "startDate", "end": "endDate",
        })

    @field_validator("title", "company", "location", "startDate", "endDate", "description", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)

    @field_validator("achievements", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return as_str_list(v)


class EducationEntry(_Lenient):
    degree: str = ""
    institution: str = ""
    location: str = ""
    graduationDate: str = ""
    gpa: str = ""
    achievements: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        data = _rename(data, {
            "graduationYear": "graduationDate", "year": "graduationDate", "endYear": "graduationDate",
            "school": "institution", "university": "institution", "grade": "gpa",
        })
        if not isinstance(data, dict):
            return data
        if data.get("honors"):
            data["achievements"] = as_str_list(data.get("achievements")) + as_str_list(data["honors"])
        degree, field = as_str(data.get("degree")), as_str(data.get("field"))
        if degree and field and field.lower() not in degree.lower():
            data["degree"] = f"{degree} in {field}"
        return data

    @field_validator("degree", "institution", "location", "graduationDate", "gpa", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)

    @field_validator("achievements", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return as_str_list(v)


class Skills(_Lenient):
    technical: List[str] = Field(default_factory=list)
    soft: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _flat_list(cls, data: Any) -> Any:
        # Some prompts return a flat skill list instead of the grouped object
        if isinstance(data, (list, str)):
            return {"technical": data}
        if data is None:
            return {}
        return data

    @field_validator("*", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return as_str_list(v, split_commas=True)


class ProfessionalInfo(_Lenient):
    experience: List[ExperienceEntry] = Field(default_factory=list)
    skills: Skills = Field(default_factory=Skills)
    education: List[EducationEntry] = Field(default_factory=list)

    @field_validator("experience", mode="before")
    @classmethod
    def _experience(cls, v: Any) -> List[dict]:
        return as_entry_list(v, "title")

    @field_validator("education", mode="before")
    @classmethod
    def _education(cls, v: Any) -> List[dict]:
        return as_entry_list(v, "degree")


# --- Phase 3 ---
class ProjectEntry(_Lenient):
    name: str = ""
    description: str = ""
    technologies: List[str] = Field(default_factory=list)
    url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {"link": "url", "title": "name", "techStack": "technologies"})

    @field_validator("name", "description", "url", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)

    @field_validator("technologies", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return as_str_list(v, split_commas=True)


class CertificationEntry(_Lenient):
    name: str = ""
    issuer: str = ""
    date: str = ""
    url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {"year": "date", "organization": "issuer", "link": "url", "credentialUrl": "url"})

    @field_validator("*", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)


class AwardEntry(_Lenient):
    name: str = ""
    issuer: str = ""
    date: str = ""
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {"year": "date", "title": "name"})

    @field_validator("*", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)


class PublicationEntry(_Lenient):
    title: str = ""
    venue: str = ""
    date: str = ""
    authors: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _rename(data, {"journal": "venue", "conference": "venue", "year": "date", "name": "title"})

    @field_validator("title", "venue", "date", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)

    @field_validator("authors", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return as_str_list(v, split_commas=True)


class VolunteerEntry(_Lenient):
    organization: str = ""
    role: str = ""
    duration: str = ""
    description: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> str:
        return as_str(v)


class AdditionalInfo(_Lenient):
    projects: List[ProjectEntry] = Field(default_factory=list)
    certifications: List[CertificationEntry] = Field(default_factory=list)
    awards: List[AwardEntry] = Field(default_factory=list)
    publications: List[PublicationEntry] = Field(default_factory=list)
    volunteer: List[VolunteerEntry] = Field(default_factory=list)

    @field_validator("projects", "certifications", "awards", mode="before")
    @classmethod
    def _named(cls, v: Any) -> List[dict]:
        return as_entry_list(v, "name")

    @field_validator("publications", mode="before")
    @classmethod
    def _titled(cls, v: Any) -> List[dict]:
        return as_entry_list(v, "title")

    @field_validator("volunteer", mode="before")
    @classmethod
    def _orgs(cls, v: Any) -> List[dict]:
        return as_entry_list(v, "organization")


# --- Session memory ---
class StepResult(BaseModel):
    stepName: str
    data: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = 1.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = ""


class KnownFacts(BaseModel):
    """Facts later phases may rely on. Phase-2 facts stay empty until phase 2 is stored."""
    name: Optional[str] = None
    email: Optional[str] = None
    currentTitle: Optional[str] = None
    profession: Optional[str] = None
    experienceLevel: Optional[str] = None
    skills: List[str] = Field(default_factory=list)


class SessionContext(BaseModel):
    sessionId: str
    knownFacts: KnownFacts = Field(default_factory=KnownFacts)
    previousSteps: Dict[str, StepResult] = Field(default_factory=dict)
    stepCount: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


# --- Final merged output ---
class ProcessingInfo(BaseModel):
    sessionId: str = ""
    stepsCompleted: int = 0
    profession: Optional[str] = None
    experienceLevel: Optional[str] = None
    confidenceScores: Dict[str, float] = Field(default_factory=dict)
    processor: str = ""
    degradedSteps: List[str] = Field(default_factory=list)


class ExtractedProfile(BaseModel):
    """Full extraction result - personalInfo.name is the only hard requirement."""
    personalInfo: PersonalInfo = Field(default_factory=PersonalInfo)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    skills: Skills = Field(default_factory=Skills)
    projects: List[ProjectEntry] = Field(default_factory=list)
    certifications: List[CertificationEntry] = Field(default_factory=list)
    awards: List[AwardEntry] = Field(default_factory=list)
    publications: List[PublicationEntry] = Field(default_factory=list)
    volunteer: List[VolunteerEntry] = Field(default_factory=list)
    processingInfo: Optional[ProcessingInfo] = None

    model_config = {"extra": "ignore"}
