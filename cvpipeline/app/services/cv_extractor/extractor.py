"""
CV extraction using LangGraph + OpenAI LLM - three phases chained through session memory.

  basic_info -> professional -> additional -> assemble

Each phase prompt is conditioned on the knownFacts of the phases before it. Phase 1 is the
only critical phase: without a name the attempt fails. Provider outages degrade to regex
extraction (phase 1) or labeled placeholders (phase 2); phase 3 failures yield empty lists.
"""
import time

from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError
from typing_extensions import TypedDict

from cvpipeline.app.core.config import PROCESSOR_VERSION, settings
from cvpipeline.app.core.errors import (
    CapabilityError,
    CVPipelineError,
    ExtractionFatalError,
    ParseError,
    ProviderUnavailableError,
    SessionNotFoundError,
)
from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.schemas.profile import (
    AdditionalInfo,
    ExtractedProfile,
    KnownFacts,
    PersonalInfo,
    ProfessionalInfo,
    StepResult,
)
from cvpipeline.app.services.scoring import ConfidenceScorer, completeness_confidence
from cvpipeline.app.services.session_memory import (
    METHOD_DEGRADED,
    STEP_ADDITIONAL,
    STEP_BASIC_INFO,
    STEP_PROFESSIONAL,
    SessionMemoryStore,
    merge_steps,
)

from .fallback import degraded_basic_info, degraded_professional, guess_name
from .prompts import ADDITIONAL_PROMPT, BASIC_INFO_PROMPT, PROFESSIONAL_PROMPT
from .provider import ResilientLLMClient, get_llm_client
from .response_parser import parse_response
from .text_cleaner import prepare_for_ai

logger = get_logger("services.cv_extractor")

METHOD_LLM = "llm"
METHOD_DEFAULT = "default"


class CVExtractionState(TypedDict):
    """State for the LangGraph extraction flow."""
    cv_text: str
    user_id: str
    session_id: str
    processor: str
    steps: dict
    profile: ExtractedProfile | None


class CVExtractor:
    """Runs the three extraction phases for one CV text and returns the merged profile."""

    def __init__(
        self,
        llm: ResilientLLMClient | None = None,
        session_store: SessionMemoryStore | None = None,
        scorer: ConfidenceScorer = completeness_confidence,
        cleanup_delay_seconds: float | None = None,
    ) -> None:
        self.llm = llm or get_llm_client()
        self.sessions = session_store or SessionMemoryStore(scorer=scorer)
        self.scorer = scorer
        self.cleanup_delay_seconds = cleanup_delay_seconds
        self._graph = self._build_graph()

    # --- helpers ---
    def _ask(self, prompt, description: str, **values) -> dict:
        messages = prompt.format_messages(**values)
        raw = self.llm.complete(messages, description)
        return parse_response(raw, context=description)

    def _known_facts(self, session_id: str) -> KnownFacts:
        try:
            return self.sessions.get_session_context(session_id).knownFacts
        except SessionNotFoundError:
            logger.warning("Session %s missing while building context; continuing without known facts", session_id)
            return KnownFacts()

    def _record(self, state: CVExtractionState, step_name: str, data: dict, method: str) -> dict:
        confidence = self.scorer(data)
        metadata = {"method": method, "model": self.llm.current_model}
        self.sessions.store_step_result(state["session_id"], step_name, data, confidence, metadata)
        steps = dict(state["steps"])
        steps[step_name] = StepResult(
            stepName=step_name,
            data=data,
            confidence=confidence,
            metadata={"stepIndex": len(steps) + 1, **metadata},
        ).model_dump()
        return {"steps": steps}

    # --- nodes ---
    def _basic_info_node(self, state: CVExtractionState) -> dict:
        """Phase 1: personal info. Fatal when no name can be recovered."""
        session_id = state["session_id"]
        text = state["cv_text"]
        method = METHOD_LLM
        try:
            data = self._ask(
                BASIC_INFO_PROMPT,
                f"basic_info session={session_id}",
                cv_text=text[: settings.basic_info_prompt_chars],
            )
            info = PersonalInfo.model_validate(data)
        except (ProviderUnavailableError, CapabilityError) as e:
            logger.warning("Phase basic_info degraded for session %s: %s", session_id, e)
            info = degraded_basic_info(text)
            method = METHOD_DEGRADED
        except (ParseError, ValidationError) as e:
            raise ExtractionFatalError(f"Basic information could not be read from the model reply: {e}") from e

        if not info.name:
            info.name = guess_name(text)
        if not info.name:
            raise ExtractionFatalError("Name extraction failed: no name found in the CV")

        logger.info("Phase basic_info done for session %s (method=%s)", session_id, method)
        return self._record(state, STEP_BASIC_INFO, info.model_dump(), method)

    def _professional_node(self, state: CVExtractionState) -> dict:
        """Phase 2: experience, skills, education. Placeholders on outage, empty on other failures."""
        session_id = state["session_id"]
        facts = self._known_facts(session_id)
        method = METHOD_LLM
        try:
            data = self._ask(
                PROFESSIONAL_PROMPT,
                f"professional session={session_id}",
                name=facts.name or "a candidate",
                current_title=facts.currentTitle or "a professional",
                profession=facts.profession or "their field",
                cv_text=state["cv_text"],
            )
            prof = ProfessionalInfo.model_validate(data)
        except (ProviderUnavailableError, CapabilityError) as e:
            logger.warning("Phase professional degraded for session %s: %s", session_id, e)
            prof = degraded_professional(state["cv_text"])
            method = METHOD_DEGRADED
        except (CVPipelineError, ValidationError) as e:
            logger.warning("Phase professional defaulted to empty for session %s: %s", session_id, e)
            prof = ProfessionalInfo()
            method = METHOD_DEFAULT

        logger.info(
            "Phase professional done for session %s (method=%s, experience=%d)",
            session_id, method, len(prof.experience),
        )
        return self._record(state, STEP_PROFESSIONAL, prof.model_dump(), method)

    def _additional_node(self, state: CVExtractionState) -> dict:
        """Phase 3: projects, certifications, overflow categories. Never fatal."""
        session_id = state["session_id"]
        facts = self._known_facts(session_id)
        method = METHOD_LLM
        try:
            data = self._ask(
                ADDITIONAL_PROMPT,
                f"additional session={session_id}",
                name=facts.name or "a candidate",
                profession=facts.profession or "professional",
                experience_level=facts.experienceLevel or "experienced",
                skills=", ".join(facts.skills[:10]) or "not listed",
                cv_text=state["cv_text"],
            )
            extra = AdditionalInfo.model_validate(data)
        except (CVPipelineError, ValidationError) as e:
            logger.warning("Phase additional defaulted to empty for session %s: %s", session_id, e)
            extra = AdditionalInfo()
            method = METHOD_DEFAULT

        logger.info("Phase additional done for session %s (method=%s)", session_id, method)
        return self._record(state, STEP_ADDITIONAL, extra.model_dump(), method)

    def _assemble_node(self, state: CVExtractionState) -> dict:
        session_id = state["session_id"]
        try:
            profile = self.sessions.get_final_result(session_id)
        except SessionNotFoundError:
            logger.warning("Session %s gone before assembly; merging from in-flight state", session_id)
            steps = {name: StepResult.model_validate(value) for name, value in state["steps"].items()}
            profile = merge_steps(session_id, steps, state["processor"])
        return {"profile": profile}

    def _build_graph(self):
        """Build the LangGraph extraction pipeline."""
        builder = StateGraph(CVExtractionState)

        builder.add_node("basic_info", self._basic_info_node)
        builder.add_node("professional", self._professional_node)
        builder.add_node("additional", self._additional_node)
        builder.add_node("assemble", self._assemble_node)

        builder.add_edge(START, "basic_info")
        builder.add_edge("basic_info", "professional")
        builder.add_edge("professional", "additional")
        builder.add_edge("additional", "assemble")
        builder.add_edge("assemble", END)

        return builder.compile()

    # --- entry point ---
    def extract(self, text: str, user_id: str) -> ExtractedProfile:
        """
        Extract a structured profile from plain CV text.
        Always returns a profile with personalInfo.name set, or raises ExtractionFatalError.
        """
        if not text or not text.strip():
            raise ExtractionFatalError("No usable text provided for extraction")
        cv_text = prepare_for_ai(text)
        if not cv_text.strip():
            raise ExtractionFatalError("No usable text left after cleaning")

        processor = f"{PROCESSOR_VERSION}/{self.llm.current_model}"
        session_id = self.sessions.create_session(
            user_id,
            preview_text=cv_text,
            metadata={"inputLength": len(text), "preparedLength": len(cv_text), "processor": processor},
        )
        started = time.monotonic()
        logger.info("Extraction started: session=%s user=%s chars=%d", session_id, user_id, len(cv_text))
        try:
            result = self._graph.invoke({
                "cv_text": cv_text,
                "user_id": str(user_id),
                "session_id": session_id,
                "processor": processor,
                "steps": {},
                "profile": None,
            })
        finally:
            self.sessions.schedule_cleanup(session_id, self.cleanup_delay_seconds)

        profile: ExtractedProfile = result["profile"]
        logger.info(
            "Extraction finished: session=%s name=%r degraded=%s in %.2fs",
            session_id, profile.personalInfo.name,
            profile.processingInfo.degradedSteps if profile.processingInfo else [],
            time.monotonic() - started,
        )
        return profile
