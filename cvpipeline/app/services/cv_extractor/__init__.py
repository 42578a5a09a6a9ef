"""
CV extraction module - LangGraph + LLM based multi-step extraction with session memory.
"""
from .extractor import CVExtractor
from .pdf_utils import extract_text_from_pdf
from .provider import ModelFallbackState, ResilientLLMClient, get_llm_client
from .response_parser import parse_response

__all__ = [
    "CVExtractor",
    "ModelFallbackState",
    "ResilientLLMClient",
    "extract_text_from_pdf",
    "get_llm_client",
    "parse_response",
]
