"""
Upload text extraction - PDF via pdfplumber, plain text decoded as UTF-8.
"""
import io
from pathlib import Path
from typing import BinaryIO

import pdfplumber


def extract_text_from_pdf(source: str | Path | BinaryIO) -> str:
    """Extract raw text from a PDF path or file object using pdfplumber."""
    text_parts = []
    with pdfplumber.open(source) as pdf:
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
    return "\n".join(text_parts)


def extract_text_from_upload(content: bytes, kind: str) -> str:
    """Extract text from uploaded bytes. kind is "pdf" or "txt"."""
    if kind == "pdf":
        return extract_text_from_pdf(io.BytesIO(content))
    return content.decode("utf-8", errors="replace")
