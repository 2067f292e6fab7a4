"""Document classification and text extraction.

Supports PDF (pdfplumber with pypdf fallback), DOCX (python-docx) and plain
text. Extraction always goes through a temporary file that is removed on
every exit path.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import docx
import pdfplumber
from pypdf import PdfReader

from .errors import ParseError

logger = logging.getLogger(__name__)


class DocumentType(str, Enum):
    """Supported document types."""
    PDF = "pdf"
    DOCX = "docx"
    TEXT = "text"
    UNKNOWN = "unknown"


class ExtractionStatus(str, Enum):
    """Outcome of text extraction, stored on the document row."""
    EXTRACTED = "extracted"
    EMPTY = "empty"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


@dataclass
class ParsedDocument:
    """Result of document parsing."""
    text: str
    document_type: DocumentType
    metadata: dict[str, Any] = field(default_factory=dict)


_EXTENSIONS = {
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.DOCX,
    ".txt": DocumentType.TEXT,
    ".text": DocumentType.TEXT,
}

_CONTENT_TYPES = {
    "application/pdf": DocumentType.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentType.DOCX,
    "text/plain": DocumentType.TEXT,
}


def detect_document_type(
    url: str,
    *,
    declared_type: str | None = None,
    content_type: str | None = None,
    content: bytes | None = None,
) -> DocumentType:
    """Classify a document.

    Precedence: declared type, URL extension, content-type header, then
    magic bytes.

    Args:
        url: Document URL
        declared_type: Type given by the record ("pdf", "docx", ...)
        content_type: HTTP Content-Type header
        content: Downloaded bytes for magic number detection

    Returns:
        Detected DocumentType
    """
    if declared_type:
        declared = declared_type.strip().lower().lstrip(".")
        if declared in ("doc", "word"):
            declared = "docx"
        if declared in ("txt", "plain"):
            declared = "text"
        try:
            return DocumentType(declared)
        except ValueError:
            logger.debug(f"Ignoring unknown declared type {declared_type!r} for {url}")

    extension = os.path.splitext(urlparse(url).path.lower())[1]
    if extension in _EXTENSIONS:
        return _EXTENSIONS[extension]

    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in _CONTENT_TYPES:
            return _CONTENT_TYPES[mime]

    # Magic number detection if content provided
    if content:
        if content.startswith(b'%PDF'):
            return DocumentType.PDF
        elif content.startswith(b'PK\x03\x04'):  # ZIP/Office
            return DocumentType.DOCX

    return DocumentType.UNKNOWN


def extract_pdf_text(path: str) -> str:
    """Extract text from a PDF, trying pdfplumber first and pypdf second."""
    try:
        with pdfplumber.open(path) as pdf:
            parts = [page.extract_text() or "" for page in pdf.pages]
        return "\n\n".join(p for p in parts if p)
    except Exception as e:
        logger.warning(f"pdfplumber extraction failed: {e}, trying pypdf")

    try:
        reader = PdfReader(path)
        parts = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(p for p in parts if p)
    except Exception as e:
        logger.error(f"pypdf extraction also failed: {e}")
        raise ParseError(f"Failed to parse PDF: {e}", component="parser") from e


def extract_docx_text(path: str) -> str:
    """Extract paragraph and table text from a DOCX file."""
    try:
        document = docx.Document(path)
    except Exception as e:
        raise ParseError(f"Failed to parse DOCX: {e}", component="parser") from e

    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def decode_text(content: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content.decode("latin-1")


def extract_text(
    content: bytes,
    document_type: DocumentType,
    *,
    tmp_dir: str | None = None,
) -> ParsedDocument:
    """Extract plain text from downloaded bytes.

    Args:
        content: Raw document bytes
        document_type: Classified type
        tmp_dir: Directory for the transient extraction file

    Returns:
        ParsedDocument with extracted text

    Raises:
        ParseError: If the type is unsupported or extraction fails
    """
    if document_type == DocumentType.UNKNOWN:
        raise ParseError("Unsupported document type", component="parser")
    if document_type == DocumentType.TEXT:
        return ParsedDocument(text=decode_text(content), document_type=document_type)

    suffix = f".{document_type.value}"
    with tempfile.NamedTemporaryFile(suffix=suffix, dir=tmp_dir, delete=False) as handle:
        handle.write(content)
        path = handle.name
    try:
        if document_type == DocumentType.PDF:
            text = extract_pdf_text(path)
        else:
            text = extract_docx_text(path)
        return ParsedDocument(
            text=text,
            document_type=document_type,
            metadata={"bytes": len(content)},
        )
    except ParseError:
        raise
    except Exception as e:
        logger.error(f"{document_type.value} extraction failed: {e}")
        raise ParseError(f"Failed to extract {document_type.value}: {e}", component="parser") from e
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
