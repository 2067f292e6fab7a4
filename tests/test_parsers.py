from __future__ import annotations

import docx
import pytest

from etl.errors import ParseError
from etl.parsers import DocumentType, decode_text, detect_document_type, extract_text


@pytest.mark.parametrize(
    "url, kwargs, expected",
    [
        ("https://x.test/a.pdf", {}, DocumentType.PDF),
        ("https://x.test/a.DOCX?download=1", {}, DocumentType.DOCX),
        ("https://x.test/a.txt", {}, DocumentType.TEXT),
        ("https://x.test/a.pdf", {"declared_type": "docx"}, DocumentType.DOCX),
        ("https://x.test/a.pdf", {"declared_type": "Word"}, DocumentType.DOCX),
        ("https://x.test/download", {"content_type": "application/pdf; charset=binary"}, DocumentType.PDF),
        ("https://x.test/download", {"content": b"%PDF-1.7 ..."}, DocumentType.PDF),
        ("https://x.test/download", {"content": b"PK\x03\x04rest"}, DocumentType.DOCX),
        ("https://x.test/download", {"declared_type": "rtf", "content": b"{\\rtf1"}, DocumentType.UNKNOWN),
        ("https://x.test/a.txt", {"content_type": "application/pdf"}, DocumentType.TEXT),
    ],
)
def test_detect_document_type(url, kwargs, expected) -> None:
    assert detect_document_type(url, **kwargs) == expected


def test_decode_text_handles_bom_and_cp1252() -> None:
    assert decode_text("\ufeffHello".encode("utf-8")) == "Hello"
    assert decode_text("Café".encode("cp1252")) == "Café"


def test_plain_text_is_decoded_directly() -> None:
    parsed = extract_text(b"Role description", DocumentType.TEXT)
    assert parsed.text == "Role description"
    assert parsed.document_type == DocumentType.TEXT


def test_unknown_type_raises() -> None:
    with pytest.raises(ParseError):
        extract_text(b"???", DocumentType.UNKNOWN)


def test_docx_extraction_removes_temp_file(tmp_path) -> None:
    source = docx.Document()
    source.add_paragraph("Purpose of the role")
    table = source.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Grade"
    table.rows[0].cells[1].text = "Clerk 7/8"
    path = tmp_path / "source.docx"
    source.save(str(path))
    work = tmp_path / "work"
    work.mkdir()

    parsed = extract_text(path.read_bytes(), DocumentType.DOCX, tmp_dir=str(work))

    assert "Purpose of the role" in parsed.text
    assert "Grade | Clerk 7/8" in parsed.text
    assert list(work.iterdir()) == []


@pytest.mark.parametrize("document_type", [DocumentType.PDF, DocumentType.DOCX])
def test_corrupt_document_raises_and_cleans_up(tmp_path, document_type) -> None:
    with pytest.raises(ParseError):
        extract_text(b"this is not a real document", document_type, tmp_dir=str(tmp_path))
    assert list(tmp_path.iterdir()) == []
