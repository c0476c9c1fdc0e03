from __future__ import annotations

import io

import pytest
from docx import Document as DocxDocument
from pypdf import PdfWriter

from app.jobs.extraction import UnsupportedDocumentError, count_pdf_pages, estimate_complexity, extract_text, require_min_text


def test_extract_text_decodes_utf8_and_falls_back_to_latin1() -> None:
  assert extract_text("Clause – one".encode(), "a.txt") == "Clause – one"
  assert extract_text("Café clause".encode("latin-1"), "b.TXT") == "Café clause"


def test_extract_text_reads_docx_paragraphs() -> None:
  document = DocxDocument()
  document.add_paragraph("First paragraph of the agreement.")
  document.add_paragraph("Second paragraph of the agreement.")
  buffer = io.BytesIO()
  document.save(buffer)

  text = extract_text(buffer.getvalue(), "agreement.docx")

  assert text.splitlines() == ["First paragraph of the agreement.", "Second paragraph of the agreement."]


def test_extract_text_rejects_unknown_types_and_broken_pdfs() -> None:
  with pytest.raises(UnsupportedDocumentError):
    extract_text(b"data", "image.png")
  with pytest.raises(UnsupportedDocumentError):
    extract_text(b"not a pdf at all", "broken.pdf")


def test_require_min_text_rejects_blank_documents() -> None:
  assert require_min_text("  a clause long enough to be processed  ", "a.txt") == "a clause long enough to be processed"
  with pytest.raises(UnsupportedDocumentError):
    require_min_text("   tiny   ", "a.txt")


def test_count_pdf_pages() -> None:
  writer = PdfWriter()
  for _ in range(3):
    writer.add_blank_page(width=72, height=72)
  buffer = io.BytesIO()
  writer.write(buffer)
  assert count_pdf_pages(buffer.getvalue()) == 3


def test_estimate_complexity() -> None:
  estimate = estimate_complexity("x" * 2500, chunk_size=1000)
  assert estimate == {"characters": 2500, "estimatedChunks": 3, "estimatedCredits": 3, "estimatedTimeSeconds": 10}
  assert estimate_complexity("", 1000)["estimatedCredits"] == 1


@pytest.mark.parametrize("data", [b"not a zip archive", b"PK\x05\x06" + b"\x00" * 18])
def test_extract_text_rejects_unreadable_docx(data: bytes) -> None:
  with pytest.raises(UnsupportedDocumentError, match="DOCX"):
    extract_text(data, "broken.docx")
