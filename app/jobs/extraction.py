"""Text extraction and cost estimates for uploaded documents."""

from __future__ import annotations

import io
import logging
import math
from pathlib import PurePath
from typing import Any
from zipfile import BadZipFile

from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({"txt", "pdf", "docx"})
MIN_TEXT_CHARS = 25


class UnsupportedDocumentError(ValueError):
  """Raised for file types or contents the extractor cannot turn into text."""


def file_extension(file_name: str) -> str:
  return PurePath(file_name).suffix.lower().lstrip(".")


def extract_text(data: bytes, file_name: str) -> str:
  """Return the plain text of a TXT, PDF or DOCX document."""
  extension = file_extension(file_name)
  if extension not in SUPPORTED_EXTENSIONS:
    raise UnsupportedDocumentError(f"Unsupported file type '.{extension}' for {file_name}; expected one of {sorted(SUPPORTED_EXTENSIONS)}.")

  if extension == "txt":
    try:
      return data.decode("utf-8")
    except UnicodeDecodeError:
      logger.info("File %s is not UTF-8; decoding as latin-1", file_name)
      return data.decode("latin-1")

  if extension == "pdf":
    try:
      reader = PdfReader(io.BytesIO(data))
      return "\n".join(page.extract_text() or "" for page in reader.pages)
    except PdfReadError as exc:
      raise UnsupportedDocumentError(f"Could not read PDF {file_name}: {exc}") from exc

  try:
    document = DocxDocument(io.BytesIO(data))
  except (BadZipFile, PackageNotFoundError, KeyError, ValueError) as exc:
    # Not a zip, or a zip without a Word main part.
    raise UnsupportedDocumentError(f"Could not read DOCX {file_name}: {exc}") from exc
  return "\n".join(paragraph.text for paragraph in document.paragraphs)


def require_min_text(text: str, file_name: str, min_chars: int = MIN_TEXT_CHARS) -> str:
  """Reject documents whose extracted text is too short to be worth processing."""
  stripped = text.strip()
  if len(stripped) < min_chars:
    raise UnsupportedDocumentError(f"{file_name} contains only {len(stripped)} characters of text; at least {min_chars} are required.")
  return stripped


def count_pdf_pages(data: bytes) -> int:
  try:
    return len(PdfReader(io.BytesIO(data)).pages)
  except PdfReadError as exc:
    raise UnsupportedDocumentError(f"Could not read PDF: {exc}") from exc


def estimate_complexity(text: str, chunk_size: int = 1000) -> dict[str, Any]:
  """Rough credit and time estimate shown before a user starts processing."""
  characters = len(text)
  estimated_chunks = math.ceil(characters / chunk_size)
  return {
    "characters": characters,
    "estimatedChunks": estimated_chunks,
    "estimatedCredits": max(1, estimated_chunks),
    "estimatedTimeSeconds": max(10, math.ceil(characters / 300)),
  }
