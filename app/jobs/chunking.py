"""Split document text and PDFs into bounded parts."""

from __future__ import annotations

import io
import math
from collections.abc import Sequence
from dataclasses import dataclass

from pypdf import PdfReader, PdfWriter

MIN_CHUNK_SIZE = 500
MAX_CHUNK_SIZE = 2000
MAX_OVERLAP = 200


@dataclass(frozen=True)
class DocumentChunk:
  """A slice of document text; end_offset is exclusive."""

  index: int
  text: str
  start_offset: int
  end_offset: int


@dataclass(frozen=True)
class PagePart:
  """A contiguous page range [start_page, end_page) of a PDF."""

  index: int
  start_page: int
  end_page: int

  @property
  def page_count(self) -> int:
    return self.end_page - self.start_page


@dataclass(frozen=True)
class PdfPart:
  """A PDF written from one page range."""

  part: PagePart
  file_name: str
  data: bytes


def validate_chunk_options(chunk_size: int, overlap: int) -> None:
  """Check user-supplied chunk options against the ranges the upload form offers."""
  if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
    raise ValueError(f"chunk_size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}.")
  if not 0 <= overlap <= MAX_OVERLAP:
    raise ValueError(f"overlap must be between 0 and {MAX_OVERLAP}.")


def split_text(text: str, chunk_size: int = 1000, overlap: int = 100) -> list[DocumentChunk]:
  """Split text into chunks of at most chunk_size characters.

  Consecutive chunks share `overlap` characters: chunk i starts at
  i * (chunk_size - overlap). The last chunk may be shorter.
  """
  if chunk_size <= 0:
    raise ValueError("chunk_size must be positive.")
  if not 0 <= overlap < chunk_size:
    raise ValueError("overlap must be at least 0 and smaller than chunk_size.")

  stride = chunk_size - overlap
  chunks: list[DocumentChunk] = []
  start = 0
  while start < len(text):
    end = min(start + chunk_size, len(text))
    chunks.append(DocumentChunk(index=len(chunks), text=text[start:end], start_offset=start, end_offset=end))
    if end == len(text):
      break
    start += stride
  return chunks


def join_chunks(chunks: Sequence[DocumentChunk]) -> str:
  """Rebuild the original text by dropping each chunk's overlapping prefix."""
  parts: list[str] = []
  covered = 0
  for chunk in chunks:
    skip = max(0, covered - chunk.start_offset)
    parts.append(chunk.text[skip:])
    covered = max(covered, chunk.end_offset)
  return "".join(parts)


def plan_page_parts(total_pages: int, num_parts: int) -> list[PagePart]:
  """Partition pages into at most num_parts contiguous, non-empty ranges."""
  if total_pages < 0:
    raise ValueError("total_pages must not be negative.")
  if num_parts < 1:
    raise ValueError("num_parts must be at least 1.")

  pages_per_part = max(1, math.ceil(total_pages / num_parts))
  parts: list[PagePart] = []
  for index in range(num_parts):
    start = index * pages_per_part
    # Rounding up can exhaust the pages before the last part.
    if start >= total_pages:
      break
    end = min((index + 1) * pages_per_part, total_pages)
    parts.append(PagePart(index=index, start_page=start, end_page=end))
  return parts


def split_pdf_bytes(data: bytes, num_parts: int, base_name: str) -> list[PdfPart]:
  """Write each planned page range of a PDF into its own document."""
  reader = PdfReader(io.BytesIO(data))
  plan = plan_page_parts(len(reader.pages), num_parts)

  results: list[PdfPart] = []
  for part in plan:
    writer = PdfWriter()
    for page in reader.pages[part.start_page : part.end_page]:
      writer.add_page(page)
    buffer = io.BytesIO()
    writer.write(buffer)
    file_name = f"{base_name}_part_{part.index + 1}_of_{len(plan)}.pdf"
    results.append(PdfPart(part=part, file_name=file_name, data=buffer.getvalue()))
  return results
