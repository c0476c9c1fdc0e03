"""Render generated clause variants into training-data file formats."""

from __future__ import annotations

import csv
import io
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import msgspec

OUTPUT_FORMATS = ("jsonl", "openai", "mistral", "claude", "falcon", "csv")
OPENAI_SYSTEM_PROMPT = "You are an expert in this domain."

Entry = Mapping[str, str]

_encoder = msgspec.json.Encoder()


def _jsonl(records: Iterable[Mapping[str, Any]]) -> str:
  return "\n".join(_encoder.encode(record).decode("utf-8") for record in records)


def _plain(entry: Entry) -> dict[str, Any]:
  return {"input": entry["input"], "classification": entry["classification"], "output": entry["output"]}


def _openai(entry: Entry) -> dict[str, Any]:
  return {"messages": [{"role": "system", "content": OPENAI_SYSTEM_PROMPT}, {"role": "user", "content": entry["input"]}, {"role": "assistant", "content": entry["output"]}]}


def _mistral(entry: Entry) -> dict[str, Any]:
  return {"text": f"<s>[INST] Write a clause similar to this: {entry['input']} [/INST] {entry['output']} </s>"}


def _claude(entry: Entry) -> dict[str, Any]:
  return {"prompt": f"\n\nHuman: {entry['input']}\n\nAssistant:", "completion": f" {entry['output']}"}


def _falcon(entry: Entry) -> dict[str, Any]:
  return {"text": f"Human: Rewrite this clause: {entry['input']}\n\nAssistant: {entry['output']}"}


_LINE_BUILDERS: dict[str, Callable[[Entry], dict[str, Any]]] = {
  "jsonl": _plain,
  "openai": _openai,
  "mistral": _mistral,
  "claude": _claude,
  "falcon": _falcon,
}


def format_entries(entries: Iterable[Entry], output_format: str) -> str:
  """Serialize {input, classification, output} entries in the requested format."""
  if output_format == "csv":
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(["input", "classification", "output"])
    for entry in entries:
      writer.writerow([entry["input"], entry["classification"], entry["output"]])
    return buffer.getvalue()

  builder = _LINE_BUILDERS.get(output_format)
  if builder is None:
    raise ValueError(f"Unsupported output format '{output_format}'; expected one of {list(OUTPUT_FORMATS)}.")
  return _jsonl(builder(entry) for entry in entries)


def tag_source(entries: Iterable[Entry], source_file: str) -> list[dict[str, str]]:
  """Attach the originating file name to each entry for combined batch output."""
  return [{**_plain(entry), "sourceFile": source_file} for entry in entries]


def combine_jsonl(entries: Iterable[Mapping[str, Any]]) -> str:
  return _jsonl(entries)
