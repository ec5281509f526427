"""Ingest utilities shared by CLI commands, adapters and workflows.

Tabular sources reach the pipeline as a list of string rows with no assumed
header or column order; the column analyzer decides what they mean. These
helpers only decode bytes and split CSV text into cells.
"""

from __future__ import annotations

import csv
import io
from os import PathLike
from pathlib import Path

from ..models import RawRow

_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")
_DELIMITERS = (",", ";", "\t", "|")


def decode_text(data: bytes) -> str:
    """Decode file bytes, trying UTF-8 (with BOM) before common legacy encodings."""

    for enc in _ENCODINGS:
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def read_csv_rows(text: str) -> list[RawRow]:
    """Split CSV text into rows of stripped cells, dropping fully blank rows."""

    first = next((ln for ln in text.splitlines() if ln.strip()), "")
    delimiter = max(_DELIMITERS, key=first.count) if first else ","
    if first.count(delimiter) == 0:
        delimiter = ","

    rows: list[RawRow] = []
    for row in csv.reader(io.StringIO(text, newline=""), delimiter=delimiter):
        cells = [c.strip() for c in row]
        if any(cells):
            rows.append(cells)
    return rows


def read_csv_file(csv_path: str | PathLike[str]) -> list[RawRow]:
    p = Path(csv_path)
    return read_csv_rows(decode_text(p.read_bytes()))


def looks_like_csv(filename: str | None, content_type: str | None) -> bool:
    name = (filename or "").lower()
    ctype = (content_type or "").lower()
    return name.endswith(".csv") or ctype in {"text/csv", "application/csv"}


def looks_like_pdf(filename: str | None, content_type: str | None) -> bool:
    name = (filename or "").lower()
    ctype = (content_type or "").lower()
    return name.endswith(".pdf") or ctype == "application/pdf"


_IMAGE_SUFFIXES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def image_media_type(filename: str | None, content_type: str | None) -> str | None:
    """MIME type for a supported statement image, else ``None``."""

    ctype = (content_type or "").lower()
    if ctype in set(_IMAGE_SUFFIXES.values()):
        return ctype
    suffix = Path(filename or "").suffix.lower()
    return _IMAGE_SUFFIXES.get(suffix)


__all__ = [
    "decode_text",
    "read_csv_rows",
    "read_csv_file",
    "looks_like_csv",
    "looks_like_pdf",
    "image_media_type",
]
