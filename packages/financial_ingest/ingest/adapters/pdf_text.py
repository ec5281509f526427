"""PDF to plain text via ``pdfplumber``.

The statement extractor works on text, so this adapter only has to turn PDF
bytes into lines. Pages are joined with newlines. The call runs under the
run's remote timeout; any parser failure becomes an
:class:`~financial_ingest.errors.ExternalServiceError`.
"""

from __future__ import annotations

import io

import pdfplumber

from ...errors import ExternalServiceError, ExternalTimeoutError
from ...logging_setup import get_logger
from ...remote import call_with_timeout

SERVICE = "pdf_text"

_logger = get_logger("financial_ingest.ingest.pdf_text")


def _extract(data: bytes) -> str:
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n".join(pages)


def extract_pdf_text(data: bytes, *, timeout_sec: float) -> str:
    """Return the text of every page, or raise ``ExternalServiceError``."""

    try:
        text = call_with_timeout(lambda: _extract(data), timeout_sec=timeout_sec, service=SERVICE)
    except ExternalTimeoutError:
        raise
    except Exception as e:  # noqa: BLE001 - pdfminer raises a wide range of types
        _logger.warning("pdf text extraction failed: %s", e)
        raise ExternalServiceError(SERVICE, f"could not read PDF: {e}") from e
    _logger.debug("extracted %d characters from PDF", len(text))
    return text


__all__ = ["extract_pdf_text", "SERVICE"]
