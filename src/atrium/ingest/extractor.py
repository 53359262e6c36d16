"""Text extraction for uploaded files.

Dispatch by MIME type, falling back to the file extension:
  image/*                 → vision model (text + description + analysis)
  application/pdf / .pdf  → pypdf, page cap + whole-document timeout
  .docx                   → python-docx paragraphs and tables
  text/*, code, JSON, ... → UTF-8 decode
  anything else           → "" (caller skips the file)

Failures raise ExtractionError; the ingest pipeline turns them into a
per-file note so one bad file never aborts a batch.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING

import pypdf
from docx import Document as DocxDocument
from pypdf.errors import PdfReadError

from atrium.errors import ExtractionError, ProviderError

if TYPE_CHECKING:
    from atrium.providers.base import CompletionProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_PDF_PAGES = 100
DEFAULT_PDF_TIMEOUT = 30.0
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB

_IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp"}
_DOCX_MIMES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_TEXT_MIMES = {
    "application/json",
    "application/xml",
    "application/javascript",
    "application/x-javascript",
    "application/x-yaml",
    "application/yaml",
    "application/x-sh",
    "application/sql",
    "application/toml",
}
_TEXT_EXTS = {
    ".txt", ".md", ".markdown", ".rst", ".csv", ".tsv", ".log", ".json", ".yaml", ".yml",
    ".toml", ".ini", ".cfg", ".xml", ".html", ".htm", ".css", ".py", ".js", ".jsx", ".ts",
    ".tsx", ".java", ".go", ".rs", ".rb", ".php", ".c", ".h", ".cpp", ".hpp", ".cs",
    ".swift", ".kt", ".sh", ".sql",
}

VISION_PROMPT = """\
Analyze this image and respond using exactly these three labeled sections:

EXTRACTED_TEXT:
<all text visible in the image, verbatim; write "No text detected" if there is none>

IMAGE_DESCRIPTION:
<a detailed description of what the image shows>

ANALYSIS:
<a short analysis of the image's purpose or key insights>"""

_SECTION_RE = re.compile(r"(EXTRACTED_TEXT|IMAGE_DESCRIPTION|ANALYSIS)\s*:", re.IGNORECASE)
_NO_TEXT_RE = re.compile(r"^\W*no text (?:was )?(?:detected|found)\W*$", re.IGNORECASE)


@dataclass
class Extraction:
    """Result of extracting one file.

    Attributes:
        text: Raw text (OCR text for images).
        description: Natural-language description (images only).
        analysis: Short analysis (images only).
        kind: image | pdf | docx | text | unsupported
        pages: Total page count (PDF only).
        truncated: True if the PDF exceeded the page cap or timed out.
    """

    text: str
    kind: str
    description: str = ""
    analysis: str = ""
    pages: int | None = None
    truncated: bool = False

    @property
    def embeddable_text(self) -> str:
        """Description and text combined into one blob for chunking."""
        if self.kind != "image":
            return self.text
        parts = []
        if self.description:
            parts.append(f"Image description: {self.description}")
        if self.text:
            parts.append(f"Text in image:\n{self.text}")
        return "\n\n".join(parts)


def detect_kind(mime: str, filename: str) -> str:
    """Classify a file as image, pdf, docx, text or unsupported."""
    mime = (mime or "").lower().split(";")[0].strip()
    ext = PurePath(filename or "").suffix.lower()
    if mime.startswith("image/") or ext in _IMAGE_EXTS:
        return "image"
    if mime == "application/pdf" or ext == ".pdf":
        return "pdf"
    if mime in _DOCX_MIMES or ext == ".docx":
        return "docx"
    if mime.startswith("text/") or mime in _TEXT_MIMES or ext in _TEXT_EXTS:
        return "text"
    return "unsupported"


class TextExtractor:
    """Extract raw text (and image descriptions) from uploaded bytes.

    Args:
        vision: Completion provider able to read images; required for images.
        max_pdf_pages: Pages read before the rest of a PDF is skipped.
        pdf_timeout: Seconds allowed for reading a whole PDF.
        max_upload_bytes: Files above this size are rejected outright.
    """

    def __init__(
        self,
        vision: CompletionProvider | None = None,
        max_pdf_pages: int = DEFAULT_MAX_PDF_PAGES,
        pdf_timeout: float = DEFAULT_PDF_TIMEOUT,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self._vision = vision
        self.max_pdf_pages = max_pdf_pages
        self.pdf_timeout = pdf_timeout
        self.max_upload_bytes = max_upload_bytes

    async def extract(self, data: bytes, mime: str, filename: str) -> Extraction:
        """Extract text from *data*.

        Raises:
            ExtractionError: File too large, unreadable, or the vision call failed.
        """
        if len(data) > self.max_upload_bytes:
            raise ExtractionError(
                f"File exceeds the {self.max_upload_bytes // (1024 * 1024)} MB upload limit",
                filename=filename,
            )

        kind = detect_kind(mime, filename)
        if kind == "image":
            return await self._extract_image(data, mime, filename)
        if kind == "pdf":
            return await self._extract_pdf(data, filename)
        if kind == "docx":
            return _extract_docx(data, filename)
        if kind == "text":
            return Extraction(text=data.decode("utf-8", errors="replace"), kind="text")
        logger.info("Skipping unsupported file type: %s (%s)", filename, mime)
        return Extraction(text="", kind="unsupported")

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _extract_image(self, data: bytes, mime: str, filename: str) -> Extraction:
        if self._vision is None:
            raise ExtractionError("No vision model configured for images", filename=filename)

        from atrium.providers.base import CompletionRequest

        image_mime = mime if (mime or "").startswith("image/") else "image/png"
        data_url = f"data:{image_mime};base64,{base64.b64encode(data).decode('ascii')}"
        request = CompletionRequest(
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
            temperature=0.0,
        )
        try:
            completion = await self._vision.complete(request)
        except ProviderError as exc:
            raise ExtractionError(f"Vision model failed: {exc}", filename=filename) from exc

        text, description, analysis = parse_vision_response(completion.text)
        return Extraction(text=text, description=description, analysis=analysis, kind="image")

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    async def _extract_pdf(self, data: bytes, filename: str) -> Extraction:
        parts: list[str] = []
        state: dict = {"pages": None}

        def _read() -> None:
            reader = pypdf.PdfReader(io.BytesIO(data))
            total = len(reader.pages)
            state["pages"] = total
            for index in range(min(total, self.max_pdf_pages)):
                try:
                    page_text = reader.pages[index].extract_text() or ""
                except Exception as exc:  # noqa: BLE001
                    logger.debug("PDF %s: page %d unreadable (%s)", filename, index + 1, exc)
                    continue
                if page_text.strip():
                    parts.append(page_text.strip())

        timed_out = False
        try:
            await asyncio.wait_for(asyncio.to_thread(_read), timeout=self.pdf_timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("PDF %s: extraction timed out after %.0fs", filename, self.pdf_timeout)
        except PdfReadError as exc:
            raise ExtractionError(f"Unreadable PDF: {exc}", filename=filename) from exc

        pages = state["pages"]
        text = "\n\n".join(parts)
        truncated = False
        if timed_out:
            if not parts:
                raise ExtractionError(
                    f"PDF extraction timed out after {self.pdf_timeout:.0f}s", filename=filename
                )
            truncated = True
            text += (
                f"\n\n[Extraction timed out after {self.pdf_timeout:.0f}s; "
                f"only the first {len(parts)} pages with text were read.]"
            )
        elif pages is not None and pages > self.max_pdf_pages:
            truncated = True
            text += (
                f"\n\n[Document truncated: only the first {self.max_pdf_pages} "
                f"of {pages} pages were processed.]"
            )
        return Extraction(text=text, kind="pdf", pages=pages, truncated=truncated)


# ------------------------------------------------------------------
# Office documents
# ------------------------------------------------------------------


def _extract_docx(data: bytes, filename: str) -> Extraction:
    """Paragraphs, then tables as pipe-separated rows."""
    try:
        doc = DocxDocument(io.BytesIO(data))
    except Exception as exc:  # python-docx raises a mix of zipfile/KeyError/ValueError
        raise ExtractionError(f"Failed to open DOCX: {exc}", filename=filename) from exc

    parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        rows = []
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                rows.append(" | ".join(cells))
        if rows:
            parts.append("\n".join(rows))
    return Extraction(text="\n\n".join(parts), kind="docx")


# ------------------------------------------------------------------
# Vision response parsing
# ------------------------------------------------------------------


def parse_vision_response(raw: str) -> tuple[str, str, str]:
    """Split a vision response into (extracted_text, description, analysis).

    Without any section markers the whole response is treated as extracted
    text. A literal "No text detected" is normalised to "".
    """
    raw = (raw or "").strip()
    matches = list(_SECTION_RE.finditer(raw))
    if not matches:
        return _normalise_no_text(raw), "", ""

    sections: dict[str, str] = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(raw)
        sections[match.group(1).upper()] = raw[match.end() : end].strip()

    return (
        _normalise_no_text(sections.get("EXTRACTED_TEXT", "")),
        sections.get("IMAGE_DESCRIPTION", ""),
        sections.get("ANALYSIS", ""),
    )


def _normalise_no_text(text: str) -> str:
    return "" if _NO_TEXT_RE.match(text) else text
