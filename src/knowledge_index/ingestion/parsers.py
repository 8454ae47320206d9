"""
Document Parsers

Each parser turns a byte stream into text plus string metadata. Parsers never
raise for a document they merely fail to read: they return empty content and
a warning describing what went wrong. Cancellation always propagates.

Parsers are looked up by file extension through ``ParserRegistry``.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from abc import ABC, abstractmethod
from threading import RLock
from typing import BinaryIO, Dict, List, Optional

import docx  # python-docx
import fitz  # PyMuPDF
from bs4 import BeautifulSoup

from ..core.logging import sanitize
from .models import ParsedDocument

logger = logging.getLogger("kb.parsers")


def extension_of(file_name: str) -> str:
    return os.path.splitext(file_name)[1].lower()


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


class DocumentParser(ABC):
    """
    Base for parsers. Subclasses declare ``extensions`` and implement
    ``_parse_bytes``, which runs in a worker thread.
    """

    extensions: frozenset = frozenset()
    name = "Document"

    async def parse(self, stream: BinaryIO, file_name: str) -> ParsedDocument:
        try:
            data = stream.read()
            return await asyncio.to_thread(self._parse_bytes, data, file_name)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "%s parser failed for %s: %s",
                self.name,
                sanitize(file_name),
                exc,
            )
            return ParsedDocument(
                content="",
                warnings=[f"Error reading {self.name} file: {exc}"],
            )

    @abstractmethod
    def _parse_bytes(self, data: bytes, file_name: str) -> ParsedDocument:
        ...


# ---------------------------------------------------------------------
# Plain Text
# ---------------------------------------------------------------------

_TEXT_TYPES = {
    ".md": "Markdown",
    ".markdown": "Markdown",
    ".csv": "CSV",
    ".json": "JSON",
    ".xml": "XML",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".log": "Log",
}


class TextParser(DocumentParser):
    extensions = frozenset(
        {".txt", ".md", ".markdown", ".csv", ".log", ".json", ".xml", ".yaml", ".yml"}
    )
    name = "Text"

    def _parse_bytes(self, data: bytes, file_name: str) -> ParsedDocument:
        ext = extension_of(file_name)
        content = _decode(data)
        metadata: Dict[str, str] = {"FileType": _TEXT_TYPES.get(ext, "PlainText")}
        warnings: List[str] = []

        if not content.strip():
            warnings.append("Document contains no readable text content")
            content = ""

        lines = content.split("\n")
        metadata["LineCount"] = str(len(lines))

        if ext in (".md", ".markdown"):
            has_headers = any(line.lstrip().startswith("#") for line in lines)
            metadata["HasMarkdownHeaders"] = str(has_headers)

        if ext == ".csv":
            first = lines[0] if lines else ""
            counts = {",": first.count(","), "\\t": first.count("\t"), ";": first.count(";")}
            metadata["CsvDelimiter"] = max(counts, key=lambda k: counts[k])

        return ParsedDocument(content=content, metadata=metadata, warnings=warnings)


# ---------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------

class PdfParser(DocumentParser):
    extensions = frozenset({".pdf"})
    name = "PDF"

    def _parse_bytes(self, data: bytes, file_name: str) -> ParsedDocument:
        pages: List[str] = []
        warnings: List[str] = []
        metadata: Dict[str, str] = {"FileType": "PDF"}

        with fitz.open(stream=data, filetype="pdf") as doc:
            metadata["PageCount"] = str(len(doc))
            for key in ("title", "author", "subject", "creator"):
                value = (doc.metadata or {}).get(key)
                if value:
                    metadata[key.capitalize()] = value

            for page_number, page in enumerate(doc, start=1):
                try:
                    text = page.get_text("text")
                except Exception as exc:
                    warnings.append(f"Page {page_number}: extraction failed ({exc})")
                    continue

                if not text or text.isspace():
                    warnings.append(f"Page {page_number}: no extractable text")
                    continue
                pages.append(f"[Page {page_number}]\n{text.strip()}")

        if not pages:
            warnings.append("PDF contains no extractable text (it may be scanned)")

        return ParsedDocument(content="\n\n".join(pages), metadata=metadata, warnings=warnings)


# ---------------------------------------------------------------------
# Word
# ---------------------------------------------------------------------

class DocxParser(DocumentParser):
    extensions = frozenset({".docx"})
    name = "DOCX"

    def _parse_bytes(self, data: bytes, file_name: str) -> ParsedDocument:
        document = docx.Document(io.BytesIO(data))
        blocks = [p.text for p in document.paragraphs if p.text and not p.text.isspace()]

        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    blocks.append(" | ".join(cells))

        metadata = {
            "FileType": "DOCX",
            "ParagraphCount": str(len(document.paragraphs)),
            "TableCount": str(len(document.tables)),
        }
        title = document.core_properties.title
        if title:
            metadata["Title"] = title

        warnings = [] if blocks else ["Document contains no readable text content"]
        return ParsedDocument(content="\n\n".join(blocks), metadata=metadata, warnings=warnings)


# ---------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------

class HtmlParser(DocumentParser):
    extensions = frozenset({".html", ".htm"})
    name = "HTML"

    def _parse_bytes(self, data: bytes, file_name: str) -> ParsedDocument:
        soup = BeautifulSoup(_decode(data), "html.parser")

        for element in soup(["script", "style", "noscript"]):
            element.decompose()

        text = soup.get_text(separator="\n", strip=True)
        metadata = {"FileType": "HTML"}
        if soup.title and soup.title.string:
            metadata["Title"] = soup.title.string.strip()

        warnings = [] if text else ["Document contains no readable text content"]
        return ParsedDocument(content=text, metadata=metadata, warnings=warnings)


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class ParserRegistry:
    """
    Extension-keyed parser lookup. Later registrations win for an extension.
    """

    def __init__(self, parsers: Optional[List[DocumentParser]] = None) -> None:
        self._lock = RLock()
        self._by_extension: Dict[str, DocumentParser] = {}
        for parser in parsers if parsers is not None else default_parsers():
            self.register(parser)

    def register(self, parser: DocumentParser) -> None:
        with self._lock:
            for ext in parser.extensions:
                self._by_extension[ext.lower()] = parser

    def get(self, file_name: str) -> Optional[DocumentParser]:
        with self._lock:
            return self._by_extension.get(extension_of(file_name))

    def supported_extensions(self) -> List[str]:
        with self._lock:
            return sorted(self._by_extension)

    async def parse(self, stream: BinaryIO, file_name: str) -> ParsedDocument:
        parser = self.get(file_name)
        if parser is None:
            ext = extension_of(file_name) or "(none)"
            return ParsedDocument(
                content="",
                warnings=[f"Unsupported file type: {ext}"],
            )
        return await parser.parse(stream, file_name)


def default_parsers() -> List[DocumentParser]:
    return [TextParser(), PdfParser(), DocxParser(), HtmlParser()]
