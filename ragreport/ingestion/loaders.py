"""Extract plain text from uploaded PDF, Word and TXT documents."""

from __future__ import annotations

import io

from docx import Document as DocxDocument
from pypdf import PdfReader

from ragreport.core.errors import DocumentLoadError, UnsupportedFormatError


SUPPORTED_EXTENSIONS = {".pdf", ".docx", ".doc", ".txt"}


class DocumentLoader:
    """Turns raw upload bytes into text, dispatching on the file extension."""

    def load(self, data: bytes, extension: str) -> str:
        suffix = extension.lower()
        if not suffix.startswith("."):
            suffix = f".{suffix}"
        if suffix not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(f"Unsupported file type: {suffix}")
        try:
            if suffix == ".pdf":
                return self._load_pdf(data)
            if suffix in (".docx", ".doc"):
                # legacy binary .doc only loads when it is really OOXML
                return self._load_docx(data)
            return self._load_text(data)
        except Exception as exc:
            raise DocumentLoadError(f"Failed to parse {suffix} document: {exc}") from exc

    def _load_pdf(self, data: bytes) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for page in reader.pages:
            text = page.extract_text() or ""
            if text.strip():
                pages.append(text)
        return "\n\n".join(pages)

    def _load_docx(self, data: bytes) -> str:
        document = DocxDocument(io.BytesIO(data))
        return "\n".join(paragraph.text for paragraph in document.paragraphs)

    def _load_text(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")
