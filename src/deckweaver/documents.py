"""Directory-backed document provider used by the CLI."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from deckweaver.logging import get_logger
from deckweaver.models.document import SourceDocument

logger = get_logger(__name__)

TEXT_SUFFIXES = (".md", ".markdown", ".txt")

_ID_RE = re.compile(r"[^a-z0-9]+")


def document_id(path: Path) -> str:
    """Stable id derived from the file stem, e.g. ``Q3 Report.md`` -> ``q3-report``."""

    return _ID_RE.sub("-", path.stem.lower()).strip("-") or "doc"


@dataclass
class DirectoryDocumentProvider:
    """Lists the text documents of one directory, sorted by file name."""

    root: Path

    def list_documents(self) -> list[SourceDocument]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Not a directory: {self.root}")
        docs: list[SourceDocument] = []
        ids: set[str] = set()
        for path in sorted(self.root.iterdir()):
            if not path.is_file() or path.suffix.lower() not in TEXT_SUFFIXES:
                continue
            content = path.read_text(encoding="utf-8").strip()
            if not content:
                logger.warning("Skipping empty document", extra={"path": str(path)})
                continue
            base = document_id(path)
            doc_id, n = base, 2
            while doc_id in ids:
                doc_id, n = f"{base}-{n}", n + 1
            ids.add(doc_id)
            docs.append(SourceDocument(id=doc_id, name=path.name, content=content))
        return docs
