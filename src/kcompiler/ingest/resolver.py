"""Resolve the raw text of an ingestion record from stored fields only."""

from __future__ import annotations

from kcompiler.db.models import IngestionRecord
from kcompiler.db.repository import Repository


class ContentResolver:
    """Return the text to compile for an ingestion record, or None.

    Bookmarks resolve to ``title + blank line + description`` from the stored
    bookmark row; text sources resolve to their stored raw_text. No network
    I/O is performed.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def resolve(self, record: IngestionRecord) -> str | None:
        if record.source_type == "bookmark":
            return self._resolve_bookmark(record)
        if record.source_type == "text":
            text = (record.raw_text or "").strip()
            return text or None
        return None

    def _resolve_bookmark(self, record: IngestionRecord) -> str | None:
        if not record.source_id:
            return None
        bookmark = self._repo.get_bookmark(record.source_id)
        if bookmark is None:
            return None

        text = (bookmark.description or "").strip()
        title = (bookmark.title or "").strip()
        if title:
            text = f"{title}\n\n{text}" if text else title
        return text or None
