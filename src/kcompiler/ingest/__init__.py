"""Content resolution and quality scoring for ingestion records."""

from kcompiler.ingest.quality import QualityScorer
from kcompiler.ingest.resolver import ContentResolver

__all__ = ["ContentResolver", "QualityScorer"]
