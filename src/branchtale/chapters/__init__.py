"""Chapter tree construction and chapter lifecycle."""

from branchtale.chapters.service import ChapterService
from branchtale.chapters.tree_builder import ChapterTreeBuilder, TreeMetadata

__all__ = [
    "ChapterService",
    "ChapterTreeBuilder",
    "TreeMetadata",
]
