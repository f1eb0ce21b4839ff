"""
Storage for the source registry and readings log.
"""
from .database import Base, DatabaseManager
from .reading_repository import ReadingRepository
from .site_store import SiteStore
from .source_repository import SourceRepository

__all__ = [
    "Base",
    "DatabaseManager",
    "ReadingRepository",
    "SiteStore",
    "SourceRepository",
]
