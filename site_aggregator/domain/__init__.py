"""
Domain entities for sources and readings.
"""
from .entities import (
    NewReading,
    NewSource,
    QualityFlags,
    Reading,
    Source,
    SourceUpdate,
)

__all__ = [
    "NewReading",
    "NewSource",
    "QualityFlags",
    "Reading",
    "Source",
    "SourceUpdate",
]
