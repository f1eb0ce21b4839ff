"""
Test data factories for the site data aggregator.
"""
from .source_factory import NewSourceFactory, SourceFactory
from .reading_factory import NewReadingFactory

__all__ = [
    "NewSourceFactory",
    "SourceFactory",
    "NewReadingFactory",
]
