"""
Collectors for data sources.

Maps a source's type to the coroutine that produces its readings.
"""
from .builtin import CollectorContext, charging_state_with_level, parse_ping_output
from .registry import CollectorFunc, CollectorRegistry, build_default_registry

__all__ = [
    "CollectorContext",
    "CollectorFunc",
    "CollectorRegistry",
    "build_default_registry",
    "charging_state_with_level",
    "parse_ping_output",
]
