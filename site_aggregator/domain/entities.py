"""
Domain entities for the site data aggregator.

Sources are registry rows describing what to poll and how often.
Readings are the immutable results appended by pollers.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntFlag
from typing import Any, Dict, Optional, Tuple


class QualityFlags(IntFlag):
    """Quality indicators for a reading (bitmask, 0 means OK)."""
    OK = 0
    STALE = 1              # Finished more than one interval after its tick
    COLLECTOR_ERROR = 2    # Collector raised or timed out
    PARSE_ERROR = 4        # Result was not a JSON object


@dataclass
class Source:
    """
    A registered data source.

    The collector used for polling is selected by test_type when it is
    set, otherwise by name.
    """
    id: int
    name: str
    description: Optional[str] = None
    active: bool = True
    interval_seconds: int = 1
    last_run: Optional[datetime] = None
    test_type: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    site_id: Optional[int] = None
    company_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def collector_key(self) -> str:
        """Identifier used to look up the collector."""
        return self.test_type or self.name

    def config_signature(self) -> Tuple[str, str, int, str]:
        """
        Everything a running poller captured at spawn time.

        Two sources with equal signatures can share a poller; any
        difference requires a restart.
        """
        return (
            self.name,
            self.collector_key,
            self.interval_seconds,
            json.dumps(self.arguments or {}, sort_keys=True, default=str),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "active": self.active,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "test_type": self.test_type,
            "arguments": self.arguments,
            "site_id": self.site_id,
            "company_id": self.company_id,
        }


@dataclass
class NewSource:
    """Fields required to register a source."""
    name: str
    description: Optional[str] = None
    active: bool = True
    interval_seconds: int = 1
    test_type: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    site_id: Optional[int] = None
    company_id: Optional[int] = None


@dataclass
class SourceUpdate:
    """Partial update of a source; None leaves a field untouched."""
    name: Optional[str] = None
    description: Optional[str] = None
    active: Optional[bool] = None
    interval_seconds: Optional[int] = None
    test_type: Optional[str] = None
    arguments: Optional[Dict[str, Any]] = None
    site_id: Optional[int] = None
    company_id: Optional[int] = None

    def changes(self) -> Dict[str, Any]:
        """Fields that were set."""
        return {
            key: value
            for key, value in self.__dict__.items()
            if value is not None
        }


@dataclass
class NewReading:
    """A reading about to be appended."""
    source_id: int
    data: Dict[str, Any]
    quality_flags: QualityFlags = QualityFlags.OK
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(frozen=True)
class Reading:
    """A persisted reading. Readings are never modified."""
    id: int
    source_id: int
    timestamp: datetime
    data: Dict[str, Any]
    quality_flags: QualityFlags = QualityFlags.OK

    @property
    def is_ok(self) -> bool:
        return self.quality_flags == QualityFlags.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "quality_flags": int(self.quality_flags),
        }
