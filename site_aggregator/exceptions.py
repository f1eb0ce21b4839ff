"""
Aggregator exceptions.

ConfigError is fatal at startup. Collector, persistence and reload
errors are logged and isolated to the source or reload that raised them.
"""
from typing import Any, Dict, Optional


class AggregatorError(Exception):
    """
    Base exception for all aggregator errors.

    Carries a machine-readable code and optional details so callers
    can log or report errors consistently.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reporting."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class ConfigError(AggregatorError):
    """Raised when the source registry is unreachable or malformed at startup."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code='CONFIG_ERROR', details=details)


class CollectorError(AggregatorError):
    """
    Raised when a single poll attempt fails.

    The kind is one of: unknown, timeout, io, subprocess, arguments, failed.
    """

    def __init__(
        self,
        message: str,
        kind: str = "failed",
        collector: Optional[str] = None,
        source_id: Optional[int] = None,
    ):
        self.kind = kind
        self.collector = collector
        self.source_id = source_id
        super().__init__(
            message=message,
            code='COLLECTOR_ERROR',
            details={'kind': kind, 'collector': collector, 'source_id': source_id}
        )


class UnknownCollectorError(CollectorError):
    """Raised when no collector is registered for a source."""

    def __init__(self, collector: str, source_id: Optional[int] = None):
        super().__init__(
            message=f"Unknown collector type: {collector}",
            kind="unknown",
            collector=collector,
            source_id=source_id,
        )


class PersistenceError(AggregatorError):
    """Raised when the registry or reading store cannot be written or read."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        source_id: Optional[int] = None,
    ):
        self.operation = operation
        self.source_id = source_id
        super().__init__(
            message=message,
            code='PERSISTENCE_ERROR',
            details={'operation': operation, 'source_id': source_id}
        )


class ReloadError(AggregatorError):
    """Raised when the registry cannot be read during a reload."""

    def __init__(self, message: str):
        super().__init__(message=message, code='RELOAD_ERROR')


class SourceNotFoundError(AggregatorError):
    """Raised when an administrative action names a source that does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            message=f"Source '{name}' not found",
            code='SOURCE_NOT_FOUND',
            details={'name': name}
        )
