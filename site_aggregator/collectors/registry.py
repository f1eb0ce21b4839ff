"""
Collector registry.

Maps a source's collector key (test_type, or name when test_type is
unset) to a collector coroutine. The table is built once at startup;
unknown keys raise UnknownCollectorError.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple

from ..config import CollectorSettings
from ..domain.entities import Source
from ..exceptions import CollectorError, UnknownCollectorError
from . import builtin
from .builtin import CollectorContext

logger = logging.getLogger(__name__)

CollectorFunc = Callable[[CollectorContext], Awaitable[Dict[str, Any]]]


class CollectorRegistry:
    """
    Registry of collectors.

    Provides methods for:
    - Registering collectors by key
    - Legacy name prefixes that carry an argument (ping_<target>)
    - Resolving a source and running its collector with a timeout
    """

    def __init__(self, settings: Optional[CollectorSettings] = None):
        """Initialize an empty registry."""
        self.settings = settings or CollectorSettings()
        self._collectors: Dict[str, CollectorFunc] = {}
        # (prefix, collector key, argument name)
        self._prefix_aliases: List[Tuple[str, str, str]] = []

    def register(self, key: str, func: CollectorFunc) -> None:
        """
        Register a collector.

        Args:
            key: Collector key.
            func: Collector coroutine function.

        Raises:
            ValueError: If the key is already registered.
        """
        if key in self._collectors:
            raise ValueError(f"Collector '{key}' is already registered")

        self._collectors[key] = func
        logger.debug(f"Registered collector: {key}")

    def register_prefix_alias(self, prefix: str, key: str, argument: str) -> None:
        """
        Map names like <prefix><value> onto a collector.

        The remainder of the name is passed as the given argument.
        Longer prefixes are matched first.
        """
        if key not in self._collectors:
            raise ValueError(f"Collector '{key}' is not registered")

        self._prefix_aliases.append((prefix, key, argument))
        self._prefix_aliases.sort(key=lambda alias: len(alias[0]), reverse=True)

    def unregister(self, key: str) -> Optional[CollectorFunc]:
        return self._collectors.pop(key, None)

    def resolve(self, source: Source) -> Tuple[str, CollectorFunc, Dict[str, Any]]:
        """
        Find the collector for a source.

        Args:
            source: Source to resolve.

        Returns:
            Tuple of (collector key, function, effective arguments).

        Raises:
            UnknownCollectorError: If nothing matches.
        """
        key = source.collector_key
        arguments = dict(source.arguments or {})

        func = self._collectors.get(key)
        if func:
            return key, func, arguments

        for prefix, target, argument in self._prefix_aliases:
            if key.startswith(prefix) and len(key) > len(prefix):
                arguments.setdefault(argument, key[len(prefix):])
                return target, self._collectors[target], arguments

        raise UnknownCollectorError(key, source_id=source.id)

    async def collect(
        self,
        source: Source,
        database_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Run the collector for a source.

        Args:
            source: Source being polled.
            database_path: Site database path (default file for probes).
            timeout: Upper bound on the collector call.

        Returns:
            The collector's result.

        Raises:
            CollectorError: On any failure of the attempt.
        """
        key, func, arguments = self.resolve(source)
        ctx = CollectorContext(
            source_id=source.id,
            collector=key,
            arguments=arguments,
            database_path=database_path,
            settings=self.settings,
        )

        try:
            if timeout:
                return await asyncio.wait_for(func(ctx), timeout=timeout)
            return await func(ctx)

        except CollectorError as e:
            e.collector = e.collector or key
            e.source_id = e.source_id if e.source_id is not None else source.id
            raise

        except asyncio.CancelledError:
            raise

        except asyncio.TimeoutError as e:
            raise CollectorError(
                f"Collector '{key}' timed out after {timeout}s",
                kind="timeout", collector=key, source_id=source.id,
            ) from e

        except OSError as e:
            raise CollectorError(
                f"Collector '{key}' I/O failure: {e}",
                kind="io", collector=key, source_id=source.id,
            ) from e

        except (ValueError, TypeError, KeyError) as e:
            raise CollectorError(
                f"Collector '{key}' rejected arguments {arguments}: {e}",
                kind="arguments", collector=key, source_id=source.id,
            ) from e

        except Exception as e:
            raise CollectorError(
                f"Collector '{key}' failed: {e}",
                kind="failed", collector=key, source_id=source.id,
            ) from e

    def keys(self) -> List[str]:
        return sorted(self._collectors)

    def __contains__(self, key: str) -> bool:
        return key in self._collectors

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._collectors)


def build_default_registry(settings: Optional[CollectorSettings] = None) -> CollectorRegistry:
    """
    Create a registry holding every built-in collector.

    Args:
        settings: Collector settings.

    Returns:
        Populated CollectorRegistry.
    """
    registry = CollectorRegistry(settings)

    registry.register("current_time", builtin.current_time)
    registry.register("random_digits", builtin.random_digits)
    registry.register("charging_state", builtin.charging_state)
    registry.register("database_modtime", builtin.database_modtime)
    registry.register("database_sha1", builtin.database_sha1)
    registry.register("disk_space", builtin.disk_space)
    registry.register("ping", builtin.ping)
    registry.register("ping_localhost", builtin.ping_localhost)
    registry.register("time_sleep", builtin.time_sleep)
    registry.register("time_sleep_3", builtin.time_sleep)

    registry.register_prefix_alias("charging_state_", "charging_state", "battery_id")
    registry.register_prefix_alias("ping_", "ping", "target")

    logger.debug(f"Built collector registry with {len(registry)} collectors")
    return registry
