"""
Built-in collectors.

Each collector is an independent coroutine taking a CollectorContext
and returning a JSON-serialisable dictionary. Collectors share no
mutable state and bound their own subprocess latency.
"""
import asyncio
import hashlib
import logging
import random
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..config import CollectorSettings
from ..exceptions import CollectorError

logger = logging.getLogger(__name__)

# Battery schedule levels (percent)
FULL_LEVEL = 85.0
EMPTY_LEVEL = 12.0


@dataclass
class CollectorContext:
    """Everything a collector may use for one attempt."""
    source_id: int
    collector: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    database_path: Optional[str] = None
    settings: CollectorSettings = field(default_factory=CollectorSettings)

    def argument(self, name: str, default: Any = None) -> Any:
        value = self.arguments.get(name)
        return default if value in (None, "") else value

    def require_path(self) -> str:
        path = self.argument("path", self.database_path)
        if not path:
            raise CollectorError(
                "No file path given and no site database configured",
                kind="arguments",
                collector=self.collector,
                source_id=self.source_id,
            )
        return str(path)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Clock and synthetic sources
# =============================================================================

async def current_time(ctx: CollectorContext) -> Dict[str, Any]:
    """Report the current UTC time."""
    now = _utc_now()
    return {
        "source_id": ctx.source_id,
        "timestamp_utc": now.isoformat(),
        "unix_timestamp": int(now.timestamp()),
        "milliseconds": int(now.timestamp() * 1000),
    }


async def random_digits(ctx: CollectorContext) -> Dict[str, Any]:
    """Generate some random numbers."""
    return {
        "source_id": ctx.source_id,
        "random_integer": random.randrange(0, 10000),
        "random_float": random.random(),
        "random_bytes": [random.randrange(0, 256) for _ in range(8)],
        "timestamp": _utc_now().isoformat(),
    }


def charging_state_with_level(now: datetime, battery_id: str = "default") -> Tuple[str, float]:
    """
    Battery state and level for a point in time.

    Schedule (UTC):
    - Discharging Mon-Fri 16:00-19:59, linearly from 85% to 12%.
    - Charging every day except Friday 00:00-07:59, linearly from 12% to 85%.
    - Hold otherwise: 12% from Friday 20:00 until midnight, else 85%.

    Args:
        now: Point in time.
        battery_id: Battery identifier (all batteries share the schedule).

    Returns:
        Tuple of (state, level percent).
    """
    weekday = now.weekday()  # Monday == 0
    minutes = now.hour * 60 + now.minute

    if weekday <= 4 and 16 <= now.hour < 20:
        progress = min(max((minutes - 16 * 60) / (4 * 60), 0.0), 1.0)
        return "discharging", FULL_LEVEL - (FULL_LEVEL - EMPTY_LEVEL) * progress

    if weekday != 4 and now.hour < 8:
        progress = min(max(minutes / (8 * 60), 0.0), 1.0)
        return "charging", EMPTY_LEVEL + (FULL_LEVEL - EMPTY_LEVEL) * progress

    if weekday == 4 and now.hour >= 20:
        return "hold", EMPTY_LEVEL
    return "hold", FULL_LEVEL


async def charging_state(ctx: CollectorContext) -> Dict[str, Any]:
    """Report the simulated battery charging state."""
    now = _utc_now()
    battery_id = str(ctx.argument("battery_id", "default"))
    state, level = charging_state_with_level(now, battery_id)
    return {
        "source_id": ctx.source_id,
        "battery_id": battery_id,
        "state": state,
        "level": level,
        "timestamp_utc": now.isoformat(),
    }


# =============================================================================
# Filesystem probes
# =============================================================================

def _file_missing(ctx: CollectorContext, path: str) -> Dict[str, Any]:
    return {
        "source_id": ctx.source_id,
        "file_exists": False,
        "file_path": path,
        "error": "File not found",
    }


async def database_modtime(ctx: CollectorContext) -> Dict[str, Any]:
    """Report the modification time and size of a file."""
    path = ctx.require_path()
    target = Path(path)

    if not target.is_file():
        return _file_missing(ctx, path)

    stat = await asyncio.to_thread(target.stat)
    return {
        "source_id": ctx.source_id,
        "file_exists": True,
        "modified_timestamp": int(stat.st_mtime),
        "modified_timestamp_ms": stat.st_mtime_ns // 1_000_000,
        "file_size_bytes": stat.st_size,
        "file_path": path,
    }


def _sha1_file(target: Path) -> Tuple[str, int]:
    digest = hashlib.sha1()
    size = 0
    with target.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
            size += len(chunk)
    return digest.hexdigest(), size


async def database_sha1(ctx: CollectorContext) -> Dict[str, Any]:
    """Report the SHA-1 hash of a file."""
    path = ctx.require_path()
    target = Path(path)

    if not target.is_file():
        return _file_missing(ctx, path)

    sha1_hash, size = await asyncio.to_thread(_sha1_file, target)
    return {
        "source_id": ctx.source_id,
        "file_exists": True,
        "sha1_hash": sha1_hash,
        "file_size_bytes": size,
        "file_path": path,
    }


async def disk_space(ctx: CollectorContext) -> Dict[str, Any]:
    """Report usage of the filesystem holding a path."""
    path = str(ctx.argument("path", "/"))
    usage = await asyncio.to_thread(shutil.disk_usage, path)
    return {
        "source_id": ctx.source_id,
        "path": path,
        "total_bytes": usage.total,
        "used_bytes": usage.used,
        "free_bytes": usage.free,
        "used_percent": round(usage.used / usage.total * 100, 2) if usage.total else 0.0,
    }


# =============================================================================
# Subprocess probes
# =============================================================================

async def _run_subprocess(ctx: CollectorContext, *args: str) -> Tuple[int, str, str]:
    """
    Run a command with the configured timeout.

    Returns:
        Tuple of (exit code, stdout, stderr).
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise CollectorError(
            f"Command not found: {args[0]}",
            kind="subprocess",
            collector=ctx.collector,
            source_id=ctx.source_id,
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(),
            timeout=ctx.settings.subprocess_timeout,
        )
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise CollectorError(
            f"{args[0]} did not finish within {ctx.settings.subprocess_timeout}s",
            kind="timeout",
            collector=ctx.collector,
            source_id=ctx.source_id,
        ) from e
    except asyncio.CancelledError:
        proc.kill()
        raise

    return (
        proc.returncode,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


def parse_ping_output(output: str) -> Dict[str, Any]:
    """
    Parse the summary of iputils/BSD ping output.

    Args:
        output: ping stdout.

    Returns:
        Packet counts and round-trip statistics (None when absent).
    """
    stats: Dict[str, Any] = {
        "packets_transmitted": 0,
        "packets_received": 0,
        "min_ms": None,
        "avg_ms": None,
        "max_ms": None,
        "mdev_ms": None,
    }

    for line in output.splitlines():
        if "packets transmitted" in line:
            parts = line.split()
            try:
                stats["packets_transmitted"] = int(parts[0])
                stats["packets_received"] = int(parts[3])
            except (IndexError, ValueError):
                logger.debug(f"Unparseable ping summary: {line!r}")

        # "rtt min/avg/max/mdev = 0.1/0.2/0.3/0.1 ms" (BSD: round-trip ... stddev)
        if "min/avg/max" in line and "=" in line:
            numbers = line.split("=", 1)[1].strip().split(" ", 1)[0]
            values = numbers.split("/")
            if len(values) >= 4:
                try:
                    stats["min_ms"], stats["avg_ms"], stats["max_ms"], stats["mdev_ms"] = (
                        float(v) for v in values[:4]
                    )
                except ValueError:
                    logger.debug(f"Unparseable ping timing: {line!r}")

    transmitted = stats["packets_transmitted"]
    received = stats["packets_received"]
    stats["packet_loss_percent"] = (
        (transmitted - received) / transmitted * 100.0 if transmitted else 0.0
    )
    return stats


async def ping(ctx: CollectorContext) -> Dict[str, Any]:
    """Ping a target and report round-trip statistics."""
    target = str(ctx.argument("target", "127.0.0.1"))
    count = ctx.settings.ping_count

    code, stdout, stderr = await _run_subprocess(
        ctx,
        "ping",
        "-c", str(count),
        "-W", f"{ctx.settings.ping_wait_seconds:g}",
        target,
    )

    if code == 0:
        stats = parse_ping_output(stdout)
        return {
            "source_id": ctx.source_id,
            "target": target,
            **stats,
            "successful_pings": stats["packets_received"],
            "total_attempts": stats["packets_transmitted"],
        }

    return {
        "source_id": ctx.source_id,
        "target": target,
        "packets_transmitted": 0,
        "packets_received": 0,
        "packet_loss_percent": 100.0,
        "min_ms": None,
        "avg_ms": None,
        "max_ms": None,
        "mdev_ms": None,
        "successful_pings": 0,
        "total_attempts": count,
        "error": (stderr or stdout).strip(),
    }


async def ping_localhost(ctx: CollectorContext) -> Dict[str, Any]:
    ctx.arguments = {**ctx.arguments, "target": "127.0.0.1"}
    return await ping(ctx)


async def time_sleep(ctx: CollectorContext) -> Dict[str, Any]:
    """Run sleep in a subprocess and measure how long it took."""
    seconds = float(ctx.argument("seconds", ctx.settings.sleep_seconds))
    start = time.monotonic()
    code, _, stderr = await _run_subprocess(ctx, "sleep", f"{seconds:g}")
    duration = time.monotonic() - start

    return {
        "source_id": ctx.source_id,
        "command": f"sleep {seconds:g}",
        "duration_ms": duration * 1000,
        "duration_secs": duration,
        "exit_code": code,
        "stderr": stderr.strip(),
        "timestamp_utc": _utc_now().isoformat(),
    }
