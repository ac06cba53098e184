"""StatsCollector: durable, best-effort history of routing outcomes.

The stats file is one JSON document rewritten in full on every update.
Persistence problems never propagate: they are logged at DEBUG and the
collector carries on from its in-memory copy. When stats are disabled
every method is a no-op and ``get_stats`` returns an empty snapshot.
"""

import asyncio
import copy
import json
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from cerebellum_router.config import StatsConfig
from cerebellum_router.models import BackendResponse, RoutingDecision, Target, TaskInfo


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_data() -> dict[str, Any]:
    return {
        "entries": [],
        "next_id": 1,
        "total_requests": 0,
        "successful_requests": 0,
        "failed_requests": 0,
        "total_duration_ms": 0,
        "tokens_saved": 0,
        "last_updated": _now_iso(),
    }


_COUNTERS = (
    "next_id",
    "total_requests",
    "successful_requests",
    "failed_requests",
    "total_duration_ms",
    "tokens_saved",
)


def _check_shape(data: Any) -> None:
    """Raise ValueError unless ``data`` looks like a stats document."""
    if not isinstance(data, dict):
        raise ValueError("stats document is not an object")
    entries = data.get("entries")
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ValueError("stats entries must be a list of objects")
    for key in _COUNTERS:
        value = data.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"stats field {key} must be a number, got {value!r}")


def resolve_log_path(log_path: str) -> Path:
    return Path(log_path).expanduser()


@dataclass
class TaskTypeStats:
    count: int = 0
    success_rate: float = 0.0
    average_time: float = 0.0  # ms, over successful entries


@dataclass
class StatsSnapshot:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    tokens_saved: int = 0
    cost_saved: float = 0.0
    task_type_stats: dict[str, TaskTypeStats] = field(default_factory=dict)
    last_updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StatsCollector:
    """Single writer for one stats file.

    Each read-modify-write cycle runs under an asyncio.Lock, so concurrent
    routes through the same collector never lose updates.
    """

    def __init__(self, config: StatsConfig):
        self._config = config
        self._path = resolve_log_path(config.log_path)
        self._lock = asyncio.Lock()
        self._memory: dict[str, Any] | None = None
        self._write_failed = False

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def path(self) -> Path:
        return self._path

    # --- persistence ---

    def _fallback(self) -> dict[str, Any]:
        return self._memory if self._memory is not None else _empty_data()

    def _load(self) -> dict[str, Any]:
        if self._write_failed:
            # The file is behind memory until a write succeeds again
            data = self._fallback()
        else:
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                _check_shape(data)
            except FileNotFoundError:
                data = self._fallback()
            except (OSError, ValueError) as e:
                logger.debug(f"Stats: cannot read {self._path}: {e}")
                data = self._fallback()
        base = _empty_data()
        base.update(data)
        return copy.deepcopy(base)

    def _save(self, data: dict[str, Any]) -> None:
        data["last_updated"] = _now_iso()
        self._memory = data
        self._write_failed = True
        try:
            self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".stats-", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.chmod(tmp, 0o600)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.debug(f"Stats: cannot write {self._path}: {e}")
        else:
            self._write_failed = False

    async def _update(self, mutate) -> Any:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            try:
                result = mutate(data)
            except (TypeError, KeyError, AttributeError, ValueError) as e:
                logger.debug(f"Stats: update skipped, bad data in {self._path}: {e}")
                return None
            await asyncio.to_thread(self._save, data)
            return result

    @staticmethod
    def _find_entry(entries: list[dict[str, Any]], entry_id: int | None) -> dict[str, Any] | None:
        if entry_id is not None:
            for entry in reversed(entries):
                if entry.get("id") == entry_id:
                    return entry
            return None
        # No id: back-fill the most recent entry if it is a cerebellum one
        if entries and entries[-1].get("target") == Target.CEREBELLUM.value:
            return entries[-1]
        return None

    # --- recording ---

    async def record_decision(self, decision: RoutingDecision) -> int | None:
        """Append an entry for a routing decision. Returns the entry id."""
        if not self.enabled:
            return None
        cap = self._config.max_entries

        def mutate(data: dict[str, Any]) -> int:
            entry_id = int(data.get("next_id") or 1)
            data["next_id"] = entry_id + 1
            data["entries"].append({
                "id": entry_id,
                "timestamp": _now_iso(),
                "target": decision.target.value,
                "task_type": decision.assessment.task_type.value,
                "manual_override": decision.is_manual_override,
            })
            data["total_requests"] += 1
            if len(data["entries"]) > cap:
                data["entries"] = data["entries"][-(cap // 2):]
            return entry_id

        return await self._update(mutate)

    async def record_success(
        self, task: TaskInfo, response: BackendResponse, *, entry_id: int | None = None,
    ) -> None:
        if not self.enabled:
            return

        def mutate(data: dict[str, Any]) -> None:
            data["successful_requests"] += 1
            data["total_duration_ms"] += response.duration_ms
            if response.usage:
                # Tokens the remote model would have consumed for the same task
                data["tokens_saved"] += response.usage.total
            entry = self._find_entry(data["entries"], entry_id)
            if entry is not None:
                entry["success"] = True
                entry["duration_ms"] = response.duration_ms
                if response.usage:
                    entry["tokens_input"] = response.usage.input
                    entry["tokens_output"] = response.usage.output

        await self._update(mutate)

    async def record_failure(
        self, task: TaskInfo, error: str | None, *, entry_id: int | None = None,
    ) -> None:
        if not self.enabled:
            return

        def mutate(data: dict[str, Any]) -> None:
            data["failed_requests"] += 1
            entry = self._find_entry(data["entries"], entry_id)
            if entry is not None:
                entry["success"] = False
                entry["error"] = error

        await self._update(mutate)

    # --- reading ---

    async def get_stats(self) -> StatsSnapshot:
        if not self.enabled:
            return StatsSnapshot(last_updated=_now_iso())
        async with self._lock:
            data = await asyncio.to_thread(self._load)

        per_type: dict[str, dict[str, float]] = {}
        for entry in data["entries"]:
            bucket = per_type.setdefault(
                str(entry.get("task_type", "unknown")), {"count": 0, "ok": 0, "time": 0},
            )
            bucket["count"] += 1
            if entry.get("success"):
                bucket["ok"] += 1
                duration = entry.get("duration_ms")
                if isinstance(duration, (int, float)) and not isinstance(duration, bool):
                    bucket["time"] += duration

        task_type_stats = {
            name: TaskTypeStats(
                count=int(b["count"]),
                success_rate=b["ok"] / b["count"] if b["count"] else 0.0,
                average_time=b["time"] / b["ok"] if b["ok"] else 0.0,
            )
            for name, b in per_type.items()
        }
        successes = data["successful_requests"]
        return StatsSnapshot(
            total_requests=data["total_requests"],
            successful_requests=successes,
            failed_requests=data["failed_requests"],
            average_response_time=data["total_duration_ms"] / successes if successes else 0.0,
            tokens_saved=data["tokens_saved"],
            cost_saved=data["tokens_saved"] / 1000 * self._config.cost_per_1k_tokens,
            task_type_stats=task_type_stats,
            last_updated=data["last_updated"],
        )

    async def reset(self) -> None:
        """Replace stored data with an empty document."""
        if not self.enabled:
            return
        async with self._lock:
            await asyncio.to_thread(self._save, _empty_data())
