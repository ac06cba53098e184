"""Configuration for the cerebellum router.

Loaded once at startup. A partial mapping is deep-merged over the defaults:
``thresholds`` and ``stats`` merge field by field, every other key replaces
the default outright. Both snake_case and the camelCase keys of the JSON
config surface are accepted.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from cerebellum_router.models import TaskType


class ConfigError(ValueError):
    """Raised when configuration is malformed."""


@dataclass(frozen=True)
class Thresholds:
    max_estimated_time: float = 1200   # seconds
    max_complexity: int = 4            # 1-10
    min_confidence: float = 0.7        # 0-1


@dataclass(frozen=True)
class StatsConfig:
    enabled: bool = True
    log_path: str = "~/.openclaw/cerebellum-stats.json"
    max_entries: int = 10000
    cost_per_1k_tokens: float = 0.03


@dataclass(frozen=True)
class CerebellumConfig:
    enabled: bool = True
    provider: str = "ollama"
    model: str = "qwen2.5:0.5b"
    base_url: str = "http://127.0.0.1:11434"
    thresholds: Thresholds = field(default_factory=Thresholds)
    force_cerebellum_for: tuple[TaskType, ...] = (
        TaskType.GREETING,
        TaskType.STATUS_CHECK,
        TaskType.SIMPLE_QA,
        TaskType.SCHEDULED_TASK,
        TaskType.TEXT_SUMMARY,
        TaskType.FORMAT_CONVERSION,
    )
    force_cerebrum_for: tuple[TaskType, ...] = (
        TaskType.CODE_GENERATION,
        TaskType.COMPLEX_ANALYSIS,
        TaskType.MULTI_STEP_PLANNING,
        TaskType.CREATIVE_WRITING,
        TaskType.DEBUGGING,
        TaskType.RESEARCH,
    )
    stats: StatsConfig = field(default_factory=StatsConfig)


DEFAULT_CONFIG = CerebellumConfig()

# camelCase (JSON config surface) -> field name
_KEY_ALIASES: dict[str, str] = {
    "baseUrl": "base_url",
    "forceCerebellumFor": "force_cerebellum_for",
    "forceCerebrumFor": "force_cerebrum_for",
    "maxEstimatedTime": "max_estimated_time",
    "maxComplexity": "max_complexity",
    "minConfidence": "min_confidence",
    "logPath": "log_path",
    "maxEntries": "max_entries",
    "costPer1kTokens": "cost_per_1k_tokens",
}


def _normalize_keys(raw: Mapping[str, Any], section: str) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{section} must be a mapping, got {type(raw).__name__}")
    return {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}


def _check_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be a boolean, got {value!r}")
    return value


def _check_number(name: str, value: Any, low: float | None = None, high: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if low is not None and value < low:
        raise ConfigError(f"{name} must be >= {low}, got {value}")
    if high is not None and value > high:
        raise ConfigError(f"{name} must be <= {high}, got {value}")
    return value


def _check_str(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{name} must be a non-empty string, got {value!r}")
    return value


def _task_types(name: str, value: Any) -> tuple[TaskType, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"{name} must be a list of task types, got {value!r}")
    types = []
    for item in value:
        try:
            types.append(TaskType(item))
        except ValueError:
            valid = ", ".join(t.value for t in TaskType)
            raise ConfigError(f"{name}: unknown task type {item!r} (valid: {valid})") from None
    return tuple(types)


def _merge_thresholds(base: Thresholds, raw: Mapping[str, Any]) -> Thresholds:
    data = _normalize_keys(raw, "thresholds")
    updates: dict[str, Any] = {}
    if "max_estimated_time" in data:
        updates["max_estimated_time"] = _check_number(
            "thresholds.max_estimated_time", data["max_estimated_time"], low=0,
        )
    if "max_complexity" in data:
        updates["max_complexity"] = _check_number(
            "thresholds.max_complexity", data["max_complexity"], low=1, high=10,
        )
    if "min_confidence" in data:
        updates["min_confidence"] = _check_number(
            "thresholds.min_confidence", data["min_confidence"], low=0, high=1,
        )
    return replace(base, **updates)


def _merge_stats(base: StatsConfig, raw: Mapping[str, Any]) -> StatsConfig:
    data = _normalize_keys(raw, "stats")
    updates: dict[str, Any] = {}
    if "enabled" in data:
        updates["enabled"] = _check_bool("stats.enabled", data["enabled"])
    if "log_path" in data:
        updates["log_path"] = _check_str("stats.log_path", data["log_path"])
    if "max_entries" in data:
        value = _check_number("stats.max_entries", data["max_entries"], low=2)
        updates["max_entries"] = int(value)
    if "cost_per_1k_tokens" in data:
        updates["cost_per_1k_tokens"] = _check_number(
            "stats.cost_per_1k_tokens", data["cost_per_1k_tokens"], low=0,
        )
    return replace(base, **updates)


def resolve_config(raw: Mapping[str, Any] | None = None) -> CerebellumConfig:
    """Deep-merge a (possibly partial) config mapping over the defaults.

    Accepts either the cerebellum section itself or a full application
    config that nests it under a ``cerebellum`` key.

    Raises:
        ConfigError: If any field is malformed.
    """
    if raw is None:
        return DEFAULT_CONFIG
    data = _normalize_keys(raw, "cerebellum")
    if "cerebellum" in data:
        section = data["cerebellum"]
        if section is None:
            return DEFAULT_CONFIG
        data = _normalize_keys(section, "cerebellum")

    updates: dict[str, Any] = {}
    if "enabled" in data:
        updates["enabled"] = _check_bool("enabled", data["enabled"])
    for key in ("provider", "model", "base_url"):
        if key in data:
            updates[key] = _check_str(key, data[key])
    if "base_url" in updates:
        updates["base_url"] = updates["base_url"].rstrip("/")
    if data.get("thresholds") is not None:
        updates["thresholds"] = _merge_thresholds(DEFAULT_CONFIG.thresholds, data["thresholds"])
    if data.get("stats") is not None:
        updates["stats"] = _merge_stats(DEFAULT_CONFIG.stats, data["stats"])
    for key in ("force_cerebellum_for", "force_cerebrum_for"):
        if key in data:
            updates[key] = _task_types(key, data[key])
    return replace(DEFAULT_CONFIG, **updates)


def load_config(path: str | Path) -> CerebellumConfig:
    """Load a YAML or JSON config file. A missing file yields the defaults."""
    path = Path(path).expanduser()
    if not path.is_file():
        return DEFAULT_CONFIG
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if data is None:
        return DEFAULT_CONFIG
    return resolve_config(data)
