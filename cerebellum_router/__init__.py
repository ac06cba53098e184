"""cerebellum-router: route tasks between a local model and a remote one."""

from cerebellum_router.config import CerebellumConfig, ConfigError, DEFAULT_CONFIG, load_config, resolve_config
from cerebellum_router.evaluator import TaskEvaluator, evaluate
from cerebellum_router.kernel import OllamaKernel
from cerebellum_router.models import (
    BackendResponse,
    LocalBackend,
    Precision,
    RouteResult,
    RoutingDecision,
    Target,
    TaskAssessment,
    TaskInfo,
    TaskType,
    TokenUsage,
)
from cerebellum_router.router import DualKernelRouter, LoggingEvents, RouterEvents
from cerebellum_router.stats import StatsCollector, StatsSnapshot

__all__ = [
    "BackendResponse",
    "CerebellumConfig",
    "ConfigError",
    "DEFAULT_CONFIG",
    "DualKernelRouter",
    "LocalBackend",
    "LoggingEvents",
    "OllamaKernel",
    "Precision",
    "RouteResult",
    "RouterEvents",
    "RoutingDecision",
    "StatsCollector",
    "StatsSnapshot",
    "Target",
    "TaskAssessment",
    "TaskEvaluator",
    "TaskInfo",
    "TaskType",
    "TokenUsage",
    "evaluate",
    "load_config",
    "resolve_config",
]
