"""Caller-facing queries: status, evaluate-only, execute, reset, usage report.

Everything returns plain dicts so results can go straight to JSON, a REST
handler or a chat tool.
"""

import csv
import io
import re
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from cerebellum_router.config import CerebellumConfig
from cerebellum_router.evaluator import evaluate
from cerebellum_router.models import TaskAssessment, TaskInfo, TaskType
from cerebellum_router.router import DualKernelRouter
from cerebellum_router.stats import StatsSnapshot

_CODE_HINT = re.compile(r"code|function|class|debug", re.IGNORECASE)
_MATH_HINT = re.compile(r"calculate|compute|math|equation", re.IGNORECASE)


def build_task_info(prompt: str, task_type: TaskType = TaskType.UNKNOWN, **hints: Any) -> TaskInfo:
    """Build a TaskInfo from a bare prompt, deriving hints the caller omits."""
    fields: dict[str, Any] = {
        "has_code": bool(_CODE_HINT.search(prompt)),
        "has_math": bool(_MATH_HINT.search(prompt)),
        "estimated_tokens": len(prompt) // 4,
    }
    fields.update(hints)
    return TaskInfo(type=task_type, prompt=prompt, **fields)


def assessment_to_dict(assessment: TaskAssessment) -> dict[str, Any]:
    data = asdict(assessment)
    data["task_type"] = assessment.task_type.value
    data["precision_requirement"] = assessment.precision_requirement.value
    return data


async def status_report(router: DualKernelRouter) -> dict[str, Any]:
    status = await router.get_status()
    status["stats"] = status["stats"].to_dict()
    return status


def evaluate_prompt(prompt: str, config: CerebellumConfig, **hints: Any) -> dict[str, Any]:
    """Assessment only, no routing state and no execution."""
    return assessment_to_dict(evaluate(build_task_info(prompt, **hints), config))


async def execute_prompt(
    router: DualKernelRouter, prompt: str, *, execute: bool = True, **hints: Any,
) -> dict[str, Any]:
    """Route a prompt. With ``execute=False`` only report where it would go."""
    task = build_task_info(prompt, **hints)
    if not execute:
        target, assessment = router.decide(task)
        return {"target": target.value, "executed": False, "assessment": assessment_to_dict(assessment)}

    result = await router.route(task)
    report: dict[str, Any] = {
        "target": result.target.value,
        "executed": True,
        "assessment": assessment_to_dict(result.assessment),
    }
    if result.response is not None:
        report["response"] = asdict(result.response)
    if result.fallback_reason is not None:
        report["fallback_reason"] = result.fallback_reason
    return report


async def reset_stats(router: DualKernelRouter) -> dict[str, Any]:
    await router.reset_stats()
    return {"reset": True}


def usage_report(snapshot: StatsSnapshot, format: str = "json") -> dict[str, Any] | str:
    """Summary of a stats snapshot. format='json' returns a dict, 'csv' a CSV string."""
    total = snapshot.total_requests
    report = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "summary": {
            "total_requests": total,
            "successful_requests": snapshot.successful_requests,
            "failed_requests": snapshot.failed_requests,
            "success_rate": snapshot.successful_requests / total if total else 0.0,
            "average_response_time_ms": snapshot.average_response_time,
            "tokens_saved": snapshot.tokens_saved,
            "cost_saved_usd": round(snapshot.cost_saved, 4),
        },
        "task_types": {name: asdict(s) for name, s in snapshot.task_type_stats.items()},
    }
    if format != "csv":
        return report

    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(["section", "key", "value"])
    w.writerow(["summary", "generated_at", report["generated_at"]])
    for k, v in report["summary"].items():
        w.writerow(["summary", k, v])
    for name, stats in report["task_types"].items():
        for k, v in stats.items():
            w.writerow(["task_types", f"{name}.{k}", v])
    return buf.getvalue()
