"""Heuristic task evaluator.

Decides whether a task can be handled by the local (cerebellum) model or
needs the remote (cerebrum) model. Pure: the same TaskInfo and config
always produce the same assessment.

Rules, first match wins:
  1. ``<cb>...</cb>`` marker (or an unclosed ``<cb>``) -> local
  2. Prompt starts with a trigger prefix (小脑 / cerebellum / cb) -> local
  3. Declared task type in force_cerebellum_for / force_cerebrum_for
  4. Keyword and length scoring against the configured thresholds
"""

import math
import re
from dataclasses import dataclass

from cerebellum_router.config import CerebellumConfig
from cerebellum_router.models import Precision, TaskAssessment, TaskInfo, TaskType

_CB_OPEN = re.compile(r"<cb>", re.IGNORECASE)
_CB_CLOSE = re.compile(r"</cb>", re.IGNORECASE)

TRIGGER_PREFIXES = ("小脑", "cerebellum", "cb ", "cb，", "cb,")

CODE_KEYWORDS = (
    "code", "program", "function", "class", "debug", "error", "bug",
    "implement", "algorithm", "data structure", "api", "database",
    "refactor", "optimize", "performance",
)
MATH_KEYWORDS = (
    "calculate", "compute", "math", "equation", "formula", "solve",
    "statistics", "probability", "algebra", "calculus", "geometry",
)
CREATIVE_KEYWORDS = (
    "write", "story", "creative", "poem", "essay", "article", "blog",
    "content", "marketing", "copy", "fiction",
)
ANALYSIS_KEYWORDS = (
    "analyze", "analysis", "research", "investigate", "study", "review",
    "evaluate", "assess", "compare", "contrast", "synthesize", "critique",
)
PLANNING_KEYWORDS = (
    "plan", "strategy", "roadmap", "schedule", "timeline", "project",
    "steps", "phases", "milestone", "goal",
)
GREETING_KEYWORDS = (
    "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    "how are you", "what's up", "greetings",
)
STATUS_KEYWORDS = (
    "status", "check", "health", "state", "condition", "progress",
    "update", "report", "summary",
)

# Base complexity before length/content/history adjustments.
BASE_COMPLEXITY: dict[TaskType, int] = {
    TaskType.GREETING: 1,
    TaskType.STATUS_CHECK: 2,
    TaskType.SIMPLE_QA: 2,
    TaskType.SCHEDULED_TASK: 3,
    TaskType.TEXT_SUMMARY: 3,
    TaskType.FORMAT_CONVERSION: 2,
    TaskType.CODE_GENERATION: 8,
    TaskType.COMPLEX_ANALYSIS: 7,
    TaskType.MULTI_STEP_PLANNING: 8,
    TaskType.CREATIVE_WRITING: 6,
    TaskType.DEBUGGING: 7,
    TaskType.RESEARCH: 8,
    TaskType.UNKNOWN: 5,
}
_DEFAULT_BASE_COMPLEXITY = 5

# Local models are assumed ~40% faster than the remote round trip.
LOCAL_SPEEDUP = 0.6


@dataclass(frozen=True)
class _Analysis:
    has_code: bool
    has_math: bool
    has_creative: bool
    has_analysis: bool
    has_planning: bool
    is_greeting: bool
    is_status_query: bool
    detected_type: TaskType
    prompt_length: int


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(kw in text for kw in keywords)


def _text_length(text: str) -> int:
    """Length in UTF-16 code units, so astral characters count twice."""
    return len(text.encode("utf-16-le")) // 2


def _js_round(value: float) -> int:
    """Round half up, so 7.5 -> 8 and 22.5 -> 23."""
    return int(math.floor(value + 0.5))


class TaskEvaluator:
    """Scores tasks against a CerebellumConfig."""

    def __init__(self, config: CerebellumConfig):
        self._config = config
        self._thresholds = config.thresholds

    def evaluate(self, task: TaskInfo) -> TaskAssessment:
        forced = self._check_forced_rules(task)
        if forced is not None:
            return forced

        analysis = self._analyze(task)
        complexity = self._complexity(task, analysis)
        precision = self._precision(task, analysis)
        estimated_time = self._estimated_time(task, complexity)
        confidence = self._confidence(task, analysis, complexity)
        use_cerebellum = self._should_use_cerebellum(
            task, complexity, precision, estimated_time, confidence,
        )
        reason = self._reason(
            use_cerebellum, task, complexity, precision, estimated_time, confidence,
        )
        return TaskAssessment(
            use_cerebellum=use_cerebellum,
            confidence=confidence,
            reason=reason,
            task_type=analysis.detected_type,
            estimated_tokens=task.estimated_tokens,
            estimated_time=estimated_time,
            complexity=complexity,
            precision_requirement=precision,
        )

    # --- forced rules ---

    def _local(self, task: TaskInfo, reason: str, task_type: TaskType) -> TaskAssessment:
        return TaskAssessment(
            use_cerebellum=True,
            confidence=1.0,
            reason=reason,
            task_type=task_type,
            estimated_tokens=task.estimated_tokens,
            estimated_time=30,
            complexity=2,
            precision_requirement=Precision.LOW,
        )

    def _check_forced_rules(self, task: TaskInfo) -> TaskAssessment | None:
        prompt = task.prompt
        open_match = _CB_OPEN.search(prompt)
        close_match = _CB_CLOSE.search(prompt)

        if open_match and close_match:
            # Only a non-empty <cb>...</cb> pair counts
            if open_match.end() < close_match.start():
                return self._local(
                    task,
                    "Full Cerebellum Mode: processing content within <cb>...</cb> tags",
                    TaskType.KEYWORD_TRIGGERED,
                )
        elif open_match:
            return self._local(
                task,
                "Full Cerebellum Mode: <cb> tag detected, all content processed by cerebellum",
                TaskType.KEYWORD_TRIGGERED,
            )

        if prompt.strip().lower().startswith(TRIGGER_PREFIXES):
            return self._local(
                task,
                "Triggered by keyword: 小脑/Cerebellum/cb prefix",
                TaskType.KEYWORD_TRIGGERED,
            )

        if task.type in self._config.force_cerebellum_for:
            return self._local(
                task,
                f'Task type "{task.type.value}" is in forceCerebellumFor list',
                task.type,
            )

        if task.type in self._config.force_cerebrum_for:
            return TaskAssessment(
                use_cerebellum=False,
                confidence=1.0,
                reason=f'Task type "{task.type.value}" is in forceCerebrumFor list',
                task_type=task.type,
                estimated_tokens=task.estimated_tokens,
                estimated_time=300,
                complexity=8,
                precision_requirement=Precision.HIGH,
            )

        return None

    # --- heuristic scoring ---

    def _analyze(self, task: TaskInfo) -> _Analysis:
        prompt = task.prompt.lower()
        length = _text_length(task.prompt)

        has_code = _contains_any(prompt, CODE_KEYWORDS) or task.has_code
        has_math = _contains_any(prompt, MATH_KEYWORDS) or task.has_math
        has_creative = _contains_any(prompt, CREATIVE_KEYWORDS)
        has_analysis = _contains_any(prompt, ANALYSIS_KEYWORDS)
        has_planning = _contains_any(prompt, PLANNING_KEYWORDS)
        is_greeting = _contains_any(prompt, GREETING_KEYWORDS)
        is_status_query = _contains_any(prompt, STATUS_KEYWORDS)

        if is_greeting and length < 50:
            detected = TaskType.GREETING
        elif is_status_query and length < 100:
            detected = TaskType.STATUS_CHECK
        elif has_code:
            detected = TaskType.CODE_GENERATION
        elif has_math:
            detected = TaskType.SCHEDULED_TASK if task.is_scheduled_task else TaskType.COMPLEX_ANALYSIS
        elif has_planning and length > 200:
            detected = TaskType.MULTI_STEP_PLANNING
        elif has_creative and length > 150:
            detected = TaskType.CREATIVE_WRITING
        elif has_analysis and length > 300:
            detected = TaskType.COMPLEX_ANALYSIS
        elif length < 150:
            # has_code / has_math already excluded above
            detected = TaskType.SIMPLE_QA
        elif task.is_scheduled_task:
            detected = TaskType.SCHEDULED_TASK
        else:
            detected = TaskType.UNKNOWN

        return _Analysis(
            has_code=has_code,
            has_math=has_math,
            has_creative=has_creative,
            has_analysis=has_analysis,
            has_planning=has_planning,
            is_greeting=is_greeting,
            is_status_query=is_status_query,
            detected_type=detected,
            prompt_length=length,
        )

    @staticmethod
    def _complexity(task: TaskInfo, analysis: _Analysis) -> int:
        complexity = BASE_COMPLEXITY.get(analysis.detected_type, _DEFAULT_BASE_COMPLEXITY)
        bumps = (
            analysis.prompt_length > 2000,
            analysis.prompt_length > 5000,
            analysis.has_code,
            analysis.has_math,
            task.history_length > 10,
            task.history_length > 30,
            task.estimated_tokens > 2000,
            task.estimated_tokens > 4000,
        )
        complexity += sum(bumps)
        return min(10, max(1, complexity))

    @staticmethod
    def _precision(task: TaskInfo, analysis: _Analysis) -> Precision:
        if analysis.has_code or analysis.has_math:
            return Precision.HIGH
        if analysis.has_analysis or analysis.has_creative:
            return Precision.MEDIUM
        if task.type in (TaskType.SIMPLE_QA, TaskType.GREETING):
            return Precision.LOW
        return Precision.MEDIUM

    def _estimated_time(self, task: TaskInfo, complexity: int) -> int:
        seconds = complexity * 30.0
        if task.estimated_tokens > 1000:
            seconds += (task.estimated_tokens / 1000) * 60
        if self._config.enabled:
            seconds *= LOCAL_SPEEDUP
        return _js_round(seconds)

    @staticmethod
    def _confidence(task: TaskInfo, analysis: _Analysis, complexity: int) -> float:
        confidence = 0.5
        if analysis.detected_type is not TaskType.UNKNOWN:
            confidence += 0.2
        if complexity <= 3:
            confidence += 0.2
        elif complexity >= 8:
            confidence -= 0.1
        if analysis.prompt_length < 100:
            confidence += 0.1
        if task.is_high_frequency:
            confidence += 0.1
        return min(1.0, max(0.0, confidence))

    def _should_use_cerebellum(
        self,
        task: TaskInfo,
        complexity: int,
        precision: Precision,
        estimated_time: int,
        confidence: float,
    ) -> bool:
        t = self._thresholds
        if complexity > t.max_complexity:
            return False
        if estimated_time > t.max_estimated_time:
            return False
        if confidence < t.min_confidence:
            return False
        if precision is Precision.HIGH:
            return False
        if task.is_scheduled_task and estimated_time < 600:
            return True
        if task.is_high_frequency and complexity <= 3:
            return True
        return complexity <= 5

    def _reason(
        self,
        use_cerebellum: bool,
        task: TaskInfo,
        complexity: int,
        precision: Precision,
        estimated_time: int,
        confidence: float,
    ) -> str:
        t = self._thresholds
        reasons: list[str] = []
        if use_cerebellum:
            if complexity <= 3:
                reasons.append("low complexity")
            if task.is_scheduled_task and estimated_time < 600:
                reasons.append("scheduled task under 10min")
            if task.is_high_frequency:
                reasons.append("high frequency pattern")
            if precision is Precision.LOW:
                reasons.append("low precision requirement")
            return f"Using cerebellum: {', '.join(reasons) or 'suitable for local model'}"

        if complexity > t.max_complexity:
            reasons.append(f"high complexity ({complexity}/{t.max_complexity})")
        if estimated_time > t.max_estimated_time:
            reasons.append(f"long execution time ({_js_round(estimated_time / 60)}min)")
        if precision is Precision.HIGH:
            reasons.append("high precision requirement")
        if confidence < t.min_confidence:
            reasons.append(f"low confidence ({confidence:.2f})")
        return f"Using cerebrum: {', '.join(reasons) or 'task requires cloud model'}"


def evaluate(task: TaskInfo, config: CerebellumConfig) -> TaskAssessment:
    """Assess a single task. Never raises for well-typed input."""
    return TaskEvaluator(config).evaluate(task)
