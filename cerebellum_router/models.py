"""Core data models for cerebellum-router."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class TaskType(str, Enum):
    """Category of a task request."""

    GREETING = "greeting"
    STATUS_CHECK = "status_check"
    SIMPLE_QA = "simple_qa"
    SCHEDULED_TASK = "scheduled_task"
    TEXT_SUMMARY = "text_summary"
    FORMAT_CONVERSION = "format_conversion"
    CODE_GENERATION = "code_generation"
    COMPLEX_ANALYSIS = "complex_analysis"
    MULTI_STEP_PLANNING = "multi_step_planning"
    CREATIVE_WRITING = "creative_writing"
    DEBUGGING = "debugging"
    RESEARCH = "research"
    KEYWORD_TRIGGERED = "keyword_triggered"
    UNKNOWN = "unknown"


class Target(str, Enum):
    """Execution backend. CEREBELLUM is local, CEREBRUM is remote."""

    CEREBELLUM = "cerebellum"
    CEREBRUM = "cerebrum"


class Precision(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class TaskInfo:
    """A single task request as described by the caller."""

    type: TaskType
    prompt: str
    has_code: bool = False
    has_math: bool = False
    estimated_tokens: int = 0
    is_high_frequency: bool = False
    history_length: int = 0
    is_scheduled_task: bool = False


@dataclass(frozen=True)
class TaskAssessment:
    """Evaluator output for one TaskInfo."""

    use_cerebellum: bool
    confidence: float
    reason: str
    task_type: TaskType
    estimated_tokens: int
    estimated_time: int  # seconds
    complexity: int      # 1-10
    precision_requirement: Precision


@dataclass(frozen=True)
class RoutingDecision:
    """Which backend a request was sent to, and why."""

    target: Target
    assessment: TaskAssessment
    is_manual_override: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass
class BackendResponse:
    """Result of one local backend round trip."""

    text: str
    success: bool
    model: str
    duration_ms: int
    error: str | None = None
    usage: TokenUsage | None = None

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("successful response cannot carry an error")
        if not self.success and (self.text or not self.error):
            raise ValueError("failed response needs an error and no text")

    @classmethod
    def failure(cls, error: str, model: str, duration_ms: int = 0) -> "BackendResponse":
        return cls(text="", success=False, model=model, duration_ms=duration_ms, error=error)


@dataclass
class RouteResult:
    """Outcome of routing one task.

    ``response`` is set only when the local backend was called and its
    result is returned to the caller. ``fallback_reason`` is set when the
    local call failed and the caller should run the remote backend instead.
    """

    target: Target
    assessment: TaskAssessment
    response: BackendResponse | None = None
    fallback_reason: str | None = None


FORMATS = ("json", "yaml", "markdown", "csv")

_QUICK_ANSWER_SYSTEM = (
    "You are a helpful assistant. Provide concise, accurate answers.\n"
    "Keep responses brief and to the point. If you're unsure, say so."
)


class LocalBackend(ABC):
    """Abstract base class for local execution backends."""

    model: str = ""

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True when the backend endpoint answers."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> BackendResponse:
        """Run one generation round trip. Never raises for backend errors."""
        ...

    async def quick_answer(self, question: str) -> BackendResponse:
        return await self.generate(
            question, _QUICK_ANSWER_SYSTEM, temperature=0.5, max_tokens=512,
        )

    async def summarize(self, text: str, max_sentences: int = 3) -> BackendResponse:
        prompt = (
            f"Please summarize the following text in {max_sentences} sentences or less:\n\n"
            f"{text}\n\nSummary:"
        )
        return await self.generate(prompt, temperature=0.3, max_tokens=256)

    async def convert_format(self, content: str, target_format: str) -> BackendResponse:
        if target_format not in FORMATS:
            raise ValueError(f"Unsupported format: {target_format}")
        fmt = target_format.upper()
        prompt = f"Convert the following content to {fmt} format:\n\n{content}\n\nConverted {fmt}:"
        return await self.generate(prompt, temperature=0.2, max_tokens=1024)

    @property
    def name(self) -> str:
        return self.__class__.__name__
