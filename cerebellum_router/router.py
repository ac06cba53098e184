"""DualKernelRouter: sends each task to the local cerebellum or the remote cerebrum.

Per request:
  1. Evaluate the task (pure heuristics, see evaluator.py)
  2. Local only if the assessment says so, the router is enabled, and the
     local backend was reachable at the last check
  3. Record the decision
  4. Local path: run the per-task-type strategy on the local backend and
     record success or failure. On failure, hand the task back to the
     remote path once (if fallback is enabled)

The remote path is never executed here: a CEREBRUM result tells the caller
to use its own remote execution path.
"""

import asyncio
import time

from loguru import logger

from cerebellum_router.config import CerebellumConfig
from cerebellum_router.evaluator import TaskEvaluator
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
)
from cerebellum_router.stats import StatsCollector, StatsSnapshot

_QUICK_TYPES = (TaskType.GREETING, TaskType.SIMPLE_QA, TaskType.STATUS_CHECK)


class RouterEvents:
    """Observer for routing events. Subclass and override what you need."""

    def on_decision(self, decision: RoutingDecision) -> None:
        pass

    def on_local_success(self, response: BackendResponse, task: TaskInfo) -> None:
        pass

    def on_local_failure(self, error: str, task: TaskInfo) -> None:
        pass

    def on_fallback(self, reason: str, task: TaskInfo) -> None:
        pass


class LoggingEvents(RouterEvents):
    """Default observer: writes routing events to the log."""

    def on_decision(self, decision: RoutingDecision) -> None:
        a = decision.assessment
        override = " manual" if decision.is_manual_override else ""
        logger.info(
            f"Route: {decision.target.value}{override} ({a.task_type.value}) | "
            f"complexity={a.complexity} confidence={a.confidence:.2f} | {a.reason}"
        )

    def on_local_success(self, response: BackendResponse, task: TaskInfo) -> None:
        tokens = response.usage.total if response.usage else 0
        logger.info(f"Cerebellum ({response.model}) answered in {response.duration_ms}ms, tokens={tokens}")

    def on_local_failure(self, error: str, task: TaskInfo) -> None:
        logger.warning(f"Cerebellum failed: {error}")

    def on_fallback(self, reason: str, task: TaskInfo) -> None:
        logger.warning(f"Falling back to cerebrum: {reason}")


def detect_target_format(prompt: str) -> str:
    """Guess the conversion target from format names in the prompt."""
    lower = prompt.lower()
    if "json" in lower:
        return "json"
    if "yaml" in lower or "yml" in lower:
        return "yaml"
    if "csv" in lower:
        return "csv"
    return "markdown"


class DualKernelRouter:
    """Routes tasks between the local and remote kernels.

    Config is fixed for the router's lifetime; build a new router to pick up
    changes. The only mutable state is the cached reachability flag, which
    may be read stale: the local backend re-checks availability itself
    before generating.
    """

    def __init__(
        self,
        config: CerebellumConfig,
        *,
        backend: LocalBackend | None = None,
        stats: StatsCollector | None = None,
        events: RouterEvents | None = None,
        enable_fallback: bool = True,
        probe_interval_s: float | None = None,
    ):
        self._config = config
        self._backend = backend or OllamaKernel(config)
        self._evaluator = TaskEvaluator(config)
        self._stats = stats or StatsCollector(config.stats)
        self._events = events or LoggingEvents()
        self._enable_fallback = enable_fallback
        self._probe_interval_s = probe_interval_s

        self._available = False
        self._check_task: asyncio.Task | None = None
        self._probe_task: asyncio.Task | None = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None  # No event loop: call refresh_availability() later
        if loop is not None:
            self._check_task = loop.create_task(self.refresh_availability())
            if probe_interval_s:
                self._start_probe()

    @classmethod
    async def create(cls, config: CerebellumConfig, **kwargs) -> "DualKernelRouter":
        """Build a router and wait for its first reachability check."""
        router = cls(config, **kwargs)
        await router.refresh_availability()
        return router

    @property
    def config(self) -> CerebellumConfig:
        return self._config

    @property
    def available(self) -> bool:
        return self._available

    @property
    def stats(self) -> StatsCollector:
        return self._stats

    async def refresh_availability(self) -> bool:
        """Re-check the local backend and update the cached flag."""
        try:
            available = await self._backend.is_available()
        except Exception as e:
            logger.debug(f"Cerebellum availability check raised: {e}")
            available = False
        if available != self._available:
            logger.info(f"Cerebellum {'reachable' if available else 'unreachable'} ({self._backend.model})")
        self._available = available
        return available

    # --- routing ---

    def decide(self, task: TaskInfo) -> tuple[Target, TaskAssessment]:
        """Evaluate and gate a task without recording or executing anything."""
        assessment = self._evaluator.evaluate(task)
        use_local = assessment.use_cerebellum and self._config.enabled and self._available
        return (Target.CEREBELLUM if use_local else Target.CEREBRUM), assessment

    async def route(self, task: TaskInfo) -> RouteResult:
        target, assessment = self.decide(task)
        entry_id = await self._record_decision(RoutingDecision(target, assessment))

        if target is Target.CEREBRUM:
            return RouteResult(target=Target.CEREBRUM, assessment=assessment)

        response = await self._run_local(task, assessment, entry_id)
        if response.success:
            return RouteResult(target=Target.CEREBELLUM, assessment=assessment, response=response)

        if self._enable_fallback:
            self._events.on_fallback(f"Cerebellum failed: {response.error}", task)
            return RouteResult(
                target=Target.CEREBRUM, assessment=assessment, fallback_reason=response.error,
            )
        return RouteResult(target=Target.CEREBELLUM, assessment=assessment, response=response)

    async def force_local(self, task: TaskInfo) -> RouteResult:
        """Run on the cerebellum regardless of the evaluator. No fallback."""
        assessment = TaskAssessment(
            use_cerebellum=True,
            confidence=1.0,
            reason="Manual override to cerebellum",
            task_type=task.type,
            estimated_tokens=task.estimated_tokens,
            estimated_time=60,
            complexity=3,
            precision_requirement=Precision.LOW,
        )
        decision = RoutingDecision(Target.CEREBELLUM, assessment, is_manual_override=True)
        entry_id = await self._record_decision(decision)
        response = await self._run_local(task, assessment, entry_id)
        return RouteResult(target=Target.CEREBELLUM, assessment=assessment, response=response)

    async def force_remote(self, task: TaskInfo) -> RouteResult:
        """Send to the cerebrum regardless of the evaluator."""
        assessment = TaskAssessment(
            use_cerebellum=False,
            confidence=1.0,
            reason="Manual override to cerebrum",
            task_type=task.type,
            estimated_tokens=task.estimated_tokens,
            estimated_time=300,
            complexity=7,
            precision_requirement=Precision.HIGH,
        )
        await self._record_decision(
            RoutingDecision(Target.CEREBRUM, assessment, is_manual_override=True)
        )
        return RouteResult(target=Target.CEREBRUM, assessment=assessment)

    async def _record_decision(self, decision: RoutingDecision) -> int | None:
        self._events.on_decision(decision)
        return await self._stats.record_decision(decision)

    async def _run_local(
        self, task: TaskInfo, assessment: TaskAssessment, entry_id: int | None,
    ) -> BackendResponse:
        start = time.monotonic()
        try:
            response = await self._dispatch(task, assessment.task_type)
        except Exception as e:
            # Third-party backends may raise; treat like any failed round trip
            response = BackendResponse.failure(
                str(e) or type(e).__name__, self._backend.model,
                int((time.monotonic() - start) * 1000),
            )
        if response.success:
            await self._stats.record_success(task, response, entry_id=entry_id)
            self._events.on_local_success(response, task)
        else:
            await self._stats.record_failure(task, response.error, entry_id=entry_id)
            self._events.on_local_failure(response.error or "Unknown error", task)
        return response

    async def _dispatch(self, task: TaskInfo, task_type: TaskType) -> BackendResponse:
        """Pick the local generation strategy for a task type."""
        if task_type in _QUICK_TYPES:
            return await self._backend.quick_answer(task.prompt)
        if task_type is TaskType.TEXT_SUMMARY:
            return await self._backend.summarize(task.prompt, 3)
        if task_type is TaskType.FORMAT_CONVERSION:
            return await self._backend.convert_format(task.prompt, detect_target_format(task.prompt))
        return await self._backend.generate(task.prompt)

    # --- reporting ---

    async def get_stats(self) -> StatsSnapshot:
        return await self._stats.get_stats()

    async def get_status(self) -> dict:
        return {
            "enabled": self._config.enabled,
            "available": self._available,
            "model": self._config.model,
            "stats": await self.get_stats(),
        }

    async def reset_stats(self) -> None:
        await self._stats.reset()

    # --- reachability probing ---

    def _start_probe(self) -> None:
        if self._probe_task and not self._probe_task.done():
            return
        self._probe_task = asyncio.create_task(self._probe_loop())
        logger.info(f"Router: started reachability probe every {self._probe_interval_s}s")

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self._probe_interval_s)
            await self.refresh_availability()

    async def aclose(self) -> None:
        """Cancel background checks."""
        for task in (self._check_task, self._probe_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._check_task = None
        self._probe_task = None
