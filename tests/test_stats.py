"""StatsCollector persistence, aggregation and failure tolerance."""

import asyncio
import json
import os
import stat

import pytest

from cerebellum_router import BackendResponse, Precision, RoutingDecision, StatsCollector, Target, TaskAssessment, TaskInfo, TaskType, TokenUsage
from cerebellum_router.config import StatsConfig

TASK = TaskInfo(type=TaskType.SIMPLE_QA, prompt="What is 2+2?")


def _decision(target=Target.CEREBELLUM, task_type=TaskType.SIMPLE_QA, manual=False):
    a = TaskAssessment(
        use_cerebellum=target is Target.CEREBELLUM, confidence=1.0, reason="test", task_type=task_type,
        estimated_tokens=10, estimated_time=30, complexity=2, precision_requirement=Precision.LOW,
    )
    return RoutingDecision(target, a, is_manual_override=manual)


def _ok(duration_ms=100, usage=TokenUsage(1000, 500)):
    return BackendResponse(text="4", success=True, model="m", duration_ms=duration_ms, usage=usage)


def _collector(tmp_path, **kw):
    return StatsCollector(StatsConfig(log_path=str(tmp_path / "stats" / "cb.json"), **kw))


def _read(collector):
    with open(collector.path, encoding="utf-8") as f:
        return json.load(f)


@pytest.mark.asyncio
async def test_record_and_aggregate(tmp_path):
    stats = _collector(tmp_path)
    await stats.record_decision(_decision())
    await stats.record_success(TASK, _ok(duration_ms=100))
    await stats.record_decision(_decision())
    await stats.record_failure(TASK, "model missing")
    await stats.record_decision(_decision(Target.CEREBRUM, TaskType.CODE_GENERATION))

    snap = await stats.get_stats()
    assert snap.total_requests == 3
    assert snap.successful_requests == 1
    assert snap.failed_requests == 1
    assert snap.average_response_time == 100
    assert snap.tokens_saved == 1500
    assert snap.cost_saved == pytest.approx(0.045)
    qa = snap.task_type_stats["simple_qa"]
    assert qa.count == 2
    assert qa.success_rate == 0.5
    assert qa.average_time == 100
    assert snap.task_type_stats["code_generation"].success_rate == 0.0

    data = _read(stats)
    assert data["entries"][0]["success"] is True
    assert data["entries"][0]["tokens_input"] == 1000
    assert data["entries"][1]["error"] == "model missing"
    assert "success" not in data["entries"][2]


@pytest.mark.asyncio
async def test_file_permissions(tmp_path):
    stats = _collector(tmp_path)
    await stats.record_decision(_decision())
    assert stat.S_IMODE(os.stat(stats.path).st_mode) == 0o600


@pytest.mark.asyncio
async def test_backfill_skips_remote_entry(tmp_path):
    stats = _collector(tmp_path)
    await stats.record_decision(_decision(Target.CEREBRUM))
    await stats.record_success(TASK, _ok())
    data = _read(stats)
    assert "success" not in data["entries"][-1]
    assert data["successful_requests"] == 1


@pytest.mark.asyncio
async def test_backfill_by_entry_id(tmp_path):
    stats = _collector(tmp_path)
    first = await stats.record_decision(_decision())
    second = await stats.record_decision(_decision())
    await stats.record_success(TASK, _ok(duration_ms=40), entry_id=first)
    await stats.record_failure(TASK, "boom", entry_id=second)

    entries = _read(stats)["entries"]
    assert entries[0]["id"] == first and entries[0]["success"] is True
    assert entries[0]["duration_ms"] == 40
    assert entries[1]["id"] == second and entries[1]["success"] is False
    assert entries[1]["error"] == "boom"


@pytest.mark.asyncio
async def test_retention_cap_keeps_lifetime_totals(tmp_path):
    stats = _collector(tmp_path, max_entries=10)
    for _ in range(25):
        await stats.record_decision(_decision())

    data = _read(stats)
    assert len(data["entries"]) <= 10
    assert data["entries"][-1]["id"] == 25
    snap = await stats.get_stats()
    assert snap.total_requests == 25
    assert snap.task_type_stats["simple_qa"].count == len(data["entries"])


@pytest.mark.asyncio
async def test_reset(tmp_path):
    stats = _collector(tmp_path)
    await stats.record_decision(_decision())
    await stats.record_success(TASK, _ok())
    await stats.reset()
    await stats.reset()

    snap = await stats.get_stats()
    assert snap.total_requests == 0
    assert snap.successful_requests == 0
    assert snap.failed_requests == 0
    assert snap.tokens_saved == 0
    assert snap.task_type_stats == {}


@pytest.mark.asyncio
async def test_disabled_is_noop(tmp_path):
    stats = _collector(tmp_path, enabled=False)
    assert await stats.record_decision(_decision()) is None
    await stats.record_success(TASK, _ok())
    await stats.record_failure(TASK, "x")
    await stats.reset()
    assert not stats.path.exists()
    snap = await stats.get_stats()
    assert snap.total_requests == 0
    assert snap.task_type_stats == {}


@pytest.mark.asyncio
async def test_unwritable_storage_never_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    stats = StatsCollector(StatsConfig(log_path=str(blocker / "cb.json")))

    await stats.record_decision(_decision())
    await stats.record_success(TASK, _ok())
    await stats.reset()
    await stats.record_decision(_decision())

    snap = await stats.get_stats()
    assert snap.total_requests == 1


@pytest.mark.asyncio
async def test_corrupt_file_is_replaced(tmp_path):
    stats = _collector(tmp_path)
    stats.path.parent.mkdir(parents=True)
    stats.path.write_text("{not json", encoding="utf-8")

    await stats.record_decision(_decision())
    assert _read(stats)["total_requests"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("document", [
    {"entries": [], "total_requests": None},
    {"entries": ["junk"], "total_requests": 3},
    {"entries": [], "tokens_saved": "many"},
    [1, 2, 3],
])
async def test_wrongly_typed_file_is_replaced(tmp_path, document):
    stats = _collector(tmp_path)
    stats.path.parent.mkdir(parents=True)
    stats.path.write_text(json.dumps(document), encoding="utf-8")

    entry_id = await stats.record_decision(_decision())
    await stats.record_success(TASK, _ok(), entry_id=entry_id)

    snap = await stats.get_stats()
    assert snap.total_requests == 1
    assert snap.successful_requests == 1
    assert _read(stats)["total_requests"] == 1


@pytest.mark.asyncio
async def test_failed_writes_keep_updates_in_memory(tmp_path, monkeypatch):
    stats = _collector(tmp_path)
    await stats.record_decision(_decision())
    await stats.record_decision(_decision())

    def deny(*args, **kwargs):
        raise PermissionError("read-only")

    monkeypatch.setattr(os, "replace", deny)

    await stats.reset()
    assert (await stats.get_stats()).total_requests == 0

    await stats.record_decision(_decision())
    await stats.record_decision(_decision())
    assert (await stats.get_stats()).total_requests == 2
    # The stale file on disk is left as it was
    assert _read(stats)["total_requests"] == 2
    assert not [p for p in stats.path.parent.iterdir() if p.name.startswith(".stats-")]

    monkeypatch.undo()
    await stats.record_decision(_decision())
    assert _read(stats)["total_requests"] == 3


@pytest.mark.asyncio
async def test_concurrent_writes_are_serialised(tmp_path):
    stats = _collector(tmp_path)
    ids = await asyncio.gather(*(stats.record_decision(_decision()) for _ in range(20)))
    assert sorted(ids) == list(range(1, 21))
    assert (await stats.get_stats()).total_requests == 20


def test_home_relative_path(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    stats = StatsCollector(StatsConfig(log_path="~/.openclaw/cb.json"))
    assert stats.path == tmp_path / ".openclaw" / "cb.json"
