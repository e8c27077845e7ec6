"""Tests for quarantine transitions and their history."""

import asyncio

import pytest

from flakeguard.core.errors import NotFoundError
from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.decision import NoAction, QuarantineDecision, manual_quarantine, manual_unquarantine
from flakeguard.models.history import HistoryAction
from flakeguard.models.pattern import QuarantineStatus
from flakeguard.services.engine import QuarantineEngine

from factories import NOW, key, make_pattern


class RecordingListener:
    def __init__(self):
        self.results: list[TransitionResult] = []

    async def on_transition(self, result: TransitionResult) -> None:
        self.results.append(result)


class ExplodingListener:
    async def on_transition(self, result: TransitionResult) -> None:
        raise RuntimeError("listener down")


@pytest.mark.asyncio
async def test_manual_quarantine_ignores_statistics(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern(total_runs=1, failure_count=0))

    result = await engine.quarantine.manual_quarantine(key(), "alice", "Blocks the release train")

    assert result.applied is True
    assert result.pattern.status == QuarantineStatus.QUARANTINED
    assert result.pattern.quarantined_at == NOW
    assert result.pattern.confidence_score == 1.0
    entry = result.history_entry
    assert entry is not None
    assert entry.triggered_by == "alice"
    assert entry.confidence == 1.0
    assert entry.reason == "Blocks the release train"
    assert entry.is_automatic is False


@pytest.mark.asyncio
async def test_repeated_quarantine_is_a_no_op(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())
    decision = QuarantineDecision(reason="High failure rate", confidence=0.8)

    first = await engine.state_machine.apply(key(), decision)
    second = await engine.state_machine.apply(key(), decision)

    assert first.applied is True
    assert second.applied is False
    history = await engine.history.list_by_pattern(key().pattern_id)
    assert [e.action for e in history] == [HistoryAction.QUARANTINED]
    stored = await engine.patterns.get_by_key(key())
    assert stored is not None
    assert stored.quarantined_at == first.pattern.quarantined_at


@pytest.mark.asyncio
async def test_round_trip_records_ordered_history(engine: QuarantineEngine, clock) -> None:
    await engine.patterns.save(make_pattern())

    await engine.quarantine.manual_quarantine(key(), "alice")
    clock.advance(days=2)
    released = await engine.quarantine.manual_unquarantine(key(), "bob")

    assert released.applied is True
    assert released.previous_status == QuarantineStatus.QUARANTINED
    assert released.pattern.status == QuarantineStatus.ACTIVE
    assert released.pattern.quarantined_at is None
    history = await engine.quarantine.get_test_history(key())
    assert [(e.action, e.triggered_by) for e in history] == [
        (HistoryAction.QUARANTINED, "alice"),
        (HistoryAction.UNQUARANTINED, "bob"),
    ]


@pytest.mark.asyncio
async def test_unquarantine_of_active_test_is_a_no_op(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())

    result = await engine.state_machine.apply(key(), manual_unquarantine("bob"))

    assert result.applied is False
    assert await engine.history.list_by_pattern(key().pattern_id) == []


@pytest.mark.asyncio
async def test_no_action_changes_nothing(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())

    result = await engine.state_machine.apply(key(), NoAction(reason="nothing to do"))

    assert result.applied is False
    assert result.action is None


@pytest.mark.asyncio
async def test_unknown_test_raises_not_found(engine: QuarantineEngine) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        await engine.state_machine.apply(key("test_missing"), manual_quarantine("alice"))

    assert exc_info.value.details["kind"] == "pattern"


@pytest.mark.asyncio
async def test_listeners_see_applied_transitions_only(engine: QuarantineEngine) -> None:
    listener = RecordingListener()
    engine.state_machine.add_listener(ExplodingListener())
    engine.state_machine.add_listener(listener)
    await engine.patterns.save(make_pattern())

    await engine.quarantine.manual_quarantine(key(), "alice")
    await engine.quarantine.manual_quarantine(key(), "alice")

    assert [r.action for r in listener.results] == [HistoryAction.QUARANTINED]
    assert await engine.quarantine.is_quarantined(key()) is True


@pytest.mark.asyncio
async def test_quarantined_index_follows_status(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern(key("test_a")))
    await engine.patterns.save(make_pattern(key("test_b")))

    await engine.quarantine.manual_quarantine(key("test_a"), "alice")

    assert await engine.patterns.count("proj") == 2
    assert await engine.patterns.count_quarantined("proj") == 1
    assert [p.test_name for p in await engine.quarantine.list_quarantined("proj")] == ["test_a"]


@pytest.mark.asyncio
async def test_concurrent_transitions_on_one_test_are_serialized(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern(total_runs=20, failure_count=10))

    manual, evaluated = await asyncio.gather(
        engine.quarantine.manual_quarantine(key(), "alice"),
        engine.quarantine.evaluate_test(key()),
    )

    assert manual.applied is True
    assert evaluated.applied is False
    history = await engine.history.list_by_pattern(key().pattern_id)
    assert [(e.action, e.triggered_by) for e in history] == [(HistoryAction.QUARANTINED, "alice")]
    assert engine.locks.is_held(key().lock_name) is False


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cut_transition_short(engine: QuarantineEngine, monkeypatch) -> None:
    await engine.patterns.save(make_pattern())
    append = engine.history.append
    started = asyncio.Event()

    async def slow_append(entry):
        started.set()
        await asyncio.sleep(0.05)
        return await append(entry)

    monkeypatch.setattr(engine.history, "append", slow_append)

    task = asyncio.ensure_future(engine.quarantine.manual_quarantine(key(), "alice"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(await engine.history.list_by_pattern(key().pattern_id)) == 1
    assert await engine.impacts.latest(key().pattern_id) is not None
    assert await engine.notifications.queue_length() == 1
    assert engine.locks.is_held(key().lock_name) is False
