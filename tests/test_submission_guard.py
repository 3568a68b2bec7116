import asyncio
import threading

import pytest

from exam_portal.models.session_state import (
    FinalizeTrigger,
    PendingSubmission,
    ScoreResult,
    SubmissionRecord,
)
from exam_portal.services.errors import Conflict, PersistFailed
from exam_portal.services.submission_guard import SubmissionGuard


class Recorder:
    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.claims = []
        self.computed = 0
        self.persisted = []

    def on_claim(self, trigger):
        self.claims.append(trigger)

    def compute(self, trigger):
        self.computed += 1
        return PendingSubmission(
            exam_id=1,
            result=ScoreResult(correct_count=self.computed, score=10 * self.computed, total_questions=4),
            solve_duration_minutes=3,
            trigger=trigger,
        )

    async def persist(self, pending):
        await asyncio.sleep(0.001)
        self.persisted.append(pending.result.score)
        if self.failures:
            raise self.failures.pop(0)
        return SubmissionRecord(exam_id=1, user_id="u", score=pending.result.score, solve_duration_minutes=3)

    def guard(self):
        return SubmissionGuard(compute=self.compute, persist=self.persist, on_claim=self.on_claim)


@pytest.mark.parametrize("n", [2, 5, 50])
def test_concurrent_triggers_finalize_once(n):
    rec = Recorder()
    guard = rec.guard()
    triggers = [FinalizeTrigger.DEADLINE if i % 2 else FinalizeTrigger.MANUAL for i in range(n)]

    async def scenario():
        return await asyncio.gather(*(guard.try_finalize(t) for t in triggers))

    outcomes = asyncio.run(scenario())

    winners = [o for o in outcomes if o is not None]
    assert len(winners) == 1
    assert rec.computed == 1
    assert len(rec.persisted) == 1
    assert rec.claims == [guard.winner]
    assert guard.done and guard.latched


def test_latch_holds_across_threads():
    rec = Recorder()
    guard = rec.guard()
    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        results.append(asyncio.run(guard.try_finalize(FinalizeTrigger.MANUAL)))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r is not None) == 1
    assert rec.computed == 1
    assert len(rec.persisted) == 1


def test_second_trigger_after_completion_is_noop():
    rec = Recorder()
    guard = rec.guard()

    async def scenario():
        first = await guard.try_finalize(FinalizeTrigger.MANUAL)
        second = await guard.try_finalize(FinalizeTrigger.DEADLINE)
        return first, second

    first, second = asyncio.run(scenario())

    assert first is not None and first.record.score == 10
    assert second is None
    assert guard.winner is FinalizeTrigger.MANUAL


def test_retry_reuses_cached_score():
    rec = Recorder(failures=[PersistFailed("down")])
    guard = rec.guard()

    async def scenario():
        with pytest.raises(PersistFailed):
            await guard.try_finalize(FinalizeTrigger.DEADLINE)
        assert not guard.done and not guard.in_flight
        # 실패 후에도 래치는 유지된다
        assert await guard.try_finalize(FinalizeTrigger.MANUAL) is None
        return await guard.retry()

    outcome = asyncio.run(scenario())

    assert rec.computed == 1
    assert rec.persisted == [10, 10]
    assert outcome.record.score == 10
    assert outcome.pending.trigger is FinalizeTrigger.DEADLINE


def test_concurrent_retries_collapse():
    rec = Recorder(failures=[PersistFailed("down")])
    guard = rec.guard()

    async def scenario():
        with pytest.raises(PersistFailed):
            await guard.try_finalize(FinalizeTrigger.MANUAL)
        return await asyncio.gather(guard.retry(), guard.retry(), guard.retry())

    outcomes = asyncio.run(scenario())

    assert sum(1 for o in outcomes if o is not None) == 1
    assert rec.persisted == [10, 10]


def test_retry_without_failure_is_noop():
    rec = Recorder()
    guard = rec.guard()

    async def scenario():
        before = await guard.retry()
        await guard.try_finalize(FinalizeTrigger.MANUAL)
        after = await guard.retry()
        return before, after

    assert asyncio.run(scenario()) == (None, None)
    assert len(rec.persisted) == 1


def test_conflict_counts_as_success():
    rec = Recorder(failures=[Conflict("dup")])
    guard = rec.guard()

    outcome = asyncio.run(guard.try_finalize(FinalizeTrigger.MANUAL))

    assert outcome.already_submitted
    assert outcome.record is None
    assert guard.done
