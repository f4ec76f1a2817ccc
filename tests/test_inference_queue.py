import asyncio
import threading
import time

import pytest

from question_vector.core.errors import (
    InferenceError,
    InferenceQueueFullError,
    InferenceTimeoutError,
)
from question_vector.embeddings.queue import InferenceQueue


class Recorder:
    """Blocking embed function that tracks how many calls overlap."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.seen = []
        self._lock = threading.Lock()

    def __call__(self, text):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.seen.append(text)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return [float(len(text))]


@pytest.mark.asyncio
async def test_jobs_run_one_at_a_time_in_order():
    recorder = Recorder()
    queue = InferenceQueue(recorder)
    queue.start()

    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    results = await asyncio.gather(*(queue.submit(t) for t in texts))

    assert results == [[1.0], [2.0], [3.0], [4.0], [5.0]]
    assert recorder.seen == texts
    assert recorder.max_active == 1
    assert queue.pending == 0

    await queue.stop()


@pytest.mark.asyncio
async def test_submit_before_start_fails():
    queue = InferenceQueue(Recorder())

    with pytest.raises(RuntimeError):
        await queue.submit("a")


@pytest.mark.asyncio
async def test_full_queue_rejects_after_enqueue_timeout():
    release = threading.Event()

    def blocked(text):
        release.wait(timeout=5)
        return [1.0]

    queue = InferenceQueue(blocked, max_depth=1, enqueue_timeout=0.05)
    queue.start()

    try:
        first = asyncio.create_task(queue.submit("in flight"))
        await asyncio.sleep(0.02)
        second = asyncio.create_task(queue.submit("queued"))
        await asyncio.sleep(0.02)

        with pytest.raises(InferenceQueueFullError):
            await queue.submit("rejected")

        assert queue.pending == 2
    finally:
        release.set()

    assert await first == [1.0]
    assert await second == [1.0]
    await queue.stop()


@pytest.mark.asyncio
async def test_item_timeout_does_not_poison_the_queue():
    calls = []

    def slow_once(text):
        calls.append(text)
        if text == "slow":
            time.sleep(0.2)
        return [2.0]

    queue = InferenceQueue(slow_once, item_timeout=0.05)
    queue.start()

    with pytest.raises(InferenceTimeoutError):
        await queue.submit("slow")

    # Queued behind the abandoned call; its own clock starts when it runs.
    assert await queue.submit("fast") == [2.0]
    assert calls == ["slow", "fast"]
    await queue.stop()


@pytest.mark.asyncio
async def test_embed_errors_reach_the_caller():
    def failing(text):
        raise InferenceError("bad input")

    queue = InferenceQueue(failing)
    queue.start()

    with pytest.raises(InferenceError, match="bad input"):
        await queue.submit("x")

    assert await queue.drain(1.0)
    await queue.stop()
    assert not queue.running


@pytest.mark.asyncio
async def test_waiting_in_line_does_not_count_against_item_timeout():
    recorder = Recorder(delay=0.03)
    queue = InferenceQueue(recorder, item_timeout=0.1)
    queue.start()

    # Five jobs take ~0.15s in total but each runs well inside its own budget.
    results = await asyncio.gather(*(queue.submit(t) for t in ["a", "b", "c", "d", "e"]))

    assert results == [[1.0]] * 5
    await queue.stop()


@pytest.mark.asyncio
async def test_stop_fails_queued_and_blocked_callers():
    release = threading.Event()

    def blocked(text):
        release.wait(timeout=5)
        return [1.0]

    queue = InferenceQueue(blocked, max_depth=1, enqueue_timeout=5.0, item_timeout=None)
    queue.start()

    try:
        in_flight = asyncio.create_task(queue.submit("in flight"))
        await asyncio.sleep(0.02)
        queued = asyncio.create_task(queue.submit("queued"))
        await asyncio.sleep(0.02)
        blocked_on_put = asyncio.create_task(queue.submit("blocked"))
        await asyncio.sleep(0.02)

        await queue.stop()

        for task in (in_flight, queued, blocked_on_put):
            with pytest.raises(InferenceError, match="stopped"):
                await asyncio.wait_for(task, timeout=1.0)
    finally:
        release.set()

    assert queue.pending == 0
    with pytest.raises(RuntimeError):
        await queue.submit("after stop")
