"""
Bounded async queue that serializes inference calls onto a worker thread.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..core.errors import InferenceError, InferenceQueueFullError, InferenceTimeoutError

logger = logging.getLogger("qv.queue")


@dataclass
class InferenceJob:
    """A request to embed one text."""
    text: str
    future: "asyncio.Future[List[float]]"
    request_id: str = field(default="unknown")
    started: asyncio.Event = field(default_factory=asyncio.Event)


class InferenceQueue:
    """
    Single-consumer queue in front of a blocking embed function.

    One worker task takes jobs in FIFO order and runs each through
    ``asyncio.to_thread``, so at most one inference call is in flight and the
    event loop is never blocked. The item timeout counts from the moment the
    worker starts a job, so time spent waiting behind other jobs is not
    charged to it.
    """

    def __init__(
        self,
        run: Callable[[str], List[float]],
        max_depth: int = 64,
        enqueue_timeout: float = 5.0,
        item_timeout: Optional[float] = None,
    ):
        self._run = run
        self._max_depth = max_depth
        self._enqueue_timeout = enqueue_timeout
        self._item_timeout = item_timeout
        self._queue: Optional[asyncio.Queue[InferenceJob]] = None
        self._worker: Optional[asyncio.Task] = None
        self._pending = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        """Jobs queued or in flight."""
        return self._pending

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_depth)
        self._worker = asyncio.create_task(self._work(), name="inference-worker")
        logger.info("Inference worker started (max depth %d).", self._max_depth)

    async def submit(self, text: str, request_id: str = "unknown") -> List[float]:
        """
        Queue one text and wait for its vector.

        Raises
        ------
        InferenceQueueFullError
            If no queue slot frees up within the enqueue timeout.
        InferenceTimeoutError
            If the worker does not finish the job within the item timeout of
            starting it.
        InferenceError
            Whatever the embed function raised, or the queue was stopped
            before the job ran.
        """
        queue = self._queue
        if queue is None:
            raise RuntimeError("Inference queue is not started.")

        future: asyncio.Future[List[float]] = asyncio.get_running_loop().create_future()
        job = InferenceJob(text=text, future=future, request_id=request_id)

        self._pending += 1
        try:
            await asyncio.wait_for(queue.put(job), timeout=self._enqueue_timeout)
        except asyncio.TimeoutError as exc:
            self._pending -= 1
            raise InferenceQueueFullError(
                f"Inference queue full ({self._max_depth} pending) after "
                f"{self._enqueue_timeout}s"
            ) from exc

        if queue is not self._queue:
            # Stopped while this caller was blocked on a full queue.
            future.cancel()
            raise InferenceError("Inference queue stopped before the job ran.")

        try:
            await job.started.wait()
            # wait_for cancels the future on timeout; the worker then drops the result.
            return await asyncio.wait_for(future, timeout=self._item_timeout)
        except asyncio.TimeoutError as exc:
            raise InferenceTimeoutError(
                f"Inference exceeded {self._item_timeout}s"
            ) from exc
        finally:
            if not future.done():
                future.cancel()

    async def drain(self, grace_period: float) -> bool:
        """Wait for all queued and in-flight jobs. Returns False on timeout."""
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace_period)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Cancel the worker and fail every job that has not finished."""
        queue = self._queue
        self._queue = None

        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None

        abandoned = 0
        while queue is not None and not queue.empty():
            job = queue.get_nowait()
            queue.task_done()
            if _fail(job):
                abandoned += 1

        self._pending = 0
        if abandoned:
            logger.warning("Inference worker stopped with %d queued job(s) abandoned.", abandoned)
        else:
            logger.info("Inference worker stopped.")

    async def _work(self) -> None:
        assert self._queue is not None
        queue = self._queue

        while True:
            job = await queue.get()
            try:
                if job.future.done():
                    # Caller already gave up (timeout or cancellation).
                    continue

                job.started.set()
                try:
                    vector = await asyncio.to_thread(self._run, job.text)
                except asyncio.CancelledError:
                    _fail(job)
                    raise
                except Exception as exc:
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(vector)
            finally:
                self._pending -= 1
                queue.task_done()


def _fail(job: InferenceJob) -> bool:
    """Resolve an unfinished job with a stop error and release its caller."""
    failed = not job.future.done()
    if failed:
        job.future.set_exception(InferenceError("Inference queue stopped."))
    job.started.set()
    return failed
