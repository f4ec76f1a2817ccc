"""
Model Handle

This module owns the lifecycle of the one loaded embedding model and its
embedding context:

    uninitialized -> loading -> ready -> disposed

Key Properties
--------------
- Lazy, single-flight loading: any number of concurrent ``acquire`` calls
  trigger at most one load until the next ``dispose``
- Loading and inference run on worker threads, never on the event loop
- Inference is serialized through a bounded InferenceQueue (backpressure)
- ``dispose`` drains outstanding inference before releasing resources
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, NoReturn, Optional

from ..core.errors import InferenceError, ModelBusyError, ModelLoadError
from .models import HandleState, ModelConfig
from .queue import InferenceQueue
from .runtime import ModelRuntime

logger = logging.getLogger("qv.handle")


class ModelHandle:
    """
    Explicitly constructed owner of one inference model.

    Construct one per process and inject it wherever embeddings are needed;
    the instance itself guards initialization, so no module-level singleton
    is required.
    """

    def __init__(
        self,
        config: ModelConfig,
        runtime: ModelRuntime,
        queue_depth: int = 64,
        enqueue_timeout: float = 5.0,
        item_timeout: Optional[float] = 30.0,
        dispose_grace_period: float = 10.0,
    ) -> None:
        """
        Parameters
        ----------
        config : ModelConfig
            Immutable model configuration.

        runtime : ModelRuntime
            Library adapter that actually loads and runs the model.

        queue_depth : int
            Maximum number of inference requests queued or in flight.

        enqueue_timeout : float
            Seconds to wait for a queue slot before rejecting a request.

        item_timeout : Optional[float]
            Seconds one inference call may take before the caller gives up.

        dispose_grace_period : float
            Seconds ``dispose`` waits for outstanding inference to drain.
        """
        self._config = config
        self._runtime = runtime
        self._queue_depth = queue_depth
        self._enqueue_timeout = enqueue_timeout
        self._item_timeout = item_timeout
        self._grace_period = dispose_grace_period

        self._state = HandleState.UNINITIALIZED
        self._model: Any = None
        self._context: Any = None
        self._queue: Optional[InferenceQueue] = None
        self._closing = False

        # Initialization barrier only; never held while embedding.
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is HandleState.READY and not self._closing

    @property
    def runtime_name(self) -> str:
        return self._runtime.name

    @property
    def pending(self) -> int:
        return self._queue.pending if self._queue is not None else 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def acquire(self) -> "ModelHandle":
        """
        Return this handle, loading the model first if needed.

        Raises
        ------
        ModelLoadError
            If the artifact is missing or malformed, or the embedding context
            cannot be allocated. The handle returns to ``uninitialized`` so a
            later call may retry.
        """
        if self.is_ready:
            return self

        # A dispose in progress holds the lock; wait for it and reload.
        async with self._init_lock:
            if self._state is HandleState.READY:
                return self

            self._state = HandleState.LOADING
            logger.info(
                "Loading embedding model %s via %s",
                self._config.model_path,
                self._runtime.name,
            )

            try:
                model = await asyncio.to_thread(self._runtime.load_model, self._config)
            except Exception as exc:
                self._state = HandleState.UNINITIALIZED
                _raise_load_error(exc, "load model")

            try:
                context = await asyncio.to_thread(
                    self._runtime.create_embedding_context, model, self._config
                )
            except Exception as exc:
                self._state = HandleState.UNINITIALIZED
                await self._release(model=model)
                _raise_load_error(exc, "create embedding context")

            self._model = model
            self._context = context
            self._queue = InferenceQueue(
                self._embed_blocking,
                max_depth=self._queue_depth,
                enqueue_timeout=self._enqueue_timeout,
                item_timeout=self._item_timeout,
            )
            self._queue.start()
            self._state = HandleState.READY
            logger.info("Embedding model ready (dimension %d).", self._config.embedding_dimension)

        return self

    async def dispose(self) -> None:
        """
        Drain outstanding inference and release the context and model.

        Disposing a handle that is not loaded is a no-op. After a successful
        dispose the next ``acquire`` loads the model again.

        Raises
        ------
        ModelBusyError
            If queued or in-flight inference does not finish within the grace
            period. Nothing is released and the handle stays ready.
        """
        async with self._init_lock:
            if self._state is not HandleState.READY:
                return

            self._closing = True
            assert self._queue is not None

            if not await self._queue.drain(self._grace_period):
                self._closing = False
                raise ModelBusyError(
                    f"{self._queue.pending} inference call(s) still running after "
                    f"{self._grace_period}s"
                )

            await self._queue.stop()
            self._queue = None

            model, context = self._model, self._context
            self._model = None
            self._context = None
            await self._release(model=model, context=context)

            self._closing = False
            self._state = HandleState.DISPOSED
            logger.info("Embedding model disposed.")

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text through the inference queue.

        Raises
        ------
        InferenceError
            On malformed input, context overflow, runtime failure, queue
            backpressure, or per-item timeout.
        """
        if not isinstance(text, str):
            raise InferenceError(
                f"Input must be str, got {type(text).__name__}"
            )

        if not self.is_ready or self._queue is None:
            raise InferenceError(f"Model handle is not ready (state={self._state.value}).")

        return await self._queue.submit(text)

    def _embed_blocking(self, text: str) -> List[float]:
        """Runs on the inference worker thread."""
        try:
            return list(self._runtime.embed(self._context, text))
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(
                f"Embedding runtime failed: {type(exc).__name__}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _release(self, model: Any = None, context: Any = None) -> None:
        if context is not None:
            try:
                await asyncio.to_thread(self._runtime.release_context, context)
            except Exception:
                logger.exception("Failed to release embedding context")

        if model is not None:
            try:
                await asyncio.to_thread(self._runtime.release_model, model)
            except Exception:
                logger.exception("Failed to release model")


def _raise_load_error(exc: Exception, step: str) -> NoReturn:
    logger.error("Model %s failed (%s): %s", step, type(exc).__name__, exc)
    if isinstance(exc, ModelLoadError):
        raise exc
    raise ModelLoadError(f"Failed to {step}: {type(exc).__name__}: {exc}") from exc
