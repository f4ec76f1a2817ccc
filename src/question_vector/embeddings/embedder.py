"""
Embedding Generator

This module turns text into fixed-width vectors on top of a ModelHandle. It
is responsible for:

- Lazy model initialization on first use
- Strict output dimension validation
- Per-item failure isolation during batch processing
- An out-of-band diagnostics channel for batch failures

Batch contract: the result always has one vector per input, in input order.
An item that fails twice is replaced by the all-zero sentinel vector and
recorded in the diagnostics; it never aborts its siblings.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Sequence

import numpy as np
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from ..core.errors import DimensionMismatchError, InferenceError
from .handle import ModelHandle
from .models import BatchEmbeddingResult, DiagnosticsSnapshot, EmbeddingFailure

logger = logging.getLogger("qv.embedder")


# ---------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------

class EmbeddingDiagnostics:
    """
    Side channel that records batch failures instead of raising them.

    Counters are cumulative for the lifetime of the generator; only the most
    recent failures are kept.
    """

    def __init__(self, max_recent: int = 100) -> None:
        self._lock = Lock()
        self._batches = 0
        self._items = 0
        self._retries = 0
        self._sentinels = 0
        self._recent: Deque[EmbeddingFailure] = deque(maxlen=max_recent)

    def record_batch(self, items: int, retries: int, failures: Sequence[EmbeddingFailure]) -> None:
        with self._lock:
            self._batches += 1
            self._items += items
            self._retries += retries
            self._sentinels += len(failures)
            self._recent.extend(failures)

    def snapshot(self) -> DiagnosticsSnapshot:
        with self._lock:
            return DiagnosticsSnapshot(
                batches=self._batches,
                items=self._items,
                retries=self._retries,
                sentinels=self._sentinels,
                recent_failures=list(self._recent),
            )


@dataclass
class _ItemOutcome:
    """Tagged result of one batch item: a vector or the error that replaced it."""
    index: int
    attempts: int
    vector: Optional[List[float]] = None
    error: Optional[InferenceError] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


# ---------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------

class EmbeddingGenerator:
    """
    Single and batch text-to-vector operations.

    This class performs no caching; the caller owns any persistent index.
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        handle: ModelHandle,
        probe_text: str = "test connection",
        diagnostics: Optional[EmbeddingDiagnostics] = None,
    ) -> None:
        """
        Parameters
        ----------
        handle : ModelHandle
            Model handle; acquired lazily on the first embedding request.

        probe_text : str
            Short text embedded by ``test_connection``.

        diagnostics : Optional[EmbeddingDiagnostics]
            Failure side channel. A private one is created if omitted.
        """
        self._handle = handle
        self._probe_text = probe_text
        self.diagnostics = diagnostics or EmbeddingDiagnostics()

    @property
    def dimension(self) -> int:
        return self._handle.config.embedding_dimension

    @property
    def handle(self) -> ModelHandle:
        return self._handle

    def sentinel(self) -> List[float]:
        """Placeholder for an item whose embedding irrecoverably failed."""
        return np.zeros(self.dimension, dtype=np.float64).tolist()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Embed one text.

        The empty string is valid input and yields a normal vector.

        Returns
        -------
        List[float]
            Exactly ``dimension`` floats.

        Raises
        ------
        ModelLoadError
            If the model cannot be loaded on first use.
        InferenceError
            If the model call itself fails.
        DimensionMismatchError
            If the model returns a vector of the wrong width.
        """
        handle = await self._handle.acquire()
        vector = await handle.embed(text)

        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), what="model output")

        return vector

    async def generate_batch_embeddings(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch, one vector per input, in input order.

        Failing items are retried once and then replaced by the sentinel; see
        ``generate_batch_embeddings_with_report`` for the failure list.
        """
        result = await self.generate_batch_embeddings_with_report(texts)
        return result.embeddings

    async def generate_batch_embeddings_with_report(
        self,
        texts: Sequence[str],
    ) -> BatchEmbeddingResult:
        """
        Embed a batch and report which slots hold sentinels.

        Raises
        ------
        ModelLoadError
            If the model cannot be loaded. Nothing can be embedded then.
        DimensionMismatchError
            If the model returns wrong-width vectors (a configuration fault).
        """
        if not texts:
            return BatchEmbeddingResult(embeddings=[])

        await self._handle.acquire()

        outcomes = [
            await self._embed_item(index, text)
            for index, text in enumerate(texts)
        ]

        embeddings: List[List[float]] = []
        failures: List[EmbeddingFailure] = []
        retries = 0

        for outcome in outcomes:
            retries += outcome.attempts - 1
            if outcome.ok:
                embeddings.append(outcome.vector)
            else:
                embeddings.append(self.sentinel())
                failures.append(
                    EmbeddingFailure(
                        index=outcome.index,
                        error=str(outcome.error),
                        attempts=outcome.attempts,
                    )
                )

        self.diagnostics.record_batch(len(texts), retries, failures)

        if failures:
            logger.warning(
                "Batch embedding completed with %d of %d items replaced by sentinels: %s",
                len(failures),
                len(texts),
                [f.index for f in failures],
            )

        return BatchEmbeddingResult(embeddings=embeddings, failures=failures)

    async def test_connection(self) -> bool:
        """
        Embed a short probe text. Never raises.

        Returns
        -------
        bool
            True if the model produced a well-formed vector.
        """
        try:
            await self.generate_embedding(self._probe_text)
        except Exception as exc:
            logger.error(
                "Embedding connection test failed (%s): %s",
                type(exc).__name__,
                exc,
            )
            return False
        return True

    def validate_embedding(self, embedding: Any) -> bool:
        """Return True if ``embedding`` has the right width and only finite numbers."""
        try:
            array = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError):
            return False

        return (
            array.ndim == 1
            and array.shape[0] == self.dimension
            and bool(np.all(np.isfinite(array)))
        )

    async def get_service_info(self) -> Dict[str, Any]:
        """Describe the model and whether it currently answers."""
        connected = await self.test_connection()
        return {
            "runtime": self._handle.runtime_name,
            "model": self._handle.config.model_path,
            "dimension": self.dimension,
            "state": self._handle.state.value,
            "status": "connected" if connected else "disconnected",
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed_item(self, index: int, text: str) -> _ItemOutcome:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(self.MAX_ATTEMPTS),
                retry=retry_if_exception_type(InferenceError),
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        vector = await self._handle.embed(text)
                    except InferenceError as exc:
                        logger.warning(
                            "Embedding failed for batch item %d (attempt %d/%d): %s",
                            index,
                            attempts,
                            self.MAX_ATTEMPTS,
                            exc,
                        )
                        raise
        except InferenceError as exc:
            return _ItemOutcome(index=index, attempts=attempts, error=exc)

        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), what="model output")

        return _ItemOutcome(index=index, attempts=attempts, vector=vector)
