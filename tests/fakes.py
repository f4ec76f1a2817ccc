"""Test doubles: a deterministic model runtime and a mocked OpenSearch client."""

import threading
import time
import zlib
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import numpy as np

from question_vector.core.errors import InferenceError
from question_vector.embeddings.handle import ModelHandle
from question_vector.embeddings.models import ModelConfig
from question_vector.embeddings.runtime import ModelRuntime

DIMENSION = 8

GREEN_HEALTH = {
    "cluster_name": "opensearch-cluster",
    "status": "green",
    "timed_out": False,
    "number_of_nodes": 1,
    "number_of_data_nodes": 1,
    "active_primary_shards": 3,
    "active_shards": 3,
    "relocating_shards": 0,
    "initializing_shards": 0,
    "unassigned_shards": 0,
    "active_shards_percent_as_number": 100.0,
}


class FakeRuntime(ModelRuntime):
    """
    Deterministic in-memory model.

    ``failures`` maps a text to how many times embedding it fails before it
    succeeds; use a large number for "always fails". ``slow`` maps a text to
    extra seconds its embedding takes.
    """

    name = "fake"

    def __init__(
        self,
        dimension: int = DIMENSION,
        output_dimension: Optional[int] = None,
        failures: Optional[Dict[str, int]] = None,
        load_error: Optional[Exception] = None,
        context_error: Optional[Exception] = None,
        load_delay: float = 0.0,
        embed_delay: float = 0.0,
        slow: Optional[Dict[str, float]] = None,
    ) -> None:
        self.dimension = dimension
        self.output_dimension = output_dimension or dimension
        self.failures = dict(failures or {})
        self.load_error = load_error
        self.context_error = context_error
        self.load_delay = load_delay
        self.embed_delay = embed_delay
        self.slow = dict(slow or {})

        self.load_calls = 0
        self.embedded: List[str] = []
        self.released_models = 0
        self.released_contexts = 0
        self._lock = threading.Lock()

    def load_model(self, config: ModelConfig) -> Any:
        with self._lock:
            self.load_calls += 1
        time.sleep(self.load_delay)
        if self.load_error is not None:
            raise self.load_error
        return {"path": config.model_path}

    def create_embedding_context(self, model: Any, config: ModelConfig) -> Any:
        if self.context_error is not None:
            raise self.context_error
        return {"model": model}

    def embed(self, context: Any, text: str) -> List[float]:
        time.sleep(self.embed_delay + self.slow.get(text, 0.0))
        with self._lock:
            self.embedded.append(text)
            remaining = self.failures.get(text, 0)
            if remaining:
                self.failures[text] = remaining - 1
                raise InferenceError(f"fake failure for {text!r}")
        return vector_for(text, self.output_dimension)

    def release_context(self, context: Any) -> None:
        self.released_contexts += 1

    def release_model(self, model: Any) -> None:
        self.released_models += 1


def vector_for(text: str, dimension: int = DIMENSION) -> List[float]:
    """Stable pseudo-embedding of ``text``; never all zeros."""
    rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
    return (rng.random(dimension) + 0.01).tolist()


def make_handle(runtime: FakeRuntime, **kwargs) -> ModelHandle:
    config = ModelConfig(model_path="models/fake.gguf", embedding_dimension=runtime.dimension)
    return ModelHandle(config, runtime, **kwargs)


def make_store(exists: bool = False, hits: Iterable[Dict[str, Any]] = ()) -> MagicMock:
    client = MagicMock()
    client.indices.exists = AsyncMock(return_value=exists)
    client.indices.create = AsyncMock(return_value={"acknowledged": True})
    client.indices.get_mapping = AsyncMock(
        return_value={
            "questions": {
                "mappings": {
                    "properties": {
                        "embedding": {"type": "knn_vector", "dimension": DIMENSION},
                    }
                }
            }
        }
    )
    client.indices.delete = AsyncMock(return_value={"acknowledged": True})
    client.index = AsyncMock(return_value={"result": "created"})
    client.delete = AsyncMock(return_value={"result": "deleted"})
    client.search = AsyncMock(return_value={"hits": {"hits": list(hits)}})
    client.cluster.health = AsyncMock(return_value=dict(GREEN_HEALTH))
    client.close = AsyncMock()
    return client


