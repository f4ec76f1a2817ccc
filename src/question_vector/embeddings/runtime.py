"""
Model Runtimes

A ModelRuntime is the upstream seam between the ModelHandle and whatever
library actually runs the embedding model. All methods are synchronous and
may block: the handle always calls them from a worker thread.

Two runtimes are provided:

- LlamaCppRuntime: an in-process GGUF model via llama-cpp-python
- OllamaRuntime:   a model served by a local Ollama daemon, over httpx
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

import httpx
import numpy as np

from ..core.errors import InferenceError, ModelLoadError
from .models import ModelConfig

logger = logging.getLogger("qv.runtime")


# ---------------------------------------------------------------------
# Abstract Runtime
# ---------------------------------------------------------------------

class ModelRuntime(ABC):
    """Abstract base class for embedding model runtimes."""

    name: str = "abstract"

    @abstractmethod
    def load_model(self, config: ModelConfig) -> Any:
        """Load the model artifact. Raises ModelLoadError."""
        ...

    @abstractmethod
    def create_embedding_context(self, model: Any, config: ModelConfig) -> Any:
        """Allocate an embedding context for a loaded model. Raises ModelLoadError."""
        ...

    @abstractmethod
    def embed(self, context: Any, text: str) -> Sequence[float]:
        """Embed one text. Raises InferenceError."""
        ...

    @abstractmethod
    def release_context(self, context: Any) -> None:
        ...

    @abstractmethod
    def release_model(self, model: Any) -> None:
        ...


def as_vector(raw: Any) -> List[float]:
    """
    Coerce a runtime's raw output into a flat list of finite floats.

    Token-level outputs (one row per token) are mean-pooled into a single
    vector.
    """
    try:
        array = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InferenceError(f"Non-numeric embedding output: {exc}") from exc

    if array.ndim == 2:
        if array.shape[0] == 0:
            raise InferenceError("Runtime returned no token embeddings.")
        array = array.mean(axis=0)

    if array.ndim != 1:
        raise InferenceError(f"Unexpected embedding shape {array.shape}.")

    if not np.all(np.isfinite(array)):
        raise InferenceError("Embedding contains non-finite values.")

    return array.tolist()


# ---------------------------------------------------------------------
# llama.cpp
# ---------------------------------------------------------------------

@dataclass
class LlamaEmbeddingContext:
    llm: Any
    context_size: int


class LlamaCppRuntime(ModelRuntime):
    """In-process GGUF embedding model via llama-cpp-python."""

    name = "llama_cpp"

    def load_model(self, config: ModelConfig) -> Any:
        path = Path(config.model_path)
        if not path.is_file():
            raise ModelLoadError(f"Model artifact not found: {path}")

        try:
            from llama_cpp import Llama
        except ImportError as exc:
            raise ModelLoadError(
                "llama-cpp-python is not installed; install the 'llama' extra."
            ) from exc

        logger.info(
            "Loading GGUF model %s (n_ctx=%d, n_batch=%d, threads=%d)",
            path,
            config.context_size,
            config.batch_size,
            config.thread_count,
        )
        try:
            return Llama(
                model_path=str(path),
                embedding=True,
                n_ctx=config.context_size,
                n_batch=config.batch_size,
                n_threads=config.thread_count,
                verbose=False,
            )
        except (ValueError, RuntimeError, OSError, MemoryError) as exc:
            raise ModelLoadError(
                f"Failed to load model {path}: {type(exc).__name__}: {exc}"
            ) from exc

    def create_embedding_context(self, model: Any, config: ModelConfig) -> Any:
        # llama-cpp-python allocates the context inside Llama(); check it is usable.
        try:
            n_ctx = int(model.n_ctx())
        except (AttributeError, RuntimeError) as exc:
            raise ModelLoadError(
                f"Model has no usable context: {type(exc).__name__}"
            ) from exc

        if n_ctx < config.context_size:
            raise ModelLoadError(
                f"Allocated context ({n_ctx}) smaller than requested ({config.context_size})."
            )
        return LlamaEmbeddingContext(llm=model, context_size=config.context_size)

    def embed(self, context: Any, text: str) -> Sequence[float]:
        try:
            encoded = text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InferenceError(f"Input is not valid UTF-8: {exc.reason}") from exc

        try:
            tokens = context.llm.tokenize(encoded, add_bos=True)
        except (ValueError, RuntimeError) as exc:
            raise InferenceError(f"Tokenization failed: {exc}") from exc

        if len(tokens) > context.context_size:
            raise InferenceError(
                f"Input of {len(tokens)} tokens exceeds context size {context.context_size}."
            )

        try:
            raw = context.llm.embed(text, truncate=False)
        except (ValueError, RuntimeError) as exc:
            raise InferenceError(f"llama.cpp embed failed: {exc}") from exc

        return as_vector(raw)

    def release_context(self, context: Any) -> None:
        context.llm = None

    def release_model(self, model: Any) -> None:
        model.close()


# ---------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------

@dataclass
class OllamaModel:
    client: httpx.Client
    name: str


class OllamaRuntime(ModelRuntime):
    """
    Embedding model served by an Ollama daemon.

    ``ModelConfig.model_path`` holds the Ollama model name. The daemon owns
    the actual weights, so "loading" verifies the model is available.
    """

    name = "ollama"

    # Ollama answers an empty prompt with an empty vector.
    EMPTY_PLACEHOLDER = "empty content"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def load_model(self, config: ModelConfig) -> Any:
        client = httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

        try:
            response = client.post("/api/show", json={"model": config.model_path})
        except httpx.HTTPError as exc:
            client.close()
            raise ModelLoadError(
                f"Cannot connect to Ollama at {self._base_url}: {type(exc).__name__}"
            ) from exc

        if response.status_code == 404:
            client.close()
            raise ModelLoadError(
                f"Model '{config.model_path}' not found. "
                f"Pull it with: ollama pull {config.model_path}"
            )
        if response.status_code != 200:
            client.close()
            raise ModelLoadError(
                f"Ollama model check failed ({response.status_code}): {response.text}"
            )

        return OllamaModel(client=client, name=config.model_path)

    def create_embedding_context(self, model: Any, config: ModelConfig) -> Any:
        return model

    def embed(self, context: Any, text: str) -> Sequence[float]:
        prompt = text if text.strip() else self.EMPTY_PLACEHOLDER

        try:
            response = context.client.post(
                "/api/embeddings",
                json={"model": context.name, "prompt": prompt},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise InferenceError(
                f"Ollama embed request failed: {type(exc).__name__}"
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise InferenceError("Ollama returned a non-JSON response.") from exc

        if not isinstance(data, dict) or "embedding" not in data:
            raise InferenceError("Invalid response format from Ollama.")

        return as_vector(data["embedding"])

    def release_context(self, context: Any) -> None:
        pass

    def release_model(self, model: Any) -> None:
        model.client.close()


def build_runtime(settings: Any) -> ModelRuntime:
    """Return the runtime selected by ``settings.model_runtime``."""
    if settings.model_runtime == "ollama":
        return OllamaRuntime(
            base_url=str(settings.ollama_base_url),
            timeout=settings.ollama_timeout,
        )
    return LlamaCppRuntime()
