import pytest

from question_vector.core.errors import ModelLoadError
from question_vector.embeddings.embedder import EmbeddingGenerator
from question_vector.index.models import IndexSchema

from .fakes import DIMENSION, FakeRuntime, make_handle, make_store


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def generator(runtime):
    return EmbeddingGenerator(make_handle(runtime))


@pytest.fixture
def schema():
    return IndexSchema.with_keyword_fields(
        name="questions",
        dimension=DIMENSION,
        fields=["difficulty", "topic"],
    )


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def missing_model_error():
    return ModelLoadError("Model artifact not found: models/missing.gguf")
