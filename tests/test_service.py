import pytest
from opensearchpy import exceptions as search_exc

from question_vector.config import Settings
from question_vector.core.errors import DimensionMismatchError, StoreConnectionError
from question_vector.embeddings.embedder import EmbeddingGenerator
from question_vector.embeddings.models import HandleState
from question_vector.index.models import IndexSchema
from question_vector.service import VectorService

from .fakes import DIMENSION, GREEN_HEALTH, FakeRuntime, make_handle, vector_for


@pytest.fixture
def service(runtime, store, schema):
    return VectorService(EmbeddingGenerator(make_handle(runtime)), store, schema)


def test_model_and_index_dimensions_must_agree(generator, store):
    with pytest.raises(DimensionMismatchError):
        VectorService(generator, store, IndexSchema.with_keyword_fields("questions", 1536))


def test_from_settings_uses_injected_parts(runtime, store):
    settings = Settings(
        embedding_dimension=DIMENSION,
        index_name="grade8-questions",
        index_metadata_fields="difficulty, topic ,grade",
        index_refresh="wait_for",
    )

    service = VectorService.from_settings(settings, runtime=runtime, client=store)

    assert service.client is store
    assert service.generator.handle.runtime_name == "fake"
    assert service.schema.name == "grade8-questions"
    assert service.schema.dimension == DIMENSION
    assert list(service.schema.metadata_fields) == ["difficulty", "topic", "grade"]


@pytest.mark.asyncio
async def test_startup_ensures_index(service, store):
    await service.startup()

    store.indices.create.assert_awaited_once()
    assert service.schemas.is_ready("questions")


@pytest.mark.asyncio
async def test_startup_refuses_red_cluster(service, store):
    store.cluster.health.return_value = {**GREEN_HEALTH, "status": "red"}

    with pytest.raises(StoreConnectionError, match="red"):
        await service.startup()

    store.indices.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_disposes_model_and_closes_client(service, runtime, store):
    await service.generator.handle.acquire()

    await service.shutdown()

    assert service.generator.handle.state is HandleState.DISPOSED
    assert runtime.released_models == 1
    store.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_index_and_search_text(service, store):
    await service.startup()

    doc = await service.index_text("q-1", "What is 15% of 80?", {"topic": "percentages"})
    assert doc.embedding == vector_for("What is 15% of 80?")
    assert store.index.await_args.kwargs["body"]["metadata"] == {"topic": "percentages"}

    store.search.return_value = {
        "hits": {
            "hits": [
                {
                    "_id": "q-1",
                    "_score": 0.99,
                    "_source": {"document_id": "q-1", "content": "What is 15% of 80?"},
                }
            ]
        }
    }
    [result] = await service.search_text("percent of a number", k=1)

    assert result.id == "q-1"
    query = store.search.await_args.kwargs["body"]["query"]["knn"]["embedding"]
    assert query["vector"] == vector_for("percent of a number")


@pytest.mark.asyncio
async def test_index_batch_never_stores_sentinels(store, schema):
    runtime = FakeRuntime(failures={"broken": 99})
    service = VectorService(EmbeddingGenerator(make_handle(runtime)), store, schema)
    await service.startup()

    report = await service.index_batch(
        [
            {"id": "q-1", "content": "2 + 2", "metadata": {"difficulty": "easy"}},
            {"id": "q-2", "content": "broken"},
            {"id": 3, "content": "3 x 3"},
        ]
    )

    assert report.stored == ["q-1", "3"]
    assert report.failed == ["q-2"]
    stored_ids = [call.kwargs["id"] for call in store.index.await_args_list]
    assert stored_ids == ["q-1", "3"]


@pytest.mark.asyncio
async def test_index_batch_reports_rejected_write_and_continues(service, store):
    await service.startup()
    store.index.side_effect = [
        {"result": "created"},
        search_exc.TransportError(
            400, "mapper_parsing_exception", {"error": {"type": "mapper_parsing_exception"}}
        ),
        {"result": "created"},
    ]

    report = await service.index_batch(
        [
            {"id": "q-1", "content": "2 + 2"},
            {"id": "q-2", "content": "rejected by mapping"},
            {"id": "q-3", "content": "3 x 3"},
        ]
    )

    assert report.stored == ["q-1", "q-3"]
    assert report.failed == ["q-2"]
    assert store.index.await_count == 3


@pytest.mark.asyncio
async def test_index_batch_stops_when_store_is_unreachable(service, store):
    await service.startup()
    store.index.side_effect = search_exc.ConnectionError("N/A", "refused", OSError())

    with pytest.raises(StoreConnectionError):
        await service.index_batch(
            [{"id": "q-1", "content": "2 + 2"}, {"id": "q-2", "content": "4"}]
        )

    assert store.index.await_count == 1


@pytest.mark.asyncio
async def test_index_empty_batch(service, store):
    report = await service.index_batch([])

    assert report.stored == [] and report.failed == []
    store.index.assert_not_awaited()


@pytest.mark.asyncio
async def test_self_test_round_trip(service, store):
    store.search.return_value = {
        "hits": {"hits": [{"_id": "x", "_score": 1.0, "_source": {"content": "What is 2 + 2?"}}]}
    }

    outcome = await service.self_test()

    assert outcome["status"] is True
    assert outcome["details"]["cluster_health"] == GREEN_HEALTH
    store.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_self_test_reports_failure_instead_of_raising(service):
    service.client.index.side_effect = search_exc.TransportError(
        503, "unavailable_shards_exception", {}
    )

    outcome = await service.self_test()

    assert outcome["status"] is False
    assert outcome["details"] == {"error": "store_request_failed"}


@pytest.mark.asyncio
async def test_self_test_removes_its_document_when_search_fails(service, store):
    store.search.side_effect = search_exc.TransportError(500, "search_phase_execution_exception", {})

    outcome = await service.self_test()

    assert outcome["status"] is False
    store.index.assert_awaited_once()
    store.delete.assert_awaited_once()
    assert store.delete.await_args.kwargs["id"] == store.index.await_args.kwargs["id"]


@pytest.mark.asyncio
async def test_self_test_survives_failed_cleanup(service, store):
    store.search.side_effect = search_exc.TransportError(500, "search_phase_execution_exception", {})
    store.delete.side_effect = search_exc.ConnectionError("N/A", "refused", OSError())

    outcome = await service.self_test()

    assert outcome["status"] is False
    assert outcome["details"] == {"error": "store_request_failed"}


@pytest.mark.asyncio
async def test_self_test_with_unreachable_store(service, store):
    store.cluster.health.side_effect = search_exc.ConnectionError("N/A", "refused", OSError())

    outcome = await service.self_test()

    assert outcome["status"] is False
    assert outcome["details"]["error"] == "store_unavailable"
