import pytest

from question_vector.core.errors import (
    DimensionMismatchError,
    IndexSchemaError,
    InvalidSearchError,
)
from question_vector.index.schema import IndexSchemaManager
from question_vector.index.search import SimilaritySearcher

from .fakes import DIMENSION, make_store

QUERY = [0.5] * DIMENSION


def hit(doc_id, score, content="question", **metadata):
    return {
        "_id": doc_id,
        "_score": score,
        "_source": {"document_id": doc_id, "content": content, "metadata": metadata},
    }


async def ready_searcher(store, schema):
    manager = IndexSchemaManager(store, DIMENSION)
    await manager.ensure_index(schema)
    return SimilaritySearcher(store, manager, schema)


@pytest.mark.asyncio
async def test_results_are_ordered_by_score(schema):
    store = make_store(hits=[hit("b", 0.7), hit("a", 0.9), hit("c", 0.8, topic="algebra")])
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=3)

    assert [r.id for r in results] == ["a", "c", "b"]
    assert results[1].metadata == {"topic": "algebra"}


@pytest.mark.asyncio
async def test_equal_scores_keep_store_order(schema):
    store = make_store(hits=[hit("first", 0.5), hit("second", 0.5), hit("third", 0.5)])
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=3)

    assert [r.id for r in results] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_query_excludes_vectors_and_requests_k(schema):
    store = make_store()
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=4)

    assert results == []
    body = store.search.await_args.kwargs["body"]
    assert body["size"] == 4
    assert body["query"]["knn"]["embedding"] == {"vector": QUERY, "k": 4}
    assert body["_source"] == {"excludes": ["embedding"]}


@pytest.mark.asyncio
async def test_never_returns_more_than_k(schema):
    store = make_store(hits=[hit(str(i), 1.0 - i / 10) for i in range(5)])
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=2)

    assert [r.id for r in results] == ["0", "1"]


@pytest.mark.asyncio
async def test_malformed_hits_are_skipped(schema):
    store = make_store(
        hits=[
            hit("ok", 0.9),
            {"_id": "no-score", "_source": {"content": "x"}},
            {"_id": "no-content", "_score": 0.8, "_source": {}},
        ]
    )
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=5)

    assert [r.id for r in results] == ["ok"]


@pytest.mark.asyncio
async def test_hits_with_non_numeric_scores_are_skipped(schema):
    store = make_store(hits=[hit("text-score", "high"), hit("ok", 0.4), hit("nan-score", "nan")])
    searcher = await ready_searcher(store, schema)

    results = await searcher.search_similar(QUERY, k=5)

    assert [r.id for r in results] == ["ok"]


@pytest.mark.asyncio
async def test_id_falls_back_to_store_id(schema):
    store = make_store(hits=[{"_id": "q-9", "_score": 1.2, "_source": {"content": "x"}}])
    searcher = await ready_searcher(store, schema)

    [result] = await searcher.search_similar(QUERY)

    assert result.id == "q-9"
    assert result.metadata == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("k", [0, -1])
async def test_k_must_be_positive(store, schema, k):
    searcher = await ready_searcher(store, schema)

    with pytest.raises(InvalidSearchError):
        await searcher.search_similar(QUERY, k=k)
    store.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_query_dimension_is_checked(store, schema):
    searcher = await ready_searcher(store, schema)

    with pytest.raises(DimensionMismatchError):
        await searcher.search_similar([0.5] * (DIMENSION + 1))
    store.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_requires_ensured_index(store, schema):
    searcher = SimilaritySearcher(store, IndexSchemaManager(store, DIMENSION), schema)

    with pytest.raises(IndexSchemaError):
        await searcher.search_similar(QUERY)
