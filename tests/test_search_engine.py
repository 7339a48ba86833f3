"""Tests for score fusion and the three search modes."""

import pytest

from conftest import HashingEmbeddingService, hash_embed
from core.domain import (
    ChunkMetadata, IndexEntry, Query, RetrievalResult, SearchFilters, SearchMode, make_chunk_id,
)
from core.errors import ValidationError
from services.search_engine import HybridSearchEngine, fuse_results, keyword_signal

PROJECT = "p1"

CORPUS = [
    "red apples and pears",
    "green apples",
    "blue ocean waves",
    "apples",
]


def hit(chunk_id: str, score: float, source: SearchMode) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=chunk_id, document_id="d1", project_id=PROJECT, content=chunk_id,
        chunk_index=0, score=score, source=source,
    )


async def load_corpus(index_store, contents=CORPUS, document_id="d1"):
    entries = [
        IndexEntry(
            id=make_chunk_id(document_id, i), document_id=document_id, project_id=PROJECT,
            content=c, chunk_index=i, start_offset=0, end_offset=len(c),
            embedding=hash_embed(c), metadata=ChunkMetadata(document_name="fruit.txt"),
        )
        for i, c in enumerate(contents)
    ]
    await index_store.bulk_upsert(entries)


@pytest.fixture
def engine(index_store, query_index):
    return HybridSearchEngine(HashingEmbeddingService(), index_store, query_index)


class TestKeywordSignal:
    def test_empty(self):
        assert keyword_signal([]) == {}

    def test_equal_scores_map_to_one(self):
        hits = [hit("a", 2.0, SearchMode.KEYWORD), hit("b", 2.0, SearchMode.KEYWORD)]
        assert keyword_signal(hits) == {"a": 1.0, "b": 1.0}

    def test_range_is_half_to_one(self):
        hits = [hit("a", 3.0, SearchMode.KEYWORD), hit("b", 2.0, SearchMode.KEYWORD),
                hit("c", 1.0, SearchMode.KEYWORD)]
        assert keyword_signal(hits) == {"a": 1.0, "b": 0.75, "c": 0.5}


class TestFuseResults:
    def test_overlap_is_boosted_and_marked_hybrid(self):
        vector = [hit("a", 0.8, SearchMode.VECTOR), hit("b", 0.7, SearchMode.VECTOR)]
        keyword = [hit("b", 4.0, SearchMode.KEYWORD)]

        fused = fuse_results(vector, keyword, keyword_boost=0.2)

        assert [(r.chunk_id, r.source) for r in fused] == [
            ("b", SearchMode.HYBRID), ("a", SearchMode.VECTOR),
        ]
        assert fused[0].score == pytest.approx(0.9)
        assert fused[1].score == pytest.approx(0.8)

    def test_keyword_only_hits_use_their_signal(self):
        vector = [hit("a", 0.6, SearchMode.VECTOR)]
        keyword = [hit("x", 5.0, SearchMode.KEYWORD), hit("y", 1.0, SearchMode.KEYWORD)]

        fused = {r.chunk_id: r for r in fuse_results(vector, keyword)}

        assert fused["x"].score == pytest.approx(1.0)
        assert fused["y"].score == pytest.approx(0.5)
        assert fused["x"].source == SearchMode.KEYWORD

    def test_fused_score_never_below_vector_score(self):
        vector = [hit(f"c{i}", 0.5 + i / 20, SearchMode.VECTOR) for i in range(8)]
        keyword = [hit(f"c{i}", float(i), SearchMode.KEYWORD) for i in range(0, 8, 2)]
        by_id = {r.chunk_id: r.score for r in vector}

        for result in fuse_results(vector, keyword):
            assert result.score >= by_id[result.chunk_id]

    def test_sorted_descending_and_stable(self):
        vector = [hit("first", 0.7, SearchMode.VECTOR), hit("second", 0.7, SearchMode.VECTOR)]
        fused = fuse_results(vector, [])
        assert [r.chunk_id for r in fused] == ["first", "second"]

    def test_does_not_mutate_inputs(self):
        vector = [hit("a", 0.8, SearchMode.VECTOR)]
        fuse_results(vector, [hit("a", 1.0, SearchMode.KEYWORD)])
        assert vector[0].score == 0.8
        assert vector[0].source == SearchMode.VECTOR

    def test_negative_boost_is_rejected(self, index_store):
        with pytest.raises(ValueError):
            HybridSearchEngine(HashingEmbeddingService(), index_store, keyword_boost=-0.1)


class TestSearchModes:
    @pytest.mark.asyncio
    async def test_vector_mode(self, engine, index_store):
        await load_corpus(index_store)

        results = await engine.search(PROJECT, "apples", limit=2, threshold=0.0, mode=SearchMode.VECTOR)

        assert len(results) == 2
        assert results[0].content == "apples"
        assert all(r.source == SearchMode.VECTOR for r in results)

    @pytest.mark.asyncio
    async def test_vector_mode_applies_threshold(self, engine, index_store):
        await load_corpus(index_store)
        results = await engine.search(PROJECT, "apples", limit=10, threshold=0.99, mode=SearchMode.VECTOR)
        assert [r.content for r in results] == ["apples"]

    @pytest.mark.asyncio
    async def test_keyword_mode_ignores_threshold(self, engine, index_store):
        await load_corpus(index_store)

        results = await engine.search(PROJECT, "apples", limit=10, threshold=1.0, mode=SearchMode.KEYWORD)

        assert {r.content for r in results} == {"red apples and pears", "green apples", "apples"}
        assert all(r.source == SearchMode.KEYWORD for r in results)

    @pytest.mark.asyncio
    async def test_hybrid_mode_boosts_lexical_matches(self, engine, index_store):
        await load_corpus(index_store)

        results = await engine.search(PROJECT, "apples", limit=10, threshold=0.0)

        by_content = {r.content: r for r in results}
        assert results[0].content == "apples"
        assert results[0].score > 1.0
        for content in ("red apples and pears", "green apples", "apples"):
            assert by_content[content].source == SearchMode.HYBRID
        assert by_content["blue ocean waves"].source == SearchMode.VECTOR
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_hybrid_limit_and_threshold(self, engine, index_store):
        await load_corpus(index_store)
        results = await engine.search(PROJECT, "apples", limit=1, threshold=0.0)
        assert [r.content for r in results] == ["apples"]

    @pytest.mark.asyncio
    async def test_filters_restrict_documents(self, engine, index_store):
        await load_corpus(index_store, document_id="d1")
        await load_corpus(index_store, ["apples in a basket"], document_id="d2")

        results = await engine.search(PROJECT, "apples", limit=10, threshold=0.0,
                                      filters=SearchFilters(document_ids=["d2"]))

        assert {r.document_id for r in results} == {"d2"}

    @pytest.mark.asyncio
    async def test_empty_project_returns_nothing(self, engine):
        assert await engine.search("empty", "anything", threshold=0.0) == []


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query, limit, threshold", [
        ("", 5, 0.5),
        ("   ", 5, 0.5),
        ("ok", 0, 0.5),
        ("ok", -1, 0.5),
        ("ok", 5, 1.5),
        ("ok", 5, -0.1),
    ])
    async def test_bad_requests(self, engine, query, limit, threshold):
        with pytest.raises(ValidationError):
            await engine.search(PROJECT, query, limit=limit, threshold=threshold)


class TestSimilarQueries:
    @pytest.mark.asyncio
    async def test_recorded_queries_are_suggested(self, engine):
        await engine.record_query(Query(id="q1", user_id="u", project_id=PROJECT, text="where are apples grown"))
        await engine.record_query(Query(id="q2", user_id="u", project_id=PROJECT, text="ocean tides"))

        similar = await engine.similar_queries(PROJECT, "where are apples grown", limit=1)

        assert [s.query_id for s in similar] == ["q1"]
        assert similar[0].text == "where are apples grown"

    @pytest.mark.asyncio
    async def test_without_query_index(self, index_store):
        engine = HybridSearchEngine(HashingEmbeddingService(), index_store)
        await engine.record_query(Query(id="q1", user_id="u", project_id=PROJECT, text="ignored"))
        assert await engine.similar_queries(PROJECT, "ignored") == []

    @pytest.mark.asyncio
    async def test_blank_text_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.similar_queries(PROJECT, " ")
