"""Tests for strategy selection and execution."""

import logging

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from hybrid_retrieval.adapters import BM25Adapter, CollectionRegistry, NotInitializedError, RetrievalError, VectorAdapter
from hybrid_retrieval.models.core import (
    AnalyzedQuery,
    Intent,
    LearnedParameters,
    QuestionType,
    RecentContext,
    ResultKind,
    SearchStrategy,
    StatisticType,
)
from hybrid_retrieval.services.dispatcher import SearchRun, StrategyDispatcher
from hybrid_retrieval.utils.cache import ResultCache
from hybrid_retrieval.utils.error_handling import ErrorHandler


SEARCH_CONFIG = {
    "top_k": 10,
    "branch_timeout": 5.0,
    "deep_search_enabled": True,
    "max_concurrent_branches": 4,
}

ACTIVITIES = [
    {"id": "1", "text": "ترخيص مصنع", "vector": [1.0, 0.0], "governorate": "القاهرة", "dependency": "الصناعة"},
    {"id": "2", "text": "محطة وقود", "vector": [0.0, 1.0], "governorate": "الجيزة", "dependency": "البترول"},
    {"id": "3", "text": "مصنع أغذية", "vector": [0.9, 0.1], "governorate": "القاهرة", "dependency": "الصناعة"},
]

INDUSTRIAL = [
    {"id": "z1", "text": "منطقة صناعية مصنع", "vector": [0.8, 0.2], "governorate": "القاهرة"},
]


def analyzed(text, **kwargs):
    kwargs.setdefault("collections", ("activities",))
    return AnalyzedQuery(original=text, resolved=text, **kwargs)


class TestStrategySelection:
    """Test cases for the strategy cascade."""

    def test_statistical_wins_first(self):
        query = analyzed("q", intent=Intent(type="COMPARISON"), question_type=QuestionType(is_statistical=True))
        assert StrategyDispatcher.select(query) == SearchStrategy.STATISTICAL

    def test_comparison(self):
        assert StrategyDispatcher.select(analyzed("q", intent=Intent(type="COMPARISON"))) == SearchStrategy.COMPARISON

    def test_followup_context(self):
        query = analyzed("q", context=RecentContext(messages=("سؤال سابق",)), complexity=9)
        assert StrategyDispatcher.select(query) == SearchStrategy.SEQUENTIAL

    def test_deep(self):
        assert StrategyDispatcher.select(analyzed("q", complexity=7.5)) == SearchStrategy.DEEP
        assert StrategyDispatcher.select(analyzed("q", sub_questions=("a", "b", "c"))) == SearchStrategy.DEEP

    def test_complex(self):
        assert StrategyDispatcher.select(analyzed("q", complexity=5)) == SearchStrategy.COMPLEX
        query = analyzed("q", collections=("activities", "industrial"))
        assert StrategyDispatcher.select(query) == SearchStrategy.COMPLEX

    def test_simple(self):
        assert StrategyDispatcher.select(analyzed("q", complexity=3)) == SearchStrategy.SIMPLE


class TestStrategyDispatcher:
    """Test cases for StrategyDispatcher executors."""

    def setup_method(self):
        """Set up test fixtures."""
        self.vector = VectorAdapter()
        self.text = BM25Adapter(config={"use_fuzzy": False})
        self.registry = CollectionRegistry([self.vector, self.text])
        self.registry.load_collections({"activities": ACTIVITIES, "industrial": INDUSTRIAL})
        self.dispatcher = StrategyDispatcher(self.registry, self.vector, self.text, search_config=SEARCH_CONFIG)
        self.params = LearnedParameters()

    def run(self, query, query_vector=None):
        return SearchRun(query=query, params=self.params, query_vector=query_vector)

    @pytest.mark.asyncio
    async def test_simple_search_fuses_both_engines(self):
        """Test that a document found by both branches ranks first with two sources."""
        run = self.run(analyzed("ترخيص مصنع"), query_vector=[1.0, 0.0])

        outcome = await self.dispatcher.execute(SearchStrategy.SIMPLE, run)

        assert outcome.strategy == SearchStrategy.SIMPLE
        assert outcome.results[0].identity == "1"
        assert outcome.results[0].sources == ["vector", "text"]
        assert {result.identity for result in outcome.results} == {"1", "3"}
        assert run.engines_used == {"vector", "text"}

    @pytest.mark.asyncio
    async def test_missing_vector_skips_vector_branch(self):
        """Test lexical-only retrieval when no vector or embedder is available."""
        run = self.run(analyzed("وقود"))

        outcome = await self.dispatcher.execute(SearchStrategy.SIMPLE, run)

        assert [result.identity for result in outcome.results] == ["2"]
        assert outcome.results[0].sources == ["text"]
        assert run.engines_used == {"text"}

    @pytest.mark.asyncio
    async def test_embedder_supplies_vector(self):
        """Test that the embedder is used when no vector was given."""
        embedder = MagicMock()
        embedder.embed.return_value = [0.0, 1.0]
        dispatcher = StrategyDispatcher(self.registry, self.vector, self.text, embedder=embedder,
                                        search_config=SEARCH_CONFIG)

        outcome = await dispatcher.execute(SearchStrategy.SIMPLE, self.run(analyzed("وقود")))

        embedder.embed.assert_called_once_with("وقود")
        assert outcome.results[0].sources == ["vector", "text"]

    @pytest.mark.asyncio
    async def test_embedding_cache_reuses_query_vector(self):
        """Test that a repeated text is embedded only once when an embedding cache is set."""
        embedder = MagicMock()
        embedder.embed.return_value = [0.0, 1.0]
        cache = ResultCache(max_size=1000, copy_values=False)
        dispatcher = StrategyDispatcher(self.registry, self.vector, self.text, embedder=embedder,
                                        search_config=SEARCH_CONFIG, embedding_cache=cache)

        first = await dispatcher.execute(SearchStrategy.SIMPLE, self.run(analyzed("وقود")))
        second = await dispatcher.execute(SearchStrategy.SIMPLE, self.run(analyzed("وقود")))

        embedder.embed.assert_called_once_with("وقود")
        assert cache.get_stats()["hits"] == 1
        assert [r.identity for r in second.results] == [r.identity for r in first.results]
        assert second.results[0].sources == ["vector", "text"]

    @pytest.mark.asyncio
    async def test_empty_collection_is_logged_and_skipped(self, caplog):
        """Test that a loaded but empty collection yields no hits and an informational log."""
        self.registry.load_collection("decision104", [])
        error_handler = ErrorHandler()
        dispatcher = StrategyDispatcher(self.registry, self.vector, self.text, search_config=SEARCH_CONFIG,
                                        error_handler=error_handler)

        with caplog.at_level(logging.INFO, logger="hybrid_retrieval.utils.error_handling"):
            outcome = await dispatcher.execute(
                SearchStrategy.SIMPLE,
                self.run(analyzed("حوافز", collections=("decision104",)), query_vector=[1.0, 0.0])
            )

        assert outcome.results == []
        counts = error_handler.get_error_statistics()["error_counts_by_type"]
        assert counts["StrategyDispatcher:DATA_EMPTY_COLLECTION"] == 2
        assert "decision104" in caplog.text
        assert "StrategyDispatcher.branch" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_branch_only_removes_its_hits(self):
        """Test that a failing engine leaves the other branch intact."""
        failing = AsyncMock(side_effect=RetrievalError("index unavailable"))
        with patch.object(self.vector, "search_with_timeout", failing):
            run = self.run(analyzed("ترخيص مصنع"), query_vector=[1.0, 0.0])
            outcome = await self.dispatcher.execute(SearchStrategy.SIMPLE, run)

        assert outcome.results
        assert all(result.sources == ["text"] for result in outcome.results)
        assert run.engines_used == {"text"}

    @pytest.mark.asyncio
    async def test_unexpected_branch_error_is_contained(self):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        with patch.object(self.text, "search_with_timeout", failing):
            outcome = await self.dispatcher.execute(
                SearchStrategy.DEFAULT, self.run(analyzed("ترخيص مصنع"), query_vector=[1.0, 0.0])
            )

        assert [result.identity for result in outcome.results] == ["1", "3"]
        assert all(result.sources == ["vector"] for result in outcome.results)

    @pytest.mark.asyncio
    async def test_not_initialized_propagates(self):
        """Test that searching engines with no loaded collections is an error."""
        registry = CollectionRegistry()
        dispatcher = StrategyDispatcher(registry, VectorAdapter(), BM25Adapter(), search_config=SEARCH_CONFIG)

        with pytest.raises(NotInitializedError):
            await dispatcher.execute(SearchStrategy.SIMPLE, self.run(analyzed("مصنع"), query_vector=[1.0, 0.0]))

    @pytest.mark.asyncio
    async def test_complex_search_merges_collections(self):
        """Test cross-collection retrieval with origin tags."""
        query = analyzed("مصنع", collections=("activities", "industrial"))

        outcome = await self.dispatcher.execute(SearchStrategy.COMPLEX, self.run(query, [1.0, 0.0]))

        origins = {result.identity: result.tags["origin_collection"] for result in outcome.results}
        assert origins["z1"] == "industrial"
        assert origins["1"] == "activities"

    @pytest.mark.asyncio
    async def test_statistical_count_with_filter(self):
        """Test a COUNT filtered by governorate."""
        query = analyzed("كم عدد المصانع", entities={"governorate": "القاهرة"})

        outcome = await self.dispatcher.execute(SearchStrategy.STATISTICAL, self.run(query))

        assert outcome.statistics.statistic == StatisticType.COUNT
        assert outcome.statistics.value == 2
        assert outcome.statistics.filters == {"governorate": "القاهرة"}
        assert all(result.kind == ResultKind.STATISTICAL for result in outcome.results)

    @pytest.mark.asyncio
    async def test_statistical_group_by(self):
        query = analyzed("الأنشطة حسب التبعية")

        outcome = await self.dispatcher.execute(SearchStrategy.STATISTICAL, self.run(query))

        assert outcome.statistics.statistic == StatisticType.GROUP_BY
        assert outcome.statistics.groups == {"الصناعة": 2, "البترول": 1}
        assert outcome.statistics.value == 2

    @pytest.mark.asyncio
    async def test_comparison_search(self):
        """Test per-item retrieval tagged with the compared item."""
        query = analyzed("الفرق بين المصنع والمحطة", entities={"compare": ["مصنع", "وقود"]})

        outcome = await self.dispatcher.execute(SearchStrategy.COMPARISON, self.run(query))

        items = {result.identity: result.tags["comparison_item"] for result in outcome.results}
        assert items["2"] == "وقود"
        assert items["1"] == "مصنع"
        assert all(result.kind == ResultKind.COMPARISON for result in outcome.results)

    @pytest.mark.asyncio
    async def test_comparison_with_one_item_falls_back(self):
        query = analyzed("مصنع", entities={"compare": ["مصنع"]})
        outcome = await self.dispatcher.execute(SearchStrategy.COMPARISON, self.run(query))
        assert outcome.strategy == SearchStrategy.COMPARISON
        assert "origin_collection" in outcome.results[0].tags

    @pytest.mark.asyncio
    async def test_sequential_search_adds_focus_entity(self):
        """Test that the focus entity widens the lexical query."""
        query = analyzed("ما هي الاشتراطات", context=RecentContext(focus_entity="وقود"))

        outcome = await self.dispatcher.execute(SearchStrategy.SEQUENTIAL, self.run(query))

        assert outcome.results[0].identity == "2"
        assert outcome.results[0].tags["context_relevance"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_deep_search_over_sub_questions(self):
        """Test that every sub-question contributes results."""
        query = analyzed("ترخيص مصنع ثم محطة وقود", sub_questions=("ترخيص مصنع", "محطة وقود"))

        outcome = await self.dispatcher.execute(SearchStrategy.DEEP, self.run(query))

        assert {"1", "2"} <= {result.identity for result in outcome.results}
