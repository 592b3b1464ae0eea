"""Rank fusion, reranking, dynamic filtering and per-result confidence."""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..config.settings import get_collections_config
from ..models.core import (
    AnalyzedQuery,
    FusedResult,
    FusionSource,
    RankedResult,
    RecentContext,
    ResultKind,
)
from ..utils.logging import get_logger
from ..utils.text import extract_keywords, normalize_text

logger = get_logger(__name__)


def intent_collections(collections_config: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Intent type -> collection holding documents of that intent."""
    collections_config = collections_config or get_collections_config()
    return {
        "ACTIVITY": collections_config.get("activities", "activities"),
        "LOCATION": collections_config.get("industrial", "industrial"),
        "INCENTIVES": collections_config.get("decisions", "decision104"),
    }


def _sort_desc(results: List[Any]) -> List[Any]:
    # sorted() is stable with reverse=True, so ties keep arrival order
    return sorted(results, key=lambda result: result.score, reverse=True)


class RankFusion:
    """Weighted-score fusion accumulated by document identity."""

    def fuse(self, sources: Sequence[FusionSource], top_k: Optional[int] = None) -> List[FusedResult]:
        """Fuse ranked lists from several engines.

        Each hit contributes ``score * weight``; contributions for the same
        document identity are summed and the distinct engine names kept.

        Args:
            sources: Hit lists with their engine name and weight
            top_k: Optional cap on the fused list

        Returns:
            Fused results sorted by descending score
        """
        fused: Dict[str, FusedResult] = {}

        for source in sources:
            weight = max(source.weight, 0.0)
            for hit in source.hits:
                contribution = max(hit.score, 0.0) * weight
                key = hit.document.identity
                existing = fused.get(key)
                if existing is None:
                    fused[key] = FusedResult(
                        document=hit.document,
                        score=contribution,
                        sources=[source.engine],
                        collection=hit.collection
                    )
                else:
                    existing.score += contribution
                    if source.engine not in existing.sources:
                        existing.sources.append(source.engine)

        results = _sort_desc(list(fused.values()))
        return results[:top_k] if top_k is not None else results

    def merge_collections(self, per_collection: Dict[str, List[FusedResult]], top_k: int) -> List[FusedResult]:
        """Merge per-collection fused lists, tagging origin and capping at ``int(top_k * 1.5)``."""
        merged: List[FusedResult] = []
        for collection, results in per_collection.items():
            for result in results:
                result.collection = collection
                result.tags["origin_collection"] = collection
                merged.append(result)

        return _sort_desc(merged)[:int(top_k * 1.5)]

    def fuse_by_identity(self, result_lists: Iterable[List[FusedResult]]) -> List[FusedResult]:
        """Union fused lists (e.g. sub-question searches), summing scores per identity."""
        fused: Dict[str, FusedResult] = {}

        for results in result_lists:
            for result in results:
                existing = fused.get(result.identity)
                if existing is None:
                    fused[result.identity] = FusedResult(
                        document=result.document,
                        score=result.score,
                        sources=list(result.sources),
                        collection=result.collection,
                        kind=result.kind,
                        tags=dict(result.tags),
                        exact_match=result.exact_match
                    )
                else:
                    existing.score += result.score
                    for source in result.sources:
                        if source not in existing.sources:
                            existing.sources.append(source)
                    existing.exact_match = existing.exact_match or result.exact_match

        return _sort_desc(list(fused.values()))


def entity_values(entities: Dict[str, Any]) -> List[str]:
    """Flatten entity values into normalized non-empty strings."""
    values = []
    for value in entities.values():
        items = value if isinstance(value, (list, tuple, set)) else [value]
        for item in items:
            if isinstance(item, (str, int, float)) and not isinstance(item, bool):
                normalized = normalize_text(str(item))
                if normalized:
                    values.append(normalized)
    return values


def context_relevance(result: FusedResult, context: RecentContext) -> float:
    """Share of context terms (focus entity, recent entities, previous query keywords) in the document."""
    terms = []
    if context.focus_entity:
        terms.append(context.focus_entity)
    terms.extend(str(entity) for entity in context.recent_entities)
    if context.previous_query:
        terms.extend(extract_keywords(context.previous_query))

    normalized_terms = {normalize_text(term) for term in terms}
    normalized_terms.discard("")
    if not normalized_terms:
        return 0.0

    text = normalize_text(result.document.searchable_text())
    return sum(1 for term in normalized_terms if term in text) / len(normalized_terms)


class Reranker:
    """Multiplicative reranking in a fixed order.

    Steps compound: intent match, entity match, completeness, freshness
    (only when the document carries an update timestamp) and multi-source
    agreement. Every applied step is appended to the result's multiplier
    trail as ``(name, factor, score_after)``.
    """

    DEFAULT_ORDER = ("intent", "entities", "completeness", "freshness", "multi_source")

    def __init__(self, order: Sequence[str] = DEFAULT_ORDER, intent_boost: float = 1.2,
                 entity_weight: float = 0.3, completeness_weight: float = 0.15,
                 freshness_weight: float = 0.1, multi_source_boost: float = 1.15,
                 now: Optional[Callable[[], datetime]] = None,
                 collections_config: Optional[Dict[str, Any]] = None):
        unknown = set(order) - set(self.DEFAULT_ORDER)
        if unknown:
            raise ValueError(f"Unknown rerank steps: {sorted(unknown)}")
        self.order = tuple(order)
        self.intent_boost = intent_boost
        self.entity_weight = entity_weight
        self.completeness_weight = completeness_weight
        self.freshness_weight = freshness_weight
        self.multi_source_boost = multi_source_boost
        self._now = now or datetime.now
        self.intent_collections = intent_collections(collections_config)
        self._steps = {
            "intent": self._intent_factor,
            "entities": self._entity_factor,
            "completeness": self._completeness_factor,
            "freshness": self._freshness_factor,
            "multi_source": self._multi_source_factor,
        }

    def rerank(self, fused: Sequence[FusedResult], query: AnalyzedQuery) -> List[RankedResult]:
        """Rescore fused results and re-sort once all steps are applied."""
        ranked = []
        for result in fused:
            item = result if isinstance(result, RankedResult) else RankedResult.from_fused(result)
            if item.kind != ResultKind.STATISTICAL:
                for name in self.order:
                    factor = self._steps[name](item, query)
                    if factor is None:
                        continue
                    item.score *= factor
                    item.multipliers.append((name, factor, item.score))
            ranked.append(item)

        return _sort_desc(ranked)

    def _intent_factor(self, result: RankedResult, query: AnalyzedQuery) -> Optional[float]:
        return self.intent_boost if self.matches_intent(result, query) else None

    def _entity_factor(self, result: RankedResult, query: AnalyzedQuery) -> Optional[float]:
        return 1.0 + self.entity_weight * self.entity_match_ratio(result, query.entities)

    def _completeness_factor(self, result: RankedResult, query: AnalyzedQuery) -> Optional[float]:
        return 1.0 + self.completeness_weight * self.completeness_ratio(result)

    def _freshness_factor(self, result: RankedResult, query: AnalyzedQuery) -> Optional[float]:
        if result.document.updated_at is None:
            return None
        return 1.0 + self.freshness_weight * self.freshness(result.document.updated_at)

    def _multi_source_factor(self, result: RankedResult, query: AnalyzedQuery) -> Optional[float]:
        return self.multi_source_boost if result.source_count > 1 else None

    def matches_intent(self, result: FusedResult, query: AnalyzedQuery) -> bool:
        """True when the document is tagged with the intent or lives in the intent's collection."""
        intent = query.intent
        labels = {str(label).upper() for label in (
            result.document.get_field("intent"),
            result.document.get_field("category"),
            result.document.get_field("type"),
        ) if label}
        if intent.type.upper() in labels or (intent.subtype and intent.subtype.upper() in labels):
            return True
        collection = result.collection or result.document.collection
        return self.intent_collections.get(intent.type.upper()) == collection

    @staticmethod
    def entity_match_ratio(result: FusedResult, entities: Dict[str, Any]) -> float:
        values = entity_values(entities)
        if not values:
            return 0.0
        text = normalize_text(result.document.searchable_text())
        return sum(1 for value in values if value in text) / len(values)

    @staticmethod
    def completeness_ratio(result: FusedResult) -> float:
        return result.document.filled_ratio()

    def freshness(self, updated_at: datetime) -> float:
        """1.0 for today, halving after a year."""
        now = self._now()
        if updated_at.tzinfo is not None and now.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=None)
        age_days = max((now - updated_at).total_seconds() / 86400.0, 0.0)
        return 1.0 / (1.0 + age_days / 365.0)


def apply_context_boost(results: List[RankedResult], query: AnalyzedQuery,
                        context_boost: float, relevance_trigger: float = 0.3) -> List[RankedResult]:
    """Boost results relevant to the prior conversation by ``1 + context_boost``."""
    if query.context.is_empty:
        return results

    for result in results:
        if result.kind == ResultKind.STATISTICAL:
            continue
        if context_relevance(result, query.context) > relevance_trigger:
            factor = 1.0 + context_boost
            result.score *= factor
            result.context_boosted = True
            result.multipliers.append(("context", factor, result.score))

    return _sort_desc(results)


class DynamicFilter:
    """Deduplicate, threshold adaptively and cap a ranked list."""

    def __init__(self, adaptive: bool = True, spread_trigger: float = 0.3,
                 relaxed_factor: float = 0.85, fallback_count: int = 3):
        self.adaptive = adaptive
        self.spread_trigger = spread_trigger
        self.relaxed_factor = relaxed_factor
        self.fallback_count = fallback_count

    @staticmethod
    def deduplicate(results: Sequence[RankedResult]) -> List[RankedResult]:
        """Keep the first occurrence of each identity (id, else the first 100 chars of text)."""
        seen = set()
        unique = []
        for result in results:
            if result.identity in seen:
                continue
            seen.add(result.identity)
            unique.append(result)
        return unique

    def compute_threshold(self, results: Sequence[RankedResult], base_threshold: float) -> float:
        if not self.adaptive or not results:
            return base_threshold

        scores = [result.score for result in results]
        mean_score = sum(scores) / len(scores)
        if max(scores) - mean_score > self.spread_trigger:
            return max(mean_score, base_threshold)
        return base_threshold * self.relaxed_factor

    def apply(self, results: Sequence[RankedResult], base_threshold: float, top_k: int) -> List[RankedResult]:
        """Filter a ranked list; never empties a non-empty candidate set."""
        unique = self.deduplicate(results)
        threshold = self.compute_threshold(unique, base_threshold)
        filtered = [result for result in unique if result.score >= threshold]

        if not filtered and unique:
            logger.debug(f"Threshold {threshold:.3f} removed every result, keeping best {self.fallback_count}")
            return unique[:self.fallback_count]

        return filtered[:top_k]


def assign_confidence(results: List[RankedResult], query: AnalyzedQuery, min_confidence: float) -> List[RankedResult]:
    """Per-result confidence from score, rank, agreement and exactness, clamped to [min_confidence, 1]."""
    normalized_query = normalize_text(query.resolved)

    for rank, result in enumerate(results):
        confidence = result.score * (1 - rank * 0.05)

        if result.source_count > 1:
            confidence = min(confidence * 1.1, 1.0)

        if query.complexity > 7:
            confidence *= 0.9

        if not result.exact_match and normalized_query:
            result.exact_match = normalized_query in normalize_text(result.document.searchable_text())
        if result.exact_match:
            confidence = min(confidence * 1.2, 0.98)

        result.confidence = min(max(confidence, min_confidence), 1.0)

    return results
