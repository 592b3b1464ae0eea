"""Multi-factor confidence scoring for ranked result sets."""

import threading
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config.settings import get_collections_config, get_confidence_config
from ..models.core import ConfidenceReport, FactorScore, RankedResult, RecentContext
from ..utils.error_handling import ErrorContext, get_error_handler
from ..utils.logging import get_logger
from ..utils.text import extract_keywords, normalize_text, word_overlap

logger = get_logger(__name__)


DEFAULT_WEIGHTS = {
    "data_quality": 0.25,
    "relevance": 0.20,
    "completeness": 0.15,
    "consistency": 0.15,
    "source_reliability": 0.15,
    "freshness": 0.05,
    "context_alignment": 0.05,
}

# Scores used when a factor cannot be computed
FALLBACK_SCORES = {
    "data_quality": 0.0,
    "relevance": 0.0,
    "completeness": 0.0,
    "consistency": 0.5,
    "source_reliability": 0.5,
    "freshness": 0.7,
    "context_alignment": 0.7,
}

LEVELS = (
    (0.9, "very_high"),
    (0.75, "high"),
    (0.6, "medium"),
    (0.4, "low"),
)

COMPLETENESS_ELEMENTS = {
    "activity": ("activity", "نشاط"),
    "location": ("location", "موقع", "محافظة", "governorate"),
    "legal_reference": ("law", "قانون", "قرار", "decision"),
    "requirements": ("requirements", "متطلبات", "شروط"),
}


def confidence_level(score: float) -> str:
    for floor, level in LEVELS:
        if score >= floor:
            return level
    return "very_low"


def recommendation_for(score: float) -> str:
    if score >= 0.75:
        return "answer_confidently"
    if score >= 0.6:
        return "answer_with_caution"
    if score >= 0.4:
        return "answer_with_warnings"
    return "do_not_answer"


class ConfidenceScorer:
    """Seven-factor weighted confidence estimate.

    Factors: data quality, relevance, completeness, consistency, source
    reliability, freshness and context alignment. Weights always sum to 1.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 collections_config: Optional[Dict[str, Any]] = None):
        config = config or get_confidence_config()
        collections_config = collections_config or get_collections_config()

        self.weights: Dict[str, float] = dict(DEFAULT_WEIGHTS)
        self.weights.update({
            name: float(value) for name, value in (config.get("weights") or {}).items() if name in DEFAULT_WEIGHTS
        })
        self._renormalize()

        self.answer_threshold = config.get("answer_threshold", 0.6)
        self.primary_collections = set(collections_config.get("primary", ["activities", "industrial"]))
        self.decision_collections = {collections_config.get("decisions", "decision104")}
        self.error_handler = get_error_handler()

        self._history: deque = deque(maxlen=config.get("history_size", 1000))
        self._lock = threading.Lock()

        self._factors: Dict[str, Callable[..., FactorScore]] = {
            "data_quality": self.score_data_quality,
            "relevance": self.score_relevance,
            "completeness": self.score_completeness,
            "consistency": self.score_consistency,
            "source_reliability": self.score_source_reliability,
            "freshness": self.score_freshness,
            "context_alignment": self.score_context_alignment,
        }

    def calculate(self, query: str, results: Sequence[RankedResult],
                  context: Optional[RecentContext] = None) -> ConfidenceReport:
        """Score a result set.

        A factor that raises is logged and replaced by its conservative
        fallback score so that scoring never fails a search.

        Args:
            query: Query text the results answer
            results: Final ranked results
            context: Conversation context, if any

        Returns:
            ConfidenceReport with the weighted score and per-factor breakdown
        """
        context = context or RecentContext()
        breakdown: Dict[str, FactorScore] = {}

        for name, factor in self._factors.items():
            try:
                breakdown[name] = factor(query=query, results=results, context=context)
            except Exception as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="ConfidenceScorer",
                    operation=f"score_{name}",
                    query=query
                ))
                breakdown[name] = FactorScore(FALLBACK_SCORES[name], {"reason": "scoring_failed"})

        overall = self.weighted_score(breakdown)
        report = ConfidenceReport(
            score=overall,
            level=confidence_level(overall),
            breakdown=breakdown,
            recommendation=recommendation_for(overall),
            should_answer=overall >= self.answer_threshold,
            warnings=self.identify_warnings(breakdown)
        )

        with self._lock:
            self._history.append({
                "timestamp": datetime.now().isoformat(),
                "query": query[:50],
                "score": overall,
                "level": report.level
            })

        return report

    def weighted_score(self, breakdown: Dict[str, FactorScore]) -> float:
        weighted_sum = 0.0
        total_weight = 0.0
        for name, weight in self.weights.items():
            if name in breakdown:
                weighted_sum += breakdown[name].score * weight
                total_weight += weight
        return weighted_sum / total_weight if total_weight > 0 else 0.0

    def score_data_quality(self, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if not results:
            return FactorScore(0.0, {"reason": "no_results"})

        quality = 0.0
        factors = []

        if len(results) >= 3:
            quality += 0.3
            factors.append("sufficient_results")
        else:
            quality += 0.15
            factors.append("minimal_results")

        avg_similarity = sum(min(max(result.score, 0.0), 1.0) for result in results) / len(results)
        if avg_similarity >= 0.8:
            quality += 0.4
            factors.append("high_similarity")
        elif avg_similarity >= 0.6:
            quality += 0.25
            factors.append("moderate_similarity")
        else:
            quality += 0.1
            factors.append("low_similarity")

        completeness_ratio = sum(result.document.filled_ratio() for result in results) / len(results)
        quality += completeness_ratio * 0.3

        return FactorScore(min(1.0, quality), {
            "factors": factors,
            "avg_similarity": avg_similarity,
            "completeness_ratio": completeness_ratio
        })

    def score_relevance(self, query: str, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if not results:
            return FactorScore(0.0, {"reason": "no_results"})

        keywords = list(dict.fromkeys(extract_keywords(query)))
        normalized_keywords = [normalize_text(keyword) for keyword in keywords]

        total = 0.0
        for result in results:
            text = normalize_text(" ".join([result.document.searchable_text()] + [
                str(value) for value in result.document.fields.values() if isinstance(value, (str, int, float))
            ]))
            if normalized_keywords:
                total += sum(1 for keyword in normalized_keywords if keyword and keyword in text) / len(normalized_keywords)

        relevance = total / len(results)
        return FactorScore(min(1.0, relevance), {"keyword_match_ratio": relevance, "query_keywords": keywords})

    def score_completeness(self, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if not results:
            return FactorScore(0.0, {"reason": "no_results"})

        present = {
            element: any(result.document.get_field(*aliases) is not None for result in results)
            for element, aliases in COMPLETENESS_ELEMENTS.items()
        }
        score = 0.25 * sum(present.values())
        return FactorScore(score, {
            "present": [element for element, found in present.items() if found],
            "missing_elements": [element for element, found in present.items() if not found]
        })

    def score_consistency(self, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if len(results) <= 1:
            return FactorScore(0.8, {"reason": "single_or_no_result", "conflicts_count": 0})

        conflicts: List[Dict[str, Any]] = []
        for i in range(len(results) - 1):
            for j in range(i + 1, len(results)):
                conflict = self.detect_conflict(results[i], results[j])
                if conflict:
                    conflicts.append(conflict)

        return FactorScore(max(0.0, 1.0 - 0.15 * len(conflicts)), {
            "conflicts_count": len(conflicts),
            "conflicts": conflicts
        })

    @staticmethod
    def detect_conflict(first: RankedResult, second: RankedResult) -> Optional[Dict[str, Any]]:
        """Same activity attributed to different authorities."""
        activity = first.document.get_field("activity", "نشاط")
        if activity is None or activity != second.document.get_field("activity", "نشاط"):
            return None

        first_authority = first.document.get_field("authority", "جهة")
        second_authority = second.document.get_field("authority", "جهة")
        if first_authority and second_authority and first_authority != second_authority:
            return {
                "type": "authority_conflict",
                "activity": activity,
                "authorities": [first_authority, second_authority]
            }
        return None

    def _reliability(self, collection: Optional[str]):
        if collection in self.primary_collections:
            return 0.95, 0.35
        if collection in self.decision_collections:
            return 0.9, 0.3
        return 0.6, 0.2

    def score_source_reliability(self, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if not results:
            return FactorScore(0.5, {"reason": "no_results"})

        sources = []
        reliability_total = 0.0
        contribution_total = 0.0
        for result in results:
            collection = result.collection or result.document.collection
            reliability, contribution = self._reliability(collection)
            reliability_total += reliability
            contribution_total += contribution
            sources.append({"source": collection, "reliability": reliability})

        return FactorScore(min(1.0, reliability_total / len(results)), {
            "sources": sources,
            "avg_contribution": contribution_total / len(results)
        })

    def score_freshness(self, results: Sequence[RankedResult], **kwargs) -> FactorScore:
        if not results:
            return FactorScore(0.7, {"reason": "no_results"})
        return FactorScore(0.9, {"reason": "static_regulatory_data"})

    def score_context_alignment(self, query: str, results: Sequence[RankedResult],
                                context: RecentContext, **kwargs) -> FactorScore:
        """0.7 baseline, raised by overlap with the previous query and a preferred region match."""
        if context.is_empty and not context.preferred_region:
            return FactorScore(0.7, {"reason": "no_context"})

        signals = []
        if context.previous_query:
            signals.append(word_overlap(extract_keywords(query), extract_keywords(context.previous_query)))
        if context.preferred_region:
            matched = any(
                context.preferred_region in (
                    result.document.get_field("location"),
                    result.document.get_field("governorate", "محافظة", "المحافظة")
                )
                for result in results
            )
            signals.append(0.8 if matched else 0.5)

        boost = sum(signals) / len(signals) if signals else 0.0
        return FactorScore(min(1.0, 0.7 + 0.3 * boost), {"has_context": True, "signals": signals})

    @staticmethod
    def identify_warnings(breakdown: Dict[str, FactorScore]) -> List[str]:
        warnings = []
        if breakdown["data_quality"].score < 0.5:
            warnings.append("low_data_quality")
        if breakdown["relevance"].score < 0.6:
            warnings.append("low_relevance")
        if breakdown["completeness"].score < 0.5:
            warnings.append("incomplete")
        if breakdown["consistency"].details.get("conflicts_count", 0) > 0:
            warnings.append("inconsistency")
        return warnings

    def _renormalize(self) -> None:
        total = sum(self.weights.values())
        if total <= 0:
            equal = 1.0 / len(self.weights)
            self.weights = {name: equal for name in self.weights}
            return
        self.weights = {name: weight / total for name, weight in self.weights.items()}

    def update_weight(self, factor: str, weight: float) -> bool:
        """Set one factor weight (clamped to [0, 1]) and renormalize all weights to sum to 1."""
        if factor not in self.weights:
            return False
        self.weights[factor] = max(0.0, min(1.0, weight))
        self._renormalize()
        return True

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            history = list(self._history)

        if not history:
            return {"total_scorings": 0, "avg_confidence": 0.0, "distribution": {}, "weights": dict(self.weights)}

        distribution = {level: 0 for level in ("very_high", "high", "medium", "low", "very_low")}
        for entry in history:
            distribution[entry["level"]] += 1

        return {
            "total_scorings": len(history),
            "avg_confidence": sum(entry["score"] for entry in history) / len(history),
            "distribution": distribution,
            "weights": dict(self.weights)
        }

    def export_history(self) -> Dict[str, Any]:
        with self._lock:
            return {"scoring_history": list(self._history), "weights": dict(self.weights)}

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
