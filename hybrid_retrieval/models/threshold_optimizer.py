"""Performance-driven adaptation of similarity, confidence, relevance and complexity thresholds."""

import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from ..config.settings import get_threshold_optimizer_config
from ..utils.logging import get_logger

logger = get_logger(__name__)


DEFAULT_THRESHOLDS = {
    "similarity": 0.7,
    "confidence": 0.75,
    "relevance": 0.65,
    "complexity": 0.6,
}

# Analysis used when no performance records exist yet
DEFAULT_ANALYSIS = {
    "avg_results_count": 5.0,
    "avg_quality_score": 0.7,
    "rejection_rate": 0.2,
    "accuracy_rate": 0.75,
    "answer_rate": 0.8,
    "context_match_rate": 0.7,
    "false_complexity_rate": 0.1,
    "missed_complexity_rate": 0.1,
}

REJECTED_FEEDBACK = ("rejected", "irrelevant")
ACCURATE_FEEDBACK = ("accurate", "helpful")


class ThresholdOptimizer:
    """Adjusts retrieval thresholds from recorded search performance.

    Each performance record is a mapping that may carry ``results_count``,
    ``quality_score``, ``user_feedback``, ``has_answer``, ``context_match``,
    ``classified_as_complex`` and ``actually_complex``. Every threshold stays
    within ``[min_threshold, max_threshold]``.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or get_threshold_optimizer_config()
        self.learning_rate = config.get("learning_rate", 0.1)
        self.min_threshold = config.get("min_threshold", 0.3)
        self.max_threshold = config.get("max_threshold", 0.95)
        self.analysis_window = config.get("analysis_window", 100)

        self.thresholds: Dict[str, float] = dict(DEFAULT_THRESHOLDS)
        self.performance_history: deque = deque(maxlen=config.get("max_history", 1000))
        self.adjustment_history: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _clamp(self, value: float) -> float:
        return max(self.min_threshold, min(self.max_threshold, value))

    def record_performance(self, performance: Dict[str, Any]) -> None:
        """Append one performance record; only the most recent records are kept."""
        record = dict(performance)
        record.setdefault("timestamp", datetime.now().isoformat())
        with self._lock:
            self.performance_history.append(record)

    def analyze_performance(self, records: Optional[List[Dict[str, Any]]] = None) -> Dict[str, float]:
        """Summarize the most recent records into rates and averages."""
        if records is None:
            with self._lock:
                records = list(self.performance_history)
        if not records:
            return dict(DEFAULT_ANALYSIS)

        recent = records[-self.analysis_window:]
        count = len(recent)

        def rate(predicate) -> float:
            return sum(1 for record in recent if predicate(record)) / count

        return {
            "avg_results_count": float(np.mean([record.get("results_count") or 0 for record in recent])),
            "avg_quality_score": float(np.mean([record.get("quality_score", 0.5) for record in recent])),
            "rejection_rate": rate(lambda r: r.get("user_feedback") in REJECTED_FEEDBACK),
            "accuracy_rate": rate(lambda r: r.get("user_feedback") in ACCURATE_FEEDBACK),
            "answer_rate": rate(lambda r: r.get("has_answer") is True),
            "context_match_rate": rate(lambda r: r.get("context_match") is True),
            "false_complexity_rate": rate(
                lambda r: r.get("classified_as_complex") is True and r.get("actually_complex") is False
            ),
            "missed_complexity_rate": rate(
                lambda r: r.get("classified_as_complex") is False and r.get("actually_complex") is True
            ),
        }

    def optimize(self, records: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Run one optimization pass over all four thresholds.

        Args:
            records: Performance records to analyze, defaults to the recorded history

        Returns:
            Per-threshold ``previous``/``optimized``/``change``/``reason`` plus
            the predicted performance impact
        """
        analysis = self.analyze_performance(records)

        with self._lock:
            optimizations = {
                "similarity": self._optimize_similarity(analysis),
                "confidence": self._optimize_confidence(analysis),
                "relevance": self._optimize_relevance(analysis),
                "complexity": self._optimize_complexity(analysis),
            }
            impact = self.predict_performance_impact(optimizations)
            self.adjustment_history.append({
                "timestamp": datetime.now().isoformat(),
                "optimizations": optimizations,
                "performance_impact": impact
            })

        return {"optimizations": optimizations, "performance_impact": impact, "analysis": analysis}

    def _adjust(self, name: str, delta: float, reason: Optional[str]) -> Dict[str, Any]:
        previous = self.thresholds[name]
        optimized = self._clamp(previous + delta) if reason else previous
        if reason:
            logger.info(f"Threshold {name}: {previous:.3f} -> {optimized:.3f} ({reason})")
        self.thresholds[name] = optimized
        return {"previous": previous, "optimized": optimized, "change": optimized - previous, "reason": reason}

    def _optimize_similarity(self, analysis: Dict[str, float]) -> Dict[str, Any]:
        if analysis["avg_results_count"] < 1:
            return self._adjust("similarity", -self.learning_rate * 0.5, "too_few_results")
        if analysis["avg_results_count"] > 20:
            return self._adjust("similarity", self.learning_rate * 0.3, "too_many_results")
        if analysis["avg_quality_score"] < 0.6:
            return self._adjust("similarity", self.learning_rate * 0.2, "low_quality")
        if analysis["rejection_rate"] > 0.4:
            return self._adjust("similarity", self.learning_rate * 0.4, "high_rejection")
        return self._adjust("similarity", 0.0, None)

    def _optimize_confidence(self, analysis: Dict[str, float]) -> Dict[str, Any]:
        if analysis["accuracy_rate"] < 0.7:
            return self._adjust("confidence", self.learning_rate * 0.3, "low_accuracy")
        if analysis["accuracy_rate"] > 0.9 and analysis["answer_rate"] < 0.5:
            return self._adjust("confidence", -self.learning_rate * 0.2, "high_precision_low_recall")
        return self._adjust("confidence", 0.0, None)

    def _optimize_relevance(self, analysis: Dict[str, float]) -> Dict[str, Any]:
        if analysis["context_match_rate"] < 0.6:
            return self._adjust("relevance", self.learning_rate * 0.25, "poor_context_match")
        return self._adjust("relevance", 0.0, None)

    def _optimize_complexity(self, analysis: Dict[str, float]) -> Dict[str, Any]:
        if analysis["false_complexity_rate"] > 0.3:
            return self._adjust("complexity", self.learning_rate * 0.15, "over_complicating")
        if analysis["missed_complexity_rate"] > 0.3:
            return self._adjust("complexity", -self.learning_rate * 0.15, "under_complicating")
        return self._adjust("complexity", 0.0, None)

    @staticmethod
    def predict_performance_impact(optimizations: Dict[str, Dict[str, Any]]) -> Dict[str, float]:
        """Rough precision/recall shift expected from a set of threshold changes."""
        precision_shift = 0.0
        recall_shift = 0.0
        satisfaction = 0.0

        similarity = optimizations.get("similarity")
        if similarity and similarity["change"]:
            if similarity["change"] > 0:
                precision_shift += 0.05
                recall_shift -= 0.03
            else:
                precision_shift -= 0.03
                recall_shift += 0.05

        confidence = optimizations.get("confidence")
        if confidence and confidence["change"]:
            if confidence["change"] > 0:
                precision_shift += 0.07
                satisfaction += 0.05
            else:
                recall_shift += 0.04

        precision = max(0.0, min(1.0, 0.8 + precision_shift))
        recall = max(0.0, min(1.0, 0.75 + recall_shift))
        f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

        return {
            "precision": precision_shift,
            "recall": recall_shift,
            "f1_score": f1,
            "user_satisfaction": satisfaction
        }

    def recent_performance(self) -> Dict[str, Any]:
        with self._lock:
            recent = list(self.performance_history)[-50:]
        if not recent:
            return {"overall_score": 0.7, "data_points": 0}
        return {
            "overall_score": float(np.mean([record.get("score", 0.7) for record in recent])),
            "data_points": len(recent)
        }

    def generate_recommendations(self) -> List[Dict[str, str]]:
        recommendations = []

        with self._lock:
            recent_adjustments = self.adjustment_history[-10:] if len(self.adjustment_history) > 10 else []
        similarity_changes = sum(
            1 for adjustment in recent_adjustments if adjustment["optimizations"]["similarity"]["change"]
        )
        if similarity_changes > 5:
            recommendations.append({
                "type": "similarity",
                "message": "Similarity threshold changes frequently; review data quality",
                "priority": "high"
            })

        if self.recent_performance()["overall_score"] < 0.6:
            recommendations.append({
                "type": "general",
                "message": "Overall performance is low; review all thresholds",
                "priority": "critical"
            })

        return recommendations

    def get_thresholds(self) -> Dict[str, float]:
        with self._lock:
            return dict(self.thresholds)

    def set_threshold(self, name: str, value: float) -> bool:
        """Set a threshold manually, clamped to the allowed range."""
        with self._lock:
            if name not in self.thresholds:
                return False
            self.thresholds[name] = self._clamp(value)
            return True

    def reset(self) -> None:
        with self._lock:
            self.thresholds = dict(DEFAULT_THRESHOLDS)
            self.adjustment_history = []

    def export_history(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "thresholds": dict(self.thresholds),
                "performance_history": list(self.performance_history),
                "adjustment_history": list(self.adjustment_history)
            }

    def import_history(self, data: Dict[str, Any]) -> None:
        with self._lock:
            if data.get("thresholds"):
                self.thresholds.update({
                    name: self._clamp(float(value)) for name, value in data["thresholds"].items()
                })
            if data.get("performance_history"):
                self.performance_history.clear()
                self.performance_history.extend(data["performance_history"])
            if data.get("adjustment_history"):
                self.adjustment_history = list(data["adjustment_history"])

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "current_thresholds": dict(self.thresholds),
                "performance_records_count": len(self.performance_history),
                "adjustments_count": len(self.adjustment_history),
                "learning_rate": self.learning_rate
            }
