"""Tests for the multi-factor confidence scorer."""

import pytest
from unittest.mock import MagicMock

from hybrid_retrieval.models.confidence import ConfidenceScorer, confidence_level, recommendation_for
from hybrid_retrieval.models.core import Document, RankedResult, RecentContext


CONFIG = {
    "answer_threshold": 0.6,
    "history_size": 10,
    "weights": {
        "data_quality": 0.25,
        "relevance": 0.20,
        "completeness": 0.15,
        "consistency": 0.15,
        "source_reliability": 0.15,
        "freshness": 0.05,
        "context_alignment": 0.05,
    },
}

COLLECTIONS = {"primary": ["activities", "industrial"], "decisions": "decision104"}


def result(doc_id, score=0.9, collection="activities", text="متطلبات ترخيص مصنع", **fields):
    document = Document(doc_id=doc_id, collection=collection, text=text, fields=fields)
    return RankedResult(document=document, score=score, collection=collection)


def complete_result(doc_id, activity):
    return result(doc_id, activity=activity, governorate="القاهرة", law="قانون 15", requirements="سجل تجاري")


class TestLevels:
    """Test cases for level and recommendation thresholds."""

    def test_confidence_level(self):
        assert confidence_level(0.95) == "very_high"
        assert confidence_level(0.75) == "high"
        assert confidence_level(0.6) == "medium"
        assert confidence_level(0.4) == "low"
        assert confidence_level(0.39) == "very_low"

    def test_recommendation(self):
        assert recommendation_for(0.8) == "answer_confidently"
        assert recommendation_for(0.65) == "answer_with_caution"
        assert recommendation_for(0.45) == "answer_with_warnings"
        assert recommendation_for(0.1) == "do_not_answer"


class TestConfidenceScorer:
    """Test cases for ConfidenceScorer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.scorer = ConfidenceScorer(CONFIG, COLLECTIONS)

    def test_weights_sum_to_one(self):
        assert sum(self.scorer.weights.values()) == pytest.approx(1.0)

    def test_empty_results(self):
        """Test the conservative scores for an empty result set."""
        report = self.scorer.calculate("متطلبات ترخيص مصنع", [])

        assert report.breakdown["consistency"].score == 0.8
        assert report.breakdown["source_reliability"].score == 0.5
        assert report.breakdown["freshness"].score == 0.7
        assert report.score == pytest.approx(0.15 * 0.8 + 0.15 * 0.5 + 0.05 * 0.7 + 0.05 * 0.7)
        assert report.level == "very_low"
        assert report.should_answer is False
        assert report.warnings == ["low_data_quality", "low_relevance", "incomplete"]

    def test_strong_results(self):
        """Test a complete, relevant and consistent result set."""
        results = [complete_result("1", "مخبز"), complete_result("2", "مطحن"), complete_result("3", "مصنع")]

        report = self.scorer.calculate("متطلبات ترخيص مصنع", results)

        assert report.breakdown["data_quality"].score == pytest.approx(1.0)
        assert report.breakdown["relevance"].score == pytest.approx(1.0)
        assert report.breakdown["completeness"].score == pytest.approx(1.0)
        assert report.breakdown["consistency"].score == pytest.approx(1.0)
        assert report.breakdown["source_reliability"].score == pytest.approx(0.95)
        assert report.breakdown["source_reliability"].details["avg_contribution"] == pytest.approx(0.35)
        assert report.score == pytest.approx(0.75 + 0.15 * 0.95 + 0.05 * 0.9 + 0.05 * 0.7)
        assert report.level == "very_high"
        assert report.recommendation == "answer_confidently"
        assert report.should_answer is True
        assert report.warnings == []

    def test_partial_completeness(self):
        report = self.scorer.calculate("ترخيص", [result("1", activity="مخبز", governorate="الجيزة")])
        assert report.breakdown["completeness"].score == pytest.approx(0.5)
        assert report.breakdown["completeness"].details["missing_elements"] == ["legal_reference", "requirements"]

    def test_authority_conflict(self):
        """Test that the same activity under two authorities lowers consistency."""
        results = [
            result("1", activity="مخبز", authority="التموين"),
            result("2", activity="مخبز", authority="الصحة"),
            result("3", activity="مطحن", authority="الصحة"),
        ]

        report = self.scorer.calculate("مخبز", results)

        assert report.breakdown["consistency"].score == pytest.approx(0.85)
        assert "inconsistency" in report.warnings

    def test_source_reliability_by_collection(self):
        results = [result("1", collection="decision104"), result("2", collection="other")]
        factor = self.scorer.score_source_reliability(results)
        assert factor.score == pytest.approx((0.9 + 0.6) / 2)
        assert factor.details["avg_contribution"] == pytest.approx(0.25)

    def test_context_alignment(self):
        """Test the baseline and the raise from a matching previous query."""
        results = [result("1")]
        assert self.scorer.score_context_alignment("ترخيص مصنع", results, RecentContext()).score == 0.7

        context = RecentContext(messages=("ترخيص مصنع جديد",))
        assert self.scorer.score_context_alignment("ترخيص مصنع", results, context).score == pytest.approx(1.0)

        regional = RecentContext(preferred_region="القاهرة")
        matched = [result("1", governorate="القاهرة")]
        assert self.scorer.score_context_alignment("ترخيص", matched, regional).score == pytest.approx(0.7 + 0.3 * 0.8)

    def test_failing_factor_uses_fallback(self):
        """Test that a factor error never fails the scoring."""
        self.scorer._factors["relevance"] = MagicMock(side_effect=RuntimeError("broken"))

        report = self.scorer.calculate("ترخيص", [result("1")])

        assert report.breakdown["relevance"].score == 0.0
        assert report.breakdown["relevance"].details == {"reason": "scoring_failed"}

    def test_update_weight_renormalizes(self):
        """Test that weights still sum to 1 after an update."""
        assert self.scorer.update_weight("relevance", 0.5) is True
        assert sum(self.scorer.weights.values()) == pytest.approx(1.0)
        assert self.scorer.weights["relevance"] > 0.2

        assert self.scorer.update_weight("data_quality", 7.0) is True
        assert sum(self.scorer.weights.values()) == pytest.approx(1.0)

        assert self.scorer.update_weight("popularity", 0.5) is False

    def test_statistics_and_history(self):
        """Test the scoring history and level distribution."""
        self.scorer.calculate("q", [])
        self.scorer.calculate("متطلبات ترخيص مصنع", [complete_result("1", "مخبز")])

        stats = self.scorer.get_statistics()
        assert stats["total_scorings"] == 2
        assert stats["distribution"]["very_low"] == 1
        assert len(self.scorer.export_history()["scoring_history"]) == 2

        self.scorer.clear_history()
        assert self.scorer.get_statistics()["total_scorings"] == 0
