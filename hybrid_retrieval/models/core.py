"""Core data models for the hybrid retrieval core."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import numpy as np


class SearchStrategy(Enum):
    """Retrieval strategies selected by the dispatcher."""
    SIMPLE = "SIMPLE"
    COMPLEX = "COMPLEX"
    STATISTICAL = "STATISTICAL"
    COMPARISON = "COMPARISON"
    SEQUENTIAL = "SEQUENTIAL"
    DEEP = "DEEP"
    DEFAULT = "DEFAULT"


class ResultKind(Enum):
    """Tag describing what a ranked result carries."""
    DOCUMENT = "document"
    STATISTICAL = "statistical"
    COMPARISON = "comparison"


class StatisticType(Enum):
    """Aggregation requested by a statistical question."""
    COUNT = "COUNT"
    LIST = "LIST"
    GROUP_BY = "GROUP_BY"
    AGGREGATE = "AGGREGATE"


@dataclass(frozen=True)
class Intent:
    """Intent produced by the external classifier."""
    type: str = "GENERAL"
    subtype: Optional[str] = None
    confidence: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.type}_{self.subtype}" if self.subtype else self.type


@dataclass(frozen=True)
class QuestionType:
    """Surface question-form flags detected from the query text."""
    is_statistical: bool = False
    is_comparison: bool = False
    is_definition: bool = False
    is_location: bool = False
    is_how: bool = False
    is_why: bool = False
    is_yes_no: bool = False


@dataclass(frozen=True)
class RecentContext:
    """Conversation context relevant to the current query."""
    messages: Tuple[str, ...] = ()
    focus_entity: Optional[str] = None
    recent_entities: Tuple[str, ...] = ()
    preferred_region: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.messages or self.focus_entity or self.recent_entities)

    @property
    def previous_query(self) -> Optional[str]:
        return self.messages[-1] if self.messages else None


@dataclass(frozen=True)
class AnalyzedQuery:
    """Immutable analysis of a query, fixed for the duration of one search."""
    original: str
    resolved: str
    intent: Intent = field(default_factory=Intent)
    entities: Dict[str, Any] = field(default_factory=dict)
    context: RecentContext = field(default_factory=RecentContext)
    complexity: float = 0.0
    collections: Tuple[str, ...] = ()
    question_type: QuestionType = field(default_factory=QuestionType)
    sub_questions: Tuple[str, ...] = ()

    @property
    def primary_collection(self) -> Optional[str]:
        return self.collections[0] if self.collections else None


@dataclass(frozen=True)
class Document:
    """A document in exactly one collection.

    ``fields`` carries collection-specific attributes beyond the fixed core
    schema. Documents are never mutated after load; updates replace them.
    """
    doc_id: Optional[str]
    collection: str
    text: str = ""
    vector: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    updated_at: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def identity(self) -> str:
        """Deduplication key: the id, else the first 100 characters of text."""
        if self.doc_id:
            return str(self.doc_id)
        return self.text[:100]

    def get_field(self, *names: str, default: Any = None) -> Any:
        """First non-empty value among ``names`` in the extension fields."""
        for name in names:
            value = self.fields.get(name)
            if value not in (None, "", [], {}):
                return value
        return default

    def filled_ratio(self) -> float:
        """Share of non-empty attributes among the text and the extension fields."""
        filled = (1 if self.text else 0) + sum(
            1 for value in self.fields.values() if value not in (None, "", [], {})
        )
        return filled / (len(self.fields) + 1)

    def searchable_text(self) -> str:
        """Text used for lexical indexing and keyword matching."""
        texts = [self.text] if self.text else []
        for key in ("enriched_text", "name", "description"):
            value = self.fields.get(key)
            if isinstance(value, str) and value:
                texts.append(value)

        details = self.fields.get("details")
        if isinstance(details, dict):
            texts.extend(value for value in details.values() if isinstance(value, str))

        keywords = self.fields.get("keywords")
        if isinstance(keywords, (list, tuple)):
            texts.extend(str(keyword) for keyword in keywords)

        return " ".join(texts)

    def __deepcopy__(self, memo):
        # Immutable; copies of results keep pointing at the live document
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any], collection: str) -> "Document":
        """Build a document from a loader record.

        Recognized core keys are ``id``/``doc_id``, ``text``,
        ``vector``/``embedding`` and ``updated``/``updated_at``; everything
        else lands in ``fields``.
        """
        core_keys = {"id", "doc_id", "text", "vector", "embedding", "updated", "updated_at", "collection"}
        doc_id = data.get("doc_id", data.get("id"))
        vector = data.get("vector", data.get("embedding"))
        updated = data.get("updated_at", data.get("updated"))

        if isinstance(updated, str):
            try:
                updated = datetime.fromisoformat(updated)
            except ValueError:
                updated = None

        return cls(
            doc_id=str(doc_id) if doc_id is not None else None,
            collection=collection,
            text=str(data.get("text") or ""),
            vector=np.asarray(vector, dtype=float) if vector is not None else None,
            updated_at=updated,
            fields={key: value for key, value in data.items() if key not in core_keys}
        )

    def to_dict(self, include_vector: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.doc_id,
            "collection": self.collection,
            "text": self.text,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        data.update(self.fields)
        if include_vector and self.vector is not None:
            data["vector"] = self.vector.tolist()
        return data


@dataclass
class RetrievalHit:
    """Single hit returned by a retrieval engine."""
    document: Document
    score: float
    engine: str
    collection: str
    fuzzy: bool = False
    matched_terms: List[str] = field(default_factory=list)


@dataclass
class FusionSource:
    """One ranked list entering fusion together with its weight."""
    engine: str
    hits: List[RetrievalHit]
    weight: float


@dataclass
class FusedResult:
    """Result accumulated across engines for one document identity."""
    document: Document
    score: float
    sources: List[str] = field(default_factory=list)
    collection: Optional[str] = None
    kind: ResultKind = ResultKind.DOCUMENT
    tags: Dict[str, Any] = field(default_factory=dict)
    exact_match: bool = False

    @property
    def source_count(self) -> int:
        return len(self.sources)

    @property
    def identity(self) -> str:
        return self.document.identity


@dataclass
class RankedResult(FusedResult):
    """Fused result after reranking, filtering and per-result confidence.

    ``multipliers`` is the ordered trail of ``(name, factor, score_after)``
    applied by the reranker.
    """
    base_score: float = 0.0
    multipliers: List[Tuple[str, float, float]] = field(default_factory=list)
    context_boosted: bool = False
    confidence: float = 0.0

    @classmethod
    def from_fused(cls, fused: FusedResult) -> "RankedResult":
        return cls(
            document=fused.document,
            score=fused.score,
            sources=list(fused.sources),
            collection=fused.collection,
            kind=fused.kind,
            tags=dict(fused.tags),
            exact_match=fused.exact_match,
            base_score=fused.score
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.document.doc_id,
            "collection": self.collection or self.document.collection,
            "kind": self.kind.value,
            "score": self.score,
            "base_score": self.base_score,
            "confidence": self.confidence,
            "sources": list(self.sources),
            "source_count": self.source_count,
            "context_boosted": self.context_boosted,
            "multipliers": [list(step) for step in self.multipliers],
            "tags": dict(self.tags),
            "text": self.document.text,
        }


@dataclass(frozen=True)
class LearnedParameters:
    """Snapshot of learned retrieval weights and thresholds.

    Replaced as a whole by the learning engine; never mutated in place.
    """
    vector_weight: float = 0.6
    text_weight: float = 0.3
    semantic_weight: float = 0.1
    base_threshold: float = 0.65
    context_boost: float = 0.15

    def with_updates(self, **changes: float) -> "LearnedParameters":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnedParameters":
        known = {name: float(data[name]) for name in cls.__dataclass_fields__ if data.get(name) is not None}
        return cls(**known)


@dataclass
class InteractionRecord:
    """Outcome of one search, appended to the learning history."""
    query: str
    confidence: float
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)
    intent: Intent = field(default_factory=Intent)
    entities: Dict[str, Any] = field(default_factory=dict)
    collections: Tuple[str, ...] = ()
    engines: Tuple[str, ...] = ()
    strategy: Optional[str] = None
    result_count: int = 0
    top_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "confidence": self.confidence,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "intent": asdict(self.intent),
            "entities": dict(self.entities),
            "collections": list(self.collections),
            "engines": list(self.engines),
            "strategy": self.strategy,
            "result_count": self.result_count,
            "top_score": self.top_score,
        }


@dataclass
class FactorScore:
    """Score of a single confidence factor in [0, 1]."""
    score: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConfidenceReport:
    """Multi-factor trust estimate for a result set."""
    score: float
    level: str
    breakdown: Dict[str, FactorScore]
    recommendation: str
    should_answer: bool
    warnings: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "recommendation": self.recommendation,
            "should_answer": self.should_answer,
            "warnings": list(self.warnings),
            "breakdown": {
                name: {"score": factor.score, "details": factor.details}
                for name, factor in self.breakdown.items()
            },
        }


@dataclass
class StatisticalSummary:
    """Aggregate answer for a statistical question."""
    statistic: StatisticType
    value: Any
    filter_count: int
    filters: Dict[str, Any] = field(default_factory=dict)
    groups: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statistic": self.statistic.value,
            "value": self.value,
            "filter_count": self.filter_count,
            "filters": dict(self.filters),
            "groups": dict(self.groups) if self.groups is not None else None,
        }


@dataclass
class SearchResponse:
    """Final output of a hybrid search handed to answer generation."""
    results: List[RankedResult]
    confidence: ConfidenceReport
    analyzed_query: AnalyzedQuery
    strategy: SearchStrategy
    statistics: Optional[StatisticalSummary] = None
    from_cache: bool = False
    elapsed_ms: float = 0.0

    @property
    def top_result(self) -> Optional[RankedResult]:
        return self.results[0] if self.results else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.analyzed_query.original,
            "strategy": self.strategy.value,
            "from_cache": self.from_cache,
            "elapsed_ms": self.elapsed_ms,
            "results": [result.to_dict() for result in self.results],
            "confidence": self.confidence.to_dict(),
            "statistics": self.statistics.to_dict() if self.statistics else None,
        }
