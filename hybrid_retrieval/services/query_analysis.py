"""Query analysis: question form, sub-questions, complexity and target collections."""

import asyncio
import inspect
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from ..config.settings import get_collections_config
from ..models.core import AnalyzedQuery, Intent, QuestionType, RecentContext, StatisticType
from ..utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class IntentProvider(Protocol):
    """External intent classifier and entity extractor."""

    def classify(self, text: str) -> Any:
        ...

    def extract_entities(self, text: str) -> Dict[str, Any]:
        ...


@runtime_checkable
class ContextProvider(Protocol):
    """External conversational memory."""

    def get_relevant_context(self, text: str) -> Any:
        ...

    def resolve_pronouns(self, text: str, context: Any) -> str:
        ...


_QUESTION_PATTERNS = {
    "is_statistical": re.compile(r"كم عدد|كم|ما عدد|احصي|إحصائية"),
    "is_comparison": re.compile(r"الفرق|مقارنة|أيهما|أي من|versus", re.IGNORECASE),
    "is_definition": re.compile(r"ما هو|ما هي|ماذا يعني|تعريف|define", re.IGNORECASE),
    "is_location": re.compile(r"أين|فين|موقع|مكان|location", re.IGNORECASE),
    "is_how": re.compile(r"كيف|how", re.IGNORECASE),
    "is_why": re.compile(r"لماذا|ليه|why", re.IGNORECASE),
    "is_yes_no": re.compile(r"هل|\bis\b|\bare\b|\bdoes\b", re.IGNORECASE),
}

_STATISTIC_PATTERNS = [
    (StatisticType.COUNT, re.compile(r"كم عدد|ما عدد")),
    (StatisticType.LIST, re.compile(r"اذكر|أعطني|قائمة|list", re.IGNORECASE)),
    (StatisticType.GROUP_BY, re.compile(r"حسب|تبعية|جهة")),
    (StatisticType.AGGREGATE, re.compile(r"مجموع|متوسط|sum|avg", re.IGNORECASE)),
]

SUB_QUESTION_CONNECTORS = ("بعد ذلك", "ثم", "أيضاً", "أيضا", "كذلك", "و")
_SUB_QUESTION_SPLIT = re.compile(
    r"\s+(?:" + "|".join(re.escape(connector) for connector in SUB_QUESTION_CONNECTORS) + r")\s+|[؟?]\s*(?=\S)"
)

COMPLEX_WORDS = ("اشتراطات", "متطلبات", "قانون", "مقارنة", "تحليل")


def analyze_question_type(query: str) -> QuestionType:
    """Detect the surface form of a question."""
    text = query.lower()
    return QuestionType(**{name: bool(pattern.search(text)) for name, pattern in _QUESTION_PATTERNS.items()})


def detect_sub_questions(query: str) -> Tuple[str, ...]:
    """Split a compound question on standalone connectors.

    Returns the parts when there is more than one, else the query itself.
    """
    parts = [part.strip(" ،,") for part in _SUB_QUESTION_SPLIT.split(query)]
    parts = [part for part in parts if part]
    return tuple(parts) if len(parts) > 1 else (query,)


def calculate_complexity(query: str, sub_questions: Sequence[str]) -> float:
    """Complexity score in [0, 10] from length, sub-questions and complex vocabulary."""
    complexity = min(len(query) / 50.0, 3.0)
    complexity += len(sub_questions) * 2
    complexity += sum(1 for word in COMPLEX_WORDS if word in query)
    return min(complexity, 10.0)


def detect_statistic_type(query: str) -> StatisticType:
    text = query.lower()
    for statistic, pattern in _STATISTIC_PATTERNS:
        if pattern.search(text):
            return statistic
    return StatisticType.COUNT


def identify_target_collections(entities: Mapping[str, Any], intent: Intent,
                                collections_config: Optional[Dict[str, Any]] = None) -> Tuple[str, ...]:
    """Collections a query should search, all of them when nothing points anywhere."""
    collections_config = collections_config or get_collections_config()
    activities = collections_config.get("activities", "activities")
    industrial = collections_config.get("industrial", "industrial")
    decisions = collections_config.get("decisions", "decision104")

    targets: List[str] = []
    if entities.get("activity") or intent.type == "ACTIVITY":
        targets.append(activities)
    if entities.get("location") or entities.get("governorate") or intent.type == "LOCATION":
        targets.append(industrial)
    if entities.get("decision104") or intent.type == "INCENTIVES":
        targets.append(decisions)

    if targets:
        return tuple(targets)
    return tuple(collections_config.get("names", [activities, industrial, decisions]))


def coerce_intent(value: Any) -> Intent:
    if isinstance(value, Intent):
        return value
    if isinstance(value, Mapping):
        return Intent(
            type=str(value.get("type") or "GENERAL"),
            subtype=value.get("subtype"),
            confidence=float(value.get("confidence") or 0.0)
        )
    if isinstance(value, str):
        return Intent(type=value)
    return Intent()


def coerce_context(value: Any) -> RecentContext:
    """Accept a RecentContext, a mapping, a list of messages or None."""
    if isinstance(value, RecentContext):
        return value
    if isinstance(value, Mapping):
        messages = value.get("messages") or ()
        if value.get("previous_query") and not messages:
            messages = (value["previous_query"],)
        preferences = value.get("user_preferences") or {}
        return RecentContext(
            messages=tuple(str(message) for message in messages),
            focus_entity=value.get("focus_entity"),
            recent_entities=tuple(value.get("recent_entities") or ()),
            preferred_region=value.get("preferred_region") or preferences.get("preferred_region")
        )
    if isinstance(value, (list, tuple)):
        return RecentContext(messages=tuple(str(message) for message in value))
    return RecentContext()


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class QueryAnalyzer:
    """Builds the immutable AnalyzedQuery for one search."""

    def __init__(self, intent_provider: Optional[IntentProvider] = None,
                 context_provider: Optional[ContextProvider] = None,
                 collections_config: Optional[Dict[str, Any]] = None):
        self.intent_provider = intent_provider
        self.context_provider = context_provider
        self.collections_config = collections_config or get_collections_config()

    async def analyze(self, query: str,
                      intent: Optional[Union[Intent, Mapping[str, Any]]] = None,
                      entities: Optional[Mapping[str, Any]] = None,
                      context: Any = None) -> AnalyzedQuery:
        """Analyze a query, calling providers only for what was not supplied.

        Args:
            query: Raw query text
            intent: Pre-classified intent
            entities: Pre-extracted entities
            context: Pre-fetched conversation context

        Returns:
            AnalyzedQuery for the search
        """
        if intent is None and self.intent_provider is not None:
            intent = await _maybe_await(self.intent_provider.classify(query))
        if entities is None and self.intent_provider is not None:
            entities = await _maybe_await(self.intent_provider.extract_entities(query))
        if context is None and self.context_provider is not None:
            context = await _maybe_await(self.context_provider.get_relevant_context(query))

        resolved = query
        if self.context_provider is not None and context is not None:
            resolved = await _maybe_await(self.context_provider.resolve_pronouns(query, context)) or query

        return self.build(query, resolved, coerce_intent(intent), dict(entities or {}), coerce_context(context))

    def build(self, query: str, resolved: str, intent: Intent, entities: Dict[str, Any],
              context: RecentContext) -> AnalyzedQuery:
        sub_questions = detect_sub_questions(query)
        analyzed = AnalyzedQuery(
            original=query,
            resolved=resolved,
            intent=intent,
            entities=entities,
            context=context,
            complexity=calculate_complexity(query, sub_questions),
            collections=identify_target_collections(entities, intent, self.collections_config),
            question_type=analyze_question_type(query),
            sub_questions=sub_questions
        )
        logger.debug(f"Analyzed query '{query[:50]}': intent={intent.key}, "
                     f"complexity={analyzed.complexity:.1f}, collections={analyzed.collections}")
        return analyzed

    def analyze_sync(self, query: str, **kwargs) -> AnalyzedQuery:
        """Blocking wrapper around ``analyze`` for callers outside an event loop."""
        return asyncio.run(self.analyze(query, **kwargs))
