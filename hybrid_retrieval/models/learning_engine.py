"""Continuous learning of fusion weights, base threshold and query patterns."""

import threading
from collections import Counter, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

from ..config.settings import get_learning_config
from ..utils.error_handling import InsufficientDataError
from ..utils.logging import get_logger
from .core import AnalyzedQuery, Intent, InteractionRecord, LearnedParameters, RankedResult

logger = get_logger(__name__)


MIN_ENGINE_WEIGHT = 0.2
MAX_ENGINE_WEIGHT = 0.8
MIN_BASE_THRESHOLD = 0.5
MAX_BASE_THRESHOLD = 0.75


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def strategy_key(intent: Intent, entities: Dict[str, Any]) -> str:
    """Knowledge-base key: intent plus the entity types present."""
    entity_types = ",".join(sorted(name for name, value in entities.items() if value))
    return f"{intent.key}|{entity_types}"


def rebalance_weights(parameters: LearnedParameters, vector_shift: float) -> LearnedParameters:
    """Shift weight between the vector and text engines.

    The semantic share is kept, vector and text split the rest, and both
    stay within ``[MIN_ENGINE_WEIGHT, MAX_ENGINE_WEIGHT]``. The three
    weights always sum to 1.
    """
    total = parameters.vector_weight + parameters.text_weight + parameters.semantic_weight
    if total <= 0:
        parameters = LearnedParameters()
        total = 1.0

    semantic = max(0.0, min(parameters.semantic_weight / total, 1.0 - 2 * MIN_ENGINE_WEIGHT))
    remaining = 1.0 - semantic
    low = max(MIN_ENGINE_WEIGHT, remaining - MAX_ENGINE_WEIGHT)
    high = min(MAX_ENGINE_WEIGHT, remaining - MIN_ENGINE_WEIGHT)

    vector = parameters.vector_weight / total + vector_shift
    vector = min(max(vector, low), high)

    return parameters.with_updates(
        vector_weight=vector,
        text_weight=remaining - vector,
        semantic_weight=semantic
    )


def engine_success_rate(interactions: Sequence[InteractionRecord], engine: str) -> float:
    """Success rate of interactions whose results came from ``engine``, 0.5 without any."""
    relevant = [interaction for interaction in interactions if engine in interaction.engines]
    if not relevant:
        return 0.5
    return sum(1 for interaction in relevant if interaction.success) / len(relevant)


class LearningEngine:
    """Adapts learned parameters from the interaction history.

    Parameters are held as an immutable ``LearnedParameters`` snapshot that
    is replaced whole on every update, so a search reading ``parameters``
    sees either the old or the new values, never a mix.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 store: Optional[Any] = None,
                 initial_parameters: Optional[LearnedParameters] = None,
                 vector_engine_id: str = "vector", text_engine_id: str = "text"):
        """Initialize the learning engine.

        Args:
            config: Learning configuration, defaults to the ``learning`` section
            store: Optional ParameterStore; stored state is merged in at startup
            initial_parameters: Starting parameters before any stored state
            vector_engine_id: Engine id whose success drives ``vector_weight``
            text_engine_id: Engine id whose success drives ``text_weight``
        """
        config = config or get_learning_config()
        self.learning_rate = config.get("learning_rate", 0.05)
        self.min_interactions = config.get("min_interactions", 10)
        self.pattern_threshold = config.get("pattern_threshold", 3)
        self.window_size = config.get("window_size", 100)
        self.weight_update_interval = config.get("weight_update_interval", 20)
        self.threshold_update_interval = config.get("threshold_update_interval", 30)
        self.auto_save = config.get("auto_save", True)
        self.save_interval = config.get("save_interval", 50)
        self.max_history_size = config.get("max_history_size", 1000)

        self.vector_engine_id = vector_engine_id
        self.text_engine_id = text_engine_id
        self.store = store
        self._initial_parameters = initial_parameters or LearnedParameters()
        self._parameters = self._initial_parameters
        self._lock = threading.Lock()
        self._reset_state()

        if self.store is not None:
            self.load()

    def _reset_state(self) -> None:
        self._history: Deque[InteractionRecord] = deque(maxlen=self.max_history_size)
        self.successful_queries: Counter = Counter()
        self.failed_queries: Counter = Counter()
        self.intent_patterns: Counter = Counter()
        self.entity_patterns: Counter = Counter()
        self.strategy_patterns: Dict[str, Counter] = {}
        self.knowledge_base: Dict[str, Dict[str, Any]] = {}
        self.stats: Dict[str, Any] = {
            "total_interactions": 0,
            "successful_interactions": 0,
            "failed_interactions": 0,
            "patterns_discovered": 0,
            "weights_updated": 0,
            "threshold_adjustments": 0,
            "skipped_cycles": 0,
            "last_saved": None,
            "last_learned": None,
        }

    @property
    def parameters(self) -> LearnedParameters:
        """Current parameter snapshot."""
        return self._parameters

    @property
    def history(self) -> List[InteractionRecord]:
        with self._lock:
            return list(self._history)

    @staticmethod
    def evaluate_success(confidence: float, result_count: int, feedback: Optional[bool] = None) -> bool:
        """Explicit feedback wins; otherwise confidence >= 0.7 with at least one result."""
        if feedback is not None:
            return bool(feedback)
        return confidence >= 0.7 and result_count > 0

    def record_interaction(self, record: InteractionRecord) -> None:
        """Append an interaction and run any learning cycle that falls due.

        Weight updates run every ``weight_update_interval`` interactions and
        threshold updates every ``threshold_update_interval``. A cycle with
        too little history is skipped.
        """
        with self._lock:
            self._history.append(record)
            self._learn_pattern(record)

            self.stats["total_interactions"] += 1
            if record.success:
                self.stats["successful_interactions"] += 1
            else:
                self.stats["failed_interactions"] += 1
            self.stats["last_learned"] = datetime.now().isoformat()

            total = self.stats["total_interactions"]
            if total % self.weight_update_interval == 0:
                self._run_cycle("weights", self._update_weights)
            if total % self.threshold_update_interval == 0:
                self._run_cycle("threshold", self._adjust_threshold)

            self._detect_new_patterns()
            should_save = self.auto_save and self.store is not None and total % self.save_interval == 0

        if should_save:
            self.save()

    def record_search(self, query: AnalyzedQuery, results: Sequence[RankedResult],
                      strategy: Optional[str] = None) -> Dict[str, Any]:
        """Assess a search and mine the strategy that produced it.

        Returns:
            Quality assessment with ``is_good``, ``is_fair``, ``quality`` and ``score``
        """
        top_score = results[0].score if results else 0.0
        is_good = bool(results) and top_score >= 0.7
        is_fair = bool(results) and top_score >= 0.5
        quality = {
            "is_good": is_good,
            "is_fair": is_fair,
            "quality": "good" if is_good else ("fair" if is_fair else "poor"),
            "score": top_score
        }

        with self._lock:
            if is_good and strategy:
                key = strategy_key(query.intent, query.entities)
                self.strategy_patterns.setdefault(key, Counter())[strategy] += 1
                self._detect_new_patterns()
            elif not is_good:
                self.failed_queries[normalize_query(query.original)] += 1

        return quality

    def suggest_strategy(self, intent: Intent, entities: Dict[str, Any]) -> Optional[str]:
        """Strategy learned for this intent and entity combination, if any."""
        with self._lock:
            entry = self.knowledge_base.get(strategy_key(intent, entities))
        if entry and entry.get("type") == "strategy":
            return entry["strategy"]
        return None

    def _run_cycle(self, name: str, cycle: Callable[[List[InteractionRecord]], None]) -> None:
        recent = list(self._history)[-self.window_size:]
        try:
            if len(recent) < self.min_interactions:
                raise InsufficientDataError(len(recent), self.min_interactions)
            cycle(recent)
        except InsufficientDataError as e:
            self.stats["skipped_cycles"] += 1
            logger.debug(f"Skipping {name} update: {e}")

    def _update_weights(self, recent: List[InteractionRecord]) -> None:
        vector_success = engine_success_rate(recent, self.vector_engine_id)
        text_success = engine_success_rate(recent, self.text_engine_id)

        if vector_success == text_success:
            return

        shift = self.learning_rate if vector_success > text_success else -self.learning_rate
        self._parameters = rebalance_weights(self._parameters, shift)
        self.stats["weights_updated"] += 1
        logger.info(f"Updated weights: vector={self._parameters.vector_weight:.3f}, "
                    f"text={self._parameters.text_weight:.3f} "
                    f"(vector success {vector_success:.2f}, text success {text_success:.2f})")

    def _adjust_threshold(self, recent: List[InteractionRecord]) -> None:
        success_rate = sum(1 for interaction in recent if interaction.success) / len(recent)
        threshold = self._parameters.base_threshold

        if success_rate < 0.6:
            threshold -= 0.02
        elif success_rate > 0.85:
            threshold += 0.01

        threshold = max(MIN_BASE_THRESHOLD, min(MAX_BASE_THRESHOLD, threshold))
        if threshold != self._parameters.base_threshold:
            logger.info(f"Base threshold {self._parameters.base_threshold:.3f} -> {threshold:.3f} "
                        f"(success rate {success_rate:.2f})")
            self._parameters = self._parameters.with_updates(base_threshold=threshold)
        self.stats["threshold_adjustments"] += 1

    def _learn_pattern(self, record: InteractionRecord) -> None:
        key = normalize_query(record.query)
        if not record.success:
            self.failed_queries[key] += 1
            return

        self.successful_queries[key] += 1
        self.intent_patterns[f"{record.intent.type}_{record.intent.subtype or 'general'}"] += 1
        for entity_type, value in record.entities.items():
            if value:
                self.entity_patterns[f"{entity_type}:{value}"] += 1

    def _detect_new_patterns(self) -> None:
        discovered = datetime.now().isoformat()
        candidates = []
        candidates.extend(("query", key, count) for key, count in self.successful_queries.items())
        candidates.extend(("intent", key, count) for key, count in self.intent_patterns.items())

        for pattern_type, key, count in candidates:
            if count >= self.pattern_threshold and key not in self.knowledge_base:
                self.knowledge_base[key] = {
                    "type": pattern_type, "key": key, "frequency": count, "discovered": discovered
                }
                self.stats["patterns_discovered"] += 1
                logger.debug(f"New {pattern_type} pattern: {key} ({count})")

        for key, strategies in self.strategy_patterns.items():
            strategy, count = strategies.most_common(1)[0]
            if count < self.pattern_threshold:
                continue
            entry = self.knowledge_base.get(key)
            if entry is None:
                self.stats["patterns_discovered"] += 1
            if entry is None or entry.get("strategy") != strategy or entry.get("frequency") != count:
                self.knowledge_base[key] = {
                    "type": "strategy", "key": key, "strategy": strategy,
                    "frequency": count, "discovered": discovered
                }

    def to_record(self) -> Dict[str, Any]:
        """Persisted form: flat parameters plus nested pattern maps."""
        with self._lock:
            record: Dict[str, Any] = self._parameters.to_dict()
            record.update({
                "patterns": {
                    "successful_queries": dict(self.successful_queries),
                    "failed_queries": dict(self.failed_queries),
                    "intent_patterns": dict(self.intent_patterns),
                    "entity_patterns": dict(self.entity_patterns),
                    "strategy_patterns": {key: dict(counts) for key, counts in self.strategy_patterns.items()},
                },
                "knowledge_base": dict(self.knowledge_base),
                "stats": dict(self.stats),
            })
        return record

    def save(self) -> bool:
        if self.store is None:
            return False
        saved = self.store.save(self.to_record())
        if saved:
            with self._lock:
                self.stats["last_saved"] = datetime.now().isoformat()
        return saved

    def load(self) -> bool:
        """Merge stored state into the engine. Returns False when nothing was stored."""
        if self.store is None:
            return False
        data = self.store.load()
        if not data:
            logger.info("No stored learning state, starting from defaults")
            return False

        self.import_data(data)
        logger.info(f"Loaded learned parameters: {self._parameters.to_dict()}")
        return True

    def import_data(self, data: Dict[str, Any]) -> None:
        """Merge exported or stored state; counters add up, parameters are replaced."""
        flat = data.get("weights") if isinstance(data.get("weights"), dict) else data
        loaded = LearnedParameters.from_dict({**self._parameters.to_dict(), **flat})
        loaded = rebalance_weights(loaded, 0.0).with_updates(
            base_threshold=max(MIN_BASE_THRESHOLD, min(MAX_BASE_THRESHOLD, loaded.base_threshold))
        )

        patterns = data.get("patterns") or {}
        with self._lock:
            self.successful_queries.update(patterns.get("successful_queries") or {})
            self.failed_queries.update(patterns.get("failed_queries") or {})
            self.intent_patterns.update(patterns.get("intent_patterns") or {})
            self.entity_patterns.update(patterns.get("entity_patterns") or {})
            for key, counts in (patterns.get("strategy_patterns") or {}).items():
                self.strategy_patterns.setdefault(key, Counter()).update(counts)
            self.knowledge_base.update(data.get("knowledge_base") or {})
            self._parameters = loaded

    def export(self) -> Dict[str, Any]:
        record = self.to_record()
        record["exported_at"] = datetime.now().isoformat()
        return record

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self.stats)
            total = stats["total_interactions"]
            stats.update({
                "success_rate": stats["successful_interactions"] / total if total else 0.0,
                "total_patterns": len(self.successful_queries) + len(self.intent_patterns) + len(self.entity_patterns),
                "knowledge_base_size": len(self.knowledge_base),
                "history_size": len(self._history),
                "parameters": self._parameters.to_dict(),
            })
        return stats

    def reset(self) -> None:
        with self._lock:
            self._reset_state()
            self._parameters = self._initial_parameters
        logger.info("Learning engine reset")
