"""
Data classes for routing reference data and routing results.

Reference data (engines, rules, task categories) is loaded once by
``rule_database`` and never mutated afterwards; derived copies (for example a
database with rule embeddings attached) are produced with ``dataclasses.replace``.

Result objects (``MatchResult``, ``GoalSelection``, ``PositiveRoutingResult``,
``RoutingDecision``) are created fresh per request.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


class RuleKind(str, Enum):
    """How a triggered rule influences engine choice."""

    GOAL_BASED = "goal-based"  # Select best engine for weighted goals
    AVOIDANCE = "avoidance"  # Route away from listed engines
    PREFERENCE = "preference"  # Route to first available listed engine


class DetectionMethod(str, Enum):
    """Provenance of a rule trigger, reported for transparency only."""

    KEYWORD = "keyword"
    FUZZY = "fuzzy"
    DOG_WHISTLE = "dog_whistle"
    SEMANTIC = "semantic"


class MatchKind(str, Enum):
    """Keyword match type."""

    EXACT = "exact"
    FUZZY = "fuzzy"


class RoutingState(str, Enum):
    """Terminal state of the orchestrator for one request."""

    DEFAULT = "default"
    SAFETY_OVERRIDE = "safety_override"
    GOAL_BASED = "goal_based"
    PERFORMANCE_OPTIMIZED = "performance_optimized"
    LEGACY_PREFERENCE = "legacy_preference"
    LEGACY_AVOIDANCE = "legacy_avoidance"
    FALLBACK = "fallback"


class Feedback(str, Enum):
    """User verdict on a routed answer."""

    POSITIVE = "positive"
    NEGATIVE = "negative"


# =============================================================================
# REFERENCE DATA
# =============================================================================


@dataclass(frozen=True)
class Keyword:
    """Trigger keyword or phrase.

    Bare strings in the rule database become ``Keyword(word)`` (fuzzy allowed);
    ``{word, fuzzy}`` objects keep their flag.
    """

    word: str
    fuzzy: bool = True

    @classmethod
    def from_entry(cls, entry: Any) -> "Keyword":
        """Resolve a rule-database keyword entry into a Keyword."""
        if isinstance(entry, str):
            return cls(word=entry, fuzzy=True)
        if isinstance(entry, dict) and isinstance(entry.get("word"), str):
            return cls(word=entry["word"], fuzzy=entry.get("fuzzy", True) is not False)
        raise ValueError(f"keyword entry must be a string or {{word, fuzzy}} object, got {entry!r}")

    def to_entry(self) -> Any:
        """Inverse of from_entry (bare string when fuzzy)."""
        return self.word if self.fuzzy else {"word": self.word, "fuzzy": False}


@dataclass(frozen=True)
class Goal:
    """Weighted, threshold-gated capability objective."""

    name: str
    weight: float = 1.0
    threshold: float = 0.0


@dataclass(frozen=True)
class Triggers:
    """Keyword triggers of a rule."""

    topics: Tuple[Keyword, ...] = ()
    dog_whistles: Tuple[Keyword, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.topics and not self.dog_whistles


@dataclass(frozen=True)
class Rule:
    """Routing rule loaded from the rule database."""

    id: str
    priority: int
    kind: RuleKind
    triggers: Triggers
    confidence_threshold: float
    description: str = ""
    reason: str = ""
    avoid_engines: Tuple[str, ...] = ()
    prefer_engines: Tuple[str, ...] = ()
    required_goals: Tuple[Goal, ...] = ()
    conflicting_capabilities: Tuple[str, ...] = ()

    # Derived at startup by semantic precomputation
    semantic_embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    semantic_threshold: Optional[float] = None

    @property
    def is_safety(self) -> bool:
        """Safety tier: priority 1-2."""
        return self.priority <= 2

    @property
    def goals(self) -> Dict[str, Goal]:
        return {goal.name: goal for goal in self.required_goals}

    def with_embedding(self, embedding: np.ndarray, threshold: Optional[float] = None) -> "Rule":
        """Return a copy carrying a semantic embedding."""
        return replace(
            self,
            semantic_embedding=embedding,
            semantic_threshold=threshold if threshold is not None else self.confidence_threshold,
        )


@dataclass(frozen=True)
class EngineProfile:
    """Static description of an AI-completion engine."""

    id: str
    name: str
    provider: str
    bias_profile: str = ""
    credential_key: Optional[str] = None
    capability_scores: Mapping[str, float] = field(default_factory=dict)
    goal_achievements: Mapping[str, float] = field(default_factory=dict)
    conflicting_capabilities: Tuple[str, ...] = ()
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()

    def achievement(self, goal_name: str) -> float:
        """Goal achievement in [0, 1]; missing data counts as 0."""
        return float(self.goal_achievements.get(goal_name, 0.0))


@dataclass(frozen=True)
class Performer:
    """Benchmark score of one engine in a task category."""

    engine: str
    score: float


@dataclass(frozen=True)
class TaskCategory:
    """Positive-routing task category with its benchmark table."""

    name: str
    description: str
    keywords: Tuple[Keyword, ...]
    top_performers: Tuple[Performer, ...]
    goal_equivalent: Optional[str] = None

    def score_for(self, engine_id: str) -> Optional[float]:
        for performer in self.top_performers:
            if performer.engine == engine_id:
                return performer.score
        return None


@dataclass(frozen=True)
class RuleDatabase:
    """Engine catalog, routing rules and benchmark data."""

    engines: Mapping[str, EngineProfile]
    rules: Tuple[Rule, ...]
    task_categories: Mapping[str, TaskCategory]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def version(self) -> str:
        return str(self.metadata.get("version", "unknown"))

    def engine(self, engine_id: str) -> Optional[EngineProfile]:
        return self.engines.get(engine_id)

    def engine_name(self, engine_id: Optional[str]) -> str:
        """Display name, falling back to the id for unknown engines."""
        if engine_id is None:
            return "no engine"
        profile = self.engines.get(engine_id)
        return profile.name if profile else engine_id

    def rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    @property
    def has_embeddings(self) -> bool:
        return any(rule.semantic_embedding is not None for rule in self.rules)

    def with_embeddings(self, embeddings: Mapping[str, np.ndarray]) -> "RuleDatabase":
        """Return a copy whose rules carry the given embeddings (by rule id)."""
        rules = tuple(
            rule.with_embedding(embeddings[rule.id]) if rule.id in embeddings else rule
            for rule in self.rules
        )
        return replace(self, rules=rules)


# =============================================================================
# ROUTING RESULTS
# =============================================================================


@dataclass
class KeywordMatch:
    """Single keyword hit produced by the fuzzy matcher."""

    keyword: str
    matched_text: str
    kind: MatchKind
    distance: int = 0
    position: int = -1


@dataclass
class MatchResult:
    """Triggered rule with its match evidence."""

    rule: Rule
    matched_fragments: List[str] = field(default_factory=list)
    detection_method: DetectionMethod = DetectionMethod.KEYWORD
    semantic_score: float = 0.0
    keyword_matches: List[KeywordMatch] = field(default_factory=list)
    dog_whistle_matches: List[KeywordMatch] = field(default_factory=list)

    @property
    def priority(self) -> int:
        return self.rule.priority

    @property
    def rule_id(self) -> str:
        return self.rule.id


@dataclass
class GoalSelection:
    """Outcome of goal-based engine selection."""

    engine_id: str
    engine_name: str
    goal_score: float
    rule_id: Optional[str] = None
    explanation: str = ""
    # Qualifying candidates in ranked order: (engine_id, score)
    candidates: List[Tuple[str, float]] = field(default_factory=list)


@dataclass
class PositiveRoutingResult:
    """Performance comparison for the detected task category."""

    category: str
    category_description: str
    match_score: int
    recommended_engine: str
    engine_score: float
    current_engine: str
    current_engine_score: float
    absolute_difference: float
    threshold: float
    should_route: bool
    reasoning: str = ""


@dataclass
class RoutingDecision:
    """The routing verdict for one message."""

    recommended_engine: str
    routing_applied: bool = False
    reasoning: str = ""
    detection_methods: List[str] = field(default_factory=list)
    matched_rules: List[MatchResult] = field(default_factory=list)
    positive_routing: Optional[PositiveRoutingResult] = None
    goal_based_routing: Optional[GoalSelection] = None
    transparency_notes: List[str] = field(default_factory=list)

    state: RoutingState = RoutingState.DEFAULT
    original_query: str = ""
    normalized_query: str = ""
    current_engine: Optional[str] = None
    semantic_processing_used: bool = False
    positive_routing_used: bool = False
    safety_override: Optional[str] = None
    availability_notes: List[str] = field(default_factory=list)
    router_version: Optional[str] = None

    def add_detection_method(self, method: Any) -> None:
        """Append a detection method once, preserving order."""
        value = method.value if isinstance(method, Enum) else str(method)
        if value not in self.detection_methods:
            self.detection_methods.append(value)
