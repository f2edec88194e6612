"""
Routing Orchestrator (voices-3.0)

Decides which engine answers a message. Tiers are evaluated in a fixed
order and the first tier that produces a verdict wins:

0. Baseline: the current (or default) engine, replaced by the default or
   first available engine when it has no credentials
1. Safety tier (priority 1-2 rules)
   - Goal-based safety rule: best engine for the rule's goals
   - No qualifying engine: legacy safety rules, else route away from a
     current engine with conflicting capabilities, else keep it
   - Avoidance/preference-only safety rules: legacy avoidance
2. Performance tier: benchmark suggestion whose advantage meets the threshold;
   a substituted baseline is compared against the runner-up available engine
3. Remaining rules (priority > 2): goal-based, then legacy preference, then
   legacy avoidance
4. Default engine, explaining any below-threshold performance suggestion

Finally the chosen engine is checked against the engines that have
credentials; an unavailable choice falls back to the default engine or the
first available one.

Transparency:
    Nothing is dropped silently. Every triggered rule that did not drive the
    decision, and every suppressed performance suggestion, is reported in
    ``transparency_notes``.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from voices_router.errors import NoEngineAvailableError
from voices_router.evaluator import RuleEvaluator
from voices_router.goal_selector import (
    explain_goal_selection,
    has_conflicting_capabilities,
    select_engine_for_goals,
)
from voices_router.models import (
    MatchResult,
    PositiveRoutingResult,
    RoutingDecision,
    RoutingState,
    RuleDatabase,
    RuleKind,
)
from voices_router.normalizer import normalize
from voices_router.positive_router import PositiveRouter
from voices_router.rule_database import load_rule_database
from voices_router.routing_engine import (
    FeatureSpec,
    Router,
    create_router,
    register_router,
    set_default_router,
)
from voices_router.settings import Settings, available_engines

logger = logging.getLogger(__name__)

ROUTER_VERSION = "voices-3.0"

DEFAULT_REASONING = "Using default engine - no special routing needed"


def _score(value: float) -> str:
    return f"{value:g}%"


@register_router(ROUTER_VERSION)
class RoutingOrchestrator(Router):
    """
    Goal-based router with safety precedence and performance optimization.

    Feature flags:
        positive_routing: Benchmark-driven routing (also gated by settings)
        semantic_detection: Embedding similarity as a rule trigger
        legacy_rules: Apply avoidance/preference rules (off = report only)
    """

    def __init__(
        self,
        database: RuleDatabase,
        embedding_service: Optional[Any] = None,
        features: Optional[Dict[str, bool]] = None,
    ):
        super().__init__(database, embedding_service=embedding_service, features=features)
        self.evaluator = RuleEvaluator(semantic_enabled=self.feature_enabled("semantic_detection"))
        self.positive_router = PositiveRouter(database)

    @property
    def version(self) -> str:
        return ROUTER_VERSION

    @property
    def description(self) -> str:
        return (
            "Goal-based routing: safety rules first, then benchmark-driven performance "
            "routing, then goal/preference/avoidance rules"
        )

    @classmethod
    def get_available_features(cls) -> List[FeatureSpec]:
        return [
            FeatureSpec(
                "positive_routing",
                "Route to the best benchmark performer when its advantage meets the threshold",
                default=True,
                category="routing",
            ),
            FeatureSpec(
                "semantic_detection",
                "Trigger rules on embedding similarity in addition to keywords",
                default=True,
                category="detection",
            ),
            FeatureSpec(
                "legacy_rules",
                "Apply avoidance and preference rules (off = report only)",
                default=True,
                category="routing",
            ),
        ]

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def route(
        self,
        message: str,
        settings: Settings,
        current_engine: Optional[str] = None,
    ) -> RoutingDecision:
        available = available_engines(settings, self.database)
        if not available:
            raise NoEngineAvailableError()

        requested = current_engine or settings.default_engine
        current = requested if requested in available else fallback_engine(settings, available)
        normalized = normalize(message)
        embedding = await self._message_embedding(normalized)

        matches = self.evaluator.evaluate(normalized, self.database, embedding)
        decision = RoutingDecision(
            recommended_engine=current,
            reasoning=DEFAULT_REASONING,
            matched_rules=matches,
            original_query=message,
            normalized_query=normalized,
            current_engine=current,
            semantic_processing_used=embedding is not None,
            router_version=self.version,
        )

        substitution = None
        if current != requested:
            substitution = fallback_note(requested, current, self.database)
            decision.availability_notes.append(substitution)
            logger.warning(f"Engine {requested} unavailable, starting from {current}")

        positive = None
        if self.feature_enabled("positive_routing") and settings.positive_routing_enabled:
            # An unavailable baseline is not benchmarked; compare available engines only
            positive = self.positive_router.suggest(
                message,
                available,
                current if substitution is None else None,
                settings.positive_routing_threshold,
            )
        decision.positive_routing = positive

        # rule id -> why it did not drive the decision
        unapplied: Dict[str, str] = {}
        safety = [m for m in matches if m.rule.is_safety]
        others = [m for m in matches if not m.rule.is_safety]

        if safety:
            logger.info(f"{len(safety)} safety rules triggered; performance optimization suppressed")
            self._route_safety(decision, safety, available, settings, unapplied)
            for match in others:
                unapplied.setdefault(match.rule_id, "safety rules take precedence")
            if positive is not None:
                decision.transparency_notes.append(
                    f"Performance optimization suggested {self.database.engine_name(positive.recommended_engine)} "
                    f"({positive.absolute_difference:.1f} point advantage), but safety requirements took priority"
                )
                if positive.should_route:
                    decision.safety_override = (
                        "Safety rules detected sensitive content and overrode performance optimization. "
                        f"Originally suggested: {self.database.engine_name(positive.recommended_engine)}, "
                        f"but routed to {self.database.engine_name(decision.recommended_engine)} for content safety."
                    )
        elif positive is not None and positive.should_route:
            self._route_performance(decision, positive)
            for match in others:
                unapplied.setdefault(match.rule_id, "performance optimization applied")
        else:
            self._route_remaining(decision, others, available, settings, positive, unapplied)

        if not decision.routing_applied:
            decision.reasoning = self._default_reasoning(decision, None if safety else positive)
            if substitution is not None:
                decision.state = RoutingState.FALLBACK
                decision.reasoning = f"{decision.reasoning} ({substitution})"
                decision.add_detection_method("fallback")

        self._surface_unapplied(decision, unapplied)
        resolve_invocation_engine(decision, available, settings, self.database)

        logger.info(
            f"Routing decision: {decision.recommended_engine} "
            f"(state={decision.state.value}, applied={decision.routing_applied}, "
            f"rules={[m.rule_id for m in matches]})"
        )
        return decision

    async def _message_embedding(self, normalized: str) -> Optional[np.ndarray]:
        """Message vector, or None when semantic detection cannot run."""
        if not self.feature_enabled("semantic_detection") or self.embedding_service is None:
            return None
        if not self.database.has_embeddings:
            return None
        result = await self.embedding_service.try_embed(normalized)
        if not result.ok:
            logger.warning(f"Semantic analysis failed, using keyword-only detection: {result.error}")
            return None
        return result.vector

    # -------------------------------------------------------------------------
    # Safety tier
    # -------------------------------------------------------------------------

    def _route_safety(
        self,
        decision: RoutingDecision,
        safety: List[MatchResult],
        available: Sequence[str],
        settings: Settings,
        unapplied: Dict[str, str],
    ) -> None:
        goal_rules = [m for m in safety if m.rule.kind is RuleKind.GOAL_BASED]
        legacy_rules = [m for m in safety if m.rule.kind is not RuleKind.GOAL_BASED]

        if not goal_rules:
            self._route_safety_legacy(decision, legacy_rules, available, unapplied)
            return

        driver = goal_rules[0]
        rule = driver.rule
        selection = select_engine_for_goals(
            rule.required_goals,
            rule.conflicting_capabilities,
            available,
            self.database.engines,
            rule_id=rule.id,
        )
        if selection is not None:
            for match in safety:
                if match is not driver:
                    unapplied.setdefault(match.rule_id, f"higher-priority safety rule {rule.id} applied")
            selection.explanation = explain_goal_selection(
                selection,
                rule.required_goals,
                rule.conflicting_capabilities,
                current_engine=decision.current_engine,
                trigger=driver.detection_method.value,
            )
            decision.recommended_engine = selection.engine_id
            decision.goal_based_routing = selection
            decision.routing_applied = True
            decision.state = RoutingState.GOAL_BASED
            decision.reasoning = selection.explanation
            decision.add_detection_method(driver.detection_method)
            decision.add_detection_method("goal_based")
            return

        # No engine meets the goals
        goal_names = ", ".join(g.name for g in rule.required_goals)
        decision.transparency_notes.append(
            f"No available engine meets the goals of safety rule {rule.id} ({goal_names})"
        )

        if legacy_rules:
            self._route_safety_legacy(decision, legacy_rules, available, unapplied)
            if decision.routing_applied:
                for match in goal_rules:
                    unapplied.setdefault(match.rule_id, "no available engine meets its goals")
                return

        current_profile = self.database.engine(decision.current_engine or "")
        if current_profile is not None and has_conflicting_capabilities(
            current_profile, rule.conflicting_capabilities
        ):
            candidates = [settings.fallback_engine] + [e for e in available if e != settings.fallback_engine]
            for engine_id in candidates:
                profile = self.database.engine(engine_id)
                if engine_id in available and profile is not None and not has_conflicting_capabilities(
                    profile, rule.conflicting_capabilities
                ):
                    decision.recommended_engine = engine_id
                    decision.routing_applied = True
                    decision.state = RoutingState.SAFETY_OVERRIDE
                    decision.reasoning = (
                        f"Safety protection: no engine meets the goals of rule {rule.id}; routed away from "
                        f"{current_profile.name} to {self.database.engine_name(engine_id)}, which has no "
                        f"conflicting capabilities. Rule: \"{rule.reason}\""
                    )
                    decision.add_detection_method(driver.detection_method)
                    decision.add_detection_method("safety_override")
                    for match in goal_rules[1:]:
                        unapplied.setdefault(match.rule_id, f"safety rule {rule.id} applied")
                    return
            decision.transparency_notes.append(
                f"Every available engine conflicts with safety rule {rule.id}; keeping "
                f"{current_profile.name}"
            )

        for match in goal_rules:
            unapplied.setdefault(match.rule_id, "no available engine meets its goals")

    def _route_safety_legacy(
        self,
        decision: RoutingDecision,
        rules: List[MatchResult],
        available: Sequence[str],
        unapplied: Dict[str, str],
    ) -> None:
        if not rules:
            return
        if not self.feature_enabled("legacy_rules"):
            for match in rules:
                unapplied.setdefault(match.rule_id, "legacy rules disabled")
            return

        current = decision.current_engine
        avoided = {engine for m in rules for engine in m.rule.avoid_engines}
        safe = [e for e in available if e not in avoided]
        preferred = [e for m in rules for e in m.rule.prefer_engines if e in safe]

        needs_change = current in avoided or (preferred and current not in preferred)
        if not needs_change:
            for match in rules:
                unapplied.setdefault(match.rule_id, "current engine already complies")
            return
        if not safe:
            decision.transparency_notes.append(
                f"Safety rules avoid {', '.join(sorted(avoided))} but no other engine is available"
            )
            for match in rules:
                unapplied.setdefault(match.rule_id, "no compliant engine available")
            return

        driver = next((m for m in rules if m.rule.kind is RuleKind.AVOIDANCE), rules[0])
        target = preferred[0] if preferred else safe[0]
        decision.recommended_engine = target
        decision.routing_applied = True
        decision.state = (
            RoutingState.LEGACY_AVOIDANCE if driver.rule.kind is RuleKind.AVOIDANCE
            else RoutingState.LEGACY_PREFERENCE
        )
        decision.reasoning = (
            f"Safety protection: Routed away from {self.database.engine_name(current)} to "
            f"{self.database.engine_name(target)} due to: \"{driver.rule.reason}\""
        )
        decision.add_detection_method(driver.detection_method)
        decision.add_detection_method("avoidance" if driver.rule.kind is RuleKind.AVOIDANCE else "preference")
        for match in rules:
            if match is not driver:
                unapplied.setdefault(match.rule_id, f"safety rule {driver.rule_id} applied")

    # -------------------------------------------------------------------------
    # Performance tier
    # -------------------------------------------------------------------------

    def _route_performance(self, decision: RoutingDecision, positive: PositiveRoutingResult) -> None:
        decision.recommended_engine = positive.recommended_engine
        decision.routing_applied = True
        decision.positive_routing_used = True
        decision.state = RoutingState.PERFORMANCE_OPTIMIZED
        decision.reasoning = f"Performance optimization: {positive.reasoning}"
        decision.add_detection_method("positive_routing")

    # -------------------------------------------------------------------------
    # Remaining rules (priority > 2)
    # -------------------------------------------------------------------------

    def _route_remaining(
        self,
        decision: RoutingDecision,
        matches: List[MatchResult],
        available: Sequence[str],
        settings: Settings,
        positive: Optional[PositiveRoutingResult],
        unapplied: Dict[str, str],
    ) -> None:
        current = decision.current_engine
        goal_rules = [m for m in matches if m.rule.kind is RuleKind.GOAL_BASED]
        prefer_rules = [m for m in matches if m.rule.kind is RuleKind.PREFERENCE]
        avoid_rules = [m for m in matches if m.rule.kind is RuleKind.AVOIDANCE]

        if positive is not None:
            # Below-threshold benchmark verdict stands over goal rules
            for match in goal_rules:
                unapplied[match.rule_id] = (
                    f"performance data for the {positive.category} task is below the "
                    f"{positive.threshold:g}-point threshold"
                )
        else:
            for match in goal_rules:
                rule = match.rule
                selection = select_engine_for_goals(
                    rule.required_goals,
                    rule.conflicting_capabilities,
                    available,
                    self.database.engines,
                    rule_id=rule.id,
                )
                if selection is None:
                    unapplied[rule.id] = "no available engine meets its goals"
                    continue
                if selection.engine_id == current:
                    unapplied[rule.id] = f"current engine {selection.engine_name} already best meets its goals"
                    continue
                if decision.routing_applied:
                    unapplied[rule.id] = "a higher-priority goal rule applied"
                    continue
                selection.explanation = explain_goal_selection(
                    selection,
                    rule.required_goals,
                    rule.conflicting_capabilities,
                    current_engine=current,
                    trigger="preference optimization",
                )
                decision.recommended_engine = selection.engine_id
                decision.goal_based_routing = selection
                decision.routing_applied = True
                decision.state = RoutingState.GOAL_BASED
                decision.reasoning = selection.explanation
                decision.add_detection_method(match.detection_method)
                decision.add_detection_method("goal_based")

        legacy = prefer_rules + avoid_rules
        if not self.feature_enabled("legacy_rules"):
            for match in legacy:
                unapplied.setdefault(match.rule_id, "legacy rules disabled")
            return
        if decision.routing_applied:
            for match in legacy:
                unapplied.setdefault(match.rule_id, "goal-based routing applied")
            return

        for match in prefer_rules:
            if decision.routing_applied:
                unapplied.setdefault(match.rule_id, "another preference rule applied")
                continue
            if not self._apply_preference(decision, match, available, settings):
                unapplied.setdefault(match.rule_id, "current engine already preferred")

        for match in avoid_rules:
            if decision.routing_applied:
                unapplied.setdefault(match.rule_id, "a preference rule applied")
                continue
            if not self._apply_avoidance(decision, match, available):
                unapplied.setdefault(match.rule_id, "current engine is not avoided")

    def _apply_preference(
        self,
        decision: RoutingDecision,
        match: MatchResult,
        available: Sequence[str],
        settings: Settings,
    ) -> bool:
        rule = match.rule
        current = decision.current_engine
        preferred = [e for e in rule.prefer_engines if e in available]
        substitution = ""

        if preferred:
            target = preferred[0]
            if target != rule.prefer_engines[0]:
                missing = [e for e in rule.prefer_engines if e not in available]
                substitution = (
                    f" (Preferred {', '.join(self.database.engine_name(e) for e in missing)} has no "
                    f"configured API key; substituted {self.database.engine_name(target)}.)"
                )
        elif settings.fallback_engine in available:
            target = settings.fallback_engine
            substitution = (
                f" (No preferred engine has a configured API key; using fallback engine "
                f"{self.database.engine_name(target)}.)"
            )
        else:
            return False

        if target == current:
            return False

        decision.recommended_engine = target
        decision.routing_applied = True
        decision.state = RoutingState.LEGACY_PREFERENCE
        decision.reasoning = (
            f"Quality optimization: Routed to preferred engine {self.database.engine_name(target)}. "
            f"Rule: \"{rule.description}\"{substitution}"
        )
        if substitution:
            decision.availability_notes.append(substitution.strip(" ()"))
        decision.add_detection_method(match.detection_method)
        decision.add_detection_method("preference")
        return True

    def _apply_avoidance(
        self,
        decision: RoutingDecision,
        match: MatchResult,
        available: Sequence[str],
    ) -> bool:
        rule = match.rule
        current = decision.current_engine
        if current not in rule.avoid_engines:
            return False
        safe = [e for e in available if e not in rule.avoid_engines]
        if not safe:
            decision.transparency_notes.append(
                f"Rule {rule.id} avoids {self.database.engine_name(current)} but no other engine is available"
            )
            return False

        target = safe[0]
        decision.recommended_engine = target
        decision.routing_applied = True
        decision.state = RoutingState.LEGACY_AVOIDANCE
        decision.reasoning = (
            f"Simple routing: Avoided {self.database.engine_name(current)} -> "
            f"{self.database.engine_name(target)}. Rule: \"{rule.description}\""
        )
        decision.add_detection_method(match.detection_method)
        decision.add_detection_method("avoidance")
        return True

    # -------------------------------------------------------------------------
    # Explanations
    # -------------------------------------------------------------------------

    def _default_reasoning(
        self,
        decision: RoutingDecision,
        positive: Optional[PositiveRoutingResult],
    ) -> str:
        if positive is not None and not positive.should_route:
            return (
                f"Using default engine. Detected {positive.category} task. "
                f"{self.database.engine_name(positive.recommended_engine)} would perform "
                f"{positive.absolute_difference:.1f} points better ({_score(positive.engine_score)} vs "
                f"{_score(positive.current_engine_score)}), but difference is below "
                f"{positive.threshold:g}-point threshold."
            )
        if decision.matched_rules:
            return (
                f"Using default engine. {len(decision.matched_rules)} rules matched but no routing "
                f"change needed - current engine meets all requirements."
            )
        return DEFAULT_REASONING

    def _surface_unapplied(self, decision: RoutingDecision, unapplied: Dict[str, str]) -> None:
        for match in decision.matched_rules:
            reason = unapplied.get(match.rule_id)
            if reason is None:
                continue
            decision.transparency_notes.append(
                f"Rule {match.rule_id} (priority {match.priority}, {match.detection_method.value}) "
                f"triggered but not applied: {reason}"
            )


set_default_router(ROUTER_VERSION)


def fallback_engine(settings: Settings, available: Sequence[str]) -> str:
    """Default engine when it has credentials, else the first available engine."""
    return settings.default_engine if settings.default_engine in available else available[0]


def fallback_note(original: str, substitute: str, database: Optional[RuleDatabase] = None) -> str:
    def name(engine_id: str) -> str:
        return database.engine_name(engine_id) if database else engine_id

    return (
        f"Fallback: Originally recommended {name(original)}, but using {name(substitute)} "
        f"as it's the best available option with configured API key."
    )


def resolve_invocation_engine(
    decision: RoutingDecision,
    available: Sequence[str],
    settings: Settings,
    database: Optional[RuleDatabase] = None,
) -> RoutingDecision:
    """
    Make sure the recommended engine can actually be invoked.

    An engine without configured credentials is replaced by the default
    engine, or the first available engine, and the substitution is recorded
    in the reasoning and availability notes.

    Raises:
        NoEngineAvailableError: If no engine is available at all
    """
    if decision.recommended_engine in available:
        return decision
    if not available:
        raise NoEngineAvailableError()

    original = decision.recommended_engine
    substitute = fallback_engine(settings, available)
    note = fallback_note(original, substitute, database)
    logger.warning(f"Engine {original} unavailable, falling back to {substitute}")

    decision.recommended_engine = substitute
    decision.state = RoutingState.FALLBACK
    decision.reasoning = f"{decision.reasoning} ({note})"
    decision.availability_notes.append(note)
    decision.add_detection_method("fallback")
    return decision


async def route_message(
    message: str,
    settings: Settings,
    database: Optional[RuleDatabase] = None,
    embedding_service: Optional[Any] = None,
    current_engine: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> RoutingDecision:
    """
    One-shot routing with the default (or configured) router.

    Args:
        message: Raw user message
        settings: Credentials and routing preferences
        database: Rule database (defaults to the bundled one)
        embedding_service: Shared EmbeddingService (None = keyword-only)
        current_engine: Engine that would answer without routing
        config: Configuration dict (``routing.router``, ``routing.features``)

    Returns:
        RoutingDecision
    """
    router = create_router(database or load_rule_database(), embedding_service, config)
    return await router.route(message, settings, current_engine=current_engine)
