"""Tests for the routing orchestrator.

Scenarios run against the bundled rule database unless a test needs a
hand-built one. Positive routing is switched off in tests that exercise
rule tiers so benchmark suggestions cannot interfere.
"""

import numpy as np
import pytest

from voices_router.errors import NoEngineAvailableError
from voices_router.models import RoutingDecision, RoutingState
from voices_router.orchestrator import (
    DEFAULT_REASONING,
    RoutingOrchestrator,
    resolve_invocation_engine,
    route_message,
)
from voices_router.routing_engine import create_router
from voices_router.rule_database import parse_rule_database
from voices_router.semantic import EmbeddingService
from voices_router.settings import Settings

pytestmark = pytest.mark.asyncio

CHINA = "china_political_sovereignty_comprehensive"
MATH = "Solve the equation 3x + 5 = 20 and calculate x"
JUNE_FOURTH = "What was the June Fourth incident?"


@pytest.fixture
def router(database):
    return RoutingOrchestrator(database)


def notes_for(decision: RoutingDecision, rule_id: str) -> list:
    return [note for note in decision.transparency_notes if note.startswith(f"Rule {rule_id} ")]


class TestDefaultRouting:
    """Messages that trigger nothing."""

    async def test_plain_message(self, router, make_settings):
        decision = await router.route("hello", make_settings("claude", "chatgpt"))

        assert decision.recommended_engine == "claude"
        assert decision.state is RoutingState.DEFAULT
        assert decision.routing_applied is False
        assert decision.reasoning == DEFAULT_REASONING
        assert decision.detection_methods == []
        assert decision.transparency_notes == []
        assert decision.router_version == "voices-3.0"

    async def test_current_engine_overrides_default(self, router, make_settings):
        decision = await router.route("hello", make_settings("claude", "chatgpt"), current_engine="chatgpt")

        assert decision.recommended_engine == "chatgpt"
        assert decision.current_engine == "chatgpt"

    async def test_records_query(self, router, make_settings):
        decision = await router.route("  Hello, World! ", make_settings("claude"))

        assert decision.original_query == "  Hello, World! "
        assert decision.normalized_query == "hello world"

    async def test_no_credentials(self, router):
        with pytest.raises(NoEngineAvailableError, match="No API keys configured"):
            await router.route("hello", Settings())


class TestSafetyTier:
    """Priority 1-2 rules."""

    async def test_current_engine_optimal(self, router, all_engines_settings):
        decision = await router.route(JUNE_FOURTH, all_engines_settings)

        assert decision.recommended_engine == "claude"
        assert decision.routing_applied is True
        assert decision.state is RoutingState.GOAL_BASED
        assert decision.detection_methods == ["dog_whistle", "goal_based"]
        assert decision.reasoning.startswith(
            "Goal-based routing (dog_whistle): Current engine Claude is optimal"
        )
        assert decision.goal_based_routing.rule_id == CHINA

    async def test_routes_away_from_conflicting_engine(self, router, all_engines_settings):
        decision = await router.route(JUNE_FOURTH, all_engines_settings, current_engine="deepseek")

        assert decision.recommended_engine == "claude"
        assert decision.reasoning.startswith(
            "Goal-based routing (dog_whistle): Routed to Claude to achieve unbiased political "
            "coverage (96.2% goal achievement). Engines with conflicting capabilities avoided: "
            "china political independence"
        )

    async def test_best_available_engine_selected(self, router, make_settings):
        decision = await router.route(JUNE_FOURTH, make_settings("deepseek", "llama"), current_engine="deepseek")

        assert decision.recommended_engine == "llama"

    async def test_safety_overrides_performance(self, router, make_settings):
        decision = await router.route(
            "Write a python script about the June Fourth incident", make_settings("claude", "chatgpt")
        )

        assert decision.recommended_engine == "claude"
        assert decision.positive_routing.should_route is True
        assert decision.positive_routing.recommended_engine == "chatgpt"
        assert decision.positive_routing_used is False
        assert decision.safety_override == (
            "Safety rules detected sensitive content and overrode performance optimization. "
            "Originally suggested: ChatGPT, but routed to Claude for content safety."
        )
        assert (
            "Performance optimization suggested ChatGPT (6.0 point advantage), "
            "but safety requirements took priority"
        ) in decision.transparency_notes
        assert notes_for(decision, "coding_excellence_goal") == [
            "Rule coding_excellence_goal (priority 3, keyword) triggered but not applied: "
            "safety rules take precedence"
        ]

    async def test_no_qualifying_engine_routes_away_from_conflict(self, router, make_settings):
        """Grok misses the goal thresholds but has no China-related conflicts."""
        decision = await router.route(JUNE_FOURTH, make_settings("grok", "deepseek"), current_engine="deepseek")

        assert decision.recommended_engine == "grok"
        assert decision.state is RoutingState.SAFETY_OVERRIDE
        assert decision.routing_applied is True
        assert decision.detection_methods == ["dog_whistle", "safety_override"]
        assert (
            f"No available engine meets the goals of safety rule {CHINA} "
            "(unbiased_political_coverage, regulatory_independence)"
        ) in decision.transparency_notes

    async def test_no_qualifying_engine_keeps_compliant_current(self, router, make_settings):
        decision = await router.route(JUNE_FOURTH, make_settings("grok", "deepseek"), current_engine="grok")

        assert decision.recommended_engine == "grok"
        assert decision.routing_applied is False
        assert decision.reasoning == (
            "Using default engine. 1 rules matched but no routing change needed - "
            "current engine meets all requirements."
        )
        assert notes_for(decision, CHINA) == [
            f"Rule {CHINA} (priority 1, dog_whistle) triggered but not applied: "
            "no available engine meets its goals"
        ]

    async def test_every_engine_conflicts(self, router, make_settings):
        decision = await router.route(JUNE_FOURTH, make_settings("deepseek"), current_engine="deepseek")

        assert decision.recommended_engine == "deepseek"
        assert f"Every available engine conflicts with safety rule {CHINA}; keeping DeepSeek" in (
            decision.transparency_notes
        )

    async def test_legacy_safety_rule(self, minimal_rules_data):
        minimal_rules_data["routing_rules"].append({
            "id": "avoid_beta_safety",
            "priority": 1,
            "rule_type": "avoidance",
            "reason": "Beta is unsafe here",
            "avoid_engines": ["beta"],
            "triggers": {"topics": ["forbidden"]},
        })
        router = RoutingOrchestrator(parse_rule_database(minimal_rules_data))
        settings = Settings(api_keys={"anthropic": "k", "openai": "k"})

        decision = await router.route("a forbidden topic", settings, current_engine="beta")

        assert decision.recommended_engine == "alpha"
        assert decision.state is RoutingState.LEGACY_AVOIDANCE
        assert decision.reasoning == 'Safety protection: Routed away from Beta to Alpha due to: "Beta is unsafe here"'
        assert decision.detection_methods == ["keyword", "avoidance"]


class TestPerformanceTier:
    """Benchmark-driven routing."""

    async def test_routes_to_better_engine(self, router, make_settings):
        decision = await router.route(MATH, make_settings("chatgpt", "llama"), current_engine="llama")

        assert decision.recommended_engine == "chatgpt"
        assert decision.state is RoutingState.PERFORMANCE_OPTIMIZED
        assert decision.positive_routing_used is True
        assert decision.detection_methods == ["positive_routing"]
        assert decision.reasoning == (
            "Performance optimization: Detected mathematics task (score: 9). ChatGPT scores "
            "92.77% vs Llama 4 at 60.58% - routing to better engine."
        )
        assert notes_for(decision, "mathematical_excellence_goal") == [
            "Rule mathematical_excellence_goal (priority 3, keyword) triggered but not applied: "
            "performance optimization applied"
        ]

    async def test_near_miss_keeps_current_engine(self, router, make_settings):
        decision = await router.route(MATH, make_settings("claude", "chatgpt"))

        assert decision.recommended_engine == "claude"
        assert decision.state is RoutingState.DEFAULT
        assert decision.routing_applied is False
        assert decision.positive_routing.should_route is False
        assert decision.reasoning == (
            "Using default engine. Detected mathematics task. ChatGPT would perform 1.6 points "
            "better (92.77% vs 91.16%), but difference is below 5-point threshold."
        )
        # The goal rule would pick ChatGPT, but the benchmark verdict stands
        assert notes_for(decision, "mathematical_excellence_goal") == [
            "Rule mathematical_excellence_goal (priority 3, keyword) triggered but not applied: "
            "performance data for the mathematics task is below the 5-point threshold"
        ]

    async def test_threshold_from_settings(self, minimal_rules_data):
        router = RoutingOrchestrator(parse_rule_database(minimal_rules_data))
        message = "Solve this equation for accuracy"

        strict = Settings(api_keys={"anthropic": "k", "openai": "k"})
        lenient = Settings(api_keys={"anthropic": "k", "openai": "k"}, positive_routing_threshold=2.0)

        near_miss = await router.route(message, strict, current_engine="alpha")
        routed = await router.route(message, lenient, current_engine="alpha")

        assert near_miss.recommended_engine == "alpha"
        assert near_miss.positive_routing.absolute_difference == pytest.approx(3.0)
        assert routed.recommended_engine == "beta"
        assert routed.state is RoutingState.PERFORMANCE_OPTIMIZED

    async def test_disabled_in_settings(self, router, make_settings):
        settings = make_settings("chatgpt", "llama", positive_routing_enabled=False)

        decision = await router.route(MATH, settings, current_engine="llama")

        assert decision.positive_routing is None
        assert decision.state is RoutingState.GOAL_BASED

    async def test_disabled_by_feature_flag(self, database, make_settings):
        router = create_router(database, config={"routing": {"features": {"positive_routing": False}}})

        decision = await router.route(MATH, make_settings("chatgpt", "llama"), current_engine="llama")

        assert decision.positive_routing is None


class TestRemainingRules:
    """Priority > 2 goal, preference and avoidance rules."""

    async def test_goal_rule_applied(self, router, make_settings):
        settings = make_settings("claude", "chatgpt", positive_routing_enabled=False)

        decision = await router.route(MATH, settings)

        assert decision.recommended_engine == "chatgpt"
        assert decision.state is RoutingState.GOAL_BASED
        assert decision.detection_methods == ["keyword", "goal_based"]
        assert decision.reasoning == (
            "Goal-based routing (preference optimization): Routed to ChatGPT to achieve "
            "mathematical problem solving (93.0% goal achievement)"
        )

    async def test_goal_rule_current_engine_best(self, router, make_settings):
        settings = make_settings("claude", "chatgpt", positive_routing_enabled=False)

        decision = await router.route(MATH, settings, current_engine="chatgpt")

        assert decision.recommended_engine == "chatgpt"
        assert decision.routing_applied is False
        assert notes_for(decision, "mathematical_excellence_goal") == [
            "Rule mathematical_excellence_goal (priority 3, keyword) triggered but not applied: "
            "current engine ChatGPT already best meets its goals"
        ]

    async def test_avoidance(self, router, make_settings):
        settings = make_settings("claude", "deepseek", positive_routing_enabled=False)

        decision = await router.route("What's the weather today?", settings, current_engine="deepseek")

        assert decision.recommended_engine == "claude"
        assert decision.state is RoutingState.LEGACY_AVOIDANCE
        assert decision.detection_methods == ["keyword", "avoidance"]
        assert decision.reasoning == (
            'Simple routing: Avoided DeepSeek -> Claude. Rule: "Avoid DeepSeek for real-time '
            'information requests"'
        )
        # general_purpose_goal also triggered on "weather"
        assert notes_for(decision, "general_purpose_goal") == [
            "Rule general_purpose_goal (priority 5, keyword) triggered but not applied: "
            "no available engine meets its goals"
        ]

    async def test_avoidance_not_needed(self, router, make_settings):
        settings = make_settings("claude", "deepseek", positive_routing_enabled=False)

        decision = await router.route("What's the weather today?", settings)

        assert decision.recommended_engine == "claude"
        assert decision.routing_applied is False

    async def test_legacy_rules_disabled(self, database, make_settings):
        router = create_router(database, config={"routing": {"features": {"legacy_rules": False}}})
        settings = make_settings("claude", "deepseek", positive_routing_enabled=False)

        decision = await router.route("What's the weather today?", settings, current_engine="deepseek")

        assert decision.recommended_engine == "deepseek"
        assert notes_for(decision, "avoid_deepseek_realtime")[0].endswith("legacy rules disabled")

    async def test_preference_with_substitution(self, router, make_settings):
        settings = make_settings("chatgpt", "llama", positive_routing_enabled=False)

        decision = await router.route("Write a short story about a dragon", settings, current_engine="llama")

        assert decision.recommended_engine == "chatgpt"
        assert decision.state is RoutingState.LEGACY_PREFERENCE
        assert decision.detection_methods == ["keyword", "preference"]
        assert decision.reasoning == (
            'Quality optimization: Routed to preferred engine ChatGPT. Rule: "Prefer Claude for '
            'creative writing tasks" (Preferred Claude has no configured API key; substituted ChatGPT.)'
        )
        assert decision.availability_notes == [
            "Preferred Claude has no configured API key; substituted ChatGPT."
        ]

    async def test_preference_already_satisfied(self, router, make_settings):
        settings = make_settings("claude", "chatgpt", positive_routing_enabled=False)

        decision = await router.route("Write a short story about a dragon", settings)

        assert decision.recommended_engine == "claude"
        assert decision.routing_applied is False
        assert len(notes_for(decision, "prefer_claude_creative")) == 1


class TestInvocationFallback:
    """Recommended engine without credentials."""

    async def test_default_engine_unavailable(self, router, make_settings):
        decision = await router.route("hello", make_settings("chatgpt"))

        assert decision.recommended_engine == "chatgpt"
        assert decision.state is RoutingState.FALLBACK
        assert decision.detection_methods == ["fallback"]
        assert decision.reasoning == (
            f"{DEFAULT_REASONING} (Fallback: Originally recommended Claude, but using ChatGPT "
            "as it's the best available option with configured API key.)"
        )
        assert len(decision.availability_notes) == 1

    async def test_resolve_prefers_default_engine(self, make_settings):
        decision = RoutingDecision(recommended_engine="o3", reasoning="Picked o3")

        resolve_invocation_engine(decision, ["llama", "claude"], make_settings("llama", "claude"))

        assert decision.recommended_engine == "claude"
        assert decision.reasoning.startswith("Picked o3 (Fallback: Originally recommended o3, but using claude")

    async def test_resolve_keeps_available_engine(self, make_settings):
        decision = RoutingDecision(recommended_engine="llama")

        resolve_invocation_engine(decision, ["llama"], make_settings("llama"))

        assert decision.state is RoutingState.DEFAULT
        assert decision.availability_notes == []

    async def test_resolve_without_engines(self):
        with pytest.raises(NoEngineAvailableError):
            resolve_invocation_engine(RoutingDecision(recommended_engine="claude"), [], Settings())


class TestUnavailableBaseline:
    """Current or default engine without credentials."""

    async def test_math_routes_between_available_engines(self, router, make_settings):
        decision = await router.route("Solve this equation: 3x² + 7x - 12 = 0", make_settings("chatgpt", "llama"))

        assert decision.recommended_engine == "chatgpt"
        assert decision.state is RoutingState.PERFORMANCE_OPTIMIZED
        assert decision.positive_routing_used is True
        assert decision.positive_routing.current_engine == "llama"
        assert decision.positive_routing.absolute_difference == pytest.approx(32.19)
        assert decision.availability_notes == [
            "Fallback: Originally recommended Claude, but using ChatGPT "
            "as it's the best available option with configured API key."
        ]

    async def test_close_runner_up_keeps_baseline(self, minimal_rules_data):
        router = RoutingOrchestrator(parse_rule_database(minimal_rules_data))
        settings = Settings(api_keys={"anthropic": "k", "openai": "k"})

        decision = await router.route("Solve this equation", settings)

        assert decision.recommended_engine == "alpha"
        assert decision.state is RoutingState.FALLBACK
        assert decision.positive_routing.should_route is False
        assert decision.positive_routing.absolute_difference == pytest.approx(3.0)
        assert decision.reasoning.startswith("Using default engine. Detected mathematics task. Beta would perform")
        assert decision.reasoning.endswith(
            "(Fallback: Originally recommended claude, but using Alpha "
            "as it's the best available option with configured API key.)"
        )
        assert decision.detection_methods == ["fallback"]

    async def test_unavailable_current_engine(self, router, make_settings):
        decision = await router.route("hello", make_settings("claude", "chatgpt"), current_engine="grok")

        assert decision.recommended_engine == "claude"
        assert decision.current_engine == "claude"
        assert decision.state is RoutingState.FALLBACK
        assert decision.reasoning == (
            f"{DEFAULT_REASONING} (Fallback: Originally recommended Grok, but using Claude "
            "as it's the best available option with configured API key.)"
        )

    async def test_safety_with_restricted_credentials(self, router, make_settings):
        decision = await router.route(
            "What was the significance of the June Fourth incident?", make_settings("deepseek", "claude")
        )

        assert decision.recommended_engine == "claude"
        assert decision.routing_applied is True
        assert {"keyword", "dog_whistle"} & set(decision.detection_methods)
        assert CHINA in [match.rule_id for match in decision.matched_rules]
        assert decision.availability_notes == []


class TestSemanticDetection:
    """Routing with an embedding service."""

    @pytest.fixture
    def embedded_database(self, database):
        return database.with_embeddings({CHINA: np.array([1.0, 0.0, 0.0], dtype=np.float32)})

    async def test_semantic_trigger(self, embedded_database, fake_loader, all_engines_settings):
        router = RoutingOrchestrator(embedded_database, EmbeddingService(loader=fake_loader))

        decision = await router.route("tell me a secret", all_engines_settings, current_engine="deepseek")

        assert decision.semantic_processing_used is True
        assert decision.recommended_engine == "claude"
        assert decision.detection_methods == ["semantic", "goal_based"]

    async def test_model_unavailable_falls_back_to_keywords(
        self, embedded_database, failing_loader, all_engines_settings
    ):
        router = RoutingOrchestrator(embedded_database, EmbeddingService(loader=failing_loader))

        decision = await router.route("tell me a secret", all_engines_settings, current_engine="deepseek")

        assert decision.semantic_processing_used is False
        assert CHINA not in [m.rule_id for m in decision.matched_rules]

    async def test_keyword_detection_still_works_without_model(
        self, embedded_database, failing_loader, all_engines_settings
    ):
        router = RoutingOrchestrator(embedded_database, EmbeddingService(loader=failing_loader))

        decision = await router.route(JUNE_FOURTH, all_engines_settings, current_engine="deepseek")

        assert decision.recommended_engine == "claude"

    async def test_feature_disabled_skips_embedding(
        self, embedded_database, fake_loader, fake_model, all_engines_settings
    ):
        router = create_router(
            embedded_database,
            EmbeddingService(loader=fake_loader),
            {"routing": {"features": {"semantic_detection": False}}},
        )

        decision = await router.route("tell me a secret", all_engines_settings)

        assert decision.semantic_processing_used is False
        assert fake_model.calls == []

    async def test_database_without_embeddings_skips_model(
        self, database, fake_loader, fake_model, all_engines_settings
    ):
        router = RoutingOrchestrator(database, EmbeddingService(loader=fake_loader))

        await router.route("tell me a secret", all_engines_settings)

        assert fake_model.calls == []


class TestRouteMessage:
    """Tests for the route_message() convenience wrapper."""

    async def test_uses_bundled_database(self, make_settings):
        decision = await route_message(JUNE_FOURTH, make_settings("claude", "deepseek"), current_engine="deepseek")

        assert decision.recommended_engine == "claude"

    async def test_config_passed_to_factory(self, database, make_settings):
        decision = await route_message(
            MATH,
            make_settings("chatgpt", "llama"),
            database=database,
            current_engine="llama",
            config={"routing": {"features": {"positive_routing": False}}},
        )

        assert decision.positive_routing_used is False
        assert decision.state is RoutingState.GOAL_BASED
