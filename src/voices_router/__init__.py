"""Mixture-of-Voices Router - Safety-Aware AI Engine Selection

Picks which AI completion engine should answer a message, combining
bias/safety rules, goal-based engine selection and benchmark-driven
performance routing, and explains every decision.

Architecture:
- YAML rule database (engines, rules, benchmarks) loaded once, immutable
- Keyword, fuzzy, dog-whistle and optional semantic rule detection
- Tiered orchestrator: safety > performance > goals/preferences > default
- Routers are swappable through the registry in routing_engine

Usage:
    from voices_router import Settings, load_rule_database, route_message

    settings = Settings(api_keys={"anthropic": "...", "openai": "..."})
    decision = await route_message("Solve 3x + 2 = 11", settings)
    print(decision.recommended_engine, decision.reasoning)
"""

from .errors import (
    ConfigurationError,
    EmbeddingUnavailableError,
    NoEngineAvailableError,
    RouterError,
    RuleValidationError,
    SettingsError,
    ValidationError,
)
from .models import RoutingDecision, RoutingState, RuleDatabase
from .orchestrator import RoutingOrchestrator, resolve_invocation_engine, route_message
from .routing_engine import create_router, get_available_routers
from .rule_database import load_rule_database
from .semantic import EmbeddingService, precompute_rule_embeddings
from .settings import Settings, available_engines

__all__ = [
    "ConfigurationError",
    "EmbeddingService",
    "EmbeddingUnavailableError",
    "NoEngineAvailableError",
    "RouterError",
    "RoutingDecision",
    "RoutingOrchestrator",
    "RoutingState",
    "RuleDatabase",
    "RuleValidationError",
    "Settings",
    "SettingsError",
    "ValidationError",
    "available_engines",
    "create_router",
    "get_available_routers",
    "load_rule_database",
    "precompute_rule_embeddings",
    "resolve_invocation_engine",
    "route_message",
]

__version__ = "0.1.0"
