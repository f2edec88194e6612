"""Shared pytest fixtures for the engine router tests.

Everything here runs offline: the rule database is the bundled YAML file and
embedding models are replaced by small deterministic fakes.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Optional

import numpy as np
import pytest

from voices_router.models import RuleDatabase
from voices_router.rule_database import DEFAULT_RULES_PATH, load_rule_database
from voices_router.settings import Settings

# Provider credential per engine in the bundled database
ENGINE_PROVIDERS = {
    "claude": "anthropic",
    "chatgpt": "openai",
    "grok": "xai",
    "deepseek": "deepseek",
    "llama": "groq",
}


# =============================================================================
# Rule Database Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def database() -> RuleDatabase:
    """Bundled rule database (immutable, shared across tests)."""
    return load_rule_database()


@pytest.fixture
def rules_path() -> Path:
    """Path to the bundled rule database."""
    return DEFAULT_RULES_PATH


@pytest.fixture
def minimal_rules_data() -> Dict[str, Any]:
    """Smallest valid rule database document (two engines, one rule, one category)."""
    return {
        "metadata": {"version": "test"},
        "engines": {
            "alpha": {
                "name": "Alpha",
                "provider": "Alpha Labs",
                "credential_key": "anthropic",
                "goal_achievements": {"accuracy": 0.9},
                "capability_scores": {"mathematics": 80.0},
            },
            "beta": {
                "name": "Beta",
                "provider": "Beta Inc",
                "credential_key": "openai",
                "goal_achievements": {"accuracy": 0.7},
                "conflicting_capabilities": ["neutrality"],
                "capability_scores": {"mathematics": 83.0},
            },
        },
        "routing_rules": [
            {
                "id": "accuracy_goal",
                "priority": 3,
                "rule_type": "goal-based",
                "description": "Route to accurate engines",
                "reason": "Accuracy matters",
                "confidence_threshold": 0.8,
                "required_goals": {"accuracy": {"weight": 1.0, "threshold": 0.8}},
                "triggers": {"topics": ["accuracy"]},
            },
        ],
        "positive_routing_data": {
            "task_categories": {
                "mathematics": {
                    "description": "Math",
                    "keywords": ["equation"],
                    "top_performers": [
                        {"engine": "beta", "score": 83.0},
                        {"engine": "alpha", "score": 80.0},
                    ],
                },
            },
        },
    }


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for Settings with credentials for the given engines.

    Usage:
        settings = make_settings("claude", "chatgpt", default_engine="claude")
    """

    def _make(*engines: str, **overrides: Any) -> Settings:
        api_keys = {ENGINE_PROVIDERS[engine]: f"test-key-{engine}" for engine in engines}
        return Settings(api_keys=api_keys, **overrides)

    return _make


@pytest.fixture
def all_engines_settings(make_settings) -> Settings:
    """Settings with a credential for every invocable engine."""
    return make_settings(*ENGINE_PROVIDERS)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch) -> None:
    """Keep tests away from real credentials and ~/.voices."""
    for variable in (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "XAI_API_KEY",
        "DEEPSEEK_API_KEY",
        "GROQ_API_KEY",
        "VOICES_CONFIG_PATH",
        "VOICES_RULES_PATH",
        "VOICES_LOG_LEVEL",
    ):
        monkeypatch.delenv(variable, raising=False)
    monkeypatch.setenv("VOICES_SETTINGS_PATH", str(tmp_path / "home" / "settings.yaml"))


# =============================================================================
# Embedding Fixtures
# =============================================================================


class FakeModel:
    """Deterministic stand-in for a sentence-transformers model.

    Texts containing a registered marker map to that marker's vector; anything
    else maps to ``default``.
    """

    def __init__(self, vectors: Dict[str, np.ndarray], default: np.ndarray):
        self.vectors = vectors
        self.default = default
        self.calls = []

    def encode(self, text: str, normalize_embeddings: bool = True) -> np.ndarray:
        self.calls.append(text)
        for marker, vector in self.vectors.items():
            if marker in text:
                return vector
        return self.default


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel(
        vectors={"secret": np.array([1.0, 0.0, 0.0], dtype=np.float32)},
        default=np.array([0.0, 1.0, 0.0], dtype=np.float32),
    )


@pytest.fixture
def fake_loader(fake_model) -> Callable[[str, int], FakeModel]:
    """Loader returning the shared fake model."""

    def _load(model_name: str, max_tokens: int) -> FakeModel:
        return fake_model

    return _load


@pytest.fixture
def failing_loader() -> Callable[[str, int], Any]:
    """Loader that fails like a missing model download."""

    def _load(model_name: str, max_tokens: int) -> Optional[Any]:
        raise RuntimeError("model download failed")

    return _load
