"""Router Abstract Interface

Defines the abstract interface for swappable engine routers.

Architecture:
    Chat front end → Router → recommended engine id → provider call (UI layer)

    The Router interface lets the decision algorithm evolve without touching
    the layers above. Routers only select an engine; they never call one.

Versions:
    - voices-3.0: Goal-based routing with safety rules, semantic detection
      and benchmark-driven performance routing (orchestrator module)

Usage:
    router = create_router(database, embedding_service)
    decision = await router.route("Solve 3x + 2 = 11", settings)
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from voices_router.errors import ConfigurationError
from voices_router.models import RoutingDecision, RuleDatabase

__all__ = [
    "ConfigurationError",
    "FeatureSpec",
    "Router",
    "create_router",
    "get_available_routers",
    "get_default_router",
    "get_router_default_features",
    "get_router_features",
    "register_router",
    "set_default_router",
    "validate_features",
]


class FeatureSpec:
    """Specification for a feature flag."""

    def __init__(
        self,
        name: str,
        description: str,
        default: bool = True,
        category: str = "general"
    ):
        """
        Define a feature flag specification.

        Args:
            name: Feature identifier (e.g., "positive_routing")
            description: Human-readable description
            default: Default value (True = enabled by default)
            category: Grouping category (e.g., "routing", "detection")
        """
        self.name = name
        self.description = description
        self.default = default
        self.category = category

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "description": self.description,
            "default": self.default,
            "category": self.category,
        }


class Router(ABC):
    """
    Abstract interface for engine routers.

    Attributes:
        database: Immutable rule database (engines, rules, benchmarks)
        embedding_service: Shared EmbeddingService, or None for keyword-only
        features: Effective feature flags (defaults merged with overrides)
    """

    def __init__(
        self,
        database: RuleDatabase,
        embedding_service: Optional[Any] = None,
        features: Optional[Dict[str, bool]] = None,
    ):
        self.database = database
        self.embedding_service = embedding_service
        self.features = {**self.get_default_features(), **(features or {})}

    def feature_enabled(self, name: str) -> bool:
        return bool(self.features.get(name, False))

    @abstractmethod
    async def route(
        self,
        message: str,
        settings: Any,
        current_engine: Optional[str] = None,
    ) -> RoutingDecision:
        """
        Decide which engine should answer a message.

        Args:
            message: Raw user message
            settings: Settings (credentials, default/fallback engine, thresholds)
            current_engine: Engine that would answer without routing
                (defaults to the settings' default engine)

        Returns:
            RoutingDecision

        Raises:
            NoEngineAvailableError: If no engine has configured credentials
        """
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Router version identifier (e.g. 'voices-3.0')."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Return human-readable description of routing approach."""
        pass

    @classmethod
    def get_available_features(cls) -> List[FeatureSpec]:
        """
        Return list of feature flags available for this router.

        Default implementation returns empty list (no configurable features).
        """
        return []

    @classmethod
    def get_default_features(cls) -> Dict[str, bool]:
        """Map feature name to its default value."""
        return {f.name: f.default for f in cls.get_available_features()}


# Router registry for factory function
_ROUTER_REGISTRY: Dict[str, type] = {}


def register_router(version: str):
    """
    Decorator to register a router implementation.

    Usage:
        @register_router("voices-3.0")
        class RoutingOrchestrator(Router):
            ...
    """
    def decorator(cls):
        _ROUTER_REGISTRY[version] = cls
        return cls
    return decorator


# Set by the module that registers the production router
DEFAULT_ROUTER_VERSION: Optional[str] = None


def set_default_router(version: str):
    """Set the default router version for the factory function."""
    global DEFAULT_ROUTER_VERSION
    DEFAULT_ROUTER_VERSION = version


def get_default_router() -> str:
    """Get the default router version, falling back to first registered if not set."""
    if DEFAULT_ROUTER_VERSION and DEFAULT_ROUTER_VERSION in _ROUTER_REGISTRY:
        return DEFAULT_ROUTER_VERSION
    if _ROUTER_REGISTRY:
        return next(iter(_ROUTER_REGISTRY.keys()))
    raise ConfigurationError("No routers registered")


def _lookup(version: str) -> type:
    if version not in _ROUTER_REGISTRY:
        available = list(_ROUTER_REGISTRY.keys())
        raise ConfigurationError(
            f"Unknown router: '{version}'. "
            f"Available routers: {available}"
        )
    return _ROUTER_REGISTRY[version]


def create_router(
    database: RuleDatabase,
    embedding_service: Optional[Any] = None,
    config: Optional[Dict[str, Any]] = None
) -> Router:
    """
    Factory function to create a router based on configuration.

    Args:
        database: Loaded rule database
        embedding_service: Shared EmbeddingService (None = keyword-only detection)
        config: Optional configuration dictionary with:
            - routing.router: Router version (uses default if not specified)
            - routing.features: Feature flag overrides, e.g.
              {"semantic_detection": False}

    Returns:
        Router implementation instance

    Raises:
        ConfigurationError: If the router version or a feature flag is unknown

    Examples:
        router = create_router(database)
        router = create_router(database, service, {"routing": {
            "router": "voices-3.0",
            "features": {"positive_routing": False}
        }})
    """
    version = get_default_router()
    features = None
    if config:
        routing_config = config.get("routing") or {}
        # 'or' handles explicit None values from YAML
        version = routing_config.get("router") or version
        features = routing_config.get("features")

    router_class = _lookup(version)
    if features:
        validate_features(version, features)

    return router_class(database, embedding_service=embedding_service, features=features)


def get_available_routers() -> List[str]:
    """Return registered router version identifiers."""
    return list(_ROUTER_REGISTRY.keys())


def get_router_features(version: str) -> List[FeatureSpec]:
    """
    Get available feature flags for a router version.

    Raises:
        ConfigurationError: If the version is unknown
    """
    return _lookup(version).get_available_features()


def get_router_default_features(version: str) -> Dict[str, bool]:
    """Default feature values for a router version ({} when unknown)."""
    if version not in _ROUTER_REGISTRY:
        return {}
    return _ROUTER_REGISTRY[version].get_default_features()


def validate_features(version: str, features: Dict[str, bool]) -> None:
    """
    Validate that provided features are valid for the router.

    Raises:
        ConfigurationError: If any feature is not available for this router
    """
    available_names = {f.name for f in get_router_features(version)}

    for feature_name, value in features.items():
        if feature_name not in available_names:
            raise ConfigurationError(
                f"Feature '{feature_name}' is not available for router '{version}'. "
                f"Available features: {sorted(available_names) if available_names else '(none)'}"
            )
        if not isinstance(value, bool):
            raise ConfigurationError(
                f"Feature '{feature_name}' must be true or false, got {value!r}"
            )
