"""Settings management for the engine router.

Stores provider credentials and routing preferences in
~/.voices/settings.yaml. Routing code receives a Settings object as an
injected value; nothing in the decision core reads the file directly.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from voices_router.errors import SettingsError
from voices_router.models import RuleDatabase

logger = logging.getLogger(__name__)

PROVIDERS = ("anthropic", "openai", "xai", "deepseek", "groq")

# Environment variables that fill empty credential slots
PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "groq": "GROQ_API_KEY",
}

SETTINGS_HEADER = """\
# Mixture-of-Voices Settings
# Edit directly or via `voices-router settings set KEY VALUE`
#
# api_keys: Provider credentials (anthropic, openai, xai, deepseek, groq)
# default_engine: Engine used when no routing applies
# fallback_engine: Engine used when a recommended engine is unavailable
# positive_routing_threshold: Minimum benchmark advantage (points) to switch engines

"""

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


@dataclass
class Settings:
    """Credentials and routing preferences."""

    api_keys: Dict[str, str] = field(default_factory=dict)
    default_engine: str = "claude"
    fallback_engine: str = "chatgpt"
    positive_routing_enabled: bool = True
    positive_routing_threshold: float = 5.0

    def has_credential(self, provider: Optional[str]) -> bool:
        if not provider:
            return False
        return bool((self.api_keys.get(provider) or "").strip())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_settings_path(home: Optional[Path] = None) -> Path:
    """Get the path to settings.yaml.

    VOICES_SETTINGS_PATH overrides the location unless ``home`` is given.

    Args:
        home: Home directory (defaults to the current user's)

    Returns:
        Path to ~/.voices/settings.yaml
    """
    override = os.environ.get("VOICES_SETTINGS_PATH")
    if override and home is None:
        return Path(override).expanduser()
    return (home or Path.home()) / ".voices" / "settings.yaml"


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Build Settings from a loaded mapping, ignoring unknown keys."""
    defaults = Settings()
    api_keys = {
        str(provider): str(key)
        for provider, key in (data.get("api_keys") or {}).items()
        if key is not None
    }
    return Settings(
        api_keys=api_keys,
        default_engine=str(data.get("default_engine") or defaults.default_engine),
        fallback_engine=str(data.get("fallback_engine") or defaults.fallback_engine),
        positive_routing_enabled=_coerce_bool(
            data.get("positive_routing_enabled", defaults.positive_routing_enabled),
            "positive_routing_enabled",
        ),
        positive_routing_threshold=_coerce_threshold(
            data.get("positive_routing_threshold", defaults.positive_routing_threshold)
        ),
    )


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from YAML.

    If the file doesn't exist, returns defaults.

    Raises:
        SettingsError: If the file holds invalid values
    """
    settings_path = path or get_settings_path()
    if not settings_path.exists():
        logger.debug(f"No settings file at {settings_path}, using defaults")
        return Settings()

    with open(settings_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid settings file {settings_path}: {e}") from e

    if not isinstance(data, dict):
        raise SettingsError(f"Invalid settings file {settings_path}: expected a mapping")
    return settings_from_dict(data)


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """Save settings to YAML (with header), creating the directory if needed."""
    settings_path = path or get_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)

    with open(settings_path, "w") as f:
        f.write(SETTINGS_HEADER)
        yaml.dump(settings.to_dict(), f, default_flow_style=False, sort_keys=False)

    logger.debug(f"Saved settings to {settings_path}")
    return settings_path


def apply_env_credentials(settings: Settings, environ: Optional[Dict[str, str]] = None) -> Settings:
    """Fill empty credential slots from provider environment variables.

    Keys already present in the settings win over the environment.
    """
    env = os.environ if environ is None else environ
    api_keys = dict(settings.api_keys)
    for provider, variable in PROVIDER_ENV_VARS.items():
        if not (api_keys.get(provider) or "").strip() and env.get(variable):
            api_keys[provider] = env[variable]
    return replace(settings, api_keys=api_keys)


def _coerce_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise SettingsError(f"{key} must be true or false, got {value!r}")


def _coerce_threshold(value: Any) -> float:
    try:
        threshold = float(value)
    except (TypeError, ValueError) as e:
        raise SettingsError(f"positive_routing_threshold must be a number, got {value!r}") from e
    if threshold < 0:
        raise SettingsError(f"positive_routing_threshold must be >= 0, got {threshold}")
    return threshold


def set_setting(
    settings: Settings,
    key: str,
    value: Any,
    database: Optional[RuleDatabase] = None,
) -> Settings:
    """Return a copy of ``settings`` with one value changed.

    Args:
        settings: Current settings
        key: ``default_engine``, ``fallback_engine``, ``positive_routing_enabled``,
            ``positive_routing_threshold`` or ``api_keys.<provider>``
        value: New value (strings are coerced)
        database: Engine catalog used to validate engine ids

    Raises:
        SettingsError: If the key is unknown or the value is invalid
    """
    if key.startswith("api_keys."):
        provider = key.split(".", 1)[1]
        if provider not in PROVIDERS:
            raise SettingsError(f"Unknown provider '{provider}'. Known providers: {', '.join(PROVIDERS)}")
        api_keys = dict(settings.api_keys)
        text = "" if value is None else str(value).strip()
        if text:
            api_keys[provider] = text
        else:
            api_keys.pop(provider, None)
        return replace(settings, api_keys=api_keys)

    if key in ("default_engine", "fallback_engine"):
        engine_id = str(value).strip()
        if database is not None and database.engine(engine_id) is None:
            raise SettingsError(
                f"Unknown engine '{engine_id}'. Known engines: {', '.join(database.engines)}"
            )
        return replace(settings, **{key: engine_id})

    if key == "positive_routing_enabled":
        return replace(settings, positive_routing_enabled=_coerce_bool(value, key))

    if key == "positive_routing_threshold":
        return replace(settings, positive_routing_threshold=_coerce_threshold(value))

    raise SettingsError(
        f"Unknown setting '{key}'. Valid keys: default_engine, fallback_engine, "
        f"positive_routing_enabled, positive_routing_threshold, api_keys.<provider>"
    )


def available_engines(settings: Settings, database: RuleDatabase) -> List[str]:
    """Engines whose provider credential is configured, in catalog order.

    Engines without a credential key (benchmark-only entries) are never available.
    """
    return [
        engine_id
        for engine_id, profile in database.engines.items()
        if profile.credential_key and settings.has_credential(profile.credential_key)
    ]


def mask_key(key: Optional[str]) -> str:
    """Show only the last four characters of a credential."""
    if not key:
        return "(not set)"
    if len(key) <= 4:
        return "*" * len(key)
    return "*" * 8 + key[-4:]
