"""Engine Router Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    VOICES_CONFIG_PATH: Path to config file (default: voices-config.yaml in the working directory)
    VOICES_RULES_PATH: Override rule database path from config
    VOICES_LOG_LEVEL: Override log level from config

Configuration Schema:
    rules:
        path: str - Rule database file (default: bundled bias_rules.yaml)
    routing:
        router: str - Router version (e.g., "voices-3.0")
        features: dict - Feature flags (e.g., {"semantic_detection": False})
    semantic:
        model: str - Sentence-embedding model (default: BAAI/bge-base-en-v1.5)
        max_tokens: int - Model token budget (default: 512)
        max_chars: int - Input truncation before encoding (default: 380)
        precompute_delay: float - Seconds between rule embeddings (default: 0.1)
        topic_samples: int - Topic terms per rule embedding (default: 5)
        dog_whistle_samples: int - Dog-whistle terms per rule embedding (default: 3)
    feedback:
        db_path: str - Feedback SQLite database (default: ~/.voices/feedback.db)
    server:
        log_level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from voices_router.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "voices-config.yaml"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "rules": {
        "path": None,  # Use bundled rule database
    },
    "routing": {
        "router": None,  # Use registered default router
        "features": {},  # No feature overrides
    },
    "semantic": {
        "model": "BAAI/bge-base-en-v1.5",
        "max_tokens": 512,
        "max_chars": 380,
        "precompute_delay": 0.1,
        "topic_samples": 5,
        "dog_whistle_samples": 3,
    },
    "feedback": {
        "db_path": None,  # ~/.voices/feedback.db
    },
    "server": {
        "log_level": "INFO",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """Resolve a path, making relative paths absolute from base_dir (None stays None)."""
    if path is None:
        return None

    path_obj = Path(path).expanduser()
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"expected a mapping at the top level of {path}")
    return data


def load_config(
    config_path: Optional[str] = None,
    base_dir: Optional[Path] = None
) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (config_path parameter, VOICES_CONFIG_PATH, or
       voices-config.yaml in base_dir if present)
    3. Environment variable overrides (VOICES_RULES_PATH, VOICES_LOG_LEVEL)

    Args:
        config_path: Explicit config file path (overrides VOICES_CONFIG_PATH)
        base_dir: Directory for relative path resolution (default: cwd)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file is invalid YAML or unreadable

    Examples:
        config = load_config()
        config = load_config("/path/to/voices-config.yaml")
    """
    if base_dir is None:
        base_dir = Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("VOICES_CONFIG_PATH")

    if file_path:
        # Explicit config path - must be valid if it exists
        resolved_path = _resolve_path(file_path, base_dir)
        if resolved_path and resolved_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
            except IOError as e:
                raise ConfigurationError(f"Cannot read config file: {e}") from e
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        default_config_path = base_dir / DEFAULT_CONFIG_FILENAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except yaml.YAMLError as e:
                logger.warning(f"Invalid YAML in default config (ignoring): {e}")
            except IOError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    # Apply environment variable overrides
    rules_path_override = os.environ.get("VOICES_RULES_PATH")
    if rules_path_override:
        config.setdefault("rules", {})["path"] = rules_path_override
        logger.info(f"Rules path override from env: {rules_path_override}")

    log_level_override = os.environ.get("VOICES_LOG_LEVEL")
    if log_level_override:
        config.setdefault("server", {})["log_level"] = log_level_override.upper()

    # Resolve file paths
    for section in ("rules", "feedback"):
        key = "path" if section == "rules" else "db_path"
        value = (config.get(section) or {}).get(key)
        if value:
            config[section][key] = str(_resolve_path(value, base_dir))

    return config


def get_rules_path(config: Dict[str, Any]) -> Optional[Path]:
    """Rule database path from config, or None for the bundled database."""
    path_str = (config.get("rules") or {}).get("path")
    return Path(path_str) if path_str else None


def get_feedback_db_path_from_config(config: Dict[str, Any]) -> Optional[Path]:
    """Feedback database path from config, or None for the default location."""
    path_str = (config.get("feedback") or {}).get("db_path")
    return Path(path_str) if path_str else None


def get_routing_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract routing configuration for the create_router() factory.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        Dictionary suitable for passing to create_router()
    """
    routing = config.get("routing") or {}
    return {
        "routing": {
            "router": routing.get("router"),
            "features": routing.get("features") or {},
        }
    }


def get_semantic_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Semantic section merged over defaults."""
    return _deep_merge(DEFAULT_CONFIG["semantic"], config.get("semantic") or {})


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging to stderr.

    A stderr handler is only installed when the root logger has none.

    Raises:
        ConfigurationError: If ``level`` is not a logging level name
    """
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Unknown log level: {level}")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT, stream=sys.stderr)
    root.setLevel(numeric)
