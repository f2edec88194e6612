#!/usr/bin/env python3
"""
CLI entry point for one-shot routing.

The voices-route command routes a single message and prints the formatted
decision. It accepts the message as arguments or as stdin JSON
(``{"prompt": "..."}``), so it can be wired into chat front ends and hooks.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from voices_router.config import (
    configure_logging,
    get_rules_path,
    get_routing_config,
    get_semantic_config,
    load_config,
)
from voices_router.formatter import format_decision
from voices_router.models import RuleDatabase
from voices_router.orchestrator import route_message
from voices_router.rule_database import load_rule_database
from voices_router.semantic import EmbeddingService, precompute_rule_embeddings
from voices_router.settings import Settings, apply_env_credentials, load_settings


def load_runtime(
    config_path: Optional[str] = None,
    settings_path: Optional[Path] = None,
) -> Tuple[Dict[str, Any], Settings, RuleDatabase]:
    """
    Load configuration, settings (with environment credentials) and the rule database.

    Raises:
        ConfigurationError, SettingsError, RuleValidationError: On invalid input files
    """
    config = load_config(config_path)
    settings = apply_env_credentials(load_settings(settings_path))
    database = load_rule_database(get_rules_path(config))
    return config, settings, database


async def prepare_semantic(
    database: RuleDatabase,
    config: Dict[str, Any],
) -> Tuple[RuleDatabase, EmbeddingService]:
    """
    Create the embedding service and attach rule embeddings.

    When the model is unavailable the database is returned unchanged and
    routing stays keyword-only.
    """
    semantic = get_semantic_config(config)
    service = EmbeddingService(
        model_name=semantic["model"],
        max_tokens=semantic["max_tokens"],
        max_chars=semantic["max_chars"],
    )
    report = await precompute_rule_embeddings(
        database,
        service,
        delay=semantic["precompute_delay"],
        topic_samples=semantic["topic_samples"],
        dog_whistle_samples=semantic["dog_whistle_samples"],
    )
    return report.apply(database), service


def route_cli() -> None:
    """
    CLI entry point for one-shot routing.

    Usage:
        voices-route "user message here"
        echo '{"prompt": "message"}' | voices-route

    Exit codes:
        0: Success (decision printed to stdout)
        1: Error during routing
    """
    if len(sys.argv) > 1:
        message = " ".join(sys.argv[1:])
    else:
        stdin_data = sys.stdin.read().strip()
        if not stdin_data:
            sys.exit(0)

        try:
            input_data = json.loads(stdin_data)
            message = input_data.get("prompt", "") if isinstance(input_data, dict) else stdin_data
        except json.JSONDecodeError:
            # Plain text on stdin
            message = stdin_data

    if not message:
        sys.exit(0)

    try:
        config, settings, database = load_runtime()
        configure_logging(config["server"]["log_level"])
        decision = asyncio.run(
            route_message(message, settings, database=database, config=get_routing_config(config))
        )
        print(format_decision(decision, database))

    except Exception as e:
        # Errors go to stderr, stdout stays clean
        print(f"Voices routing error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    route_cli()
