"""Mixture-of-Voices CLI entry point."""

import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import typer
from rich.markup import escape

from voices_router.config import (
    configure_logging,
    get_feedback_db_path_from_config,
    get_routing_config,
)
from voices_router.cli import load_runtime, prepare_semantic
from voices_router.errors import RouterError, RuleValidationError
from voices_router.feedback import FeedbackRecord, get_feedback_stats, store_feedback
from voices_router.formatter import decision_to_dict, format_decision
from voices_router.models import Feedback, RoutingDecision, RuleDatabase
from voices_router.orchestrator import route_message
from voices_router.rule_database import load_rule_database
from voices_router.settings import (
    Settings,
    available_engines,
    get_settings_path,
    load_settings,
    mask_key,
    save_settings,
    set_setting,
)

from . import __version__
from .console import (
    console,
    create_table,
    print_error,
    print_info,
    print_panel,
    print_success,
    print_table,
    print_warning,
)

app = typer.Typer(
    name="voices-router",
    help="Mixture-of-Voices - safety-aware AI engine routing",
    no_args_is_help=True,
)
settings_app = typer.Typer(
    name="settings",
    help="Show and change routing settings",
    no_args_is_help=True,
)
app.add_typer(settings_app, name="settings")

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Config file (default: voices-config.yaml or VOICES_CONFIG_PATH)",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"voices-router version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Mixture-of-Voices - safety-aware AI engine routing."""
    pass


def _load(config_path: str | None) -> tuple[dict[str, Any], Settings, RuleDatabase]:
    try:
        config, settings, database = load_runtime(config_path)
        configure_logging(config["server"]["log_level"])
    except (RouterError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    return config, settings, database


async def _route(
    message: str,
    settings: Settings,
    database: RuleDatabase,
    config: dict[str, Any],
    current_engine: str | None,
    semantic: bool,
) -> RoutingDecision:
    if not semantic:
        return await route_message(
            message,
            settings,
            database=database,
            current_engine=current_engine,
            config=get_routing_config(config),
        )

    database, service = await prepare_semantic(database, config)
    try:
        return await route_message(
            message,
            settings,
            database=database,
            embedding_service=service,
            current_engine=current_engine,
            config=get_routing_config(config),
        )
    finally:
        service.close()


def _run_route(
    message: str,
    settings: Settings,
    database: RuleDatabase,
    config: dict[str, Any],
    current_engine: str | None = None,
    semantic: bool = False,
) -> RoutingDecision:
    try:
        return asyncio.run(_route(message, settings, database, config, current_engine, semantic))
    except RouterError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command(name="route")
def route_command(
    message: list[str] = typer.Argument(..., help="Message to route"),
    engine: str | None = typer.Option(
        None,
        "--engine",
        "-e",
        help="Engine currently answering (default: default_engine setting)",
    ),
    threshold: float | None = typer.Option(
        None,
        "--threshold",
        "-t",
        min=0,
        help="Override the positive routing threshold (benchmark points)",
    ),
    no_positive: bool = typer.Option(
        False,
        "--no-positive",
        help="Disable performance-based routing for this call",
    ),
    semantic: bool = typer.Option(
        False,
        "--semantic",
        help="Load the embedding model and enable semantic rule detection",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the decision as JSON"),
    verbose: bool = typer.Option(False, "--verbose", help="Show per-rule match evidence"),
    config_path: str | None = CONFIG_OPTION,
) -> None:
    """Route a message and explain which engine should answer it."""
    config, settings, database = _load(config_path)

    if threshold is not None:
        settings = replace(settings, positive_routing_threshold=threshold)
    if no_positive:
        settings = replace(settings, positive_routing_enabled=False)
    if engine is not None and database.engine(engine) is None:
        print_error(f"Unknown engine '{engine}'. Known engines: {', '.join(database.engines)}")
        raise typer.Exit(1)

    decision = _run_route(" ".join(message), settings, database, config, engine, semantic)

    if as_json:
        typer.echo(json.dumps(decision_to_dict(decision), indent=2))
        return

    style = "red" if decision.safety_override else ("green" if decision.routing_applied else "blue")
    print_panel(
        f"Routed to {escape(database.engine_name(decision.recommended_engine))}",
        escape(format_decision(decision, database, verbose=verbose)),
        style=style,
    )


@app.command(name="rules")
def rules_command(
    priority: int | None = typer.Option(
        None,
        "--priority",
        "-p",
        help="Only show rules with this priority",
    ),
    config_path: str | None = CONFIG_OPTION,
) -> None:
    """List routing rules in priority order."""
    _, _, database = _load(config_path)

    rules = sorted(database.rules, key=lambda r: r.priority)
    if priority is not None:
        rules = [r for r in rules if r.priority == priority]

    if not rules:
        console.print("[dim]No rules found.[/dim]")
        return

    table = create_table(f"Routing Rules (database v{database.version})")
    table.add_column("P", style="cyan", justify="right")
    table.add_column("ID", style="magenta")
    table.add_column("Type", style="blue")
    table.add_column("Action", style="green")
    table.add_column("Description", style="dim")

    for rule in rules:
        if rule.required_goals:
            action = "goals: " + ", ".join(goal.name for goal in rule.required_goals)
        elif rule.prefer_engines:
            action = "prefer: " + ", ".join(rule.prefer_engines)
        else:
            action = "avoid: " + ", ".join(rule.avoid_engines)

        description = rule.description
        if len(description) > 50:
            description = description[:47] + "..."

        table.add_row(str(rule.priority), rule.id, rule.kind.value, action, description)

    print_table(table)

    safety = sum(1 for r in rules if r.is_safety)
    console.print(f"\n[dim]Total: {len(rules)} | Safety (P1-2): {safety}[/dim]")


@app.command(name="engines")
def engines_command(config_path: str | None = CONFIG_OPTION) -> None:
    """List engines and whether a credential is configured for each."""
    _, settings, database = _load(config_path)
    available = set(available_engines(settings, database))

    table = create_table("Engines")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Provider", style="blue")
    table.add_column("Credential")
    table.add_column("Available")

    for engine_id, profile in database.engines.items():
        table.add_row(
            engine_id,
            profile.name,
            profile.provider,
            profile.credential_key or "[dim]none[/dim]",
            "[green]yes[/green]" if engine_id in available else "[dim]no[/dim]",
        )

    print_table(table)

    if not available:
        print_warning("No engine has a credential. Set one with: voices-router settings set api_keys.<provider> KEY")


@settings_app.command(name="show")
def settings_show() -> None:
    """Show current settings (credentials masked)."""
    path = get_settings_path()
    try:
        settings = load_settings(path)
    except RouterError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = create_table(f"Settings ({path})")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("default_engine", settings.default_engine)
    table.add_row("fallback_engine", settings.fallback_engine)
    table.add_row("positive_routing_enabled", str(settings.positive_routing_enabled).lower())
    table.add_row("positive_routing_threshold", f"{settings.positive_routing_threshold:g}")
    for provider, key in sorted(settings.api_keys.items()):
        table.add_row(f"api_keys.{provider}", mask_key(key))

    print_table(table)


@settings_app.command(name="set")
def settings_set(
    key: str = typer.Argument(..., help="Setting key, e.g. default_engine or api_keys.openai"),
    value: str = typer.Argument(..., help="New value (empty string clears an API key)"),
) -> None:
    """Change one setting and save it."""
    path = get_settings_path()
    try:
        database = load_rule_database()
        updated = set_setting(load_settings(path), key, value, database)
    except RouterError as e:
        print_error(str(e))
        raise typer.Exit(1)

    save_settings(updated, path)
    shown = mask_key(value) if key.startswith("api_keys.") and value else (value or "(cleared)")
    print_success(f"{key} = {shown}")


@app.command(name="feedback")
def feedback_command(
    message: str = typer.Argument(..., help="Message that was routed"),
    verdict: Feedback = typer.Argument(..., help="Was the routed answer good?"),
    engine: str | None = typer.Option(None, "--engine", "-e", help="Engine currently answering"),
    config_path: str | None = CONFIG_OPTION,
) -> None:
    """Route a message again and record feedback on the decision."""
    config, settings, database = _load(config_path)
    decision = _run_route(message, settings, database, config, engine)

    record = FeedbackRecord.from_decision(decision, verdict)
    if store_feedback(record, get_feedback_db_path_from_config(config)):
        print_success(
            f"Recorded {verdict.value} feedback for {database.engine_name(decision.recommended_engine)}"
        )
    else:
        print_error("Failed to store feedback (see log for details)")
        raise typer.Exit(1)


@app.command(name="feedback-stats")
def feedback_stats_command(
    as_json: bool = typer.Option(False, "--json", help="Print statistics as JSON"),
    config_path: str | None = CONFIG_OPTION,
) -> None:
    """Summarize recorded routing feedback."""
    config, _, _ = _load(config_path)
    stats = get_feedback_stats(get_feedback_db_path_from_config(config))

    if as_json:
        typer.echo(json.dumps(stats, indent=2))
        return

    if not stats["database_exists"] or stats["total_count"] == 0:
        print_info("No feedback recorded yet.")
        return

    table = create_table("Feedback by Engine")
    table.add_column("Engine", style="cyan")
    table.add_column("Positive", style="green", justify="right")
    table.add_column("Negative", style="red", justify="right")

    for engine_id, counts in sorted(stats["by_destination"].items()):
        table.add_row(engine_id, str(counts["positive"]), str(counts["negative"]))

    print_table(table)
    console.print(
        f"\n[dim]Total: {stats['total_count']} | "
        f"Positive: {stats['positive_count']} | "
        f"Negative: {stats['negative_count']}[/dim]"
    )


@app.command(name="validate")
def validate_command(
    path: Path = typer.Argument(..., help="Rule database YAML file"),
) -> None:
    """Validate a rule database file."""
    try:
        database = load_rule_database(path)
    except FileNotFoundError:
        print_error(f"File not found: {path}")
        raise typer.Exit(1)
    except RuleValidationError as e:
        print_error(f"{path.name}: {len(e.problems)} problem(s)")
        for problem in e.problems:
            console.print(f"  - {escape(problem)}")
        raise typer.Exit(1)

    print_success(
        f"{path.name}: {len(database.engines)} engines, {len(database.rules)} routing rules, "
        f"{len(database.task_categories)} task categories"
    )


if __name__ == "__main__":
    app()
