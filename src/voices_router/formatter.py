"""
Routing Decision Formatter.

Renders a RoutingDecision as a plain-text report (for terminals and logs)
or as a JSON-safe dict (for ``--json`` output and feedback export).

Sections, in order:
- Engine and routing state
- Reasoning
- Detection methods
- Matched rules with their evidence (verbose only)
- Performance comparison, when a task category was detected
- Transparency and availability notes
"""

from typing import Any, Optional

from voices_router.models import MatchResult, PositiveRoutingResult, RoutingDecision, RuleDatabase


def _engine_label(engine_id: Optional[str], database: Optional[RuleDatabase]) -> str:
    if engine_id is None:
        return "none"
    if database is None:
        return engine_id
    return f"{database.engine_name(engine_id)} ({engine_id})"


def match_to_dict(match: MatchResult) -> dict[str, Any]:
    return {
        "rule_id": match.rule_id,
        "priority": match.priority,
        "rule_type": match.rule.kind.value,
        "description": match.rule.description,
        "detection_method": match.detection_method.value,
        "semantic_score": round(match.semantic_score, 4),
        "matches": list(match.matched_fragments),
    }


def positive_to_dict(positive: PositiveRoutingResult) -> dict[str, Any]:
    return {
        "category": positive.category,
        "category_description": positive.category_description,
        "match_score": positive.match_score,
        "recommended_engine": positive.recommended_engine,
        "engine_score": positive.engine_score,
        "current_engine": positive.current_engine,
        "current_engine_score": positive.current_engine_score,
        "absolute_difference": round(positive.absolute_difference, 2),
        "threshold": positive.threshold,
        "should_route": positive.should_route,
        "reasoning": positive.reasoning,
    }


def decision_to_dict(decision: RoutingDecision) -> dict[str, Any]:
    """
    Convert a decision to a JSON-safe dict.

    Rule embeddings are never included.
    """
    goal = decision.goal_based_routing
    return {
        "recommended_engine": decision.recommended_engine,
        "routing_applied": decision.routing_applied,
        "state": decision.state.value,
        "reasoning": decision.reasoning,
        "detection_methods": list(decision.detection_methods),
        "matched_rules": [match_to_dict(m) for m in decision.matched_rules],
        "positive_routing": positive_to_dict(decision.positive_routing) if decision.positive_routing else None,
        "positive_routing_used": decision.positive_routing_used,
        "goal_based_routing": {
            "engine_id": goal.engine_id,
            "engine_name": goal.engine_name,
            "goal_score": round(goal.goal_score, 4),
            "rule_id": goal.rule_id,
            "explanation": goal.explanation,
            "candidates": [[engine, round(score, 4)] for engine, score in goal.candidates],
        } if goal else None,
        "transparency_notes": list(decision.transparency_notes),
        "availability_notes": list(decision.availability_notes),
        "safety_override": decision.safety_override,
        "semantic_processing_used": decision.semantic_processing_used,
        "original_query": decision.original_query,
        "normalized_query": decision.normalized_query,
        "current_engine": decision.current_engine,
        "router_version": decision.router_version,
    }


def format_decision(
    decision: RoutingDecision,
    database: Optional[RuleDatabase] = None,
    verbose: bool = False,
) -> str:
    """
    Format a decision as a plain-text report.

    Args:
        decision: Result of Router.route()
        database: Rule database, for engine display names
        verbose: Include per-rule match evidence

    Returns:
        Multi-line report
    """
    lines = [
        f"Engine: {_engine_label(decision.recommended_engine, database)}",
        f"State: {decision.state.value}" + (" (routing applied)" if decision.routing_applied else ""),
        f"Reasoning: {decision.reasoning}",
    ]

    if decision.detection_methods:
        lines.append(f"Detection: {', '.join(decision.detection_methods)}")
    if decision.semantic_processing_used:
        lines.append("Semantic analysis: used")

    if decision.matched_rules:
        lines.append(f"Matched rules ({len(decision.matched_rules)}):")
        for match in decision.matched_rules:
            lines.append(
                f"  - [P{match.priority}] {match.rule_id} ({match.detection_method.value})"
            )
            if verbose:
                for fragment in match.matched_fragments:
                    lines.append(f"      {fragment}")

    positive = decision.positive_routing
    if positive is not None:
        verdict = "applied" if decision.positive_routing_used else (
            "meets threshold" if positive.should_route else "below threshold"
        )
        lines.append(
            f"Performance: {positive.category} task, "
            f"{_engine_label(positive.recommended_engine, database)} {positive.engine_score:g}% vs "
            f"{_engine_label(positive.current_engine, database)} {positive.current_engine_score:g}% "
            f"(+{positive.absolute_difference:.1f}, threshold {positive.threshold:g}, {verdict})"
        )

    if decision.safety_override:
        lines.append(f"Safety override: {decision.safety_override}")

    for note in decision.transparency_notes:
        lines.append(f"Note: {note}")
    for note in decision.availability_notes:
        lines.append(f"Availability: {note}")

    return "\n".join(lines)
