"""
Goal-Based Engine Selector

Picks the engine that best achieves a rule's weighted goals.

Algorithm:
1. Drop engines whose conflicting capabilities intersect the rule's conflicts
2. Drop engines below any goal's threshold (missing achievement data = 0)
3. Score the rest: sum(achievement * weight) / sum(weight)
4. Highest score wins; ties keep available-engine order

Pure functions only: engine profiles are never mutated.
"""

import logging
from typing import Iterable, List, Mapping, Optional, Sequence

from voices_router.models import EngineProfile, Goal, GoalSelection

logger = logging.getLogger(__name__)


def calculate_goal_score(engine: EngineProfile, goals: Sequence[Goal]) -> float:
    """Weight-normalized mean goal achievement of ``engine``."""
    total_weight = sum(goal.weight for goal in goals)
    if total_weight <= 0:
        return 0.0
    weighted = sum(engine.achievement(goal.name) * goal.weight for goal in goals)
    return weighted / total_weight


def meets_goal_thresholds(engine: EngineProfile, goals: Sequence[Goal]) -> bool:
    return all(engine.achievement(goal.name) >= goal.threshold for goal in goals)


def has_conflicting_capabilities(engine: EngineProfile, conflicts: Iterable[str]) -> bool:
    return bool(set(engine.conflicting_capabilities) & set(conflicts))


def rank_engines_for_goals(
    goals: Sequence[Goal],
    conflicts: Sequence[str],
    available_engines: Sequence[str],
    engines: Mapping[str, EngineProfile],
) -> List[tuple]:
    """
    Qualifying engines with their scores, best first.

    Returns:
        List of (engine_id, score); empty when nothing qualifies
    """
    candidates = []
    for engine_id in available_engines:
        profile = engines.get(engine_id)
        if profile is None:
            continue
        if has_conflicting_capabilities(profile, conflicts):
            logger.debug(f"Engine {engine_id} excluded: conflicting capabilities")
            continue
        if not meets_goal_thresholds(profile, goals):
            logger.debug(f"Engine {engine_id} excluded: below goal threshold")
            continue
        candidates.append((engine_id, calculate_goal_score(profile, goals)))

    # sort() is stable, so equal scores keep available-engine order
    candidates.sort(key=lambda item: item[1], reverse=True)
    return candidates


def select_engine_for_goals(
    goals: Sequence[Goal],
    conflicts: Sequence[str],
    available_engines: Sequence[str],
    engines: Mapping[str, EngineProfile],
    rule_id: Optional[str] = None,
) -> Optional[GoalSelection]:
    """
    Select the best available engine for the given goals.

    Args:
        goals: Required goals with weights and thresholds
        conflicts: Capabilities that disqualify an engine
        available_engines: Engine ids with configured credentials, in catalog order
        engines: Engine catalog
        rule_id: Rule that requested the selection (recorded on the result)

    Returns:
        GoalSelection, or None when no engine qualifies
    """
    candidates = rank_engines_for_goals(goals, conflicts, available_engines, engines)
    if not candidates:
        logger.info(f"No engine qualifies for goals {[g.name for g in goals]} (rule {rule_id})")
        return None

    engine_id, score = candidates[0]
    return GoalSelection(
        engine_id=engine_id,
        engine_name=engines[engine_id].name,
        goal_score=score,
        rule_id=rule_id,
        candidates=candidates,
    )


def _humanize(name: str) -> str:
    return name.replace("_", " ")


def explain_goal_selection(
    selection: GoalSelection,
    goals: Sequence[Goal],
    conflicts: Sequence[str],
    current_engine: Optional[str] = None,
    trigger: Optional[str] = None,
) -> str:
    """
    Natural-language rationale for a goal-based selection.

    Example:
        "Goal-based routing (dog_whistle): Routed to Claude to achieve unbiased
        political coverage (96.2% goal achievement). Engines with conflicting
        capabilities avoided: china political independence, taiwan coverage"
    """
    primary = _humanize(goals[0].name) if goals else "the requested goals"
    achievement = f"({selection.goal_score * 100:.1f}% goal achievement)"
    prefix = f"Goal-based routing ({trigger}): " if trigger else "Goal-based routing: "

    if selection.engine_id == current_engine:
        return f"{prefix}Current engine {selection.engine_name} is optimal for achieving {primary} {achievement}"

    explanation = f"{prefix}Routed to {selection.engine_name} to achieve {primary} {achievement}"
    if conflicts:
        avoided = ", ".join(_humanize(c) for c in conflicts)
        explanation += f". Engines with conflicting capabilities avoided: {avoided}"
    return explanation
