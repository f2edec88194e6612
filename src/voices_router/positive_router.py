"""
Positive (Performance) Router

Suggests a better-performing engine for the detected task category using
benchmark scores from the rule database.

Scoring per category:
- +1 per keyword matched by the fuzzy matcher (lenient, max distance 2)
- +1 per keyword contained verbatim in the message
- Category-specific phrasing bonuses (see CATEGORY_PATTERNS)

The best available performer in the top category is compared against the
current engine's own benchmark score, or against the runner-up available
performer when there is no usable current engine. A suggestion is always
returned for transparency, but ``should_route`` is only set when the advantage
reaches the configured point threshold.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from voices_router.fuzzy import find_keyword_matches
from voices_router.models import PositiveRoutingResult, RuleDatabase, TaskCategory
from voices_router.normalizer import normalize

logger = logging.getLogger(__name__)

# Lenient distance for task detection (rules use 1)
CATEGORY_MAX_DISTANCE = 2

DEFAULT_THRESHOLD = 5.0

# (category, pattern, bonus)
CATEGORY_PATTERNS = [
    (
        "coding",
        re.compile(
            r"write.*program|create.*code|build.*app|develop.*software|"
            r"debug.*code|implement.*function|generate.*script"
        ),
        3,
    ),
    (
        "coding",
        re.compile(r"python|javascript|java|react|html|css|sql|git|php|ruby|swift|kotlin|pythno"),
        2,
    ),
    (
        "mathematics",
        re.compile(r"solve.*equation|calculate|find.*derivative|integral|probability|theorem|proof"),
        3,
    ),
    (
        "reasoning",
        re.compile(r"logic.*puzzle|who.*owns|if.*all.*and.*some|deduce|infer|analyze.*argument"),
        3,
    ),
    (
        "multimodal",
        re.compile(r"analyze.*image|describe.*photo|what.*see.*picture|chart.*analysis|visual"),
        3,
    ),
]


def _pct(score: float) -> str:
    return f"{score:g}%"


def performance_message(
    engine_a: str,
    score_a: float,
    engine_b: str,
    score_b: float,
) -> Dict[str, str]:
    """
    Human-readable comparison of two benchmark scores.

    Returns:
        Dict with ``display``, ``explanation`` and ``short`` strings
    """
    diff = score_a - score_b
    return {
        "display": f"{diff:.1f} points higher ({_pct(score_a)} vs {_pct(score_b)})",
        "explanation": f"{engine_a} scores {_pct(score_a)} vs {engine_b} at {_pct(score_b)}",
        "short": f"+{diff:.1f} points ({_pct(score_a)} vs {_pct(score_b)})",
    }


class PositiveRouter:
    """Benchmark-driven engine suggestions."""

    def __init__(self, database: RuleDatabase, max_distance: int = CATEGORY_MAX_DISTANCE):
        self.database = database
        self.max_distance = max_distance

    def score_category(self, category: TaskCategory, lowered: str, normalized: str) -> int:
        """Match score of one category (0 = not detected)."""
        score = len(find_keyword_matches(normalized, category.keywords, self.max_distance))
        score += sum(1 for keyword in category.keywords if keyword.word.lower() in lowered)
        for name, pattern, bonus in CATEGORY_PATTERNS:
            if name == category.name and pattern.search(lowered):
                score += bonus
        return score

    def score_categories(self, message: str) -> Dict[str, int]:
        """Scores of all detected categories, in database order."""
        lowered = message.lower()
        normalized = normalize(message)
        scores = {}
        for name, category in self.database.task_categories.items():
            score = self.score_category(category, lowered, normalized)
            if score > 0:
                scores[name] = score
                logger.debug(f"Positive routing: {name} scored {score} points")
        return scores

    def suggest(
        self,
        message: str,
        available_engines: Sequence[str],
        current_engine: Optional[str],
        threshold: float = DEFAULT_THRESHOLD,
    ) -> Optional[PositiveRoutingResult]:
        """
        Suggest an engine for the message's task category.

        Without a usable current engine (``None``), the best available
        performer is compared against the runner-up available performer.

        Args:
            message: Raw user message
            available_engines: Engine ids with configured credentials
            current_engine: Engine that would answer without routing, or None
            threshold: Minimum point advantage for ``should_route``

        Returns:
            PositiveRoutingResult, or None when no category is detected, no
            engine in the category is available, the current engine has no
            benchmark, the current engine is already the best performer, or
            there is no runner-up to compare against
        """
        scores = self.score_categories(message)
        if not scores:
            logger.debug("No positive routing category matched")
            return None

        # max() keeps the first category on ties
        category_name = max(scores, key=lambda name: scores[name])
        category = self.database.task_categories[category_name]
        match_score = scores[category_name]

        # Stable sort: equal scores keep table order
        ranked = sorted(
            (p for p in category.top_performers if p.engine in available_engines),
            key=lambda p: p.score,
            reverse=True,
        )
        if not ranked:
            logger.debug(f"No engines available for {category_name}")
            return None
        best = ranked[0]

        if current_engine is None:
            if len(ranked) < 2:
                logger.debug(f"Only one available engine benchmarked for {category_name}")
                return None
            current_engine = ranked[1].engine
            current_score = ranked[1].score
        else:
            current_score = category.score_for(current_engine)
            if current_score is None:
                logger.debug(f"Current engine {current_engine} has no {category_name} benchmark")
                return None

        if best.engine == current_engine:
            logger.debug(f"Current engine {current_engine} is already optimal for {category_name}")
            return None

        difference = best.score - current_score
        should_route = difference >= threshold
        message_parts = performance_message(
            self.database.engine_name(best.engine),
            best.score,
            self.database.engine_name(current_engine),
            current_score,
        )
        outcome = "routing to better engine" if should_route else "staying with current engine due to threshold"
        reasoning = f"Detected {category_name} task (score: {match_score}). {message_parts['explanation']} - {outcome}."

        if should_route:
            logger.info(f"Positive routing triggered: {category_name} -> {best.engine} (+{difference:.1f})")
        else:
            logger.debug(f"Point difference {difference:.1f} below {threshold} point threshold")

        return PositiveRoutingResult(
            category=category_name,
            category_description=category.description,
            match_score=match_score,
            recommended_engine=best.engine,
            engine_score=best.score,
            current_engine=current_engine,
            current_engine_score=current_score,
            absolute_difference=difference,
            threshold=threshold,
            should_route=should_route,
            reasoning=reasoning,
        )

    def detected_categories(self, message: str) -> List[str]:
        """Detected category names, best first."""
        scores = self.score_categories(message)
        return sorted(scores, key=lambda name: scores[name], reverse=True)
