"""
Rule Evaluator

Decides which routing rules a message triggers and collects the evidence.

Detection:
1. Topic keywords (exact or fuzzy, max edit distance 1)
2. Dog whistles (coded phrases, same matcher)
3. Semantic similarity against the rule's precomputed embedding

A rule triggers when any detector fires. Semantic thresholds are stricter
for the safety tier (priority 1-2) to suppress false positives on sensitive
content.

The detection method reported per rule follows the precedence
semantic > dog_whistle > keyword > fuzzy. It is informational only and
never affects whether the rule triggers.
"""

import logging
from typing import List, Optional

import numpy as np

from voices_router.fuzzy import find_keyword_matches
from voices_router.models import DetectionMethod, MatchKind, MatchResult, Rule, RuleDatabase
from voices_router.semantic import cosine_similarity

logger = logging.getLogger(__name__)

# Keyword matching is conservative for rule evaluation
RULE_MAX_DISTANCE = 1

SAFETY_SEMANTIC_FLOOR = 0.85
DEFAULT_SEMANTIC_THRESHOLD = 0.80


def semantic_threshold_for(rule: Rule) -> float:
    """Similarity a message must exceed to trigger ``rule`` semantically."""
    if rule.is_safety:
        return max(rule.semantic_threshold or SAFETY_SEMANTIC_FLOOR, SAFETY_SEMANTIC_FLOOR)
    return rule.semantic_threshold or DEFAULT_SEMANTIC_THRESHOLD


class RuleEvaluator:
    """
    Evaluates every rule of a database against one message.

    Stateless apart from its configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(self, max_distance: int = RULE_MAX_DISTANCE, semantic_enabled: bool = True):
        self.max_distance = max_distance
        self.semantic_enabled = semantic_enabled

    def evaluate_rule(
        self,
        rule: Rule,
        normalized_text: str,
        message_embedding: Optional[np.ndarray] = None,
    ) -> Optional[MatchResult]:
        """
        Evaluate a single rule.

        Returns:
            MatchResult if the rule triggered, else None
        """
        fragments = []

        topic_matches = find_keyword_matches(normalized_text, rule.triggers.topics, self.max_distance)
        for match in topic_matches:
            if match.kind is MatchKind.EXACT:
                fragments.append(f'Keyword: "{match.keyword}"')
            else:
                fragments.append(
                    f'Fuzzy keyword: "{match.keyword}" '
                    f'(matched "{match.matched_text}", distance: {match.distance})'
                )

        whistle_matches = find_keyword_matches(
            normalized_text, rule.triggers.dog_whistles, self.max_distance
        )
        for match in whistle_matches:
            if match.kind is MatchKind.EXACT:
                fragments.append(f'Dog whistle: "{match.keyword}"')
            else:
                fragments.append(
                    f'Fuzzy dog whistle: "{match.keyword}" '
                    f'(matched "{match.matched_text}", distance: {match.distance})'
                )

        semantic_score = 0.0
        semantic_hit = False
        if self.semantic_enabled and message_embedding is not None and rule.semantic_embedding is not None:
            semantic_score = cosine_similarity(message_embedding, rule.semantic_embedding)
            if semantic_score > semantic_threshold_for(rule):
                semantic_hit = True
                fragments.append(f"Semantic pattern ({semantic_score * 100:.1f}% similarity)")

        if not (topic_matches or whistle_matches or semantic_hit):
            return None

        if semantic_hit:
            method = DetectionMethod.SEMANTIC
        elif whistle_matches:
            method = DetectionMethod.DOG_WHISTLE
        elif any(m.kind is MatchKind.EXACT for m in topic_matches):
            method = DetectionMethod.KEYWORD
        else:
            method = DetectionMethod.FUZZY

        return MatchResult(
            rule=rule,
            matched_fragments=fragments,
            detection_method=method,
            semantic_score=semantic_score,
            keyword_matches=topic_matches,
            dog_whistle_matches=whistle_matches,
        )

    def evaluate(
        self,
        normalized_text: str,
        database: RuleDatabase,
        message_embedding: Optional[np.ndarray] = None,
    ) -> List[MatchResult]:
        """
        Evaluate all rules of ``database``.

        Args:
            normalized_text: Output of ``normalize(message)``
            database: Rule database (with or without embeddings)
            message_embedding: Message vector, or None for keyword-only detection

        Returns:
            Triggered rules sorted ascending by priority (database order within a priority)
        """
        results = []
        for rule in database.rules:
            result = self.evaluate_rule(rule, normalized_text, message_embedding)
            if result is not None:
                logger.debug(
                    f"Rule {rule.id} (priority {rule.priority}) triggered via "
                    f"{result.detection_method.value}: {result.matched_fragments}"
                )
                results.append(result)

        results.sort(key=lambda r: r.priority)
        return results
