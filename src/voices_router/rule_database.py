"""
Rule Database Loader

Loads the engine catalog, routing rules and positive-routing benchmark
tables from a YAML (or JSON) document into an immutable RuleDatabase.

Architecture:
- The YAML file is the source of truth (human-editable)
- Keyword entries and rule kinds are resolved once at load time
- Validation collects every problem before failing, so a broken document
  is reported in one pass

Usage:
    database = load_rule_database()              # bundled bias_rules.yaml
    database = load_rule_database("rules.yaml")  # custom rules
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from voices_router.errors import RuleValidationError
from voices_router.models import (
    EngineProfile,
    Goal,
    Keyword,
    Performer,
    Rule,
    RuleDatabase,
    RuleKind,
    TaskCategory,
    Triggers,
)

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).parent / "data" / "bias_rules.yaml"

REQUIRED_SECTIONS = ("engines", "routing_rules", "positive_routing_data")


class _RuleDatabaseParser:
    """Single-use parser that accumulates validation problems."""

    def __init__(self, data: Dict[str, Any]):
        self.data = data
        self.problems: List[str] = []
        self.engine_ids: List[str] = []

    def problem(self, message: str) -> None:
        self.problems.append(message)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _keywords(self, entries: Any, where: str) -> tuple:
        if entries is None:
            return ()
        if not isinstance(entries, list):
            self.problem(f"{where}: expected a list of keywords")
            return ()
        keywords = []
        for entry in entries:
            try:
                keywords.append(Keyword.from_entry(entry))
            except ValueError as e:
                self.problem(f"{where}: {e}")
        return tuple(keywords)

    def _engine_refs(self, refs: Any, where: str) -> tuple:
        if refs is None:
            return ()
        if not isinstance(refs, list):
            self.problem(f"{where}: expected a list of engine ids")
            return ()
        for ref in refs:
            if ref not in self.engine_ids:
                self.problem(f"{where}: unknown engine '{ref}'")
        return tuple(str(ref) for ref in refs)

    def _unit_interval(self, value: Any, where: str, default: float = 0.0) -> float:
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.problem(f"{where}: expected a number, got {value!r}")
            return default
        if not 0.0 <= float(value) <= 1.0:
            self.problem(f"{where}: {value} is outside [0, 1]")
        return float(value)

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def parse_engines(self) -> Dict[str, EngineProfile]:
        raw = self.data.get("engines")
        if not isinstance(raw, dict) or not raw:
            self.problem("engines: expected a non-empty mapping of engine id to profile")
            return {}

        self.engine_ids = [str(engine_id) for engine_id in raw]
        engines = {}
        for engine_id, spec in raw.items():
            where = f"engines.{engine_id}"
            if not isinstance(spec, dict):
                self.problem(f"{where}: expected a mapping")
                continue
            goal_achievements = {}
            for goal, score in (spec.get("goal_achievements") or {}).items():
                goal_achievements[goal] = self._unit_interval(score, f"{where}.goal_achievements.{goal}")
            engines[str(engine_id)] = EngineProfile(
                id=str(engine_id),
                name=str(spec.get("name", engine_id)),
                provider=str(spec.get("provider", "")),
                bias_profile=str(spec.get("bias_profile", "")),
                credential_key=spec.get("credential_key"),
                capability_scores={
                    k: float(v) for k, v in (spec.get("capability_scores") or {}).items()
                },
                goal_achievements=goal_achievements,
                conflicting_capabilities=tuple(spec.get("conflicting_capabilities") or ()),
                strengths=tuple(spec.get("strengths") or ()),
                weaknesses=tuple(spec.get("weaknesses") or ()),
            )
        return engines

    def _rule_kind(self, spec: Dict[str, Any], where: str) -> Optional[RuleKind]:
        declared = spec.get("rule_type")
        if declared is None:
            if spec.get("required_goals"):
                return RuleKind.GOAL_BASED
            if spec.get("avoid_engines"):
                return RuleKind.AVOIDANCE
            if spec.get("prefer_engines"):
                return RuleKind.PREFERENCE
            self.problem(f"{where}: cannot infer rule_type (no goals, avoid_engines or prefer_engines)")
            return None
        try:
            return RuleKind(declared)
        except ValueError:
            valid = ", ".join(kind.value for kind in RuleKind)
            self.problem(f"{where}: unknown rule_type '{declared}' (expected one of: {valid})")
            return None

    def _goals(self, raw: Any, where: str) -> tuple:
        if raw is None:
            return ()
        if not isinstance(raw, dict):
            self.problem(f"{where}: expected a mapping of goal name to {{weight, threshold}}")
            return ()
        goals = []
        for name, spec in raw.items():
            spec = spec or {}
            weight = spec.get("weight", 1.0)
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
                self.problem(f"{where}.{name}: weight must be a positive number, got {weight!r}")
                weight = 1.0
            threshold = self._unit_interval(spec.get("threshold"), f"{where}.{name}.threshold")
            goals.append(Goal(name=str(name), weight=float(weight), threshold=threshold))
        return tuple(goals)

    def parse_rule(self, spec: Any, index: int) -> Optional[Rule]:
        if not isinstance(spec, dict):
            self.problem(f"routing_rules[{index}]: expected a mapping")
            return None

        rule_id = spec.get("id")
        if not rule_id:
            self.problem(f"routing_rules[{index}]: missing id")
            rule_id = f"routing_rules[{index}]"
        where = f"rule {rule_id}"

        priority = spec.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
            self.problem(f"{where}: priority must be a positive integer, got {priority!r}")
            priority = 5

        confidence = self._unit_interval(
            spec.get("confidence_threshold"), f"{where}.confidence_threshold", default=0.75
        )

        raw_triggers = spec.get("triggers") or {}
        triggers = Triggers(
            topics=self._keywords(raw_triggers.get("topics"), f"{where}.triggers.topics"),
            dog_whistles=self._keywords(raw_triggers.get("dog_whistles"), f"{where}.triggers.dog_whistles"),
        )
        if triggers.is_empty:
            self.problem(f"{where}: no trigger topics or dog whistles")

        kind = self._rule_kind(spec, where)
        goals = self._goals(spec.get("required_goals"), f"{where}.required_goals")
        avoid = self._engine_refs(spec.get("avoid_engines"), f"{where}.avoid_engines")
        prefer = self._engine_refs(spec.get("prefer_engines"), f"{where}.prefer_engines")

        if kind is RuleKind.GOAL_BASED and not goals:
            self.problem(f"{where}: goal-based rule without required_goals")
        elif kind is RuleKind.AVOIDANCE and not avoid:
            self.problem(f"{where}: avoidance rule without avoid_engines")
        elif kind is RuleKind.PREFERENCE and not prefer:
            self.problem(f"{where}: preference rule without prefer_engines")

        if kind is None:
            return None

        return Rule(
            id=str(rule_id),
            priority=priority,
            kind=kind,
            triggers=triggers,
            confidence_threshold=confidence,
            description=str(spec.get("description", "")),
            reason=str(spec.get("reason", "")),
            avoid_engines=avoid,
            prefer_engines=prefer,
            required_goals=goals,
            conflicting_capabilities=tuple(spec.get("conflicting_capabilities") or ()),
            semantic_threshold=spec.get("semantic_threshold"),
        )

    def parse_rules(self) -> tuple:
        raw = self.data.get("routing_rules")
        if not isinstance(raw, list):
            self.problem("routing_rules: expected a list of rules")
            return ()

        rules = []
        seen = set()
        for index, spec in enumerate(raw):
            rule = self.parse_rule(spec, index)
            if rule is None:
                continue
            if rule.id in seen:
                self.problem(f"rule {rule.id}: duplicate rule id")
                continue
            seen.add(rule.id)
            rules.append(rule)
        return tuple(rules)

    def parse_task_categories(self) -> Dict[str, TaskCategory]:
        positive = self.data.get("positive_routing_data")
        raw = positive.get("task_categories") if isinstance(positive, dict) else None
        if not isinstance(raw, dict):
            self.problem(
                "positive_routing_data.task_categories: expected a mapping of category name to definition"
            )
            return {}

        categories = {}
        for name, spec in raw.items():
            where = f"positive_routing_data.task_categories.{name}"
            if not isinstance(spec, dict):
                self.problem(f"{where}: expected a mapping")
                continue
            performers = []
            for entry in spec.get("top_performers") or []:
                engine_id = entry.get("engine") if isinstance(entry, dict) else None
                score = entry.get("score") if isinstance(entry, dict) else None
                if engine_id not in self.engine_ids:
                    self.problem(f"{where}.top_performers: unknown engine '{engine_id}'")
                    continue
                if isinstance(score, bool) or not isinstance(score, (int, float)):
                    self.problem(f"{where}.top_performers.{engine_id}: score must be a number")
                    continue
                performers.append(Performer(engine=engine_id, score=float(score)))
            if not performers:
                self.problem(f"{where}: no top_performers")
            categories[str(name)] = TaskCategory(
                name=str(name),
                description=str(spec.get("description", "")),
                keywords=self._keywords(spec.get("keywords"), f"{where}.keywords"),
                top_performers=tuple(performers),
                goal_equivalent=spec.get("goal_equivalent"),
            )
        return categories


def parse_rule_database(data: Any, source: Optional[str] = None) -> RuleDatabase:
    """
    Build a RuleDatabase from an already-parsed document.

    Args:
        data: Parsed YAML/JSON mapping
        source: Label for error messages (usually the file path)

    Returns:
        Validated RuleDatabase

    Raises:
        RuleValidationError: Listing every problem found
    """
    if not isinstance(data, dict):
        raise RuleValidationError(["document root must be a mapping"], source)

    missing = [section for section in REQUIRED_SECTIONS if section not in data]
    if missing:
        raise RuleValidationError([f"missing required section '{s}'" for s in missing], source)

    parser = _RuleDatabaseParser(data)
    engines = parser.parse_engines()
    rules = parser.parse_rules()
    categories = parser.parse_task_categories()

    if parser.problems:
        raise RuleValidationError(parser.problems, source)

    return RuleDatabase(
        engines=engines,
        rules=rules,
        task_categories=categories,
        metadata=dict(data.get("metadata") or {}),
    )


def load_rule_database(path: Optional[Union[str, Path]] = None) -> RuleDatabase:
    """
    Load and validate a rule database file.

    JSON documents are accepted too: YAML is a superset, so both parse
    through ``yaml.safe_load``.

    Args:
        path: YAML or JSON file (defaults to the bundled bias_rules.yaml)

    Returns:
        Validated RuleDatabase

    Raises:
        FileNotFoundError: If the file does not exist
        RuleValidationError: If the document is malformed
    """
    rules_path = Path(path) if path else DEFAULT_RULES_PATH
    if not rules_path.exists():
        raise FileNotFoundError(f"Rule database not found: {rules_path}")

    with open(rules_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RuleValidationError([f"unparseable document: {e}"], str(rules_path)) from e

    database = parse_rule_database(data, source=str(rules_path))
    logger.info(
        f"Loaded rule database v{database.version} from {rules_path}: "
        f"{len(database.engines)} engines, {len(database.rules)} rules, "
        f"{len(database.task_categories)} task categories"
    )
    return database
