"""Exception hierarchy for the engine router.

Load-time problems (malformed rule database, bad configuration) are fatal and
propagate to the caller. Routing-time conditions such as a missing embedding
model are recovered locally and never surface as exceptions from routing.
"""

from typing import List, Optional


class RouterError(Exception):
    """Base class for all router errors."""
    pass


class ValidationError(RouterError):
    """Raised when reference data (rules, engines) fails validation."""
    pass


class RuleValidationError(ValidationError):
    """Raised when a rule database is malformed.

    Collects every problem found in one pass so the whole document can be
    fixed at once instead of one error per load attempt.
    """

    def __init__(self, problems: List[str], source: Optional[str] = None):
        self.problems = list(problems)
        self.source = source
        where = f" in {source}" if source else ""
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f"; ... ({len(self.problems) - 5} more)"
        super().__init__(f"Invalid rule database{where}: {summary}")


class ConfigurationError(RouterError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class SettingsError(RouterError):
    """Raised when a settings value is rejected."""
    pass


class EmbeddingUnavailableError(RouterError):
    """Raised when the embedding model cannot be loaded or used."""
    pass


class NoEngineAvailableError(RouterError):
    """Raised when no engine has configured credentials."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "No API keys configured. Add at least one provider API key "
            "(e.g. `voices-router settings set api_keys.anthropic <key>`) to route messages."
        )
