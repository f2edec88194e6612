"""Mixture-of-Voices command line interface.

Commands:
- route: Route a message and explain the decision
- rules / engines: Inspect the rule database
- settings: Show and change user settings
- feedback / feedback-stats: Record and summarize routing feedback
- validate: Check a rule database file
"""

__version__ = "0.1.0"
