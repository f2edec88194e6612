"""
Routing feedback capture.

Stores user verdicts on routed answers in a local SQLite database so routing
quality can be reviewed and exported later.

Storage: ~/.voices/feedback.db

Capture is fire-and-forget: failures are logged and reported as ``False``
but never interrupt routing.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from voices_router.models import Feedback, RoutingDecision

logger = logging.getLogger(__name__)

# Default database location (user's home directory)
DEFAULT_FEEDBACK_DIR = Path.home() / ".voices"
DEFAULT_DB_PATH = DEFAULT_FEEDBACK_DIR / "feedback.db"

# Database schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS routing_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    prompt TEXT NOT NULL,
    routing_destination TEXT NOT NULL,
    routing_rationale TEXT,
    detection_methods TEXT,    -- JSON array
    feedback TEXT NOT NULL CHECK (feedback IN ('positive', 'negative')),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_routing_feedback_timestamp
ON routing_feedback(timestamp);

CREATE INDEX IF NOT EXISTS idx_routing_feedback_destination
ON routing_feedback(routing_destination);
"""


@dataclass
class FeedbackRecord:
    """One user verdict on a routed answer."""

    prompt: str
    routing_destination: str
    feedback: Feedback
    routing_rationale: str = ""
    detection_methods: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_decision(
        cls,
        decision: RoutingDecision,
        feedback: Union[Feedback, str],
    ) -> "FeedbackRecord":
        return cls(
            prompt=decision.original_query,
            routing_destination=decision.recommended_engine,
            routing_rationale=decision.reasoning,
            detection_methods=list(decision.detection_methods),
            feedback=Feedback(feedback),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "prompt": self.prompt,
            "routing_destination": self.routing_destination,
            "routing_rationale": self.routing_rationale,
            "detection_methods": list(self.detection_methods),
            "feedback": self.feedback.value,
        }


def get_feedback_db_path(db_path: Optional[Path] = None) -> Path:
    """Get the path to the feedback database.

    Returns:
        Path to feedback.db, creating parent directories if needed.
    """
    path = Path(db_path) if db_path else DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Ensure database schema exists (idempotent)."""
    conn.executescript(SCHEMA)
    conn.commit()


def store_feedback(record: FeedbackRecord, db_path: Optional[Path] = None) -> bool:
    """Store a feedback record.

    Args:
        record: Feedback to store
        db_path: Database file (default: ~/.voices/feedback.db)

    Returns:
        True if the record was stored, False otherwise
    """
    try:
        path = get_feedback_db_path(db_path)
        conn = sqlite3.connect(path, timeout=5.0)
        try:
            ensure_schema(conn)
            conn.execute(
                """
                INSERT INTO routing_feedback
                (timestamp, prompt, routing_destination, routing_rationale,
                 detection_methods, feedback)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.timestamp,
                    record.prompt,
                    record.routing_destination,
                    record.routing_rationale,
                    json.dumps(record.detection_methods),
                    record.feedback.value,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug(f"Feedback captured: {record.feedback.value} for {record.routing_destination}")
        return True

    except Exception as e:
        # Non-blocking - log warning but don't fail the caller
        logger.warning(f"Failed to store feedback: {e}")
        return False


def load_feedback(db_path: Optional[Path] = None, limit: Optional[int] = None) -> List[FeedbackRecord]:
    """Stored feedback, oldest first (empty when the database doesn't exist)."""
    path = Path(db_path) if db_path else DEFAULT_DB_PATH
    if not path.exists():
        return []

    query = (
        "SELECT timestamp, prompt, routing_destination, routing_rationale, "
        "detection_methods, feedback FROM routing_feedback ORDER BY id ASC"
    )
    params: tuple = ()
    if limit is not None:
        query += " LIMIT ?"
        params = (limit,)

    conn = sqlite3.connect(path, timeout=5.0)
    try:
        ensure_schema(conn)
        rows = conn.execute(query, params).fetchall()
    finally:
        conn.close()

    return [
        FeedbackRecord(
            timestamp=row[0],
            prompt=row[1],
            routing_destination=row[2],
            routing_rationale=row[3] or "",
            detection_methods=json.loads(row[4]) if row[4] else [],
            feedback=Feedback(row[5]),
        )
        for row in rows
    ]


def _empty_stats(path: Path, exists: bool) -> Dict[str, Any]:
    return {
        "total_count": 0,
        "positive_count": 0,
        "negative_count": 0,
        "first_feedback": None,
        "last_feedback": None,
        "by_destination": {},
        "database_path": str(path),
        "database_exists": exists,
    }


def get_feedback_stats(db_path: Optional[Path] = None) -> Dict[str, Any]:
    """Get statistics about captured feedback.

    Returns:
        Dictionary with:
        - total_count, positive_count, negative_count
        - first_feedback / last_feedback: Timestamps (or None)
        - by_destination: {engine: {"positive": n, "negative": n}}
        - database_path, database_exists
    """
    path = Path(db_path) if db_path else DEFAULT_DB_PATH

    if not path.exists():
        return _empty_stats(path, exists=False)

    try:
        conn = sqlite3.connect(path, timeout=5.0)
        try:
            ensure_schema(conn)
            counts = dict(
                conn.execute(
                    "SELECT feedback, COUNT(*) FROM routing_feedback GROUP BY feedback"
                ).fetchall()
            )
            first = conn.execute(
                "SELECT timestamp FROM routing_feedback ORDER BY id ASC LIMIT 1"
            ).fetchone()
            last = conn.execute(
                "SELECT timestamp FROM routing_feedback ORDER BY id DESC LIMIT 1"
            ).fetchone()
            by_destination: Dict[str, Dict[str, int]] = {}
            for engine, verdict, count in conn.execute(
                """
                SELECT routing_destination, feedback, COUNT(*)
                FROM routing_feedback
                GROUP BY routing_destination, feedback
                """
            ):
                by_destination.setdefault(engine, {"positive": 0, "negative": 0})[verdict] = count
        finally:
            conn.close()

        stats = _empty_stats(path, exists=True)
        stats.update(
            {
                "total_count": sum(counts.values()),
                "positive_count": counts.get("positive", 0),
                "negative_count": counts.get("negative", 0),
                "first_feedback": first[0] if first else None,
                "last_feedback": last[0] if last else None,
                "by_destination": by_destination,
            }
        )
        return stats

    except sqlite3.Error as e:
        logger.warning(f"Database error getting feedback stats: {e}")
        stats = _empty_stats(path, exists=True)
        stats["error"] = str(e)
        return stats
