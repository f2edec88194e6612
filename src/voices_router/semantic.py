"""
Semantic similarity scoring and the shared embedding service.

Architecture:
    EmbeddingService wraps a sentence-embedding model (BGE-base by default).
    One instance is constructed at process start and injected into the
    routers; it loads the model lazily, exactly once, on first use.

    Rule embeddings are precomputed once at startup by averaging the
    embeddings of a few trigger phrases per rule. Scoring a message against
    a rule is then a cosine similarity with no I/O.

Degradation:
    A missing optional dependency, a failed model load or a failed encode
    call all surface as EmbeddingUnavailableError. Routing code calls
    ``try_embed`` and branches on the returned EmbeddingResult, falling back
    to keyword-only detection.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from voices_router.errors import EmbeddingUnavailableError
from voices_router.models import Rule, RuleDatabase

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "BAAI/bge-base-en-v1.5"
DEFAULT_MAX_TOKENS = 512
DEFAULT_MAX_CHARS = 380

# Trigger phrases sampled per rule for its embedding
DEFAULT_TOPIC_SAMPLES = 5
DEFAULT_DOG_WHISTLE_SAMPLES = 3

# Pause between embedding calls during precomputation
DEFAULT_PRECOMPUTE_DELAY = 0.1


class EmbeddingStatus(str, Enum):
    """Lifecycle of the embedding model."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class EmbeddingResult:
    """Outcome of an embedding call: a vector or an error message."""

    vector: Optional[np.ndarray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


def load_sentence_transformer(model_name: str, max_tokens: int) -> Any:
    """
    Default model loader.

    Imports sentence-transformers lazily so the package works (keyword-only)
    without the optional ``semantic`` extra installed.
    """
    try:
        from sentence_transformers import SentenceTransformer
    except ImportError as e:
        raise EmbeddingUnavailableError(
            "sentence-transformers is not installed "
            "(pip install 'mixture-of-voices-router[semantic]')"
        ) from e

    logger.info(f"Loading embedding model {model_name} ({max_tokens} tokens)...")
    model = SentenceTransformer(model_name)
    model.max_seq_length = max_tokens
    return model


class EmbeddingService:
    """
    Process-wide text-to-vector service.

    Thread Safety:
    - ``initialize`` is idempotent; concurrent awaiters share one load
    - The loaded model is read-only afterwards

    Args:
        model_name: Sentence-transformers model identifier
        max_tokens: Token budget; longer input is truncated by the model
        max_chars: Character cap applied before encoding
        loader: Callable ``(model_name, max_tokens) -> model`` where model has
            ``encode(text, normalize_embeddings=True)``
    """

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_chars: int = DEFAULT_MAX_CHARS,
        loader: Optional[Callable[[str, int], Any]] = None,
    ):
        self.model_name = model_name
        self.max_tokens = max_tokens
        self.max_chars = max_chars
        self._loader = loader or load_sentence_transformer
        self._model: Any = None
        self._status = EmbeddingStatus.UNLOADED
        self._error: Optional[str] = None
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def status(self) -> EmbeddingStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is EmbeddingStatus.READY

    @property
    def last_error(self) -> Optional[str]:
        return self._error

    async def initialize(self) -> Any:
        """
        Load the model once.

        Returns:
            The loaded model

        Raises:
            EmbeddingUnavailableError: If loading failed (now or previously)
        """
        if self._model is not None:
            return self._model

        async with self._lock:
            # Another awaiter may have finished the load while we waited
            if self._model is not None:
                return self._model
            if self._status is EmbeddingStatus.ERROR:
                raise EmbeddingUnavailableError(self._error or "Embedding model unavailable")

            self._status = EmbeddingStatus.LOADING
            try:
                model = await asyncio.to_thread(self._loader, self.model_name, self.max_tokens)
            except EmbeddingUnavailableError as e:
                self._mark_failed(str(e))
                raise
            except Exception as e:
                self._mark_failed(f"Failed to load embedding model {self.model_name}: {e}")
                raise EmbeddingUnavailableError(self._error) from e

            self._model = model
            self._status = EmbeddingStatus.READY
            self.load_count += 1
            logger.info(f"Embedding model ready: {self.model_name}")
            return model

    def _mark_failed(self, message: str) -> None:
        self._status = EmbeddingStatus.ERROR
        self._error = message
        logger.warning(f"Semantic processing unavailable: {message}")

    def reset(self) -> None:
        """Forget a failed load so the next call retries."""
        if self._status is EmbeddingStatus.ERROR:
            self._status = EmbeddingStatus.UNLOADED
            self._error = None

    def close(self) -> None:
        """Drop the model (shutdown)."""
        self._model = None
        self._status = EmbeddingStatus.UNLOADED

    async def embed(self, text: str) -> np.ndarray:
        """
        Embed text as a normalized float32 vector.

        Raises:
            EmbeddingUnavailableError: If the model is unavailable or encoding fails
        """
        model = await self.initialize()
        truncated = text[: self.max_chars] if len(text) > self.max_chars else text
        try:
            raw = await asyncio.to_thread(model.encode, truncated, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingUnavailableError(f"Embedding generation failed: {e}") from e
        return np.asarray(raw, dtype=np.float32).reshape(-1)

    async def try_embed(self, text: str) -> EmbeddingResult:
        """Embed text, returning the failure as a value instead of raising."""
        try:
            return EmbeddingResult(vector=await self.embed(text))
        except EmbeddingUnavailableError as e:
            return EmbeddingResult(error=str(e))


def cosine_similarity(first: Optional[np.ndarray], second: Optional[np.ndarray]) -> float:
    """
    Cosine similarity in [-1, 1].

    Returns 0.0 when either vector is missing, dimensions differ or a norm is zero.
    """
    if first is None or second is None:
        return 0.0
    a = np.asarray(first, dtype=np.float64).reshape(-1)
    b = np.asarray(second, dtype=np.float64).reshape(-1)
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    similarity = float(np.dot(a, b) / norm)
    return max(-1.0, min(1.0, similarity))


def average_embeddings(vectors: Iterable[np.ndarray]) -> Optional[np.ndarray]:
    """Element-wise mean of equally sized vectors (None for no input)."""
    stacked = [np.asarray(v, dtype=np.float32).reshape(-1) for v in vectors]
    if not stacked:
        return None
    return np.mean(np.stack(stacked), axis=0)


def rule_training_phrases(
    rule: Rule,
    topic_samples: int = DEFAULT_TOPIC_SAMPLES,
    dog_whistle_samples: int = DEFAULT_DOG_WHISTLE_SAMPLES,
) -> List[str]:
    """First few topic terms plus first few dog-whistle terms of a rule."""
    topics = [k.word for k in rule.triggers.topics[:topic_samples]]
    whistles = [k.word for k in rule.triggers.dog_whistles[:dog_whistle_samples]]
    return topics + whistles


@dataclass
class PrecomputeReport:
    """Progress of rule-embedding precomputation.

    Survives cancellation: ``embeddings`` holds every rule finished so far,
    so a later call can resume with ``pending`` only.
    """

    embeddings: Dict[str, np.ndarray] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def embedded(self) -> List[str]:
        return list(self.embeddings.keys())

    def apply(self, database: RuleDatabase) -> RuleDatabase:
        """Database copy with the finished embeddings attached."""
        return database.with_embeddings(self.embeddings)


async def precompute_rule_embeddings(
    database: RuleDatabase,
    service: EmbeddingService,
    delay: float = DEFAULT_PRECOMPUTE_DELAY,
    topic_samples: int = DEFAULT_TOPIC_SAMPLES,
    dog_whistle_samples: int = DEFAULT_DOG_WHISTLE_SAMPLES,
    report: Optional[PrecomputeReport] = None,
    rule_ids: Optional[Iterable[str]] = None,
) -> PrecomputeReport:
    """
    Precompute one averaged embedding per rule.

    Rules are processed sequentially with ``delay`` seconds between items so
    the embedding service is not flooded. Phrases that fail are skipped; a
    rule with no successful phrase stays keyword-only. If the model itself is
    unavailable the batch stops and all remaining rules stay keyword-only.

    Cancellation (shutdown) re-raises CancelledError after marking the
    report; the embeddings finished so far remain usable via
    ``report.apply(database)`` and ``report.pending`` lists what is left.

    Args:
        database: Loaded rule database (not mutated)
        service: Embedding service
        delay: Seconds to sleep between rules
        topic_samples: Topic terms sampled per rule
        dog_whistle_samples: Dog-whistle terms sampled per rule
        report: Existing report to resume into
        rule_ids: Restrict to these rule ids (e.g. ``report.pending``)

    Returns:
        PrecomputeReport
    """
    report = report or PrecomputeReport()
    wanted = set(rule_ids) if rule_ids is not None else None
    queue = [
        rule for rule in database.rules
        if (wanted is None or rule.id in wanted) and rule.id not in report.embeddings
    ]
    report.pending = [rule.id for rule in queue]
    report.cancelled = False

    logger.info(f"Pre-generating semantic embeddings for {len(queue)} rules...")

    try:
        for rule in queue:
            vectors = []
            for phrase in rule_training_phrases(rule, topic_samples, dog_whistle_samples):
                try:
                    vectors.append(await service.embed(phrase))
                except EmbeddingUnavailableError as e:
                    if service.status is EmbeddingStatus.ERROR:
                        logger.warning(
                            f"Embedding model unavailable, {len(report.pending)} rules stay keyword-only"
                        )
                        report.skipped.extend(report.pending)
                        report.pending = []
                        return report
                    logger.warning(f"Failed to embed phrase {phrase!r} for rule {rule.id}: {e}")

            averaged = average_embeddings(vectors)
            if averaged is not None:
                report.embeddings[rule.id] = averaged
                logger.debug(f"Semantic pattern ready for rule {rule.id} ({len(vectors)} phrases)")
            else:
                report.skipped.append(rule.id)
                logger.warning(f"No semantic embedding generated for rule {rule.id}")
            report.pending.remove(rule.id)

            if delay > 0 and report.pending:
                await asyncio.sleep(delay)
    except asyncio.CancelledError:
        report.cancelled = True
        logger.warning(
            f"Rule embedding precomputation cancelled: {len(report.embeddings)} done, "
            f"{len(report.pending)} pending"
        )
        raise

    logger.info(
        f"Semantic rule generation complete: {len(report.embeddings)} embedded, "
        f"{len(report.skipped)} keyword-only"
    )
    return report
