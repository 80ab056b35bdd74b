"""Near-duplicate detection over normalized title fingerprints."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Iterable, List, Optional

from riskintel.db import DedupIndexEntry, DedupIndexRepository, SupabaseError
from riskintel.utils import compute_sha256, extract_domain, setup_logger, utc_now

logger = setup_logger(__name__)

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
        "her", "was", "one", "our", "out", "has", "have", "been", "were", "will",
        "more", "when", "who", "may", "says", "said", "from", "with", "this",
        "that", "their", "what", "would", "about", "which", "could", "into",
    }
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def tokenize_title(title: str) -> List[str]:
    """Lower-case, strip punctuation, drop short tokens and stop words; sorted and unique."""
    text = _PUNCTUATION_RE.sub(" ", (title or "").lower())
    tokens = {token for token in text.split() if len(token) > 2 and token not in STOP_WORDS}
    return sorted(tokens)


def title_hash(tokens: Iterable[str]) -> str:
    return compute_sha256("|".join(sorted(set(tokens))))


def jaccard_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    a, b = set(first), set(second)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    similarity: float = 0.0
    method: str = "none"
    matched_hash: Optional[str] = None
    matched_event_id: Optional[str] = None


class DuplicateDetector:
    """Two-tier detector: exact hash lookup, then Jaccard over a recent window."""

    def __init__(
        self,
        repository: DedupIndexRepository,
        *,
        threshold: float = 0.7,
        window_days: int = 7,
        recent_limit: int = 100,
    ) -> None:
        self._repository = repository
        self._threshold = threshold
        self._window = timedelta(days=window_days)
        self._recent_limit = recent_limit

    async def check(
        self,
        title: str,
        url: str,
        *,
        event_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DuplicateCheckResult:
        """Only fingerprints indexed for the same organization count as duplicates."""
        now = now or utc_now()
        tokens = tokenize_title(title)
        fingerprint = title_hash(tokens)

        try:
            exact = await self._repository.find_by_hash(fingerprint, now, organization_id=organization_id)
            if exact is not None and not self._is_self(exact, event_id):
                logger.info("🔁 Exact duplicate: %s", title[:60])
                return DuplicateCheckResult(
                    True, 1.0, "exact", exact.title_hash, exact.event_id
                )

            if exact is None:
                recent = await self._repository.list_recent(
                    now, limit=self._recent_limit, organization_id=organization_id
                )
                best = self._best_match(tokens, recent, event_id)
                if best is not None:
                    entry, similarity = best
                    logger.info("🔁 Fuzzy duplicate (%.2f): %s", similarity, title[:60])
                    return DuplicateCheckResult(
                        True, similarity, "fuzzy", entry.title_hash, entry.event_id
                    )

                await self._repository.upsert(
                    DedupIndexEntry(
                        title_hash=fingerprint,
                        title_tokens=tokens,
                        source_domain=extract_domain(url),
                        event_id=event_id,
                        organization_id=organization_id,
                        created_at=now,
                        expires_at=now + self._window,
                    )
                )
        except SupabaseError as exc:
            logger.warning("⚠️ Duplicate check failed, treating as unique: %s", exc)
            return DuplicateCheckResult(False, method="error")

        return DuplicateCheckResult(False)

    def _best_match(
        self,
        tokens: List[str],
        entries: Iterable[DedupIndexEntry],
        event_id: Optional[str],
    ) -> Optional[tuple[DedupIndexEntry, float]]:
        best: Optional[tuple[DedupIndexEntry, float]] = None
        for entry in entries:
            if self._is_self(entry, event_id):
                continue
            similarity = jaccard_similarity(tokens, entry.title_tokens)
            if similarity >= self._threshold and (best is None or similarity > best[1]):
                best = (entry, similarity)
        return best

    @staticmethod
    def _is_self(entry: DedupIndexEntry, event_id: Optional[str]) -> bool:
        return event_id is not None and entry.event_id == event_id
