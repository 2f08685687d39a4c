"""
Candidate selection: merge fingerprint and embedding signals into a ranked,
size-bounded short-list for deep verification.

A fingerprint match is treated as near-certain physical evidence and always
outranks embedding similarity; similarity is the fallback signal for copies
that were re-encoded, cropped or restyled enough to defeat the fingerprint.
"""

from typing import Iterable, List, Optional, Sequence

import structlog

from copyguard import config
from copyguard.errors import LengthMismatch
from copyguard.models.assessment import Candidate
from copyguard.models.image import ImageRecord
from copyguard.services.similarity import cosine_similarity, hamming_distance

logger = structlog.get_logger()


def score_record(record: ImageRecord,
                 target_fingerprint: Optional[str],
                 target_embedding: Optional[Sequence[float]],
                 fingerprint_threshold: int = config.FINGERPRINT_MATCH_THRESHOLD) -> Candidate:
    """Compute both retrieval signals for one collection record."""
    distance = None
    if target_fingerprint and record.fingerprint:
        try:
            distance = hamming_distance(target_fingerprint, record.fingerprint)
        except LengthMismatch as e:
            logger.warning("Fingerprint distance unknown", reference_id=record.id, error=str(e))

    similarity = 0.0
    if target_embedding and record.embedding:
        similarity = cosine_similarity(target_embedding, record.embedding)

    return Candidate(
        record=record,
        fingerprint_match=distance is not None and distance <= fingerprint_threshold,
        fingerprint_distance=distance,
        vector_similarity=similarity,
    )


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Fingerprint matches first, then by similarity; ties keep their input order."""
    return sorted(candidates, key=lambda c: (not c.fingerprint_match, -c.vector_similarity))


def select_candidates(target_fingerprint: Optional[str],
                      target_embedding: Optional[Sequence[float]],
                      records: Sequence[ImageRecord],
                      max_candidates: int = config.MAX_CANDIDATES,
                      fingerprint_threshold: int = config.FINGERPRINT_MATCH_THRESHOLD) -> List[Candidate]:
    """
    Short-list collection records for deep verification.

    Args:
        target_fingerprint: Target dHash bit string, or None if unavailable
        target_embedding: Target embedding, or None/empty if unavailable
        records: Collection records in upload order
        max_candidates: Maximum number of candidates to return
        fingerprint_threshold: Max Hamming distance counted as a fingerprint match

    Returns:
        Up to max_candidates candidates, best first
    """
    scored = [score_record(r, target_fingerprint, target_embedding, fingerprint_threshold) for r in records]
    selected = rank_candidates(scored)[:max_candidates]

    logger.info("Candidates selected",
                collection_size=len(records),
                selected=len(selected),
                fingerprint_matches=sum(1 for c in selected if c.fingerprint_match),
                target_fingerprint=target_fingerprint is not None,
                target_embedding=bool(target_embedding))
    return selected
