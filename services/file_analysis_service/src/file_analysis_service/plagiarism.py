"""Plagiarism heuristic.

Any earlier submission to the same assignment by another student counts as a
source. No content comparison is made unless the submission's text is
available, and even then the score is taken against ``PLACEHOLDER_TOKENS``
unless the prior submission's own text is supplied.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from antiplagiarism_common.schemas import PlagiarismSource, WorkMeta

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 20
MAX_DETAILED_COMPARISONS = 3
HIGH_SIMILARITY_THRESHOLD = 30.0
MIN_TOKEN_LENGTH = 4

PLACEHOLDER_TOKENS = ["sample", "text"]

REASON_EARLIER_SAME_ASSIGNMENT = "earlier submission to the same assignment"
REASON_HIGH_SIMILARITY = "high textual similarity"
REASON_EARLIER = "earlier submission"

_TOKEN_SPLIT = re.compile(r"[\s.,!?;:]+")


@dataclass
class PlagiarismResult:
    is_plagiarism: bool
    details: str
    sources: list[PlagiarismSource] = field(default_factory=list)
    total_checked_works: int = 0


def tokenize(text: str | None) -> list[str]:
    """Lowercased distinct words longer than three characters, in order of appearance."""
    if not text or not text.strip():
        return []
    seen: dict[str, None] = {}
    for token in _TOKEN_SPLIT.split(text.lower()):
        if len(token) >= MIN_TOKEN_LENGTH:
            seen.setdefault(token, None)
    return list(seen)


def similarity(words1: list[str], words2: list[str]) -> float:
    """Shared words over all distinct words, in percent."""
    if not words1 or not words2:
        return 0.0
    a, b = set(words1), set(words2)
    union = a | b
    return len(a & b) * 100.0 / len(union) if union else 0.0


def prior_candidates(submission: WorkMeta, submissions: Iterable[WorkMeta]) -> list[WorkMeta]:
    earlier = [
        s for s in submissions
        if s.assignment_id == submission.assignment_id
        and s.student_id != submission.student_id
        and s.submitted_at < submission.submitted_at
    ]
    earlier.sort(key=lambda s: (s.submitted_at, s.work_id), reverse=True)
    return earlier[:MAX_CANDIDATES]


def check(
    submission: WorkMeta,
    submissions: Iterable[WorkMeta],
    text: str | None = None,
    prior_texts: Mapping[int, str] | None = None,
) -> PlagiarismResult:
    candidates = prior_candidates(submission, submissions)
    if not candidates:
        logger.debug("No prior submissions for assignment %s", submission.assignment_id)
        return PlagiarismResult(
            is_plagiarism=False,
            details="Plagiarism not detected: no prior submissions.",
        )

    if not text or not text.strip():
        sources = [
            PlagiarismSource(
                source_work_id=c.work_id,
                source_student_id=c.student_id,
                source_submitted_at=c.submitted_at,
                reason=REASON_EARLIER_SAME_ASSIGNMENT,
                similarity_percentage=100.0,
            )
            for c in candidates
        ]
        logger.warning("Possible plagiarism in work %s: %d earlier submissions", submission.work_id, len(sources))
        return PlagiarismResult(
            is_plagiarism=True,
            sources=sources,
            total_checked_works=len(candidates),
            details=f"Possible plagiarism: found {len(candidates)} earlier submissions by other students.",
        )

    current = tokenize(text)
    prior_texts = prior_texts or {}
    sources = []
    for c in candidates[:MAX_DETAILED_COMPARISONS]:
        other = tokenize(prior_texts[c.work_id]) if c.work_id in prior_texts else PLACEHOLDER_TOKENS
        score = similarity(current, other)
        sources.append(
            PlagiarismSource(
                source_work_id=c.work_id,
                source_student_id=c.student_id,
                source_submitted_at=c.submitted_at,
                reason=REASON_HIGH_SIMILARITY if score > HIGH_SIMILARITY_THRESHOLD else REASON_EARLIER,
                similarity_percentage=score,
            )
        )

    logger.info("Content check for work %s compared against %d submissions", submission.work_id, len(sources))
    return PlagiarismResult(
        is_plagiarism=True,
        sources=sources,
        total_checked_works=len(candidates),
        details=f"Possible plagiarism: checked {len(candidates)} earlier submissions.",
    )
