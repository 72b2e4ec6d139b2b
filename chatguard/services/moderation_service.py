# chatguard/services/moderation_service.py
"""
Heuristic toxicity scoring for chat messages.

Pure and side-effect free so it can be swapped for an external moderation
service without touching callers: `score_toxicity(text) -> ToxicityResult`
and `should_block(score)` are the whole contract.

Scoring:
- Profanity detectors are tried in order; the first match adds
  PROFANITY_WEIGHT once.
- Spam detectors (character runs, shouting, link flooding) are tried in
  order; the first match adds SPAM_WEIGHT once.
- Very short messages add LOW_CONTENT_WEIGHT.
- The sum is clamped to 1.0.
"""

import re
from dataclasses import dataclass

from chatguard.config import settings

PROFANITY_WEIGHT = 0.5
SPAM_WEIGHT = 0.3
LOW_CONTENT_WEIGHT = 0.1
MIN_CONTENT_LENGTH = 3

PROFANITY_PATTERNS = (
    re.compile(r"\bf+u+c+k+", re.IGNORECASE),
    re.compile(r"\bs+h+i+t+", re.IGNORECASE),
    re.compile(r"\ba+s+s+h+o+l+e+", re.IGNORECASE),
    re.compile(r"\bb+i+t+c+h+", re.IGNORECASE),
    re.compile(r"\bd+a+m+n+", re.IGNORECASE),
    re.compile(r"\bc+u+n+t+", re.IGNORECASE),
    re.compile(r"\bn+i+g+g+", re.IGNORECASE),
    re.compile(r"\bf+a+g+", re.IGNORECASE),
    re.compile(r"\br+e+t+a+r+d+", re.IGNORECASE),
    re.compile(r"\bk+i+l+l\s+(y+o+u+r+s+e+l+f+|u+r+s+e+l+f+)", re.IGNORECASE),
    re.compile(r"\bdie\b", re.IGNORECASE),
    re.compile(r"\bk+y+s+\b", re.IGNORECASE),
    # Masked spellings: f***, f*ck, sh*t, b*tch
    re.compile(r"\bf[u*]*[c*]+[k*]+", re.IGNORECASE),
    re.compile(r"\bs[h*]+[i*]+t", re.IGNORECASE),
    re.compile(r"\bb[i*]+[t*]+[c*]+h", re.IGNORECASE),
)

SPAM_PATTERNS = (
    re.compile(r"(.)\1{10,}"),  # 11+ identical characters in a row
    re.compile(r"^[A-Z\s!?]{50,}$"),  # sustained shouting
    re.compile(r"(https?://\S+\s*){4,}"),  # link flooding
)


@dataclass(frozen=True)
class ToxicityResult:
    score: float
    flags: frozenset[str]


def score_toxicity(text: str) -> ToxicityResult:
    """
    Score sanitized text between 0 and 1.

    Args:
        text: Sanitized message text

    Returns:
        ToxicityResult with the clamped score and trigger flags
    """
    if not isinstance(text, str):
        text = ""

    flags: set[str] = set()
    score = 0.0

    if any(pattern.search(text) for pattern in PROFANITY_PATTERNS):
        flags.add("profanity")
        score += PROFANITY_WEIGHT

    if any(pattern.search(text) for pattern in SPAM_PATTERNS):
        flags.add("spam")
        score += SPAM_WEIGHT

    if len(text) < MIN_CONTENT_LENGTH:
        flags.add("low_content")
        score += LOW_CONTENT_WEIGHT

    return ToxicityResult(score=round(min(score, 1.0), 4), flags=frozenset(flags))


def should_block(score: float, threshold: float | None = None) -> bool:
    """A message at or above the block threshold is never persisted."""
    if threshold is None:
        threshold = settings.TOXICITY_BLOCK_THRESHOLD
    return score >= threshold
