"""
Classification of inbound SMS replies as contract confirmations.

Matching is exact against a closed vocabulary after trimming and
lower-casing: "ok" confirms, "ok please" does not.
"""

from dataclasses import dataclass
from typing import Optional

_AFFIRMATIVE_WORDS = (
    "ok",
    "okay",
    "yes",
    "ja",
    "jaja",
    "accept",
    "confirm",
    "confirmed",
)

AFFIRMATIVE_REPLIES = frozenset(
    word + suffix for word in _AFFIRMATIVE_WORDS for suffix in ("", ".", "!")
)


@dataclass(frozen=True)
class ReplyClassification:
    is_affirmative: bool
    normalized: str


def normalize_reply(body: Optional[str]) -> str:
    return (body or "").strip().lower()


def classify(body: Optional[str]) -> ReplyClassification:
    normalized = normalize_reply(body)
    return ReplyClassification(
        is_affirmative=normalized in AFFIRMATIVE_REPLIES,
        normalized=normalized,
    )
