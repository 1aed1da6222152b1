# Claim / verification data models.
# Created: 2026-10-18

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum


class Verdict(str, Enum):
    TRUE = "True"
    FALSE = "False"
    MIXED = "Mixed"
    UNVERIFIED = "Unverified"

    @classmethod
    def parse(cls, value: object) -> Verdict:
        """Case-insensitive lookup; anything unknown is ``UNVERIFIED``."""
        if isinstance(value, str):
            wanted = value.strip().lower()
            for verdict in cls:
                if verdict.value.lower() == wanted:
                    return verdict
        return cls.UNVERIFIED


@dataclass(frozen=True)
class Source:
    """A citation shown to the user."""

    title: str
    uri: str


@dataclass(frozen=True)
class Claim:
    """A factual claim detected in the live stream. Immutable."""

    title: str
    text: str
    call_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    detected_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one claim. ``score`` is 1..5, or 0 when unscored."""

    verdict: Verdict
    score: int
    explanation: str
    sources: tuple[Source, ...] = ()

    @classmethod
    def unverified(cls, explanation: str) -> VerificationResult:
        return cls(verdict=Verdict.UNVERIFIED, score=0, explanation=explanation)

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "score": self.score,
            "explanation": self.explanation,
            "sources": [{"title": s.title, "uri": s.uri} for s in self.sources],
        }


@dataclass
class ClaimRecord:
    """A claim plus its result once verification finishes."""

    claim: Claim
    result: VerificationResult | None = None

    @property
    def pending(self) -> bool:
        return self.result is None
