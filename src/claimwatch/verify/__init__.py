"""Claim verification: models, parsing, source resolution and the pipeline."""

from claimwatch.verify.models import Claim, ClaimRecord, Source, Verdict, VerificationResult
from claimwatch.verify.pipeline import ClaimVerifier
from claimwatch.verify.sources import resolve_sources

__all__ = [
    "Claim",
    "ClaimRecord",
    "ClaimVerifier",
    "Source",
    "Verdict",
    "VerificationResult",
    "resolve_sources",
]
