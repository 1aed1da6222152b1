# PKCE helpers (RFC 7636, S256 only).
# Created: 2026-10-18

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass, field


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)), unpadded."""
    return _b64url(hashlib.sha256(verifier.encode()).digest())


@dataclass(frozen=True)
class PkceContext:
    """Verifier, challenge and anti-CSRF state for one authorization attempt."""

    verifier: str = field(repr=False)
    challenge: str
    state: str = field(repr=False)

    @classmethod
    def generate(cls) -> PkceContext:
        verifier = _b64url(secrets.token_bytes(32))
        return cls(
            verifier=verifier,
            challenge=s256_challenge(verifier),
            state=_b64url(secrets.token_bytes(16)),
        )
