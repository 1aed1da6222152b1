# Claim Verification Pipeline: search-grounded fact check with model fallback.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import logging

import httpx

from claimwatch.config import Settings
from claimwatch.errors import VerificationParseFailure
from claimwatch.gemini.client import GeminiClient, grounding_sources, response_text
from claimwatch.verify.models import VerificationResult
from claimwatch.verify.parsing import parse_verification_text
from claimwatch.verify.sources import resolve_sources

logger = logging.getLogger(__name__)

PARSE_FAILURE_EXPLANATION = "Failed to parse model response."
ERROR_EXPLANATION = "Could not verify claim due to an error."

VERIFY_PROMPT = """
Fact check the following claim: "{claim}".

STEP 1: You MUST use the Google Search tool to find verification.
Even if you know the answer, search to get the URL source.
Use trusted sources only and do not infer things from the claim itself.

STEP 2: Return ONLY a JSON object WITH EXACTLY THESE FIELDS:
{{
  "verdict": "True" | "False" | "Unverified" | "Mixed",
  "score": 1-5 (integer, 1=Totally False, 5=Totally True),
  "explanation": "A concise (max 2 sentences) explanation",
  "sources": [{{"title": "Source Domain (e.g. wikipedia.org)", "url": "The real source URL (NOT a google redirect link)"}}]
}}
If your verdict is True, False or Mixed you must have sources.
Use the language of the claim for the content.
"""


def build_prompt(claim_text: str) -> str:
    return VERIFY_PROMPT.format(claim=claim_text.replace('"', "'"))


class ClaimVerifier:
    """Turns claim text into a ``VerificationResult``. ``verify()`` never raises.

    Tier 1 is ``settings.primary_model`` with a single attempt; tier 2 is
    ``settings.fallback_model`` with up to ``settings.fallback_attempts``
    attempts, ``settings.retry_delay`` seconds apart.
    """

    def __init__(
        self,
        settings: Settings,
        gemini: GeminiClient,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.gemini = gemini
        self._http_client = http_client

    async def verify(self, claim_text: str) -> VerificationResult:
        prompt = build_prompt(claim_text)
        last_error: Exception | None = None

        plan = [
            (self.settings.primary_model, 1),
            (self.settings.fallback_model, self.settings.fallback_attempts),
        ]
        for tier, (model, attempts) in enumerate(plan):
            for attempt in range(attempts):
                if attempt and self.settings.retry_delay > 0:
                    await asyncio.sleep(self.settings.retry_delay)
                try:
                    result = await self._attempt(model, prompt)
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "Verification with %s failed (attempt %d/%d): %s",
                        model,
                        attempt + 1,
                        attempts,
                        e,
                    )
                    continue
                logger.info("Verification successful with %s (attempt %d)", model, attempt + 1)
                return result
            if tier == 0:
                logger.info(
                    "Falling back to %s with %d attempts",
                    self.settings.fallback_model,
                    self.settings.fallback_attempts,
                )

        logger.error("All verification attempts failed: %s", last_error)
        if isinstance(last_error, VerificationParseFailure):
            return VerificationResult.unverified(PARSE_FAILURE_EXPLANATION)
        return VerificationResult.unverified(ERROR_EXPLANATION)

    async def _attempt(self, model: str, prompt: str) -> VerificationResult:
        response = await self.gemini.generate_content(model, prompt, search=True)
        text = response_text(response)
        logger.debug("Raw verification text from %s: %s", model, text)

        parsed = parse_verification_text(text)
        candidates = parsed.sources or grounding_sources(response)
        sources = await resolve_sources(
            candidates, client=self._http_client, limit=self.settings.max_sources
        )

        return VerificationResult(
            verdict=parsed.verdict,
            score=parsed.score,
            explanation=parsed.explanation,
            sources=tuple(sources),
        )
