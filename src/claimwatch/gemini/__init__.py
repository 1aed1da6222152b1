"""Gemini REST client for claimwatch."""

from claimwatch.gemini.client import GeminiClient, grounding_sources, response_text

__all__ = ["GeminiClient", "grounding_sources", "response_text"]
