# Gemini REST client: generateContent / models.list with send-time auth.
# Created: 2026-10-18

from __future__ import annotations

import logging
from typing import Any

import httpx

from claimwatch.config import Settings
from claimwatch.credentials import CredentialPolicy
from claimwatch.errors import QuotaExceeded, UpstreamError

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("quota", "rate limit", "resource_exhausted")


def _is_quota_error(status_code: int, body: str) -> bool:
    if status_code == 429:
        return True
    lowered = body.lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


def _model_path(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


class GeminiClient:
    """Thin HTTP client for the Gemini REST API.

    Credentials come from ``CredentialPolicy`` on every request, so a
    refreshed OAuth token or a rotated key takes effect on the next call
    without rebuilding anything.
    """

    def __init__(
        self,
        settings: Settings,
        policy: CredentialPolicy,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.policy = policy
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        auth = await self.policy.get_auth_context()
        url = f"{self.settings.api_base}/{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout, transport=self._transport
            ) as client:
                resp = await client.request(
                    method,
                    url,
                    headers={**auth.headers, "Content-Type": "application/json"},
                    params={**kwargs.pop("params", {}), **auth.params},
                    **kwargs,
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Gemini request failed: {e}") from e

        if resp.is_error:
            body = resp.text
            if _is_quota_error(resp.status_code, body):
                raise QuotaExceeded(f"Gemini quota exceeded: {body[:200]}", resp.status_code)
            raise UpstreamError(
                f"Gemini API error {resp.status_code}: {body[:200]}", resp.status_code
            )

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("Gemini API returned a non-JSON body") from e

    async def _with_key_rotation(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Retry on quota errors by rotating through the key pool (if any)."""
        attempts = max(1, self.policy.pool_size)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request(method, path, **kwargs)
            except QuotaExceeded as e:
                logger.warning("Quota error (attempt %d/%d): %s", attempt, attempts, e)
                if attempt >= attempts or not self.policy.rotate_key():
                    raise

    async def generate_content(
        self, model: str, prompt: str, search: bool = True
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if search:
            body["tools"] = [{"google_search": {}}]
        path = f"{_model_path(model)}:generateContent"
        return await self._with_key_rotation("POST", path, json=body)

    async def list_models(self) -> list[dict[str, Any]]:
        data = await self._with_key_rotation("GET", "models", params={"pageSize": 1000})
        return data.get("models", [])


def response_text(response: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = response.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


def grounding_sources(response: dict[str, Any]) -> list[dict[str, str]]:
    """``groundingMetadata.groundingChunks[].web`` of the first candidate."""
    candidates = response.get("candidates") or []
    if not candidates:
        return []
    chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks") or []
    sources = []
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if isinstance(web, dict) and web.get("uri"):
            sources.append(web)
    return sources
