# Citation cleanup: resolve redirect-wrapped URIs and tidy titles.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from claimwatch.errors import SourceResolutionFailure
from claimwatch.verify.models import Source

logger = logging.getLogger(__name__)

MAX_SOURCES = 5

# google.com/url?q=<target> style wrappers (target embedded in the query)
_WRAPPER_DOMAIN = "google.com"
_WRAPPER_PATH = "/url"
# Opaque grounding redirects, only resolvable by following them
_REDIRECT_HOST_PREFIX = "vertexaisearch."
_REDIRECT_PATH = "/grounding-api-redirect/"
_REDIRECT_MARKERS = ("vertexaisearch", "grounding-api-redirect")
_GENERIC_TITLES = {"", "source", "quelle", "link", "untitled"}

_HEAD_HEADERS = {"User-Agent": "Mozilla/5.0"}


def _host_and_path(uri: str) -> tuple[str, str]:
    try:
        parts = urllib.parse.urlsplit(uri)
        host = parts.hostname or ""
    except ValueError:
        return "", ""
    return host.lower(), parts.path


def _on_google(host: str) -> bool:
    return host == _WRAPPER_DOMAIN or host.endswith("." + _WRAPPER_DOMAIN)


def is_query_wrapper(uri: str) -> bool:
    host, path = _host_and_path(uri)
    return _on_google(host) and path == _WRAPPER_PATH


def is_opaque_redirect(uri: str) -> bool:
    host, path = _host_and_path(uri)
    if host.startswith(_REDIRECT_HOST_PREFIX):
        return True
    return _on_google(host) and path.startswith(_REDIRECT_PATH)


def is_redirect(uri: str) -> bool:
    return is_query_wrapper(uri) or is_opaque_redirect(uri)


def extract_embedded_url(uri: str) -> str | None:
    """``url`` (then ``q``) query parameter of a wrapper link, if present."""
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(uri).query)
    for key in ("url", "q"):
        values = query.get(key)
        if values and values[0]:
            return values[0]
    return None


def display_domain(uri: str) -> str | None:
    host = urllib.parse.urlsplit(uri).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def _needs_new_title(title: str) -> bool:
    if title.strip().lower() in _GENERIC_TITLES or "google.com" in title:
        return True
    return any(marker in title for marker in _REDIRECT_MARKERS)


async def _follow_redirects(uri: str, client: httpx.AsyncClient) -> str:
    try:
        resp = await client.head(uri, follow_redirects=True, headers=_HEAD_HEADERS)
    except httpx.HTTPError as e:
        raise SourceResolutionFailure(f"HEAD {uri} failed: {e}") from e
    return str(resp.url)


async def resolve_source(raw: Mapping[str, Any], client: httpx.AsyncClient) -> Source | None:
    """Resolve one candidate. Returns None when it is unusable."""
    uri = str(raw.get("uri") or raw.get("url") or "")
    title = str(raw.get("title") or "")
    if not uri:
        return None

    if is_redirect(uri):
        try:
            if is_query_wrapper(uri):
                uri = extract_embedded_url(uri) or uri
            if is_opaque_redirect(uri):
                uri = await _follow_redirects(uri, client)
        except SourceResolutionFailure as e:
            logger.warning("Could not resolve source, keeping original: %s", e)

    if _needs_new_title(title):
        domain = display_domain(uri)
        if domain:
            title = domain

    if is_opaque_redirect(uri):
        logger.debug("Dropping unresolved grounding redirect")
        return None

    return Source(title=title or uri, uri=uri)


async def resolve_sources(
    candidates: Iterable[Mapping[str, Any]],
    client: httpx.AsyncClient | None = None,
    limit: int = MAX_SOURCES,
) -> list[Source]:
    """Clean up to *limit* candidate sources.

    Redirect wrappers are unwrapped (query param fast path, HEAD slow path),
    titles are replaced by the domain when they are missing or useless, and
    anything that still points at a grounding redirect is dropped. One bad
    source never fails the batch. Result is deduplicated by URI.
    """
    batch = [c for c in candidates if isinstance(c, Mapping)][:limit]
    if not batch:
        return []

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=10)
    try:
        resolved = await asyncio.gather(
            *(resolve_source(c, client) for c in batch), return_exceptions=True
        )
    finally:
        if owns_client:
            await client.aclose()

    sources: list[Source] = []
    seen: set[str] = set()
    for raw, item in zip(batch, resolved):
        if isinstance(item, BaseException):
            logger.warning("Source resolution crashed, keeping original: %s", item)
            uri = str(raw.get("uri") or raw.get("url") or "")
            if not uri or is_opaque_redirect(uri):
                continue
            item = Source(title=str(raw.get("title") or display_domain(uri) or uri), uri=uri)
        if item is None or item.uri in seen:
            continue
        seen.add(item.uri)
        sources.append(item)
    return sources
