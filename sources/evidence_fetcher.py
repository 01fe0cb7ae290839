"""Evidence fetching, classification and caching."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urljoin

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from config import FetchSettings
from core import EvidenceFlags, EvidenceRecord
from storage import EvidenceCache
from utils.exceptions import (
    BadContentType,
    BlockedEvidence,
    EvidenceUnavailable,
    NetworkFailure,
    ThinEvidence,
)

from .extract import ExtractedPage, extract_page, extract_text
from .url_guard import canonicalize_url, check_url, hostname


logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 502, 503, 504}
_ACCEPT_HEADER = "text/html,application/xhtml+xml;q=0.9,text/plain;q=0.8,*/*;q=0.5"
_COOKIE_WALL_MARKERS = (
    "enable javascript",
    "cookie settings",
    "cookies are required",
    "javascript is disabled",
)
_COOKIE_WALL_MAX_CHARS = 400


class _RetryableStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def is_captcha_page(body: str) -> bool:
    lowered = str(body or "").lower()
    if "hcaptcha" in lowered or "recaptcha" in lowered:
        return True
    return "cloudflare" in lowered and "checking your browser" in lowered


def is_cookie_walled(body: str, text_sample: str) -> bool:
    if len(text_sample) >= _COOKIE_WALL_MAX_CHARS:
        return False
    lowered = str(body or "").lower()
    return any(marker in lowered for marker in _COOKIE_WALL_MARKERS)


def _is_textual(content_type: str) -> bool:
    value = str(content_type or "").split(";", 1)[0].strip().lower()
    if not value:
        return True
    return value.startswith("text/") or value in {"application/xhtml+xml", "application/xml"}


class EvidenceFetcher:
    """
    Fetch a source URL and turn it into an ``EvidenceRecord``.

    ``fetch`` raises an ``EvidenceError`` subclass for unusable evidence;
    ``inspect`` returns the record with its flags set and only raises when no
    response could be obtained at all.
    """

    def __init__(
        self,
        settings: Optional[FetchSettings] = None,
        *,
        cache: Optional[EvidenceCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or FetchSettings()
        self.cache = cache
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._host_slots: Dict[str, asyncio.Semaphore] = {}
        self.network_calls = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                follow_redirects=False,
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "EvidenceFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _host_slot(self, host: str) -> asyncio.Semaphore:
        slot = self._host_slots.get(host)
        if slot is None:
            slot = asyncio.Semaphore(max(1, self.settings.max_host_concurrency))
            self._host_slots[host] = slot
        return slot

    async def _get_once(self, url: str) -> httpx.Response:
        headers = {"User-Agent": self.settings.user_agent, "Accept": _ACCEPT_HEADER}
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.max_retries)),
            wait=wait_exponential_jitter(initial=self.settings.backoff_initial, max=self.settings.backoff_max),
            retry=retry_if_exception_type((_RetryableStatus, httpx.TransportError)),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    self.network_calls += 1
                    response = await self._get_client().get(url, headers=headers, follow_redirects=False)
                    if response.status_code in RETRY_STATUSES:
                        raise _RetryableStatus(response.status_code)
                    return response
        except _RetryableStatus as exc:
            raise EvidenceUnavailable(
                f"Source kept answering HTTP {exc.status_code}", url=url, status_code=exc.status_code
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkFailure(f"Network failure: {exc.__class__.__name__}", url=url, error=str(exc)) from exc
        raise EvidenceUnavailable("No response", url=url)

    async def _get(self, url: str) -> httpx.Response:
        """Follow redirects by hand so every hop passes the URL guard."""
        current = url
        for _ in range(max(0, self.settings.max_redirects) + 1):
            response = await self._get_once(current)
            location = response.headers.get("location")
            if not (response.is_redirect and location):
                return response
            target = urljoin(str(response.url), location)
            ok, reason = check_url(target, allowed_hosts=self.settings.allowed_hosts)
            if not ok:
                raise EvidenceUnavailable(f"Redirect to rejected URL: {reason}", url=url, redirect=target)
            logger.debug("Redirect %s -> %s", current, target)
            current = target
        raise EvidenceUnavailable(
            f"Too many redirects (more than {self.settings.max_redirects})", url=url, last=current
        )

    def _build_record(self, url: str, response: httpx.Response) -> EvidenceRecord:
        content_type = response.headers.get("content-type", "")
        final_url = str(response.url)
        if not _is_textual(content_type):
            return EvidenceRecord(
                source_url=url,
                final_url=final_url,
                content_type=content_type,
                status_code=response.status_code,
                flags=EvidenceFlags(bad_content_type=True),
            )

        body = response.text or ""
        is_html = "html" in content_type.lower() or body.lstrip()[:1] == "<"
        page: ExtractedPage = extract_page(body) if is_html else extract_text(body)

        captcha = is_captcha_page(body)
        cookie_walled = not captcha and is_cookie_walled(body, page.text_sample)
        thin = page.block_count < self.settings.min_blocks or len(page.text_sample) < self.settings.min_chars

        return EvidenceRecord(
            source_url=url,
            final_url=final_url,
            fetched_at=time.time(),
            content_hash=page.content_hash,
            title=page.title or page.h1,
            block_count=page.block_count,
            blocks=page.blocks,
            text_sample=page.text_sample,
            char_count=len(page.text_sample),
            faq_pairs=page.faq_pairs,
            price_tokens=page.price_tokens,
            content_type=content_type,
            status_code=response.status_code,
            flags=EvidenceFlags(thin=thin, cookie_walled=cookie_walled, captcha_blocked=captcha),
        )

    async def inspect(self, url: str, *, use_cache: bool = True) -> EvidenceRecord:
        """Fetch and classify without raising on classification flags."""
        ok, reason = check_url(url, allowed_hosts=self.settings.allowed_hosts)
        if not ok:
            raise EvidenceUnavailable(f"Rejected URL: {reason}", url=url)

        canonical = canonicalize_url(url)
        if use_cache and self.cache is not None:
            cached = self.cache.get(canonical)
            if cached is not None:
                logger.debug("Evidence cache hit: %s", canonical)
                return cached

        async with self._host_slot(hostname(canonical) or ""):
            response = await self._get(canonical)

        ok, reason = check_url(str(response.url), allowed_hosts=self.settings.allowed_hosts)
        if not ok:
            raise EvidenceUnavailable(f"Rejected final URL: {reason}", url=canonical, final_url=str(response.url))

        if not (200 <= response.status_code < 300):
            raise EvidenceUnavailable(
                f"Source answered HTTP {response.status_code}", url=canonical, status_code=response.status_code
            )

        record = self._build_record(canonical, response)
        if record.flags.viable and self.cache is not None:
            self.cache.put(canonical, record, ttl=self.settings.cache_ttl)
        return record

    async def fetch(self, url: str, *, use_cache: bool = True) -> EvidenceRecord:
        """Return viable evidence or raise the matching ``EvidenceError``."""
        record = await self.inspect(url, use_cache=use_cache)
        raise_for_flags(record)
        return record


def raise_for_flags(record: EvidenceRecord) -> None:
    flags = record.flags
    if flags.bad_content_type:
        raise BadContentType(
            f"Unsupported content type: {record.content_type or 'unknown'}", url=record.source_url, record=record
        )
    if flags.captcha_blocked:
        raise BlockedEvidence("CAPTCHA challenge", url=record.source_url, record=record, kind="captcha")
    if flags.cookie_walled:
        raise BlockedEvidence("Cookie/JavaScript wall", url=record.source_url, record=record, kind="cookie_wall")
    if flags.thin:
        raise ThinEvidence(
            f"Insufficient evidence: {record.block_count} content blocks, {record.char_count} chars",
            url=record.source_url,
            record=record,
        )
