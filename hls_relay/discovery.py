"""Resolve a player page into an HLS URL plus the session cookies.

Playwright does the actual page work. The rest of the proxy only sees
:class:`DiscoveryResult` values and the retry policy in
:func:`discover_stream`.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Union

from .config import DEFAULT_USER_AGENT
from .credentials import CredentialBundle
from .errors import DiscoveryError, DiscoveryNotFound

logger = logging.getLogger(__name__)

# Runs inside the page once navigation has settled.
FIND_M3U8_SCRIPT = """
() => {
    const video = document.querySelector('video');
    if (video && video.src && video.src.includes('.m3u8')) return video.src;
    const source = document.querySelector('video source[src*=".m3u8"], source[src*=".m3u8"]');
    if (source && source.src) return source.src;
    if (window.hls && window.hls.url) return window.hls.url;
    const scripts = Array.from(document.scripts).map(s => s.textContent);
    for (const script of scripts) {
        const match = script && script.match(/(https?:\\/\\/[^'"\\s]+\\.m3u8[^'"\\s]*)/);
        if (match) return match[1];
    }
    return null;
}
"""

_TRANSIENT_MARKERS = (
    "frame was detached",
    "execution context was destroyed",
    "target closed",
)


@dataclass(frozen=True)
class Found:
    stream_url: str
    credentials: CredentialBundle


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class TransientFailure:
    reason: str


@dataclass(frozen=True)
class FatalFailure:
    reason: str


DiscoveryResult = Union[Found, NotFound, TransientFailure, FatalFailure]


def pick_stream_url(dom_url, observed):
    """The player's own source wins; otherwise the newest playlist request.

    Early requests are often preroll/ad playlists, so the list is read
    from the end.
    """
    if dom_url:
        return dom_url
    return observed[-1] if observed else None


class Discoverer:
    """Interface: ``discover(page_url)`` returns a DiscoveryResult and never raises."""

    def discover(self, page_url: str) -> DiscoveryResult:
        raise NotImplementedError


class PlaywrightDiscoverer(Discoverer):
    def __init__(self, settings, user_agent=DEFAULT_USER_AGENT):
        self.settings = settings
        self.user_agent = user_agent
        self._slots = threading.BoundedSemaphore(settings.discovery_concurrency)

    def discover(self, page_url):
        with self._slots:
            try:
                return self._discover(page_url)
            except Exception as exc:
                return self._classify_failure(exc)

    @staticmethod
    def _classify_failure(exc):
        message = str(exc)
        if any(marker in message.lower() for marker in _TRANSIENT_MARKERS):
            logger.warning("Transient discovery failure: %s", message)
            return TransientFailure(message)
        logger.error("Discovery failed: %s", message)
        return FatalFailure(message)

    def _discover(self, page_url):
        from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
        from playwright.sync_api import sync_playwright

        observed = []

        def on_request(req):
            if ".m3u8" in req.url:
                logger.debug("Observed playlist request %s", req.url)
                observed.append(req.url)

        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(
                headless=True, args=["--no-sandbox", "--disable-setuid-sandbox"]
            )
            try:
                context = browser.new_context(user_agent=self.user_agent)
                page = context.new_page()
                page.on("request", on_request)
                try:
                    page.goto(
                        page_url,
                        wait_until="networkidle",
                        timeout=self.settings.discovery_navigation_timeout * 1000,
                    )
                except PlaywrightTimeoutError:
                    logger.info("Navigation to %s timed out, inspecting the page as loaded", page_url)

                if self.settings.discovery_settle_time:
                    page.wait_for_timeout(self.settings.discovery_settle_time * 1000)

                stream_url = pick_stream_url(page.evaluate(FIND_M3U8_SCRIPT), observed)
                if not stream_url:
                    return NotFound()

                bundle = CredentialBundle.from_browser_cookies(
                    context.cookies(), user_agent=self.user_agent, referer=page_url
                )
                logger.info("Discovered %s on %s (%d cookies)", stream_url, page_url, len(bundle.cookies))
                return Found(stream_url, bundle)
            finally:
                browser.close()


def discover_stream(discoverer, page_url, retry_backoff=2.0):
    """Run discovery with one retry for transient failures.

    Returns the ``Found`` result; raises DiscoveryNotFound or DiscoveryError.
    """
    result = discoverer.discover(page_url)
    if isinstance(result, TransientFailure):
        logger.info("Retrying discovery for %s in %.1fs", page_url, retry_backoff)
        time.sleep(retry_backoff)
        result = discoverer.discover(page_url)

    if isinstance(result, Found):
        return result
    if isinstance(result, NotFound):
        raise DiscoveryNotFound()
    if isinstance(result, (TransientFailure, FatalFailure)):
        raise DiscoveryError(details=result.reason)
    raise DiscoveryError(details=f"unexpected discovery result {result!r}")
