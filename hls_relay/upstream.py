import enum
import logging

import requests
import urllib3

from .config import HEADER_POLICY_FIXED
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# verify=False is the default for third-party origins; keep the log quiet.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

# Browser-like extras sent with the fixed identity.
FIXED_HEADERS = {
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}


class BodyMode(enum.Enum):
    BUFFERED = "buffered"
    STREAMED = "streamed"


def build_upstream_headers(client_headers, settings, credentials=None):
    """Headers for one upstream leg. Every leg of a stream goes through here."""
    # No compression: bodies and their Content-Length are piped as sent.
    headers = {"Accept-Encoding": "identity"}
    if client_headers.get("Range"):
        headers["Range"] = client_headers.get("Range")

    if settings.header_policy == HEADER_POLICY_FIXED:
        headers.update(FIXED_HEADERS)
        headers["User-Agent"] = settings.fixed_user_agent
        if settings.fixed_referer:
            headers["Referer"] = settings.fixed_referer
    else:
        for name in ("User-Agent", "Referer", "Cookie"):
            if client_headers.get(name):
                headers[name] = client_headers.get(name)

    if credentials is not None:
        headers.pop("Cookie", None)
        cookie = credentials.cookie_header()
        if cookie:
            headers["Cookie"] = cookie
        if credentials.user_agent:
            headers["User-Agent"] = credentials.user_agent
        if credentials.referer:
            headers["Referer"] = credentials.referer
    return headers


class UpstreamResponse:
    """An open upstream response.

    In buffered mode ``text`` is already populated and the connection is
    released. In streamed mode the body is pulled with ``iter_chunks``.
    """

    def __init__(self, response, session, chunk_size):
        self._response = response
        self._session = session
        self._chunk_size = chunk_size
        self.status = response.status_code
        self.headers = response.headers
        self.url = response.url
        self.text = None

    @property
    def content_type(self):
        return self.headers.get("Content-Type", "")

    def read_text(self):
        try:
            # requests guesses ISO-8859-1 for any text/* without a charset.
            if "charset=" in self.content_type.lower():
                self._response.encoding = requests.utils.get_encoding_from_headers(self.headers)
            else:
                self._response.encoding = "utf-8"
            self.text = self._response.text
        except requests.RequestException as exc:
            raise UpstreamError(details=str(exc)) from exc
        finally:
            self.close()
        return self.text

    def iter_chunks(self):
        try:
            for chunk in self._response.iter_content(chunk_size=self._chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException:
            logger.warning("Upstream stream broke off: %s", self.url, exc_info=True)
            raise
        finally:
            self.close()

    def close(self):
        self._response.close()
        self._session.close()


def fetch(url, headers, mode, settings):
    session = requests.Session()
    try:
        resp = session.get(
            url,
            headers=headers,
            timeout=settings.upstream_timeout,
            stream=True,
            verify=settings.verify_tls,
            allow_redirects=True,
        )
    except requests.RequestException as exc:
        session.close()
        logger.warning("Upstream request failed for %s: %s", url, exc)
        raise UpstreamError(details=str(exc)) from exc

    logger.info("Upstream %s -> %s", url, resp.status_code)
    try:
        resp.raise_for_status()
    except requests.HTTPError as exc:
        resp.close()
        session.close()
        logger.warning("Upstream rejected %s with status %s", url, resp.status_code)
        raise UpstreamError(details=str(exc), upstream_status=resp.status_code) from exc

    upstream = UpstreamResponse(resp, session, settings.chunk_size)
    if mode is BodyMode.BUFFERED:
        upstream.read_text()
    return upstream
