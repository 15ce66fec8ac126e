import pytest
import requests
from requests.structures import CaseInsensitiveDict

from hls_relay.config import Settings
from hls_relay.index import create_app


class FakeResponse:
    def __init__(self, url, status=200, body=b"", headers=None):
        self.url = url
        self.status_code = status
        self.headers = CaseInsensitiveDict(headers or {})
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        # Same guess requests makes, ISO-8859-1 for text/* without a charset.
        self.encoding = requests.utils.get_encoding_from_headers(self.headers)
        self.closed = False

    @property
    def text(self):
        return self._body.decode(self.encoding or "utf-8")

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)

    def close(self):
        self.closed = True


class FakeUpstream:
    """Canned origin: maps URLs to responses and records every request."""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.responses = []

    def serve(self, url, body=b"", status=200, headers=None):
        self.routes[url] = (status, body, headers)

    def fail(self, url, exc):
        self.routes[url] = exc

    def session(self):
        upstream = self

        class FakeSession:
            def get(self, url, **kwargs):
                upstream.calls.append((url, kwargs))
                route = upstream.routes.get(url)
                if route is None:
                    raise requests.ConnectionError(f"no route to {url}")
                if isinstance(route, Exception):
                    raise route
                status, body, headers = route
                resp = FakeResponse(url, status, body, headers)
                upstream.responses.append(resp)
                return resp

            def close(self):
                pass

        return FakeSession()

    def last_headers(self):
        return self.calls[-1][1]["headers"]


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr("hls_relay.upstream.requests.Session", fake.session)
    return fake


class FakeDiscoverer:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def discover(self, page_url):
        self.calls.append(page_url)
        return self.results.pop(0)


@pytest.fixture
def settings():
    return Settings(discovery_retry_backoff=0)


@pytest.fixture
def discoverer():
    return FakeDiscoverer()


@pytest.fixture
def client(settings, discoverer):
    app = create_app(settings, discoverer=discoverer)
    app.testing = True
    return app.test_client(use_cookies=False)


@pytest.fixture
def make_discoverer():
    return FakeDiscoverer
