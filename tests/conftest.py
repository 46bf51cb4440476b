# tests/conftest.py
import pathlib
from types import SimpleNamespace

import pytest
from dotenv import load_dotenv

# Must run before anything imports pensive.config
load_dotenv(pathlib.Path(__file__).parent / ".env.test", override=True)

from pensive.cache import MemoryCache  # noqa: E402
from pensive.errors import ContentFetchError, FeedFetchError  # noqa: E402
from pensive.extraction import ExtractedPage  # noqa: E402
from pensive.services import build_services  # noqa: E402

USER = "user-1"
HEADERS = {"X-User-Id": USER}
CRON_HEADERS = {"Authorization": "Bearer test-secret"}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExtractor:
    """Serves pages from a dict instead of the network."""

    def __init__(self):
        self.pages = {}
        self.calls = []

    def add(self, url, title, text):
        self.pages[url] = ExtractedPage(url=url, title=title, text=text)

    def __call__(self, url):
        self.calls.append(url)
        if url not in self.pages:
            raise ContentFetchError(url, "HTTP 404")
        return self.pages[url]


class FakeFeedFetcher:
    def __init__(self):
        self.responses = {}
        self.calls = []

    def fetch(self, url, etag=None, last_modified=None):
        self.calls.append((url, etag, last_modified))
        resp = self.responses.get(url)
        if resp is None:
            raise FeedFetchError(url, "HTTP 404")
        if isinstance(resp, Exception):
            raise resp
        return resp


class FakeMailer:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    def __call__(self, subject, html, to):
        self.sent.append({"subject": subject, "html": html, "to": list(to)})
        return self.ok


def llm_response(content: str):
    """Shape of an OpenAI chat completion, as far as the analyzer reads it."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture()
def extractor():
    return FakeExtractor()


@pytest.fixture()
def feed_fetcher():
    return FakeFeedFetcher()


@pytest.fixture()
def mailer():
    return FakeMailer()


@pytest.fixture()
def services(cache, extractor, feed_fetcher, mailer):
    return build_services(
        db_url="sqlite://",
        cache=cache,
        feed_fetcher=feed_fetcher,
        extractor=extractor,
        mailer=mailer,
    )


@pytest.fixture()
def llm_client(mocker, services):
    """Switch the analyzer out of demo mode with a mocked OpenAI client."""
    client = mocker.MagicMock()
    services.analyzer.client = client
    return client


@pytest.fixture()
def client(services):
    from fastapi.testclient import TestClient
    from pensive.main import app

    app.state.services = services
    with TestClient(app) as c:
        yield c
    app.state.services = None
