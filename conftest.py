from datetime import datetime, timedelta

import pytest

from db import init_db, make_engine, make_session_factory
from models import MoodCategory, Track


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeHttp:
    """Stands in for requests.Session: canned responses per (method, url), every call recorded."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)
        return self

    def _respond(self, method, url):
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response) and not isinstance(response, FakeResponse):
            response = response()
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append(("GET", url, params, timeout))
        return self._respond("GET", url)

    def post(self, url, headers=None, data=None, timeout=None):
        self.calls.append(("POST", url, data, timeout))
        return self._respond("POST", url)

    def count(self, method, url):
        return sum(1 for call in self.calls if call[0] == method and call[1] == url)


class StubGateway:
    def __init__(self, tracks=(), error=None):
        self.tracks = list(tracks)
        self.error = error
        self.calls = []

    def search(self, spec, count):
        self.calls.append((spec, count))
        if self.error:
            raise self.error
        return self.tracks[:count]


def make_track(title, mood="calm", genre="lofi", energy=4, valence=0.5, spotify_id=None, **extra):
    return Track(
        title=title,
        artist=extra.pop("artist", "Test Artist"),
        genre=genre,
        mood_tags=extra.pop("mood_tags", [mood.value if isinstance(mood, MoodCategory) else mood]),
        energy_level=energy,
        valence=valence,
        spotify_id=spotify_id,
        **extra,
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, 0))
