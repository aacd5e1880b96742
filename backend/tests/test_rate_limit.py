from fastapi.testclient import TestClient

from chatbfc.core import config
from chatbfc.main import app
from chatbfc.rate_limit import SlidingWindowLimiter


def test_sliding_window_blocks_after_limit():
    limiter = SlidingWindowLimiter()
    assert limiter.check("k", 2, 60, now_ts=100.0) == (True, 0)
    assert limiter.check("k", 2, 60, now_ts=101.0) == (True, 0)

    allowed, retry_after = limiter.check("k", 2, 60, now_ts=110.0)
    assert allowed is False
    assert retry_after == 50


def test_sliding_window_frees_slots_after_window():
    limiter = SlidingWindowLimiter()
    limiter.check("k", 1, 10, now_ts=0.0)
    assert limiter.check("k", 1, 10, now_ts=5.0)[0] is False
    assert limiter.check("k", 1, 10, now_ts=10.5)[0] is True


def test_keys_are_independent():
    limiter = SlidingWindowLimiter()
    limiter.check("a", 1, 60, now_ts=0.0)
    assert limiter.check("b", 1, 60, now_ts=0.0)[0] is True


def test_route_returns_429_with_retry_after(monkeypatch):
    from chatbfc.api import tts as tts_api

    monkeypatch.setattr(config, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(tts_api, "TTS_LIMIT", 1)
    client = TestClient(app)

    first = client.post("/api/tts", json={"text": ""}, headers={"x-user-id": "u-1"})
    second = client.post("/api/tts", json={"text": ""}, headers={"x-user-id": "u-1"})

    assert first.status_code == 400
    assert second.status_code == 429
    assert int(second.headers["Retry-After"]) >= 1
    assert "Rate limit exceeded" in second.json()["error"]
