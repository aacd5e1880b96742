import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    from chatbfc.core import config
    from chatbfc.rate_limit import limiter

    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "test-key")
    monkeypatch.setattr(config, "ELEVENLABS_API_KEY", "test-eleven-key")
    monkeypatch.setattr(config, "ELEVENLABS_VOICE_ID", "voice-1")
    monkeypatch.setattr(config, "RATE_LIMIT_ENABLED", False)
    limiter.reset()
    yield
    limiter.reset()
