import importlib
import json
import logging

from chatbfc.core.logger import log_event
from chatbfc.session.state import SessionStatus


def test_log_event_redacts_free_text(caplog):
    with caplog.at_level(logging.INFO, logger="chatbfc.events"):
        log_event("session", "finalize", "s-1", answer="my secret answer", q_index=2)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["component"] == "session"
    assert payload["event"] == "finalize"
    assert payload["session_id"] == "s-1"
    assert payload["answer"] == {"redacted": True, "length": 16}
    assert payload["q_index"] == 2


def test_log_event_serializes_enums(caplog):
    with caplog.at_level(logging.INFO, logger="chatbfc.events"):
        log_event("session", "transition", "s-2", status=SessionStatus.LISTENING)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["status"] == "listening"


def test_importing_the_logger_leaves_root_logging_unconfigured(monkeypatch):
    from chatbfc.core import logger as logger_module

    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])

    importlib.reload(logger_module)

    assert root.handlers == []
