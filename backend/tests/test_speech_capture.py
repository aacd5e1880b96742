import asyncio

import pytest

from chatbfc.session.speech_capture import (
    BLOCKED_MESSAGE,
    UNSUPPORTED_MESSAGE,
    RecognitionEvent,
    RecognitionResult,
    SpeechCapture,
)
from fakes import RecognitionFactory


class _Harness:
    def __init__(self, supported: bool = True, expected: bool = True):
        self.factory = RecognitionFactory(supported=supported)
        self.texts: list[tuple[str, str]] = []
        self.errors: list[str] = []
        self.expected = expected
        self.capture = SpeechCapture(
            self.factory,
            on_text=lambda final, interim: self.texts.append((final, interim)),
            on_error=self.errors.append,
            should_restart=lambda: self.expected,
            restart_delay=0.01,
        )


def test_event_split_only_reads_from_result_index():
    event = RecognitionEvent(
        results=[
            RecognitionResult("old words", True),
            RecognitionResult("new final", True),
            RecognitionResult("still talking", False),
        ],
        result_index=1,
    )
    assert event.split() == ("new final", "still talking")


def test_unsupported_factory_reports_capability_error():
    harness = _Harness(supported=False)
    assert harness.capture.start() is False
    assert harness.errors == [UNSUPPORTED_MESSAGE]
    assert not harness.capture.active


@pytest.mark.asyncio
async def test_start_configures_handle_and_forwards_text():
    harness = _Harness()
    assert harness.capture.start(continuous=True)
    handle = harness.factory.latest

    assert handle.started == 1
    assert handle.continuous is True
    assert handle.interim_results is True
    assert handle.lang == "en-US"

    handle.say("forty percent tax", final=True)
    handle.say("and then", final=False)
    assert harness.texts == [("forty percent tax", ""), ("", "and then")]


@pytest.mark.asyncio
async def test_recognition_end_while_listening_restarts_after_delay():
    harness = _Harness()
    harness.capture.start()
    first = harness.factory.latest

    first.end()
    assert not harness.capture.active
    assert harness.capture.restart_pending

    await asyncio.sleep(0.03)

    assert len(harness.factory.handles) == 2
    assert harness.capture.active
    assert harness.factory.latest is not first


@pytest.mark.asyncio
async def test_restart_rechecks_expectation_when_timer_fires():
    harness = _Harness()
    harness.capture.start()
    harness.factory.latest.end()

    harness.expected = False
    await asyncio.sleep(0.03)

    assert len(harness.factory.handles) == 1
    assert not harness.capture.active


@pytest.mark.asyncio
async def test_no_restart_when_not_expected():
    harness = _Harness(expected=False)
    harness.capture.start()
    harness.factory.latest.end()

    assert not harness.capture.restart_pending


@pytest.mark.asyncio
async def test_stop_cancels_pending_restart_and_ignores_stale_events():
    harness = _Harness()
    harness.capture.start()
    handle = harness.factory.latest
    handle.end()

    harness.capture.stop()
    await asyncio.sleep(0.03)
    assert len(harness.factory.handles) == 1

    harness.texts.clear()
    handle.say("late words")
    assert harness.texts == []


def test_stop_halts_the_active_handle():
    harness = _Harness()
    harness.capture.start()
    handle = harness.factory.latest

    harness.capture.stop()

    assert handle.stopped == 1
    assert not harness.capture.active


@pytest.mark.asyncio
async def test_transient_errors_are_silent():
    harness = _Harness()
    harness.capture.start()
    harness.factory.latest.fail("no-speech")
    harness.factory.latest.fail("network")
    harness.factory.latest.fail("aborted")

    assert harness.errors == []
    assert harness.capture.active


@pytest.mark.asyncio
async def test_permission_error_is_fatal_and_not_restarted():
    harness = _Harness()
    harness.capture.start()
    handle = harness.factory.latest

    handle.fail("not-allowed")
    handle.end()
    await asyncio.sleep(0.03)

    assert harness.errors == [BLOCKED_MESSAGE]
    assert not harness.capture.active
    assert len(harness.factory.handles) == 1


@pytest.mark.asyncio
async def test_other_errors_surface_code():
    harness = _Harness()
    harness.capture.start()
    harness.factory.latest.fail("audio-capture")

    assert harness.errors == ["Speech recognition error: audio-capture"]
    assert not harness.capture.active
