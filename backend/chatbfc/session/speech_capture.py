"""Adapter over a streaming speech recognition primitive."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from chatbfc.core import config
from chatbfc.core.logger import log_event

logger = logging.getLogger("chatbfc.session.speech_capture")

TRANSIENT_ERRORS = frozenset({"network", "no-speech"})
PERMISSION_ERRORS = frozenset({"not-allowed", "service-not-allowed"})
IGNORED_ERRORS = frozenset({"aborted"})
UNSUPPORTED_ERRORS = frozenset({"unsupported"})

UNSUPPORTED_MESSAGE = "Speech recognition not supported. Use Chrome or type your answer instead."
BLOCKED_MESSAGE = "Microphone blocked. Allow microphone access for this site and reload."


@dataclass
class RecognitionResult:
    transcript: str
    is_final: bool = False


@dataclass
class RecognitionEvent:
    results: list[RecognitionResult] = field(default_factory=list)
    result_index: int = 0

    def split(self) -> tuple[str, str]:
        """Return ``(final_text, interim_text)`` for this event only."""
        final_text = ""
        interim_text = ""
        for result in self.results[max(0, self.result_index):]:
            if result.is_final:
                final_text += result.transcript
            else:
                interim_text += result.transcript
        return final_text.strip(), interim_text.strip()


class RecognitionPrimitive:
    """
    Continuous, interim-capable recognizer. Implementations call the three
    callbacks from the event loop thread.
    """

    def __init__(self):
        self.continuous = True
        self.interim_results = True
        self.lang = "en-US"
        self.on_result: Callable[[RecognitionEvent], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self.on_end: Callable[[], None] | None = None

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


RecognitionFactory = Callable[[], "RecognitionPrimitive | None"]


class SpeechCapture:
    """
    Owns at most one recognition handle at a time.

    Browser recognizers end on their own every so often, so when a handle
    ends while ``should_restart()`` still holds the adapter starts a new one
    after ``restart_delay``. Events from a handle that was stopped or
    replaced are ignored.
    """

    def __init__(
        self,
        factory: RecognitionFactory,
        on_text: Callable[[str, str], None],
        on_error: Callable[[str], None],
        should_restart: Callable[[], bool],
        restart_delay: float | None = None,
        session_id: str = "",
    ):
        self._factory = factory
        self._on_text = on_text
        self._on_error = on_error
        self._should_restart = should_restart
        self.restart_delay = float(
            restart_delay if restart_delay is not None else config.RECOGNITION_RESTART_DELAY_SEC
        )
        self.session_id = session_id
        self._handle: RecognitionPrimitive | None = None
        self._continuous = True
        self._restart_timer: asyncio.TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer is not None

    def start(self, continuous: bool = True) -> bool:
        self._cancel_restart()
        if self._handle is not None:
            return True

        recognition = self._factory()
        if recognition is None:
            log_event("speech_capture", "unsupported", self.session_id)
            self._on_error(UNSUPPORTED_MESSAGE)
            return False

        recognition.continuous = continuous
        recognition.interim_results = True
        recognition.lang = "en-US"
        recognition.on_result = lambda event: self._handle_result(recognition, event)
        recognition.on_error = lambda code: self._handle_error(recognition, code)
        recognition.on_end = lambda: self._handle_end(recognition)

        self._handle = recognition
        self._continuous = continuous
        recognition.start()
        log_event("speech_capture", "started", self.session_id, continuous=continuous)
        return True

    def stop(self) -> None:
        self._cancel_restart()
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.stop()
            log_event("speech_capture", "stopped", self.session_id)

    def _handle_result(self, handle: RecognitionPrimitive, event: RecognitionEvent) -> None:
        if handle is not self._handle:
            return
        final_text, interim_text = event.split()
        self._on_text(final_text, interim_text)

    def _handle_error(self, handle: RecognitionPrimitive, code: str) -> None:
        if handle is not self._handle:
            return
        code = str(code or "").strip()
        if code in TRANSIENT_ERRORS:
            # recovered by the restart in _handle_end
            log_event("speech_capture", "transient_error", self.session_id, code=code)
            return
        if code in IGNORED_ERRORS:
            return

        self._handle = None
        handle.stop()
        if code in PERMISSION_ERRORS:
            message = BLOCKED_MESSAGE
        elif code in UNSUPPORTED_ERRORS:
            message = UNSUPPORTED_MESSAGE
        else:
            message = f"Speech recognition error: {code}"
        log_event("speech_capture", "fatal_error", self.session_id, code=code)
        self._on_error(message)

    def _handle_end(self, handle: RecognitionPrimitive) -> None:
        if handle is not self._handle:
            return
        self._handle = None
        self._on_text("", "")
        if self._should_restart():
            loop = asyncio.get_running_loop()
            self._restart_timer = loop.call_later(self.restart_delay, self._restart_if_expected)

    def _restart_if_expected(self) -> None:
        self._restart_timer = None
        if self._handle is None and self._should_restart():
            logger.info("recognition ended while listening, restarting | session_id=%s", self.session_id)
            self.start(continuous=self._continuous)

    def _cancel_restart(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None
