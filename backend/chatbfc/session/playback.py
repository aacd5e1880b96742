"""Interviewer text-to-speech playback."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable

from chatbfc.core import config
from chatbfc.core.logger import log_event
from chatbfc.session.collaborators import SpeechSynthesizer, SynthesizedAudio
from chatbfc.session.errors import AutoplayBlocked
from chatbfc.text import cap_text

logger = logging.getLogger("chatbfc.session.playback")


class PlaybackOutcome(str, Enum):
    ENDED = "ended"
    ERROR = "error"
    BLOCKED = "blocked"
    STOPPED = "stopped"
    SKIPPED = "skipped"
    FAILED = "failed"


class AudioOutput:
    """A single reusable audio element."""

    def __init__(self):
        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[], None] | None = None

    def load(self, audio: SynthesizedAudio) -> None:
        raise NotImplementedError

    async def play(self) -> None:
        """Start playback; raise ``AutoplayBlocked`` if the output refuses."""
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PlaybackController:
    """
    Speaks interviewer text and reports when playback is over.

    ``speak`` resolves once playback ends, errors, is blocked, is stopped or
    cannot be synthesized. It never raises, so callers can always move on to
    the next step.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        output_factory: Callable[[], AudioOutput],
        max_chars: int | None = None,
        session_id: str = "",
    ):
        self._synthesizer = synthesizer
        self._output_factory = output_factory
        self.max_chars = int(max_chars or config.TTS_MAX_CHARS)
        self.session_id = session_id
        self._output: AudioOutput | None = None
        self._pending: asyncio.Future | None = None
        self._playing: asyncio.Future | None = None
        self.tts_error: str | None = None
        self.audio_needs_click = False

    @property
    def active(self) -> bool:
        return self._playing is not None and not self._playing.done()

    @property
    def busy(self) -> bool:
        """True from the start of synthesis until ``speak`` resolves."""
        return self._pending is not None

    def _ensure_output(self) -> AudioOutput:
        # built on first use so the first play follows a user gesture
        if self._output is None:
            self._output = self._output_factory()
        return self._output

    def _resolve(self, future: asyncio.Future, outcome: PlaybackOutcome) -> None:
        if self._pending is future:
            self._pending = None
        if self._playing is future:
            self._playing = None
        if not future.done():
            future.set_result(outcome)
            log_event("playback", "resolved", self.session_id, outcome=outcome)

    async def speak(self, text: str, on_playing: Callable[[], None] | None = None) -> PlaybackOutcome:
        trimmed = str(text or "").strip()
        if not trimmed:
            return PlaybackOutcome.SKIPPED

        if self._pending is not None:
            self._resolve(self._pending, PlaybackOutcome.STOPPED)

        self.tts_error = None
        future = asyncio.get_running_loop().create_future()
        self._pending = future

        try:
            audio = await self._synthesizer.synthesize(cap_text(trimmed, self.max_chars))
        except Exception as exc:
            self.tts_error = str(exc) or "TTS failed."
            logger.warning("speech synthesis failed | session_id=%s err=%s", self.session_id, exc)
            self._resolve(future, PlaybackOutcome.FAILED)
            return future.result()

        if future.done():
            return future.result()

        output = self._ensure_output()
        output.stop()
        output.load(audio)
        return await self._play(output, future, on_playing)

    async def replay(self, on_playing: Callable[[], None] | None = None) -> PlaybackOutcome:
        """Retry the last loaded clip after an autoplay block."""
        if self._output is None or not self.audio_needs_click:
            return PlaybackOutcome.SKIPPED
        if self._pending is not None:
            self._resolve(self._pending, PlaybackOutcome.STOPPED)
        future = asyncio.get_running_loop().create_future()
        self._pending = future
        return await self._play(self._output, future, on_playing)

    async def _play(
        self,
        output: AudioOutput,
        future: asyncio.Future,
        on_playing: Callable[[], None] | None,
    ) -> PlaybackOutcome:
        output.on_ended = lambda: self._resolve(future, PlaybackOutcome.ENDED)
        output.on_error = lambda: self._resolve(future, PlaybackOutcome.ERROR)

        self._playing = future
        if on_playing is not None:
            on_playing()
        try:
            await output.play()
        except AutoplayBlocked:
            self.audio_needs_click = True
            self._resolve(future, PlaybackOutcome.BLOCKED)
        else:
            self.audio_needs_click = False

        return await future

    def stop(self) -> None:
        if self._output is not None:
            self._output.stop()
        if self._pending is not None:
            self._resolve(self._pending, PlaybackOutcome.STOPPED)

    def close(self) -> None:
        self.stop()
        if self._output is not None:
            self._output.close()
            self._output = None
