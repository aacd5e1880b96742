import asyncio
import logging
from typing import Callable

from chatbfc.core import config

logger = logging.getLogger("chatbfc.session.turn_detector")


class SilenceDetector:
    """
    Debounce timer deciding when the user has finished a turn.

    Every finalized speech chunk re-arms the timer; the callback fires once
    after ``quiet_period`` seconds without a new chunk.
    """

    def __init__(self, on_silence: Callable[[], None], quiet_period: float | None = None):
        self._on_silence = on_silence
        self.quiet_period = float(quiet_period if quiet_period is not None else config.SILENCE_FINALIZE_SEC)
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.quiet_period, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        logger.debug("silence detected after %.2fs", self.quiet_period)
        self._on_silence()
