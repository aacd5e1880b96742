"""
Turn-taking state machine for one practice session.

Every continuation that resumes after an await re-reads the live status and
the session epoch (bumped by ``start`` and ``end``) before acting, so results
that arrive after a pause, an end or a restart are dropped instead of
applied to the wrong session.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable

from chatbfc.core.logger import log_event
from chatbfc.schemas import (
    EndRequest,
    FollowUpRequest,
    GradeRequest,
    GradeResponse,
    MockInterviewSettings,
    PlanItem,
    PlanRequest,
)
from chatbfc.session.collaborators import (
    FollowUpCollaborator,
    GradingCollaborator,
    PlanningCollaborator,
    SpeechSynthesizer,
    SummaryCollaborator,
)
from chatbfc.session.errors import PlanUnavailable, SessionError
from chatbfc.session.playback import AudioOutput, PlaybackController, PlaybackOutcome
from chatbfc.session.speech_capture import RecognitionFactory, SpeechCapture
from chatbfc.session.state import (
    ACTIVE_STATUSES,
    PLAYBACK_STATUSES,
    Message,
    SessionSnapshot,
    SessionStatus,
)
from chatbfc.session.turn_detector import SilenceDetector
from chatbfc.text import normalize_whitespace, should_follow_up

logger = logging.getLogger("chatbfc.session.machine")

SUMMARY_WINDOW = 8
NO_PLAN_MESSAGE = "No plan generated. Adjust filters and try again."


class InterviewSession:
    def __init__(
        self,
        planner: PlanningCollaborator,
        grader: GradingCollaborator,
        summarizer: SummaryCollaborator,
        synthesizer: SpeechSynthesizer,
        recognition_factory: RecognitionFactory,
        output_factory: Callable[[], AudioOutput],
        follow_ups: FollowUpCollaborator | None = None,
        quiet_period: float | None = None,
        restart_delay: float | None = None,
        summary_window: int = SUMMARY_WINDOW,
        session_id: str | None = None,
        on_change: Callable[[SessionSnapshot], None] | None = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self._planner = planner
        self._grader = grader
        self._summarizer = summarizer
        self._follow_ups = follow_ups
        self._summary_window = max(1, int(summary_window))
        self._on_change = on_change

        self._status = SessionStatus.IDLE
        self._epoch = 0
        self._conversation: list[Message] = []
        self._plan: list[PlanItem] = []
        self._current_index = 0
        self._pending_next = False
        self._in_flight = False
        self._turn = ""
        self._followed_up: set[int] = set()
        self._hold_to_talk = False
        self._hold_engaged = False
        self._tasks: set[asyncio.Task] = set()

        self.settings = MockInterviewSettings()
        self.feedback: GradeResponse | None = None
        self.final_summary = ""
        self.seed_count: int | None = None
        self.api_error: str | None = None
        self.speech_error: str | None = None
        self.interim_transcript = ""

        self._capture = SpeechCapture(
            recognition_factory,
            on_text=self._on_speech,
            on_error=self._on_speech_error,
            should_restart=self._expects_capture,
            restart_delay=restart_delay,
            session_id=self.session_id,
        )
        self._detector = SilenceDetector(self._on_silence, quiet_period)
        self._playback = PlaybackController(synthesizer, output_factory, session_id=self.session_id)

    # ------------------------------------------------------------------
    # read-only views

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def conversation(self) -> list[Message]:
        return list(self._conversation)

    @property
    def plan(self) -> list[PlanItem]:
        return list(self._plan)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_item(self) -> PlanItem | None:
        if 0 <= self._current_index < len(self._plan):
            return self._plan[self._current_index]
        return None

    @property
    def pending_next(self) -> bool:
        return self._pending_next

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def hold_to_talk(self) -> bool:
        return self._hold_to_talk

    @property
    def capture_active(self) -> bool:
        return self._capture.active

    @property
    def playback_active(self) -> bool:
        return self._playback.active

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self._status,
            conversation=list(self._conversation),
            plan=list(self._plan),
            current_index=self._current_index,
            pending_next=self._pending_next,
            feedback=self.feedback,
            final_summary=self.final_summary,
            seed_count=self.seed_count,
            api_error=self.api_error,
            speech_error=self.speech_error,
            tts_error=self._playback.tts_error,
            interim_transcript=self.interim_transcript,
            audio_needs_click=self._playback.audio_needs_click,
            hold_to_talk=self._hold_to_talk,
        )

    # ------------------------------------------------------------------
    # internals

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

    def _set_status(self, status: SessionStatus) -> None:
        if status == self._status:
            return
        log_event("session", "transition", self.session_id, previous=self._status, status=status)
        self._status = status
        self._changed()

    def _append(self, role: str, content: str) -> None:
        self._conversation.append(Message(role=role, content=content))
        self._changed()

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "session task failed | session_id=%s",
                self.session_id,
                exc_info=task.exception(),
            )

    def _expects_capture(self) -> bool:
        if self._status != SessionStatus.LISTENING:
            return False
        if self._hold_to_talk:
            return self._hold_engaged
        return True

    def _on_speech(self, final_text: str, interim_text: str) -> None:
        self.interim_transcript = interim_text
        if final_text:
            self._turn = f"{self._turn} {final_text}".strip()
            if not self._hold_to_talk:
                self._detector.arm()
        self._changed()

    def _on_speech_error(self, message: str) -> None:
        self.speech_error = message
        if self._status == SessionStatus.LISTENING and not self._capture.active:
            self._hold_engaged = False
            self._set_status(SessionStatus.PAUSED)
        self._changed()

    def _on_silence(self) -> None:
        if self._status != SessionStatus.LISTENING:
            return
        self._spawn(self.finalize_turn())

    def _stop_capture(self) -> None:
        self._detector.cancel()
        self._capture.stop()
        self.interim_transcript = ""

    def _start_listening(self) -> None:
        if self._playback.active:
            logger.warning("listen requested during playback | session_id=%s", self.session_id)
            return

        self.speech_error = None
        if self._hold_to_talk:
            # capture waits for the hold gesture
            self._set_status(SessionStatus.LISTENING)
            self._changed()
            return

        if self._capture.start(continuous=True):
            self._set_status(SessionStatus.LISTENING)
            if self._turn:
                self._detector.arm()
        else:
            self._set_status(SessionStatus.PAUSED)
        self._changed()

    async def _say(self, status: SessionStatus, text: str | None = None) -> bool:
        """
        Speak ``text`` (or replay the last clip when ``text`` is None), then
        start listening if the session still expects it. Returns True when
        listening was started.
        """
        if self._status in (SessionStatus.PAUSED, SessionStatus.IDLE):
            return False

        epoch = self._epoch
        self._stop_capture()

        def on_playing() -> None:
            if self._epoch == epoch and self._status not in (SessionStatus.PAUSED, SessionStatus.IDLE):
                self._set_status(status)

        if text is None:
            outcome = await self._playback.replay(on_playing=on_playing)
        else:
            outcome = await self._playback.speak(text, on_playing=on_playing)

        if self._epoch != epoch:
            return False
        if outcome == PlaybackOutcome.FAILED:
            self._changed()
        if self._status in (SessionStatus.PAUSED, SessionStatus.IDLE):
            return False

        self._start_listening()
        return self._status == SessionStatus.LISTENING

    def _reset(self) -> None:
        self._epoch += 1
        self._hold_engaged = False
        self._stop_capture()
        self._playback.stop()
        self._plan = []
        self._current_index = 0
        self._pending_next = False
        self._in_flight = False
        self._followed_up.clear()

    # ------------------------------------------------------------------
    # operations

    async def start(self, settings: MockInterviewSettings, num_questions: int = 6) -> bool:
        self._reset()
        self._conversation = []
        self._turn = ""
        self.settings = settings
        self.feedback = None
        self.final_summary = ""
        self.seed_count = None
        self.api_error = None
        self.speech_error = None
        epoch = self._epoch

        self._set_status(SessionStatus.SPEAKING_INTRO)
        self._changed()

        request = PlanRequest(
            firm=settings.firm,
            stage=settings.stage,
            question_types=list(settings.question_types),
            num_questions=num_questions,
            randomize=settings.randomize,
        )
        try:
            response = await self._planner.plan(request)
        except PlanUnavailable as exc:
            if self._epoch == epoch:
                self.api_error = str(exc) or NO_PLAN_MESSAGE
                log_event("session", "plan_unavailable", self.session_id, firm=settings.firm, stage=settings.stage)
                self._set_status(SessionStatus.IDLE)
                self._changed()
            return False
        except SessionError as exc:
            if self._epoch == epoch:
                self.api_error = str(exc)
                log_event("session", "plan_failed", self.session_id, error=str(exc))
                self._set_status(SessionStatus.IDLE)
                self._changed()
            return False

        if self._epoch != epoch:
            return False
        if not response.plan:
            self.api_error = NO_PLAN_MESSAGE
            self._set_status(SessionStatus.IDLE)
            self._changed()
            return False

        self._plan = list(response.plan)
        self.seed_count = response.seed_count
        self._current_index = 0
        log_event("session", "plan_ready", self.session_id, items=len(self._plan), seed_count=response.seed_count)

        self._append("interviewer", self._plan[0].interviewer_question)
        await self._say(SessionStatus.SPEAKING_INTRO, self._plan[0].interviewer_question)
        return True

    def pause(self) -> None:
        if self._status not in ACTIVE_STATUSES:
            return
        self._hold_engaged = False
        self._stop_capture()
        self._playback.stop()
        self._set_status(SessionStatus.PAUSED)

    async def resume(self) -> None:
        if self._status != SessionStatus.PAUSED:
            return

        if self._pending_next:
            self._pending_next = False
            self._set_status(SessionStatus.THINKING)
            self._in_flight = True
            epoch = self._epoch
            try:
                await self._advance_to(self._current_index + 1)
            finally:
                if self._epoch == epoch:
                    self._in_flight = False
            return

        if self._in_flight:
            # the running turn (grading, follow-up or the next question) carries on
            self._set_status(SessionStatus.THINKING)
            return

        self._start_listening()

    def _finalize_blocked(self) -> str | None:
        if self._in_flight:
            return "in_flight"
        if self._status == SessionStatus.IDLE:
            return "idle"
        if self._status in PLAYBACK_STATUSES or self._playback.busy:
            return "speaking"
        return None

    async def finalize_turn(self) -> None:
        """
        Grade the accumulated answer, then ask a follow-up or move on.

        The turn stays in flight until the next interviewer line has played
        and listening has restarted, so nothing else can finalize meanwhile.
        """
        reason = self._finalize_blocked()
        if reason is not None:
            log_event("session", "finalize_dropped", self.session_id, reason=reason)
            return
        answer = self._turn.strip()
        if not answer:
            return
        item = self.current_item
        if item is None:
            return

        self._turn = ""
        self._stop_capture()
        self._append("user", answer)
        self._set_status(SessionStatus.THINKING)
        self._in_flight = True
        epoch = self._epoch
        log_event("session", "finalize", self.session_id, q_index=item.q_index, answer=answer)

        try:
            await self._grade_and_continue(item, answer, epoch)
        finally:
            if self._epoch == epoch:
                self._in_flight = False

    async def _grade_and_continue(self, item: PlanItem, answer: str, epoch: int) -> None:
        try:
            feedback = await self._grader.grade(
                GradeRequest(
                    plan_item=item,
                    user_answer=answer,
                    firm=self.settings.firm,
                    stage=self.settings.stage,
                )
            )
        except SessionError as exc:
            if self._epoch == epoch:
                self.api_error = str(exc)
                log_event("session", "grade_failed", self.session_id, error=str(exc))
                self._set_status(SessionStatus.IDLE)
                self._changed()
            return

        if self._epoch != epoch:
            return

        self.feedback = feedback
        log_event("session", "graded", self.session_id, q_index=item.q_index, score=feedback.score0to10)
        self._changed()

        if self._wants_follow_up(answer):
            self._followed_up.add(self._current_index)
            await self._ask_follow_up(item, answer, epoch)
            return

        await self._proceed()

    def _wants_follow_up(self, answer: str) -> bool:
        return (
            self._follow_ups is not None
            and self.settings.follow_ups
            and self._status != SessionStatus.PAUSED
            and self._current_index not in self._followed_up
            and should_follow_up(answer)
        )

    async def _ask_follow_up(self, item: PlanItem, answer: str, epoch: int) -> None:
        index = self._current_index
        previous = next(
            (m.content for m in reversed(self._conversation) if m.role == "interviewer"),
            item.interviewer_question,
        )
        try:
            text = await self._follow_ups.follow_up(
                FollowUpRequest(
                    plan_item=item,
                    user_answer=answer,
                    previous_question=previous,
                    firm=self.settings.firm,
                    stage=self.settings.stage,
                )
            )
        except SessionError as exc:
            logger.warning("follow-up unavailable, advancing | session_id=%s err=%s", self.session_id, exc)
            text = ""

        if self._epoch != epoch or self._current_index != index:
            return

        text = normalize_whitespace(text)
        if not text or self._status == SessionStatus.PAUSED:
            await self._proceed()
            return

        log_event("session", "follow_up", self.session_id, q_index=item.q_index)
        self._append("interviewer", text)
        await self._say(SessionStatus.SPEAKING, text)

    async def _proceed(self) -> None:
        next_index = self._current_index + 1
        if next_index >= len(self._plan):
            log_event("session", "completed", self.session_id, answered=len(self._plan))
            self._set_status(SessionStatus.IDLE)
            return
        if self._status == SessionStatus.PAUSED:
            self._pending_next = True
            self._changed()
            return
        await self._advance_to(next_index)

    async def _advance_to(self, index: int) -> None:
        if index >= len(self._plan):
            self._set_status(SessionStatus.IDLE)
            return
        self._current_index = index
        self._stop_capture()
        question = self._plan[index].interviewer_question
        self._append("interviewer", question)
        await self._say(SessionStatus.SPEAKING, question)

    async def submit_answer(self, text: str) -> None:
        """Typed answer, for when speech capture is unavailable."""
        value = normalize_whitespace(text)
        if not value:
            return
        reason = self._finalize_blocked()
        if reason is not None:
            log_event("session", "typed_answer_dropped", self.session_id, reason=reason)
            return
        self._turn = f"{self._turn} {value}".strip()
        await self.finalize_turn()

    async def end(self) -> None:
        asked_ids = [str(item.q_index) for item in self._plan]
        self._reset()
        epoch = self._epoch

        leftover = self._turn.strip()
        self._turn = ""
        if leftover:
            # kept in the transcript, never graded
            self._append("user", leftover)

        self._set_status(SessionStatus.IDLE)
        log_event("session", "ended", self.session_id, turns=len(self._conversation))
        self._changed()

        if not self._conversation:
            return

        request = EndRequest(
            settings=self.settings,
            asked_question_ids=asked_ids,
            conversation=[m.to_dict() for m in self._conversation[-self._summary_window:]],
        )
        try:
            summary = await self._summarizer.summarize(request)
        except SessionError as exc:
            if self._epoch == epoch:
                self.api_error = str(exc)
                self._changed()
            return

        if self._epoch == epoch:
            self.final_summary = summary
            self._changed()

    # ------------------------------------------------------------------
    # hold-to-talk and audio retry

    def set_hold_to_talk(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._hold_to_talk:
            return
        self._hold_to_talk = enabled
        self._hold_engaged = False
        if self._status == SessionStatus.LISTENING:
            self._stop_capture()
            if not enabled:
                self._start_listening()
        self._changed()

    def hold_start(self) -> None:
        if not self._hold_to_talk or self._status != SessionStatus.LISTENING or self._capture.active:
            return
        self._hold_engaged = True
        if not self._capture.start(continuous=False):
            self._hold_engaged = False
        self._changed()

    async def hold_end(self) -> None:
        if not self._hold_to_talk or not self._hold_engaged:
            return
        self._hold_engaged = False
        self._stop_capture()
        self._changed()
        if self._turn.strip():
            await self.finalize_turn()

    async def retry_audio(self) -> None:
        if not self._playback.audio_needs_click or self._status != SessionStatus.LISTENING:
            return
        await self._say(SessionStatus.SPEAKING)

    async def close(self) -> None:
        self._epoch += 1
        self._hold_engaged = False
        self._stop_capture()
        self._playback.close()
        self._status = SessionStatus.IDLE
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
