from __future__ import annotations

import asyncio
import base64
import itertools
import uuid
from typing import Callable

from chatbfc.api import mock_interview
from chatbfc.api import tts as tts_api
from chatbfc.core.logger import log_event
from chatbfc.question_bank import load_question_bank, select_seeds
from chatbfc.schemas import (
    EndRequest,
    FollowUpRequest,
    GradeRequest,
    GradeResponse,
    PlanRequest,
    PlanResponse,
)
from chatbfc.services import completion, tts
from chatbfc.session.collaborators import (
    FollowUpCollaborator,
    GradingCollaborator,
    PlanningCollaborator,
    SpeechSynthesizer,
    SummaryCollaborator,
    SynthesizedAudio,
    no_questions_message,
)
from chatbfc.session.errors import AutoplayBlocked, PlanUnavailable, UpstreamError
from chatbfc.session.playback import AudioOutput
from chatbfc.session.speech_capture import (
    RecognitionEvent,
    RecognitionPrimitive,
    RecognitionResult,
)
from chatbfc.text import sum_conversation_chars

PostFn = Callable[[dict], None]

AUTOPLAY_BLOCKED_MESSAGE = "Audio blocked by the browser. Click to enable audio."

_handle_ids = itertools.count(1)


class ServiceCoach(
    PlanningCollaborator,
    GradingCollaborator,
    SummaryCollaborator,
    FollowUpCollaborator,
    SpeechSynthesizer,
):
    """
    Collaborators served in-process for a WebSocket-hosted session. Calls
    count against the same per-caller limits as the HTTP routes.
    """

    def __init__(self, session_id: str = "", identity: str = "ip:unknown"):
        self.session_id = session_id
        self.identity = identity

    def _upstream(self, exc, request_id: str, event: str) -> UpstreamError:
        log_event("ws_session", event, self.session_id, request_id=request_id, status=exc.status_code, error=exc.message)
        return UpstreamError(exc.message, request_id, exc.status_code)

    def _check_rate(self, scope: str, limit: int, request_id: str | None) -> None:
        retry_after = mock_interview.rate_limited(self.identity, scope, limit)
        if retry_after is None:
            return
        log_event("ws_session", "rate_limited", self.session_id, scope=scope, retry_after_sec=retry_after)
        raise UpstreamError(mock_interview.rate_limit_message(retry_after), request_id, 429)

    async def plan(self, request: PlanRequest) -> PlanResponse:
        request_id = str(uuid.uuid4())
        self._check_rate("plan", mock_interview.PLAN_LIMIT, request_id)
        seeds, seed_count = select_seeds(load_question_bank(), request.firm, request.stage, request.question_types)
        if seed_count == 0:
            raise PlanUnavailable(no_questions_message(request.firm, request.stage))
        try:
            plan = await completion.build_plan(request, seeds, seed_count)
        except completion.CompletionError as exc:
            raise self._upstream(exc, request_id, "plan_failed") from exc
        return PlanResponse(plan=plan, seed_count=seed_count, request_id=request_id)

    async def grade(self, request: GradeRequest) -> GradeResponse:
        request_id = str(uuid.uuid4())
        self._check_rate("grade", mock_interview.GRADE_LIMIT, request_id)
        if len(request.user_answer) > mock_interview.MAX_ANSWER_CHARS:
            raise UpstreamError("Answer too long", request_id, 413)
        try:
            result = await completion.grade_answer(request)
        except completion.CompletionError as exc:
            raise self._upstream(exc, request_id, "grade_failed") from exc
        return result.model_copy(update={"request_id": request_id})

    async def summarize(self, request: EndRequest) -> str:
        request_id = str(uuid.uuid4())
        self._check_rate("end", mock_interview.END_LIMIT, request_id)
        if sum_conversation_chars(request.conversation) > mock_interview.MAX_HISTORY_CHARS:
            raise UpstreamError("Conversation history too long", request_id, 413)
        try:
            return await completion.final_summary(request)
        except completion.CompletionError as exc:
            raise self._upstream(exc, request_id, "summary_failed") from exc

    async def follow_up(self, request: FollowUpRequest) -> str:
        request_id = str(uuid.uuid4())
        self._check_rate("follow_up", mock_interview.FOLLOW_UP_LIMIT, request_id)
        try:
            return await completion.follow_up_question(request)
        except completion.CompletionError as exc:
            raise self._upstream(exc, request_id, "follow_up_failed") from exc

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self._check_rate("tts", tts_api.TTS_LIMIT, None)
        try:
            audio, content_type = await tts.synthesize(text)
        except tts.SynthesisError as exc:
            log_event("ws_session", "tts_failed", self.session_id, status=exc.status_code, error=exc.message)
            raise UpstreamError(exc.message, None, exc.status_code) from exc
        return SynthesizedAudio(data=audio, content_type=content_type)


class BrowserRecognition(RecognitionPrimitive):
    """Recognizer running in the connected browser, driven by JSON messages."""

    def __init__(self, post: PostFn):
        super().__init__()
        self.id = next(_handle_ids)
        self._post = post

    def start(self) -> None:
        self._post({
            "type": "recognition_start",
            "id": self.id,
            "continuous": self.continuous,
            "interimResults": self.interim_results,
            "lang": self.lang,
        })

    def stop(self) -> None:
        self._post({"type": "recognition_stop", "id": self.id})


class BrowserAudioOutput(AudioOutput):
    """
    Audio element in the connected browser. ``play`` waits for the client to
    acknowledge with ``playback_started`` or ``playback_blocked``.
    """

    def __init__(self, post: PostFn):
        super().__init__()
        self._post = post
        self._audio: SynthesizedAudio | None = None
        self._ack: asyncio.Future | None = None
        self.clip_id = 0

    def load(self, audio: SynthesizedAudio) -> None:
        self._audio = audio
        self.clip_id = next(_handle_ids)

    async def play(self) -> None:
        if self._audio is None:
            return
        self._ack = asyncio.get_running_loop().create_future()
        self._post({
            "type": "audio",
            "id": self.clip_id,
            "contentType": self._audio.content_type,
            "data": base64.b64encode(self._audio.data).decode("ascii"),
        })
        try:
            outcome = await self._ack
        finally:
            self._ack = None
        if outcome == "blocked":
            raise AutoplayBlocked(AUTOPLAY_BLOCKED_MESSAGE)

    def _settle(self, outcome: str) -> None:
        if self._ack is not None and not self._ack.done():
            self._ack.set_result(outcome)

    def stop(self) -> None:
        self._settle("stopped")
        if self._audio is not None:
            self._post({"type": "playback_stop", "id": self.clip_id})

    def handle(self, event: str, clip_id=None) -> None:
        if clip_id is not None and clip_id != self.clip_id:
            return
        if event == "playback_started":
            self._settle("started")
        elif event == "playback_blocked":
            self._settle("blocked")
        elif event == "playback_ended":
            self._settle("started")
            if self.on_ended is not None:
                self.on_ended()
        elif event == "playback_error":
            self._settle("started")
            if self.on_error is not None:
                self.on_error()


def parse_recognition_event(payload: dict) -> RecognitionEvent:
    results = []
    for raw in payload.get("results") or []:
        if not isinstance(raw, dict):
            continue
        results.append(
            RecognitionResult(
                transcript=str(raw.get("transcript") or ""),
                is_final=bool(raw.get("isFinal")),
            )
        )
    try:
        result_index = int(payload.get("resultIndex") or 0)
    except (TypeError, ValueError):
        result_index = 0
    return RecognitionEvent(results=results, result_index=result_index)


class BrowserBridge:
    """Routes browser events to the recognizer and audio element it created."""

    def __init__(self, post: PostFn):
        self._post = post
        self.supported = True
        self.recognition: BrowserRecognition | None = None
        self.output: BrowserAudioOutput | None = None

    def create_recognition(self) -> BrowserRecognition | None:
        if not self.supported:
            return None
        self.recognition = BrowserRecognition(self._post)
        return self.recognition

    def create_output(self) -> BrowserAudioOutput:
        self.output = BrowserAudioOutput(self._post)
        return self.output

    def mark_unsupported(self) -> None:
        self.supported = False
        handle = self.recognition
        if handle is not None and handle.on_error is not None:
            handle.on_error("unsupported")

    def dispatch_recognition(self, event: str, payload: dict) -> None:
        handle = self.recognition
        if handle is None:
            return
        handle_id = payload.get("id")
        if handle_id is not None and handle_id != handle.id:
            return

        if event == "recognition_result" and handle.on_result is not None:
            handle.on_result(parse_recognition_event(payload))
        elif event == "recognition_error" and handle.on_error is not None:
            handle.on_error(str(payload.get("error") or ""))
        elif event == "recognition_end" and handle.on_end is not None:
            handle.on_end()

    def dispatch_playback(self, event: str, payload: dict) -> None:
        if self.output is not None:
            self.output.handle(event, payload.get("id"))
