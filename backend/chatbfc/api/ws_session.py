import asyncio
import json
import logging
import time
import uuid

from fastapi import APIRouter, WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from chatbfc.api.ws_session_components import BrowserBridge, ServiceCoach
from chatbfc.core import config
from chatbfc.core.logger import log_event
from chatbfc.rate_limit import request_identity
from chatbfc.schemas import MockInterviewSettings
from chatbfc.session.machine import InterviewSession

logger = logging.getLogger("chatbfc.api.ws_session")

router = APIRouter()

RECOGNITION_EVENTS = {"recognition_result", "recognition_error", "recognition_end"}
PLAYBACK_EVENTS = {"playback_started", "playback_ended", "playback_error", "playback_blocked"}

# swapped out in tests
coach_factory = ServiceCoach


def _num_questions(payload: dict) -> int:
    try:
        value = int(payload.get("numQuestions") or 6)
    except (TypeError, ValueError):
        value = 6
    return max(1, min(12, value))


@router.websocket("/ws/mock-interview")
async def mock_interview_ws(websocket: WebSocket):
    # ================= LIFECYCLE OWNER =================
    session_id = str(uuid.uuid4())
    stop_event = asyncio.Event()
    tasks: set[asyncio.Task] = set()
    outbox: asyncio.Queue = asyncio.Queue()

    await websocket.accept()

    def _log_event(event: str, **fields):
        log_event("ws_session", event, session_id, **fields)

    def post(payload: dict) -> None:
        outbox.put_nowait(payload)

    bridge = BrowserBridge(post)
    coach = coach_factory(session_id, identity=request_identity(websocket))
    session = InterviewSession(
        planner=coach,
        grader=coach,
        summarizer=coach,
        synthesizer=coach,
        follow_ups=coach,
        recognition_factory=bridge.create_recognition,
        output_factory=bridge.create_output,
        session_id=session_id,
        on_change=lambda snapshot: post({"type": "state", "state": snapshot.to_dict()}),
    )
    _log_event("connect")

    def spawn(coro):
        task = asyncio.create_task(coro)
        tasks.add(task)
        task.add_done_callback(_command_done)
        return task

    def _command_done(task: asyncio.Task) -> None:
        tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("ws command failed | session_id=%s", session_id, exc_info=task.exception())

    def handle_command(payload_type: str, payload: dict) -> bool:
        if payload_type == "start":
            try:
                settings = MockInterviewSettings.model_validate(payload.get("settings") or {})
            except ValidationError as exc:
                logger.warning("invalid settings | session_id=%s errors=%s", session_id, exc.error_count())
                post({"type": "error", "error": "Invalid settings"})
                return True
            spawn(session.start(settings, _num_questions(payload)))
        elif payload_type == "pause":
            session.pause()
        elif payload_type == "resume":
            spawn(session.resume())
        elif payload_type == "end":
            spawn(session.end())
        elif payload_type == "submit_answer":
            spawn(session.submit_answer(str(payload.get("text") or "")))
        elif payload_type == "hold_start":
            session.hold_start()
        elif payload_type == "hold_end":
            spawn(session.hold_end())
        elif payload_type == "set_hold_to_talk":
            session.set_hold_to_talk(bool(payload.get("enabled")))
        elif payload_type == "retry_audio":
            spawn(session.retry_audio())
        elif payload_type == "recognition_unsupported":
            bridge.mark_unsupported()
        elif payload_type in RECOGNITION_EVENTS:
            bridge.dispatch_recognition(payload_type, payload)
        elif payload_type in PLAYBACK_EVENTS:
            bridge.dispatch_playback(payload_type, payload)
        elif payload_type == "ping":
            post({"type": "pong", "session_id": session_id, "ts": time.time()})
        else:
            return False
        return True

    # ================= OUTBOUND =================
    async def send_messages():
        while not stop_event.is_set():
            payload = await outbox.get()
            if websocket.client_state != WebSocketState.CONNECTED:
                return
            try:
                await websocket.send_text(json.dumps(payload))
            except Exception as exc:
                logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)
                stop_event.set()
                return

    # ================= INBOUND =================
    async def receive_messages():
        try:
            while not stop_event.is_set():
                msg = await websocket.receive()
                if msg["type"] == "websocket.disconnect":
                    _log_event("disconnect", reason="client_disconnect")
                    break

                text_payload = str(msg.get("text") or "")
                if not text_payload:
                    continue
                if len(text_payload.encode("utf-8")) > config.WS_MAX_TEXT_BYTES:
                    logger.warning("WS message too large | session_id=%s bytes=%s", session_id, len(text_payload))
                    break
                try:
                    payload = json.loads(text_payload)
                except ValueError:
                    logger.warning("WS message is not JSON | session_id=%s", session_id)
                    continue
                if not isinstance(payload, dict):
                    continue

                payload_type = str(payload.get("type") or "").strip().lower()
                if not handle_command(payload_type, payload):
                    _log_event("unknown_message", message_type=payload_type or "unknown")
        finally:
            stop_event.set()

    # ================= RUN TASKS =================
    receiver = asyncio.create_task(receive_messages())
    sender = asyncio.create_task(send_messages())
    try:
        await stop_event.wait()
    finally:
        for task in (receiver, sender, *tasks):
            task.cancel()
        await asyncio.gather(receiver, sender, *tasks, return_exceptions=True)
        await session.close()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        _log_event("session_stopped")
