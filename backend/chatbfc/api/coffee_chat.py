import uuid

from fastapi import APIRouter, Request

from chatbfc.api.mock_interview import enforce_rate_limit, error_response, parse_body
from chatbfc.coffee_chat import (
    FIRM_TYPES_BY_TRACK,
    GROUPS_BY_TRACK,
    PHASE_GUIDANCE,
    ROLE_TRACKS,
    VIBES,
    generate_scenario,
)
from chatbfc.core.logger import log_event
from chatbfc.schemas import (
    CoachRequest,
    CoachResponse,
    ConversationMessage,
    EndResponse,
    FinalCoachRequest,
    InterviewerRequest,
    InterviewerResponse,
    ScenarioRequest,
    TurnCoachRequest,
    TurnReviewResponse,
)
from chatbfc.services import completion

router = APIRouter(prefix="/api")

INTERVIEWER_LIMIT = 20
TURN_COACH_LIMIT = 30
LIVE_COACH_LIMIT = 120
FINAL_COACH_LIMIT = 10
COACH_LIMIT = 20

INTERVIEWER_MAX_MESSAGE_CHARS = 1000
INTERVIEWER_MAX_TOTAL_CHARS = 4000
TURN_COACH_MAX_CHARS = 2000
LIVE_COACH_MAX_CHARS = 1200
FINAL_MAX_MESSAGE_CHARS = 1200
FINAL_MAX_TOTAL_CHARS = 6000


def _oversized(messages: list[ConversationMessage], max_message: int, max_total: int) -> str | None:
    total = 0
    for msg in messages:
        if len(msg.content) > max_message:
            return "Message too long"
        total += len(msg.content)
    if total > max_total:
        return "Payload too large"
    return None


@router.get("/coffee-chat/meta")
async def coffee_chat_meta():
    return {
        "tracks": ROLE_TRACKS,
        "firmTypesByTrack": FIRM_TYPES_BY_TRACK,
        "groupsByTrack": GROUPS_BY_TRACK,
        "vibes": VIBES,
        "phases": list(PHASE_GUIDANCE),
    }


@router.post("/coffee-chat/scenario")
async def new_scenario(request: Request):
    body = await parse_body(request, ScenarioRequest)
    if body is None:
        return error_response("Invalid request body", None, 400)
    try:
        scenario = generate_scenario(body.track)
    except ValueError as exc:
        return error_response(str(exc), None, 400)
    return scenario.to_wire()


@router.post("/interviewer")
async def interviewer(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "interviewer", INTERVIEWER_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, InterviewerRequest)
    if body is None:
        return error_response("Invalid JSON", request_id, 400)
    if body.scenario is None:
        return error_response("Missing scenario", request_id, 400)
    if not body.messages:
        return error_response("Missing messages", request_id, 400)
    too_big = _oversized(body.messages, INTERVIEWER_MAX_MESSAGE_CHARS, INTERVIEWER_MAX_TOTAL_CHARS)
    if too_big:
        return error_response(too_big, request_id, 413)

    try:
        text = await completion.interviewer_turn(body)
    except completion.CompletionError as exc:
        log_event("api", "interviewer_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    log_event("api", "interviewer_turn", request_id, phase=body.scenario.phase or "opening", chars=len(text))
    return InterviewerResponse(interviewer_text=text, request_id=request_id).to_wire()


async def _coach_turn_body(request: Request, request_id: str, max_chars: int):
    body = await parse_body(request, TurnCoachRequest)
    if body is None:
        return None, error_response("Invalid JSON", request_id, 400)
    if not body.last_user_turn.strip() or body.scenario is None:
        return None, error_response("Missing lastUserTurn or scenario", request_id, 400)
    if len(body.last_user_turn.strip()) > max_chars:
        return None, error_response("User turn too long", request_id, 413)
    return body, None


@router.post("/coach/turn")
async def coach_turn(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "coach_turn", TURN_COACH_LIMIT, request_id)
    if limited is not None:
        return limited

    body, rejected = await _coach_turn_body(request, request_id, TURN_COACH_MAX_CHARS)
    if rejected is not None:
        return rejected

    try:
        review = await completion.turn_review(body)
    except completion.CompletionError as exc:
        log_event("api", "turn_review_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    return TurnReviewResponse(turn_review=review, request_id=request_id).to_wire()


@router.post("/coach/live")
async def coach_live(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "coach_live", LIVE_COACH_LIMIT, request_id)
    if limited is not None:
        return limited

    body, rejected = await _coach_turn_body(request, request_id, LIVE_COACH_MAX_CHARS)
    if rejected is not None:
        return rejected

    try:
        result = await completion.live_coach(body)
    except completion.CompletionError as exc:
        log_event("api", "live_coach_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    return result.model_copy(update={"request_id": request_id}).to_wire()


@router.post("/coach/final")
async def coach_final(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "coach_final", FINAL_COACH_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, FinalCoachRequest)
    if body is None:
        return error_response("Invalid JSON", request_id, 400)
    if body.scenario is None or not body.messages:
        return error_response("Missing messages or scenario", request_id, 400)
    too_big = _oversized(body.messages, FINAL_MAX_MESSAGE_CHARS, FINAL_MAX_TOTAL_CHARS)
    if too_big:
        return error_response(too_big, request_id, 413)

    try:
        summary = await completion.coffee_chat_summary(body)
    except completion.CompletionError as exc:
        log_event("api", "coffee_chat_summary_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    log_event("api", "coffee_chat_summary_built", request_id, turns=len(body.messages))
    return EndResponse(final_summary=summary, request_id=request_id).to_wire()


@router.post("/coach")
async def coach(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "coach", COACH_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, CoachRequest)
    if body is None:
        return error_response("Invalid JSON", request_id, 400)
    if not body.transcript.strip() or body.scenario is None:
        return error_response("Missing transcript or scenario", request_id, 400)

    try:
        feedback = await completion.coach_feedback(body)
    except completion.CompletionError as exc:
        log_event("api", "coach_feedback_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    return CoachResponse(feedback=feedback).to_wire()
