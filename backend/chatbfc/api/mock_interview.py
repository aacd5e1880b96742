import logging
import uuid

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from chatbfc.core import config
from chatbfc.core.logger import log_event
from chatbfc.question_bank import build_meta, load_question_bank, select_seeds
from chatbfc.rate_limit import limiter, request_identity
from chatbfc.schemas import (
    EndRequest,
    EndResponse,
    FollowUpRequest,
    FollowUpResponse,
    GradeRequest,
    PlanRequest,
    PlanResponse,
)
from chatbfc.services import completion
from chatbfc.text import sum_conversation_chars

logger = logging.getLogger("chatbfc.api.mock_interview")

router = APIRouter(prefix="/api")

RATE_WINDOW_SEC = 10 * 60
PLAN_LIMIT = 20
GRADE_LIMIT = 90
END_LIMIT = 10
FOLLOW_UP_LIMIT = 60

MAX_ANSWER_CHARS = 4000
MAX_HISTORY_CHARS = 8000


def error_response(message: str, request_id: str | None, status_code: int, headers: dict | None = None) -> JSONResponse:
    content = {"error": message}
    if request_id:
        content["requestId"] = request_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def rate_limited(identity: str, scope: str, limit: int) -> int | None:
    """Seconds until ``identity`` may call ``scope`` again, or None when allowed."""
    if not config.RATE_LIMIT_ENABLED:
        return None
    allowed, retry_after = limiter.check(f"{scope}:{identity}", limit, RATE_WINDOW_SEC)
    return None if allowed else retry_after


def rate_limit_message(retry_after: int) -> str:
    return f"Rate limit exceeded. Try again in {retry_after} seconds."


def enforce_rate_limit(request: Request, scope: str, limit: int, request_id: str | None) -> JSONResponse | None:
    retry_after = rate_limited(request_identity(request), scope, limit)
    if retry_after is None:
        return None
    log_event("api", "rate_limited", request_id or "", scope=scope, retry_after_sec=retry_after)
    return error_response(
        rate_limit_message(retry_after),
        request_id,
        429,
        headers={"Retry-After": str(retry_after)},
    )


async def parse_body(request: Request, model: type[BaseModel]):
    try:
        return model.model_validate(await request.json())
    except (ValueError, ValidationError):
        return None


@router.get("/question-bank/meta")
async def question_bank_meta():
    return build_meta(load_question_bank()).to_wire()


@router.post("/mock-interview/plan")
async def plan_interview(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "plan", PLAN_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, PlanRequest)
    if body is None:
        return error_response("Invalid request body", request_id, 400)

    seeds, seed_count = select_seeds(load_question_bank(), body.firm, body.stage, body.question_types)
    if seed_count == 0:
        log_event("api", "plan_no_seeds", request_id, firm=body.firm, stage=body.stage)
        return error_response(f"No questions found for firm {body.firm}.", request_id, 404)

    try:
        plan = await completion.build_plan(body, seeds, seed_count)
    except completion.CompletionError as exc:
        log_event("api", "plan_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    log_event("api", "plan_built", request_id, items=len(plan), seed_count=seed_count)
    return PlanResponse(plan=plan, seed_count=seed_count, request_id=request_id).to_wire()


@router.post("/mock-interview/grade")
async def grade_turn(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "grade", GRADE_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, GradeRequest)
    if body is None:
        return error_response("Invalid request body", request_id, 400)
    if len(body.user_answer) > MAX_ANSWER_CHARS:
        return error_response("Answer too long", request_id, 413)

    try:
        result = await completion.grade_answer(body)
    except completion.CompletionError as exc:
        log_event("api", "grade_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    log_event("api", "graded", request_id, q_index=body.plan_item.q_index, score=result.score0to10)
    return result.model_copy(update={"request_id": request_id}).to_wire()


@router.post("/mock-interview/end")
async def end_interview(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "end", END_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, EndRequest)
    if body is None:
        return error_response("Invalid request body", request_id, 400)
    if sum_conversation_chars(body.conversation) > MAX_HISTORY_CHARS:
        return error_response("Conversation history too long", request_id, 413)

    try:
        summary = await completion.final_summary(body)
    except completion.CompletionError as exc:
        log_event("api", "summary_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    log_event("api", "summary_built", request_id, turns=len(body.conversation))
    return EndResponse(final_summary=summary, request_id=request_id).to_wire()


@router.post("/mock-interview/follow-up")
async def follow_up(request: Request):
    request_id = str(uuid.uuid4())
    limited = enforce_rate_limit(request, "follow_up", FOLLOW_UP_LIMIT, request_id)
    if limited is not None:
        return limited

    body = await parse_body(request, FollowUpRequest)
    if body is None:
        return error_response("Invalid request body", request_id, 400)
    if len(body.user_answer) > MAX_ANSWER_CHARS:
        return error_response("Answer too long", request_id, 413)

    try:
        text = await completion.follow_up_question(body)
    except completion.CompletionError as exc:
        log_event("api", "follow_up_failed", request_id, status=exc.status_code, error=exc.message)
        return error_response(exc.message, request_id, exc.status_code)

    return FollowUpResponse(interviewer_text=text, request_id=request_id).to_wire()
