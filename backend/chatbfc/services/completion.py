import json
import logging
import random

from openai import APIStatusError, AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from chatbfc.coffee_chat import heuristic_live_coach, phase_guidance
from chatbfc.core import config
from chatbfc.schemas import (
    CoachRequest,
    CoffeeChatScenario,
    EndRequest,
    FinalCoachRequest,
    FollowUpRequest,
    GradeRequest,
    GradeResponse,
    InterviewerRequest,
    LiveCoachResult,
    PlanItem,
    PlanRequest,
    QuestionRecord,
    TurnCoachRequest,
)
from chatbfc.text import cap_text, too_similar

logger = logging.getLogger("chatbfc.services.completion")

MIN_SEED_SLICE = 8

PLANNER_SYSTEM = "You are a structured planner. Output valid JSON only, no markdown or commentary."
GRADER_SYSTEM = "You are a finance interview coach. Output valid JSON only, no markdown."
SUMMARY_SYSTEM = "You are a mock interview coach. Keep the summary concise and practical."
INTERVIEWER_SYSTEM = "You are a finance interviewer. One question at a time, keep it friendly and concise."


class CompletionError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class _PlanOutput(BaseModel):
    plan: list[PlanItem] = Field(min_length=1)


_client: AsyncOpenAI | None = None


def get_client() -> AsyncOpenAI:
    global _client
    if not config.OPENAI_API_KEY:
        raise CompletionError("Missing OPENAI_API_KEY", status_code=500)
    if _client is None:
        _client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return _client


def _field(obj, name: str):
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_output_text(response) -> str:
    direct = _field(response, "output_text")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()

    parts: list[str] = []
    for item in _field(response, "output") or []:
        for part in _field(item, "content") or []:
            text = _field(part, "text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts).strip()


def parse_json_from_text(text: str) -> dict | None:
    text = (text or "").strip()
    if not text:
        return None

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except ValueError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
            return parsed if isinstance(parsed, dict) else None
        except ValueError:
            return None

    return None


async def _create(messages: list[dict], model: str | None = None) -> str:
    client = get_client()
    try:
        response = await client.responses.create(
            model=model or config.MODEL_NAME,
            input=messages,
        )
    except APIStatusError as exc:
        logger.warning("completion upstream error | status=%s", exc.status_code)
        raise CompletionError(str(exc.message or "Upstream request failed")) from exc
    except Exception as exc:
        logger.warning("completion request failed | err=%s", exc)
        raise CompletionError("Upstream request failed") from exc

    return extract_output_text(response)


async def _respond(system: str, prompt: str, model: str | None = None) -> str:
    return await _create(
        [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        model=model,
    )


def _plan_prompt(request: PlanRequest, seed_list: str, target_count: int) -> str:
    return f"""You are creating a mock interview plan. Use the seed questions below as grounding.
Create a plan of {target_count} questions. Questions should be similar or rephrased, not invented.
Return strict JSON with the shape: {{ "plan": [ ... ] }}.

Each plan item must include:
- qIndex (1-based)
- type (behavioral|accounting|valuation|lbo|merger_math|market|brainteaser|other)
- interviewerQuestion (<= 280 characters)
- expectedRubric (bullet rubric, speak-independent)
- idealAnswerOutline (bullets)

Firm: {request.firm}
Stage: {request.stage}

Seed questions:
{seed_list}"""


async def build_plan(request: PlanRequest, seeds: list[QuestionRecord], seed_count: int) -> list[PlanItem]:
    target_count = min(request.num_questions, max(1, seed_count))
    pool = random.sample(seeds, len(seeds)) if request.randomize else list(seeds)
    seed_slice = pool[:max(MIN_SEED_SLICE, target_count)]
    seed_list = "\n".join(
        f"{idx + 1}. [{seed.question_type}] {seed.prompt}" for idx, seed in enumerate(seed_slice)
    )

    text = await _respond(PLANNER_SYSTEM, _plan_prompt(request, seed_list, target_count))
    try:
        validated = _PlanOutput.model_validate(parse_json_from_text(text))
    except ValidationError as exc:
        logger.warning("plan output rejected | errors=%s", exc.error_count())
        raise CompletionError("Invalid plan output") from exc

    return [
        item.model_copy(
            update={
                "q_index": index + 1,
                "interviewer_question": cap_text(item.interviewer_question, 280),
            }
        )
        for index, item in enumerate(validated.plan[:target_count])
    ]


async def grade_answer(request: GradeRequest) -> GradeResponse:
    item = request.plan_item
    prompt = f"""Grade the user's answer against the rubric and ideal outline.
Return strict JSON with:
score0to10 (0-10),
strengths (array),
gaps (array),
correctedAnswerOutline (bullets),
nextBestSentence (single sentence).

Firm: {request.firm}
Stage: {request.stage}

Question: {item.interviewer_question}

Expected rubric:
{item.expected_rubric}

Ideal outline:
{item.ideal_answer_outline}

User answer:
{request.user_answer}"""

    parsed = parse_json_from_text(await _respond(GRADER_SYSTEM, prompt))
    if isinstance(parsed, dict) and isinstance(parsed.get("score0to10"), (int, float)):
        parsed["score0to10"] = max(0, min(10, parsed["score0to10"]))

    try:
        return GradeResponse.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("grading output rejected | errors=%s", exc.error_count())
        raise CompletionError("Invalid grading output") from exc


async def final_summary(request: EndRequest) -> str:
    conversation = "\n".join(
        f"{'Interviewer' if msg.role == 'interviewer' else 'User'}: {msg.content}"
        for msg in request.conversation
    )
    prompt = f"""Provide a final summary for a mock interview.
Include:
- Top 3 improvements
- Suggested 30-sec intro rewrite tailored to the firm/role
- Best 3 follow-up questions tailored to the scenario
- Overall readiness assessment

Settings:
- Firm: {request.settings.firm}
- Stage: {request.settings.stage}

Conversation:
{conversation}"""

    summary = await _respond(SUMMARY_SYSTEM, prompt, model=config.SUMMARY_MODEL_NAME)
    if not summary:
        raise CompletionError("Empty model output")
    return summary


def _follow_up_prompt(request: FollowUpRequest, rephrase: bool) -> str:
    extra = "\nDo not repeat the previous question; ask about a different angle." if rephrase else ""
    return f"""Acknowledge the user's answer briefly, then ask one follow-up on the same question.
Keep it concise and speakable (<= 280 characters).{extra}

Question: {request.plan_item.interviewer_question}

Previous interviewer line:
{request.previous_question}

Last user answer:
{request.user_answer}

Settings:
- Firm: {request.firm}
- Stage: {request.stage}"""


async def follow_up_question(request: FollowUpRequest) -> str:
    text = cap_text(await _respond(INTERVIEWER_SYSTEM, _follow_up_prompt(request, rephrase=False)), 280)
    if text and too_similar(text, request.previous_question):
        logger.info("follow-up too similar to previous line, regenerating")
        text = cap_text(await _respond(INTERVIEWER_SYSTEM, _follow_up_prompt(request, rephrase=True)), 280)
    if not text:
        raise CompletionError("Empty model output")
    return text


# ---------------------------------------------------------------------------
# coffee chat

COFFEE_CHAT_MAX_CHARS = 280
SHORTEN_SYSTEM = "Shorten the text to <= 280 characters. Preserve intent and keep it conversational."
TURN_COACH_SYSTEM = "You are a coffee chat coach. Keep feedback concise and constructive. Output plain text."
LIVE_COACH_SYSTEM = "You are a coffee chat coach. Output must be JSON only, no markdown. Keep bullets short."
FINAL_COACH_SYSTEM = "You are a coffee chat coach. Keep the summary concise and practical. Output plain text."
COACH_FEEDBACK_SYSTEM = (
    "You are a coffee chat coach. Output must be markdown. Follow this rubric: "
    "1) What they did well (2 bullets). "
    "2) What hurt rapport (tone, interruptions, entitlement). "
    "3) Question quality (too generic? too long? too early for referral ask?). "
    "4) A better next question (1-2 examples). "
    "5) A clean referral ask line tailored to the scenario."
)


def _scenario_lines(scenario: CoffeeChatScenario) -> str:
    return f"""- Track: {scenario.track}
- Firm type: {scenario.firm_type}
- Group: {scenario.group}
- Vibe: {scenario.interviewer_vibe}
- Difficulty: {scenario.difficulty}"""


def _interviewer_system(scenario: CoffeeChatScenario) -> str:
    persona = scenario.persona
    if persona is not None:
        persona_line = f"Interviewer persona: {persona.name}, {persona.title} at {persona.firm} ({persona.group})."
    else:
        persona_line = "Interviewer persona: a finance professional at the target firm."

    return f"""You are a realistic finance coffee chat interviewer.
- Ask exactly 1 question at a time.
- Keep a warm, conversational tone (not an interview).
- Adapt follow-ups to the user's answers.
- Politely challenge vague answers.
- The goal is earning a referral naturally; if asked too early, redirect and revisit later.
- Keep each response <= 280 characters for TTS.
- Include brief acknowledgments before the next question.

{persona_line}

Phase guidance: {phase_guidance(scenario.phase)}

Scenario:
{_scenario_lines(scenario)}
- Goal: {scenario.goal}"""


async def _shorten(text: str) -> str:
    try:
        shortened = await _respond(SHORTEN_SYSTEM, text)
    except CompletionError:
        return ""
    return shortened.strip()[:COFFEE_CHAT_MAX_CHARS]


async def interviewer_turn(request: InterviewerRequest) -> str:
    messages = [{"role": "system", "content": _interviewer_system(request.scenario)}]
    messages.extend(
        {"role": "assistant" if msg.role == "interviewer" else "user", "content": msg.content}
        for msg in request.messages
    )
    text = await _create(messages)
    if not text:
        raise CompletionError("Empty model output")
    if len(text) > COFFEE_CHAT_MAX_CHARS:
        text = await _shorten(text) or f"{text[:COFFEE_CHAT_MAX_CHARS - 3]}..."
    return text


async def turn_review(request: TurnCoachRequest) -> str:
    prompt = f"""Provide a short turn review for a coffee chat answer.
Output plain text with:
1 strength
1 fix
1 better phrasing suggestion
1 next best question the user should ask

Scenario:
{_scenario_lines(request.scenario)}
- Phase: {request.resolved_phase}

User answer:
{request.last_user_turn.strip()}"""

    review = await _respond(TURN_COACH_SYSTEM, prompt, model=config.COACH_MODEL_NAME)
    if not review:
        raise CompletionError("Empty model output")
    return review


async def live_coach(request: TurnCoachRequest) -> LiveCoachResult:
    answer = request.last_user_turn.strip()
    prompt = f"""Classify the user's last answer for a coffee chat. Output strict JSON only.

Return JSON with keys:
- tone (warm/neutral/abrupt)
- clarity (clear/rambling/vague)
- structure (has story/missing story)
- referral (too early/building/ready)
- bullets (array of 2 short bullet strings)

Scenario:
{_scenario_lines(request.scenario)}
- Phase: {request.resolved_phase}

Last user answer:
{answer}"""

    text = await _respond(LIVE_COACH_SYSTEM, prompt, model=config.COACH_MODEL_NAME)
    if not text:
        raise CompletionError("Empty model output")
    try:
        return LiveCoachResult.model_validate(parse_json_from_text(text))
    except ValidationError:
        logger.info("live coach output unusable, using heuristic")
        return heuristic_live_coach(answer)


async def coffee_chat_summary(request: FinalCoachRequest) -> str:
    scenario = request.scenario
    transcript = "\n".join(
        f"{'Interviewer' if msg.role == 'interviewer' else 'User'}: {msg.content}"
        for msg in request.messages
    )
    prompt = f"""Create an end-of-call summary for a coffee chat practice.
Output plain text with sections:
- Top 3 improvements
- Suggested 30-second intro rewrite
- Best 3 questions tailored to the scenario
- Referral ask script + timing advice

Scenario:
{_scenario_lines(scenario)}
- Goal: {scenario.goal}

Conversation transcript:
{transcript}"""

    summary = await _respond(FINAL_COACH_SYSTEM, prompt)
    if not summary:
        raise CompletionError("Empty model output")
    return summary


async def coach_feedback(request: CoachRequest) -> str:
    scenario = request.scenario
    prompt = f"""You are a coffee chat coach helping the user earn a referral. Provide concise, actionable feedback in markdown.

Scenario:
- Track: {scenario.track}
- Firm type: {scenario.firm_type}
- Group: {scenario.group}
- Interviewer vibe: {scenario.interviewer_vibe}
- User goal: {scenario.user_goal}

Transcript:
{request.transcript.strip()}"""

    feedback = await _respond(COACH_FEEDBACK_SYSTEM, prompt)
    if not feedback:
        raise CompletionError("No feedback returned")
    return feedback
