from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

QuestionStage = Literal[
    "coffee_chat",
    "hirevue",
    "first_round",
    "second_round",
    "superday",
    "unknown",
]
StageFilter = Literal[
    "coffee_chat",
    "hirevue",
    "first_round",
    "second_round",
    "superday",
    "unknown",
    "all",
]
QuestionType = Literal[
    "behavioral",
    "accounting",
    "valuation",
    "lbo",
    "merger_math",
    "market",
    "brainteaser",
    "other",
]
Role = Literal["interviewer", "user"]

QUESTION_STAGE_OPTIONS: list[str] = [
    "coffee_chat",
    "hirevue",
    "first_round",
    "second_round",
    "superday",
    "unknown",
]
QUESTION_TYPE_OPTIONS: list[str] = [
    "behavioral",
    "accounting",
    "valuation",
    "lbo",
    "merger_math",
    "market",
    "brainteaser",
    "other",
]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class QuestionRecord(WireModel):
    id: str
    firm: str
    group: str = ""
    stage: QuestionStage = "unknown"
    question_type: QuestionType = "other"
    difficulty: Literal[1, 2, 3] = 2
    prompt: str
    notes: str = ""
    source: str = ""


class QuestionBankMeta(WireModel):
    firms: list[str]
    counts_by_firm: dict[str, int]
    counts_by_type: dict[str, int]
    counts_by_stage: dict[str, int]


class MockInterviewSettings(WireModel):
    firm: str = "All"
    stage: StageFilter = "first_round"
    question_types: list[QuestionType | Literal["all"]] = Field(default_factory=lambda: ["all"])
    difficulty: Literal["any", 1, 2, 3] = "any"
    randomize: bool = True
    follow_ups: bool = True


class ConversationMessage(WireModel):
    role: Role
    content: str = Field(min_length=1)


class PlanItem(WireModel):
    q_index: int = Field(ge=1)
    type: QuestionType
    interviewer_question: str = Field(min_length=1)
    expected_rubric: str = Field(min_length=1)
    ideal_answer_outline: str = Field(min_length=1)


class PlanRequest(WireModel):
    firm: str
    stage: StageFilter
    question_types: list[QuestionType | Literal["all"]] = Field(default_factory=list)
    num_questions: int = Field(default=6, ge=1, le=12)
    randomize: bool = False


class PlanResponse(WireModel):
    plan: list[PlanItem] = Field(min_length=1)
    seed_count: int = 0
    request_id: str | None = None


class GradeRequest(WireModel):
    plan_item: PlanItem
    user_answer: str = Field(min_length=1)
    firm: str
    stage: str


class GradeResponse(WireModel):
    score0to10: float = Field(ge=0, le=10, alias="score0to10")
    strengths: list[str] = Field(min_length=1)
    gaps: list[str] = Field(min_length=1)
    corrected_answer_outline: str = Field(min_length=1)
    next_best_sentence: str = Field(min_length=1)
    request_id: str | None = None


class EndRequest(WireModel):
    settings: MockInterviewSettings
    asked_question_ids: list[str] = Field(default_factory=list)
    conversation: list[ConversationMessage] = Field(default_factory=list)


class EndResponse(WireModel):
    final_summary: str
    request_id: str | None = None


class FollowUpRequest(WireModel):
    plan_item: PlanItem
    user_answer: str = Field(min_length=1)
    previous_question: str = ""
    firm: str
    stage: str


class FollowUpResponse(WireModel):
    interviewer_text: str
    request_id: str | None = None


class TTSRequest(WireModel):
    text: str = ""
    voice_id: str | None = None


class ScenarioPerson(WireModel):
    title: str
    years_exp: int = Field(ge=0)
    vibe: str


class Scenario(WireModel):
    track: str
    firm_type: str
    group: str
    person: ScenarioPerson
    twist: str
    user_goal: Literal["referral"] = "referral"


class ScenarioRequest(WireModel):
    track: str = "Investment Banking"


class Persona(WireModel):
    name: str
    title: str
    firm: str
    group: str


class CoffeeChatScenario(WireModel):
    track: str
    firm_type: str
    group: str
    interviewer_vibe: str
    difficulty: str = "medium"
    goal: Literal["referral"] = "referral"
    phase: str | None = None
    persona: Persona | None = None


class InterviewerRequest(WireModel):
    messages: list[ConversationMessage] = Field(default_factory=list)
    scenario: CoffeeChatScenario | None = None


class InterviewerResponse(WireModel):
    interviewer_text: str
    request_id: str | None = None


class TurnCoachRequest(WireModel):
    last_user_turn: str = ""
    scenario: CoffeeChatScenario | None = None
    phase: str | None = None

    @property
    def resolved_phase(self) -> str:
        return str(self.phase or (self.scenario.phase if self.scenario else None) or "exploration")


class TurnReviewResponse(WireModel):
    turn_review: str
    request_id: str | None = None


class LiveCoachResult(WireModel):
    tone: str = Field(min_length=1)
    clarity: str = Field(min_length=1)
    structure: str = Field(min_length=1)
    referral: str = Field(min_length=1)
    bullets: list[str]
    request_id: str | None = None


class FinalCoachRequest(WireModel):
    messages: list[ConversationMessage] = Field(default_factory=list)
    scenario: CoffeeChatScenario | None = None


class CoachScenario(WireModel):
    track: str
    firm_type: str
    group: str
    interviewer_vibe: str
    user_goal: str = "referral"


class CoachRequest(WireModel):
    transcript: str = ""
    scenario: CoachScenario | None = None


class CoachResponse(WireModel):
    feedback: str
