import json
import logging
import random
from collections import Counter
from functools import lru_cache
from pathlib import Path

from chatbfc.core import config
from chatbfc.schemas import (
    QUESTION_TYPE_OPTIONS,
    MockInterviewSettings,
    QuestionBankMeta,
    QuestionRecord,
)

logger = logging.getLogger("chatbfc.question_bank")

UNCLASSIFIED_FIRM = "Other"


@lru_cache(maxsize=4)
def _load(path: str) -> tuple[QuestionRecord, ...]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    records = tuple(QuestionRecord.model_validate(item) for item in raw)
    logger.info("question bank loaded | path=%s questions=%s", path, len(records))
    return records


def load_question_bank(path: str | None = None) -> list[QuestionRecord]:
    return list(_load(str(path or config.QUESTION_BANK_PATH)))


def build_meta(questions: list[QuestionRecord]) -> QuestionBankMeta:
    counts_by_firm = Counter(q.firm for q in questions)
    return QuestionBankMeta(
        firms=sorted(firm for firm in counts_by_firm if firm != UNCLASSIFIED_FIRM),
        counts_by_firm=dict(counts_by_firm),
        counts_by_type=dict(Counter(q.question_type for q in questions)),
        counts_by_stage=dict(Counter(q.stage for q in questions)),
    )


def normalize_types(types: list[str] | None) -> list[str]:
    if not types or "all" in types:
        return list(QUESTION_TYPE_OPTIONS)
    return [t for t in types if t in QUESTION_TYPE_OPTIONS]


def filter_questions(
    questions: list[QuestionRecord],
    settings: MockInterviewSettings,
    asked_ids: list[str] | None = None,
) -> list[QuestionRecord]:
    asked = set(asked_ids or [])
    types = [t for t in settings.question_types if t != "all"]
    result = []
    for question in questions:
        if settings.firm and settings.firm != "All" and question.firm != settings.firm:
            continue
        if settings.stage != "all" and question.stage != settings.stage:
            continue
        if types and question.question_type not in types:
            continue
        if settings.difficulty != "any" and question.difficulty != settings.difficulty:
            continue
        if question.id in asked:
            continue
        result.append(question)
    return result


def pick_question(questions: list[QuestionRecord], randomize: bool) -> QuestionRecord | None:
    if not questions:
        return None
    if not randomize:
        return questions[0]
    return random.choice(questions)


def select_seeds(
    questions: list[QuestionRecord],
    firm: str,
    stage: str,
    types: list[str] | None,
) -> tuple[list[QuestionRecord], int]:
    """
    Pick grounding questions for a plan, widening the filter until something matches:
    firm+stage+types, then firm+stage, then firm alone.
    """
    normalized = normalize_types(types)

    by_firm = [q for q in questions if firm == "All" or q.firm == firm]
    by_firm_stage = [q for q in by_firm if stage == "all" or q.stage == stage]
    by_firm_stage_type = [q for q in by_firm_stage if q.question_type in normalized]

    for seeds in (by_firm_stage_type, by_firm_stage, by_firm):
        if seeds:
            return seeds, len(seeds)
    return [], 0
