"""Coffee-chat practice scenarios and the offline live-coaching fallback."""
from __future__ import annotations

import random
import re

from chatbfc.schemas import LiveCoachResult, Scenario, ScenarioPerson

ROLE_TRACKS: list[str] = [
    "Investment Banking",
    "Private Equity",
    "Equity Research",
    "Sales & Trading",
    "Venture Capital",
    "Corporate Development",
]

FIRM_TYPES_BY_TRACK: dict[str, list[str]] = {
    "Investment Banking": ["Bulge Bracket", "Elite Boutique", "Middle Market"],
    "Private Equity": ["Mega-fund", "Upper Middle Market", "Growth Equity"],
    "Equity Research": ["Large Bank ER", "Boutique Research", "Independent Research"],
    "Sales & Trading": ["Bulge Bracket S&T", "Macro-focused Desk", "Credit-focused Desk"],
    "Venture Capital": ["Seed Fund", "Series A/B Fund", "CVC (Corporate VC)"],
    "Corporate Development": ["Big Tech Corp Dev", "Public Co. Corp Dev", "Strategic M&A Team"],
}

GROUPS_BY_TRACK: dict[str, list[str]] = {
    "Investment Banking": ["TMT", "Healthcare", "Industrials", "FIG", "Consumer/Retail"],
    "Private Equity": ["Software", "Healthcare Services", "Industrials", "Consumer", "Business Services"],
    "Equity Research": ["Semis", "Internet", "Payments/FinTech", "Healthcare", "Industrials"],
    "Sales & Trading": ["Rates", "FX", "Credit", "Equities", "Commodities"],
    "Venture Capital": ["DevTools", "AI Applications", "FinTech", "Healthcare IT", "Consumer"],
    "Corporate Development": ["Platform M&A", "Product M&A", "Strategic Partnerships", "Corp Strategy"],
}

# title -> plausible years of experience
TITLES: dict[str, list[int]] = {
    "Analyst": [0, 1, 2],
    "Associate": [2, 3, 4, 5],
    "VP": [5, 6, 7, 8],
}

VIBES: list[str] = ["warm", "neutral", "bored", "rushed", "skeptical", "annoyed"]

TWISTS: list[str] = [
    "They only have 12 minutes.",
    "They don't like generic questions and will push back.",
    "They are multitasking and give short answers unless you earn attention.",
    "They challenge your story: 'Why finance? Why now?'",
    "They expect you to ask for specific advice, not 'walk me through your role'.",
    "They dislike arrogance and are sensitive to tone.",
]

PHASE_GUIDANCE: dict[str, str] = {
    "opening": (
        "Start with a warm greeting, small talk and permission to chat. Give a 15 to 25 second "
        "'about me' intro. Then invite the user to share their 30-second background."
    ),
    "user_intro": "Acknowledge their intro and ask a gentle follow-up to deepen their story.",
    "exploration": "Explore their interests and what drew them to finance in a conversational way.",
    "fit": "Ask why this firm/group/role with natural phrasing, not an interview tone.",
    "user_questions": "Invite their questions and respond briefly. Encourage 1-2 thoughtful questions.",
    "close": "Wrap up with a friendly close and a natural referral moment if appropriate.",
}
DEFAULT_PHASE = "opening"

FILLER_WORDS = ["um", "uh", "like", "you know", "sort of", "kind of"]
_ENTITLEMENT_RE = re.compile(r"(i deserve|i should|get me|give me)", re.IGNORECASE)
LONG_ANSWER_CHARS = 500


def generate_scenario(track: str, rng: random.Random | None = None) -> Scenario:
    if track not in FIRM_TYPES_BY_TRACK:
        raise ValueError(f"Unknown track: {track}")
    rng = rng or random.Random()
    title = rng.choice(list(TITLES))
    return Scenario(
        track=track,
        firm_type=rng.choice(FIRM_TYPES_BY_TRACK[track]),
        group=rng.choice(GROUPS_BY_TRACK[track]),
        person=ScenarioPerson(
            title=title,
            years_exp=rng.choice(TITLES[title]),
            vibe=rng.choice(VIBES),
        ),
        twist=rng.choice(TWISTS),
    )


def phase_guidance(phase: str | None) -> str:
    return PHASE_GUIDANCE.get(phase or DEFAULT_PHASE, PHASE_GUIDANCE[DEFAULT_PHASE])


def heuristic_live_coach(text: str) -> LiveCoachResult:
    """Rule-of-thumb read of one answer, used when the model output is unusable."""
    lower = text.lower()
    filler_count = sum(lower.count(word) for word in FILLER_WORDS)
    questions = text.count("?")
    entitled = bool(_ENTITLEMENT_RE.search(text))

    return LiveCoachResult(
        tone="abrupt" if entitled else "neutral",
        clarity="rambling" if len(text) > LONG_ANSWER_CHARS else "clear",
        structure="missing story" if questions == 0 else "has story",
        referral="too early" if entitled else "building",
        bullets=[
            "Reduce filler words to sound more confident." if filler_count > 2 else "Keep the tone warm and concise.",
            "Add one specific question to show curiosity." if questions == 0 else "Good use of a question, stay focused.",
        ],
    )
