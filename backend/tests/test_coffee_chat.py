import json
import random

import pytest
from fastapi.testclient import TestClient

from chatbfc.coffee_chat import (
    FIRM_TYPES_BY_TRACK,
    GROUPS_BY_TRACK,
    TITLES,
    generate_scenario,
    heuristic_live_coach,
)
from chatbfc.core import config
from chatbfc.main import app
from chatbfc.services import completion, tts

SCENARIO = {
    "track": "Investment Banking",
    "firmType": "Elite Boutique",
    "group": "TMT",
    "interviewerVibe": "skeptical",
    "phase": "fit",
    "persona": {"name": "Dana", "title": "Associate", "firm": "Evercore", "group": "TMT"},
}


class _FakeResponses:
    def __init__(self, outputs: list[str]):
        self.outputs = list(outputs)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return {"output_text": self.outputs.pop(0)}


class _FakeClient:
    def __init__(self, outputs: list[str]):
        self.responses = _FakeResponses(outputs)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _use_model(monkeypatch: pytest.MonkeyPatch, *outputs: str) -> _FakeClient:
    fake = _FakeClient(list(outputs))
    monkeypatch.setattr(completion, "get_client", lambda: fake)
    return fake


def test_generate_scenario_draws_from_the_track():
    scenario = generate_scenario("Private Equity", rng=random.Random(7))

    assert scenario.track == "Private Equity"
    assert scenario.firm_type in FIRM_TYPES_BY_TRACK["Private Equity"]
    assert scenario.group in GROUPS_BY_TRACK["Private Equity"]
    assert scenario.person.years_exp in TITLES[scenario.person.title]
    assert scenario.user_goal == "referral"


def test_generate_scenario_is_repeatable_with_a_seed():
    first = generate_scenario("Sales & Trading", rng=random.Random(3))
    second = generate_scenario("Sales & Trading", rng=random.Random(3))
    assert first == second


def test_generate_scenario_rejects_unknown_track():
    with pytest.raises(ValueError, match="Unknown track: Hedge Funds"):
        generate_scenario("Hedge Funds")


def test_heuristic_flags_entitlement_and_missing_question():
    result = heuristic_live_coach("Honestly I deserve a referral, um, like, you know, um.")

    assert result.tone == "abrupt"
    assert result.referral == "too early"
    assert result.structure == "missing story"
    assert result.bullets == [
        "Reduce filler words to sound more confident.",
        "Add one specific question to show curiosity.",
    ]


def test_heuristic_reads_a_long_curious_answer():
    text = "I spent two summers in credit and want to learn how your group sources deals. " * 8 + "What surprised you?"
    result = heuristic_live_coach(text)

    assert result.tone == "neutral"
    assert result.clarity == "rambling"
    assert result.structure == "has story"
    assert result.referral == "building"
    assert result.bullets[1] == "Good use of a question, stay focused."


def test_meta_lists_tracks_and_phases(client):
    data = client.get("/api/coffee-chat/meta").json()
    assert "Venture Capital" in data["tracks"]
    assert data["groupsByTrack"]["Sales & Trading"][0] == "Rates"
    assert data["phases"][0] == "opening"
    assert data["phases"][-1] == "close"


def test_scenario_route(client):
    data = client.post("/api/coffee-chat/scenario", json={"track": "Equity Research"}).json()
    assert data["track"] == "Equity Research"
    assert data["person"]["title"] in TITLES
    assert data["userGoal"] == "referral"

    bad = client.post("/api/coffee-chat/scenario", json={"track": "Crypto"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "Unknown track: Crypto"


def test_interviewer_maps_roles_and_uses_phase_guidance(client, monkeypatch):
    fake = _use_model(monkeypatch, "Fair enough. Why boutiques over a bulge bracket?")

    response = client.post(
        "/api/interviewer",
        json={
            "scenario": SCENARIO,
            "messages": [
                {"role": "interviewer", "content": "Hey, thanks for reaching out."},
                {"role": "user", "content": "Thanks for making the time."},
            ],
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["interviewerText"] == "Fair enough. Why boutiques over a bulge bracket?"
    assert data["requestId"]
    sent = fake.responses.calls[0]["input"]
    assert [m["role"] for m in sent] == ["system", "assistant", "user"]
    assert "Dana" in sent[0]["content"]
    assert "Ask why this firm/group/role" in sent[0]["content"]


def test_interviewer_shortens_long_replies(client, monkeypatch):
    fake = _use_model(monkeypatch, "a" * 400, "Short and sweet.")

    response = client.post(
        "/api/interviewer",
        json={"scenario": SCENARIO, "messages": [{"role": "user", "content": "Hi there."}]},
    )

    assert response.json()["interviewerText"] == "Short and sweet."
    assert fake.responses.calls[1]["input"][1]["content"] == "a" * 400


def test_interviewer_truncates_when_shortening_comes_back_empty(client, monkeypatch):
    _use_model(monkeypatch, "b" * 400, "   ")

    response = client.post(
        "/api/interviewer",
        json={"scenario": SCENARIO, "messages": [{"role": "user", "content": "Hi there."}]},
    )

    text = response.json()["interviewerText"]
    assert len(text) == completion.COFFEE_CHAT_MAX_CHARS
    assert text.endswith("...")


def test_interviewer_validation(client):
    missing = client.post("/api/interviewer", json={"messages": [{"role": "user", "content": "Hi."}]})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing scenario"

    no_messages = client.post("/api/interviewer", json={"scenario": SCENARIO, "messages": []})
    assert no_messages.json()["error"] == "Missing messages"

    too_long = client.post(
        "/api/interviewer",
        json={"scenario": SCENARIO, "messages": [{"role": "user", "content": "x" * 1001}]},
    )
    assert too_long.status_code == 413
    assert too_long.json()["error"] == "Message too long"


def test_live_coach_returns_model_classification(client, monkeypatch):
    verdict = {
        "tone": "warm",
        "clarity": "clear",
        "structure": "has story",
        "referral": "building",
        "bullets": ["Nice opener.", "Ask about deal flow."],
    }
    fake = _use_model(monkeypatch, "```json\n" + json.dumps(verdict) + "\n```")

    response = client.post(
        "/api/coach/live",
        json={"lastUserTurn": "I loved the TMT work I did last summer.", "scenario": SCENARIO},
    )

    data = response.json()
    assert data["tone"] == "warm"
    assert data["bullets"] == ["Nice opener.", "Ask about deal flow."]
    assert data["requestId"]
    assert fake.responses.calls[0]["model"] == config.COACH_MODEL_NAME


def test_live_coach_falls_back_to_heuristic(client, monkeypatch):
    _use_model(monkeypatch, "I think it went fine overall.")

    response = client.post(
        "/api/coach/live",
        json={"lastUserTurn": "Can you give me a referral?", "scenario": SCENARIO},
    )

    data = response.json()
    assert response.status_code == 200
    assert data["tone"] == "abrupt"
    assert data["referral"] == "too early"
    assert data["structure"] == "has story"


def test_turn_review(client, monkeypatch):
    fake = _use_model(monkeypatch, "Strength: concise.\nFix: add a number.")

    response = client.post(
        "/api/coach/turn",
        json={"lastUserTurn": "I led a sell-side model.", "scenario": SCENARIO, "phase": "exploration"},
    )

    assert response.json()["turnReview"] == "Strength: concise.\nFix: add a number."
    assert "- Phase: exploration" in fake.responses.calls[0]["input"][1]["content"]


def test_turn_review_validation(client):
    missing = client.post("/api/coach/turn", json={"lastUserTurn": "   ", "scenario": SCENARIO})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing lastUserTurn or scenario"

    too_long = client.post("/api/coach/turn", json={"lastUserTurn": "y" * 2001, "scenario": SCENARIO})
    assert too_long.status_code == 413
    assert too_long.json()["error"] == "User turn too long"


def test_final_coach_builds_summary(client, monkeypatch):
    fake = _use_model(monkeypatch, "Top 3 improvements: ...")

    response = client.post(
        "/api/coach/final",
        json={
            "scenario": SCENARIO,
            "messages": [
                {"role": "interviewer", "content": "So what brings you to TMT?"},
                {"role": "user", "content": "I built a SaaS comps set last summer."},
            ],
        },
    )

    assert response.json()["finalSummary"] == "Top 3 improvements: ..."
    prompt = fake.responses.calls[0]["input"][1]["content"]
    assert "Interviewer: So what brings you to TMT?" in prompt
    assert "User: I built a SaaS comps set last summer." in prompt


def test_final_coach_rejects_large_transcripts(client):
    messages = [{"role": "user", "content": "z" * 1200} for _ in range(6)]
    response = client.post("/api/coach/final", json={"scenario": SCENARIO, "messages": messages})
    assert response.status_code == 413
    assert response.json()["error"] == "Payload too large"


def test_coach_feedback(client, monkeypatch):
    _use_model(monkeypatch, "**Good**: warm opener.")

    response = client.post(
        "/api/coach",
        json={
            "transcript": "Interviewer: Hi.\nUser: Hi, thanks for the time.",
            "scenario": {
                "track": "Private Equity",
                "firmType": "Mega-fund",
                "group": "Software",
                "interviewerVibe": "rushed",
            },
        },
    )

    assert response.json() == {"feedback": "**Good**: warm opener."}


def test_coach_feedback_upstream_empty_is_502(client, monkeypatch):
    _use_model(monkeypatch, "")

    response = client.post(
        "/api/coach",
        json={
            "transcript": "User: Hello.",
            "scenario": {"track": "VC", "firmType": "Seed Fund", "group": "FinTech", "interviewerVibe": "warm"},
        },
    )

    assert response.status_code == 502
    assert response.json()["error"] == "No feedback returned"


def test_tts_ping(client, monkeypatch):
    spoken = []

    async def _fake_synthesize(text, voice_id=None, timeout_sec=30.0):
        spoken.append(text)
        return b"ID3", "audio/mpeg"

    monkeypatch.setattr(tts, "synthesize", _fake_synthesize)
    response = client.post("/api/tts/ping")

    assert response.json() == {"ok": True}
    assert spoken == ["ping"]


def test_tts_ping_failure_is_500(client, monkeypatch):
    async def _boom(text, voice_id=None, timeout_sec=30.0):
        raise tts.SynthesisError("Missing ELEVENLABS_API_KEY", 500)

    monkeypatch.setattr(tts, "synthesize", _boom)
    response = client.post("/api/tts/ping")

    assert response.status_code == 500
    assert response.json()["error"] == "Missing ELEVENLABS_API_KEY"
