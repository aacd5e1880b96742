"""Scripted stand-ins for the browser and the network collaborators."""
from __future__ import annotations

import asyncio

from chatbfc.schemas import GradeResponse, PlanItem, PlanResponse
from chatbfc.session.collaborators import (
    FollowUpCollaborator,
    GradingCollaborator,
    PlanningCollaborator,
    SpeechSynthesizer,
    SummaryCollaborator,
    SynthesizedAudio,
)
from chatbfc.session.errors import AutoplayBlocked
from chatbfc.session.playback import AudioOutput
from chatbfc.session.speech_capture import (
    RecognitionEvent,
    RecognitionPrimitive,
    RecognitionResult,
)


def make_item(index: int, question: str | None = None) -> PlanItem:
    return PlanItem(
        q_index=index,
        type="valuation",
        interviewer_question=question or f"Question {index}?",
        expected_rubric="- hits the key drivers",
        ideal_answer_outline="- drivers\n- tie-out",
    )


def make_feedback(score: float = 7) -> GradeResponse:
    return GradeResponse(
        score0to10=score,
        strengths=["clear structure"],
        gaps=["missed working capital"],
        corrected_answer_outline="- start with EBITDA",
        next_best_sentence="Start from unlevered free cash flow.",
    )


class ScriptedRecognition(RecognitionPrimitive):
    def __init__(self):
        super().__init__()
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def say(self, text: str, final: bool = True) -> None:
        self.on_result(RecognitionEvent(results=[RecognitionResult(text, final)], result_index=0))

    def fail(self, code: str) -> None:
        self.on_error(code)

    def end(self) -> None:
        self.on_end()


class RecognitionFactory:
    def __init__(self, supported: bool = True):
        self.supported = supported
        self.handles: list[ScriptedRecognition] = []

    def __call__(self):
        if not self.supported:
            return None
        handle = ScriptedRecognition()
        self.handles.append(handle)
        return handle

    @property
    def latest(self) -> ScriptedRecognition:
        return self.handles[-1]


class ScriptedOutput(AudioOutput):
    """Plays instantly; ``finish()`` reports the end of the clip."""

    def __init__(self, blocked: bool = False, auto_end: bool = True):
        super().__init__()
        self.blocked = blocked
        self.auto_end = auto_end
        self.loaded: list[SynthesizedAudio] = []
        self.plays = 0
        self.stops = 0
        self.playing = False

    def load(self, audio: SynthesizedAudio) -> None:
        self.loaded.append(audio)

    async def play(self) -> None:
        self.plays += 1
        if self.blocked:
            raise AutoplayBlocked("blocked")
        self.playing = True
        if self.auto_end:
            asyncio.get_running_loop().call_soon(self.finish)

    def finish(self) -> None:
        if self.playing:
            self.playing = False
            if self.on_ended is not None:
                self.on_ended()

    def stop(self) -> None:
        self.stops += 1
        self.playing = False


class OutputFactory:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.outputs: list[ScriptedOutput] = []

    def __call__(self) -> ScriptedOutput:
        output = ScriptedOutput(**self.kwargs)
        self.outputs.append(output)
        return output

    @property
    def latest(self) -> ScriptedOutput:
        return self.outputs[-1]


class FakeSynthesizer(SpeechSynthesizer):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.texts: list[str] = []

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self.texts.append(text)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return SynthesizedAudio(data=text.encode("utf-8"))


class FakePlanner(PlanningCollaborator):
    def __init__(self, items: list[PlanItem] | None = None, error: Exception | None = None):
        self.items = items if items is not None else [make_item(1), make_item(2)]
        self.error = error
        self.requests = []

    async def plan(self, request):
        self.requests.append(request)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return PlanResponse(plan=self.items, seed_count=len(self.items))


class FakeGrader(GradingCollaborator):
    """Grades immediately unless ``gate`` is set, then waits for it."""

    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.error = error
        self.gate = gate
        self.requests = []

    async def grade(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return make_feedback()


class FakeSummarizer(SummaryCollaborator):
    def __init__(self, summary: str = "Solid session.", error: Exception | None = None):
        self.summary = summary
        self.error = error
        self.requests = []

    async def summarize(self, request):
        self.requests.append(request)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.summary


class FakeFollowUps(FollowUpCollaborator):
    def __init__(self, text: str = "Can you say more about the discount rate?", gate: asyncio.Event | None = None):
        self.text = text
        self.gate = gate
        self.requests = []

    async def follow_up(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        return self.text
