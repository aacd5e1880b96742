from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from chatbfc.schemas import GradeResponse, PlanItem


class SessionStatus(str, Enum):
    IDLE = "idle"
    SPEAKING_INTRO = "speaking_intro"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    PAUSED = "paused"


ACTIVE_STATUSES = frozenset(
    {
        SessionStatus.SPEAKING_INTRO,
        SessionStatus.LISTENING,
        SessionStatus.THINKING,
        SessionStatus.SPEAKING,
    }
)
PLAYBACK_STATUSES = frozenset({SessionStatus.SPEAKING_INTRO, SessionStatus.SPEAKING})


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class SessionSnapshot:
    status: SessionStatus
    conversation: list[Message] = field(default_factory=list)
    plan: list[PlanItem] = field(default_factory=list)
    current_index: int = 0
    pending_next: bool = False
    feedback: GradeResponse | None = None
    final_summary: str = ""
    seed_count: int | None = None
    api_error: str | None = None
    speech_error: str | None = None
    tts_error: str | None = None
    interim_transcript: str = ""
    audio_needs_click: bool = False
    hold_to_talk: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "conversation": [message.to_dict() for message in self.conversation],
            "plan": [item.to_wire() for item in self.plan],
            "currentIndex": self.current_index,
            "pendingNext": self.pending_next,
            "feedback": self.feedback.to_wire() if self.feedback else None,
            "finalSummary": self.final_summary,
            "seedCount": self.seed_count,
            "apiError": self.api_error,
            "speechError": self.speech_error,
            "ttsError": self.tts_error,
            "interimTranscript": self.interim_transcript,
            "audioNeedsClick": self.audio_needs_click,
            "holdToTalk": self.hold_to_talk,
        }
