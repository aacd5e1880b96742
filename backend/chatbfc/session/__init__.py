from chatbfc.session.collaborators import CoachClient, SynthesizedAudio
from chatbfc.session.errors import AutoplayBlocked, PlanUnavailable, SessionError, UpstreamError
from chatbfc.session.machine import InterviewSession
from chatbfc.session.playback import AudioOutput, PlaybackController, PlaybackOutcome
from chatbfc.session.speech_capture import (
    RecognitionEvent,
    RecognitionPrimitive,
    RecognitionResult,
    SpeechCapture,
)
from chatbfc.session.state import Message, SessionSnapshot, SessionStatus
from chatbfc.session.turn_detector import SilenceDetector

__all__ = [
    "AudioOutput",
    "AutoplayBlocked",
    "CoachClient",
    "InterviewSession",
    "Message",
    "PlanUnavailable",
    "PlaybackController",
    "PlaybackOutcome",
    "RecognitionEvent",
    "RecognitionPrimitive",
    "RecognitionResult",
    "SessionError",
    "SessionSnapshot",
    "SessionStatus",
    "SilenceDetector",
    "SpeechCapture",
    "SynthesizedAudio",
    "UpstreamError",
]
