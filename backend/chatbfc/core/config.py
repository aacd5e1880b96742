import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=True)


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


ENVIRONMENT = str(os.getenv("ENV") or "development").strip().lower()

OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()
MODEL_NAME = str(os.getenv("MODEL_NAME") or "gpt-5-mini").strip()
SUMMARY_MODEL_NAME = str(os.getenv("SUMMARY_MODEL_NAME") or "gpt-4o-mini").strip()
COACH_MODEL_NAME = str(os.getenv("COACH_MODEL_NAME") or "gpt-4o-mini").strip()

ELEVENLABS_API_KEY = str(os.getenv("ELEVENLABS_API_KEY") or "").strip()
ELEVENLABS_VOICE_ID = str(os.getenv("ELEVENLABS_VOICE_ID") or "").strip()
ELEVENLABS_MODEL_ID = str(os.getenv("ELEVENLABS_MODEL_ID") or "eleven_monolingual_v1").strip()

QUESTION_BANK_PATH = str(
    os.getenv("QUESTION_BANK_PATH") or (_BACKEND_ROOT / "data" / "question-bank.json")
)

RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED") or ENVIRONMENT == "production"

# turn-taking timings (seconds)
SILENCE_FINALIZE_SEC = max(0.2, float(os.getenv("SILENCE_FINALIZE_SEC", "0.9")))
RECOGNITION_RESTART_DELAY_SEC = max(0.05, float(os.getenv("RECOGNITION_RESTART_DELAY_SEC", "0.3")))
TTS_MAX_CHARS = max(40, int(os.getenv("TTS_MAX_CHARS", "280")))

CHATBFC_BASE_URL = str(os.getenv("CHATBFC_BASE_URL") or "http://127.0.0.1:8000").strip()

CORS_ALLOW_ORIGINS = str(os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))
