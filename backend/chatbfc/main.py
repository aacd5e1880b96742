import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatbfc.api.coffee_chat import router as coffee_chat_router
from chatbfc.api.mock_interview import router as mock_interview_router
from chatbfc.api.tts import router as tts_router
from chatbfc.api.ws_session import router as ws_session_router
from chatbfc.core import config

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

app = FastAPI(title="ChatBFC Mock Interview")
logger = logging.getLogger("chatbfc.main")


def _get_allowed_origins() -> list[str]:
    raw = config.CORS_ALLOW_ORIGINS
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_banner():
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info("[SYSTEM] rate_limit enabled=%s env=%s", config.RATE_LIMIT_ENABLED, config.ENVIRONMENT)
    if not config.OPENAI_API_KEY:
        logger.warning("[SYSTEM] OPENAI_API_KEY is not set; plan, grade and summary routes will fail")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "chatbfc"}


app.include_router(mock_interview_router)
app.include_router(coffee_chat_router)
app.include_router(tts_router)
app.include_router(ws_session_router)
