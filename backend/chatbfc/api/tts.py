from fastapi import APIRouter, Request
from fastapi.responses import Response

from chatbfc.api.mock_interview import enforce_rate_limit, error_response, parse_body
from chatbfc.core.logger import log_event
from chatbfc.schemas import TTSRequest
from chatbfc.services import tts

router = APIRouter(prefix="/api")

TTS_LIMIT = 30


@router.post("/tts")
async def text_to_speech(request: Request):
    limited = enforce_rate_limit(request, "tts", TTS_LIMIT, None)
    if limited is not None:
        return limited

    body = await parse_body(request, TTSRequest)
    if body is None:
        return error_response("Invalid JSON", None, 400)

    text = body.text.strip()
    if not text:
        return error_response("Text is required", None, 400)
    if len(text) > tts.MAX_TEXT_CHARS:
        return error_response(f"Text too long (max {tts.MAX_TEXT_CHARS} chars)", None, 413)

    try:
        audio, content_type = await tts.synthesize(text, voice_id=body.voice_id)
    except tts.SynthesisError as exc:
        log_event("tts", "synthesis_failed", "", status=exc.status_code, error=exc.message)
        return error_response(exc.message, None, exc.status_code)

    log_event("tts", "synthesized", "", text=text, audio_bytes=len(audio))
    return Response(content=audio, media_type=content_type)


@router.post("/tts/ping")
async def tts_ping():
    try:
        await tts.synthesize("ping")
    except tts.SynthesisError as exc:
        log_event("tts", "ping_failed", "", status=exc.status_code, error=exc.message)
        return error_response(exc.message, None, 500)
    return {"ok": True}
