import logging

import httpx

from chatbfc.core import config

logger = logging.getLogger("chatbfc.services.tts")

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1/text-to-speech"
MAX_TEXT_CHARS = 800


class SynthesisError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


async def synthesize(text: str, voice_id: str | None = None, timeout_sec: float = 30.0) -> tuple[bytes, str]:
    """Return ``(audio_bytes, content_type)`` for ``text``."""
    if not config.ELEVENLABS_API_KEY:
        raise SynthesisError("Missing ELEVENLABS_API_KEY")

    voice = voice_id or config.ELEVENLABS_VOICE_ID
    if not voice:
        raise SynthesisError("Missing ELEVENLABS_VOICE_ID")

    try:
        async with httpx.AsyncClient(timeout=timeout_sec) as client:
            response = await client.post(
                f"{ELEVENLABS_BASE_URL}/{voice}",
                headers={
                    "Content-Type": "application/json",
                    "xi-api-key": config.ELEVENLABS_API_KEY,
                },
                json={"text": text, "model_id": config.ELEVENLABS_MODEL_ID},
            )
    except httpx.HTTPError as exc:
        logger.warning("tts request failed | err=%s", exc)
        raise SynthesisError("TTS request failed") from exc

    if response.status_code >= 400:
        logger.warning("tts upstream error | status=%s", response.status_code)
        raise SynthesisError(response.text or "TTS failed")

    return response.content, response.headers.get("content-type") or "audio/mpeg"
