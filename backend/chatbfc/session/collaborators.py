"""Network collaborators consumed by the practice session core."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from chatbfc.core import config
from chatbfc.schemas import (
    EndRequest,
    FollowUpRequest,
    GradeRequest,
    GradeResponse,
    PlanRequest,
    PlanResponse,
)
from chatbfc.session.errors import PlanUnavailable, UpstreamError

logger = logging.getLogger("chatbfc.session.collaborators")


@dataclass(frozen=True)
class SynthesizedAudio:
    data: bytes
    content_type: str = "audio/mpeg"


class PlanningCollaborator:
    async def plan(self, request: PlanRequest) -> PlanResponse:
        """Return the question plan, or raise ``PlanUnavailable`` when no seeds match."""
        raise NotImplementedError


class GradingCollaborator:
    async def grade(self, request: GradeRequest) -> GradeResponse:
        """Grade one answer against its plan item."""
        raise NotImplementedError


class SummaryCollaborator:
    async def summarize(self, request: EndRequest) -> str:
        """Return the end-of-session summary text."""
        raise NotImplementedError


class FollowUpCollaborator:
    async def follow_up(self, request: FollowUpRequest) -> str:
        """Return a same-question follow-up prompt."""
        raise NotImplementedError


class SpeechSynthesizer:
    async def synthesize(self, text: str) -> SynthesizedAudio:
        """Return synthesized audio for ``text``."""
        raise NotImplementedError


def no_questions_message(firm: str, stage: str) -> str:
    return (
        f"No questions found for {firm} {str(stage).replace('_', ' ')}. "
        "Add questions to the bank or adjust filters."
    )


def _json_record(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class CoachClient(
    PlanningCollaborator,
    GradingCollaborator,
    SummaryCollaborator,
    FollowUpCollaborator,
    SpeechSynthesizer,
):
    """
    HTTP implementation of every collaborator, talking to the ChatBFC API.

    No timeout is applied by default: a stuck request stalls only the advance
    that is waiting on it.
    """

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_sec: float | None = None,
        headers: dict | None = None,
    ):
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or config.CHATBFC_BASE_URL,
            timeout=timeout_sec,
            headers=headers,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("collaborator request failed | path=%s err=%s", path, exc)
            raise UpstreamError(f"Request failed: {exc}") from exc

        if response.status_code >= 400:
            record = _json_record(response)
            message = str(record.get("error") or response.text or response.reason_phrase or "Request failed")
            raise UpstreamError(message, record.get("requestId"), response.status_code)
        return response

    async def plan(self, request: PlanRequest) -> PlanResponse:
        try:
            response = await self._post("/api/mock-interview/plan", request.to_wire())
        except UpstreamError as exc:
            if exc.status_code == 404:
                raise PlanUnavailable(no_questions_message(request.firm, request.stage)) from exc
            raise

        try:
            return PlanResponse.model_validate(_json_record(response))
        except ValidationError as exc:
            raise PlanUnavailable("No plan generated. Adjust filters and try again.") from exc

    async def grade(self, request: GradeRequest) -> GradeResponse:
        response = await self._post("/api/mock-interview/grade", request.to_wire())
        record = _json_record(response)
        try:
            return GradeResponse.model_validate(record)
        except ValidationError as exc:
            raise UpstreamError("Invalid grading response", record.get("requestId")) from exc

    async def summarize(self, request: EndRequest) -> str:
        response = await self._post("/api/mock-interview/end", request.to_wire())
        return str(_json_record(response).get("finalSummary") or "")

    async def follow_up(self, request: FollowUpRequest) -> str:
        response = await self._post("/api/mock-interview/follow-up", request.to_wire())
        return str(_json_record(response).get("interviewerText") or "")

    async def synthesize(self, text: str) -> SynthesizedAudio:
        response = await self._post("/api/tts", {"text": text})
        return SynthesizedAudio(
            data=response.content,
            content_type=response.headers.get("content-type") or "audio/mpeg",
        )
