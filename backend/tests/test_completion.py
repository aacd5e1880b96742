import pytest

from chatbfc.services import completion


def test_extract_output_text_prefers_output_text():
    assert completion.extract_output_text({"output_text": "  hi  "}) == "hi"


def test_extract_output_text_joins_content_parts():
    class _Part:
        def __init__(self, text):
            self.text = text

    class _Item:
        content = [_Part("Hello, "), _Part("world")]

    class _Response:
        output_text = ""
        output = [_Item()]

    assert completion.extract_output_text(_Response()) == "Hello, world"


def test_parse_json_from_text_handles_wrapped_json():
    assert completion.parse_json_from_text('{"a": 1}') == {"a": 1}
    assert completion.parse_json_from_text('Here you go: {"a": 2} thanks') == {"a": 2}
    assert completion.parse_json_from_text("[1, 2]") is None
    assert completion.parse_json_from_text("") is None


@pytest.mark.asyncio
async def test_upstream_exception_becomes_completion_error(monkeypatch):
    class _Responses:
        async def create(self, **kwargs):
            raise RuntimeError("boom")

    class _Client:
        responses = _Responses()

    monkeypatch.setattr(completion, "get_client", lambda: _Client())

    with pytest.raises(completion.CompletionError) as exc_info:
        await completion._respond("system", "prompt")

    assert exc_info.value.status_code == 502
    assert exc_info.value.message == "Upstream request failed"


@pytest.mark.asyncio
async def test_final_summary_rejects_empty_output(monkeypatch):
    from chatbfc.schemas import EndRequest, MockInterviewSettings

    class _Responses:
        async def create(self, **kwargs):
            return {"output_text": ""}

    class _Client:
        responses = _Responses()

    monkeypatch.setattr(completion, "get_client", lambda: _Client())

    with pytest.raises(completion.CompletionError, match="Empty model output"):
        await completion.final_summary(EndRequest(settings=MockInterviewSettings()))
