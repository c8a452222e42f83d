import json
from unittest.mock import patch

import pytest

from aichat.errors import ProviderError, ValidationError
from aichat.router import RequestContext
from aichat.schemas import ClearChatRequest, ListServicesRequest, LoadChatRequest, SendMessageRequest
from aichat.service import ChatService
from tests.fixtures.provider_fixtures import completion_response, json_response, sse_line, stream_response


@pytest.fixture
def service(chat_config, database):
    return ChatService(chat_config, database=database)


@pytest.fixture
def context():
    return RequestContext(user_id=42, session={})


def _send(chat_id="chat_1", message="Hi", **kwargs):
    return SendMessageRequest(chat_id=chat_id, message=message, **kwargs)


def _events(chunks):
    """Parse the trailing ``event:`` blocks out of a relayed stream."""
    body = b"".join(chunks).decode("utf-8")
    events = []
    for block in body.split("\n\n"):
        lines = block.strip().splitlines()
        if len(lines) == 2 and lines[0].startswith("event: "):
            events.append((lines[0][len("event: ") :], json.loads(lines[1][len("data: ") :])))
    return events


def test_buffered_turn_persists_both_messages(service, context):
    with patch("aichat.llm_client.requests.post", return_value=completion_response("Hello!")):
        result = service.send_message(_send(persistent=True), context)

    assert result["success"] is True
    assert result["message"] == "Hello!"
    assert [(m["role"], m["content"]) for m in result["chat"]["messages"]] == [("user", "Hi"), ("assistant", "Hello!")]
    assert result["chat"]["persistent"] is True

    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert [m["content"] for m in loaded["chat"]["messages"]] == ["Hi", "Hello!"]
    assert loaded["chat"]["user_id"] == 42


def test_history_window_is_sent_to_provider(service, context):
    replies = [completion_response(text) for text in ("r1", "r2", "r3")]

    with patch("aichat.llm_client.requests.post", side_effect=replies) as post:
        service.send_message(_send(message="m1"), context)
        service.send_message(_send(message="m2"), context)
        service.send_message(_send(message="m3", max_memory=3, system_prompt="Be brief."), context)

    sent = post.call_args.kwargs["json"]["messages"]
    assert sent == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "m2"},
        {"role": "assistant", "content": "r2"},
        {"role": "user", "content": "m3"},
    ]


def test_failed_turn_stores_nothing(service, context):
    error = json_response(status_code=500, body={"error": {"message": "bad key"}})

    with patch("aichat.llm_client.requests.post", return_value=error):
        with pytest.raises(ProviderError, match="bad key"):
            service.send_message(_send(persistent=True), context)

    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert loaded["chat"]["messages"] == []


def test_unknown_service_fails_before_any_request(service, context):
    with patch("aichat.llm_client.requests.post") as post:
        with pytest.raises(ValidationError, match="Unknown AI service: nope"):
            service.send_message(_send(ai_service="nope"), context)

    post.assert_not_called()


def test_message_length_limit(service, context):
    service.config.char_limit = 5

    with patch("aichat.llm_client.requests.post") as post:
        with pytest.raises(ValidationError, match="Message too long. Maximum 5 characters allowed."):
            service.send_message(_send(message="way too long"), context)

    post.assert_not_called()


def test_ephemeral_turn_lives_in_session_only(service, context):
    with patch("aichat.llm_client.requests.post", return_value=completion_response("Hello!")):
        service.send_message(_send(), context)

    assert service.load_chat(LoadChatRequest(chat_id="chat_1"), context)["chat"]["messages"] != []
    other = RequestContext(user_id=42, session={})
    assert service.load_chat(LoadChatRequest(chat_id="chat_1"), other)["chat"]["messages"] == []
    durable = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert durable["chat"]["messages"] == []


def test_streaming_turn_relays_then_reports_result(service, context):
    chunks = [sse_line("Hel"), sse_line("lo"), b"data: [DONE]\n\n"]

    with patch("aichat.llm_client.requests.post", return_value=stream_response(chunks)):
        relayed = list(service.send_message(_send(ai_service="ramses", persistent=True), context))

    assert relayed[:3] == chunks
    [(event, payload)] = _events(relayed[3:])
    assert event == "chat_result"
    assert payload["message"] == "Hello"
    assert [m["content"] for m in payload["chat"]["messages"]] == ["Hi", "Hello"]

    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert [m["content"] for m in loaded["chat"]["messages"]] == ["Hi", "Hello"]


def test_streaming_turn_abandoned_by_client_is_not_persisted(service, context):
    chunks = [sse_line("Hel"), sse_line("lo"), b"data: [DONE]\n\n"]

    response = stream_response(chunks)

    with patch("aichat.llm_client.requests.post", return_value=response):
        relay = service.send_message(_send(ai_service="ramses", persistent=True), context)
        next(relay)
        relay.close()

    response.close.assert_called_once()
    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert loaded["chat"]["messages"] == []


def test_truncated_stream_reports_error_and_is_not_persisted(service, context):
    chunks = [sse_line("Hel"), b'data: {"choices":[{"delta":{"cont']

    with patch("aichat.llm_client.requests.post", return_value=stream_response(chunks)):
        relayed = list(service.send_message(_send(ai_service="ramses", persistent=True), context))

    assert relayed[:2] == chunks
    [(event, payload)] = _events(relayed[2:])
    assert event == "chat_error"
    assert payload == {"error": "AI service error: Incomplete streamed response from RAMSES"}

    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert loaded["chat"]["messages"] == []


def test_clear_chat(service, context):
    with patch("aichat.llm_client.requests.post", return_value=completion_response("Hello!")):
        service.send_message(_send(persistent=True), context)

    assert service.clear_chat(ClearChatRequest(chat_id="chat_1", persistent=True), context) == {
        "success": True,
        "message": "Chat cleared",
    }
    loaded = service.load_chat(LoadChatRequest(chat_id="chat_1", persistent=True), context)
    assert loaded["chat"]["messages"] == []


def test_available_services(service, context):
    result = service.available_services(ListServicesRequest(), context)

    assert result == {
        "success": True,
        "services": {"default": "Use Global Default", "openai": "OpenAI GPT", "ramses": "RAMSES"},
    }
