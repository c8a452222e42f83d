import pytest

from aichat.errors import AuthError, ValidationError
from aichat.router import RequestRouter
from aichat.schemas import LoadChatRequest, SendMessageRequest, decode_request, parse_bool


def _router(calls):
    def load_chat(request, context):
        calls.append((request, context))
        return {"success": True, "chat_id": request.chat_id}

    def stream(request, context):
        return iter([b"chunk"])

    return RequestRouter({"load_chat": load_chat, "send_message": stream})


def test_anonymous_caller_is_rejected_before_dispatch():
    calls = []

    with pytest.raises(AuthError, match="Authentication required"):
        _router(calls).route({"action": "load_chat", "chat_id": "chat_1"}, user_id=0)
    assert calls == []


def test_unknown_action_is_a_bad_request():
    result = _router([]).route({"action": "drop_tables"}, user_id=1)

    assert result.status_code == 400
    assert result.payload == {"error": "Invalid action: drop_tables"}


def test_missing_action_is_a_bad_request():
    result = _router([]).route({}, user_id=1)

    assert result.payload == {"error": "Invalid action: "}


def test_handler_receives_typed_request_and_context():
    calls = []
    session = {"existing": True}

    result = _router(calls).route({"action": "load_chat", "chat_id": " chat_1 ", "persistent": "true"}, 9, session)

    assert result.payload == {"success": True, "chat_id": "chat_1"}
    assert not result.stream
    request, context = calls[0]
    assert isinstance(request, LoadChatRequest)
    assert request.persistent is True
    assert context.user_id == 9
    assert context.session is session


def test_iterable_result_is_streamed():
    result = _router([]).route(
        {"action": "send_message", "chat_id": "chat_1", "message": "Hi"}, user_id=1
    )

    assert result.stream is True
    assert list(result.payload) == [b"chunk"]


def test_invalid_fields_raise_validation_error():
    with pytest.raises(ValidationError, match="Missing chat_id parameter"):
        _router([]).route({"action": "load_chat"}, user_id=1)


def test_send_message_defaults():
    request = decode_request("send_message", {"chat_id": "chat_1", "message": "Hi", "max_memory": ""})

    assert isinstance(request, SendMessageRequest)
    assert request.persistent is False
    assert request.system_prompt == ""
    assert request.max_memory is None
    assert request.ai_service == "default"


def test_send_message_parses_form_strings():
    request = decode_request(
        "send_message",
        {"chat_id": "chat_1", "message": "Hi", "max_memory": "4", "persistent": "1", "ai_service": "ramses"},
    )

    assert request.max_memory == 4
    assert request.persistent is True
    assert request.ai_service == "ramses"


@pytest.mark.parametrize(
    "data, error",
    [
        ({"chat_id": "chat_1", "message": "   "}, "Missing message parameter"),
        ({"chat_id": "", "message": "Hi"}, "Missing chat_id parameter"),
        ({"chat_id": "chat_1", "message": "Hi", "max_memory": "lots"}, "max_memory"),
    ],
)
def test_send_message_requires_fields(data, error):
    with pytest.raises(ValidationError, match=error):
        decode_request("send_message", data)


@pytest.mark.parametrize(
    "action, data, error",
    [
        ("send_message", {"chat_id": "chat_1"}, "Missing message parameter"),
        ("clear_chat", {}, "Missing chat_id parameter"),
    ],
)
def test_absent_fields_are_still_validated(action, data, error):
    with pytest.raises(ValidationError, match=error):
        decode_request(action, data)


@pytest.mark.parametrize("model", [SendMessageRequest, LoadChatRequest])
def test_request_models_use_field_validators(model):
    decorators = model.__pydantic_decorators__

    assert decorators.validators == {}
    assert "_chat_id_present" in decorators.field_validators


@pytest.mark.parametrize(
    "value, expected",
    [("true", True), ("TRUE", True), ("1", True), ("false", False), ("0", False), ("", False), (None, False), (True, True)],
)
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected
