"""Typed request variants decoded from the raw request map."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .errors import ValidationError


def parse_bool(value: Any) -> bool:
    """Interpret the widget's boolean-like flags ("true"/"1" strings or natives)."""
    if isinstance(value, str):
        return value.strip().lower() == "true" or value.strip() == "1"
    if value is None:
        return False
    return bool(value)


class _ChatIdRequest(BaseModel):
    chat_id: str = Field("", validate_default=True)
    persistent: bool = False

    @field_validator("chat_id", mode="before")
    @classmethod
    def _chat_id_text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("chat_id")
    @classmethod
    def _chat_id_present(cls, value: str) -> str:
        if not value:
            raise ValueError("Missing chat_id parameter")
        return value

    @field_validator("persistent", mode="before")
    @classmethod
    def _persistent_flag(cls, value: Any) -> bool:
        return parse_bool(value)


class SendMessageRequest(_ChatIdRequest):
    message: str = Field("", description="User utterance.", validate_default=True)
    system_prompt: str = ""
    max_memory: Optional[int] = Field(None, description="Window cap; None falls back to the configured default.")
    ai_service: str = "default"

    @field_validator("message", "system_prompt", "ai_service", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("message")
    @classmethod
    def _message_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Missing message parameter")
        return value

    @field_validator("ai_service")
    @classmethod
    def _service_key(cls, value: str) -> str:
        return value.strip() or "default"

    @field_validator("max_memory", mode="before")
    @classmethod
    def _blank_max_memory(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LoadChatRequest(_ChatIdRequest):
    pass


class ClearChatRequest(_ChatIdRequest):
    pass


class ListServicesRequest(BaseModel):
    pass


ChatRequest = Union[SendMessageRequest, LoadChatRequest, ClearChatRequest, ListServicesRequest]

REQUEST_TYPES: Dict[str, Type[BaseModel]] = {
    "send_message": SendMessageRequest,
    "load_chat": LoadChatRequest,
    "get_chat": LoadChatRequest,
    "clear_chat": ClearChatRequest,
    "get_available_services": ListServicesRequest,
}


def _describe(exc: PydanticValidationError) -> str:
    messages = []
    for error in exc.errors():
        text = str(error.get("msg", "invalid value"))
        if text.startswith("Value error, "):
            text = text[len("Value error, ") :]
        else:
            field = ".".join(str(part) for part in error.get("loc", ()))
            text = f"{field}: {text}" if field else text
        messages.append(text)
    return "; ".join(messages) or "Invalid request"


def decode_request(action: str, data: Mapping[str, Any]) -> ChatRequest:
    """Validate ``data`` for ``action`` and return the matching request variant."""
    request_type = REQUEST_TYPES.get(action)
    if request_type is None:
        raise ValidationError(f"Invalid action: {action}")
    try:
        return request_type(**{key: value for key, value in data.items() if key != "action"})
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc
