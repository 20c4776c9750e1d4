"""Inbound payload models for the websocket events."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from .errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _required_text(value: str, label: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError(f"{label} must not be empty")
    return text


class JoinRequest(BaseModel):
    """``join_game`` and ``create_room``."""

    model_config = ConfigDict(extra="ignore")
    error_codes: ClassVar[Dict[str, str]] = {"username": "empty_username"}

    username: str

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        return _required_text(value, "Username")


class JoinRoomRequest(JoinRequest):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    room_id: str = Field(default="", alias="roomId")

    @field_validator("room_id")
    @classmethod
    def strip_room_id(cls, value: str) -> str:
        return value.strip()


class MoveRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    error_codes: ClassVar[Dict[str, str]] = {}

    x: StrictInt
    y: StrictInt


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    error_codes: ClassVar[Dict[str, str]] = {"message": "empty_message"}

    message: str

    @field_validator("message")
    @classmethod
    def strip_message(cls, value: str) -> str:
        return _required_text(value, "Message")


def parse(model: Type[ModelT], data: Any, code: str = "invalid_payload") -> ModelT:
    """Validate ``data`` against ``model``.

    Failures become a ``ValidationError``. Its code comes from the model's
    ``error_codes`` entry for the first failing field, else ``code``.
    """
    if data is None:
        data = {}
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        codes = getattr(model, "error_codes", {})
        first = errors[0]["loc"][0] if errors and errors[0]["loc"] else None
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "payload" for err in errors
        )
        raise ValidationError(
            f"Invalid payload: {fields}", code=codes.get(first, code)
        ) from exc
