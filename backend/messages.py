"""Inbound WebSocket payload models."""

import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from text_filter import clean_name


def first_error_message(exc: ValidationError) -> str:
    """Human-readable message for the first failing field."""
    err = exc.errors()[0]
    cause = err.get("ctx", {}).get("error")
    return str(cause) if cause else err["msg"]


def _as_text(v) -> str:
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


class JoinRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field("", validate_default=True)
    code: str = Field("", validate_default=True)
    session_token: str = Field("", alias="sessionToken")
    create: bool = False

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v) -> str:
        v = clean_name(_as_text(v))
        if not v:
            raise ValueError('Name required')
        return v

    @field_validator('code', mode='before')
    @classmethod
    def validate_code(cls, v) -> str:
        v = re.sub(r'[^A-Z0-9]', '', _as_text(v).upper())
        if not v:
            raise ValueError('Code required')
        return v

    @field_validator('session_token', mode='before')
    @classmethod
    def validate_session_token(cls, v) -> str:
        return _as_text(v).strip()[:64]


class SubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    card: str
    custom_text: str = Field("", alias="customText")

    @field_validator('custom_text', mode='before')
    @classmethod
    def validate_custom_text(cls, v) -> str:
        return _as_text(v)


class PickRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_id: str = Field(alias="playerId")


class RevealCardRequest(BaseModel):
    index: int
