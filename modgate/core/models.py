"""Wire and internal models for the moderation gate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


class InboundRequest(BaseModel):
    """Caller's chat-completion request.

    ``messages`` stay raw mappings: the relay forwards them exactly as received,
    including content parts that moderation never looks at.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    model: str
    messages: list[dict[str, Any]]
    stream: StrictBool = False
    temperature: int | float | None = None
    max_tokens: int | None = None
    response_format: dict[str, Any] | None = None
    tools: Any = None

    @field_validator("messages")
    @classmethod
    def _messages_have_roles(cls, value: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for index, message in enumerate(value):
            if not isinstance(message.get("role"), str):
                raise ValueError(f"messages[{index}].role must be a string")
        return value

    @field_validator("stream", mode="before")
    @classmethod
    def _stream_defaults_false(cls, value: Any) -> Any:
        return False if value is None else value


class NormalizedMessage(BaseModel):
    role: str
    content: str


class ModerationVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_violation: StrictBool = Field(alias="isViolation")


class ErrorDetail(BaseModel):
    message: str
    type: str
    code: str | int
    param: str | None = None
    provider_details: Any = None


class ErrorEnvelope(BaseModel):
    error: ErrorDetail

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    timeout_seconds: float
    model: str | None = None

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/v1/chat/completions"
