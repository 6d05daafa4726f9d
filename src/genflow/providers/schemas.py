"""Input models shared by provider adapters."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class ChatInput(BaseModel):
    """Input accepted by chat-completion providers."""

    model: str = Field(default="gemini-2.5-flash", description="Model identifier")
    system_prompt: str | None = Field(default=None, description="Optional system instruction")
    user_message: str = Field(..., min_length=1, description="User message")
    images: list[str] = Field(default_factory=list, description="Image URLs or data URLs")
    temperature: float = Field(default=1.0, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)

    @field_validator("system_prompt")
    @classmethod
    def blank_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("images", mode="before")
    @classmethod
    def drop_empty(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, list):
            return [v for v in value if v]
        return value


class CropInput(BaseModel):
    """Crop region in percent of the source image."""

    image_url: str = Field(..., min_length=1)
    x: float = Field(default=0, ge=0, le=100)
    y: float = Field(default=0, ge=0, le=100)
    width: float = Field(default=100, ge=1, le=100)
    height: float = Field(default=100, ge=1, le=100)
