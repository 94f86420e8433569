"""Валидаторы для входных данных."""
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Публичные username в Telegram: 5-32 символа, буквы, цифры и "_"
USERNAME_RE = re.compile(r"^[a-z][a-z0-9_]{3,31}$")


def normalize_username(value: str) -> str:
    """Убрать @, ссылку t.me и привести username к нижнему регистру."""
    cleaned = value.strip()
    cleaned = re.sub(r"^(https?://)?(www\.)?(t|telegram)\.me/", "", cleaned)
    return cleaned.lstrip("@").strip("/").lower()


class ChannelInput(BaseModel):
    """Валидация данных исходного канала."""
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=255)
    target_channel_id: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        cleaned = normalize_username(v)
        if not USERNAME_RE.match(cleaned):
            raise ValueError(f"Некорректный username канала: {v!r}")
        return cleaned

    @field_validator("target_channel_id")
    @classmethod
    def validate_target(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
