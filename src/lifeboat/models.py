"""Data models for parsed conversations and extracted companion profiles."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    text: str = Field(min_length=1)
    timestamp: float = 0.0  # Unix seconds, 0 = unknown


class Conversation(BaseModel):
    id: int
    title: str = "Untitled"
    created: datetime | None = None
    updated: datetime | None = None
    messages: list[Message] = []

    @computed_field
    @property
    def message_count(self) -> int:
        return len(self.messages)

    @computed_field
    @property
    def text_size(self) -> int:
        return sum(len(m.text) for m in self.messages)


class TimelinePhase(BaseModel):
    """One phase of the relationship arc, as inferred by the model."""

    model_config = ConfigDict(extra="allow")

    title: str | None = None
    period: str | None = None
    description: str | None = None
    tone: str | None = None
    turning_point: str | None = None
    quote: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)


class LongestMessage(BaseModel):
    role: str
    length: int
    timestamp: float = 0.0
    excerpt: str = ""


class ProfileStats(BaseModel):
    """Ground-truth statistics computed locally from the source messages."""

    total_messages: int = 0
    conversation_count: int = 0
    messages_by_role: dict[str, int] = {}
    words_by_role: dict[str, int] = {}
    avg_words_by_role: dict[str, float] = {}
    longest_message: LongestMessage | None = None
    hour_histogram: list[int] = Field(default_factory=lambda: [0] * 24)
    weekday_histogram: list[int] = Field(default_factory=lambda: [0] * 7)
    monthly_activity: dict[str, int] = {}
    first_timestamp: float | None = None
    last_timestamp: float | None = None
    span_days: int = 0
    peak_hour: int | None = None
    peak_weekday: int | None = None
    peak_weekday_name: str | None = None


class CompanionProfile(BaseModel):
    """Semi-structured extraction result.

    Qualitative fields come from the model and vary in shape between replies,
    so they are loosely typed and unknown keys are preserved. Pipeline fields
    (stats, counts, timestamps) are filled in locally.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    companion_name: str | None = None
    personality: dict[str, Any] | str | None = None
    communication_style: dict[str, Any] | str | None = None
    voice_examples: list[Any] = []
    relationship: dict[str, Any] | str | None = None
    core_memories: list[Any] = []
    human_knowledge: dict[str, Any] | str | None = None
    boundaries: dict[str, Any] | str | None = None
    raw_extraction: str | None = None

    stats: ProfileStats | None = None
    relationship_timeline: list[TimelinePhase] = []
    system_prompt: str = Field("", alias="systemPrompt")
    extracted_at: str | None = Field(None, alias="extractedAt")
    source_messages: int = Field(0, alias="sourceMessages")
    source_conversations: int = Field(0, alias="sourceConversations")

    @field_validator("companion_name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value or None
        if isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("raw_extraction", mode="before")
    @classmethod
    def _coerce_raw(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    @field_validator("voice_examples", "core_memories", "relationship_timeline", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]

    @field_validator(
        "personality", "communication_style", "relationship",
        "human_knowledge", "boundaries", mode="before",
    )
    @classmethod
    def _coerce_section(cls, value: Any) -> Any:
        if value is None or isinstance(value, (dict, str)):
            return value
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation: camelCase pipeline keys, unset declared fields omitted.

        Extra keys carried over from the source document are kept as they are,
        nulls included.
        """
        data = self.model_dump(mode="json", by_alias=True)
        declared = {f.alias or name for name, f in type(self).model_fields.items()}
        return {k: v for k, v in data.items() if v is not None or k not in declared}


class InjectionFinding(BaseModel):
    field: str = ""
    category: str
    pattern: str
    matched: str


class ProfileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    profile: CompanionProfile
    saved_at: str = Field(alias="savedAt")
    name: str
