"""
Tool payload models.

A tool instance is one of four fixed kinds, each with its own payload shape.
They are modelled as a tagged union: every model carries a literal ``type``
tag, and ``ToolInstance`` is a Pydantic discriminated union over that tag, so
persisted JSON and model-generated JSON both validate into the right class.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

MOOD_OPTIONS: tuple[str, ...] = ("Happy", "Okay", "Neutral", "Sad", "Angry")


class ToolKind(str, Enum):
    """The closed set of tool kinds Aura can create."""
    CHECKLIST = "checklist"
    MOOD_TRACKER = "mood_tracker"
    BREATHING_EXERCISE = "breathing_exercise"
    AFFIRMATION_CARD = "affirmation_card"

    @property
    def label(self) -> str:
        """Human-readable name ("breathing exercise")."""
        return self.value.replace("_", " ")


class _ToolBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = Field(min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class ChecklistItem(BaseModel):
    text: str = Field(min_length=1)
    done: bool = False

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class Checklist(_ToolBase):
    type: Literal["checklist"] = "checklist"
    items: list[ChecklistItem] = Field(min_length=1)

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: object) -> object:
        # Accept bare strings and drop blank entries.
        if not isinstance(value, list):
            return value
        items = []
        for item in value:
            if isinstance(item, str):
                item = {"text": item}
            if isinstance(item, dict) and not str(item.get("text") or "").strip():
                continue
            items.append(item)
        return items


class MoodEntry(BaseModel):
    mood: str = Field(min_length=1)
    timestamp: float = Field(default_factory=time.time)


class MoodTracker(_ToolBase):
    type: Literal["mood_tracker"] = "mood_tracker"
    options: list[str] = Field(default_factory=lambda: list(MOOD_OPTIONS))
    history: list[MoodEntry] = Field(default_factory=list)


class BreathingCycle(BaseModel):
    """One breath, in whole seconds per phase."""
    inhale: int = Field(4, ge=1, le=20)
    hold: int = Field(4, ge=0, le=20)
    exhale: int = Field(6, ge=1, le=20)

    @property
    def total_seconds(self) -> int:
        return self.inhale + self.hold + self.exhale


class BreathingExercise(_ToolBase):
    type: Literal["breathing_exercise"] = "breathing_exercise"
    cycle: BreathingCycle = Field(default_factory=BreathingCycle)


class AffirmationCard(_ToolBase):
    type: Literal["affirmation_card"] = "affirmation_card"
    text: list[str] = Field(min_length=1)
    button_text: str = Field("I will remember this.", alias="buttonText")

    @field_validator("text", mode="before")
    @classmethod
    def _coerce_affirmations(cls, value: object) -> object:
        # Small models sometimes return a single string instead of a list.
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return value


ToolInstance = Annotated[
    Union[Checklist, MoodTracker, BreathingExercise, AffirmationCard],
    Field(discriminator="type"),
]

TOOL_INSTANCE_ADAPTER: TypeAdapter[ToolInstance] = TypeAdapter(ToolInstance)

MODEL_FOR_KIND: dict[ToolKind, type[_ToolBase]] = {
    ToolKind.CHECKLIST: Checklist,
    ToolKind.MOOD_TRACKER: MoodTracker,
    ToolKind.BREATHING_EXERCISE: BreathingExercise,
    ToolKind.AFFIRMATION_CARD: AffirmationCard,
}

if set(MODEL_FOR_KIND) != set(ToolKind):  # pragma: no cover - import-time guard
    raise RuntimeError("Every ToolKind needs a payload model")


def kind_of(tool: ToolInstance) -> ToolKind:
    """Return the ToolKind tag of an instance."""
    return ToolKind(tool.type)
