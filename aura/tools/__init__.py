"""Tool kinds and their payload models.

The registry lives in ``aura.tools.registry`` and is imported from there; it
depends on ``aura.types``, which itself depends on the models below.
"""
from aura.tools.markers import ToolMarker, find_markers, strip_markers
from aura.tools.models import (
    AffirmationCard,
    BreathingExercise,
    Checklist,
    ChecklistItem,
    MoodTracker,
    ToolInstance,
    ToolKind,
)

__all__ = [
    "ToolKind",
    "ToolInstance",
    "Checklist",
    "ChecklistItem",
    "MoodTracker",
    "BreathingExercise",
    "AffirmationCard",
    "ToolMarker",
    "find_markers",
    "strip_markers",
]
