"""
Tool Registry — Aura's catalog of tool kinds.

Each of the four tool kinds is registered here with everything needed to
bring an instance of it into existence and to describe it back to the model:

1. SYNTHESIS: a prompt builder asks the generation endpoint for a structured
   (JSON) payload, which is validated against the kind's Pydantic model. The
   registry, never the model, assigns the instance id.

2. DESCRIPTION: a state renderer turns live instances into the human-readable
   ``[Current Toolbox State]`` listing that grounds every conversational reply.

Synthesis is best-effort. A transport failure, a non-JSON answer or a payload
that does not validate all mean "no tool created", and the turn goes on.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import structlog
from pydantic import BaseModel, ValidationError

from aura.api.ollama import EndpointError, OllamaEngine
from aura.tools.models import (
    MODEL_FOR_KIND,
    MOOD_OPTIONS,
    AffirmationCard,
    BreathingExercise,
    Checklist,
    ChecklistItem,
    MoodTracker,
    TOOL_INSTANCE_ADAPTER,
    ToolInstance,
    ToolKind,
)
from aura.types import Message, history_to_string

logger = structlog.get_logger(__name__)

PROJECT_KEYWORDS: tuple[str, ...] = ("plan", "project", "organize", "goal", "schedule", "trip")
MAX_NEW_CHECKLIST_ITEMS = 2

PromptBuilder = Callable[[Optional[str], str, Optional[str]], str]
StateRenderer = Callable[[Any], list[str]]


def is_project_topic(topic: str) -> bool:
    lowered = topic.lower()
    return any(keyword in lowered for keyword in PROJECT_KEYWORDS)


# ---------------------------------------------------------------------------
# Prompt builders: (theme, history_text, context) -> prompt
# ---------------------------------------------------------------------------

def _checklist_prompt(theme: Optional[str], history_text: str, context: Optional[str]) -> str:
    topic = (theme or "").strip() or "what the user is working on"
    if is_project_topic(topic):
        role = "You are an expert project manager AI."
        subject = f'the project: "{topic}"'
        title_hint = "A friendly, encouraging title for the project plan"
        item_hint = "A clear, actionable step or milestone"
        focus = "directly relevant to the user's project described in the history"
    else:
        role = "You are an AI assistant that creates helpful, actionable checklists."
        subject = f'the topic: "{topic}"'
        title_hint = "A friendly, encouraging title for the list"
        item_hint = "A short, actionable step"
        focus = "gentle, caring and directly relevant to the user's situation described in the history"
    return (
        f"{role} Based on the user's conversation history AND the provided web search "
        f"results, generate a highly personalized JSON object for a checklist to help the "
        f"user with {subject}. The JSON object must have the following structure: "
        f'{{ "title": "{title_hint}", "items": [{{"text": "{item_hint}", "done": false}}] }} '
        f"Create between 3 and 5 simple, encouraging checklist items that are {focus}.\n\n"
        f"Conversation History:\n{history_text or 'None'}\n\n"
        f"Web Search Results:\n{context or 'None'}"
    )


def _mood_tracker_prompt(theme: Optional[str], history_text: str, context: Optional[str]) -> str:
    options = ", ".join(f'"{mood}"' for mood in MOOD_OPTIONS)
    return (
        "Create a JSON object for a mood tracker based on the user's statement. "
        f'Structure: {{ "title": "How are you feeling right now?", "options": [{options}] }}\n\n'
        f"Conversation History:\n{history_text or 'None'}"
    )


def _breathing_prompt(theme: Optional[str], history_text: str, context: Optional[str]) -> str:
    focus = f' The user needs help with: "{theme}".' if theme else ""
    return (
        "Create a JSON object for a short, calming breathing exercise." + focus + " "
        "Use whole seconds for each phase. Structure: "
        '{ "title": "A Quick Breathing Exercise", '
        '"cycle": { "inhale": 4, "hold": 4, "exhale": 6 } }'
    )


def _affirmation_prompt(theme: Optional[str], history_text: str, context: Optional[str]) -> str:
    theme = (theme or "").strip() or "self-belief"
    return (
        'You are an AI assistant that creates JSON for an "Affirmation Card".\n'
        f'- The theme is: "{theme}".\n'
        "- Generate a friendly, encouraging title.\n"
        '- Generate an array of 2-4 short, powerful affirmation strings for the "text" property.\n'
        "- Your output MUST be only the raw JSON object with this exact structure: "
        '{ "title": "...", "text": ["...", "..."], "buttonText": "I will remember this." }\n\n'
        f"Conversation History:\n{history_text or 'None'}"
    )


def _more_items_prompt(history_text: str, existing: Checklist, completed_tasks: list[str]) -> str:
    existing_text = "\n".join(f"- {item.text}" for item in existing.items) or "None"
    completed_text = "\n".join(f"- {task}" for task in completed_tasks) or "None"
    return (
        "You are a helpful AI assistant. The user wants you to add more items to their "
        "checklist. Based on their conversation history and the context below, brainstorm "
        "one or two new, relevant, and non-repetitive suggestions.\n\n"
        f"**Conversation History:**\n{history_text or 'None'}\n\n"
        f"**Existing Checklist Items (Do not repeat these):**\n{existing_text}\n\n"
        f"**Recently Completed Tasks (DO NOT SUGGEST THESE AGAIN):**\n{completed_text}\n\n"
        'Respond with a JSON object of the form {"items": [{"text": "A new actionable step", '
        '"done": false}]}.'
    )


# ---------------------------------------------------------------------------
# State renderers: instance -> lines for [Current Toolbox State]
# ---------------------------------------------------------------------------

def _render_checklist(tool: Checklist) -> list[str]:
    lines = [f'- Checklist: "{tool.title}"']
    lines.extend(f"  {i}. {item.text}" for i, item in enumerate(tool.items, start=1))
    return lines


def _render_mood_tracker(tool: MoodTracker) -> list[str]:
    line = f'- Mood Tracker: "{tool.title}"'
    if tool.history:
        recent = ", ".join(entry.mood for entry in tool.history[-3:])
        line += f" (recent moods: {recent})"
    return [line]


def _render_breathing(tool: BreathingExercise) -> list[str]:
    cycle = tool.cycle
    return [
        f'- Breathing Exercise: "{tool.title}" '
        f"(Inhale: {cycle.inhale}s, Hold: {cycle.hold}s, Exhale: {cycle.exhale}s)"
    ]


def _render_affirmation(tool: AffirmationCard) -> list[str]:
    lines = [f'- Affirmation Card: "{tool.title}"']
    lines.extend(f'  - "{text}"' for text in tool.text)
    return lines


@dataclass(frozen=True)
class ToolDefinition:
    """
    One tool kind as the registry knows it.

    ``fixed_fields`` are forced onto every synthesized payload; the model
    cannot change them (the mood tracker's option set, for instance).
    """
    kind: ToolKind
    description: str
    model: type[BaseModel]
    id_prefix: str
    default_title: str
    build_prompt: PromptBuilder
    render: StateRenderer
    fixed_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.kind.label.title()


TOOL_DEFINITIONS: dict[ToolKind, ToolDefinition] = {
    ToolKind.CHECKLIST: ToolDefinition(
        kind=ToolKind.CHECKLIST,
        description="3-5 short actionable steps toward a plan, project or goal.",
        model=Checklist,
        id_prefix="checklist",
        default_title="Your Plan",
        build_prompt=_checklist_prompt,
        render=_render_checklist,
    ),
    ToolKind.MOOD_TRACKER: ToolDefinition(
        kind=ToolKind.MOOD_TRACKER,
        description="A five-option mood picker shown in the chat.",
        model=MoodTracker,
        id_prefix="mood",
        default_title="How are you feeling right now?",
        build_prompt=_mood_tracker_prompt,
        render=_render_mood_tracker,
        fixed_fields={"options": list(MOOD_OPTIONS), "history": []},
    ),
    ToolKind.BREATHING_EXERCISE: ToolDefinition(
        kind=ToolKind.BREATHING_EXERCISE,
        description="A guided inhale/hold/exhale cycle for acute stress.",
        model=BreathingExercise,
        id_prefix="breathe",
        default_title="A Quick Breathing Exercise",
        build_prompt=_breathing_prompt,
        render=_render_breathing,
    ),
    ToolKind.AFFIRMATION_CARD: ToolDefinition(
        kind=ToolKind.AFFIRMATION_CARD,
        description="2-4 short affirmations for self-doubt or motivation.",
        model=AffirmationCard,
        id_prefix="affirm",
        default_title="A Reminder For You",
        build_prompt=_affirmation_prompt,
        render=_render_affirmation,
    ),
}

# Render order for the toolbox listing.
RENDER_ORDER: tuple[ToolKind, ...] = (
    ToolKind.CHECKLIST,
    ToolKind.AFFIRMATION_CARD,
    ToolKind.BREATHING_EXERCISE,
    ToolKind.MOOD_TRACKER,
)

if set(TOOL_DEFINITIONS) != set(ToolKind) or set(RENDER_ORDER) != set(ToolKind):  # pragma: no cover
    raise RuntimeError("Every ToolKind needs a ToolDefinition and a render position")
if any(d.model is not MODEL_FOR_KIND[k] for k, d in TOOL_DEFINITIONS.items()):  # pragma: no cover
    raise RuntimeError("ToolDefinition models disagree with MODEL_FOR_KIND")


def render_tool_state(tools: dict[ToolKind, list[ToolInstance]]) -> str:
    """Human-readable listing of every live instance, or ``None``."""
    lines: list[str] = []
    for kind in RENDER_ORDER:
        definition = TOOL_DEFINITIONS[kind]
        for instance in tools.get(kind, []):
            lines.extend(definition.render(instance))
    return "\n".join(lines) or "None"


class ToolRegistry:
    """
    Synthesizes tool instances through the generation endpoint.

    Holds no state of its own beyond the engine. Created instances are
    returned to the caller, which decides where (and whether) to store them.
    """

    def __init__(self, engine: OllamaEngine):
        self._engine = engine
        self._definitions = dict(TOOL_DEFINITIONS)
        self._synthesized = 0
        self._failed = 0

    def get(self, kind: ToolKind) -> ToolDefinition:
        return self._definitions[kind]

    def list_definitions(self) -> list[dict[str, str]]:
        return [
            {"kind": d.kind.value, "label": d.label, "description": d.description}
            for d in self._definitions.values()
        ]

    @staticmethod
    def new_id(definition: ToolDefinition) -> str:
        return f"{definition.id_prefix}-{uuid.uuid4().hex[:12]}"

    def materialize(self, kind: ToolKind, payload: Any) -> Optional[ToolInstance]:
        """
        Validate a raw payload into an instance of ``kind``.

        The ``type`` tag and the id are always set here, overriding whatever
        the model produced. Returns None when the payload does not validate.
        """
        if not isinstance(payload, dict):
            logger.warning("tool_registry.payload_not_object", kind=kind.value)
            return None
        definition = self._definitions[kind]
        data = dict(payload)
        data.update(definition.fixed_fields)
        data["type"] = kind.value
        data["id"] = self.new_id(definition)
        if not str(data.get("title") or "").strip():
            data["title"] = definition.default_title
        try:
            return TOOL_INSTANCE_ADAPTER.validate_python(data)
        except ValidationError as e:
            logger.warning(
                "tool_registry.payload_invalid",
                kind=kind.value,
                errors=e.error_count(),
            )
            return None

    async def synthesize(
        self,
        kind: ToolKind,
        theme: Optional[str] = None,
        *,
        history: Iterable[Message] = (),
        context: Optional[str] = None,
    ) -> Optional[ToolInstance]:
        """Ask the model for a payload of ``kind``. None means no tool was created."""
        definition = self._definitions[kind]
        prompt = definition.build_prompt(theme, history_to_string(list(history)), context)
        try:
            payload = await self._engine.generate_json(prompt)
        except EndpointError as e:
            self._failed += 1
            logger.warning("tool_registry.synthesis_failed", kind=kind.value, error=str(e))
            return None

        instance = self.materialize(kind, payload)
        if instance is None:
            self._failed += 1
            return None
        self._synthesized += 1
        logger.info(
            "tool_registry.synthesized",
            kind=kind.value,
            tool_id=instance.id,
            title=instance.title,
        )
        return instance

    async def generate_more_checklist_items(
        self,
        history: Iterable[Message],
        existing: Checklist,
        completed_tasks: list[str],
    ) -> list[ChecklistItem]:
        """
        Brainstorm up to two new items for ``existing``.

        Items that repeat an open item, a completed task, or each other
        (case-insensitively) are dropped. Failures yield an empty list.
        """
        prompt = _more_items_prompt(history_to_string(list(history)), existing, completed_tasks)
        try:
            payload = await self._engine.generate_json(prompt)
        except EndpointError as e:
            logger.warning("tool_registry.more_items_failed", error=str(e))
            return []

        if isinstance(payload, dict):
            raw = payload.get("items")
            if raw is None and "text" in payload:
                raw = [payload]
        else:
            raw = payload
        if not isinstance(raw, list):
            logger.warning("tool_registry.more_items_unexpected_shape")
            return []

        seen = {item.text.casefold() for item in existing.items}
        seen.update(task.strip().casefold() for task in completed_tasks)
        new_items: list[ChecklistItem] = []
        for entry in raw:
            text = entry.get("text") if isinstance(entry, dict) else entry
            if not isinstance(text, str) or not text.strip():
                continue
            key = text.strip().casefold()
            if key in seen:
                continue
            seen.add(key)
            new_items.append(ChecklistItem(text=text))
            if len(new_items) >= MAX_NEW_CHECKLIST_ITEMS:
                break
        logger.info("tool_registry.more_items_generated", count=len(new_items))
        return new_items

    @property
    def stats(self) -> dict[str, int]:
        return {"synthesized": self._synthesized, "failed": self._failed}
