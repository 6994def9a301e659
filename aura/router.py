"""
Agent Router — deciding what a message needs.

For each user message the router returns an ordered list of directives: build
a tool, touch the current checklist, look something up, or just chat. The
decision is a single constrained request to the generation endpoint with an
explicit priority list of rules, answered with one command or several joined
by ``&&``.

Acute distress never waits for the model. A small keyword check runs first
and answers with a breathing exercise on its own, so a panicking user is
never handed a mood tracker because of something earlier in the history.

Everything the model says is parsed tolerantly. Unknown commands, stray
markdown and missing arguments degrade to ``Chat`` instead of failing the turn.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Union

import structlog

from aura.api.ollama import EndpointError, OllamaEngine
from aura.types import Message, history_to_string

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Search:
    query: str


@dataclass(frozen=True)
class CreateChecklist:
    topic: str


@dataclass(frozen=True)
class AddChecklistItem:
    text: str


@dataclass(frozen=True)
class GenerateMoreChecklistItems:
    pass


@dataclass(frozen=True)
class CreateBreathingExercise:
    pass


@dataclass(frozen=True)
class CreateMoodTracker:
    pass


@dataclass(frozen=True)
class CreateAffirmationCard:
    theme: str


@dataclass(frozen=True)
class Chat:
    pass


Directive = Union[
    Search,
    CreateChecklist,
    AddChecklistItem,
    GenerateMoreChecklistItems,
    CreateBreathingExercise,
    CreateMoodTracker,
    CreateAffirmationCard,
    Chat,
]

DIRECTIVE_TYPES: tuple[type, ...] = Directive.__args__  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Decision prompt
# ---------------------------------------------------------------------------

DISTRESS_RE = re.compile(
    r"\b(?:"
    r"panic(?:king|ked|s)?"
    r"|can(?:['’]?t|not| not)\s+breathe"
    r"|freak(?:ing|ed)\s+out"
    r"|anxiety\s+attack"
    r"|hyperventilat\w*"
    r"|heart\s+is\s+racing"
    r")",
    re.IGNORECASE,
)

ROUTER_PROMPT = """You are a tool-selection AI. Analyze the user's latest message and respond ONLY \
with the most appropriate tool command. Apply the rules in order and use the FIRST one that matches.

**Tool Commands & Triggers (in priority order):**
1. **BREATHING_EXERCISE**: The user expresses acute stress, anxiety or panic ("anxious", \
"panicked", "overwhelmed", "freaking out", "can't breathe").
2. **ADD_TO_CHECKLIST:[item]**: The user wants to add a specific, complete item to their list.
3. **GENERATE_MORE_ITEMS**: The user wants more ideas or items for their existing list.
4. **CHECKLIST:[topic]**: The user wants a new plan or list, wants to organize a project, \
a goal, a schedule or a trip, or feels stuck.
5. **MOOD_TRACKER**: The user states a simple, direct emotion ("sad", "happy", "angry", \
"feel down", "feeling great").
6. **AFFIRMATION_CARD:[theme]**: The user has self-doubt or needs motivation.
7. **SEARCH:[query]**: The user asks for facts or recommendations.
8. **CHAT**: Use ONLY if no other tool applies.

If one message clearly needs two tools, join the commands with "&&", for example:
CHECKLIST:[exam preparation] && AFFIRMATION_CARD:[confidence]

**Conversation History:**
{history}

**User's Latest Message:** "{utterance}"

**Your Command:**"""

_COMMAND_RE = re.compile(r"^([A-Za-z][A-Za-z _*`-]*?)\s*(?::\s*(.*))?$", re.DOTALL)
_ENUMERATOR_RE = re.compile(r"^\s*\d+[.)]\s*")
_DECORATION = " \t*`_\"'-•>."
_ARGUMENT_DECORATION = " \t*`\"'[](){}<>."


def _clean_argument(raw: Optional[str]) -> str:
    return (raw or "").strip().strip(_ARGUMENT_DECORATION).strip()


def parse_command(text: str, fallback_text: str = "") -> Directive:
    """Parse one command. Anything unrecognized becomes ``Chat``."""
    text = _ENUMERATOR_RE.sub("", text, count=1)
    text = text.strip().strip(_DECORATION).strip()
    match = _COMMAND_RE.match(text)
    if not match:
        return Chat()
    # Emphasis can wrap the name alone, as in "**CHECKLIST**: [topic]".
    name = match.group(1).replace("*", "").replace("`", "").strip(" _").upper()
    name = re.sub(r"[\s-]+", "_", name)
    argument = _clean_argument(match.group(2))
    fallback = fallback_text.strip()

    if name == "BREATHING_EXERCISE":
        return CreateBreathingExercise()
    if name == "MOOD_TRACKER":
        return CreateMoodTracker()
    if name in ("GENERATE_MORE_ITEMS", "GENERATE_MORE"):
        return GenerateMoreChecklistItems()
    if name in ("ADD_TO_CHECKLIST", "ADD_TO_LIST"):
        return AddChecklistItem(text=argument) if argument else Chat()
    if name == "CHECKLIST":
        topic = argument or fallback
        return CreateChecklist(topic=topic) if topic else Chat()
    if name in ("AFFIRMATION_CARD", "AFFIRMATION"):
        return CreateAffirmationCard(theme=argument or fallback or "self-belief")
    if name == "SEARCH":
        query = argument or fallback
        return Search(query=query) if query else Chat()
    if match.group(2):
        # An echoed label such as "Command: CHECKLIST:[trip]".
        return parse_command(match.group(2), fallback_text)
    return Chat()


def parse_directives(answer: str, fallback_text: str = "") -> list[Directive]:
    """
    Parse a router answer into an ordered, de-duplicated directive list.

    Commands are separated by ``&&`` or newlines. ``Chat`` is only kept when
    nothing else was recognized.
    """
    directives: list[Directive] = []
    for part in re.split(r"&&|\n", answer or ""):
        if not part.strip():
            continue
        directive = parse_command(part, fallback_text)
        if directive not in directives:
            directives.append(directive)
    actionable = [d for d in directives if not isinstance(d, Chat)]
    return actionable or [Chat()]


class AgentRouter:
    """Maps one utterance, given the history, to a list of directives."""

    def __init__(self, engine: OllamaEngine):
        self._engine = engine

    async def decide(self, utterance: str, history: Iterable[Message] = ()) -> list[Directive]:
        if DISTRESS_RE.search(utterance):
            logger.info("agent_router.distress_fast_path", utterance=utterance)
            return [CreateBreathingExercise()]

        prompt = ROUTER_PROMPT.format(
            history=history_to_string(list(history)) or "None",
            utterance=utterance,
        )
        try:
            answer = await self._engine.generate(prompt)
        except EndpointError as e:
            logger.warning("agent_router.decision_failed", error=str(e))
            return [Chat()]

        directives = parse_directives(answer, fallback_text=utterance)
        logger.info(
            "agent_router.decided",
            answer=answer[:120],
            directives=[type(d).__name__ for d in directives],
        )
        return directives
