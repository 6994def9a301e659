"""
AuraAgent — the turn pipeline.

This class wires the subsystems together and owns the order in which they run
for one user action. Each component is small and testable on its own; the
agent is where they meet:

  1. RECEIVE: validate the text and append it to the active conversation
  2. ROUTE: ask the router for directives (or, in markers mode, skip ahead)
  3. ACT: synthesize tools and apply checklist changes through the registry
  4. PERSIST: store every effect before anything else happens
  5. REPLY: assemble the grounded prompt, with one system note for the effects
  6. REMEMBER: append the reply, then extract memories in a detached task

Rendered tools call back in through ``complete_checklist_item``, ``log_mood``,
``commit_affirmation`` and ``finish_breathing``. Each of those produces one
system note and one follow-up reply.

The agent runs one turn at a time. Overlapping ``send`` calls on the same
agent are a caller error; the terminal front-end awaits each turn.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

import structlog

from aura.api.ollama import EndpointError, OllamaEngine
from aura.api.search import SearchClient
from aura.assembler import (
    AffirmationCommitted,
    BreathingComplete,
    ChecklistItemCompleted,
    ItemAdded,
    MoodLogged,
    MoreItemsAdded,
    ResponseAssembler,
    SystemNote,
    ToolsCreated,
)
from aura.config import AuraConfig
from aura.events import (
    ChecklistItemCompletedEvent,
    EventBus,
    MessageAppendedEvent,
    ToolCreatedEvent,
    ToolWorkingEvent,
)
from aura.memory.extractor import MemoryExtractor
from aura.memory.index import MemoryIndex
from aura.memory.store import ConversationStore
from aura.router import (
    DIRECTIVE_TYPES,
    AddChecklistItem,
    AgentRouter,
    Chat,
    CreateAffirmationCard,
    CreateBreathingExercise,
    CreateChecklist,
    CreateMoodTracker,
    Directive,
    GenerateMoreChecklistItems,
    Search,
)
from aura.tools.markers import ToolMarker, distinct_kinds, find_markers, strip_markers
from aura.tools.models import ToolInstance, ToolKind
from aura.tools.registry import ToolRegistry
from aura.types import Conversation, MemoryEntry, Role

logger = structlog.get_logger(__name__)

APOLOGY = "I'm sorry, I couldn't reach my language model just now. Please try again in a moment."
FALLBACK_CHECKLIST_TITLE = "My Checklist"


@dataclass
class AgentReply:
    """
    What one user action produced.

    ``text`` is None when no reply was generated (a mood tracker shown on its
    own). ``persisted`` is False for the apologetic text returned when the
    model could not be reached; that text never enters the history.
    """
    conversation_id: str
    text: Optional[str] = None
    directives: list[Directive] = field(default_factory=list)
    tools_created: list[ToolInstance] = field(default_factory=list)
    in_chat_tool: Optional[ToolInstance] = None
    persisted: bool = True


@dataclass
class _TurnEffects:
    notes: list[SystemNote] = field(default_factory=list)
    created: list[ToolInstance] = field(default_factory=list)
    search_context: list[str] = field(default_factory=list)
    in_chat_tool: Optional[ToolInstance] = None

    @property
    def persistent_tools(self) -> list[ToolInstance]:
        return [t for t in self.created if t is not self.in_chat_tool]

    @property
    def needs_reply(self) -> bool:
        if self.in_chat_tool is None:
            return True
        return bool(self.notes or self.persistent_tools or self.search_context)


class AuraAgent:
    """
    The orchestration core behind every interface.

    Collaborators are built from ``AuraConfig`` unless passed in, which is how
    tests swap in a fake engine or a temporary store.
    """

    def __init__(
        self,
        config: AuraConfig,
        *,
        engine: Optional[OllamaEngine] = None,
        search: Optional[SearchClient] = None,
        store: Optional[ConversationStore] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self._config = config
        self.engine = engine or OllamaEngine(config.ollama)
        self.search = search or SearchClient(config.search)
        self.store = store or ConversationStore(
            config.store.state_file,
            max_completed_tasks=config.store.max_completed_tasks,
            max_mood_history=config.store.max_mood_history,
        )
        self.event_bus = event_bus or EventBus()

        self.registry = ToolRegistry(self.engine)
        self.router = AgentRouter(self.engine)
        self.assembler = ResponseAssembler(
            system_prompt=config.agent.system_prompt,
            routing_mode=config.agent.routing_mode,
        )
        self.memory = MemoryIndex(self.store, self.engine)
        self.extractor = MemoryExtractor(self.engine, self.memory, self.event_bus)

        self._routing_mode = config.agent.routing_mode
        self._memory_top_k = config.agent.memory_top_k
        self._max_user_text_chars = config.agent.max_user_text_chars
        self._background_tasks: set[asyncio.Task] = set()
        self._initialized = False

        self._directive_handlers: dict[type, Callable[..., Awaitable[None]]] = {
            Search: self._apply_search,
            CreateChecklist: self._apply_create_checklist,
            AddChecklistItem: self._apply_add_checklist_item,
            GenerateMoreChecklistItems: self._apply_generate_more,
            CreateBreathingExercise: self._apply_create_breathing,
            CreateMoodTracker: self._apply_create_mood_tracker,
            CreateAffirmationCard: self._apply_create_affirmation,
            Chat: self._apply_chat,
        }
        if set(self._directive_handlers) != set(DIRECTIVE_TYPES):
            raise RuntimeError("Every directive type needs a handler")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        self.store.initialize()
        await self.event_bus.start()
        self._initialized = True
        logger.info(
            "agent.initialized",
            model=self.engine.model,
            routing=self._routing_mode,
            search=self.search.is_available,
        )

    async def drain(self) -> None:
        """Wait for every outstanding memory extraction."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.event_bus.stop()
        await self.engine.aclose()
        await self.search.aclose()
        self._initialized = False
        logger.info("agent.closed")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("AuraAgent must be initialized before use")

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def new_conversation(self) -> Conversation:
        self._require_initialized()
        return self.store.create_conversation()

    def switch(self, conversation_id: str) -> bool:
        self._require_initialized()
        return self.store.set_active(conversation_id)

    def delete(self, conversation_id: str) -> bool:
        self._require_initialized()
        return self.store.delete(conversation_id)

    # ------------------------------------------------------------------
    # The turn
    # ------------------------------------------------------------------

    async def send(self, text: str) -> AgentReply:
        """Run one user message through the full pipeline."""
        self._require_initialized()
        text = (text or "").strip()
        if not text:
            raise ValueError("Message text is required")
        text = text[: self._max_user_text_chars]

        conversation_id = self.store.active_id
        prior_history = self.store.history()
        logger.info("agent.message_received", conversation_id=conversation_id, length=len(text))
        self._append(Role.USER, text, conversation_id)

        if self._routing_mode == "markers":
            return await self._send_with_markers(text, conversation_id)

        directives = await self.router.decide(text, prior_history)
        effects = _TurnEffects()
        for directive in directives:
            handler = self._directive_handlers[type(directive)]
            await handler(directive, effects, conversation_id)

        persistent = effects.persistent_tools
        if persistent:
            kinds = tuple(dict.fromkeys(ToolKind(t.type) for t in persistent))
            effects.notes.insert(0, ToolsCreated(kinds=kinds))

        reply = AgentReply(
            conversation_id=conversation_id,
            directives=list(directives),
            tools_created=list(effects.created),
            in_chat_tool=effects.in_chat_tool,
        )
        if not effects.needs_reply:
            logger.info("agent.in_chat_tool_only", conversation_id=conversation_id)
            return reply

        await self._reply(
            reply,
            query=text,
            notes=effects.notes,
            search_context="\n\n".join(effects.search_context) or None,
            user_text=text,
        )
        return reply

    async def _send_with_markers(self, text: str, conversation_id: str) -> AgentReply:
        """Markers mode: the reply itself requests tools."""
        reply = AgentReply(conversation_id=conversation_id)
        await self._reply(reply, query=text, notes=[], user_text=text)
        return reply

    # ------------------------------------------------------------------
    # Directive handlers
    # ------------------------------------------------------------------

    async def _apply_search(self, directive: Search, effects: _TurnEffects, conversation_id: str) -> None:
        answer = await self.search.try_search(directive.query)
        if answer:
            effects.search_context.append(answer)

    async def _apply_create_checklist(
        self, directive: CreateChecklist, effects: _TurnEffects, conversation_id: str
    ) -> None:
        context = await self.search.try_search(directive.topic)
        await self._create_tool(ToolKind.CHECKLIST, directive.topic, effects, conversation_id, context)

    async def _apply_add_checklist_item(
        self, directive: AddChecklistItem, effects: _TurnEffects, conversation_id: str
    ) -> None:
        if self.store.add_checklist_items([directive.text]) is None:
            # No checklist yet: start one around the item.
            instance = self.registry.materialize(
                ToolKind.CHECKLIST,
                {"title": FALLBACK_CHECKLIST_TITLE, "items": [directive.text]},
            )
            if instance is None:
                return
            self._store_tool(instance, conversation_id)
            effects.created.append(instance)
        effects.notes.append(ItemAdded(text=directive.text))

    async def _apply_generate_more(
        self, directive: GenerateMoreChecklistItems, effects: _TurnEffects, conversation_id: str
    ) -> None:
        checklist = self.store.latest_checklist()
        if checklist is None:
            logger.info("agent.generate_more_without_checklist", conversation_id=conversation_id)
            return
        self.event_bus.emit(
            ToolWorkingEvent(conversation_id=conversation_id, kind=ToolKind.CHECKLIST.value)
        )
        items = await self.registry.generate_more_checklist_items(
            self.store.history(), checklist, self.store.completed_tasks()
        )
        if items:
            self.store.add_checklist_items(items)
            effects.notes.append(MoreItemsAdded(count=len(items)))

    async def _apply_create_breathing(
        self, directive: CreateBreathingExercise, effects: _TurnEffects, conversation_id: str
    ) -> None:
        await self._create_tool(ToolKind.BREATHING_EXERCISE, None, effects, conversation_id)

    async def _apply_create_mood_tracker(
        self, directive: CreateMoodTracker, effects: _TurnEffects, conversation_id: str
    ) -> None:
        instance = await self._create_tool(ToolKind.MOOD_TRACKER, None, effects, conversation_id)
        if instance is not None:
            self._append(Role.AGENT, instance, conversation_id)
            effects.in_chat_tool = instance

    async def _apply_create_affirmation(
        self, directive: CreateAffirmationCard, effects: _TurnEffects, conversation_id: str
    ) -> None:
        await self._create_tool(ToolKind.AFFIRMATION_CARD, directive.theme, effects, conversation_id)

    async def _apply_chat(self, directive: Chat, effects: _TurnEffects, conversation_id: str) -> None:
        return None

    async def _create_tool(
        self,
        kind: ToolKind,
        theme: Optional[str],
        effects: _TurnEffects,
        conversation_id: str,
        context: Optional[str] = None,
    ) -> Optional[ToolInstance]:
        self.event_bus.emit(ToolWorkingEvent(conversation_id=conversation_id, kind=kind.value))
        instance = await self.registry.synthesize(
            kind, theme, history=self.store.history(), context=context
        )
        if instance is None:
            return None
        self._store_tool(instance, conversation_id)
        effects.created.append(instance)
        return instance

    # ------------------------------------------------------------------
    # Follow-up actions from rendered tools
    # ------------------------------------------------------------------

    async def complete_checklist_item(self, tool_id: str, index: int) -> Optional[AgentReply]:
        """Complete one item. None when the checklist or index no longer exists."""
        self._require_initialized()
        conversation_id = self.store.active_id
        completed = self.store.complete_checklist_item(tool_id, index)
        if completed is None:
            return None
        self.event_bus.emit(
            ChecklistItemCompletedEvent(
                conversation_id=conversation_id,
                tool_id=tool_id,
                text=completed,
                checklist_removed=self.store.find_tool(tool_id) is None,
            )
        )
        return await self._follow_up(conversation_id, ChecklistItemCompleted(text=completed))

    async def log_mood(self, mood: str, tool_id: Optional[str] = None) -> Optional[AgentReply]:
        self._require_initialized()
        conversation_id = self.store.active_id
        entry = self.store.log_mood(mood, tool_id)
        if entry is None:
            return None
        return await self._follow_up(conversation_id, MoodLogged(mood=entry.mood))

    async def commit_affirmation(self, text: str) -> AgentReply:
        self._require_initialized()
        return await self._follow_up(self.store.active_id, AffirmationCommitted(text=text.strip()))

    async def finish_breathing(self) -> AgentReply:
        self._require_initialized()
        return await self._follow_up(self.store.active_id, BreathingComplete())

    async def _follow_up(self, conversation_id: str, note: SystemNote) -> AgentReply:
        reply = AgentReply(conversation_id=conversation_id)
        await self._reply(reply, query=note.sentence(), notes=[note])
        return reply

    # ------------------------------------------------------------------
    # Reply + memory
    # ------------------------------------------------------------------

    async def _reply(
        self,
        reply: AgentReply,
        *,
        query: str,
        notes: list[SystemNote],
        search_context: Optional[str] = None,
        user_text: Optional[str] = None,
    ) -> None:
        """
        Generate, persist and remember one reply, filling in ``reply``.

        In markers mode every prompt carries the marker instructions, so every
        reply is stripped of its tags before it is stored and the tags it
        carried are synthesized into tools.
        """
        conversation_id = reply.conversation_id
        memories = await self.memory.retrieve(query, self._memory_top_k, conversation_id)
        prompt = self.assembler.build(
            self.store.history(),
            self.store.tools(),
            memories=memories,
            notes=notes,
            search_context=search_context,
        )
        try:
            raw = await self.engine.generate(prompt)
        except EndpointError as e:
            logger.error("agent.reply_failed", conversation_id=conversation_id, error=str(e))
            reply.text = APOLOGY
            reply.persisted = False
            return

        if self._routing_mode != "markers":
            reply.text = raw
            self._append(Role.AGENT, raw, conversation_id)
            if user_text:
                self._schedule_extraction(user_text, raw, conversation_id)
            return

        markers = find_markers(raw)
        visible = strip_markers(raw)
        reply.text = visible
        if visible:
            self._append(Role.AGENT, visible, conversation_id)
        await self._synthesize_markers(markers, reply)
        if visible and user_text:
            self._schedule_extraction(user_text, visible, conversation_id)

    async def _synthesize_markers(self, markers: list[ToolMarker], reply: AgentReply) -> None:
        conversation_id = reply.conversation_id
        for kind in distinct_kinds(markers):
            self.event_bus.emit(ToolWorkingEvent(conversation_id=conversation_id, kind=kind.value))
        history = self.store.history()
        for marker in markers:
            instance = await self.registry.synthesize(marker.kind, marker.theme, history=history)
            if instance is None:
                continue
            self._store_tool(instance, conversation_id)
            reply.tools_created.append(instance)
            if marker.kind == ToolKind.MOOD_TRACKER:
                self._append(Role.AGENT, instance, conversation_id)
                reply.in_chat_tool = instance

    def _schedule_extraction(self, user_text: str, agent_text: str, conversation_id: str) -> None:
        task = self.extractor.schedule(user_text, agent_text, conversation_id)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_extraction_done)

    def _on_extraction_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("agent.extraction_crashed", error=str(error))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append(self, role: Role, content: Union[str, ToolInstance], conversation_id: str) -> None:
        message = self.store.append_message(role, content, conversation_id=conversation_id)
        if message is not None:
            self.event_bus.emit(
                MessageAppendedEvent(
                    conversation_id=conversation_id,
                    role=role.value,
                    is_tool=message.is_tool,
                )
            )

    def _store_tool(self, instance: ToolInstance, conversation_id: str) -> None:
        kind = ToolKind(instance.type)
        self.store.add_tool(kind, instance, conversation_id=conversation_id)
        self.event_bus.emit(
            ToolCreatedEvent(
                conversation_id=conversation_id,
                kind=kind.value,
                tool_id=instance.id,
                title=instance.title,
            )
        )

    def memories(self) -> list[MemoryEntry]:
        return self.store.memories()

    @property
    def is_initialized(self) -> bool:
        return self._initialized
