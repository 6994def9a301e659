"""
Aura — a supportive conversational companion backed by a local language model.

The package holds the agent orchestration core: a persisted multi-conversation
store, a router that turns free text into tool directives, a registry that
materializes interactive tools (checklists, mood trackers, breathing exercises,
affirmation cards), and a semantic memory that grounds replies in facts the
user shared earlier.

Layers (bottom to top):
    1. Ollama client (generation + embeddings) and the search collaborator
    2. Memory (similarity, index, extractor) and the conversation store
    3. Tool registry and inline tool markers
    4. Router and response assembler
    5. Agent (the per-turn pipeline)
    6. Terminal front-end
"""

__version__ = "0.1.0"
