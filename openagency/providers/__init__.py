"""Remote execution providers.

A provider owns the remote conversation of one agent and runs the
poll/dispatch state machine that turns an inbound message into a reply.

Available providers:
- OpenAIProvider: OpenAI Assistants API (assistants, threads, runs)
- ScriptedProvider: in-memory replay of scripted runs, for tests and dry runs
"""

from openagency.providers.base import (
    Provider,
    RunResult,
    RunSnapshot,
    RunStatus,
    ThreadMessage,
    ToolCall,
    ToolOutput,
)
from openagency.providers.openai_provider import OpenAIProvider
from openagency.providers.scripted import ScriptedProvider, ScriptedRun, ScriptedStep

__all__ = [
    "Provider",
    "RunResult",
    "RunSnapshot",
    "RunStatus",
    "ThreadMessage",
    "ToolCall",
    "ToolOutput",
    "OpenAIProvider",
    "ScriptedProvider",
    "ScriptedRun",
    "ScriptedStep",
]
