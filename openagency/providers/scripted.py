"""Scripted in-memory provider.

Replays pre-recorded run scripts instead of talking to a remote backend.
Every primitive call is recorded, which makes the provider useful for tests
and for dry runs of agent definitions without an API key.

Example:
    provider = ScriptedProvider()
    provider.queue(
        ScriptedRun(
            steps=[
                "queued",
                "in_progress",
                ScriptedStep.calling("getTimeTool", {"timezone": "UTC"}),
                "completed",
            ],
            reply=lambda outputs: f"The time is {outputs[0]}",
        )
    )
"""

import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from ..config import AgencyConfig
from ..events import EventSink
from ..exceptions import ProviderError
from ..scheduling import Scheduler
from .base import (
    SUBMIT_TOOL_OUTPUTS,
    Provider,
    RunSnapshot,
    RunStatus,
    ThreadMessage,
    ToolCall,
    ToolOutput,
)


@dataclass
class ScriptedStep:
    """One poll result of a scripted run."""

    status: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    required_action: Optional[str] = None
    last_error: Optional[str] = None

    @classmethod
    def calling(cls, name: str, arguments: Union[dict, str, None] = None) -> "ScriptedStep":
        """A ``requires_action`` step asking for a single capability call."""
        return cls.calling_many((name, arguments if arguments is not None else {}))

    @classmethod
    def calling_many(cls, *calls: tuple[str, Union[dict, str]]) -> "ScriptedStep":
        """A ``requires_action`` step asking for several calls in one batch.

        Each call is a ``(name, arguments)`` pair; dict arguments are
        serialised to JSON, strings are passed through untouched.
        """
        tool_calls = [
            ToolCall(
                id="",
                name=name,
                arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
            )
            for name, arguments in calls
        ]
        return cls(
            status=RunStatus.REQUIRES_ACTION.value,
            tool_calls=tool_calls,
            required_action=SUBMIT_TOOL_OUTPUTS,
        )


ReplyInput = Union[str, Callable[[list[str]], str]]


@dataclass
class ScriptedRun:
    """Script for one ``send_thread_message`` call.

    Attributes:
        steps: Statuses (or steps) returned by successive polls. The last
            step repeats once the script is exhausted.
        reply: Final assistant text, or a callable receiving the outputs
            submitted during the run.
        content: Raw reply fragments, used instead of ``reply`` when set.
    """

    steps: list[Union[str, ScriptedStep]] = field(
        default_factory=lambda: [RunStatus.COMPLETED.value]
    )
    reply: ReplyInput = ""
    content: Optional[list[Any]] = None

    @classmethod
    def reply_with(cls, reply: ReplyInput) -> "ScriptedRun":
        return cls(steps=[RunStatus.IN_PROGRESS.value, RunStatus.COMPLETED.value], reply=reply)

    @classmethod
    def failing(cls, status: str = "failed", error: Optional[str] = None) -> "ScriptedRun":
        return cls(steps=[ScriptedStep(status=status, last_error=error)])


@dataclass
class _ActiveRun:
    id: str
    thread_id: str
    assistant_id: str
    script: ScriptedRun
    position: int = 0
    outputs: list[str] = field(default_factory=list)
    replied: bool = False
    cancelled: bool = False


class ScriptedProvider(Provider):
    """Provider replaying queued :class:`ScriptedRun` objects.

    Args:
        runs: Scripts consumed in order, one per inbound message.
        default_reply: Reply used when the queue is empty. Without it an
            empty queue raises :class:`ProviderError`.
        fail_operations: Primitive names (``"delete_thread"``,
            ``"cancel_run"``, ...) that raise :class:`ProviderError`.
    """

    name = "ScriptedProvider"

    def __init__(
        self,
        runs: Optional[list[ScriptedRun]] = None,
        default_reply: Optional[ReplyInput] = None,
        config: Optional[AgencyConfig] = None,
        events: Optional[EventSink] = None,
        scheduler: Optional[Scheduler] = None,
        fail_operations: Optional[set[str]] = None,
    ):
        super().__init__(config, events=events, scheduler=scheduler)
        self.pending: list[ScriptedRun] = list(runs or [])
        self.default_reply = default_reply
        self.fail_operations: set[str] = set(fail_operations or ())

        self.created_assistants: dict[str, dict[str, Any]] = {}
        self.thread_messages: dict[str, list[ThreadMessage]] = {}
        self.assistant_files: dict[str, list[str]] = {}
        self.runs: dict[str, _ActiveRun] = {}
        self.calls: list[tuple[str, str]] = []
        self.submitted: list[list[ToolOutput]] = []
        self.cancelled_runs: list[str] = []
        self.deleted: list[str] = []
        self.init_count = 0

        self._ids = itertools.count(1)

    def queue(self, *runs: ScriptedRun) -> "ScriptedProvider":
        self.pending.extend(runs)
        return self

    def polls(self, run_id: str) -> int:
        return sum(1 for op, target in self.calls if op == "retrieve_run" and target == run_id)

    async def init(self) -> None:
        self.init_count += 1

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        if operation in self.fail_operations:
            raise ProviderError(f"Scripted failure of {operation} for {target}")

    async def _create_assistant(
        self, name: str, instructions: str, tools: list[dict[str, Any]]
    ) -> tuple[str, Any]:
        assistant_id = self._next_id("asst")
        self._record("create_assistant", assistant_id)
        record = {"id": assistant_id, "name": name, "instructions": instructions, "tools": tools}
        self.created_assistants[assistant_id] = record
        return assistant_id, record

    async def _create_thread(self) -> tuple[str, Any]:
        thread_id = self._next_id("thread")
        self._record("create_thread", thread_id)
        self.thread_messages[thread_id] = []
        return thread_id, {"id": thread_id}

    async def _create_message(self, thread_id: str, text: str) -> None:
        self._record("create_message", thread_id)
        self.thread_messages.setdefault(thread_id, []).append(
            ThreadMessage(
                id=self._next_id("msg"),
                role="user",
                content=[{"type": "text", "text": {"value": text, "annotations": []}}],
            )
        )

    async def _create_run(self, thread_id: str, assistant_id: str) -> str:
        run_id = self._next_id("run")
        self._record("create_run", run_id)
        if self.pending:
            script = self.pending.pop(0)
        elif self.default_reply is not None:
            script = ScriptedRun.reply_with(self.default_reply)
        else:
            raise ProviderError(f"{self.name} has no scripted run queued")
        self.runs[run_id] = _ActiveRun(run_id, thread_id, assistant_id, script)
        return run_id

    async def _retrieve_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        self._record("retrieve_run", run_id)
        active = self.runs[run_id]
        steps = active.script.steps
        step = steps[min(active.position, len(steps) - 1)]
        active.position += 1
        if isinstance(step, str):
            step = ScriptedStep(status=step)

        tool_calls = [
            ToolCall(
                id=call.id or f"call_{run_id}_{active.position}_{index}",
                name=call.name,
                arguments=call.arguments,
                type=call.type,
            )
            for index, call in enumerate(step.tool_calls)
        ]

        if step.status == RunStatus.COMPLETED and not active.replied:
            self._reply(active)

        return RunSnapshot(
            id=run_id,
            status=step.status,
            required_action=step.required_action,
            tool_calls=tool_calls,
            last_error=step.last_error,
        )

    def _reply(self, active: _ActiveRun) -> None:
        active.replied = True
        content = active.script.content
        if content is None:
            reply = active.script.reply
            text = reply(list(active.outputs)) if callable(reply) else reply
            content = [{"type": "text", "text": {"value": text, "annotations": []}}]
        self.thread_messages.setdefault(active.thread_id, []).append(
            ThreadMessage(
                id=self._next_id("msg"),
                role="assistant",
                run_id=active.id,
                content=list(content),
            )
        )

    async def _submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: list[ToolOutput]
    ) -> None:
        self._record("submit_tool_outputs", run_id)
        self.submitted.append(list(outputs))
        self.runs[run_id].outputs.extend(output.output for output in outputs)

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        self._record("cancel_run", run_id)
        self.cancelled_runs.append(run_id)
        self.runs[run_id].cancelled = True

    async def _list_messages(self, thread_id: str, run_id: str) -> list[ThreadMessage]:
        self._record("list_messages", thread_id)
        return list(reversed(self.thread_messages.get(thread_id, [])))

    async def _delete_thread(self, thread_id: str) -> None:
        self._record("delete_thread", thread_id)
        self.deleted.append(thread_id)

    async def _list_assistant_files(self, assistant_id: str) -> list[str]:
        self._record("list_assistant_files", assistant_id)
        return list(self.assistant_files.get(assistant_id, []))

    async def _delete_file(self, file_id: str) -> None:
        self._record("delete_file", file_id)
        self.deleted.append(file_id)

    async def _delete_assistant(self, assistant_id: str) -> None:
        self._record("delete_assistant", assistant_id)
        self.deleted.append(assistant_id)
