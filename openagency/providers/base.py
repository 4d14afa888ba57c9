"""Base provider for remote conversational execution backends.

A provider owns the remote conversation (assistant + thread) of one agent
and drives each inbound message to completion: it starts a run, polls its
status, executes the capabilities the run asks for, submits their outputs
and returns the assistant's reply.

Backends implement the ``_``-prefixed primitives; the run state machine in
:meth:`Provider.send_thread_message` is shared by all of them.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

from ..config import AgencyConfig
from ..events import EventBus, EventSink, EventType
from ..exceptions import RunFailedError, RunTimeoutError, UnsupportedActionError
from ..scheduling import CancellationToken, Scheduler, cancellation_scope

if TYPE_CHECKING:
    from ..capabilities import Capability

logger = logging.getLogger("openagency.providers")


class RunStatus(str, Enum):
    """Known states of a remote run."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


FAILED_STATUSES = {RunStatus.FAILED.value, RunStatus.CANCELLED.value, RunStatus.EXPIRED.value}

SUBMIT_TOOL_OUTPUTS = "submit_tool_outputs"


@dataclass
class ToolCall:
    """A capability call requested by a run."""

    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"


@dataclass
class ToolOutput:
    """The answer to one :class:`ToolCall`."""

    tool_call_id: str
    output: str

    def to_dict(self) -> dict[str, str]:
        return {"tool_call_id": self.tool_call_id, "output": self.output}


@dataclass
class RunSnapshot:
    """Backend-neutral view of a run at one poll."""

    id: str
    status: str
    required_action: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    last_error: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.status, Enum):
            self.status = self.status.value


@dataclass
class ThreadMessage:
    """A message on a remote thread.

    ``content`` is a list of fragments such as
    ``{"type": "text", "text": {"value": "..."}}``.
    """

    id: str
    role: str
    run_id: Optional[str] = None
    content: list[Any] = field(default_factory=list)


@dataclass
class RunResult:
    """Outcome of :meth:`Provider.send_thread_message`."""

    run_id: str
    status: str = "succeeded"
    messages: list[ThreadMessage] = field(default_factory=list)
    response: list[Any] = field(default_factory=list)


def error_output(message: str) -> str:
    return json.dumps({"error": message})


class Provider(ABC):
    """Base class for remote execution providers.

    Each agent needs its own provider instance: the assistant and thread
    registries are per instance and are emptied by :meth:`cleanup`.

    Args:
        config: Model, poll intervals and run timeout.
        events: Sink for provider lifecycle events.
        scheduler: Clock and cancellable sleep used while polling.
    """

    name = "Provider"

    def __init__(
        self,
        config: Optional[AgencyConfig] = None,
        events: Optional[EventSink] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.config = config or AgencyConfig()
        self.model = self.config.model
        self.scheduler = scheduler or Scheduler()
        self.assistants: dict[str, Any] = {}
        self.threads: dict[str, Any] = {}
        self._events_explicit = events is not None
        self._events: EventSink = events if events is not None else EventBus()

    @property
    def events(self) -> EventSink:
        return self._events

    def adopt_events(self, events: EventSink) -> None:
        """Use ``events`` unless a sink was given at construction."""
        if not self._events_explicit:
            self._events = events

    async def init(self) -> None:
        """Prepare the backend client. Called on every agent init."""

    async def cleanup(self) -> None:
        """Delete every thread and assistant created through this provider.

        Each deletion is independent; failures are reported as ``problem``
        events and never raised.
        """
        for thread_id in list(self.threads):
            try:
                await self._delete_thread(thread_id)
            except Exception as e:
                self._problem(f"Thread {thread_id} couldn't be deleted: {e}", thread_id)
        self.threads = {}

        for assistant_id in list(self.assistants):
            files: Optional[list[str]] = None
            try:
                files = await self._list_assistant_files(assistant_id)
            except Exception as e:
                self._problem(
                    f"Couldn't get list of files for assistant {assistant_id}: {e}",
                    assistant_id,
                )

            for file_id in files or []:
                try:
                    await self._delete_file(file_id)
                except Exception as e:
                    self._problem(f"File {file_id} couldn't be deleted: {e}", file_id)

            try:
                await self._delete_assistant(assistant_id)
            except Exception as e:
                self._problem(f"Assistant {assistant_id} couldn't be deleted: {e}", assistant_id)
        self.assistants = {}

    async def create_assistant(
        self,
        name: str,
        instructions: str,
        capabilities: Sequence["Capability"],
    ) -> str:
        """Create a remote assistant advertising ``capabilities``."""
        schemas = [capability.describe() for capability in capabilities]
        assistant_id, assistant = await self._create_assistant(name, instructions, schemas)
        self.assistants[assistant_id] = assistant

        self._publish(
            EventType.ASSISTANT_CREATED,
            message=f"Assistant {name} created.",
            name=name,
            id=assistant_id,
            model=self.model,
        )
        return assistant_id

    async def create_thread(self) -> str:
        """Create a remote conversation thread."""
        thread_id, thread = await self._create_thread()
        self.threads[thread_id] = thread

        self._publish(
            EventType.THREAD_CREATED,
            message=f"Thread {thread_id} created.",
            name=thread_id,
        )
        return thread_id

    async def send_thread_message(
        self,
        assistant_id: str,
        thread_id: str,
        message: str,
        capabilities: Sequence["Capability"],
        cancel: Optional[CancellationToken] = None,
    ) -> RunResult:
        """Post ``message`` and drive the resulting run to completion.

        Any failure while polling or dispatching cancels the remote run
        (best effort) and is re-raised.

        Raises:
            RunFailedError: The run ended failed, cancelled or expired.
            RunTimeoutError: The run exceeded ``config.run_timeout``.
            RunCancelledError: ``cancel`` fired while waiting.
            UnsupportedActionError: The run required an unknown action.
        """
        await self._create_message(thread_id, message)
        run_id = await self._create_run(thread_id, assistant_id)

        self._publish(EventType.RUN_CREATED, message=f"Run {run_id} created.", name=run_id)

        last_status: Optional[str] = None
        started = self.scheduler.now()

        try:
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()

                run = await self._retrieve_run(thread_id, run_id)
                last_status = run.status

                if run.status == RunStatus.COMPLETED:
                    self._publish(
                        EventType.RUN_COMPLETED,
                        message=f"Run {run_id} completed.",
                        name=run_id,
                    )
                    return await self._collect_result(thread_id, run_id)

                if run.status == RunStatus.REQUIRES_ACTION:
                    if run.required_action != SUBMIT_TOOL_OUTPUTS:
                        raise UnsupportedActionError(
                            "Can't receive assistant's response. Assistant requested "
                            f"an unknown action: {run.required_action}.",
                            action=run.required_action,
                        )
                    outputs = await self.dispatch_tool_calls(run.tool_calls, capabilities, cancel)
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    await self._submit_tool_outputs(thread_id, run_id, outputs)
                    continue

                if run.status in FAILED_STATUSES:
                    reason = f"Sending message {run.status}."
                    if run.last_error:
                        reason = f"Sending message {run.status}: {run.last_error}"
                    raise RunFailedError(reason, status=run.status, run_id=run_id)

                timeout = self.config.run_timeout
                if timeout is not None and self.scheduler.now() - started >= timeout:
                    raise RunTimeoutError(
                        f"Run {run_id} did not finish within {timeout}s, last status {run.status}."
                    )

                if run.status == RunStatus.QUEUED:
                    await self.scheduler.sleep(self.config.queued_poll_interval, cancel)
                else:
                    await self.scheduler.sleep(self.config.poll_interval, cancel)

        except (Exception, asyncio.CancelledError):
            self._problem(
                f"Run {run_id} interrupted, last known status {last_status}.",
                run_id,
            )
            try:
                await self._cancel_run(thread_id, run_id)
            except Exception as cancel_error:
                self._problem(f"Unable to cancel {run_id}: {cancel_error}.", run_id)
            raise

    async def dispatch_tool_calls(
        self,
        tool_calls: Sequence[ToolCall],
        capabilities: Sequence["Capability"],
        cancel: Optional[CancellationToken] = None,
    ) -> list[ToolOutput]:
        """Execute every requested call, in order, and return one output each.

        Unknown capabilities, malformed arguments and capability errors are
        all reported back as ``{"error": ...}`` outputs. ``cancel`` is made
        current while capabilities run, so delegates stop with this turn.

        Raises:
            RunCancelledError: ``cancel`` fired before every call was made.
        """
        by_name = {capability.function_name: capability for capability in capabilities}
        outputs = []
        with cancellation_scope(cancel):
            for call in tool_calls:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                outputs.append(ToolOutput(call.id, await self._dispatch_one(call, by_name)))
        return outputs

    async def _dispatch_one(self, call: ToolCall, by_name: dict[str, "Capability"]) -> str:
        if call.type != "function":
            return error_output(f"Tool call type {call.type} is not supported.")

        capability = by_name.get(call.name)
        if capability is None:
            logger.warning("Run requested unknown capability %s", call.name)
            return error_output(f"Tool {call.name} is not available.")

        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
        except (json.JSONDecodeError, TypeError) as e:
            return error_output(f"Arguments for {call.name} are not valid JSON: {e}")
        if not isinstance(arguments, dict):
            return error_output(f"Arguments for {call.name} must be a JSON object.")

        try:
            result = await capability.invoke(arguments)
        except Exception as e:
            logger.warning("Capability %s failed: %s", call.name, e)
            return error_output(str(e))

        return json.dumps(result, default=str)

    async def _collect_result(self, thread_id: str, run_id: str) -> RunResult:
        messages = await self._list_messages(thread_id, run_id)
        reply = next(
            (m for m in messages if m.role == "assistant" and m.run_id == run_id),
            None,
        )
        if reply is None:
            logger.warning("Run %s completed without an assistant reply", run_id)
        return RunResult(
            run_id=run_id,
            messages=messages,
            response=list(reply.content) if reply is not None else [],
        )

    def _publish(self, event_type: Union[str, EventType], **payload: Any) -> None:
        data = {"name": self.name, "type": "Provider"}
        data.update(payload)
        self._events.publish(event_type, data)

    def _problem(self, message: str, name: str) -> None:
        logger.warning(message)
        self._publish(EventType.PROBLEM, message=message, name=name)

    # Backend primitives

    @abstractmethod
    async def _create_assistant(
        self, name: str, instructions: str, tools: list[dict[str, Any]]
    ) -> tuple[str, Any]:
        """Create an assistant; return its id and backend record."""

    @abstractmethod
    async def _create_thread(self) -> tuple[str, Any]:
        """Create a thread; return its id and backend record."""

    @abstractmethod
    async def _create_message(self, thread_id: str, text: str) -> None:
        ...

    @abstractmethod
    async def _create_run(self, thread_id: str, assistant_id: str) -> str:
        ...

    @abstractmethod
    async def _retrieve_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        ...

    @abstractmethod
    async def _submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: list[ToolOutput]
    ) -> None:
        ...

    @abstractmethod
    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        ...

    @abstractmethod
    async def _list_messages(self, thread_id: str, run_id: str) -> list[ThreadMessage]:
        """Return thread messages, newest first."""

    @abstractmethod
    async def _delete_thread(self, thread_id: str) -> None:
        ...

    @abstractmethod
    async def _list_assistant_files(self, assistant_id: str) -> list[str]:
        ...

    @abstractmethod
    async def _delete_file(self, file_id: str) -> None:
        ...

    @abstractmethod
    async def _delete_assistant(self, assistant_id: str) -> None:
        ...
