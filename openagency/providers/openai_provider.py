"""OpenAI Assistants provider.

Runs agent conversations on the OpenAI Assistants API: one assistant and
one thread per agent, one run per inbound message.

Example:
    from openagency import Agent, AgencyConfig
    from openagency.providers import OpenAIProvider

    config = AgencyConfig(model="gpt-4o")
    agent = Agent(
        "helper",
        instructions="You are a helpful assistant.",
        provider=OpenAIProvider(config),
    )
"""

import logging
from typing import Any, Awaitable, Optional, TypeVar

import openai

from ..config import AgencyConfig
from ..events import EventSink, EventType
from ..exceptions import ProviderError
from ..scheduling import Scheduler
from .base import Provider, RunSnapshot, ThreadMessage, ToolCall, ToolOutput

logger = logging.getLogger("openagency.providers.openai")

T = TypeVar("T")


def _tools_to_openai_format(tools: list[dict]) -> list[dict]:
    """Convert capability definitions to OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t["description"],
                "parameters": t["parameters"],
            },
        }
        for t in tools
    ]


def _content_to_dict(block: Any) -> Any:
    if hasattr(block, "model_dump"):
        return block.model_dump()
    return block


class OpenAIProvider(Provider):
    """Provider backed by ``openai.AsyncOpenAI().beta`` assistants and threads.

    Args:
        config: Model, API key, endpoint and polling settings.
        events: Sink for provider lifecycle events.
        scheduler: Clock and cancellable sleep used while polling.
        client: Pre-built ``AsyncOpenAI`` client. Built from ``config`` on
            :meth:`init` when omitted.
    """

    name = "OpenAIProvider"

    def __init__(
        self,
        config: Optional[AgencyConfig] = None,
        events: Optional[EventSink] = None,
        scheduler: Optional[Scheduler] = None,
        client: Optional[Any] = None,
    ):
        super().__init__(config, events=events, scheduler=scheduler)
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            raise ProviderError(f"{self.name} is not initialised")
        return self._client

    async def init(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
            )
        except openai.OpenAIError as e:
            raise ProviderError(f"{self.name} couldn't create an OpenAI client: {e}") from e

        self._publish(EventType.INITIALISED, message=f"{self.name} initialised.")

    async def _api(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except openai.APIStatusError as e:
            raise ProviderError(
                f"OpenAI {operation} failed: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(f"OpenAI {operation} failed: {e.message}") from e

    async def _create_assistant(
        self, name: str, instructions: str, tools: list[dict[str, Any]]
    ) -> tuple[str, Any]:
        assistant = await self._api(
            "assistant creation",
            self.client.beta.assistants.create(
                name=name,
                instructions=instructions,
                model=self.model,
                tools=_tools_to_openai_format(tools),
            ),
        )
        return assistant.id, assistant

    async def _create_thread(self) -> tuple[str, Any]:
        thread = await self._api("thread creation", self.client.beta.threads.create())
        return thread.id, thread

    async def _create_message(self, thread_id: str, text: str) -> None:
        await self._api(
            "message creation",
            self.client.beta.threads.messages.create(thread_id, role="user", content=text),
        )

    async def _create_run(self, thread_id: str, assistant_id: str) -> str:
        run = await self._api(
            "run creation",
            self.client.beta.threads.runs.create(thread_id, assistant_id=assistant_id),
        )
        return run.id

    async def _retrieve_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        run = await self._api(
            "run retrieval",
            self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id),
        )

        required_action = None
        tool_calls = []
        if run.required_action is not None:
            required_action = run.required_action.type
            submit = getattr(run.required_action, "submit_tool_outputs", None)
            for tc in getattr(submit, "tool_calls", None) or []:
                tool_calls.append(
                    ToolCall(
                        id=tc.id,
                        name=tc.function.name,
                        arguments=tc.function.arguments,
                        type=tc.type,
                    )
                )

        last_error = None
        if getattr(run, "last_error", None) is not None:
            last_error = f"{run.last_error.code}: {run.last_error.message}"

        return RunSnapshot(
            id=run.id,
            status=run.status,
            required_action=required_action,
            tool_calls=tool_calls,
            last_error=last_error,
        )

    async def _submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: list[ToolOutput]
    ) -> None:
        await self._api(
            "tool output submission",
            self.client.beta.threads.runs.submit_tool_outputs(
                run_id,
                thread_id=thread_id,
                tool_outputs=[output.to_dict() for output in outputs],
            ),
        )

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        await self._api(
            "run cancellation",
            self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id),
        )

    async def _list_messages(self, thread_id: str, run_id: str) -> list[ThreadMessage]:
        page = await self._api(
            "message listing",
            self.client.beta.threads.messages.list(thread_id, run_id=run_id, order="desc"),
        )
        return [
            ThreadMessage(
                id=m.id,
                role=m.role,
                run_id=m.run_id,
                content=[_content_to_dict(block) for block in m.content],
            )
            for m in page.data
        ]

    async def _delete_thread(self, thread_id: str) -> None:
        await self._api("thread deletion", self.client.beta.threads.delete(thread_id))

    async def _list_assistant_files(self, assistant_id: str) -> list[str]:
        assistant = await self._api(
            "assistant retrieval",
            self.client.beta.assistants.retrieve(assistant_id),
        )
        resources = getattr(assistant, "tool_resources", None)
        code_interpreter = getattr(resources, "code_interpreter", None)
        return list(getattr(code_interpreter, "file_ids", None) or [])

    async def _delete_file(self, file_id: str) -> None:
        await self._api("file deletion", self.client.files.delete(file_id))

    async def _delete_assistant(self, assistant_id: str) -> None:
        await self._api("assistant deletion", self.client.beta.assistants.delete(assistant_id))
