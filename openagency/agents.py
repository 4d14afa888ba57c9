"""
OpenAgency - Agents and agencies.

An :class:`Agent` binds instructions and capabilities to one remote
conversation. Agents compose through :class:`DelegateCapability`, forming a
delegation tree whose root owns the tree's :class:`SharedMemory`.

Usage:
    ```python
    from openagency import Agency, Agent, DelegateCapability
    from openagency.providers import OpenAIProvider

    researcher = Agent(
        "researcher",
        instructions="You look things up.",
        description="Finds facts.",
        provider=OpenAIProvider(),
    )
    agency = Agency(
        "front desk",
        instructions="Answer users, delegate research.",
        capabilities=[DelegateCapability(researcher)],
        provider=OpenAIProvider(),
    )

    await agency.init("front desk")
    print(await agency.send_message("Who wrote Dune?"))
    await agency.cleanup()
    ```
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Iterable, Optional

from .capabilities import Capability
from .config import AgencyConfig
from .events import EventBus, EventSink, EventType
from .exceptions import ProviderNotConfiguredError
from .memory import REMEMBER_CAPABILITY_NAME, RememberCapability, SharedMemory
from .providers.base import Provider
from .scheduling import CancellationToken
from .validation import validate_message, validate_name

logger = logging.getLogger("openagency.agents")

DEGRADED_RESPONSE_PREFIX = "Unable to respond, due to an internal problem: "


class AgentRole(str, Enum):
    """Position of an agent in a delegation tree."""

    AGENT = "agent"
    AGENCY = "agency"


class AgentTree:
    """Arena for the agents of one delegation tree.

    Holds the tree's shared memory, configuration and event sink, and
    resolves agent ids to agents so capabilities and delegates can refer to
    their owner by id.
    """

    def __init__(
        self,
        name: str,
        memory: SharedMemory,
        config: AgencyConfig,
        events: EventSink,
    ):
        self.name = name
        self.memory = memory
        self.config = config
        self.events = events
        self.root_id: Optional[str] = None
        self._agents: dict[str, "Agent"] = {}

    def register(self, agent: "Agent") -> None:
        self._agents[agent.agent_id] = agent
        if agent.owner_id is None:
            self.root_id = agent.agent_id

    def remove(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)

    def get(self, agent_id: str) -> Optional["Agent"]:
        return self._agents.get(agent_id)

    @property
    def root(self) -> Optional["Agent"]:
        return self.get(self.root_id) if self.root_id else None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)


def response_to_text(response: Any) -> str:
    """Concatenate the text fragments of a structured reply.

    Non-text fragments (images, files) are skipped. Accepts dict fragments
    and SDK objects alike.
    """
    if not isinstance(response, (list, tuple)):
        return ""

    text = ""
    for fragment in response:
        if isinstance(fragment, dict):
            if fragment.get("type") != "text":
                continue
            value = fragment.get("text")
            text += str(value.get("value", "")) if isinstance(value, dict) else str(value or "")
        elif getattr(fragment, "type", None) == "text":
            value = getattr(fragment, "text", None)
            text += str(getattr(value, "value", value) or "")
    return text


class Agent:
    """An orchestrator bound to one remote conversation.

    An agent is constructed inert. :meth:`init` allocates the remote
    assistant and thread and initialises every capability (recursively
    initialising delegates); :meth:`cleanup` releases them again, after which
    the agent may be initialised anew.

    Args:
        name: Agent name, also used as the delegate capability name.
        instructions: System instructions for the remote assistant.
        description: What the agent is good at; shown to delegating agents.
        capabilities: Capabilities the agent may call.
        provider: Remote execution provider. Built from
            ``config.provider_factory`` at init when omitted.
        role: :attr:`AgentRole.AGENCY` marks a tree entry point.
        config: Settings for memory and provider creation (root agents).
        events: Sink for notifications. Delegates constructed without one
            adopt their owner's sink.
    """

    def __init__(
        self,
        name: str,
        instructions: str = "",
        description: str = "",
        capabilities: Optional[Iterable[Capability]] = None,
        provider: Optional[Provider] = None,
        role: AgentRole = AgentRole.AGENT,
        config: Optional[AgencyConfig] = None,
        events: Optional[EventSink] = None,
    ):
        validate_name(name)
        self.name = name
        self.instructions = instructions or ""
        self.description = description or ""
        self.capabilities: list[Capability] = list(capabilities or [])
        self.provider = provider
        self.role = AgentRole(role)
        self.config = config

        names = [capability.function_name for capability in self.capabilities]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"{name} has duplicate capabilities: {', '.join(duplicates)}")
        if REMEMBER_CAPABILITY_NAME in names:
            raise ValueError(
                f"{name} can't use the name '{REMEMBER_CAPABILITY_NAME}', "
                "it is reserved for the built-in memory capability"
            )

        self.agent_id = f"{''.join(name.split())}-{uuid.uuid4().hex[:8]}"
        self.owner_id: Optional[str] = None
        self.tree: Optional[AgentTree] = None
        self.assistant_id: Optional[str] = None
        self.thread_id: Optional[str] = None

        self._events_explicit = events is not None
        self._events: EventSink = events if events is not None else EventBus()
        self._remember: Optional[RememberCapability] = None

        self._publish(EventType.CREATED, message=f"{self.name} created.")

    @property
    def type(self) -> str:
        return "Agency" if self.is_agency else type(self).__name__

    @property
    def is_agency(self) -> bool:
        return self.role == AgentRole.AGENCY

    @property
    def is_root(self) -> bool:
        return self.owner_id is None

    @property
    def initialised(self) -> bool:
        return self.assistant_id is not None

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def owner(self) -> Optional["Agent"]:
        if self.tree is None or self.owner_id is None:
            return None
        return self.tree.get(self.owner_id)

    @property
    def tree_name(self) -> Optional[str]:
        return self.tree.name if self.tree is not None else None

    @property
    def memory(self) -> Optional[SharedMemory]:
        return self.tree.memory if self.tree is not None else None

    def attach(self, owner: "Agent") -> None:
        """Make this agent a delegate in ``owner``'s tree."""
        if self.is_agency:
            raise ValueError(f"{self.name} is an agency and cannot be delegated to")
        if owner.tree is None:
            raise ValueError(f"{owner.name} must be initialising before delegates attach")
        self.owner_id = owner.agent_id
        self.tree = owner.tree
        if not self._events_explicit:
            self._events = owner.events

    async def init(self, tree_name: str) -> None:
        """Allocate the remote conversation and initialise all capabilities.

        Root agents create and load the tree's memory; delegates borrow it.

        Raises:
            ProviderNotConfiguredError: No provider is set or configurable.
        """
        validate_name(tree_name, "tree_name")
        if self.initialised:
            raise RuntimeError(f"{self.name} is already initialised")

        config = self.config or (self.tree.config if self.tree is not None else AgencyConfig())

        if self.provider is None:
            self.provider = config.create_provider()
        if self.provider is None:
            raise ProviderNotConfiguredError(
                f"{self.type} can't initialise Agent because provider is not set."
            )
        self.provider.adopt_events(self._events)

        if self.is_root:
            memory = SharedMemory(
                memory_dir=config.memory_dir,
                watch_interval=config.memory_watch_interval,
                events=self._events,
            )
            self.tree = AgentTree(tree_name, memory, config, self._events)

        self.tree.register(self)
        self._remember = RememberCapability()
        self.capabilities.append(self._remember)

        capability_names = []
        try:
            if self.is_root:
                await self.tree.memory.init(tree_name)

            for capability in self.capabilities:
                await capability.init(self)
                capability_names.append(capability.name)

            await self.provider.init()

            self.assistant_id = await self.provider.create_assistant(
                self.name,
                self.instructions + self.tree.memory.to_instructions(),
                self.capabilities,
            )
            self.thread_id = await self.provider.create_thread()
        except (Exception, asyncio.CancelledError):
            # A failed init leaves the agent inert.
            try:
                await self.cleanup()
            except Exception as cleanup_error:
                logger.warning("%s cleanup after failed init failed: %s", self.name, cleanup_error)
            raise

        self._publish(
            EventType.INITIALISED,
            message=f"{self.name} initialised.",
            assistantId=self.assistant_id,
            threadId=self.thread_id,
            provider=self.provider.name,
            instructions=self.instructions,
            capabilities=self.description,
            tools=capability_names,
        )

    async def cleanup(self) -> None:
        """Release remote resources and return to the inert state.

        Only the root agent tears down the shared memory. Safe to call on an
        agent that is not initialised.
        """
        for capability in list(self.capabilities):
            await capability.cleanup()

        self.capabilities = [
            c for c in self.capabilities if not isinstance(c, RememberCapability)
        ]
        self._remember = None

        if self.provider is not None:
            await self.provider.cleanup()
        self.assistant_id = None
        self.thread_id = None

        if self.tree is not None:
            self.tree.remove(self.agent_id)
            if self.is_root:
                await self.tree.memory.cleanup()
        self.owner_id = None
        self.tree = None

    async def send_message(
        self,
        message: str,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Send ``message`` to the agent and return its textual reply.

        Failures after the message is accepted are not raised: they are
        published as a ``problem`` event and returned as a degraded answer
        starting with ``"Unable to respond"``.

        Raises:
            InputValidationError: ``message`` is not a non-empty string.
        """
        validate_message(message)

        self._publish(
            EventType.MESSAGE,
            message=f"Message to {self.name}, {message[:10]}...",
            assistantId=self.assistant_id,
            threadId=self.thread_id,
            fullMessage=message,
        )

        try:
            if not self.initialised:
                raise RuntimeError(f"{self.name} is not initialised")

            result = await self.provider.send_thread_message(
                self.assistant_id,
                self.thread_id,
                message,
                self.capabilities,
                cancel=cancel,
            )

            response = response_to_text(result.response)

            self._publish(
                EventType.RESPONSE,
                message=f"Response from {self.name}, {response[:10]}...",
                assistantId=self.assistant_id,
                threadId=self.thread_id,
                fullMessage=message,
                fullResponse=response,
            )

            return response

        except Exception as e:
            logger.warning("%s failed to respond: %s", self.name, e)
            self._publish(
                EventType.PROBLEM,
                message=f"{self.name} ran into a problem: {e}",
                assistantId=self.assistant_id,
                threadId=self.thread_id,
                problem=str(e),
            )
            return f"{DEGRADED_RESPONSE_PREFIX}{e}"

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        self._events.publish(
            event_type,
            {"name": self.name, "type": self.type, **payload},
        )

    def __repr__(self) -> str:
        return f"{self.type}(name={self.name!r}, role={self.role.value!r})"


def Agency(  # noqa: N802 - capitalised as a class-like constructor
    name: str,
    instructions: str = "",
    description: str = "",
    capabilities: Optional[Iterable[Capability]] = None,
    provider: Optional[Provider] = None,
    config: Optional[AgencyConfig] = None,
    events: Optional[EventSink] = None,
) -> Agent:
    """Build an agent in the agency role: a tree entry point, never a delegate."""
    return Agent(
        name,
        instructions=instructions,
        description=description,
        capabilities=capabilities,
        provider=provider,
        role=AgentRole.AGENCY,
        config=config,
        events=events,
    )
