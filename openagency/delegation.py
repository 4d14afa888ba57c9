"""
OpenAgency - Delegation between agents.

A :class:`DelegateCapability` lets one agent hand a task to another agent as
if it were an ordinary capability. The call is synchronous: the delegating
agent's turn only continues once the delegate's whole turn, including any
further delegation, has finished.
"""

from typing import TYPE_CHECKING, Any, Optional

from .capabilities import Capability, Parameter
from .events import EventSink
from .scheduling import current_token

if TYPE_CHECKING:
    from .agents import Agent


def compose_task(task: str, details: Optional[str] = None) -> str:
    """Build the message sent to a delegate."""
    if not details:
        return task
    return f"# task to execute\n{task}\n\n# task details\n{details}"


class DelegateCapability(Capability):
    """Forwards a task to a wrapped agent's ``send_message``.

    Initialising the capability attaches the wrapped agent to the owner's
    delegation tree and initialises it, so it shares the owner's memory.
    """

    def __init__(self, agent: "Agent", events: Optional[EventSink] = None):
        if agent.is_agency:
            raise ValueError(f"{agent.name} is an agency and cannot be used as a delegate")

        self.agent = agent
        super().__init__(
            agent.name,
            parameters={
                "task": Parameter(
                    "task",
                    description="The specific task to delegate.",
                    required=True,
                ),
                "details": Parameter(
                    "details",
                    description="Additional details for the task.",
                ),
            },
            description=(
                f"Delegates a task to {agent.name} agent, which has the following "
                f"capabilities. {agent.description}"
            ),
            events=events,
        )

    async def init(self, owner: "Agent") -> None:
        await super().init(owner)
        self.agent.attach(owner)
        await self.agent.init(owner.tree_name)

    async def cleanup(self) -> None:
        await self.agent.cleanup()
        await super().cleanup()

    async def execute(self, params: dict[str, Any]) -> str:
        return await self.agent.send_message(
            compose_task(params["task"], params.get("details")),
            cancel=current_token(),
        )
