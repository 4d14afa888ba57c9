"""
OpenAgency - Capabilities.

A capability is a named, independently invocable unit of work with a
declared parameter schema. Agents advertise their capabilities to the
remote backend through :meth:`Capability.describe` and the provider calls
:meth:`Capability.invoke` when the backend asks for one.

Usage:
    ```python
    class Greet(Capability):
        description = "Greets someone by name."

        def __init__(self):
            super().__init__("greet", parameters={"who": True, "greeting": False})

        async def execute(self, params):
            return f"{params['greeting'] or 'Hello'}, {params['who']}!"

    @define_capability(description="Adds two numbers.", parameters={
        "a": Parameter("a", type="number", required=True),
        "b": Parameter("b", type="number", required=True),
    })
    def add(a, b):
        return a + b
    ```
"""

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from .events import EventBus, EventSink, EventType
from .exceptions import MissingParameterError
from .validation import validate_name

if TYPE_CHECKING:
    from .agents import Agent, AgentTree

logger = logging.getLogger("openagency.capabilities")


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass
class Parameter:
    """Declaration of one capability parameter."""

    name: str
    description: str = ""
    type: str = "string"
    required: bool = False
    default: Any = NO_DEFAULT

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        return schema


ParameterInput = Union[bool, Parameter]


def _coerce_parameter(name: str, declared: ParameterInput) -> Parameter:
    if isinstance(declared, Parameter):
        if declared.name != name:
            raise ValueError(
                f"Parameter declared under '{name}' is named '{declared.name}'"
            )
        return declared
    return Parameter(name=name, required=bool(declared))


class Capability:
    """Base class for everything an agent can call.

    Subclasses implement :meth:`execute`. Callers go through :meth:`invoke`,
    which normalises the parameters and publishes ``execute``/``result``
    events around the call.

    Expected failures (network errors, bad input from the model) should be
    returned as part of the result rather than raised, so the remote run can
    react to them.
    """

    description: str = ""

    def __init__(
        self,
        name: str,
        parameters: Optional[dict[str, ParameterInput]] = None,
        description: Optional[str] = None,
        events: Optional[EventSink] = None,
    ):
        validate_name(name)
        self.name = name
        if description is not None:
            self.description = description
        self.parameters: dict[str, Parameter] = {
            key: _coerce_parameter(key, value) for key, value in (parameters or {}).items()
        }
        self.required: list[str] = [
            key for key, parameter in self.parameters.items() if parameter.required
        ]

        self.owner_id: Optional[str] = None
        self._tree: Optional["AgentTree"] = None
        self._events_explicit = events is not None
        self._events: EventSink = events if events is not None else EventBus()

        self._publish(EventType.CREATED, message=f"{self.name} created.")

    @property
    def type(self) -> str:
        return type(self).__name__

    @property
    def function_name(self) -> str:
        """Name advertised to the remote backend (no whitespace)."""
        return "".join(self.name.split())

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def owner(self) -> Optional["Agent"]:
        """The owning agent, resolved through the delegation tree."""
        if self._tree is None or self.owner_id is None:
            return None
        return self._tree.get(self.owner_id)

    async def init(self, owner: "Agent") -> None:
        """Bind the capability to the agent that advertises it."""
        self.owner_id = owner.agent_id
        self._tree = owner.tree
        if not self._events_explicit:
            self._events = owner.events

    async def cleanup(self) -> None:
        self.owner_id = None
        self._tree = None

    def describe(self) -> dict[str, Any]:
        """Return the capability definition as a JSON-schema dict."""
        return {
            "name": self.function_name,
            "description": self.description or f"Capability: {self.name}",
            "parameters": {
                "type": "object",
                "properties": {
                    key: parameter.to_schema() for key, parameter in self.parameters.items()
                },
                "required": list(self.required),
            },
        }

    def normalize(self, params: Optional[dict[str, Any]]) -> dict[str, Any]:
        """Build the parameter set passed to :meth:`execute`.

        Supplied values win, then declared defaults. Undeclared keys are
        dropped.

        Raises:
            MissingParameterError: A required parameter has neither.
        """
        params = params or {}
        normalized: dict[str, Any] = {}
        for key, parameter in self.parameters.items():
            if params.get(key) is not None:
                normalized[key] = params[key]
            elif parameter.has_default:
                normalized[key] = parameter.default
            elif parameter.required:
                raise MissingParameterError(
                    f"{self.name} requires parameter '{key}'",
                    parameter=key,
                    capability=self.name,
                )
            else:
                normalized[key] = None
        return normalized

    async def invoke(self, params: Optional[dict[str, Any]] = None) -> Any:
        """Normalise ``params``, execute, and publish the call and its result."""
        normalized = self.normalize(params)

        self._publish(
            EventType.EXECUTE,
            message=f"{self.name} executing...",
            args=normalized,
        )

        result = await self.execute(normalized)

        self._publish(
            EventType.RESULT,
            message=f"{self.name} successfully executed.",
            args=normalized,
            result=result,
        )

        return result

    async def execute(self, params: dict[str, Any]) -> Any:
        raise NotImplementedError(f"{self.type} does not implement execute()")

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        self._events.publish(
            event_type,
            {"name": self.name, "type": self.type, **payload},
        )

    def __repr__(self) -> str:
        return f"{self.type}(name={self.name!r})"


class FunctionCapability(Capability):
    """A capability backed by a plain or async callable.

    The callable receives the normalised parameters as keyword arguments.
    """

    def __init__(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        parameters: Optional[dict[str, ParameterInput]] = None,
        events: Optional[EventSink] = None,
    ):
        self.handler = handler
        super().__init__(
            name,
            parameters=parameters,
            description=description or handler.__doc__ or f"Capability: {name}",
            events=events,
        )

    async def execute(self, params: dict[str, Any]) -> Any:
        result = self.handler(**params)
        if inspect.isawaitable(result):
            result = await result
        return result


def define_capability(
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[dict[str, ParameterInput]] = None,
) -> Callable[[Callable[..., Any]], FunctionCapability]:
    """Decorator that turns a function into a :class:`FunctionCapability`.

    The function's ``__name__`` is used as the capability name unless
    ``name`` is given.
    """

    def decorator(func: Callable[..., Any]) -> FunctionCapability:
        return FunctionCapability(
            name or func.__name__,
            func,
            description=description,
            parameters=parameters,
        )

    return decorator


CapabilityFactory = Callable[[], Capability]


class CapabilityRegistry:
    """Maps capability names to factories building fresh instances.

    Capabilities hold their owner binding, so every agent built from a
    definition gets its own instance.
    """

    def __init__(self, factories: Optional[dict[str, CapabilityFactory]] = None):
        self._factories: dict[str, CapabilityFactory] = dict(factories or {})

    def register(self, name: str, factory: CapabilityFactory) -> None:
        validate_name(name)
        self._factories[name] = factory

    def create(self, name: str) -> Capability:
        if name not in self._factories:
            raise KeyError(name)
        return self._factories[name]()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories
