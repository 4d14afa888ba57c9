"""
OpenAgency - Declarative agent definitions.

Loads an agent tree from YAML and materialises it as :class:`Agent`
instances. A definition names its agent, gives it instructions and a
free-text description of what it can do, lists built-in (or registered)
capabilities by name, and nests the agents it delegates to.

Example:
    ```yaml
    name: Wikipedia Agency
    role: agency
    capabilities: Answers general knowledge questions.
    instructions: |
      Answer the user's questions. Use the researcher for facts.
    tools:
      - getTimeTool
    delegates:
      - name: Researcher
        capabilities: Looks up facts on Wikipedia.
        instructions: Search Wikipedia and summarise what you find.
        tools:
          - wikipediaSearchTool
    ```

    ```python
    definition = AgentDefinition.from_yaml("wikipedia.yaml")
    agency = definition.build(config=AgencyConfig(provider_factory=OpenAIProvider))
    ```
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .agents import Agent, AgentRole
from .builtin import builtin_registry
from .capabilities import CapabilityRegistry
from .config import AgencyConfig
from .delegation import DelegateCapability
from .events import EventSink
from .exceptions import DefinitionNotFoundError, DefinitionValidationError
from .memory import REMEMBER_CAPABILITY_NAME

logger = logging.getLogger("openagency.definitions")

KNOWN_KEYS = {"name", "instructions", "capabilities", "role", "tools", "delegates"}


@dataclass
class AgentDefinition:
    """Declarative description of an agent and its delegates.

    Attributes:
        name: Agent name, unique among siblings.
        instructions: System instructions for the remote assistant.
        capabilities: Free-text description of what the agent can do. Shown
            to agents delegating to it.
        role: ``agent`` or ``agency``. Only the root may be an agency.
        tools: Names of capabilities resolved through a
            :class:`CapabilityRegistry` at build time.
        delegates: Agents this agent can hand tasks to.
    """

    name: str
    instructions: str = ""
    capabilities: str = ""
    role: AgentRole = AgentRole.AGENT
    tools: list[str] = field(default_factory=list)
    delegates: list["AgentDefinition"] = field(default_factory=list)
    source_path: Optional[Path] = None

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AgentDefinition":
        """
        Load and validate a definition from a YAML file.

        Raises:
            DefinitionNotFoundError: File not found
            DefinitionValidationError: Invalid YAML or structure
        """
        path = Path(path)
        if not path.exists():
            raise DefinitionNotFoundError(f"Agent definition not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DefinitionValidationError(
                f"Invalid YAML syntax: {e}",
                suggestion="Check your YAML indentation and syntax",
            ) from e

        definition = cls.from_dict(data)
        definition.source_path = path
        return definition

    @classmethod
    def from_string(cls, yaml_content: str) -> "AgentDefinition":
        """Load and validate a definition from a YAML string."""
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise DefinitionValidationError(
                f"Invalid YAML syntax: {e}",
                suggestion="Check your YAML indentation and syntax",
            ) from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "AgentDefinition":
        """Parse and validate an already loaded definition document."""
        if not isinstance(data, dict):
            raise DefinitionValidationError(
                "Agent definition must be a YAML object",
                suggestion="Your file should start with 'name: \"My Agency\"'",
            )
        return cls._parse(data, "", is_root=True)

    @classmethod
    def _parse(cls, data: dict, path: str, is_root: bool) -> "AgentDefinition":
        prefix = f"{path}." if path else ""

        unknown = sorted(set(data) - KNOWN_KEYS)
        if unknown:
            raise DefinitionValidationError(
                f"Unknown field(s): {', '.join(map(str, unknown))}",
                path=path or "<root>",
                suggestion=f"Allowed fields: {', '.join(sorted(KNOWN_KEYS))}",
            )

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise DefinitionValidationError(
                "Missing agent name",
                path=f"{prefix}name",
                suggestion="Add 'name: \"My Agent\"'",
            )

        for text_field in ("instructions", "capabilities"):
            value = data.get(text_field)
            if value is not None and not isinstance(value, str):
                raise DefinitionValidationError(
                    f"'{text_field}' must be text",
                    path=f"{prefix}{text_field}",
                )

        role_value = data.get("role", AgentRole.AGENT.value)
        try:
            role = AgentRole(str(role_value).lower())
        except ValueError:
            raise DefinitionValidationError(
                f"Unknown role '{role_value}'",
                path=f"{prefix}role",
                suggestion="Use 'agent' or 'agency'",
            ) from None
        if role == AgentRole.AGENCY and not is_root:
            raise DefinitionValidationError(
                f"Delegate '{name}' cannot be an agency",
                path=f"{prefix}role",
                suggestion="Only the top-level definition may use 'role: agency'",
            )

        tools = data.get("tools") or []
        if not isinstance(tools, list) or not all(isinstance(t, str) and t for t in tools):
            raise DefinitionValidationError(
                "'tools' must be a list of capability names",
                path=f"{prefix}tools",
                suggestion="tools:\n  - getTimeTool",
            )

        delegates_data = data.get("delegates") or []
        if not isinstance(delegates_data, list):
            raise DefinitionValidationError(
                "'delegates' must be a list of agent definitions",
                path=f"{prefix}delegates",
            )

        delegates = []
        for index, delegate_data in enumerate(delegates_data):
            delegate_path = f"{prefix}delegates[{index}]"
            if not isinstance(delegate_data, dict):
                raise DefinitionValidationError(
                    "Delegate must be an object",
                    path=delegate_path,
                )
            delegates.append(cls._parse(delegate_data, delegate_path, is_root=False))

        # Tools and delegates share one namespace on the remote assistant.
        seen: set[str] = set()
        entries = [(t, f"{prefix}tools") for t in tools]
        entries += [(d.name, f"{prefix}delegates") for d in delegates]
        for function_name, where in entries:
            key = "".join(function_name.split())
            if key == REMEMBER_CAPABILITY_NAME:
                raise DefinitionValidationError(
                    f"Capability name '{function_name}' is reserved",
                    path=where,
                    suggestion="Every agent already has the built-in 'remember' capability",
                )
            if key in seen:
                raise DefinitionValidationError(
                    f"Capability '{function_name}' is listed more than once",
                    path=where,
                    suggestion="Tool names and delegate names must be unique per agent",
                )
            seen.add(key)

        return cls(
            name=name,
            instructions=data.get("instructions") or "",
            capabilities=data.get("capabilities") or "",
            role=role,
            tools=list(tools),
            delegates=delegates,
        )

    def walk(self) -> list["AgentDefinition"]:
        """This definition followed by every nested delegate, depth first."""
        found = [self]
        for delegate in self.delegates:
            found.extend(delegate.walk())
        return found

    def check_tools(self, registry: CapabilityRegistry) -> None:
        """Ensure every tool name in the tree is known to ``registry``."""
        self._check_tools(registry, "")

    def _check_tools(self, registry: CapabilityRegistry, path: str) -> None:
        prefix = f"{path}." if path else ""
        for index, tool in enumerate(self.tools):
            if tool not in registry:
                raise DefinitionValidationError(
                    f"Unknown tool '{tool}'",
                    path=f"{prefix}tools[{index}]",
                    suggestion=f"Available tools: {', '.join(registry.names()) or 'none'}",
                )
        for index, delegate in enumerate(self.delegates):
            delegate._check_tools(registry, f"{prefix}delegates[{index}]")

    def build(
        self,
        registry: Optional[CapabilityRegistry] = None,
        config: Optional[AgencyConfig] = None,
        events: Optional[EventSink] = None,
    ) -> Agent:
        """Materialise the definition as an (uninitialised) agent tree.

        Args:
            registry: Capability factories for ``tools``. Defaults to the
                built-in capabilities.
            config: Configuration of the root agent. Delegates use the
                tree's configuration once initialised.
            events: Sink for the whole tree.

        Raises:
            DefinitionValidationError: A tool name is not in ``registry``.
        """
        registry = registry if registry is not None else builtin_registry()
        self.check_tools(registry)
        return self._build(registry, config, events)

    def _build(
        self,
        registry: CapabilityRegistry,
        config: Optional[AgencyConfig],
        events: Optional[EventSink],
    ) -> Agent:
        capabilities = [registry.create(tool) for tool in self.tools]
        capabilities.extend(
            DelegateCapability(delegate._build(registry, None, None))
            for delegate in self.delegates
        )

        logger.debug("Building %s with %d capabilities", self.name, len(capabilities))

        return Agent(
            self.name,
            instructions=self.instructions,
            description=self.capabilities,
            capabilities=capabilities,
            role=self.role,
            config=config,
            events=events,
        )

    def __repr__(self) -> str:
        return f"AgentDefinition(name={self.name!r}, delegates={len(self.delegates)})"


def validate_definition(
    path: Union[str, Path],
    registry: Optional[CapabilityRegistry] = None,
) -> list[str]:
    """
    Validate a definition file and return any warnings.

    Raises:
        DefinitionNotFoundError: File not found
        DefinitionValidationError: If the definition is invalid
    """
    definition = AgentDefinition.from_yaml(path)
    definition.check_tools(registry if registry is not None else builtin_registry())

    warnings = []
    for agent in definition.walk():
        if not agent.instructions:
            warnings.append(f"Agent '{agent.name}' has no instructions")
        if agent is not definition and not agent.capabilities:
            warnings.append(
                f"Agent '{agent.name}' has no capabilities text; "
                "delegating agents won't know what it is good at"
            )
    return warnings
