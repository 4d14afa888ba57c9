"""
OpenAgency - Orchestration of cooperating assistant agents.

Agents bind instructions and capabilities to a remote conversation, delegate
tasks to each other through a delegation tree, and share a persistent memory.
"""

from .agents import Agency, Agent, AgentRole, AgentTree, response_to_text
from .builtin import CurrentTimeCapability, WikipediaSearchCapability, builtin_registry
from .capabilities import (
    Capability,
    CapabilityRegistry,
    FunctionCapability,
    Parameter,
    define_capability,
)
from .config import AgencyConfig
from .definitions import AgentDefinition, validate_definition
from .delegation import DelegateCapability, compose_task
from .events import Event, EventBus, EventSink, EventType, Subscription
from .exceptions import (
    CapabilityError,
    ConfigurationError,
    DefinitionError,
    DefinitionNotFoundError,
    DefinitionValidationError,
    MissingParameterError,
    OpenAgencyError,
    ProviderError,
    ProviderNotConfiguredError,
    RunCancelledError,
    RunFailedError,
    RunTimeoutError,
    UnsupportedActionError,
    ValidationError,
)
from .memory import RememberCapability, SharedMemory
from .scheduling import CancellationToken, Scheduler
from .validation import InputValidationError, validate_message, validate_name

__version__ = "0.1.0"
__all__ = [
    "Agent",
    "Agency",
    "AgentRole",
    "AgentTree",
    "response_to_text",
    "Capability",
    "CapabilityRegistry",
    "FunctionCapability",
    "Parameter",
    "define_capability",
    "DelegateCapability",
    "compose_task",
    "RememberCapability",
    "SharedMemory",
    "CurrentTimeCapability",
    "WikipediaSearchCapability",
    "builtin_registry",
    "AgentDefinition",
    "validate_definition",
    "AgencyConfig",
    "Event",
    "EventBus",
    "EventSink",
    "EventType",
    "Subscription",
    "CancellationToken",
    "Scheduler",
    "OpenAgencyError",
    "ConfigurationError",
    "ValidationError",
    "InputValidationError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "RunFailedError",
    "RunCancelledError",
    "RunTimeoutError",
    "UnsupportedActionError",
    "CapabilityError",
    "MissingParameterError",
    "DefinitionError",
    "DefinitionNotFoundError",
    "DefinitionValidationError",
    "validate_message",
    "validate_name",
]
