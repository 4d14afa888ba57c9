"""
OpenAgency CLI - Command-line interface for running agent definitions.

Commands:
    openagency run agency.yaml          Chat with an agent tree
    openagency run agency.yaml --dry-run    Same, without contacting a model
    openagency validate agency.yaml     Validate a definition
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Callable, Optional

from . import __version__
from .agents import Agent
from .config import LOG_LEVELS, AgencyConfig
from .definitions import AgentDefinition, validate_definition
from .events import Event, EventBus, EventType
from .exceptions import (
    ConfigurationError,
    DefinitionError,
    DefinitionNotFoundError,
    DefinitionValidationError,
    OpenAgencyError,
)
from .providers import OpenAIProvider, ScriptedProvider

QUIT_COMMAND = "quit"
DRY_RUN_REPLY = "(dry run) No model was contacted, this is a scripted reply."

_EVENT_FIELDS = {
    EventType.MESSAGE.value: ("assistantId", "threadId", "message"),
    EventType.RESPONSE.value: ("assistantId", "threadId", "fullResponse"),
    EventType.PROBLEM.value: ("message",),
    EventType.MEMORY_UPDATED.value: ("memory",),
    EventType.ASSISTANT_CREATED.value: ("id", "model"),
    EventType.RESULT.value: ("result",),
}


def format_event(event: Event) -> str:
    """Render an event as one tab-separated console line."""
    parts = [str(event.source_type), str(event.name)]

    if event.type == EventType.EXECUTE.value:
        args = event.data.get("args") or {}
        parts.extend(f"{key}={value}" for key, value in args.items())
    else:
        for key in _EVENT_FIELDS.get(event.type, ()):
            value = event.data.get(key)
            if isinstance(value, (dict, list)):
                value = json.dumps(value, default=str)
            parts.append(str(value))

    return f"\t{event.type}\t{', '.join(parts)}"


def build_config(args: argparse.Namespace) -> AgencyConfig:
    """Environment settings overridden by command-line options."""
    config = AgencyConfig.from_env()
    if getattr(args, "model", None):
        config.model = args.model
    if getattr(args, "memory_dir", None):
        config.memory_dir = args.memory_dir
    if getattr(args, "log_level", None):
        config.log_level = args.log_level

    if getattr(args, "dry_run", False):
        config.provider_factory = lambda: ScriptedProvider(default_reply=DRY_RUN_REPLY)
    else:
        config.provider_factory = lambda: OpenAIProvider(config)
    return config


async def chat(
    agent: Agent,
    tree_name: str,
    read: Optional[Callable[[str], str]] = None,
    write: Callable[[str], None] = print,
) -> int:
    """Initialise ``agent`` and relay messages until the user quits.

    Returns the number of messages answered. The agent is always cleaned up.
    """
    read = read or input
    answered = 0
    try:
        await agent.init(tree_name)
        write(f"{agent.name} is ready. Type '{QUIT_COMMAND}' to exit.")

        while True:
            try:
                message = await asyncio.to_thread(read, "> ")
            except EOFError:
                break

            message = message.strip()
            if message.lower() == QUIT_COMMAND:
                break
            if not message:
                continue

            write(await agent.send_message(message))
            answered += 1
    finally:
        await agent.cleanup()
    return answered


def cmd_run(args: argparse.Namespace) -> None:
    """Run an agent definition interactively."""
    try:
        definition = AgentDefinition.from_yaml(args.definition)
        config = build_config(args)
    except DefinitionNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except DefinitionValidationError as e:
        print(f"Validation Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (DefinitionError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.dry_run and not config.api_key:
        print("Error: OPENAI_API_KEY is not set (use --dry-run to try without a model)",
              file=sys.stderr)
        sys.exit(1)

    events = EventBus()
    if not args.quiet:
        events.subscribe(lambda event: print(format_event(event)))

    try:
        agent = definition.build(config=config, events=events)
        asyncio.run(chat(agent, definition.name))
    except KeyboardInterrupt:
        print("\nCancelled")
        sys.exit(0)
    except OpenAgencyError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate an agent definition YAML file."""
    try:
        warnings = validate_definition(args.definition)
        definition = AgentDefinition.from_yaml(args.definition)

        print(f"Definition '{definition.name}' is valid!")
        print(f"  Role: {definition.role.value}")
        print(f"  Agents: {len(definition.walk())}")

        if warnings:
            print(f"\nWarnings ({len(warnings)}):")
            for warning in warnings:
                print(f"  - {warning}")

    except DefinitionValidationError as e:
        print(f"Validation Error: {e}", file=sys.stderr)
        sys.exit(1)
    except DefinitionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="openagency",
        description="OpenAgency CLI - Run and validate agent definitions",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Chat with an agent definition")
    run_parser.add_argument("definition", help="Path to agent definition YAML file")
    run_parser.add_argument(
        "--model",
        "-m",
        help="Model for the remote assistants (default: OPENAGENCY_MODEL or gpt-4o)",
    )
    run_parser.add_argument(
        "--memory-dir",
        help="Directory holding memory files (default: OPENAGENCY_MEMORY_DIR or agencies)",
    )
    run_parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        help="Logging level (default: OPENAGENCY_LOG_LEVEL or info)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use scripted replies instead of a remote model",
    )
    run_parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Don't echo events to the console",
    )
    run_parser.set_defaults(func=cmd_run)

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate an agent definition")
    validate_parser.add_argument("definition", help="Path to agent definition YAML file")
    validate_parser.set_defaults(func=cmd_validate)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
