#!/usr/bin/env python3
"""
OpenAgency Current Time Agent Example

A single agent that can tell the time in any time zone. Every lifecycle
step is echoed to the console through an EventBus subscription.

Prerequisites:
    pip install openagency

Usage:
    export OPENAI_API_KEY=your-key
    python current_time_agent.py
"""

import asyncio
import logging

from openagency import AgencyConfig, Agent, CurrentTimeCapability, EventBus
from openagency.cli import format_event
from openagency.providers import OpenAIProvider

INSTRUCTIONS = """You are a helpful assistant that tells the current time.
Use the getTimeTool whenever someone asks for the time, passing an IANA time
zone name when they mention a place."""


async def main():
    logging.basicConfig(level=logging.WARNING)

    config = AgencyConfig.from_env()
    events = EventBus()
    events.subscribe(lambda event: print(format_event(event)))

    agent = Agent(
        "Current Time Agent",
        instructions=INSTRUCTIONS,
        description="Tells the current time anywhere in the world.",
        capabilities=[CurrentTimeCapability()],
        provider=OpenAIProvider(config),
        config=config,
        events=events,
    )

    await agent.init("Current Time Agent")
    try:
        for question in ("What time is it?", "And what time is it in Tokyo?"):
            print(f"\n> {question}")
            print(await agent.send_message(question))
    finally:
        await agent.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
