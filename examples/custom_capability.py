#!/usr/bin/env python3
"""
OpenAgency Custom Capability Example

Shows how to turn plain functions into capabilities with
``define_capability`` and how to rehearse a conversation offline with the
ScriptedProvider, without an API key.

Usage:
    python custom_capability.py
"""

import asyncio
import json

from openagency import Agency, AgencyConfig, Parameter, define_capability
from openagency.providers import ScriptedProvider, ScriptedRun, ScriptedStep

EXCHANGE_RATES = {("EUR", "USD"): 1.08, ("USD", "EUR"): 0.93}


@define_capability(
    description="Converts an amount between two currencies.",
    parameters={
        "amount": Parameter("amount", type="number", required=True),
        "source": Parameter("source", description="ISO currency code", required=True),
        "target": Parameter("target", description="ISO currency code", required=True),
    },
)
def convert(amount, source, target):
    rate = EXCHANGE_RATES.get((source.upper(), target.upper()))
    if rate is None:
        return {"error": f"No rate for {source} to {target}"}
    return {"amount": round(amount * rate, 2), "currency": target.upper()}


async def main():
    provider = ScriptedProvider()
    provider.queue(
        ScriptedRun(
            steps=[
                "queued",
                ScriptedStep.calling("convert", {"amount": 100, "source": "EUR", "target": "USD"}),
                "completed",
            ],
            reply=lambda outputs: "That is {amount} {currency}.".format(**json.loads(outputs[0])),
        )
    )

    agency = Agency(
        "Exchange Desk",
        instructions="Convert currencies for the user.",
        capabilities=[convert],
        provider=provider,
        config=AgencyConfig(queued_poll_interval=0.1, memory_dir="agencies"),
    )

    await agency.init("Exchange Desk")
    try:
        print(await agency.send_message("How much is 100 EUR in USD?"))
    finally:
        await agency.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
