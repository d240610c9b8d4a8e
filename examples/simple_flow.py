"""Example: Run a recorded flow with flowpilot."""

import asyncio
from pathlib import Path

from flowpilot.core.config import Config
from flowpilot.core.types import IntentSpec
from flowpilot.session import Session


async def main() -> None:
    """Run the docs search example flow."""
    config = Config(
        headless=False,  # Show browser for demo
    )
    spec = IntentSpec.load(Path(__file__).parent / "search_flow.json")

    session = Session.with_browser(config)
    session.orchestrator.on(
        "step-completed",
        lambda event: print(f"{event['name']}: {'ok' if event['success'] else 'failed'} via {event['path_used']}"),
    )

    async with session:
        report = await session.run(spec, {"TERM": "asyncio"})

    print(f"Overall success: {report.overall_success}")
    for suggestion in report.suggestions:
        print(f"Suggestion: {suggestion}")


if __name__ == "__main__":
    asyncio.run(main())
