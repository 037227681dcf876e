#!/usr/bin/env python3
"""Print PHD2 state and follow events for a few seconds."""

import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from phd2link.clients.events import GuiderEvent
from phd2link.clients.phd2_client import PHD2Client
from phd2link.core.logging import configure_logging


def print_event(event: GuiderEvent) -> None:
    print(f"   event: {event}")


async def check_state(seconds: float):
    """Dump current equipment and status, then watch events."""
    client = PHD2Client()
    client.subscribe_events(print_event)

    try:
        print("Connecting to PHD2...")
        await client.connect()
        print("Connected.\n")

        print("=== PROFILE ===")
        print(json.dumps(await client.get_profile(), indent=2))

        print("\n=== EQUIPMENT ===")
        print(json.dumps(await client.get_current_equipment(), indent=2))
        print(f"All connected: {await client.get_connected()}")

        print("\n=== EVENTS ===")
        await asyncio.sleep(seconds)

        print("\n=== STATUS ===")
        print(client.get_status().model_dump_json(indent=2))

    except Exception as e:
        print(f"Error: {e}")
        import traceback

        traceback.print_exc()
    finally:
        await client.disconnect()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(check_state(float(sys.argv[1]) if len(sys.argv) > 1 else 5.0))
