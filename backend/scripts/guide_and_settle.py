#!/usr/bin/env python3
"""Connect equipment, guide, dither and stop.

Usage:
    python scripts/guide_and_settle.py [host] [profile]
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from phd2link.clients.exceptions import PHD2Error
from phd2link.clients.phd2_client import PHD2Client
from phd2link.core.logging import configure_logging

SETTLE_PIXELS = 2.0
SETTLE_TIME = 10.0
SETTLE_TIMEOUT = 100.0
DITHER_PIXELS = 3.0


def print_status(client: PHD2Client) -> None:
    status = client.get_status()
    stats = status.stats
    print(
        f"   {status.app_state} dist={status.avg_dist:.1f} rms={stats.rms_total:.1f} "
        f"({stats.rms_ra:.1f}, {stats.rms_dec:.1f}) peak = {stats.peak_ra:.1f}, {stats.peak_dec:.1f}"
    )


async def guide_and_settle(host: str, profile: str):
    """Run a short guiding session."""
    client = PHD2Client(host)

    try:
        print("1. Connecting to PHD2...")
        await client.connect()
        print(f"   ✓ Connected to {client.host}:{client.port}")

        profiles = await client.get_equipment_profiles()
        for name in profiles:
            print(f"   profile: {name}")

        print(f"\n2. Connecting equipment profile {profile}...")
        await client.connect_equipment(profile)

        print("\n3. Guiding...")
        await client.guide(SETTLE_PIXELS, SETTLE_TIME, SETTLE_TIMEOUT)
        await client.wait_for_settle()
        print("   ✓ Settled")

        for _ in range(20):
            print_status(client)
            await asyncio.sleep(1)

        print("\n4. Dithering...")
        await client.dither(DITHER_PIXELS, SETTLE_PIXELS, SETTLE_TIME, SETTLE_TIMEOUT)
        await client.wait_for_settle()
        print("   ✓ Settled")

        print("\n5. Stopping...")
        await client.stop_capture()

    except PHD2Error as e:
        print(f"Error: {e}")
    finally:
        await client.disconnect()


if __name__ == "__main__":
    configure_logging()
    host = sys.argv[1] if len(sys.argv) > 1 else "localhost"
    profile = sys.argv[2] if len(sys.argv) > 2 else "Simulator"
    asyncio.run(guide_and_settle(host, profile))
