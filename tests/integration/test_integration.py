#!/usr/bin/env python
"""Ride a short interval workout on a real trainer with the live display."""

import asyncio
import logging

import pytest

from trainerctl.config import TrainerConfig
from trainerctl.controller import TrainerController
from trainerctl.display import DisplayManager
from trainerctl.schedule import IntervalSchedule
from trainerctl.targets import IntervalWorkout

# Enable logging
logging.basicConfig(level=logging.INFO, format="%(message)s")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_live_workout():
    """Test live display updates during a workout with a real device."""
    controller = TrainerController(TrainerConfig())
    display = DisplayManager()

    print("=== Testing Live Workout ===")

    # Connect to device
    print("Connecting...")
    if not await controller.discover():
        pytest.skip("No smart trainer found - skipping integration test")
        return

    if not await controller.connect():
        print("Connection failed")
        return

    print("Connected!")
    print(f"Initial status: {controller.get_status()}")

    print("Starting live display...")
    display.start_live()

    async def update_loop():
        try:
            async for snapshot in controller.get_updates():
                if display.live_enabled:
                    display.update_live(snapshot)
        except Exception as e:
            print(f"Update loop error: {e}")

    update_task = asyncio.create_task(update_loop())

    schedule = IntervalSchedule.from_tuples("resistance", [(4, 10), (4, 30)], 8)
    print("Starting workout...")
    result = await controller.start_workout(IntervalWorkout(schedule))
    print(f"Start result: {result}")

    # Let the workout run to its end
    await asyncio.sleep(10)

    update_task.cancel()
    try:
        await update_task
    except asyncio.CancelledError:
        pass

    print(f"Queue size: {controller._update_queue.qsize()}")
    print(f"Live data: {display._live_data}")
    display.stop_live()

    # Integration tests must leave the trainer unloaded
    summary = await controller.stop_workout()
    print(f"Summary: {summary}")
    if controller.is_connected:
        print(f"Release result: {await controller.set_resistance(0)}")

    await controller.disconnect()
    print("Disconnected")


if __name__ == "__main__":
    asyncio.run(test_live_workout())
