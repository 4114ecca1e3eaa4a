"""
Main REPL application for smart trainer control.

Interactive command loop with async support, auto-completion,
live session display and workouts.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory
from pyftms import ResultCode

from .commands import COMMANDS, CommandCompleter, get_command
from .config import TrainerConfig, load_config
from .controller import TrainerController
from .display import DisplayManager
from .errors import ScheduleInvalid
from .history import WorkoutSummary
from .schedule import load_schedule
from .targets import GRADIENT_CURVES, IntervalWorkout
from .track import read_gpx

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
    )
    # bleak is very chatty at DEBUG
    logging.getLogger("bleak").setLevel(logging.INFO if debug else logging.WARNING)


class TrainerCtlREPL:
    """Interactive REPL for smart trainer control."""

    def __init__(self, config: Optional[TrainerConfig] = None) -> None:
        """Initialize REPL with controller and display manager."""
        self.controller = TrainerController(config)
        self.display = DisplayManager()
        self.running = False

        # Set up callbacks
        self.controller.set_on_disconnect(self._on_device_disconnect)
        self.controller.set_on_workout_complete(self._on_workout_complete)

        # Create prompt session with auto-completion
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background update task
        self._update_task: Optional[asyncio.Task] = None

    async def run(self, connect: bool = True) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        if connect:
            self.display.console.print("Attempting to connect to trainer...")
            if await self.controller.connect():
                self.display.console.print("✓ Connected successfully\n")
            else:
                self.display.console.print(
                    "⚠ Could not connect to device. Use 'connect' command to retry.\n"
                )

        # Start update processing loop
        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    text = await self.session.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())
                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue
        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection and workout state."""
        if not self.controller.is_connected:
            return FormattedText([("class:prompt", "[disconnected] > ")])
        suffix = ""
        state = self.controller.hub.state
        if state.workout_active:
            suffix = " paused" if state.paused else " riding"
        return FormattedText(
            [("class:prompt", f"[{self.controller.device_name}{suffix}] > ")]
        )

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task to process session updates."""
        try:
            async for state in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(state)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Update loop error: {e}")

    def _on_device_disconnect(self) -> None:
        """Callback when device disconnects."""
        if self.display.live_enabled:
            self.display.stop_live()
        self.display.print_info("Device disconnected")

    def _on_workout_complete(self, summary: WorkoutSummary) -> None:
        if self.display.live_enabled:
            self.display.stop_live()
        self.display.print_info("Workout complete!")
        self.display.print_summary(summary)

    def _require_connection(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        return True

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """List nearby trainers."""
        self.display.print_info("Scanning...")
        devices = await self.controller.scan()
        if not devices:
            self.display.print_error("No trainers found. Make sure it's powered on and in range.")
            return
        self.display.print_devices(devices)

    async def cmd_connect(self, args: list) -> None:
        """Connect to trainer."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return

        address = args[0] if args else None
        self.display.print_info(f"Connecting to {address or 'trainer'}...")
        if not await self.controller.connect(address):
            self.display.print_error("Connection failed. Please try again.")
            return

        self.display.print_info(f"Connected to {self.controller.device_name}")
        if not self.controller.has_control_point:
            self.display.print_info("Trainer has no control point: telemetry only")
        await self.cmd_status([])

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from device."""
        if not self.controller.is_connected:
            self.display.print_info("Not connected")
            return

        if self.display.live_enabled:
            self.display.stop_live()

        await self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def _parse_int(self, args: list, usage: str) -> Optional[int]:
        if not args:
            self.display.print_error(f"Usage: {usage}")
            return None
        try:
            return int(args[0])
        except ValueError:
            self.display.print_error(f"Invalid value: {args[0]}")
            return None

    async def cmd_power(self, args: list) -> None:
        """Set target power in watts."""
        if not self._require_connection():
            return
        watts = await self._parse_int(args, "power <watts>")
        if watts is None:
            return

        result = await self.controller.set_target_power(watts)
        if result == ResultCode.INVALID_PARAMETER:
            self.display.print_error(
                f"Power out of range. Must be {self.controller.POWER_MIN}-{self.controller.POWER_MAX} W"
            )
        else:
            self.display.print_result("power", result)

    async def cmd_resistance(self, args: list) -> None:
        """Set resistance in percent."""
        if not self._require_connection():
            return
        pct = await self._parse_int(args, "resistance <0-100>")
        if pct is None:
            return

        result = await self.controller.set_resistance(pct)
        if result == ResultCode.INVALID_PARAMETER:
            self.display.print_error(
                f"Resistance out of range. Must be {self.controller.RESISTANCE_MIN}-{self.controller.RESISTANCE_MAX} %"
            )
        else:
            self.display.print_result("resistance", result)

    async def cmd_workout(self, args: list) -> None:
        """Start an interval workout."""
        if not self._require_connection():
            return
        if not args:
            self.display.print_error("Usage: workout <file.json>")
            return

        try:
            schedule = load_schedule(Path(args[0]).expanduser())
        except (ScheduleInvalid, OSError) as e:
            self.display.print_error(f"Cannot use schedule: {e}")
            return

        result = await self.controller.start_workout(IntervalWorkout(schedule))
        self.display.print_result("workout", result)
        self.display.print_info(
            f"{len(schedule.intervals)} intervals, "
            f"{self.display.format_time(schedule.total_duration_s)} total"
        )

    async def cmd_gpx(self, args: list) -> None:
        """Start a route workout from a GPX track."""
        if not self._require_connection():
            return
        if not args:
            self.display.print_error("Usage: gpx <file.gpx>")
            return

        try:
            track = read_gpx(Path(args[0]).expanduser())
        except (ScheduleInvalid, OSError) as e:
            self.display.print_error(f"Cannot use track: {e}")
            return

        if not track.has_elevation:
            self.display.print_info("Track has no elevation data: resistance stays flat")

        result = await self.controller.start_workout(self.controller.track_workout(track))
        self.display.print_result("gpx", result)
        self.display.print_info(
            f"{track.name}: {self.display.format_distance(track.total_distance)}"
        )

    async def cmd_pause(self, args: list) -> None:
        """Pause the running workout."""
        if not self.controller.workout_active:
            self.display.print_error("No workout running")
            return
        self.controller.pause_workout()
        self.display.print_info("Workout paused")

    async def cmd_resume(self, args: list) -> None:
        """Resume the paused workout."""
        if not self.controller.workout_active:
            self.display.print_error("No workout running")
            return
        self.controller.resume_workout()
        self.display.print_info("Workout resumed")

    async def cmd_stop(self, args: list) -> None:
        """Stop the workout and show a summary."""
        if not self.controller.workout_active:
            self.display.print_info("No workout running")
            return
        if self.display.live_enabled:
            self.display.stop_live()
        summary = await self.controller.stop_workout()
        if summary is not None:
            self.display.print_summary(summary)

    async def cmd_status(self, args: list) -> None:
        """Show current session values."""
        self.display.print_status(self.controller.get_status())

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        enabled = self.display.toggle_live()
        if enabled:
            self.display.update_live(self.controller.get_status())
        else:
            self.display.print_info("Live display disabled")

    async def cmd_info(self, args: list) -> None:
        """Show device and debug information."""
        config = self.controller.config

        self.display.console.print("[bold cyan]Configuration[/bold cyan]")
        for key, value in config.to_dict().items():
            self.display.console.print(f"  {key}: {value}")

        self.display.console.print()
        self.display.console.print("[bold cyan]Debug Information[/bold cyan]")
        self.display.console.print(f"  Connection: {self.controller.connection_state.value}")
        self.display.console.print(f"  Control point: {self.controller.has_control_point}")
        self.display.console.print(f"  Sequencer: {self.controller.sequencer.state.value}")
        self.display.console.print(f"  Workout active: {self.controller.workout_active}")
        self.display.console.print(f"  Live enabled: {self.display.live_enabled}")
        if self.controller.is_connected:
            self.display.console.print(f"  Device name: {self.controller.device_name}")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.workout_active:
            summary = await self.controller.stop_workout()
            if summary is not None:
                self.display.print_summary(summary)

        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_cli_command(command: str, value: Optional[str], config: TrainerConfig) -> None:
    """Run a single CLI command and exit."""
    controller = TrainerController(config)
    display = DisplayManager()

    # Commands that don't need a connection
    if command == "clear-cache":
        controller.clear_address_cache()
        display.print_info("Cleared cached device address")
        return

    if command == "scan":
        devices = await controller.scan()
        if devices:
            display.print_devices(devices)
        else:
            display.print_error("No trainers found")
        return

    try:
        display.print_info("Connecting to device...")
        if not await controller.connect():
            display.print_error("Failed to connect to device")
            sys.exit(1)

        if command == "status":
            # Wait a moment for notifications to arrive after connecting
            await asyncio.sleep(2)
            display.print_status(controller.get_status())

        elif command == "power":
            result = await controller.set_target_power(int(value or 0))
            display.print_result("power", result)

        elif command == "resistance":
            result = await controller.set_resistance(int(value or 0))
            display.print_result("resistance", result)

        elif command in ("workout", "gpx"):
            if command == "workout":
                workout = IntervalWorkout(load_schedule(Path(value or "")))
            else:
                workout = controller.track_workout(read_gpx(Path(value or "")))

            done: asyncio.Future = asyncio.get_running_loop().create_future()
            controller.set_on_workout_complete(
                lambda summary: done.done() or done.set_result(summary)
            )
            controller.set_on_disconnect(
                lambda: done.done() or done.set_result(None)
            )
            result = await controller.start_workout(workout)
            display.print_result(command, result)
            display.start_live()
            updates = asyncio.create_task(_follow_updates(controller, display))
            try:
                summary = await done
            finally:
                updates.cancel()
                display.stop_live()
            if summary is not None:
                display.print_summary(summary)

        else:
            display.print_error(f"Unknown command: {command}")
            sys.exit(1)

    finally:
        # Ensure we disconnect if still connected
        if controller.workout_active:
            summary = await controller.stop_workout()
            if summary is not None:
                display.print_summary(summary)
        if controller.is_connected:
            await controller.disconnect()


async def _follow_updates(controller: TrainerController, display: DisplayManager) -> None:
    async for state in controller.get_updates():
        display.update_live(state)


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Smart Trainer Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  trainerctl                          # Start interactive REPL
  trainerctl --scan                   # List nearby trainers
  trainerctl --status                 # Show session values (auto-connects)
  trainerctl --power 180              # Hold 180 W
  trainerctl --resistance 40          # Set 40 % resistance
  trainerctl --workout intervals.json # Ride an interval schedule
  trainerctl --gpx route.gpx          # Ride a route's elevation profile
  trainerctl --clear-cache            # Clear cached device address
        """,
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--scan", action="store_true", help="List nearby trainers")
    commands.add_argument("--status", action="store_true", help="Show session values")
    commands.add_argument("--power", type=int, metavar="WATTS", help="Set target power")
    commands.add_argument("--resistance", type=int, metavar="PCT", help="Set resistance percentage")
    commands.add_argument("--workout", metavar="FILE", help="Ride a JSON interval schedule")
    commands.add_argument("--gpx", metavar="FILE", help="Ride a GPX track")
    commands.add_argument(
        "--clear-cache", action="store_true", help="Clear cached device address"
    )

    parser.add_argument("--config", type=Path, help="Config file (JSON)")
    parser.add_argument(
        "--wheel-circumference",
        type=float,
        metavar="METERS",
        help="Wheel circumference used for speed",
    )
    parser.add_argument(
        "--curve",
        choices=sorted(GRADIENT_CURVES),
        help="Gradient to resistance curve for GPX workouts",
    )
    parser.add_argument(
        "--estimate-speed",
        action="store_true",
        default=None,
        help="Estimate speed from power when the trainer reports none",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    configure_logging(args.debug)

    try:
        config = load_config(args.config).with_overrides(
            wheel_circumference_m=args.wheel_circumference,
            gradient_curve=args.curve,
            estimate_speed_from_power=args.estimate_speed,
        )
    except (OSError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    command: Optional[str] = None
    value: Optional[str] = None
    if args.scan:
        command = "scan"
    elif args.status:
        command = "status"
    elif args.power is not None:
        command, value = "power", str(args.power)
    elif args.resistance is not None:
        command, value = "resistance", str(args.resistance)
    elif args.workout:
        command, value = "workout", args.workout
    elif args.gpx:
        command, value = "gpx", args.gpx
    elif args.clear_cache:
        command = "clear-cache"

    # If no CLI commands, start REPL
    if command is None:
        try:
            repl = TrainerCtlREPL(config)
            asyncio.run(repl.run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        try:
            asyncio.run(run_cli_command(command, value, config))
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(1)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
