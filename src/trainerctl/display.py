"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, status display,
workout summaries and toggle-able live display updates.
"""

import logging
from typing import Any, Optional

from pyftms import ResultCode
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .history import WorkoutSummary
from .session import SessionState

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_data: dict[str, Any] = {}

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]TrainerCtl - Smart Trainer Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display one-time session status table.

        Args:
            data: Dictionary as returned by TrainerController.get_status()
        """
        self.console.print(self.format_status_table(data))

    def print_result(self, cmd: str, result: ResultCode) -> None:
        """Display command result.

        Args:
            cmd: Command name
            result: ResultCode enum
        """
        if result == ResultCode.SUCCESS:
            self.console.print(f"[green]✓[/green] {cmd} succeeded", highlight=False)
        elif result == ResultCode.NOT_SUPPORTED:
            self.console.print(
                f"[yellow]⚠[/yellow] {cmd} not supported by device",
                highlight=False,
            )
        elif result == ResultCode.INVALID_PARAMETER:
            self.console.print(f"[red]✗[/red] {cmd} invalid parameter", highlight=False)
        elif result == ResultCode.FAILED:
            self.console.print(f"[red]✗[/red] {cmd} failed", highlight=False)
        elif result == ResultCode.NOT_PERMITTED:
            self.console.print(f"[red]✗[/red] {cmd} not permitted", highlight=False)
        else:
            self.console.print(
                f"[yellow]?[/yellow] {cmd} result: {result.name}", highlight=False
            )

    def print_error(self, message: str) -> None:
        """Print red error message."""
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message."""
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def print_devices(self, devices: list) -> None:
        """Display scan results.

        Args:
            devices: List of ScannedDevice
        """
        table = Table(title="Trainers", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="cyan")
        table.add_column("Address", style="yellow")
        table.add_column("RSSI", justify="right")
        for device in devices:
            table.add_row(device.name, device.address, f"{device.rssi} dBm")
        self.console.print(table)

    def print_summary(self, summary: WorkoutSummary) -> None:
        """Display the end-of-workout summary."""
        table = Table(
            title=f"Workout Summary: {summary.name}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")
        table.add_row("Duration", self.format_time(summary.duration_s))
        table.add_row("Distance", self.format_distance(summary.total_distance_m))
        table.add_row("Avg Power", f"{summary.average_power:.0f} W")
        table.add_row("Max Power", f"{summary.max_power} W")
        table.add_row("Avg Speed", self.format_speed(summary.average_speed))
        table.add_row("Max Speed", self.format_speed(summary.max_speed))
        table.add_row("Avg Cadence", f"{summary.average_cadence:.0f} rpm")
        table.add_row("Avg Heart Rate", self.format_heart_rate(summary.average_heart_rate))
        self.console.print(table)

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_data = {
            "status": "Connecting...",
            "power": 0,
            "cadence": 0,
            "speed": 0.0,
            "heart_rate": 0,
            "distance": 0.0,
            "time": 0,
            "target": "-",
        }
        self._live = Live(
            self.format_status_table(self._live_data),
            console=self.console,
            refresh_per_second=2,
        )
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, data: Any) -> None:
        """Update live display with new session data.

        Args:
            data: SessionState snapshot or status dict
        """
        if not self.live_enabled or self._live is None:
            return

        if isinstance(data, SessionState):
            data = self.state_to_status(data)
        self._live_data.update(data)

        try:
            self._live.update(self.format_status_table(self._live_data))
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    @staticmethod
    def state_to_status(state: SessionState) -> dict:
        """Convert a session snapshot to the status dict layout."""
        if state.workout_complete:
            status = "COMPLETE"
        elif state.paused:
            status = "PAUSED"
        elif state.workout_active:
            status = "RIDING"
        else:
            status = "CONNECTED"
        return {
            "status": status,
            "power": state.power,
            "cadence": state.cadence,
            "speed": state.speed,
            "heart_rate": state.heart_rate,
            "distance": state.distance_m,
            "time": state.elapsed_s,
            "target": str(state.target) if state.target else "-",
            "gradient": state.gradient,
        }

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for session display.

        Args:
            data: Dictionary with status, power, cadence, speed, heart_rate,
                distance, time, target and optionally gradient

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Status", str(data.get("status", "UNKNOWN")))
        table.add_row("Power", f"{data.get('power', 0)} W")
        table.add_row("Cadence", f"{data.get('cadence', 0)} rpm")
        table.add_row("Speed", self.format_speed(data.get("speed", 0.0)))
        table.add_row("Heart Rate", self.format_heart_rate(data.get("heart_rate", 0)))
        table.add_row("Distance", self.format_distance(data.get("distance", 0.0)))
        table.add_row("Time", self.format_time(data.get("time", 0)))
        table.add_row("Target", str(data.get("target", "-")))
        if data.get("gradient") is not None:
            table.add_row("Gradient", f"{data['gradient']:.1f} %")

        return table

    @staticmethod
    def format_time(seconds: float) -> str:
        """Convert seconds to [H:]MM:SS format."""
        seconds = int(seconds)
        hours, rest = divmod(seconds, 3600)
        mins, secs = divmod(rest, 60)
        if hours:
            return f"{hours}:{mins:02d}:{secs:02d}"
        return f"{mins}:{secs:02d}"

    @staticmethod
    def format_speed(km_h: float) -> str:
        return f"{km_h:.1f} km/h"

    @staticmethod
    def format_distance(meters: float) -> str:
        """Format distance value intelligently.

        Returns:
            Formatted distance (km if >1000m, otherwise m)
        """
        if meters >= 1000:
            return f"{meters / 1000:.2f} km"
        return f"{meters:.0f} m"

    @staticmethod
    def format_heart_rate(bpm: float) -> str:
        return f"{bpm:.0f} bpm" if bpm else "-"
