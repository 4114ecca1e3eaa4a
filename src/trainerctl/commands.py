"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion, PathCompleter
from prompt_toolkit.document import Document


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="scan",
        aliases=["sc"],
        description="List nearby trainers",
        usage="scan",
        handler="cmd_scan",
    ),
    Command(
        name="connect",
        aliases=["c"],
        description="Connect to trainer (nearest, cached or by address)",
        usage="connect [address]",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from device",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="power",
        aliases=["pw"],
        description="Set target power in watts",
        usage="power <watts>",
        handler="cmd_power",
    ),
    Command(
        name="resistance",
        aliases=["rs"],
        description="Set resistance in percent",
        usage="resistance <0-100>",
        handler="cmd_resistance",
    ),
    Command(
        name="workout",
        aliases=["w"],
        description="Start an interval workout from a JSON schedule",
        usage="workout <file.json>",
        handler="cmd_workout",
    ),
    Command(
        name="gpx",
        aliases=["g"],
        description="Start a route workout from a GPX track",
        usage="gpx <file.gpx>",
        handler="cmd_gpx",
    ),
    Command(
        name="pause",
        aliases=["p"],
        description="Pause the running workout",
        usage="pause",
        handler="cmd_pause",
    ),
    Command(
        name="resume",
        aliases=["r"],
        description="Resume the paused workout",
        usage="resume",
        handler="cmd_resume",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop the workout and show a summary",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show current session values",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="info",
        aliases=["i"],
        description="Show device and debug information",
        usage="info",
        handler="cmd_info",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]

# Suggested argument values for numeric commands
VALUE_SUGGESTIONS = {
    "power": [str(w) for w in range(50, 401, 25)],
    "resistance": [str(pct) for pct in range(0, 101, 10)],
}

FILE_SUFFIXES = {"workout": ".json", "gpx": ".gpx"}


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self) -> None:
        """Initialize completer."""
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

        self._path_completers = {
            name: PathCompleter(
                file_filter=lambda path, suffix=suffix: Path(path).is_dir()
                or path.endswith(suffix),
                expanduser=True,
            )
            for name, suffix in FILE_SUFFIXES.items()
        }

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # First part: complete command name
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name[len(partial_cmd) :],
                        start_position=0,
                        display=name,
                    )
            return

        cmd = get_command(parts[0].lower())
        if cmd is None:
            return

        partial = "" if text.endswith(" ") else parts[-1]

        if cmd.name in VALUE_SUGGESTIONS:
            for value in VALUE_SUGGESTIONS[cmd.name]:
                if value.startswith(partial):
                    yield Completion(
                        value[len(partial) :],
                        start_position=0,
                        display=value,
                    )
        elif cmd.name in self._path_completers:
            yield from self._path_completers[cmd.name].get_completions(
                Document(partial, len(partial)), complete_event
            )
