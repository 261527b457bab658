"""Command definitions for the line protocol.

A command is one input line::

    <id> <name> [args...]

The id is an opaque correlation token chosen by the caller; every reply
carries it back. Lines without an id or a name are dropped silently.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..errors import CommandError


class CommandName(str, Enum):
    """All recognized command names."""

    # No connection required
    VERSION = "version"
    PARSE = "parse"

    # Connection state
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    STATUS = "status"

    # Single-shot device requests
    INFO = "info"
    MONITOR = "monitor"
    STATISTICS = "statistics"
    FG_STATISTICS = "fgstatistics"
    LOG_FILES = "logfiles"
    READ_LOG = "readlog"

    # Streaming
    STREAM = "stream"

    # Process
    QUIT = "quit"
    EXIT = "exit"


# Commands that never issue a correlated device request. The stdio server
# serves these while a stream is running.
CONTROL_COMMANDS = frozenset(
    {CommandName.DISCONNECT, CommandName.STATUS, CommandName.QUIT, CommandName.EXIT}
)


class Command(BaseModel):
    """A parsed command line.

    Attributes:
        id: Correlation token, echoed in the reply
        name: Command name (may be unknown; the dispatcher reports that)
        args: Whitespace-separated arguments after the name
        text: Raw remainder of the line after the name, stripped
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: list[str] = Field(default_factory=list)
    text: str = ""

    @classmethod
    def parse(cls, line: str) -> Command | None:
        """Parse one input line. Returns None for lines missing an id or name."""
        parts = line.strip().split(None, 2)
        if len(parts) < 2:
            return None
        text = parts[2].strip() if len(parts) > 2 else ""
        return cls(id=parts[0], name=parts[1], args=text.split(), text=text)

    def is_control(self) -> bool:
        return self.name in {c.value for c in CONTROL_COMMANDS}

    def int_arg(self, index: int, label: str, default: int | None = None) -> int:
        """Get a non-negative integer argument.

        Raises:
            CommandError: If the argument is missing (and has no default) or invalid
        """
        if index >= len(self.args):
            if default is None:
                raise CommandError(f"Missing argument: {label}")
            return default
        text = self.args[index]
        try:
            # Decimal first so zero padding ("0100") stays decimal
            value = int(text, 0) if text[:2].lower() in ("0x", "0o", "0b") else int(text, 10)
        except ValueError:
            raise CommandError(f"Invalid argument {label}: {self.args[index]}") from None
        if value < 0:
            raise CommandError(f"Invalid argument {label}: {self.args[index]}")
        return value
