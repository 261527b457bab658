"""Line protocol layer.

Commands come in as whitespace-separated text lines; messages go out as
one JSON object per line. The handler is transport-agnostic: the stdio
server and the tests drive it the same way.
"""

from .commands import CONTROL_COMMANDS, Command, CommandName
from .handler import CommandHandler
from .messages import (
    ErrorMessage,
    EventMessage,
    EventName,
    FatalMessage,
    Message,
    ResultMessage,
    decode_message,
)

__all__ = [
    "CONTROL_COMMANDS",
    "Command",
    "CommandHandler",
    "CommandName",
    "ErrorMessage",
    "EventMessage",
    "EventName",
    "FatalMessage",
    "Message",
    "ResultMessage",
    "decode_message",
]
