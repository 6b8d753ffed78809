# src/fool_shell/core/handlers/core/clear_handler.py
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.streams import Streams

# Erase display, cursor home.
CLEAR_SEQUENCE = "\033[2J\033[H"


def handle_clear(_args: List[str], _ctx: ShellContext, streams: Streams) -> int:
    """
    Clear the terminal screen (like `cls` on Windows or `clear` on Unix).
    """
    streams.stdout.write(CLEAR_SEQUENCE)
    streams.stdout.flush()
    return 0
