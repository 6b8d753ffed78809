# src/fool_shell/core/handlers/core/pwd_handler.py
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.streams import Streams


def handle_pwd(_args: List[str], ctx: ShellContext, streams: Streams) -> int:
    streams.out(ctx.cwd)
    return 0
