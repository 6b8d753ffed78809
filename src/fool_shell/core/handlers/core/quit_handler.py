# src/fool_shell/core/handlers/core/quit_handler.py
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.errors import DispatchError
from fool_shell.core.streams import Streams


def handle_exit(args: List[str], ctx: ShellContext, _streams: Streams) -> int:
    """
    Signals the shell to stop after this line.

    The optional argument becomes the shell's exit status (modulo 256).
    """
    if len(args) > 1:
        raise DispatchError("too many arguments", construct="exit", exit_code=1)
    code = 0
    if args:
        try:
            code = int(args[0]) & 0xFF
        except ValueError:
            raise DispatchError(f"{args[0]}: numeric argument required", construct="exit") from None
    ctx.exit_requested = code
    return code


def handle_quit(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    return handle_exit(args, ctx, streams)
