# src/fool_shell/core/handlers/core/help_handler.py
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.streams import Streams
from fool_shell.core.utils.helptext import get_help_text


def handle_help(_args, ctx: ShellContext, streams: Streams) -> int:
    streams.out(get_help_text(ctx.ai_trigger))
    return 0
