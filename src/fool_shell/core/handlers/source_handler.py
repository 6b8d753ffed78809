# src/fool_shell/core/handlers/source_handler.py
import logging
from typing import List

# core.py is needed for dispatch
from fool_shell.core import core as shell_core
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.parser import Parser
from fool_shell.core.streams import Streams
from fool_shell.model import AIQuery

logger = logging.getLogger(__name__)

MAX_SOURCE_DEPTH = 16

source_help_text = """
SCRIPTS:
  source FILE         Run every line of FILE in the current session.
                      Blank lines, lines starting with # and AI queries
                      are skipped.
""".strip()


def handle_source(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    """
    Runs each line of a file through the parser and executor.

    Returns the exit code of the last executed line. Stops early when a line
    calls `exit`.
    """
    if not args:
        streams.err("fool: source: usage: source FILE")
        return 2

    path = ctx.resolve_path(args[0])
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        streams.err(f"fool: source: {args[0]}: {e.strerror or e}")
        return 1

    if ctx.source_depth >= MAX_SOURCE_DEPTH:
        streams.err(f"fool: source: {args[0]}: maximum nesting depth exceeded")
        return 1

    logger.debug("Sourcing %s", path)
    parser = Parser(ctx.ai_trigger)
    last_exit = 0
    ctx.source_depth += 1
    try:
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            result = parser.parse(line)
            if isinstance(result, AIQuery):
                logger.debug("Skipping AI query in %s: %r", path, line)
                continue
            last_exit = shell_core.dispatch(result, ctx)
            if ctx.exit_requested is not None:
                break
    finally:
        ctx.source_depth -= 1
    return last_exit
