# src/fool_shell/core/core.py
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

from fool_shell.core.command_registry import CommandRegistry
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.parser import Parser, parse_command_line
from fool_shell.core.xngine import INTERRUPTED_EXIT_CODE, ExecuteEngine
from fool_shell.model import AIQuery, Commands, Empty, ParseError, ParseResult

logger = logging.getLogger(__name__)

PARSE_ERROR_EXIT_CODE = 2

# Registration is handled in app.py (or by test fixtures) to avoid circular
# imports between this module and the handlers that call back into it.
XNGINE = ExecuteEngine(
    command_registry=CommandRegistry,
    logger=logger,
)


def dispatch(result: ParseResult, ctx: ShellContext) -> int:
    """Runs one parse result and returns the exit code of the cycle."""
    if isinstance(result, Commands):
        return XNGINE.execute_pipeline(result.pipeline, ctx)
    if isinstance(result, AIQuery):
        return _ask_ai(result.text, ctx)
    if isinstance(result, ParseError):
        print(f"fool: syntax error: {result.message} (column {result.position + 1})", file=sys.stderr)
        return PARSE_ERROR_EXIT_CODE
    if isinstance(result, Empty):
        return 0
    raise TypeError(f"Unknown parse result: {result!r}")


def run_line(line: str, ctx: ShellContext) -> int:
    """
    One execution cycle: parse, dispatch, and record the outcome.

    Every non-empty line is recorded exactly once, whether it succeeded,
    failed to parse, failed to dispatch, or was interrupted.
    """
    result = Parser(ctx.ai_trigger).parse(line)
    if isinstance(result, Empty):
        return 0

    started = datetime.now(timezone.utc)
    cwd = ctx.cwd
    try:
        exit_code = dispatch(result, ctx)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        exit_code = INTERRUPTED_EXIT_CODE

    if ctx.history is not None:
        ctx.history.record(exit_code, line.strip(), started, cwd)
    logger.debug("Line %r finished with exit code %d", line, exit_code)
    return exit_code


def _ask_ai(query: str, ctx: ShellContext) -> int:
    if ctx.ai_service is None:
        print("fool: ai: assistant is not available", file=sys.stderr)
        return 1
    return ctx.ai_service.ask(query, ctx.history)


__all__ = ["XNGINE", "dispatch", "parse_command_line", "run_line"]
