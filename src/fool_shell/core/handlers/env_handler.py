# src/fool_shell/core/handlers/env_handler.py
import re
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.streams import Streams

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

env_help_text = """
ENVIRONMENT:
  export NAME=VALUE   Set a variable for this session and every command it starts.
  export              List the environment.
  unset NAME...       Remove variables from the environment.
""".strip()


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def handle_export(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    """
    Handles `export NAME=VALUE...`. Without arguments the environment is listed.

    Invalid names are reported and skipped; the exit code is 1 if any was invalid.
    """
    if not args:
        for key in sorted(ctx.env):
            streams.out(f"export {key}={_quote(ctx.env[key])}")
        return 0

    exit_code = 0
    for arg in args:
        name, sep, value = arg.partition("=")
        if not _NAME_PATTERN.match(name):
            streams.err(f"fool: export: `{arg}': not a valid identifier")
            exit_code = 1
            continue
        if sep:
            ctx.set(name, value)
        # `export NAME` for an existing variable is a no-op: everything in the map is exported.
    return exit_code


def handle_unset(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    exit_code = 0
    for name in args:
        if not _NAME_PATTERN.match(name):
            streams.err(f"fool: unset: `{name}': not a valid identifier")
            exit_code = 1
            continue
        ctx.unset(name)
    return exit_code
