# src/fool_shell/core/handlers/alias_handler.py
import re
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.parser import split_words
from fool_shell.core.streams import Streams

# Alias names must be a single plain word.
_ALIAS_NAME_PATTERN = re.compile(r"^[^\s=/|<>'\"\\]+$")

alias_help_text = """
ALIASES:
  alias               List all aliases.
  alias name=value    Define an alias, e.g. alias ll='ls -la'.
  alias name          Show one alias.
  unalias name...     Remove aliases (unalias -a removes all).
""".strip()


def _format(name: str, expansion: str) -> str:
    return "alias " + name + "='" + expansion.replace("'", "'\\''") + "'"


def handle_alias(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    """
    Handles the 'alias' command (list, define, show).

    The expansion must be a simple command: it is validated with the shell's
    own quoting rules when defined, so a broken alias can never be stored.
    """
    if not args:
        for name in sorted(ctx.aliases):
            streams.out(_format(name, ctx.aliases[name]))
        return 0

    exit_code = 0
    for arg in args:
        name, sep, expansion = arg.partition("=")
        if not sep:
            if name in ctx.aliases:
                streams.out(_format(name, ctx.aliases[name]))
            else:
                streams.err(f"fool: alias: {name}: not found")
                exit_code = 1
            continue

        if not _ALIAS_NAME_PATTERN.match(name):
            streams.err(f"fool: alias: `{name}': invalid alias name")
            exit_code = 1
            continue
        try:
            split_words(expansion)
        except ValueError as e:
            streams.err(f"fool: alias: {name}: invalid expansion: {e}")
            exit_code = 1
            continue
        ctx.aliases[name] = expansion
    return exit_code


def handle_unalias(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    if not args:
        streams.err("fool: unalias: usage: unalias [-a] name [name ...]")
        return 2
    if args == ["-a"]:
        ctx.aliases.clear()
        return 0

    exit_code = 0
    for name in args:
        if ctx.aliases.pop(name, None) is None:
            streams.err(f"fool: unalias: {name}: not found")
            exit_code = 1
    return exit_code
