# src/fool_shell/core/handlers/history_handler.py
from typing import Any, Dict, List, Optional

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.streams import Streams

history_help_text = """
HISTORY:
  history [N]         Show the command history (optionally only the last N lines).
  history info        Display statistics about the command history.
  history clear       Delete the command history.
""".strip()

COMMAND_HIERARCHY: Dict[str, Optional[Dict[str, Any]]] = {
    "info": None,
    "clear": None,
}

USAGE = "Usage: history [N] | history info | history clear"


def handle_history(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    """
    Handles the 'history' command.
    """
    manager = ctx.history
    if manager is None:
        streams.err("fool: history: history is not available")
        return 1

    if not args:
        return _print_entries(manager.entries(), 1, streams)

    subcommand = args[0]

    if subcommand == "info":
        return manager.display_info(streams)

    if subcommand == "clear":
        if ctx.is_snapshot:
            streams.err("fool: history: clear cannot run inside a pipeline")
            return 1
        return 0 if manager.clear() else 1

    try:
        count = int(subcommand)
    except ValueError:
        streams.err(f"fool: history: {subcommand}: unknown subcommand\n{USAGE}")
        return 2
    if count < 0:
        streams.err(f"fool: history: {subcommand}: invalid count")
        return 2

    entries = manager.entries()
    recent = manager.get_recent(count)
    return _print_entries(recent, len(entries) - len(recent) + 1, streams)


def _print_entries(entries, first_number: int, streams: Streams) -> int:
    if not entries:
        streams.out("No history available")
        return 0
    for number, entry in enumerate(entries, start=first_number):
        streams.out(f"{number:5}  {entry.command}")
    return 0
