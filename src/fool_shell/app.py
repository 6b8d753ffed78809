from __future__ import annotations

import argparse
import getpass
import logging
import sys

from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer
from prompt_toolkit.document import Document
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from fool_shell.core.command_registry import COMMAND_HIERARCHY, register_all_commands
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.core import run_line
from fool_shell.core.managers.completion_manager import CompletionManager
from fool_shell.core.managers.config_manager import config_manager
from fool_shell.core.managers.shell_history_manager import ShellHistoryManager
from fool_shell.core.services.ai_service import AiService
from fool_shell.core.utils.configure_logging import configure_logger
from fool_shell.core.utils.path_utils import PathUtils

# Initialize logging based on configuration
DEBUG_LEVEL = config_manager.get_nested("debug.level", "WARNING")
configure_logger(DEBUG_LEVEL, silenced_loggers={"urllib3": "WARNING"})
logger = logging.getLogger(__name__)

__version__ = "1.0.0"


class PromptToolkitCompleter(Completer):
    """
    A wrapper that uses the CompletionManager to generate suggestions
    in a way that prompt_toolkit expects.
    """

    def __init__(self, manager: CompletionManager):
        self.manager = manager

    def get_completions(self, document: Document, complete_event):
        yield from self.manager.generate_completions(document, complete_event)


def build_context() -> ShellContext:
    """Creates the session context from the current configuration."""
    config = config_manager.shell_config()
    history_path = PathUtils.expand_user_path(config.history.file_path)
    try:
        history = ShellHistoryManager(history_path, config.history.max_entries)
    except OSError as e:
        logger.error("History file unusable (%s); keeping history in memory only.", e)
        history = ShellHistoryManager.memory_only(config.history.max_entries)

    ctx = ShellContext(
        aliases=config.aliases,
        history=history,
        ai_trigger=config.ai.trigger_prefix,
    )
    ctx.ai_service = AiService(config.ai)
    logger.info("Session started in %s; history at %s", ctx.cwd, history_path)
    return ctx


def _prompt_message(ctx: ShellContext) -> FormattedText:
    cwd = ctx.cwd
    home = ctx.home
    if cwd == home or cwd.startswith(home.rstrip("/") + "/"):
        cwd = "~" + cwd[len(home.rstrip("/")):]
    try:
        user = getpass.getuser()
    except Exception:
        user = "user"
    return FormattedText([
        ("ansigreen bold", user),
        ("", " "),
        ("ansiblue bold", cwd),
        ("", " "),
        ("ansimagenta bold", "❯ "),
    ])


def _print_welcome(ctx: ShellContext) -> None:
    print(f"Fool Shell {__version__}")
    print("  Type 'help' for help, 'exit' to exit")
    print(f"  Use '{ctx.ai_trigger} <question>' to ask the AI assistant\n")


def start_shell(ctx: Optional[ShellContext] = None) -> int:
    """Starts the interactive REPL. Returns the shell's exit status."""
    register_all_commands()
    ctx = ctx or build_context()

    history = InMemoryHistory()
    for command in ctx.history.get_all_commands() if ctx.history else []:
        history.append_string(command)

    completion_manager = CompletionManager(ctx, COMMAND_HIERARCHY)
    session = PromptSession(
        history=history,
        completer=PromptToolkitCompleter(completion_manager),
        complete_while_typing=False,
    )
    _print_welcome(ctx)

    last_exit = 0
    while ctx.exit_requested is None:
        try:
            line = session.prompt(_prompt_message(ctx))
        except KeyboardInterrupt:
            # Ctrl-C at the prompt discards the line.
            continue
        except EOFError:
            print("exit")
            break

        if not line.strip():
            continue
        last_exit = run_line(line, ctx)

    return ctx.exit_requested if ctx.exit_requested is not None else last_exit


def run_command(command: str, ctx: Optional[ShellContext] = None) -> int:
    """Executes one line non-interactively and returns its exit status."""
    register_all_commands()
    ctx = ctx or build_context()
    code = run_line(command, ctx)
    return ctx.exit_requested if ctx.exit_requested is not None else code


def init_config() -> int:
    path = config_manager.write_user_defaults()
    if path is None:
        print(f"Config file already exists at: {PathUtils.get_user_settings_file()}")
        print("To regenerate, delete the file first.")
        return 0
    print(f"Config file created at: {path}")
    print("Edit this file to configure AI and other settings.")
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fool",
        description="A state-machine driven shell with native AI integration.",
    )
    parser.add_argument("-c", dest="command", metavar="COMMAND", help="Execute a command and exit.")
    parser.add_argument("-v", "--version", action="version", version=f"Fool Shell {__version__}")
    parser.add_argument("--init-config", action="store_true", help="Generate the default config file.")
    return parser


def main(argv: List[str] | None = None) -> int:
    """Entrypoint for running the shell from the command line."""
    args = build_arg_parser().parse_args(argv)
    if args.init_config:
        return init_config()
    if args.command is not None:
        return run_command(args.command)
    return start_shell()


if __name__ == "__main__":
    sys.exit(main())
