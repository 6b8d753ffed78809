# src/fool_shell/core/handlers/core/cd_handler.py
import os
from typing import List

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.errors import DispatchError
from fool_shell.core.streams import Streams

cd_help_text = """
NAVIGATION:
  cd [dir]            Change directory. `cd` and `cd ~` go home,
                      `cd -` returns to the previous directory.
  pwd                 Print the working directory.
""".strip()


def handle_cd(args: List[str], ctx: ShellContext, streams: Streams) -> int:
    """
    Changes the session's working directory.

    Failures leave the working directory untouched and report exit code 1.
    """
    if len(args) > 1:
        raise DispatchError("too many arguments", construct="cd", exit_code=1)

    target = args[0] if args else "~"
    announce = False
    if target == "-":
        if ctx.previous_cwd is None:
            raise DispatchError("OLDPWD not set", construct="cd", exit_code=1)
        target = ctx.previous_cwd
        announce = True

    path = ctx.resolve_path(target)
    if not path.exists():
        raise DispatchError(f"{target}: No such file or directory", construct="cd", exit_code=1)
    if not path.is_dir():
        raise DispatchError(f"{target}: Not a directory", construct="cd", exit_code=1)
    if not os.access(path, os.X_OK):
        raise DispatchError(f"{target}: Permission denied", construct="cd", exit_code=1)

    ctx.change_directory(path)
    if announce:
        streams.out(ctx.cwd)
    return 0
