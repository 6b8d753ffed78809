# tests/core/test_builtins.py
import io

import pytest

from fool_shell.core.command_registry import COMMAND_HIERARCHY, CommandRegistry, register_all_commands
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.errors import DispatchError
from fool_shell.core.handlers.alias_handler import handle_alias, handle_unalias
from fool_shell.core.handlers.core.cd_handler import handle_cd
from fool_shell.core.handlers.core.clear_handler import CLEAR_SEQUENCE, handle_clear
from fool_shell.core.handlers.core.pwd_handler import handle_pwd
from fool_shell.core.handlers.core.quit_handler import handle_exit, handle_quit
from fool_shell.core.handlers.env_handler import handle_export, handle_unset
from fool_shell.core.handlers.history_handler import handle_history
from fool_shell.core.managers.shell_history_manager import ShellHistoryManager
from fool_shell.core.streams import Streams


@pytest.fixture
def ctx(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "file.txt").write_text("x")
    context = ShellContext(cwd=str(tmp_path), env={"HOME": str(tmp_path / "sub"), "PATH": "/usr/bin:/bin"})
    context.history = ShellHistoryManager.memory_only()
    return context


@pytest.fixture
def streams():
    return Streams(stdout=io.StringIO(), stderr=io.StringIO())


# --- Registration ---

def test_all_builtins_are_discovered():
    register_all_commands()
    expected = {"cd", "pwd", "exit", "quit", "export", "unset", "alias", "unalias",
                "history", "source", "help", "clear"}
    assert expected <= set(CommandRegistry)
    assert COMMAND_HIERARCHY["history"] == {"info": None, "clear": None}
    assert COMMAND_HIERARCHY["cd"] is None


# --- cd / pwd ---

def test_cd_relative_and_pwd(ctx, streams, tmp_path):
    assert handle_cd(["sub"], ctx, streams) == 0
    assert ctx.cwd == str((tmp_path / "sub").resolve())
    assert ctx.get("PWD") == ctx.cwd
    assert ctx.get("OLDPWD") == str(tmp_path.resolve())

    handle_pwd([], ctx, streams)
    assert streams.stdout.getvalue() == ctx.cwd + "\n"


def test_cd_without_argument_goes_home(ctx, streams, tmp_path):
    assert handle_cd([], ctx, streams) == 0
    assert ctx.cwd == str((tmp_path / "sub").resolve())


def test_cd_dash_returns_and_prints(ctx, streams, tmp_path):
    start = ctx.cwd
    handle_cd(["sub"], ctx, streams)
    assert handle_cd(["-"], ctx, streams) == 0
    assert ctx.cwd == start
    assert streams.stdout.getvalue().strip() == start


def test_cd_dash_without_previous_directory(ctx, streams):
    with pytest.raises(DispatchError, match="OLDPWD not set"):
        handle_cd(["-"], ctx, streams)


@pytest.mark.parametrize("target, message", [
    ("/nonexistent/path", "No such file or directory"),
    ("file.txt", "Not a directory"),
])
def test_cd_failure_leaves_cwd_unchanged(ctx, streams, target, message):
    before = ctx.cwd
    with pytest.raises(DispatchError, match=message) as excinfo:
        handle_cd([target], ctx, streams)
    assert excinfo.value.exit_code == 1
    assert ctx.cwd == before


def test_cd_too_many_arguments(ctx, streams):
    with pytest.raises(DispatchError, match="too many arguments"):
        handle_cd(["a", "b"], ctx, streams)


# --- export / unset ---

def test_export_and_unset(ctx, streams):
    assert handle_export(["FOO=bar", "EMPTY="], ctx, streams) == 0
    assert ctx.get("FOO") == "bar"
    assert ctx.get("EMPTY") == ""

    assert handle_unset(["FOO"], ctx, streams) == 0
    assert ctx.get("FOO") is None


def test_export_value_may_contain_equals(ctx, streams):
    handle_export(["OPTS=a=b=c"], ctx, streams)
    assert ctx.get("OPTS") == "a=b=c"


def test_export_invalid_identifier(ctx, streams):
    assert handle_export(["1BAD=x", "GOOD=y"], ctx, streams) == 1
    assert "not a valid identifier" in streams.stderr.getvalue()
    assert ctx.get("GOOD") == "y"


def test_export_without_arguments_lists(ctx, streams):
    ctx.set("QUOTED", 'say "hi"')
    handle_export([], ctx, streams)
    assert 'export QUOTED="say \\"hi\\""' in streams.stdout.getvalue()


# --- alias / unalias ---

def test_alias_define_show_and_list(ctx, streams):
    assert handle_alias(["ll=ls -la", "g=git"], ctx, streams) == 0
    assert ctx.aliases == {"ll": "ls -la", "g": "git"}

    handle_alias(["ll"], ctx, streams)
    handle_alias([], ctx, streams)
    assert streams.stdout.getvalue().splitlines() == [
        "alias ll='ls -la'",
        "alias g='git'",
        "alias ll='ls -la'",
    ]


def test_alias_rejects_pipes_in_expansion(ctx, streams):
    assert handle_alias(["bad=ls | wc"], ctx, streams) == 1
    assert "bad" not in ctx.aliases


def test_alias_unknown_name(ctx, streams):
    assert handle_alias(["nope"], ctx, streams) == 1
    assert "nope: not found" in streams.stderr.getvalue()


def test_unalias(ctx, streams):
    ctx.aliases.update({"a": "ls", "b": "pwd"})
    assert handle_unalias(["a"], ctx, streams) == 0
    assert ctx.aliases == {"b": "pwd"}
    assert handle_unalias(["a"], ctx, streams) == 1
    assert handle_unalias(["-a"], ctx, streams) == 0
    assert ctx.aliases == {}
    assert handle_unalias([], ctx, streams) == 2


# --- exit / quit ---

def test_exit_sets_requested_code(ctx, streams):
    assert handle_exit([], ctx, streams) == 0
    assert ctx.exit_requested == 0


def test_exit_code_wraps(ctx, streams):
    assert handle_quit(["258"], ctx, streams) == 2
    assert ctx.exit_requested == 2


def test_exit_non_numeric(ctx, streams):
    with pytest.raises(DispatchError, match="numeric argument required"):
        handle_exit(["abc"], ctx, streams)
    assert ctx.exit_requested is None


# --- history ---

def test_history_lists_entries(ctx, streams):
    for i, cmd in enumerate(["ls", "pwd", "echo hi"]):
        ctx.history.record(i, cmd)
    assert handle_history([], ctx, streams) == 0
    assert streams.stdout.getvalue().splitlines() == [
        "    1  ls",
        "    2  pwd",
        "    3  echo hi",
    ]


def test_history_last_n_keeps_numbering(ctx, streams):
    for cmd in ["ls", "pwd", "echo hi"]:
        ctx.history.record(0, cmd)
    handle_history(["2"], ctx, streams)
    assert streams.stdout.getvalue().splitlines() == ["    2  pwd", "    3  echo hi"]


def test_history_clear_refused_in_pipeline(ctx, streams):
    ctx.history.record(0, "ls")
    snapshot = ctx.snapshot()
    assert handle_history(["clear"], snapshot, streams) == 1
    assert len(ctx.history) == 1

    assert handle_history(["clear"], ctx, streams) == 0
    assert len(ctx.history) == 0


def test_history_unknown_subcommand(ctx, streams):
    assert handle_history(["bogus"], ctx, streams) == 2
    assert "Usage: history" in streams.stderr.getvalue()


# --- clear ---

def test_clear_writes_escape_sequence(ctx, streams):
    assert handle_clear([], ctx, streams) == 0
    assert streams.stdout.getvalue() == CLEAR_SEQUENCE
