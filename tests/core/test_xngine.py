# tests/core/test_xngine.py
import errno
import os
import signal
import subprocess
import sys
import threading
import time
from unittest.mock import MagicMock

import pytest

from fool_shell.core import xngine as xngine_module
from fool_shell.core.command_registry import CommandRegistry, register_all_commands
from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.errors import DispatchError
from fool_shell.core.parser import parse_command_line
from fool_shell.core.xngine import MAX_ALIAS_DEPTH, ExecuteEngine

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="requires POSIX utilities")


# A few simple fake handlers for the engine-level tests.
def mock_handler_success(args, ctx, streams):
    ctx.set("last_called", "success")
    return 0


def mock_handler_failure(args, ctx, streams):
    ctx.set("last_called", "failure")
    return 1


def mock_handler_echo_upper(args, ctx, streams):
    streams.out(" ".join(args).upper())
    return 0


def mock_handler_raises(args, ctx, streams):
    raise RuntimeError("boom")


def mock_handler_count_lines(args, ctx, streams):
    streams.out(str(sum(1 for _ in streams.stdin)))
    return 0


@pytest.fixture
def shell_context(tmp_path):
    """A clean ShellContext rooted in a temporary directory."""
    return ShellContext(cwd=str(tmp_path))


@pytest.fixture
def xngine():
    """An ExecuteEngine with a small fake registry."""
    mock_registry = {
        "cmd_ok": mock_handler_success,
        "cmd_fail": mock_handler_failure,
        "shout": mock_handler_echo_upper,
        "cmd_boom": mock_handler_raises,
        "count": mock_handler_count_lines,
        "exit": mock_handler_success,
    }
    return ExecuteEngine(command_registry=mock_registry, logger=MagicMock())


@pytest.fixture
def real_xngine():
    """An ExecuteEngine wired to the discovered built-ins."""
    register_all_commands()
    return ExecuteEngine(command_registry=CommandRegistry, logger=MagicMock())


def run(engine, line, ctx):
    return engine.execute_pipeline(parse_command_line(line).pipeline, ctx)


# --- Built-ins running alone ---

def test_xngine_execute_simple_success(xngine, shell_context):
    assert run(xngine, "cmd_ok", shell_context) == 0
    assert shell_context.get("last_called") == "success"


def test_xngine_execute_simple_failure(xngine, shell_context):
    assert run(xngine, "cmd_fail", shell_context) == 1
    assert shell_context.get("last_called") == "failure"


def test_builtin_output_goes_to_stdout(xngine, shell_context, capsys):
    assert run(xngine, "shout hello there", shell_context) == 0
    assert capsys.readouterr().out == "HELLO THERE\n"


def test_builtin_output_redirected_to_file(xngine, shell_context, tmp_path):
    assert run(xngine, "shout quiet > loud.txt", shell_context) == 0
    assert (tmp_path / "loud.txt").read_text() == "QUIET\n"


def test_unexpected_handler_exception_is_contained(xngine, shell_context, capsys):
    assert run(xngine, "cmd_boom", shell_context) == 1
    assert "fool: cmd_boom: boom" in capsys.readouterr().err


# --- Alias resolution ---

def test_alias_substitutes_first_word(xngine, shell_context):
    shell_context.aliases = {"ll": "ls -la", "l": "ll"}
    assert xngine.resolve_aliases(["l", "/tmp"], shell_context) == ["ls", "-la", "/tmp"]


def test_self_referencing_alias_expands_once(xngine, shell_context):
    shell_context.aliases = {"ls": "ls -F"}
    assert xngine.resolve_aliases(["ls", "x"], shell_context) == ["ls", "-F", "x"]


def test_alias_cycle_hits_depth_cap(xngine, shell_context):
    shell_context.aliases = {"a": "b", "b": "a"}
    with pytest.raises(DispatchError, match="alias expansion depth exceeded"):
        xngine.resolve_aliases(["a"], shell_context)


def test_alias_chain_within_cap_resolves(xngine, shell_context):
    chain = {f"a{i}": f"a{i + 1}" for i in range(MAX_ALIAS_DEPTH - 1)}
    chain[f"a{MAX_ALIAS_DEPTH - 1}"] = "cmd_ok"
    shell_context.aliases = chain
    assert xngine.resolve_aliases(["a0"], shell_context) == ["cmd_ok"]


def test_alias_cycle_reports_dispatch_error(xngine, shell_context, capsys):
    shell_context.aliases = {"a": "b", "b": "a"}
    assert run(xngine, "a", shell_context) == 2
    assert "alias expansion depth exceeded" in capsys.readouterr().err


def test_alias_to_builtin_dispatches_builtin(xngine, shell_context):
    shell_context.aliases = {"ok": "cmd_ok"}
    assert run(xngine, "ok", shell_context) == 0
    assert shell_context.get("last_called") == "success"


# --- Dispatch errors (nothing is opened or spawned) ---

@posix_only
@pytest.mark.parametrize("line", [
    "echo hi > early.txt | cat",
    "cat | sort < early.txt",
])
def test_invalid_redirection_position(xngine, shell_context, tmp_path, monkeypatch, capsys, line):
    popen = MagicMock()
    monkeypatch.setattr(xngine_module.subprocess, "Popen", popen)

    assert run(xngine, line, shell_context) == 2
    assert "invalid redirection position" in capsys.readouterr().err
    assert not (tmp_path / "early.txt").exists()
    popen.assert_not_called()


@posix_only
def test_exit_is_not_composable(xngine, shell_context, capsys):
    assert run(xngine, "exit | cat", shell_context) == 2
    assert "exit not composable in pipeline" in capsys.readouterr().err


@posix_only
def test_command_not_found(xngine, shell_context, monkeypatch, capsys):
    popen = MagicMock()
    monkeypatch.setattr(xngine_module.subprocess, "Popen", popen)

    assert run(xngine, "echo hi | definitely-not-a-command-xyz", shell_context) == 127
    assert "definitely-not-a-command-xyz: command not found" in capsys.readouterr().err
    # Resolution fails before the first stage is spawned.
    popen.assert_not_called()


@posix_only
def test_permission_denied(xngine, shell_context, tmp_path, capsys):
    script = tmp_path / "script.sh"
    script.write_text("#!/bin/sh\necho nope\n")
    script.chmod(0o644)

    assert run(xngine, "./script.sh", shell_context) == 126
    assert "Permission denied" in capsys.readouterr().err


@posix_only
def test_unopenable_input_redirection(xngine, shell_context, capsys):
    assert run(xngine, "cat < missing.txt", shell_context) == 1
    assert "missing.txt" in capsys.readouterr().err


# --- External processes, pipes and redirections ---

@posix_only
def test_pipeline_output_feeds_next_stage(xngine, shell_context, tmp_path):
    assert run(xngine, r"printf 'c\nb\na\n' | sort > sorted.txt", shell_context) == 0
    assert (tmp_path / "sorted.txt").read_text() == "a\nb\nc\n"


@posix_only
def test_ls_piped_into_head(xngine, shell_context, tmp_path, capfd):
    for i in range(8):
        (tmp_path / f"file{i}").write_text("x")
    assert run(xngine, "ls -la | head -5", shell_context) == 0
    out = capfd.readouterr().out
    assert len(out.splitlines()) == 5


@posix_only
@pytest.mark.parametrize("line, expected", [
    ("true | false", 1),
    ("false | true", 0),
    ("true | sh -c 'exit 3'", 3),
])
def test_exit_code_is_last_stage(xngine, shell_context, line, expected):
    assert run(xngine, line, shell_context) == expected


@posix_only
def test_truncate_redirection(xngine, shell_context, tmp_path):
    target = tmp_path / "out.txt"
    target.write_text("old content that is longer\n")
    assert run(xngine, 'echo "hello world" > out.txt', shell_context) == 0
    assert target.read_text() == "hello world\n"


@posix_only
def test_append_redirection(xngine, shell_context, tmp_path):
    (tmp_path / "file.txt").write_text("B\n")
    (tmp_path / "append.txt").write_text("A")
    assert run(xngine, "cat file.txt >> append.txt", shell_context) == 0
    assert (tmp_path / "append.txt").read_text() == "AB\n"


@posix_only
def test_input_and_output_redirection(xngine, shell_context, tmp_path):
    (tmp_path / "in.txt").write_text("one\ntwo\nthree\n")
    assert run(xngine, "wc -l < in.txt > count.txt", shell_context) == 0
    assert (tmp_path / "count.txt").read_text().strip() == "3"


@posix_only
def test_last_output_redirection_wins(xngine, shell_context, tmp_path):
    assert run(xngine, "echo hi > first.txt > second.txt", shell_context) == 0
    assert (tmp_path / "first.txt").read_text() == ""
    assert (tmp_path / "second.txt").read_text() == "hi\n"


@posix_only
def test_external_runs_in_session_cwd_and_env(xngine, shell_context, tmp_path):
    shell_context.set("FOOL_TEST_VALUE", "from-session")
    assert run(xngine, "sh -c 'pwd; echo $FOOL_TEST_VALUE' > where.txt", shell_context) == 0
    lines = (tmp_path / "where.txt").read_text().splitlines()
    assert os.path.realpath(lines[0]) == os.path.realpath(str(tmp_path))
    assert lines[1] == "from-session"


@posix_only
def test_large_output_does_not_deadlock(xngine, shell_context, tmp_path):
    """More data than a pipe buffer holds flows through every stage."""
    line = "sh -c 'i=0; while [ $i -lt 20000 ]; do echo line-$i; i=$((i+1)); done' | cat | wc -l > n.txt"
    assert run(xngine, line, shell_context) == 0
    assert (tmp_path / "n.txt").read_text().strip() == "20000"


@posix_only
@pytest.mark.skipif(not os.path.isdir("/proc/self/fd"), reason="requires /proc")
def test_no_descriptor_leak(xngine, shell_context):
    before = len(os.listdir("/proc/self/fd"))
    run(xngine, "printf x | cat | cat > out.txt", shell_context)
    run(xngine, "echo hi | missing-command-xyz", shell_context)
    run(xngine, "shout x | cat > out2.txt", shell_context)
    run(xngine, "cat < does-not-exist.txt", shell_context)
    after = len(os.listdir("/proc/self/fd"))
    assert after == before


# --- Built-ins inside pipelines ---

@posix_only
def test_builtin_feeds_external(xngine, shell_context, tmp_path):
    assert run(xngine, "shout piped words | cat > out.txt", shell_context) == 0
    assert (tmp_path / "out.txt").read_text() == "PIPED WORDS\n"


@posix_only
def test_pwd_in_pipeline(real_xngine, shell_context, tmp_path):
    assert run(real_xngine, "pwd | cat > out.txt", shell_context) == 0
    assert (tmp_path / "out.txt").read_text() == shell_context.cwd + "\n"


@posix_only
def test_cd_in_pipeline_does_not_change_session(real_xngine, shell_context, tmp_path):
    (tmp_path / "sub").mkdir()
    before = shell_context.cwd
    assert run(real_xngine, "cd sub | cat", shell_context) == 0
    assert shell_context.cwd == before


@posix_only
def test_export_in_pipeline_is_discarded(real_xngine, shell_context):
    assert run(real_xngine, "export PIPED=1 | cat", shell_context) == 0
    assert shell_context.get("PIPED") is None


@posix_only
def test_source_is_not_composable(real_xngine, shell_context, capsys):
    assert run(real_xngine, "echo x | source script.fool", shell_context) == 2
    assert "source not composable in pipeline" in capsys.readouterr().err


@posix_only
def test_builtin_as_last_stage_fed_by_externals(real_xngine, shell_context, tmp_path):
    """A built-in that never reads its stdin still lets the upstream stages finish."""
    assert run(real_xngine, "yes | head -c 200000 | pwd > o.txt", shell_context) == 0
    assert (tmp_path / "o.txt").read_text() == shell_context.cwd + "\n"


@posix_only
def test_builtin_reads_upstream_output(xngine, shell_context, tmp_path):
    assert run(xngine, r"printf 'a\nb\nc\n' | count > n.txt", shell_context) == 0
    assert (tmp_path / "n.txt").read_text() == "3\n"


@posix_only
def test_builtin_in_middle_stage(xngine, shell_context, tmp_path):
    assert run(xngine, r"printf 'a\nb\n' | count | cat > n.txt", shell_context) == 0
    assert (tmp_path / "n.txt").read_text() == "2\n"


# --- Interruption ---

@posix_only
def test_interrupt_terminates_whole_pipeline(xngine, shell_context, monkeypatch):
    if signal.getsignal(signal.SIGINT) is not signal.default_int_handler:
        pytest.skip("SIGINT is not delivered as KeyboardInterrupt here")

    spawned = []
    real_popen = subprocess.Popen

    def recording_popen(*args, **kwargs):
        proc = real_popen(*args, **kwargs)
        spawned.append(proc)
        return proc

    monkeypatch.setattr(xngine_module.subprocess, "Popen", recording_popen)

    timer = threading.Timer(0.5, os.kill, args=(os.getpid(), signal.SIGINT))
    started = time.monotonic()
    timer.start()
    try:
        code = run(xngine, "sleep 30 | sleep 30", shell_context)
    finally:
        timer.cancel()
    elapsed = time.monotonic() - started

    assert code == 130
    assert elapsed < 10
    assert len(spawned) == 2
    assert all(proc.poll() is not None for proc in spawned)
    # The engine keeps working after an interrupted pipeline.
    assert run(xngine, "true", shell_context) == 0


# --- Executable lookup ---

def test_lookup_oserror_becomes_not_found(xngine, shell_context, tmp_path, monkeypatch, capsys):
    (tmp_path / "tool.sh").write_text("")

    def failing_access(path, mode):
        raise OSError(errno.ENAMETOOLONG, "File name too long")

    monkeypatch.setattr(xngine_module.os, "access", failing_access)
    assert run(xngine, "./tool.sh", shell_context) == 127
    assert "fool: ./tool.sh: File name too long" in capsys.readouterr().err


@posix_only
def test_relative_path_entries_follow_session_cwd(xngine, shell_context, tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    tool = bin_dir / "hello-tool"
    tool.write_text("#!/bin/sh\necho hello from bin\n")
    tool.chmod(0o755)
    shell_context.set("PATH", "bin" + os.pathsep + os.environ.get("PATH", os.defpath))

    assert run(xngine, "hello-tool > out.txt", shell_context) == 0
    assert (tmp_path / "out.txt").read_text() == "hello from bin\n"
