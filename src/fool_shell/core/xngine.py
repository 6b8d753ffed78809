from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from fool_shell.core.context.shell_context import ShellContext
from fool_shell.core.errors import (
    CommandNotFoundError,
    DispatchError,
    PermissionDeniedError,
    RedirectionError,
    ShellError,
)
from fool_shell.core.parser import split_words
from fool_shell.core.streams import Streams
from fool_shell.model import Pipeline, RedirectKind, Redirection

MAX_ALIAS_DEPTH = 10
INTERRUPTED_EXIT_CODE = 130

_OPEN_FLAGS = {
    RedirectKind.INPUT: os.O_RDONLY,
    RedirectKind.OUTPUT_TRUNCATE: os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
    RedirectKind.OUTPUT_APPEND: os.O_WRONLY | os.O_CREAT | os.O_APPEND,
}

Handler = Callable[[List[str], ShellContext, Streams], int]


class _Stage:
    """One resolved pipeline stage and the OS resources attached to it."""

    def __init__(self, index: int, argv: List[str], redirections, handler: Optional[Handler]):
        self.index = index
        self.argv = argv
        self.redirections = redirections
        self.handler = handler
        self.executable: Optional[str] = None
        self.stdin_fd: Optional[int] = None
        self.stdout_fd: Optional[int] = None
        self.process: Optional[subprocess.Popen] = None
        self.thread: Optional[threading.Thread] = None
        self.exit_code: Optional[int] = None

    @property
    def name(self) -> str:
        return self.argv[0]


class ExecuteEngine:
    """
    Executes one parsed pipeline: alias resolution, built-in dispatch,
    redirection and pipe wiring, process spawning and reaping.

    Built-ins run on the calling thread when they are the only stage. Inside a
    multi-stage pipeline they run on a worker thread bound to the adjacent pipe
    ends, against a snapshot of the context.
    """

    def __init__(
            self,
            *,
            command_registry: Dict[str, Handler],
            non_composable: FrozenSet[str] = frozenset({"exit", "quit", "source"}),
            terminate_grace: float = 1.0,
            logger: Optional[logging.Logger] = None,
    ) -> None:
        self._commands = command_registry
        self._non_composable = non_composable
        self._grace = terminate_grace
        self._log = logger or logging.getLogger(__name__)

    # --- public API ---

    def execute_pipeline(self, pipeline: Pipeline, ctx: ShellContext) -> int:
        """
        Runs every stage of `pipeline` and returns the exit code of the last one.

        Errors never propagate: each is reported as a one-line diagnostic on
        stderr and converted into its conventional exit code.
        """
        try:
            stages = self._prepare(pipeline, ctx)
            return self._run(stages, ctx)
        except ShellError as e:
            self._log.debug("Pipeline aborted: %s", e.diagnostic())
            print(e.diagnostic(), file=sys.stderr)
            return e.exit_code
        except Exception as e:
            self._log.error("Pipeline failed unexpectedly: %s", e, exc_info=True)
            print(f"fool: {e}", file=sys.stderr)
            return 1

    def resolve_aliases(self, argv: List[str], ctx: ShellContext) -> List[str]:
        """
        Substitutes the first word while it names an alias.

        An alias whose expansion starts with its own name (`ls='ls -F'`) is
        expanded once. Anything needing more than MAX_ALIAS_DEPTH
        substitutions is treated as a cycle.
        """
        words = list(argv)
        depth = 0
        while words and words[0] in ctx.aliases:
            name = words[0]
            if depth >= MAX_ALIAS_DEPTH:
                raise DispatchError("alias expansion depth exceeded", construct=argv[0])
            try:
                expansion = split_words(ctx.aliases[name])
            except ValueError as e:
                raise DispatchError(f"invalid alias expansion: {e}", construct=name) from None
            words = expansion + words[1:]
            depth += 1
            if expansion and expansion[0] == name:
                break
        if not words:
            raise DispatchError("alias expands to an empty command", construct=argv[0])
        self._log.debug("Alias resolution %s -> %s (%d step(s))", argv, words, depth)
        return words

    # --- preparation (nothing is opened or spawned here) ---

    def _prepare(self, pipeline: Pipeline, ctx: ShellContext) -> List[_Stage]:
        n = len(pipeline.stages)
        stages: List[_Stage] = []
        for i, command in enumerate(pipeline.stages):
            argv = self.resolve_aliases(list(command.argv), ctx)
            handler = self._commands.get(argv[0])
            stage = _Stage(i, argv, command.redirections, handler)

            for redirection in command.redirections:
                if redirection.kind is RedirectKind.INPUT and i != 0:
                    raise DispatchError("invalid redirection position", construct=f"< {redirection.target}")
                if redirection.is_output and i != n - 1:
                    raise DispatchError(
                        "invalid redirection position",
                        construct=f"{redirection.kind.symbol} {redirection.target}",
                    )

            if handler is not None:
                if n > 1 and stage.name in self._non_composable:
                    raise DispatchError(f"{stage.name} not composable in pipeline", construct=stage.name)
            else:
                stage.executable = self._resolve_executable(stage.name, ctx)
            stages.append(stage)
        return stages

    def _resolve_executable(self, name: str, ctx: ShellContext) -> str:
        if not name:
            raise CommandNotFoundError("command not found", construct="''")
        if os.sep in name or (os.altsep and os.altsep in name):
            path = ctx.resolve_path(name)
            try:
                exists = path.exists()
                runnable = exists and not path.is_dir() and os.access(path, os.X_OK)
            except OSError as e:
                # e.g. ENAMETOOLONG, ELOOP
                raise CommandNotFoundError(e.strerror or str(e), construct=name) from None
            if not exists:
                raise CommandNotFoundError("No such file or directory", construct=name)
            if not runnable:
                raise PermissionDeniedError("Permission denied", construct=name)
            return str(path)

        try:
            found = shutil.which(name, path=self._search_path(ctx))
        except OSError as e:
            raise CommandNotFoundError(e.strerror or str(e), construct=name) from None
        if found is None:
            raise CommandNotFoundError("command not found", construct=name)
        return found

    @staticmethod
    def _search_path(ctx: ShellContext) -> str:
        """The session's PATH with relative (and empty) entries anchored at the session cwd."""
        entries = ctx.env.get("PATH", os.defpath).split(os.pathsep)
        return os.pathsep.join(
            entry if os.path.isabs(entry) else os.path.join(ctx.cwd, entry or os.curdir)
            for entry in entries
        )

    # --- execution ---

    def _run(self, stages: List[_Stage], ctx: ShellContext) -> int:
        owned: Set[int] = set()
        try:
            self._open_redirections(stages, ctx, owned)
            self._open_pipes(stages, owned)

            if len(stages) == 1 and stages[0].handler is not None:
                stage = stages[0]
                stage.exit_code = self._run_builtin(stage, ctx, self._take(stage, owned))
                return stage.exit_code

            try:
                self._launch_all(stages, ctx, owned)
            except ShellError:
                self._abort(stages, owned)
                raise
            except KeyboardInterrupt:
                self._abort(stages, owned)
                return INTERRUPTED_EXIT_CODE
            return self._wait_all(stages)
        finally:
            for fd in list(owned):
                self._close(fd, owned)

    def _open_redirections(self, stages: List[_Stage], ctx: ShellContext, owned: Set[int]) -> None:
        """
        Opens every redirection target before anything is spawned.

        Output targets are all created/truncated in order; the last one
        receives the stage's output.
        """
        for stage in stages:
            for redirection in stage.redirections:
                fd = self._open_target(redirection, ctx, owned)
                if redirection.kind is RedirectKind.INPUT:
                    if stage.stdin_fd is not None:
                        self._close(stage.stdin_fd, owned)
                    stage.stdin_fd = fd
                else:
                    if stage.stdout_fd is not None:
                        self._close(stage.stdout_fd, owned)
                    stage.stdout_fd = fd

    def _open_target(self, redirection: Redirection, ctx: ShellContext, owned: Set[int]) -> int:
        path = ctx.resolve_path(redirection.target)
        try:
            fd = os.open(path, _OPEN_FLAGS[redirection.kind], 0o666)
        except OSError as e:
            raise RedirectionError(e.strerror or str(e), construct=redirection.target) from None
        owned.add(fd)
        self._log.debug("Opened %s for %s as fd %d", path, redirection.kind.value, fd)
        return fd

    def _open_pipes(self, stages: List[_Stage], owned: Set[int]) -> None:
        for upstream, downstream in zip(stages, stages[1:]):
            r, w = os.pipe()
            owned.update((r, w))
            upstream.stdout_fd = w
            downstream.stdin_fd = r

    def _launch_all(self, stages: List[_Stage], ctx: ShellContext, owned: Set[int]) -> None:
        """Starts every stage before any is awaited, so full pipe buffers cannot deadlock."""
        for stage in stages:
            if stage.handler is not None:
                fds = self._take(stage, owned)
                stage.thread = threading.Thread(
                    target=self._builtin_worker,
                    args=(stage, ctx.snapshot(), fds),
                    name=f"builtin-{stage.name}-{stage.index}",
                    daemon=True,
                )
                stage.thread.start()
                continue

            try:
                stage.process = subprocess.Popen(
                    stage.argv,
                    executable=stage.executable,
                    stdin=stage.stdin_fd,
                    stdout=stage.stdout_fd,
                    cwd=ctx.cwd,
                    env=ctx.env,
                )
            except PermissionError:
                raise PermissionDeniedError("Permission denied", construct=stage.name) from None
            except FileNotFoundError:
                raise CommandNotFoundError("command not found", construct=stage.name) from None
            except OSError as e:
                raise ShellError(e.strerror or str(e), construct=stage.name, exit_code=126) from None

            self._log.debug("Spawned pid %d for stage %d: %s", stage.process.pid, stage.index, stage.argv)
            # The child holds its own copies now; EOF only propagates once ours are gone.
            for fd in (stage.stdin_fd, stage.stdout_fd):
                if fd is not None:
                    self._close(fd, owned)

    def _wait_all(self, stages: List[_Stage]) -> int:
        try:
            for stage in stages:
                if stage.process is not None:
                    stage.exit_code = self._normalise(stage.process.wait())
                elif stage.thread is not None:
                    stage.thread.join()
        except KeyboardInterrupt:
            self._log.info("Interrupted; terminating pipeline.")
            self._terminate(stages)
            return INTERRUPTED_EXIT_CODE

        last = stages[-1]
        return last.exit_code if last.exit_code is not None else 1

    # --- built-ins ---

    def _take(self, stage: _Stage, owned: Set[int]):
        """Transfers ownership of a stage's descriptors to whoever runs it."""
        fds = (stage.stdin_fd, stage.stdout_fd)
        for fd in fds:
            if fd is not None:
                owned.discard(fd)
        return fds

    def _builtin_worker(self, stage: _Stage, ctx: ShellContext, fds) -> None:
        stage.exit_code = self._run_builtin(stage, ctx, fds)

    def _run_builtin(self, stage: _Stage, ctx: ShellContext, fds) -> int:
        stdin_fd, stdout_fd = fds
        stdin = stdout = None
        try:
            if stdin_fd is not None:
                stdin = open(stdin_fd, "r", encoding="utf-8", errors="replace", closefd=True)
                stdin_fd = None
            if stdout_fd is not None:
                stdout = open(stdout_fd, "w", encoding="utf-8", closefd=True)
                stdout_fd = None
            streams = Streams(stdin=stdin, stdout=stdout)
            code = self._call_handler(stage, ctx, streams)
            try:
                streams.stdout.flush()
            except BrokenPipeError:
                pass
            return code
        finally:
            for f in (stdin, stdout):
                if f is not None:
                    try:
                        f.close()
                    except BrokenPipeError:
                        # Reader went away; nothing left to deliver.
                        pass
            for fd in (stdin_fd, stdout_fd):
                if fd is not None:
                    os.close(fd)

    def _call_handler(self, stage: _Stage, ctx: ShellContext, streams: Streams) -> int:
        try:
            return int(stage.handler(stage.argv[1:], ctx, streams))
        except ShellError as e:
            print(e.diagnostic(), file=streams.stderr)
            return e.exit_code
        except BrokenPipeError:
            self._log.debug("Built-in '%s' lost its reader.", stage.name)
            return 141
        except Exception as e:
            self._log.error("Built-in '%s' failed: %s", stage.name, e, exc_info=True)
            print(f"fool: {stage.name}: {e}", file=streams.stderr)
            return 1

    # --- cleanup ---

    def _abort(self, stages: List[_Stage], owned: Set[int]) -> None:
        """Releases a partially launched pipeline."""
        for fd in list(owned):
            self._close(fd, owned)
        self._terminate(stages)

    def _terminate(self, stages: List[_Stage]) -> None:
        procs = [s.process for s in stages if s.process is not None and s.process.poll() is None]
        for proc in procs:
            try:
                proc.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                pass
        for proc in procs:
            try:
                proc.wait(timeout=self._grace)
            except subprocess.TimeoutExpired:
                self._log.warning("pid %d ignored SIGTERM; killing.", proc.pid)
                proc.kill()
                proc.wait()
        for stage in stages:
            if stage.thread is not None:
                stage.thread.join(timeout=self._grace)

    @staticmethod
    def _close(fd: int, owned: Set[int]) -> None:
        if fd in owned:
            owned.discard(fd)
            os.close(fd)

    @staticmethod
    def _normalise(returncode: int) -> int:
        # Killed by signal N -> 128 + N, as shells report it.
        return returncode if returncode >= 0 else 128 - returncode
