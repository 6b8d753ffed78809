# src/fool_shell/core/errors.py
from typing import Optional


class ShellError(Exception):
    """
    Base class for every error that ends the current line but never the shell.

    Each subclass carries the conventional exit code recorded for the cycle
    and the construct (command name, file, operator) the diagnostic names.
    """

    exit_code: int = 1

    def __init__(self, message: str, construct: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.construct = construct
        if exit_code is not None:
            self.exit_code = exit_code

    def diagnostic(self) -> str:
        """One-line text shown to the user."""
        if self.construct:
            return f"fool: {self.construct}: {self.message}"
        return f"fool: {self.message}"


class DispatchError(ShellError):
    """The pipeline is well-formed but cannot be dispatched as written."""
    exit_code = 2


class CommandNotFoundError(ShellError):
    exit_code = 127


class PermissionDeniedError(ShellError):
    exit_code = 126


class RedirectionError(ShellError):
    """A redirection target could not be opened."""
    exit_code = 1
