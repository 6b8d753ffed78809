# src/fool_shell/core/parser.py
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from fool_shell.model import (
    AIQuery,
    Command,
    Commands,
    Empty,
    ParseError,
    ParseResult,
    Pipeline,
    RedirectKind,
    Redirection,
)

logger = logging.getLogger(__name__)

DEFAULT_AI_TRIGGER = "!"

# Characters a backslash may escape inside double quotes. Any other pair is kept verbatim.
_DQUOTE_ESCAPABLE = {'"', "\\", "$", "`"}


class ParserState(str, Enum):
    IDLE = "Idle"
    COMMAND_START = "CommandStart"
    ARGUMENT = "Argument"
    SINGLE_QUOTE = "SingleQuote"
    DOUBLE_QUOTE = "DoubleQuote"
    ESCAPE = "Escape"
    AFTER_PIPE = "AfterPipe"
    AFTER_REDIRECT_OUT = "AfterRedirectOut"
    AFTER_REDIRECT_APPEND = "AfterRedirectAppend"
    AFTER_REDIRECT_IN = "AfterRedirectIn"
    AI_MODE = "AIMode"
    ERROR = "Error"
    ACCEPT = "Accept"


_REDIRECT_STATES = {
    RedirectKind.OUTPUT_TRUNCATE: ParserState.AFTER_REDIRECT_OUT,
    RedirectKind.OUTPUT_APPEND: ParserState.AFTER_REDIRECT_APPEND,
    RedirectKind.INPUT: ParserState.AFTER_REDIRECT_IN,
}


class _Reject(Exception):
    """Internal signal: the machine entered the Error state."""

    def __init__(self, message: str, state: ParserState, position: int):
        super().__init__(message)
        self.message = message
        self.state = state
        self.position = position


class _LineMachine:
    """
    Runs the state machine over a single (already stripped) command line.

    One instance is used per parse; nothing survives past `run()`.
    """

    def __init__(self, text: str):
        self.text = text
        self.state = ParserState.IDLE
        self.stages: List[Command] = []
        self.argv: List[str] = []
        self.redirections: List[Redirection] = []
        self.buf: List[str] = []
        # A word exists once any character or quote pair was consumed, so '' yields an empty argument.
        self.has_word = False
        self.pending: Optional[RedirectKind] = None
        self.quote_return = ParserState.IDLE
        self.escape_return = ParserState.IDLE

    # --- transitions ---

    def run(self) -> Pipeline:
        i = 0
        n = len(self.text)
        while i < n:
            c = self.text[i]
            if self.state is ParserState.SINGLE_QUOTE:
                self._single_quote(c)
            elif self.state is ParserState.DOUBLE_QUOTE:
                self._double_quote(c)
            elif self.state is ParserState.ESCAPE:
                self._escape(c)
            else:
                if c == ">" and i + 1 < n and self.text[i + 1] == ">":
                    self._redirect(RedirectKind.OUTPUT_APPEND, i)
                    i += 1
                else:
                    self._structural(c, i)
            i += 1
        return self._finish(n)

    def _structural(self, c: str, pos: int) -> None:
        if c.isspace():
            self._flush_word()
        elif c == "'":
            self._open(ParserState.SINGLE_QUOTE)
        elif c == '"':
            self._open(ParserState.DOUBLE_QUOTE)
        elif c == "\\":
            self.escape_return = self._word_state()
            self.has_word = True
            self.state = ParserState.ESCAPE
        elif c == "|":
            self._pipe(pos)
        elif c == ">":
            self._redirect(RedirectKind.OUTPUT_TRUNCATE, pos)
        elif c == "<":
            self._redirect(RedirectKind.INPUT, pos)
        else:
            self.buf.append(c)
            self.has_word = True
            self.state = self._word_state()

    def _open(self, quote_state: ParserState) -> None:
        self.quote_return = self._word_state()
        self.has_word = True
        self.state = quote_state

    def _single_quote(self, c: str) -> None:
        if c == "'":
            self.state = self.quote_return
        else:
            self.buf.append(c)

    def _double_quote(self, c: str) -> None:
        if c == '"':
            self.state = self.quote_return
        elif c == "\\":
            self.escape_return = ParserState.DOUBLE_QUOTE
            self.state = ParserState.ESCAPE
        else:
            self.buf.append(c)

    def _escape(self, c: str) -> None:
        if self.escape_return is ParserState.DOUBLE_QUOTE and c not in _DQUOTE_ESCAPABLE:
            self.buf.append("\\")
        self.buf.append(c)
        self.state = self.escape_return

    def _pipe(self, pos: int) -> None:
        self._flush_word()
        if self.pending is not None:
            raise _Reject("missing redirect target", self.state, pos)
        if not self.argv:
            raise _Reject("empty pipeline stage", self.state, pos)
        self._push_command()
        self.state = ParserState.AFTER_PIPE

    def _redirect(self, kind: RedirectKind, pos: int) -> None:
        self._flush_word()
        if self.pending is not None:
            raise _Reject("missing redirect target", self.state, pos)
        self.pending = kind
        self.state = _REDIRECT_STATES[kind]

    def _word_state(self) -> ParserState:
        """State to be in while a word is being accumulated from the current state."""
        if self.state in (ParserState.IDLE, ParserState.AFTER_PIPE):
            return ParserState.COMMAND_START
        return self.state

    # --- buffer management ---

    def _flush_word(self) -> None:
        if not self.has_word:
            return
        word = "".join(self.buf)
        self.buf = []
        self.has_word = False
        if self.pending is not None:
            self.redirections.append(Redirection(kind=self.pending, target=word))
            self.pending = None
            self.state = ParserState.ARGUMENT if self.argv else ParserState.IDLE
        else:
            self.argv.append(word)
            self.state = ParserState.ARGUMENT

    def _push_command(self) -> None:
        self.stages.append(Command(argv=tuple(self.argv), redirections=tuple(self.redirections)))
        self.argv = []
        self.redirections = []

    def _finish(self, end: int) -> Pipeline:
        if self.state in (ParserState.SINGLE_QUOTE, ParserState.DOUBLE_QUOTE):
            raise _Reject("unterminated quote", self.state, end)
        if self.state is ParserState.ESCAPE:
            if self.escape_return is ParserState.DOUBLE_QUOTE:
                raise _Reject("unterminated quote", self.state, end)
            raise _Reject("trailing backslash", self.state, end)

        self._flush_word()
        if self.pending is not None:
            raise _Reject("missing redirect target", self.state, end)
        if self.state is ParserState.AFTER_PIPE:
            raise _Reject("incomplete pipeline", self.state, end)
        if not self.argv:
            # Only redirections were given for the last stage.
            raise _Reject("empty pipeline stage", self.state, end)

        self._push_command()
        self.state = ParserState.ACCEPT
        return Pipeline(stages=tuple(self.stages))


class Parser:
    """
    Finite-state parser turning one input line into exactly one ParseResult.

    The parser is stateless between calls: it performs no alias expansion and
    holds nothing but the AI trigger prefix, so equal input yields equal output.
    """

    def __init__(self, ai_trigger: str = DEFAULT_AI_TRIGGER):
        if not ai_trigger:
            raise ValueError("AI trigger prefix must be a non-empty string")
        self.ai_trigger = ai_trigger

    def parse(self, line: str) -> ParseResult:
        s = (line or "").strip()
        if not s:
            return Empty()

        if s.startswith(self.ai_trigger):
            query = s[len(self.ai_trigger):].strip()
            if not query:
                return ParseError(
                    message="empty AI query",
                    state=ParserState.AI_MODE.value,
                    position=len(self.ai_trigger),
                )
            return AIQuery(text=query)

        try:
            pipeline = _LineMachine(s).run()
        except _Reject as rej:
            logger.debug("Rejected %r in state %s at %d: %s", s, rej.state.value, rej.position, rej.message)
            return ParseError(message=rej.message, state=rej.state.value, position=rej.position)
        return Commands(pipeline=pipeline)


def parse_command_line(line: str, ai_trigger: str = DEFAULT_AI_TRIGGER) -> ParseResult:
    """Convenience wrapper around `Parser(ai_trigger).parse(line)`."""
    return Parser(ai_trigger).parse(line)


def split_words(text: str) -> List[str]:
    """
    Splits text into words using the shell's quoting rules.

    Used for alias expansions. Operators are not allowed here: the text must
    describe a single simple command.

    Raises:
        ValueError: if the text is malformed or contains pipes/redirections.
    """
    s = (text or "").strip()
    if not s:
        return []
    try:
        pipeline = _LineMachine(s).run()
    except _Reject as rej:
        raise ValueError(rej.message) from None
    if len(pipeline.stages) != 1 or pipeline.stages[0].redirections:
        raise ValueError("must be a simple command without pipes or redirections")
    return list(pipeline.stages[0].argv)
