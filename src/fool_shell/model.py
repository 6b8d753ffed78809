# src/fool_shell/model.py (Shell Layer)
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Command model (parser -> executor contract) ---


class RedirectKind(str, Enum):
    INPUT = "input"
    OUTPUT_TRUNCATE = "output-truncate"
    OUTPUT_APPEND = "output-append"

    @property
    def symbol(self) -> str:
        return {"input": "<", "output-truncate": ">", "output-append": ">>"}[self.value]


class Redirection(BaseModel):
    """Binds a stage's stdin or stdout to a file."""
    model_config = ConfigDict(frozen=True)

    kind: RedirectKind
    target: str

    @property
    def is_output(self) -> bool:
        return self.kind is not RedirectKind.INPUT


class Command(BaseModel):
    """One pipeline stage: argv plus the redirections written next to it."""
    model_config = ConfigDict(frozen=True)

    argv: Tuple[str, ...] = Field(min_length=1)
    redirections: Tuple[Redirection, ...] = ()


class Pipeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    stages: Tuple[Command, ...] = Field(min_length=1)

    def __len__(self) -> int:
        return len(self.stages)


class Commands(BaseModel):
    model_config = ConfigDict(frozen=True)
    variant: Literal["commands"] = "commands"

    pipeline: Pipeline


class AIQuery(BaseModel):
    model_config = ConfigDict(frozen=True)
    variant: Literal["ai_query"] = "ai_query"

    text: str = Field(min_length=1)

    @field_validator("text")
    @classmethod
    def _must_be_trimmed(cls, value: str) -> str:
        if value != value.strip():
            raise ValueError("AI query text must be trimmed")
        return value


class Empty(BaseModel):
    model_config = ConfigDict(frozen=True)
    variant: Literal["empty"] = "empty"


class ParseError(BaseModel):
    """A rejected line. Never carries a partial pipeline."""
    model_config = ConfigDict(frozen=True)
    variant: Literal["error"] = "error"

    message: str
    state: str = Field(description="Parser state in which the error was detected.")
    position: int = Field(description="0-based character offset into the stripped line.")

    def __str__(self) -> str:
        return self.message


ParseResult = Union[Commands, AIQuery, Empty, ParseError]


# --- History collaborator ---


class HistoryEntry(BaseModel):
    """
    A single executed line as stored in the JSON Lines history file.
    """
    command: str = Field(description="The raw command text as typed.")
    exit_code: Optional[int] = Field(default=None, description="Exit code of the cycle.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cwd: Optional[str] = Field(default=None, description="Working directory at execution time.")

    def format_for_file(self) -> str:
        """Serialises the entry as one JSON line (newline included)."""
        return self.model_dump_json() + "\n"


# --- Configuration ---


class AiSettings(BaseModel):
    trigger_prefix: str = Field(default="!", min_length=1)
    api_base: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o"
    temperature: float = 0.7
    context_lines: int = 10
    system_prompt: str = (
        "You are Fool, a helpful assistant running inside a command-line shell. "
        "Be concise and provide direct answers. When suggesting commands, "
        "provide them in a way that can be easily copied and executed."
    )


class HistorySettings(BaseModel):
    file_path: str = "~/.fool/history.jsonl"
    max_entries: int = Field(default=10000, gt=0)


class ShellConfig(BaseModel):
    """Typed view of the settings the shell core consumes."""
    ai: AiSettings = Field(default_factory=AiSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    aliases: Dict[str, str] = Field(default_factory=dict)
